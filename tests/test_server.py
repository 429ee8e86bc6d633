import pytest

from cerfa_service import ContractNotFoundError
from contract_data import ContractDataError
from database import ImmutableRecordError, PersistenceError
from pdf_writer import FormRenderError
from s3_storage import StoreWriteError
from server import app
from template_loader import TemplateLoadError

RECORD = {
    "id": "record-1",
    "tenant_id": "tenant-1",
    "contract_id": "contract-1",
    "user_id": "user-1",
    "form_version": "10103_10",
    "storage_url": "https://storage.example.com/signed",
    "object_path": ".private/cerfas/1-cerfa-C-1.pdf",
    "field_mapping_version": "1.0.0",
    "generated_at": "2025-09-01T10:00:00",
    "created_at": "2025-09-01T10:00:00",
}

HEADERS = {"X-User-Id": "user-1"}


class FakeService:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def _maybe_fail(self):
        if self.error:
            raise self.error

    def generate_for_contract(self, contract_id, user_id, form_data=None):
        self.calls.append(("generate", contract_id, user_id, form_data))
        self._maybe_fail()
        return RECORD

    def list_generations(self, contract_id):
        self.calls.append(("list", contract_id))
        self._maybe_fail()
        return [RECORD]

    def render_preview(self, form_data):
        self.calls.append(("preview", form_data))
        self._maybe_fail()
        return b"%PDF-1.4 preview"


@pytest.fixture
def service():
    fake = FakeService()
    app.config["CERFA_SERVICE"] = fake
    yield fake
    app.config.pop("CERFA_SERVICE", None)


@pytest.fixture
def client(service):
    return app.test_client()


def test_health(client):
    response = client.get("/api/health")
    body = response.get_json()
    assert response.status_code == 200
    assert body["status"] == "healthy"
    assert body["form_version"] == "10103_10"
    assert body["field_mapping_version"] == "1.0.0"


def test_field_mapping(client):
    body = client.get("/api/cerfa/field-mapping").get_json()
    assert body["field_mapping_version"] == "1.0.0"
    assert body["text_fields"]["apprentice.last_name"] == "text_31tkvp"
    assert body["checkbox_pairs"]["apprentice.sex"] == {
        "yes_field": "checkbox_51itfw",
        "no_field": "checkbox_52dfmo",
        "yes_value": "M",
        "no_value": "F",
    }


def test_generate(client, service):
    response = client.post("/api/contracts/contract-1/cerfa/generate", headers=HEADERS)

    assert response.status_code == 201
    assert response.get_json() == {"success": True, "record": RECORD}
    assert service.calls == [("generate", "contract-1", "user-1", None)]


def test_generate_with_contract_data(client, service):
    data = {"apprentice": {"lastName": "Dupont"}}
    response = client.post(
        "/api/contracts/contract-1/cerfa/generate",
        headers=HEADERS,
        json={"contract_data": data}
    )

    assert response.status_code == 201
    assert service.calls[0][3] == data


def test_generate_requires_user(client, service):
    response = client.post("/api/contracts/contract-1/cerfa/generate")
    assert response.status_code == 401
    assert response.get_json()["success"] is False
    assert service.calls == []


def test_generate_rejects_non_json_body(client, service):
    response = client.post(
        "/api/contracts/contract-1/cerfa/generate",
        headers=HEADERS,
        data="not json",
        content_type="text/plain"
    )
    assert response.status_code == 400
    assert service.calls == []


@pytest.mark.parametrize("error,status", [
    (ContractNotFoundError("Contract not found: contract-1"), 404),
    (ContractDataError("Invalid contract data"), 422),
    (TemplateLoadError("Template not readable"), 500),
    (FormRenderError("Failed to render CERFA PDF"), 500),
    (StoreWriteError("bucket unreachable"), 502),
    (PersistenceError("database down"), 500),
    (ImmutableRecordError("cannot be modified"), 500),
    (RuntimeError("unexpected"), 500),
])
def test_generate_errors(client, service, error, status):
    service.error = error

    response = client.post("/api/contracts/contract-1/cerfa/generate", headers=HEADERS)

    assert response.status_code == status
    assert response.get_json() == {"success": False, "error": str(error)}


def test_list(client, service):
    response = client.get("/api/contracts/contract-1/cerfa", headers=HEADERS)
    body = response.get_json()
    assert response.status_code == 200
    assert body["count"] == 1
    assert body["records"] == [RECORD]


def test_list_unknown_contract(client, service):
    service.error = ContractNotFoundError("Contract not found: missing")
    response = client.get("/api/contracts/missing/cerfa", headers=HEADERS)
    assert response.status_code == 404


def test_list_requires_user(client):
    assert client.get("/api/contracts/contract-1/cerfa").status_code == 401


def test_preview(client, service):
    data = {"employer": {"name": "Boulangerie Martin"}}
    response = client.post("/api/cerfa/preview", headers=HEADERS, json={"contract_data": data})

    assert response.status_code == 200
    assert response.mimetype == "application/pdf"
    assert response.data == b"%PDF-1.4 preview"
    assert service.calls == [("preview", data)]


def test_preview_requires_body(client, service):
    response = client.post("/api/cerfa/preview", headers=HEADERS)
    assert response.status_code == 400
    assert service.calls == []


def test_preview_invalid_data(client, service):
    service.error = ContractDataError("Invalid contract data")
    response = client.post("/api/cerfa/preview", headers=HEADERS, json={"contract_data": {}})
    assert response.status_code == 422


def test_unknown_endpoint(client):
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert response.get_json() == {"success": False, "error": "Endpoint not found"}
