from datetime import date

import pytest

from contract_data import (
    ContractDataError,
    ContractFormData,
    derive_contract_form_data,
    format_form_date,
    normalize_provider_payload,
    parse_contract_form_data,
)


def test_camel_case_payload():
    data = parse_contract_form_data({
        "apprentice": {"lastName": "Dupont", "firstName": "Jean", "sex": "M"},
        "remuneration": {"year1": {"startDate1": "01/09/2025"}},
    })
    assert data.apprentice.last_name == "Dupont"
    assert data.apprentice.sex == "M"
    assert data.remuneration.year1.start_date1 == "01/09/2025"


def test_snake_case_payload():
    data = parse_contract_form_data({"cfa": {"is_company": True, "name": "Centre ABC"}})
    assert data.cfa.is_company is True
    assert data.cfa.name == "Centre ABC"


def test_every_section_is_optional():
    data = parse_contract_form_data({})
    assert data.employer is None
    assert data.apprentice is None


def test_numbers_are_kept_as_text():
    data = parse_contract_form_data({
        "employer": {"siret": 12345678901234},
        "contract": {"weeklyWorkHours": "35"},
    })
    assert data.employer.siret == "12345678901234"
    assert data.contract.weekly_work_hours == "35"


def test_unknown_keys_are_kept():
    data = parse_contract_form_data({"apprentice": {"favouriteColour": "blue"}})
    assert data.apprentice.model_extra == {"favouriteColour": "blue"}


def test_invalid_values_are_dropped():
    data = parse_contract_form_data({
        "apprentice": {"lastName": "Dupont", "sex": "X", "disabledWorker": "maybe"},
        "contract": "not a section",
    })

    assert data.apprentice.last_name == "Dupont"
    assert data.apprentice.sex == "X"
    assert data.apprentice.disabled_worker is None
    assert data.contract is None
    assert set(data.rejected_fields) == {"apprentice.disabledWorker", "contract"}


def test_durations_are_kept_verbatim():
    data = parse_contract_form_data({"contract": {"weeklyWorkHours": "", "weeklyWorkMinutes": "05"}})
    assert data.contract.weekly_work_hours == ""
    assert data.contract.weekly_work_minutes == "05"
    assert data.rejected_fields == {}


def test_non_object_payload_is_rejected():
    with pytest.raises(ContractDataError):
        parse_contract_form_data(["not", "an", "object"])


def test_parse_returns_models_unchanged():
    data = ContractFormData()
    assert parse_contract_form_data(data) is data


@pytest.mark.parametrize("value,expected", [
    ("2025-09-01", "01/09/2025"),
    ("2005-03-15T00:00:00Z", "15/03/2005"),
    (date(2027, 8, 31), "31/08/2027"),
    ("31/08/2027", "31/08/2027"),
    (None, None),
    ("", None),
])
def test_format_form_date(value, expected):
    assert format_form_date(value) == expected


def test_normalize_provider_payload():
    payload = {
        "id": "filiz-1",
        "contractNumber": "C-2025-001",
        "status": "signed",
        "startDate": "2025-09-01",
        "endDate": "2027-08-31",
        "apprentice": {"lastName": "Dupont", "dateOfBirth": "2005-03-15"},
        "employer": {"name": "Boulangerie Martin", "address": "12 rue de la Paix"},
        "cfa": {"name": "Centre ABC", "uai": "0751234A"},
    }

    data = normalize_provider_payload(payload)

    for key in ("id", "contractNumber", "status", "startDate", "endDate"):
        assert key not in data
    assert data["apprentice"] == {"lastName": "Dupont", "birthDate": "15/03/2005"}
    assert data["employer"]["addressStreet"] == "12 rue de la Paix"
    assert data["contract"] == {"executionStartDate": "01/09/2025", "endDate": "31/08/2027"}
    # Input is left untouched
    assert payload["apprentice"]["dateOfBirth"] == "2005-03-15"


def test_form_shaped_payload_passes_through():
    payload = {"apprentice": {"lastName": "Dupont"}, "contract": {"endDate": "31/08/2027"}}
    assert normalize_provider_payload(payload) == payload


def test_derive_from_cached_data():
    contract = {
        "id": "c1",
        "cached_data": {"apprentice": {"lastName": "Dupont", "dateOfBirth": "2005-03-15"}},
        "employer_name": "Ignored",
    }
    data = derive_contract_form_data(contract)
    assert data.apprentice.last_name == "Dupont"
    assert data.apprentice.birth_date == "15/03/2005"
    assert data.employer is None


def test_derive_from_contract_columns():
    contract = {
        "id": "c1",
        "cached_data": None,
        "employer_name": "Boulangerie Martin",
        "cfa_name": "Centre ABC",
        "start_date": "2025-09-01",
        "end_date": "2027-08-31",
    }
    data = derive_contract_form_data(contract)
    assert data.employer.name == "Boulangerie Martin"
    assert data.cfa.name == "Centre ABC"
    assert data.contract.execution_start_date == "01/09/2025"
    assert data.contract.end_date == "31/08/2027"


def test_derive_from_empty_contract():
    data = derive_contract_form_data({"id": "c1"})
    assert data.model_dump(exclude_none=True) == {}


def test_derive_drops_invalid_cached_values():
    contract = {
        "id": "c1",
        "cached_data": {"apprentice": {"lastName": "Dupont", "highLevelAthlete": "maybe"}},
    }
    data = derive_contract_form_data(contract)
    assert data.apprentice.last_name == "Dupont"
    assert data.apprentice.high_level_athlete is None
    assert list(data.rejected_fields) == ["apprentice.highLevelAthlete"]


def test_derive_rejects_non_object_cached_data():
    with pytest.raises(ContractDataError):
        derive_contract_form_data({"id": "c1", "cached_data": ["not", "an", "object"]})
