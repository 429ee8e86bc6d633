"""
Flask API Server for CERFA generation.

Endpoints:
- GET  /api/health - Service status and versions
- GET  /api/cerfa/field-mapping - The field map currently in use
- POST /api/contracts/<contract_id>/cerfa/generate - Generate, store and record a CERFA
- GET  /api/contracts/<contract_id>/cerfa - CERFAs generated for a contract
- POST /api/cerfa/preview - Fill the form and return the PDF without storing it

The acting user comes from the X-User-Id header set by the authentication
layer in front of this service.
"""

import io
import logging
from typing import Optional

from flask import Flask, jsonify, request, send_file
from flask_cors import CORS

import database
from cerfa_service import ContractNotFoundError, build_service
from config import load_config
from contract_data import ContractDataError
from database import PersistenceError
from field_mapping import CHECKBOX_PAIRS, FORM_VERSION, TEXT_FIELDS, get_field_mapping_version
from pdf_writer import FormRenderError
from s3_storage import StoreWriteError
from template_loader import TemplateLoadError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(message)s"
)
logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"

# Initialize Flask app
app = Flask(__name__)
CORS(app)  # Enable CORS for all routes

# Domain error -> HTTP status
ERROR_STATUS = (
    (ContractNotFoundError, 404),
    (ContractDataError, 422),
    (TemplateLoadError, 500),
    (FormRenderError, 500),
    (StoreWriteError, 502),
    (PersistenceError, 500),
)


def get_service():
    """Get the generation service, building it from the environment on first use."""
    service = app.config.get("CERFA_SERVICE")
    if service is None:
        service = build_service(load_config())
        app.config["CERFA_SERVICE"] = service
    return service


def get_user_id() -> Optional[str]:
    user_id = request.headers.get(USER_ID_HEADER, "").strip()
    return user_id or None


def unauthorized():
    return jsonify({
        "success": False,
        "error": f"Missing {USER_ID_HEADER} header"
    }), 401


def error_response(e: Exception, action: str):
    """Map a domain error to its JSON error response."""
    for error_type, status in ERROR_STATUS:
        if isinstance(e, error_type):
            if status >= 500:
                logger.error(f"Failed to {action}: {e}")
            else:
                logger.warning(f"Failed to {action}: {e}")
            return jsonify({"success": False, "error": str(e)}), status

    logger.exception(f"Failed to {action}: {e}")
    return jsonify({"success": False, "error": str(e)}), 500


def read_contract_data(required: bool = False):
    """
    Read the optional 'contract_data' object from the request body.

    Returns:
        Tuple of (contract_data or None, error response or None)
    """
    body = request.get_json(silent=True)
    if body is None:
        if required or request.get_data():
            return None, (jsonify({"success": False, "error": "Request body must be JSON"}), 400)
        return None, None

    if not isinstance(body, dict):
        return None, (jsonify({"success": False, "error": "Request body must be a JSON object"}), 400)

    return body.get("contract_data"), None


# ============================================================================
# API Endpoints
# ============================================================================

@app.route("/api/health", methods=["GET"])
def health_check():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "cerfa-generation-api",
        "form_version": FORM_VERSION,
        "field_mapping_version": get_field_mapping_version()
    })


@app.route("/api/cerfa/field-mapping", methods=["GET"])
def get_field_mapping():
    """Return the field map: semantic field -> PDF field name."""
    return jsonify({
        "success": True,
        "form_version": FORM_VERSION,
        "field_mapping_version": get_field_mapping_version(),
        "text_fields": dict(TEXT_FIELDS),
        "checkbox_pairs": {
            semantic_id: pair._asdict() for semantic_id, pair in CHECKBOX_PAIRS.items()
        }
    })


@app.route("/api/contracts/<contract_id>/cerfa/generate", methods=["POST"])
def generate_cerfa(contract_id: str):
    """
    Generate a CERFA for a contract.

    Request body (optional):
    {
        "contract_data": {"apprentice": {"lastName": "Dupont", ...}, ...}
    }

    Without contract_data, the data is derived from the stored contract.

    The generation record comes wrapped in the usual success envelope
    rather than as the bare response body.

    Response (201):
    {
        "success": true,
        "record": {"id": "...", "storage_url": "...", "form_version": "10103_10", ...}
    }
    """
    user_id = get_user_id()
    if user_id is None:
        return unauthorized()

    contract_data, error = read_contract_data()
    if error:
        return error

    try:
        record = get_service().generate_for_contract(contract_id, user_id, contract_data)
        return jsonify({"success": True, "record": record}), 201
    except Exception as e:
        return error_response(e, f"generate CERFA for contract {contract_id}")


@app.route("/api/contracts/<contract_id>/cerfa", methods=["GET"])
def list_cerfas(contract_id: str):
    """
    List the CERFAs generated for a contract, newest first.

    Response:
    {
        "success": true,
        "count": 2,
        "records": [{"id": "...", "storage_url": "...", ...}, ...]
    }
    """
    if get_user_id() is None:
        return unauthorized()

    try:
        records = get_service().list_generations(contract_id)
        return jsonify({"success": True, "count": len(records), "records": records})
    except Exception as e:
        return error_response(e, f"list CERFAs for contract {contract_id}")


@app.route("/api/cerfa/preview", methods=["POST"])
def preview_cerfa():
    """
    Fill the form with the given data and return the PDF. Nothing is stored.

    Request body:
    {
        "contract_data": {...}
    }
    """
    if get_user_id() is None:
        return unauthorized()

    contract_data, error = read_contract_data(required=True)
    if error:
        return error

    try:
        pdf_bytes = get_service().render_preview(contract_data)
    except Exception as e:
        return error_response(e, "render CERFA preview")

    return send_file(
        io.BytesIO(pdf_bytes),
        mimetype="application/pdf",
        download_name="cerfa-preview.pdf"
    )


# ============================================================================
# Error Handlers
# ============================================================================

@app.errorhandler(404)
def not_found(e):
    return jsonify({"success": False, "error": "Endpoint not found"}), 404


@app.errorhandler(500)
def server_error(e):
    return jsonify({"success": False, "error": "Internal server error"}), 500


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    config = load_config()
    app.config["CERFA_SERVICE"] = build_service(config)
    if config.database_url:
        database.init_db()

    logger.info(f"Starting server on port {config.port}")
    app.run(host="0.0.0.0", port=config.port, debug=config.debug)
