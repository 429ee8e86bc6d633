"""
CERFA generation orchestration.

Ties a contract to a generated document: derive the form data, fill the
template, store the PDF and record the generation. Every call produces a new
document and a new record; nothing is deduplicated.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import database
from config import AppConfig
from contract_data import derive_contract_form_data, parse_contract_form_data
from database import PersistenceError
from field_mapping import FORM_VERSION
from pdf_writer import CerfaFormFiller
from s3_storage import S3DocumentStore
from template_loader import TemplateLoader

# Logger Setup
logger = logging.getLogger("cerfa_service")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)


class ContractNotFoundError(Exception):
    """No contract exists with the requested ID."""


class CerfaGenerationService:
    """Generates, stores and records CERFAs for persisted contracts."""

    def __init__(self, filler, document_store, repository=database):
        """
        Args:
            filler: CerfaFormFiller (or any object with generate() and
                get_field_mapping_version())
            document_store: S3DocumentStore (or any object with store())
            repository: Module or object providing get_contract(),
                create_generation_record() and list_generation_records()
        """
        self.filler = filler
        self.document_store = document_store
        self.repository = repository

    def _get_contract(self, contract_id: str) -> Dict[str, Any]:
        contract = self.repository.get_contract(contract_id)
        if contract is None:
            raise ContractNotFoundError(f"Contract not found: {contract_id}")
        return contract

    def generate_for_contract(
        self,
        contract_id: str,
        user_id: str,
        form_data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Generate a CERFA for a contract and record it.

        Args:
            contract_id: Contract to generate for
            user_id: User triggering the generation
            form_data: Form data overriding what the contract provides

        Returns:
            The created generation record

        Raises:
            ContractNotFoundError: If the contract does not exist
            ContractDataError: If the form data is invalid
            TemplateLoadError, FormRenderError: If the PDF cannot be produced
            StoreWriteError: If the PDF cannot be stored
            PersistenceError: If the record cannot be written
        """
        contract = self._get_contract(contract_id)

        if form_data is not None:
            data = parse_contract_form_data(form_data)
        else:
            data = derive_contract_form_data(contract)

        logger.info(f"Generating CERFA for contract {contract_id} (user {user_id})")
        pdf_bytes = self.filler.generate(data)

        field_mapping_version = self.filler.get_field_mapping_version()
        generated_at = datetime.utcnow()
        filename = f"cerfa-{contract.get('contract_number') or contract_id}.pdf"
        metadata = {
            "contractId": contract_id,
            "userId": user_id,
            "generatedAt": generated_at.isoformat(),
            "fieldMappingVersion": field_mapping_version,
        }

        stored = self.document_store.store(filename, pdf_bytes, metadata)

        try:
            record = self.repository.create_generation_record(
                tenant_id=contract["tenant_id"],
                contract_id=contract_id,
                user_id=user_id,
                form_version=FORM_VERSION,
                reference=stored.reference,
                url=stored.url,
                field_mapping_version=field_mapping_version,
                generated_at=generated_at
            )
        except PersistenceError:
            logger.error(f"Stored object {stored.reference} has no generation record")
            raise

        logger.info(f"CERFA generated for contract {contract_id}: {stored.reference}")
        return record

    def list_generations(self, contract_id: str) -> List[Dict[str, Any]]:
        """List the CERFAs generated for a contract, newest first."""
        self._get_contract(contract_id)
        return self.repository.list_generation_records(contract_id)

    def render_preview(self, form_data: Optional[Dict[str, Any]]) -> bytes:
        """Fill the form without storing or recording anything."""
        data = parse_contract_form_data(form_data if form_data is not None else {})
        return self.filler.generate(data)


def build_service(config: AppConfig) -> CerfaGenerationService:
    """Wire the production collaborators from configuration."""
    if config.database_url:
        database.configure_database(config.database_url)

    document_store = S3DocumentStore(config.storage)
    template_loader = TemplateLoader(config.template_source, document_store=document_store)
    filler = CerfaFormFiller(template_loader)

    return CerfaGenerationService(filler, document_store, database)
