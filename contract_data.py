"""
Contract form data: the semantic input of CERFA generation.

Every section and every field is optional. JSON payloads use camelCase keys
(as sent by the web client and cached from the contract provider); the models
expose snake_case attributes. Unknown keys are kept so the filler can report
them instead of failing. Values that do not validate are dropped and recorded
on the model, so one bad field never blocks a generation.
"""

import copy
import logging
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError
from pydantic.alias_generators import to_camel

# Logger Setup
logger = logging.getLogger("contract_data")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

FORM_DATE_FORMAT = "%d/%m/%Y"

# Provider keys that describe the contract record itself, not a form field
PROVIDER_METADATA_KEYS = ("id", "contractNumber", "status", "startDate", "endDate")


class ContractDataError(Exception):
    """Raised when contract data is not a JSON object at all."""


# ============================================================================
# Form Sections
# ============================================================================

class FormSection(BaseModel):
    """Base for every section: camelCase aliases, unknown keys retained."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        coerce_numbers_to_str=True,
    )


class EmployerSection(FormSection):
    name: Optional[str] = None
    siret: Optional[str] = Field(default=None, description="14-digit business registry number.")
    address_number: Optional[str] = None
    address_street: Optional[str] = None
    address_complement: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    type: Optional[str] = Field(default=None, description="Employer type code.")
    specific: Optional[str] = Field(default=None, description="Specific employer scheme code.")
    naf_code: Optional[str] = None
    total_employees: Optional[str] = None
    idcc: Optional[str] = Field(default=None, description="Collective agreement code.")


class ApprenticeSection(FormSection):
    last_name: Optional[str] = None
    usage_name: Optional[str] = None
    first_name: Optional[str] = None
    nir: Optional[str] = Field(default=None, description="15-digit national person identifier.")
    birth_date: Optional[str] = None
    sex: Optional[str] = Field(default=None, description="'M' or 'F'.")
    address_number: Optional[str] = None
    address_street: Optional[str] = None
    address_complement: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    birth_department: Optional[str] = None
    birth_city: Optional[str] = None
    nationality: Optional[str] = None
    social_regime: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    high_level_athlete: Optional[bool] = None
    disabled_worker: Optional[bool] = None
    previous_situation: Optional[str] = None
    last_diploma: Optional[str] = None
    last_class_year: Optional[str] = None
    last_diploma_title: Optional[str] = None
    highest_diploma: Optional[str] = None
    business_project: Optional[bool] = None


class MasterSection(FormSection):
    """Maître d'apprentissage."""
    last_name: Optional[str] = None
    first_name: Optional[str] = None
    birth_date: Optional[str] = None
    nir: Optional[str] = None
    email: Optional[str] = None
    job_title: Optional[str] = None
    diploma: Optional[str] = None
    diploma_level: Optional[str] = None


class ContractSection(FormSection):
    type: Optional[str] = None
    derogation_type: Optional[str] = None
    previous_contract_number: Optional[str] = None
    conclusion_date: Optional[str] = None
    execution_start_date: Optional[str] = None
    practical_training_start_date: Optional[str] = None
    amendment_effective_date: Optional[str] = None
    weekly_work_hours: Optional[str] = None
    weekly_work_minutes: Optional[str] = None
    end_date: Optional[str] = None
    dangerous_machines: Optional[bool] = None


class RemunerationYear(FormSection):
    """One contract year, split into at most two sub-periods."""
    start_date1: Optional[str] = None
    end_date1: Optional[str] = None
    percentage1: Optional[str] = None
    reference1: Optional[str] = Field(default=None, description="Legal basis (SMIC or SMC).")
    start_date2: Optional[str] = None
    end_date2: Optional[str] = None
    percentage2: Optional[str] = None
    reference2: Optional[str] = None


class RemunerationSection(FormSection):
    year1: Optional[RemunerationYear] = None
    year2: Optional[RemunerationYear] = None
    year3: Optional[RemunerationYear] = None
    year4: Optional[RemunerationYear] = None
    monthly_salary: Optional[str] = None
    retirement_fund: Optional[str] = None
    benefit_food_amount: Optional[str] = None
    benefit_housing_amount: Optional[str] = None
    benefit_other: Optional[str] = None


class CfaSection(FormSection):
    """Training provider (Centre de Formation d'Apprentis)."""
    is_company: Optional[bool] = None
    name: Optional[str] = None
    uai: Optional[str] = None
    siret: Optional[str] = None
    address_number: Optional[str] = None
    address_street: Optional[str] = None
    address_complement: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None


class TrainingSection(FormSection):
    target_diploma: Optional[str] = None
    diploma_title: Optional[str] = None
    diploma_code: Optional[str] = None
    rncp_code: Optional[str] = None
    organization: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    hours: Optional[str] = None
    alternate_location: Optional[str] = None
    alternate_location_uai: Optional[str] = None
    alternate_location_siret: Optional[str] = None
    alternate_location_address_number: Optional[str] = None
    alternate_location_address_street: Optional[str] = None
    alternate_location_address_complement: Optional[str] = None
    alternate_location_postal_code: Optional[str] = None
    alternate_location_city: Optional[str] = None


class SignatureSection(FormSection):
    city: Optional[str] = None
    date: Optional[str] = None


class AdminSection(FormSection):
    """Reserved for the receiving office; usually empty at generation time."""
    organism_name: Optional[str] = None
    organism_siret: Optional[str] = None
    reception_date: Optional[str] = None
    decision_date: Optional[str] = None
    deposit_number: Optional[str] = None
    amendment_number: Optional[str] = None


class ContractFormData(FormSection):
    """All sections of CERFA 10103*10."""
    employer: Optional[EmployerSection] = None
    apprentice: Optional[ApprenticeSection] = None
    master1: Optional[MasterSection] = None
    master2: Optional[MasterSection] = None
    contract: Optional[ContractSection] = None
    remuneration: Optional[RemunerationSection] = None
    cfa: Optional[CfaSection] = None
    training: Optional[TrainingSection] = None
    signature: Optional[SignatureSection] = None
    admin: Optional[AdminSection] = None

    # Dotted payload path -> validation message, for values dropped on input
    _rejected_fields: Dict[str, str] = PrivateAttr(default_factory=dict)

    @property
    def rejected_fields(self) -> Dict[str, str]:
        return self._rejected_fields


# ============================================================================
# Validation
# ============================================================================

def _drop_leaf(payload: Dict[str, Any], loc: Tuple[Any, ...]) -> bool:
    """Remove the value at an error location. Returns False if it is not there."""
    if not loc:
        return False
    node: Any = payload
    for key in loc[:-1]:
        if not isinstance(node, dict) or key not in node:
            return False
        node = node[key]
    if not isinstance(node, dict) or loc[-1] not in node:
        return False
    del node[loc[-1]]
    return True


def validate_form_data(payload: Dict[str, Any]) -> ContractFormData:
    """
    Validate a form-shaped payload, dropping the values that do not validate.

    Each dropped value is logged and recorded in the result's rejected_fields
    under its dotted payload path.

    Raises:
        ContractDataError: If an invalid value cannot be located in the payload
    """
    data = copy.deepcopy(payload)
    rejected: Dict[str, str] = {}

    while True:
        try:
            form_data = ContractFormData.model_validate(data)
            break
        except ValidationError as e:
            dropped = False
            for error in e.errors():
                path = ".".join(str(part) for part in error["loc"])
                if _drop_leaf(data, error["loc"]):
                    logger.warning(f"Dropping invalid value at {path}: {error['msg']}")
                    rejected[path] = error["msg"]
                    dropped = True
            if not dropped:
                raise ContractDataError(f"Invalid contract data: {e}") from e

    form_data._rejected_fields = rejected
    return form_data


# ============================================================================
# Derivation from persisted contracts
# ============================================================================

def format_form_date(value: Union[str, date, datetime, None]) -> Optional[str]:
    """
    Render a date the way the paper form expects it (DD/MM/YYYY).

    Strings that are not ISO dates are returned unchanged.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.strftime(FORM_DATE_FORMAT)
    if isinstance(value, date):
        return value.strftime(FORM_DATE_FORMAT)
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime(FORM_DATE_FORMAT)
    except ValueError:
        return value


def normalize_provider_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reshape a contract payload cached from the contract provider into the
    form-data shape.

    The provider sends contract dates at the top level, the apprentice's birth
    date as 'dateOfBirth' and the employer address as a single string. Payloads
    already in form shape pass through unchanged.
    """
    data = copy.deepcopy(payload)

    start_date = data.get("startDate")
    end_date = data.get("endDate")
    for key in PROVIDER_METADATA_KEYS:
        data.pop(key, None)

    apprentice = data.get("apprentice")
    if isinstance(apprentice, dict) and "dateOfBirth" in apprentice:
        date_of_birth = apprentice.pop("dateOfBirth")
        apprentice.setdefault("birthDate", format_form_date(date_of_birth))

    employer = data.get("employer")
    if isinstance(employer, dict) and isinstance(employer.get("address"), str):
        employer.setdefault("addressStreet", employer.pop("address"))

    if start_date or end_date:
        contract = data.setdefault("contract", {})
        if isinstance(contract, dict):
            if start_date:
                contract.setdefault("executionStartDate", format_form_date(start_date))
            if end_date:
                contract.setdefault("endDate", format_form_date(end_date))

    return data


def derive_contract_form_data(contract: Dict[str, Any]) -> ContractFormData:
    """
    Build the form data for a persisted contract.

    Uses the cached provider payload when there is one, otherwise the few
    columns stored on the contract row.

    Args:
        contract: Contract record as returned by database.get_contract()

    Returns:
        ContractFormData for this contract

    Raises:
        ContractDataError: If the cached payload is not a JSON object
    """
    cached = contract.get("cached_data")
    if cached:
        if not isinstance(cached, dict):
            raise ContractDataError(f"Cached data for contract {contract.get('id')} is not an object")
        return validate_form_data(normalize_provider_payload(cached))

    logger.info(f"No cached data for contract {contract.get('id')}, using contract columns")

    data: Dict[str, Any] = {}
    if contract.get("employer_name"):
        data["employer"] = {"name": contract["employer_name"]}
    if contract.get("cfa_name"):
        data["cfa"] = {"name": contract["cfa_name"]}

    contract_section = {}
    if contract.get("start_date"):
        contract_section["executionStartDate"] = format_form_date(contract["start_date"])
    if contract.get("end_date"):
        contract_section["endDate"] = format_form_date(contract["end_date"])
    if contract_section:
        data["contract"] = contract_section

    return validate_form_data(data)


def parse_contract_form_data(payload: Any) -> ContractFormData:
    """
    Validate form data supplied directly by a caller.

    Invalid values are dropped (see validate_form_data); only a payload that
    is not an object is refused.
    """
    if isinstance(payload, ContractFormData):
        return payload
    if not isinstance(payload, dict):
        raise ContractDataError("Contract data must be a JSON object")
    return validate_form_data(payload)
