"""
CERFA 10103*10 Field Map.

Associates semantic field identifiers (dotted paths into ContractFormData,
e.g. 'apprentice.last_name') with the literal field names burned into the
fillable PDF template. The physical names are positional names chosen by the
template's designer, so they carry no meaning of their own.

FIELD_MAPPING_VERSION must be bumped whenever a physical name changes or a
field is added to or removed from the map. The version is stored with every
generated document.
"""

import argparse
import json
import logging
from dataclasses import dataclass, field as dataclass_field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Union

# Logger Setup
logger = logging.getLogger("field_mapping")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

# Versions
FIELD_MAPPING_VERSION = "1.0.0"
FORM_VERSION = "10103_10"


class CheckboxPair(NamedTuple):
    """Two mutually exclusive checkboxes rendering one tri-state value."""
    yes_field: str
    no_field: str
    yes_value: Union[bool, str] = True
    no_value: Union[bool, str] = False


# ============================================================================
# Text Fields
# ============================================================================

TEXT_FIELDS: Mapping[str, str] = MappingProxyType({
    # L'EMPLOYEUR
    "employer.name": "text_1exb",
    "employer.siret": "text_8nshp",
    "employer.address_number": "text_2bcjf",
    "employer.address_street": "text_3zcks",
    "employer.address_complement": "text_9wvky",
    "employer.postal_code": "text_10dbyf",
    "employer.city": "text_11zobb",
    "employer.phone": "text_12ckab",
    "employer.email": "text_13ifko",
    "employer.type": "text_18hlcf",
    "employer.specific": "text_27ibfd",
    "employer.naf_code": "text_14lejr",
    "employer.total_employees": "text_15qkda",
    "employer.idcc": "text_16rwtn",

    # L'APPRENTI(E)
    "apprentice.last_name": "text_31tkvp",
    "apprentice.usage_name": "text_33ijka",
    "apprentice.first_name": "text_34zhaf",
    "apprentice.nir": "text_35pzck",
    "apprentice.birth_date": "text_36ldqh",
    "apprentice.address_number": "text_39gpxj",
    "apprentice.address_street": "text_40nksu",
    "apprentice.address_complement": "text_41lzzc",
    "apprentice.postal_code": "text_42bmvd",
    "apprentice.city": "text_32rrxh",
    "apprentice.birth_department": "text_37wwzu",
    "apprentice.birth_city": "text_38fqwe",
    "apprentice.nationality": "text_47lloa",
    "apprentice.social_regime": "text_48ekvo",
    "apprentice.phone": "text_49chhs",
    "apprentice.email": "text_50avys",
    "apprentice.previous_situation": "text_54tog",
    "apprentice.last_diploma": "text_55y",
    "apprentice.last_class_year": "text_56jasz",
    "apprentice.last_diploma_title": "text_57pplz",
    "apprentice.highest_diploma": "text_58pgjd",

    # LE MAÎTRE D'APPRENTISSAGE
    "master1.last_name": "text_76lrya",
    "master1.first_name": "text_78jnsb",
    "master1.birth_date": "text_79fpuo",
    "master1.nir": "text_80jtyl",
    "master1.email": "text_81oxuj",
    "master1.job_title": "text_82tbzb",
    "master1.diploma": "text_85nxhd",
    "master1.diploma_level": "text_75tsxh",

    # MAÎTRE D'APPRENTISSAGE n°2
    "master2.last_name": "text_68qsoo",
    "master2.first_name": "text_69ldez",
    "master2.birth_date": "text_70zknq",
    "master2.nir": "text_71czqp",
    "master2.email": "text_72rzat",
    "master2.job_title": "text_73fmgm",
    "master2.diploma": "text_77lfxs",
    "master2.diploma_level": "text_74trwm",

    # LE CONTRAT
    "contract.type": "text_97iuva",
    "contract.derogation_type": "text_94apkz",
    "contract.previous_contract_number": "text_92akky",
    "contract.conclusion_date": "text_93mlle",
    "contract.execution_start_date": "text_95psuy",
    "contract.practical_training_start_date": "text_96jvfx",
    "contract.amendment_effective_date": "text_100puso",
    "contract.weekly_work_hours": "text_99sksn",
    "contract.weekly_work_minutes": "text_101npnm",
    "contract.end_date": "text_102hu",

    # RÉMUNÉRATION - 1re année
    "remuneration.year1.start_date1": "text_107glkc",
    "remuneration.year1.end_date1": "text_108txvl",
    "remuneration.year1.percentage1": "text_113ojtt",
    "remuneration.year1.reference1": "text_109sqsh",
    "remuneration.year1.start_date2": "text_110hron",
    "remuneration.year1.end_date2": "text_111bqpg",
    "remuneration.year1.percentage2": "text_112wueq",
    "remuneration.year1.reference2": "text_103dptq",

    # RÉMUNÉRATION - 2e année
    "remuneration.year2.start_date1": "text_116igca",
    "remuneration.year2.end_date1": "text_119tszr",
    "remuneration.year2.percentage1": "text_127hyaj",
    "remuneration.year2.reference1": "text_118ec",
    "remuneration.year2.start_date2": "text_123movy",
    "remuneration.year2.end_date2": "text_128xqew",
    "remuneration.year2.percentage2": "text_126eeyn",
    "remuneration.year2.reference2": "text_133lohh",

    # RÉMUNÉRATION - 3e année
    "remuneration.year3.start_date1": "text_129ztfp",
    "remuneration.year3.end_date1": "text_130jzgp",
    "remuneration.year3.percentage1": "text_131hcbr",
    "remuneration.year3.reference1": "text_132ompm",
    "remuneration.year3.start_date2": "text_133dvjk",
    "remuneration.year3.end_date2": "text_134wrhq",
    "remuneration.year3.percentage2": "text_144qgnp",
    "remuneration.year3.reference2": "text_98syzp",

    # RÉMUNÉRATION - 4e année
    "remuneration.year4.start_date1": "text_190aaoh",
    "remuneration.year4.end_date1": "text_191alwj",
    "remuneration.year4.percentage1": "text_192nfph",
    "remuneration.year4.reference1": "text_193mvke",
    "remuneration.year4.start_date2": "text_199bpjv",
    "remuneration.year4.end_date2": "text_200nmeh",
    "remuneration.year4.percentage2": "text_201aqxb",
    "remuneration.year4.reference2": "text_104vrbz",

    "remuneration.monthly_salary": "text_105duvn",
    "remuneration.retirement_fund": "text_106iyhp",
    "remuneration.benefit_food_amount": "text_63fjsf",
    "remuneration.benefit_housing_amount": "text_60jxp",
    "remuneration.benefit_other": "text_61pwnb",

    # LA FORMATION - CFA
    "cfa.name": "text_139ftdv",
    "cfa.uai": "text_140cagp",
    "cfa.siret": "text_141hnaz",
    "cfa.address_number": "text_142xplj",
    "cfa.address_street": "text_143bcnv",
    "cfa.address_complement": "text_145yoqy",
    "cfa.postal_code": "text_146tvko",
    "cfa.city": "text_147kwez",

    # LA FORMATION - diplôme et lieu
    "training.target_diploma": "text_154wadn",
    "training.diploma_title": "text_155oqyv",
    "training.diploma_code": "text_156puge",
    "training.rncp_code": "text_157qqvj",
    "training.organization": "text_158tqcd",
    "training.start_date": "text_159cxaa",
    "training.end_date": "text_160wnav",
    "training.hours": "text_161jcwj",
    "training.alternate_location": "text_169yeej",
    "training.alternate_location_uai": "text_170cps",
    "training.alternate_location_siret": "text_171bamt",
    "training.alternate_location_address_number": "text_172noho",
    "training.alternate_location_address_street": "text_174fdqn",
    "training.alternate_location_address_complement": "text_175icpv",
    "training.alternate_location_postal_code": "text_176lnxw",
    "training.alternate_location_city": "text_177xazh",

    # SIGNATURES
    "signature.city": "text_202jfym",
    "signature.date": "text_203dtht",

    # CADRE RÉSERVÉ À L'ORGANISME
    "admin.organism_name": "text_204zzqy",
    "admin.organism_siret": "text_205rfln",
    "admin.reception_date": "text_206qolq",
    "admin.decision_date": "text_207ibxg",
    "admin.deposit_number": "text_208ctvi",
    "admin.amendment_number": "text_209bfyt",
})


# ============================================================================
# Checkbox Pairs (tri-state values)
# ============================================================================

CHECKBOX_PAIRS: Mapping[str, CheckboxPair] = MappingProxyType({
    "apprentice.sex": CheckboxPair("checkbox_51itfw", "checkbox_52dfmo", "M", "F"),
    "apprentice.high_level_athlete": CheckboxPair("checkbox_62uqtx", "checkbox_5upxo"),
    "apprentice.disabled_worker": CheckboxPair("checkbox_7ocmh", "checkbox_88pmyq"),
    "apprentice.business_project": CheckboxPair("checkbox_84zotl", "checkbox_90thrm"),
    "contract.dangerous_machines": CheckboxPair("checkbox_86ojxt", "checkbox_87zxsw"),
    "cfa.is_company": CheckboxPair("checkbox_194bnrb", "checkbox_196ixda"),
})


# ============================================================================
# Lookups
# ============================================================================

def get_field_mapping_version() -> str:
    """Return the currently active mapping version."""
    return FIELD_MAPPING_VERSION


def get_physical_field_name(semantic_id: str) -> Optional[str]:
    """
    Return the PDF field name for a text field.

    Args:
        semantic_id: Dotted path such as 'employer.siret'

    Returns:
        The physical field name, or None if the field is not mapped
    """
    return TEXT_FIELDS.get(semantic_id)


def get_checkbox_pair(semantic_id: str) -> Optional[CheckboxPair]:
    """Return the checkbox pair for a tri-state field, or None."""
    return CHECKBOX_PAIRS.get(semantic_id)


def is_mapped(semantic_id: str) -> bool:
    return semantic_id in TEXT_FIELDS or semantic_id in CHECKBOX_PAIRS


def all_physical_field_names() -> List[str]:
    """All physical names referenced by the map, in declaration order."""
    names = list(TEXT_FIELDS.values())
    for pair in CHECKBOX_PAIRS.values():
        names.extend([pair.yes_field, pair.no_field])
    return names


def validate_field_map() -> List[str]:
    """
    Check the map for data-quality problems.

    Returns:
        List of problem descriptions (empty if the map is consistent)
    """
    problems = []

    seen: Dict[str, str] = {}
    entries = list(TEXT_FIELDS.items())
    for semantic_id, pair in CHECKBOX_PAIRS.items():
        entries.append((f"{semantic_id}:{pair.yes_value}", pair.yes_field))
        entries.append((f"{semantic_id}:{pair.no_value}", pair.no_field))

    for semantic_id, physical_name in entries:
        if physical_name in seen:
            problems.append(
                f"Physical field '{physical_name}' mapped by both "
                f"'{seen[physical_name]}' and '{semantic_id}'"
            )
        else:
            seen[physical_name] = semantic_id

    for semantic_id, pair in CHECKBOX_PAIRS.items():
        if pair.yes_value == pair.no_value:
            problems.append(f"Checkbox pair '{semantic_id}' uses the same value for both boxes")
        if semantic_id in TEXT_FIELDS:
            problems.append(f"'{semantic_id}' is mapped both as text and as a checkbox pair")

    return problems


# ============================================================================
# Template Audit
# ============================================================================

@dataclass
class TemplateAudit:
    """Differences between the field map and one template revision."""
    template_field_count: int = 0
    mapped_field_count: int = 0
    missing_from_template: List[str] = dataclass_field(default_factory=list)
    unmapped_template_fields: List[str] = dataclass_field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.missing_from_template

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_mapping_version": FIELD_MAPPING_VERSION,
            "template_field_count": self.template_field_count,
            "mapped_field_count": self.mapped_field_count,
            "missing_from_template": self.missing_from_template,
            "unmapped_template_fields": self.unmapped_template_fields,
        }

    def __str__(self) -> str:
        return (
            f"Template audit (map {FIELD_MAPPING_VERSION}): "
            f"{self.template_field_count} template fields, "
            f"{len(self.missing_from_template)} mapped fields missing, "
            f"{len(self.unmapped_template_fields)} template fields unmapped"
        )


def audit_template(template_field_names: Iterable[str]) -> TemplateAudit:
    """
    Compare a template's field names against the map.

    Args:
        template_field_names: Field names read from a template

    Returns:
        TemplateAudit listing mapped names the template lacks and
        template fields the map does not use
    """
    template_names = list(template_field_names)
    template_set = set(template_names)
    mapped = all_physical_field_names()
    mapped_set = set(mapped)

    return TemplateAudit(
        template_field_count=len(template_names),
        mapped_field_count=len(mapped),
        missing_from_template=[name for name in mapped if name not in template_set],
        unmapped_template_fields=sorted(name for name in template_set if name not in mapped_set),
    )


# ============================================================================
# CLI Entry Point
# ============================================================================

def main():
    parser = argparse.ArgumentParser(description="Inspect a CERFA template against the field map")
    parser.add_argument("--template", required=True, help="Path to the fillable PDF template")
    parser.add_argument("--json", action="store_true", help="Print the audit as JSON")
    args = parser.parse_args()

    from PyPDFForm import PdfWrapper

    with open(args.template, "rb") as f:
        schema = PdfWrapper(f.read()).schema or {}
    properties = schema.get("properties", {})

    problems = validate_field_map()
    for problem in problems:
        logger.warning(problem)

    audit = audit_template(properties.keys())

    if args.json:
        print(json.dumps(audit.to_dict(), indent=2))
        return

    print(f"\n=== CERFA {FORM_VERSION} form fields ({len(properties)} total) ===\n")
    for name, info in properties.items():
        print(f"Field: \"{name}\" ({info.get('type', 'unknown')})")
    print()
    print(audit)
    for name in audit.missing_from_template:
        print(f"  missing: {name}")
    for name in audit.unmapped_template_fields:
        print(f"  unmapped: {name}")


if __name__ == "__main__":
    main()
