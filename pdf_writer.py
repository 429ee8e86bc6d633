"""
CERFA 10103*10 Form Filling Module.

Turns ContractFormData into a filled, flattened PDF. The process:
1. Loads the blank template and reads its form schema with PyPDFForm
2. Walks the data in field map order and resolves each leaf to a PDF field
3. Writes values to the PDF with PyPDFForm
4. Flattens the form with pypdf: every widget appearance is drawn onto its
   page and the form fields themselves are removed

Field-level problems never abort a generation: they are logged, reported and
the field is skipped. Only template and rendering failures are fatal.
"""

import io
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field
from pypdf import PdfReader, PdfWriter
from pypdf.generic import (
    ContentStream,
    DictionaryObject,
    IndirectObject,
    NameObject,
    RectangleObject,
    StreamObject,
)

from contract_data import ContractFormData, parse_contract_form_data
from field_mapping import (
    CHECKBOX_PAIRS,
    TEXT_FIELDS,
    CheckboxPair,
    all_physical_field_names,
    get_field_mapping_version,
)
from template_loader import TemplateLoadError

# Logger Setup
logger = logging.getLogger("pdf_writer")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

# PyPDFForm JSON-schema types per field kind
TEXT_SCHEMA_TYPE = "string"
CHECKBOX_SCHEMA_TYPE = "boolean"


class FormRenderError(Exception):
    """The PDF could not be filled or serialized after the template loaded."""


# ============================================================================
# Options and Report Schemas
# ============================================================================

class FillOptions(BaseModel):
    """Options for form filling behavior."""
    flatten: bool = Field(
        default=True,
        description="If true, make every form field permanent and non-editable."
    )


class FieldResolutionWarning(BaseModel):
    """A field that could not be written and was skipped."""
    semantic_field: Optional[str] = Field(default=None, description="Dotted path in the contract data.")
    pdf_field: Optional[str] = Field(default=None, description="Physical PDF field name if resolved.")
    message: str = Field(description="Why the field was skipped.")


class FillReport(BaseModel):
    """What one generation wrote and what it skipped."""
    field_mapping_version: str = Field(default_factory=get_field_mapping_version)
    template_field_count: int = Field(default=0, description="Fields found in the template.")
    fields_filled: int = Field(default=0, description="Text fields written.")
    checkboxes_checked: int = Field(default=0, description="Checkboxes checked.")
    fields_skipped: int = Field(default=0, description="Leaves skipped with a warning.")
    unmapped_template_fields: int = Field(default=0, description="Template fields the map does not use.")
    warnings: List[FieldResolutionWarning] = Field(default_factory=list)


# ============================================================================
# Helper Functions
# ============================================================================

def flatten_form_data(data: ContractFormData) -> Dict[str, Any]:
    """
    Collect the defined leaves of the form data keyed by dotted path.

    None values and empty strings are absent fields and are left out.
    Unknown keys are included under their raw names.
    """
    leaves: Dict[str, Any] = {}

    def _walk(prefix: str, node: Dict[str, Any]) -> None:
        for key, value in node.items():
            path = f"{prefix}.{key}" if prefix else key
            if isinstance(value, dict):
                _walk(path, value)
            elif value is None or value == "":
                continue
            else:
                leaves[path] = value

    _walk("", data.model_dump(exclude_none=True))
    return leaves


def resolve_checkbox_pair(value: Union[bool, str, None], pair: CheckboxPair) -> Dict[str, bool]:
    """
    Project a tri-state value onto its two checkboxes.

    Returns at most one field to check: the yes box for the yes value, the
    no box for the no value, nothing for None or an unrecognised value.
    """
    if value is None:
        return {}
    if isinstance(value, type(pair.yes_value)) and value == pair.yes_value:
        return {pair.yes_field: True}
    if isinstance(value, type(pair.no_value)) and value == pair.no_value:
        return {pair.no_field: True}
    return {}


def _warn(
    warnings: List[FieldResolutionWarning],
    message: str,
    semantic_field: Optional[str] = None,
    pdf_field: Optional[str] = None
) -> None:
    logger.warning(f"Skipping field {semantic_field or pdf_field}: {message}")
    warnings.append(FieldResolutionWarning(
        semantic_field=semantic_field,
        pdf_field=pdf_field,
        message=message
    ))


def _field_available(
    semantic_id: str,
    pdf_field: str,
    expected_type: str,
    template_fields: Optional[Dict[str, str]],
    warnings: List[FieldResolutionWarning]
) -> bool:
    """Check a resolved field against the loaded template, if one is given."""
    if template_fields is None:
        return True

    if pdf_field not in template_fields:
        _warn(warnings, f"PDF field '{pdf_field}' not found in template", semantic_id, pdf_field)
        return False

    actual_type = template_fields[pdf_field]
    if actual_type != expected_type:
        _warn(
            warnings,
            f"PDF field '{pdf_field}' is '{actual_type}', expected '{expected_type}'",
            semantic_id,
            pdf_field
        )
        return False

    return True


def build_field_values(
    data: ContractFormData,
    template_fields: Optional[Dict[str, str]] = None
) -> Tuple[Dict[str, Union[str, bool]], List[FieldResolutionWarning]]:
    """
    Resolve the form data into PDF field values.

    Args:
        data: Contract form data
        template_fields: Field name -> PyPDFForm schema type of the loaded
            template; None skips the template checks

    Returns:
        Tuple of (field_name -> value in field map order, warnings)
    """
    leaves = flatten_form_data(data)
    values: Dict[str, Union[str, bool]] = {}
    warnings: List[FieldResolutionWarning] = []

    for path, message in data.rejected_fields.items():
        _warn(warnings, f"Invalid value dropped: {message}", path)

    for semantic_id, pdf_field in TEXT_FIELDS.items():
        if semantic_id not in leaves:
            continue
        value = leaves.pop(semantic_id)

        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            _warn(warnings, f"Unsupported value type {type(value).__name__} for a text field",
                  semantic_id, pdf_field)
            continue

        if not _field_available(semantic_id, pdf_field, TEXT_SCHEMA_TYPE, template_fields, warnings):
            continue

        values[pdf_field] = value if isinstance(value, str) else str(value)

    for semantic_id, pair in CHECKBOX_PAIRS.items():
        if semantic_id not in leaves:
            continue
        value = leaves.pop(semantic_id)

        to_check = resolve_checkbox_pair(value, pair)
        if not to_check:
            _warn(warnings, f"Value {value!r} matches neither checkbox", semantic_id)
            continue

        for pdf_field, checked in to_check.items():
            if _field_available(semantic_id, pdf_field, CHECKBOX_SCHEMA_TYPE, template_fields, warnings):
                values[pdf_field] = checked

    for semantic_id in sorted(leaves):
        _warn(warnings, "No PDF field mapped for this data field", semantic_id)

    return values, warnings


def read_template_fields(template_bytes: bytes) -> Dict[str, str]:
    """
    Read the template's form fields with PyPDFForm.

    Returns:
        Dict of field name -> schema type ('string', 'boolean', ...)

    Raises:
        TemplateLoadError: If the template cannot be parsed or has no fields
    """
    from PyPDFForm import PdfWrapper

    try:
        schema = PdfWrapper(template_bytes).schema or {}
    except Exception as e:
        raise TemplateLoadError(f"Template could not be parsed: {e}") from e

    properties = schema.get("properties", {})
    if not properties:
        raise TemplateLoadError("Template has no fillable form fields")

    return {name: info.get("type", "unknown") for name, info in properties.items()}


def _owning_field(annot: DictionaryObject) -> DictionaryObject:
    # Kids of a field carry no /T; the name lives on the parent
    field = annot
    while "/T" not in field and "/Parent" in field:
        field = field["/Parent"].get_object()
    return field


def _widget_annotations(page) -> List[DictionaryObject]:
    if "/Annots" not in page:
        return []
    widgets = []
    for annot_ref in page["/Annots"]:
        annot = annot_ref.get_object()
        if annot.get("/Subtype") == "/Widget":
            widgets.append(annot)
    return widgets


def _normal_appearance(annot: DictionaryObject) -> Optional[IndirectObject]:
    """Reference to the appearance stream the widget currently shows, if any."""
    if "/AP" not in annot:
        return None
    appearance = annot["/AP"]
    if not isinstance(appearance, DictionaryObject) or "/N" not in appearance:
        return None

    normal_ref = appearance.raw_get("/N")
    normal = normal_ref.get_object()
    if isinstance(normal, StreamObject):
        ref = normal_ref
    elif isinstance(normal, DictionaryObject):
        # Checkboxes: one stream per state, /AS selects the visible one
        state = annot.get("/AS")
        if state is None or state not in normal:
            return None
        ref = normal.raw_get(state)
    else:
        return None

    return ref if isinstance(ref, IndirectObject) else None


def _draw_appearance(page, annot: DictionaryObject, appearance_ref: IndirectObject, xobject_name: str) -> bytes:
    """Register a widget appearance as a page XObject and return the commands drawing it."""
    if "/Resources" not in page:
        page[NameObject("/Resources")] = DictionaryObject()
    resources = page["/Resources"]
    if "/XObject" not in resources:
        resources[NameObject("/XObject")] = DictionaryObject()
    resources["/XObject"][NameObject(xobject_name)] = appearance_ref

    rect = RectangleObject(annot["/Rect"])
    bbox = appearance_ref.get_object().get("/BBox", [0, 0, 0, 0])
    x = float(rect.left) - float(bbox[0])
    y = float(rect.bottom) - float(bbox[1])
    return f"q 1 0 0 1 {x:.4f} {y:.4f} cm {xobject_name} Do Q".encode()


def flatten_form(pdf_bytes: bytes, text_values: Dict[str, str]) -> bytes:
    """
    Turn every form field into fixed page content.

    Filled text fields get a fresh appearance stream from pypdf, drawn onto
    the page. Every other widget is drawn in its current appearance state.
    The widget annotations and the AcroForm dictionary are then removed along
    with the field objects they leave unreferenced.

    Args:
        pdf_bytes: Filled PDF
        text_values: Field name -> text written to that field

    Returns:
        The flattened PDF
    """
    writer = PdfWriter(clone_from=PdfReader(io.BytesIO(pdf_bytes)))

    # PyPDFForm leaves the raw text as /AP; pypdf needs a real stream or none
    for page in writer.pages:
        for annot in _widget_annotations(page):
            if "/AP" in annot and not isinstance(annot["/AP"], DictionaryObject):
                del annot["/AP"]

    if text_values:
        writer.update_page_form_field_values(None, text_values, auto_regenerate=False, flatten=True)

    for page_number, page in enumerate(writer.pages):
        commands = []
        for index, annot in enumerate(_widget_annotations(page)):
            if str(_owning_field(annot).get("/T")) in text_values:
                continue
            appearance_ref = _normal_appearance(annot)
            if appearance_ref is None:
                continue
            xobject_name = f"/FlatWidget{page_number}_{index}"
            commands.append(_draw_appearance(page, annot, appearance_ref, xobject_name))

        if commands:
            contents = page.get_contents()
            data = contents.get_data() if contents is not None else b""
            merged = ContentStream(None, writer)
            merged.set_data(data + b"\n" + b"\n".join(commands) + b"\n")
            page.replace_contents(merged)

    writer.remove_annotations(subtypes=["/Widget"])
    if "/AcroForm" in writer.root_object:
        del writer.root_object["/AcroForm"]
    writer.compress_identical_objects()

    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def render_pdf(template_bytes: bytes, field_values: Dict[str, Any], flatten: bool = True) -> bytes:
    """
    Write values to the template using PyPDFForm.

    Args:
        template_bytes: Blank template
        field_values: Dict of field_name -> value to write
        flatten: Whether to flatten the form into page content

    Returns:
        Bytes of the filled PDF

    Raises:
        FormRenderError: If filling or serialization fails
    """
    from PyPDFForm import PdfWrapper

    logger.info(f"Writing {len(field_values)} fields to PDF...")
    logger.debug(f"Field values: {field_values}")

    try:
        filled = PdfWrapper(template_bytes).fill(field_values)
        pdf_bytes = filled.read()
        if flatten:
            text_values = {name: value for name, value in field_values.items() if isinstance(value, str)}
            pdf_bytes = flatten_form(pdf_bytes, text_values)
    except Exception as e:
        logger.error(f"Failed to write PDF: {e}")
        raise FormRenderError(f"Failed to render CERFA PDF: {e}") from e

    return pdf_bytes


# ============================================================================
# Form Filler
# ============================================================================

class CerfaFormFiller:
    """Fills CERFA 10103*10 from contract form data."""

    def __init__(self, template_loader, options: Optional[FillOptions] = None):
        """
        Args:
            template_loader: Object with load_template() -> bytes
            options: Fill behavior; flattens by default
        """
        self.template_loader = template_loader
        self.options = options or FillOptions()

    def get_field_mapping_version(self) -> str:
        return get_field_mapping_version()

    def generate(self, data: Union[ContractFormData, Dict[str, Any], None]) -> bytes:
        """
        Generate the filled CERFA.

        Args:
            data: ContractFormData, or a dict in its JSON shape

        Returns:
            PDF bytes; identical inputs give identical bytes

        Raises:
            TemplateLoadError: If the template is missing or unreadable
            ContractDataError: If data is not an object at all
            FormRenderError: If the PDF cannot be written
        """
        pdf_bytes, _ = self.generate_with_report(data)
        return pdf_bytes

    def generate_with_report(
        self,
        data: Union[ContractFormData, Dict[str, Any], None]
    ) -> Tuple[bytes, FillReport]:
        """Same as generate(), also returning what was written and skipped."""
        template_bytes = self.template_loader.load_template()
        template_fields = read_template_fields(template_bytes)

        form_data = parse_contract_form_data(data if data is not None else {})

        field_values, warnings = build_field_values(form_data, template_fields)
        pdf_bytes = render_pdf(template_bytes, field_values, flatten=self.options.flatten)

        mapped = set(all_physical_field_names())
        report = FillReport(
            template_field_count=len(template_fields),
            fields_filled=sum(1 for v in field_values.values() if not isinstance(v, bool)),
            checkboxes_checked=sum(1 for v in field_values.values() if v is True),
            fields_skipped=len(warnings),
            unmapped_template_fields=sum(1 for name in template_fields if name not in mapped),
            warnings=warnings,
        )

        logger.info(
            f"CERFA generated: {report.fields_filled} fields filled, "
            f"{report.checkboxes_checked} checkboxes checked, "
            f"{report.fields_skipped} skipped ({len(pdf_bytes)} bytes)"
        )
        return pdf_bytes, report


# ============================================================================
# CLI Entry Point
# ============================================================================

if __name__ == "__main__":
    import argparse
    import json

    from config import DEFAULT_TEMPLATE_SOURCE
    from template_loader import TemplateLoader

    parser = argparse.ArgumentParser(description="Fill CERFA 10103*10 from a contract data file")
    parser.add_argument("--data-file", required=True, help="JSON file with contract form data")
    parser.add_argument("--output", required=True, help="Path of the PDF to write")
    parser.add_argument("--template", default=DEFAULT_TEMPLATE_SOURCE, help="Template path or URL")
    parser.add_argument("--no-flatten", action="store_true", help="Leave form fields editable")

    args = parser.parse_args()

    # Load contract data
    with open(args.data_file, "r") as f:
        contract_data = json.load(f)

    filler = CerfaFormFiller(
        TemplateLoader(args.template),
        FillOptions(flatten=not args.no_flatten)
    )
    pdf, fill_report = filler.generate_with_report(contract_data)

    with open(args.output, "wb") as f:
        f.write(pdf)

    print(json.dumps(fill_report.model_dump(), indent=2))
