import pytest

import database
from pdf_fixtures import (
    ALL_CHECKBOX_FIELDS,
    BytesTemplateLoader,
    build_full_template,
    build_template,
)
from field_mapping import TEXT_FIELDS
from pdf_writer import CerfaFormFiller, FillOptions

# Fields left out of the partial template
PARTIAL_MISSING_TEXT = "text_35pzck"  # apprentice.nir
PARTIAL_MISSING_CHECKBOX = "checkbox_194bnrb"  # cfa.is_company: yes


@pytest.fixture(scope="session")
def template_bytes():
    return build_full_template()


@pytest.fixture(scope="session")
def partial_template_bytes():
    return build_template(
        [name for name in TEXT_FIELDS.values() if name != PARTIAL_MISSING_TEXT],
        [name for name in ALL_CHECKBOX_FIELDS if name != PARTIAL_MISSING_CHECKBOX],
    )


@pytest.fixture
def template_path(tmp_path, template_bytes):
    path = tmp_path / "cerfa_10103_10.pdf"
    path.write_bytes(template_bytes)
    return path


@pytest.fixture
def filler(template_bytes):
    """Filler that leaves fields editable so values can be read back."""
    return CerfaFormFiller(BytesTemplateLoader(template_bytes), FillOptions(flatten=False))


@pytest.fixture
def flattening_filler(template_bytes):
    return CerfaFormFiller(BytesTemplateLoader(template_bytes))


@pytest.fixture
def sqlite_db(tmp_path):
    """Point the database module at a fresh SQLite file."""
    original_url = database.DATABASE_URL
    database.configure_database(f"sqlite:///{tmp_path / 'cerfa.db'}")
    database.init_db()
    yield database
    database.configure_database(original_url)
