"""
Template loading for CERFA generation.

The blank fillable template is read again on every generation call; nothing is
cached between requests. A template source is one of:
- a local file path
- an object key in the document bucket, written 's3://<key>'
- an http(s) URL
"""

import logging
from pathlib import Path
from typing import Optional

import requests

from s3_storage import StorageError

# Logger Setup
logger = logging.getLogger("template_loader")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

REQUEST_TIMEOUT = 30
PDF_HEADER = b"%PDF-"
HEADER_SEARCH_WINDOW = 1024
S3_SCHEME = "s3://"


class TemplateLoadError(Exception):
    """The template bytes are missing, unreadable or not a fillable PDF."""


class TemplateLoader:
    """Reads the blank template bytes from its configured source."""

    def __init__(self, source: str, document_store=None, timeout: int = REQUEST_TIMEOUT):
        """
        Args:
            source: File path, 's3://<key>' or http(s) URL
            document_store: Store used to fetch 's3://' sources
            timeout: HTTP timeout in seconds for URL sources
        """
        self.source = source
        self.document_store = document_store
        self.timeout = timeout

    def load_template(self) -> bytes:
        """
        Read the template bytes.

        Returns:
            Raw PDF bytes

        Raises:
            TemplateLoadError: If the template cannot be read or is not a PDF
        """
        if not self.source:
            raise TemplateLoadError("No template source configured")

        if self.source.startswith(S3_SCHEME):
            data = self._load_from_store(self.source[len(S3_SCHEME):])
        elif self.source.startswith(("http://", "https://")):
            data = self._load_from_url(self.source)
        else:
            data = self._load_from_file(Path(self.source))

        check_pdf_bytes(data, self.source)
        logger.info(f"Loaded template from {self.source} ({len(data)} bytes)")
        return data

    def _load_from_file(self, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as e:
            raise TemplateLoadError(f"Template not readable at {path}: {e}") from e

    def _load_from_store(self, key: str) -> bytes:
        if self.document_store is None:
            raise TemplateLoadError(f"No document store configured to fetch template '{key}'")
        try:
            return self.document_store.download_bytes(key)
        except StorageError as e:
            raise TemplateLoadError(f"Template download failed for '{key}': {e}") from e

    def _load_from_url(self, url: str) -> bytes:
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TemplateLoadError(f"Template download failed from {url}: {e}") from e
        return response.content


def check_pdf_bytes(data: Optional[bytes], source: str = "template") -> None:
    """
    Reject empty payloads and payloads without a PDF header.

    Raises:
        TemplateLoadError: If the bytes cannot be a PDF document
    """
    if not data:
        raise TemplateLoadError(f"Template is empty: {source}")
    if PDF_HEADER not in data[:HEADER_SEARCH_WINDOW]:
        raise TemplateLoadError(f"Template is not a PDF document: {source}")
