"""
Configuration for the CERFA generation service.

Values are read once from the environment (and a local .env file) and passed
explicitly to the collaborators that need them.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables
load_dotenv(Path(__file__).parent / ".env")

# Defaults
DEFAULT_TEMPLATE_SOURCE = str(
    Path(__file__).parent / "attached_assets" / "Template fillable - CERFA 10103-10 VS.pdf"
)
DEFAULT_STORAGE_ENDPOINT = "https://storage.googleapis.com"
DEFAULT_URL_EXPIRES_IN = 7 * 24 * 60 * 60  # 7 days


# ============================================================================
# Config Models
# ============================================================================

class ObjectStorageConfig(BaseModel):
    """Settings for the S3-compatible bucket holding generated documents."""
    bucket: Optional[str] = Field(default=None, description="Bucket name.")
    access_key_id: Optional[str] = Field(default=None, description="Access key ID.")
    secret_access_key: Optional[str] = Field(default=None, description="Secret access key.")
    endpoint_url: Optional[str] = Field(
        default=DEFAULT_STORAGE_ENDPOINT,
        description="S3 API endpoint. None uses the AWS default for the region."
    )
    region: str = Field(default="auto", description="Region name passed to boto3.")
    private_dir: str = Field(default=".private", description="Key prefix for private objects.")
    url_expires_in: int = Field(
        default=DEFAULT_URL_EXPIRES_IN,
        description="Lifetime in seconds of presigned download URLs."
    )

    @property
    def is_complete(self) -> bool:
        return all([self.bucket, self.access_key_id, self.secret_access_key])


class AppConfig(BaseModel):
    """Top-level application settings."""
    database_url: Optional[str] = None
    template_source: str = DEFAULT_TEMPLATE_SOURCE
    storage: ObjectStorageConfig = Field(default_factory=ObjectStorageConfig)
    port: int = 5000
    debug: bool = False


def load_config() -> AppConfig:
    """Build an AppConfig from environment variables."""
    database_url = os.environ.get("DATABASE_URL")
    if database_url and database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    storage = ObjectStorageConfig(
        bucket=os.environ.get("DEFAULT_OBJECT_STORAGE_BUCKET_ID"),
        access_key_id=os.environ.get("OBJECT_STORAGE_ACCESS_KEY_ID"),
        secret_access_key=os.environ.get("OBJECT_STORAGE_SECRET_ACCESS_KEY"),
        endpoint_url=os.environ.get("OBJECT_STORAGE_ENDPOINT", DEFAULT_STORAGE_ENDPOINT) or None,
        region=os.environ.get("OBJECT_STORAGE_REGION", "auto"),
        private_dir=os.environ.get("PRIVATE_OBJECT_DIR", ".private"),
        url_expires_in=int(os.environ.get("CERFA_URL_EXPIRES_IN", DEFAULT_URL_EXPIRES_IN)),
    )

    return AppConfig(
        database_url=database_url,
        template_source=os.environ.get("CERFA_TEMPLATE_SOURCE", DEFAULT_TEMPLATE_SOURCE),
        storage=storage,
        port=int(os.environ.get("PORT", 5000)),
        debug=os.environ.get("FLASK_DEBUG", "false").lower() == "true",
    )
