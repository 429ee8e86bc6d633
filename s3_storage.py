"""
S3 Storage Module for generated CERFA documents.

Works against any S3-compatible endpoint (Google Cloud Storage interoperability
by default). Generated PDFs are written under '<private_dir>/cerfas/' and
shared through presigned download URLs.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import ObjectStorageConfig, load_config

# Logger setup
logger = logging.getLogger("s3_storage")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

CERFA_FOLDER = "cerfas"
PDF_CONTENT_TYPE = "application/pdf"


class StorageError(Exception):
    """Base error for document store operations."""


class StoreWriteError(StorageError):
    """The document could not be written to the bucket."""


class StoreReadError(StorageError):
    """The object could not be read from the bucket."""


@dataclass
class StoredDocument:
    """Where a stored document lives and how to download it."""
    reference: str
    url: str


class S3DocumentStore:
    """Writes and reads documents in one S3-compatible bucket."""

    def __init__(self, config: ObjectStorageConfig, client=None):
        """
        Args:
            config: Bucket, credentials and endpoint settings
            client: Pre-built boto3 S3 client (created lazily when None)
        """
        self.config = config
        self._client = client

    @property
    def client(self):
        """
        Get or create the boto3 S3 client.

        Raises:
            ValueError: If bucket or credentials are not configured
        """
        if self._client is None:
            if not self.config.is_complete:
                raise ValueError(
                    "Missing required object storage settings. "
                    "Ensure DEFAULT_OBJECT_STORAGE_BUCKET_ID, OBJECT_STORAGE_ACCESS_KEY_ID, "
                    "and OBJECT_STORAGE_SECRET_ACCESS_KEY are set."
                )

            self._client = boto3.client(
                "s3",
                aws_access_key_id=self.config.access_key_id,
                aws_secret_access_key=self.config.secret_access_key,
                endpoint_url=self.config.endpoint_url,
                region_name=self.config.region
            )
            logger.info(f"S3 client initialized for bucket: {self.config.bucket}")

        return self._client

    @property
    def bucket(self) -> Optional[str]:
        return self.config.bucket

    def get_object_key(self, filename: str) -> str:
        """
        Build a unique key for a generated document.

        Args:
            filename: The filename (without path)

        Returns:
            Key like '.private/cerfas/1718000000000-cerfa-42.pdf'
        """
        timestamp_ms = int(time.time() * 1000)
        return f"{self.config.private_dir}/{CERFA_FOLDER}/{timestamp_ms}-{filename}"

    def store(self, filename: str, data: bytes, metadata: Optional[Dict[str, str]] = None) -> StoredDocument:
        """
        Upload PDF bytes and return their reference and a download URL.

        Args:
            filename: Name used in the object key
            data: PDF bytes
            metadata: Object metadata (values are stored as strings)

        Returns:
            StoredDocument with the object key and a presigned URL

        Raises:
            StoreWriteError: If storage is not configured, or the upload or URL signing fails
        """
        key = self.get_object_key(filename)
        object_metadata = {str(k): str(v) for k, v in (metadata or {}).items()}

        logger.info(f"Uploading {len(data)} bytes to s3://{self.bucket}/{key}")

        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=PDF_CONTENT_TYPE,
                Metadata=object_metadata
            )
            url = self.generate_presigned_url(key)
        except (ValueError, ClientError, BotoCoreError) as e:
            logger.error(f"Failed to store {key}: {e}")
            raise StoreWriteError(f"Failed to store document '{filename}': {e}") from e

        logger.info(f"Successfully uploaded to S3: {key}")
        return StoredDocument(reference=key, url=url)

    def generate_presigned_url(self, key: str, expires_in: Optional[int] = None) -> str:
        """
        Generate a presigned URL for downloading an object.

        Args:
            key: Object key
            expires_in: URL lifetime in seconds (default: configured, 7 days)

        Returns:
            Presigned GET URL
        """
        if expires_in is None:
            expires_in = self.config.url_expires_in

        url = self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in
        )

        logger.info(f"Generated presigned URL for {key} (expires in {expires_in}s)")
        return url

    def download_bytes(self, key: str) -> bytes:
        """
        Read an object into memory.

        Raises:
            StoreReadError: If the object cannot be fetched
        """
        logger.info(f"Downloading s3://{self.bucket}/{key}")
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise StoreReadError(f"Failed to read '{key}': {e}") from e

    def test_connection(self) -> bool:
        """
        Test the bucket connection by listing one object.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            self.client.list_objects_v2(Bucket=self.bucket, MaxKeys=1)
            logger.info("S3 connection test successful")
            return True
        except (ValueError, ClientError, BotoCoreError) as e:
            logger.error(f"S3 connection test failed: {e}")
            return False


if __name__ == "__main__":
    # Test bucket connection when run directly
    storage_config = load_config().storage
    print("Testing object storage connection...")

    if not storage_config.is_complete:
        print("Error: Missing required environment variables")
        print(f"  DEFAULT_OBJECT_STORAGE_BUCKET_ID: {'set' if storage_config.bucket else 'NOT SET'}")
        print(f"  OBJECT_STORAGE_ACCESS_KEY_ID: {'set' if storage_config.access_key_id else 'NOT SET'}")
        print(f"  OBJECT_STORAGE_SECRET_ACCESS_KEY: {'set' if storage_config.secret_access_key else 'NOT SET'}")
        raise SystemExit(1)

    print(f"Bucket: {storage_config.bucket}")
    print(f"Endpoint: {storage_config.endpoint_url}")

    if S3DocumentStore(storage_config).test_connection():
        print("Connection successful!")
    else:
        print("Connection failed!")
        raise SystemExit(1)
