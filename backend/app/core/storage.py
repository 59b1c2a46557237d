"""Object storage for uploaded CV files.

Two backends with the same blocking interface (put/get/delete). Callers run
them through asyncio.to_thread so uploads don't block the event loop.
"""

from pathlib import Path

import boto3
from botocore.exceptions import ClientError

from app.config import load_settings
from app.core.logger import logger


class StorageError(Exception):
    """Raised when an object cannot be written or read."""


class LocalStorage:
    """Files under a root directory, keyed by relative path."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}")
        return path

    def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise StorageError(f"Object not found: {key}")
        return path.read_bytes()

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class S3Storage:
    """AWS S3 bucket via boto3."""

    def __init__(self, bucket: str, region: str):
        self.bucket = bucket
        self.client = boto3.client("s3", region_name=region)

    def put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except ClientError as e:
            raise StorageError(f"S3 upload failed for {key}: {e}") from e

    def get(self, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise StorageError(f"S3 download failed for {key}: {e}") from e
        return response["Body"].read()

    def delete(self, key: str) -> None:
        # S3 DeleteObject succeeds for missing keys
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise StorageError(f"S3 delete failed for {key}: {e}") from e


_storage: LocalStorage | S3Storage | None = None


def get_storage() -> LocalStorage | S3Storage:
    global _storage
    if _storage is None:
        settings = load_settings()
        if settings.storage_backend == "s3":
            _storage = S3Storage(settings.s3_bucket, settings.s3_region)
            logger.info(f"Storage: S3 bucket '{settings.s3_bucket}'")
        else:
            _storage = LocalStorage(settings.storage_dir)
            logger.info(f"Storage: local directory '{settings.storage_dir}'")
    return _storage


def set_storage(storage: LocalStorage | S3Storage | None) -> None:
    global _storage
    _storage = storage
