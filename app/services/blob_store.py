"""Content-addressed storage for artifact blobs.

Blobs are keyed by the sha256 of their bytes, so identical uploads share one
stored object. ``ARTIFACT_STORAGE`` selects the backend: ``local`` writes under
``ARTIFACT_PATH``, ``s3`` writes to ``S3_BUCKET_NAME``.
"""

import hashlib
import logging
from pathlib import Path

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.config import settings
from app.errors import NotFoundError, StoreError

logger = logging.getLogger(__name__)


def sha256_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def blob_key(blob_hash: str) -> str:
    return f"artifacts/{blob_hash[:2]}/{blob_hash}"


class LocalBlobStore:
    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _path(self, blob_hash: str) -> Path:
        return self.root / blob_key(blob_hash)

    def exists(self, blob_hash: str) -> bool:
        return self._path(blob_hash).is_file()

    def put(self, blob_hash: str, data: bytes) -> None:
        path = self._path(blob_hash)
        if path.is_file():
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            logger.error("Writing blob %s failed: %s", blob_hash, exc)
            raise StoreError("Could not store the artifact blob.") from exc

    def get(self, blob_hash: str) -> bytes:
        try:
            return self._path(blob_hash).read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(
                f"The artifact blob [{blob_hash}] was not found.", ids=[blob_hash]
            ) from exc
        except OSError as exc:
            logger.error("Reading blob %s failed: %s", blob_hash, exc)
            raise StoreError("Could not read the artifact blob.") from exc

    def delete(self, blob_hash: str) -> None:
        path = self._path(blob_hash)
        try:
            path.unlink(missing_ok=True)
            if path.parent.is_dir() and not any(path.parent.iterdir()):
                path.parent.rmdir()
        except OSError as exc:
            logger.error("Deleting blob %s failed: %s", blob_hash, exc)
            raise StoreError("Could not delete the artifact blob.") from exc


class S3BlobStore:
    @staticmethod
    def is_configured() -> bool:
        return bool(
            settings.s3_endpoint_url
            and settings.s3_access_key
            and settings.s3_secret_key
        )

    def _get_client(self):
        if not self.is_configured():
            raise StoreError(
                "S3 storage is not configured. "
                "Set S3_ENDPOINT_URL, S3_ACCESS_KEY, and S3_SECRET_KEY."
            )
        return boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            region_name=settings.s3_region,
            config=Config(signature_version="s3v4"),
        )

    def exists(self, blob_hash: str) -> bool:
        try:
            self._get_client().head_object(
                Bucket=settings.s3_bucket_name, Key=blob_key(blob_hash)
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in {"404", "NoSuchKey"}:
                return False
            raise StoreError("Could not reach the artifact bucket.") from exc
        except BotoCoreError as exc:
            raise StoreError("Could not reach the artifact bucket.") from exc
        return True

    def put(self, blob_hash: str, data: bytes) -> None:
        if self.exists(blob_hash):
            return
        try:
            self._get_client().put_object(
                Bucket=settings.s3_bucket_name, Key=blob_key(blob_hash), Body=data
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("Uploading blob %s failed: %s", blob_hash, exc)
            raise StoreError("Could not store the artifact blob.") from exc

    def get(self, blob_hash: str) -> bytes:
        try:
            response = self._get_client().get_object(
                Bucket=settings.s3_bucket_name, Key=blob_key(blob_hash)
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in {"404", "NoSuchKey"}:
                raise NotFoundError(
                    f"The artifact blob [{blob_hash}] was not found.",
                    ids=[blob_hash],
                ) from exc
            raise StoreError("Could not read the artifact blob.") from exc
        except BotoCoreError as exc:
            raise StoreError("Could not read the artifact blob.") from exc
        return response["Body"].read()

    def delete(self, blob_hash: str) -> None:
        try:
            self._get_client().delete_object(
                Bucket=settings.s3_bucket_name, Key=blob_key(blob_hash)
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("Deleting blob %s failed: %s", blob_hash, exc)
            raise StoreError("Could not delete the artifact blob.") from exc


def get_blob_store():
    if settings.artifact_storage == "s3":
        return S3BlobStore()
    return LocalBlobStore(settings.artifact_path)
