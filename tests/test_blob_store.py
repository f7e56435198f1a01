from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError
from fastapi import HTTPException

from app.config import settings
from app.services.blob_store import (
    LocalBlobStore,
    S3BlobStore,
    blob_key,
    get_blob_store,
    sha256_hash,
)

DATA = b"portal gun schematics"
HASH = sha256_hash(DATA)


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "HeadObject")


def _configure(mock_settings) -> None:
    mock_settings.s3_endpoint_url = "http://localhost:9000"
    mock_settings.s3_access_key = "test-key"
    mock_settings.s3_secret_key = "test-secret"
    mock_settings.s3_region = "us-east-1"
    mock_settings.s3_bucket_name = "mbee-artifacts"


class TestBlobKey:
    def test_key_format(self):
        assert blob_key(HASH) == f"artifacts/{HASH[:2]}/{HASH}"


class TestLocalBlobStore:
    def test_put_and_get(self, tmp_path):
        store = LocalBlobStore(tmp_path)
        store.put(HASH, DATA)
        assert store.exists(HASH)
        assert store.get(HASH) == DATA
        assert (tmp_path / "artifacts" / HASH[:2] / HASH).is_file()

    def test_missing_blob(self, tmp_path):
        with pytest.raises(HTTPException) as exc:
            LocalBlobStore(tmp_path).get(HASH)
        assert exc.value.status_code == 404

    def test_delete_removes_empty_folder(self, tmp_path):
        store = LocalBlobStore(tmp_path)
        store.put(HASH, DATA)
        store.delete(HASH)
        assert not store.exists(HASH)
        assert not (tmp_path / "artifacts" / HASH[:2]).exists()

    def test_delete_missing_is_quiet(self, tmp_path):
        LocalBlobStore(tmp_path).delete(HASH)


class TestS3BlobStore:
    def test_is_configured_false_by_default(self):
        unconfigured = replace(settings, s3_endpoint_url="", s3_access_key="")
        with patch("app.services.blob_store.settings", unconfigured):
            assert S3BlobStore.is_configured() is False

    @patch("app.services.blob_store.settings")
    def test_unconfigured_client(self, mock_settings):
        mock_settings.s3_endpoint_url = ""
        with pytest.raises(HTTPException) as exc:
            S3BlobStore().get(HASH)
        assert exc.value.status_code == 500

    @patch("app.services.blob_store.boto3")
    @patch("app.services.blob_store.settings")
    def test_put_uploads_new_blob(self, mock_settings, mock_boto3):
        _configure(mock_settings)
        mock_client = MagicMock()
        mock_client.head_object.side_effect = _client_error("404")
        mock_boto3.client.return_value = mock_client

        S3BlobStore().put(HASH, DATA)
        mock_client.put_object.assert_called_once_with(
            Bucket="mbee-artifacts", Key=blob_key(HASH), Body=DATA
        )

    @patch("app.services.blob_store.boto3")
    @patch("app.services.blob_store.settings")
    def test_put_skips_existing_blob(self, mock_settings, mock_boto3):
        _configure(mock_settings)
        mock_client = MagicMock()
        mock_boto3.client.return_value = mock_client

        S3BlobStore().put(HASH, DATA)
        mock_client.put_object.assert_not_called()

    @patch("app.services.blob_store.boto3")
    @patch("app.services.blob_store.settings")
    def test_get(self, mock_settings, mock_boto3):
        _configure(mock_settings)
        mock_client = MagicMock()
        mock_client.get_object.return_value = {"Body": MagicMock(read=lambda: DATA)}
        mock_boto3.client.return_value = mock_client

        assert S3BlobStore().get(HASH) == DATA

    @patch("app.services.blob_store.boto3")
    @patch("app.services.blob_store.settings")
    def test_get_missing(self, mock_settings, mock_boto3):
        _configure(mock_settings)
        mock_client = MagicMock()
        mock_client.get_object.side_effect = _client_error("NoSuchKey")
        mock_boto3.client.return_value = mock_client

        with pytest.raises(HTTPException) as exc:
            S3BlobStore().get(HASH)
        assert exc.value.status_code == 404

    @patch("app.services.blob_store.boto3")
    @patch("app.services.blob_store.settings")
    def test_delete_failure(self, mock_settings, mock_boto3):
        _configure(mock_settings)
        mock_client = MagicMock()
        mock_client.delete_object.side_effect = _client_error("AccessDenied")
        mock_boto3.client.return_value = mock_client

        with pytest.raises(HTTPException) as exc:
            S3BlobStore().delete(HASH)
        assert exc.value.status_code == 500


class TestGetBlobStore:
    def test_local_by_default(self, tmp_path):
        local = replace(settings, artifact_storage="local", artifact_path=str(tmp_path))
        with patch("app.services.blob_store.settings", local):
            store = get_blob_store()
        assert isinstance(store, LocalBlobStore)
        assert store.root == tmp_path

    def test_s3(self):
        with patch(
            "app.services.blob_store.settings", replace(settings, artifact_storage="s3")
        ):
            assert isinstance(get_blob_store(), S3BlobStore)
