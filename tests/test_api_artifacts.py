from unittest.mock import patch

import pytest

from app.services.blob_store import LocalBlobStore, sha256_hash

ARTIFACTS = "/orgs/council/projects/prtlgn/artifacts"
PLANS = b"portal gun schematics"


@pytest.fixture()
def blobs(tmp_path):
    store = LocalBlobStore(tmp_path)
    with patch("app.services.artifact.get_blob_store", return_value=store):
        yield store


class TestArtifactEndpoints:
    def test_create_and_get(self, client, auth_headers, project) -> None:
        resp = client.post(
            f"{ARTIFACTS}/plans", json={"filename": "plans.pdf"}, headers=auth_headers
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["id"] == "council:prtlgn:plans"
        assert data["project"] == "council:prtlgn"
        assert data["content_type"] == "application/pdf"
        assert data["hash"] is None

        resp = client.get(
            f"{ARTIFACTS}/plans", params={"populate": "project"}, headers=auth_headers
        )
        assert resp.status_code == 200
        assert resp.json()["project"]["name"] == "Portal Gun"

    def test_list(self, client, auth_headers, project) -> None:
        client.post(
            ARTIFACTS,
            json=[{"id": "a", "filename": "a.txt"}, {"id": "b", "filename": "b.txt"}],
            headers=auth_headers,
        )
        resp = client.get(ARTIFACTS, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["count"] == 2

    def test_upload_and_download(self, client, auth_headers, project, blobs) -> None:
        client.post(
            f"{ARTIFACTS}/plans", json={"filename": "plans.txt"}, headers=auth_headers
        )
        resp = client.put(
            f"{ARTIFACTS}/plans/blob",
            content=PLANS,
            headers={**auth_headers, "Content-Type": "application/octet-stream"},
        )
        assert resp.status_code == 200
        assert resp.json()["hash"] == sha256_hash(PLANS)
        assert len(resp.json()["history"]) == 1

        resp = client.get(f"{ARTIFACTS}/plans/blob", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.content == PLANS
        assert resp.headers["content-type"].startswith("text/plain")
        assert 'filename="plans.txt"' in resp.headers["content-disposition"]

    def test_download_without_blob(self, client, auth_headers, project, blobs) -> None:
        client.post(
            f"{ARTIFACTS}/plans", json={"filename": "plans.txt"}, headers=auth_headers
        )
        resp = client.get(f"{ARTIFACTS}/plans/blob", headers=auth_headers)
        assert resp.status_code == 404

    def test_outsider_cannot_download(
        self, client, auth_headers, user_headers, project, blobs
    ) -> None:
        client.post(
            f"{ARTIFACTS}/plans", json={"filename": "plans.txt"}, headers=auth_headers
        )
        resp = client.get(f"{ARTIFACTS}/plans/blob", headers=user_headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "permission_denied"

    def test_update(self, client, auth_headers, project) -> None:
        client.post(
            f"{ARTIFACTS}/plans", json={"filename": "plans.txt"}, headers=auth_headers
        )
        resp = client.patch(
            f"{ARTIFACTS}/plans",
            json={"contentType": "text/markdown"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["content_type"] == "text/markdown"

    def test_delete(self, client, auth_headers, project, blobs) -> None:
        client.post(
            f"{ARTIFACTS}/plans", json={"filename": "plans.txt"}, headers=auth_headers
        )
        client.put(
            f"{ARTIFACTS}/plans/blob",
            content=PLANS,
            headers={**auth_headers, "Content-Type": "application/octet-stream"},
        )
        resp = client.delete(f"{ARTIFACTS}/plans", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["id"] == "council:prtlgn:plans"
        assert not blobs.exists(sha256_hash(PLANS))

        resp = client.get(f"{ARTIFACTS}/plans", headers=auth_headers)
        assert resp.status_code == 404
