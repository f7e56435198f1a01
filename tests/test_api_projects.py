PROJECTS = "/orgs/council/projects"
BRANCHES = "/orgs/council/projects/prtlgn/branches"


class TestProjectEndpoints:
    def test_create(self, client, auth_headers, org) -> None:
        resp = client.post(
            f"{PROJECTS}/prtlgn", json={"name": "Portal Gun"}, headers=auth_headers
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["id"] == "council:prtlgn"
        assert data["org"] == "council"
        assert data["visibility"] == "private"

        branches = client.get(BRANCHES, headers=auth_headers).json()
        assert [b["id"] for b in branches["items"]] == ["council:prtlgn:master"]

    def test_populate_org(self, client, auth_headers, project) -> None:
        resp = client.get(
            f"{PROJECTS}/prtlgn", params={"populate": "org"}, headers=auth_headers
        )
        assert resp.status_code == 200
        assert resp.json()["org"]["name"] == "Council"

    def test_without_populate_org_is_id(self, client, auth_headers, project) -> None:
        resp = client.get(f"{PROJECTS}/prtlgn", headers=auth_headers)
        assert resp.json()["org"] == "council"

    def test_unknown_populate_field(self, client, auth_headers, project) -> None:
        resp = client.get(
            f"{PROJECTS}/prtlgn", params={"populate": "owner"}, headers=auth_headers
        )
        assert resp.status_code == 400

    def test_private_project_denied(self, client, user_headers, project) -> None:
        resp = client.get(f"{PROJECTS}/prtlgn", headers=user_headers)
        assert resp.status_code == 403

    def test_update_visibility(self, client, auth_headers, project) -> None:
        resp = client.patch(
            f"{PROJECTS}/prtlgn", json={"visibility": "internal"}, headers=auth_headers
        )
        assert resp.status_code == 200
        assert resp.json()["visibility"] == "internal"

    def test_delete(self, client, auth_headers, project) -> None:
        resp = client.delete(f"{PROJECTS}/prtlgn", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["id"] == "council:prtlgn"
        assert client.get(BRANCHES, headers=auth_headers).status_code == 404


class TestBranchEndpoints:
    def test_create_from_master(self, client, auth_headers, project) -> None:
        resp = client.post(
            f"{BRANCHES}/dev", json={"name": "Dev"}, headers=auth_headers
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["id"] == "council:prtlgn:dev"
        assert data["source"] == "council:prtlgn:master"
        assert data["tag"] is False

        elements = client.get(f"{BRANCHES}/dev/elements", headers=auth_headers)
        assert elements.json()["count"] == 4

    def test_populate_source(self, client, auth_headers, project) -> None:
        client.post(f"{BRANCHES}/dev", json={}, headers=auth_headers)
        resp = client.get(
            f"{BRANCHES}/dev", params={"populated": "true"}, headers=auth_headers
        )
        data = resp.json()
        assert data["source"]["id"] == "council:prtlgn:master"
        assert data["project"]["id"] == "council:prtlgn"

    def test_master_cannot_be_deleted(self, client, auth_headers, project) -> None:
        resp = client.delete(f"{BRANCHES}/master", headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"

    def test_delete(self, client, auth_headers, project) -> None:
        client.post(f"{BRANCHES}/dev", json={}, headers=auth_headers)
        resp = client.delete(f"{BRANCHES}/dev", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["id"] == "council:prtlgn:dev"
        assert client.get(f"{BRANCHES}/dev", headers=auth_headers).status_code == 404
