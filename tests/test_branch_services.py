from unittest.mock import patch

import pytest
from fastapi import HTTPException

from app.errors import StoreError
from app.models.mbee import Branch, Element
from app.services.branch import branches
from app.services.element import elements
from app.services.organization import organizations
from app.services.project import projects


@pytest.fixture()
def seeded(db_session, admin, project):
    """A small tree on master: model > parent_a > child_a, plus a relationship."""
    elements.create(
        db_session,
        admin,
        "council",
        "prtlgn",
        "master",
        [
            {"id": "parent_a", "name": "A"},
            {"id": "child_a", "name": "A child", "parent": "parent_a"},
            {"id": "link", "source": "parent_a", "target": "child_a"},
        ],
    )
    db_session.commit()
    return project


class TestCreateBranches:
    def test_clones_source_elements(self, db_session, admin, seeded) -> None:
        created = branches.create(
            db_session, admin, "council", "prtlgn", {"id": "dev", "name": "Dev"}
        )
        assert created[0].id == "council:prtlgn:dev"
        assert created[0].source_id == "council:prtlgn:master"

        copies = {
            e.id: e
            for e in db_session.query(Element).filter_by(branch_id="council:prtlgn:dev")
        }
        assert len(copies) == 7
        child = copies["council:prtlgn:dev:child_a"]
        assert child.parent_id == "council:prtlgn:dev:parent_a"
        link = copies["council:prtlgn:dev:link"]
        assert link.source_id == "council:prtlgn:dev:parent_a"
        assert link.target_id == "council:prtlgn:dev:child_a"

    def test_source_must_be_shared(self, db_session, admin, seeded) -> None:
        branches.create(db_session, admin, "council", "prtlgn", {"id": "dev"})
        with pytest.raises(HTTPException) as exc:
            branches.create(
                db_session,
                admin,
                "council",
                "prtlgn",
                [{"id": "one"}, {"id": "two", "source": "dev"}],
            )
        assert exc.value.status_code == 400

    def test_missing_source(self, db_session, admin, project) -> None:
        with pytest.raises(HTTPException) as exc:
            branches.create(
                db_session, admin, "council", "prtlgn", {"id": "dev", "source": "nope"}
            )
        assert exc.value.status_code == 404

    def test_project_reader_cannot_create(
        self, db_session, admin, user, project
    ) -> None:
        projects.update(
            db_session,
            admin,
            "council",
            {"id": "prtlgn", "permissions": {"alice": "read"}},
        )
        with pytest.raises(HTTPException) as exc:
            branches.create(db_session, user, "council", "prtlgn", {"id": "dev"})
        assert exc.value.status_code == 403

    def test_clone_failure_leaves_no_branch(self, db_session, admin, seeded) -> None:
        with patch(
            "app.services.branch.Elements.clone_branch",
            side_effect=StoreError("Failed to insert elements."),
        ):
            with pytest.raises(HTTPException) as exc:
                branches.create(db_session, admin, "council", "prtlgn", {"id": "dev"})
        assert exc.value.status_code == 500
        assert "The branch was not created." in exc.value.detail
        assert db_session.get(Branch, "council:prtlgn:dev") is None


class TestUpdateBranches:
    def test_rename(self, db_session, admin, project) -> None:
        branches.create(db_session, admin, "council", "prtlgn", {"id": "dev"})
        updated = branches.update(
            db_session, admin, "council", "prtlgn", {"id": "dev", "name": "Develop"}
        )
        assert updated[0].name == "Develop"

    def test_source_is_immutable(self, db_session, admin, project) -> None:
        branches.create(db_session, admin, "council", "prtlgn", {"id": "dev"})
        with pytest.raises(HTTPException) as exc:
            branches.update(
                db_session, admin, "council", "prtlgn", {"id": "dev", "source": "x1"}
            )
        assert exc.value.status_code == 409

    def test_tag_accepts_only_archive(self, db_session, admin, project) -> None:
        branches.create(
            db_session, admin, "council", "prtlgn", {"id": "v1", "tag": True}
        )
        with pytest.raises(HTTPException) as exc:
            branches.update(
                db_session, admin, "council", "prtlgn", {"id": "v1", "name": "x"}
            )
        assert exc.value.status_code == 400
        archived = branches.update(
            db_session, admin, "council", "prtlgn", {"id": "v1", "archived": True}
        )
        assert archived[0].archived is True

    def test_default_branch_cannot_be_archived(
        self, db_session, admin, project
    ) -> None:
        with pytest.raises(HTTPException) as exc:
            branches.update(
                db_session,
                admin,
                "council",
                "prtlgn",
                {"id": "master", "archived": True},
            )
        assert exc.value.status_code == 400

    def test_archived_project_blocks_update(
        self, db_session, admin, project
    ) -> None:
        branches.create(db_session, admin, "council", "prtlgn", {"id": "dev"})
        projects.update(
            db_session, admin, "council", {"id": "prtlgn", "archived": True}
        )
        with pytest.raises(HTTPException) as exc:
            branches.update(
                db_session, admin, "council", "prtlgn", {"id": "dev", "name": "D"}
            )
        assert exc.value.status_code == 409
        assert exc.value.code == "archived"
        assert exc.value.ids == ["council:prtlgn"]

    def test_archived_org_blocks_update(self, db_session, admin, project) -> None:
        branches.create(db_session, admin, "council", "prtlgn", {"id": "dev"})
        organizations.update(db_session, admin, {"id": "council", "archived": True})
        with pytest.raises(HTTPException) as exc:
            branches.update(
                db_session, admin, "council", "prtlgn", {"id": "dev", "name": "D"}
            )
        assert exc.value.status_code == 409
        assert exc.value.ids == ["council"]


class TestRemoveBranches:
    def test_default_branch_protected(self, db_session, admin, project) -> None:
        with pytest.raises(HTTPException) as exc:
            branches.remove(db_session, admin, "council", "prtlgn", "master")
        assert exc.value.status_code == 400

    def test_remove_cascades_to_elements(self, db_session, admin, seeded) -> None:
        branches.create(db_session, admin, "council", "prtlgn", {"id": "dev"})
        db_session.commit()
        removed = branches.remove(db_session, admin, "council", "prtlgn", ["dev"])
        assert removed[0]["id"] == "council:prtlgn:dev"
        assert db_session.get(Branch, "council:prtlgn:dev") is None
        remaining = db_session.query(Element).filter_by(
            branch_id="council:prtlgn:dev"
        )
        assert remaining.count() == 0
        master = db_session.query(Element).filter_by(
            branch_id="council:prtlgn:master"
        )
        assert master.count() == 7

    def test_find_archived_branch_needs_option(
        self, db_session, admin, project
    ) -> None:
        branches.create(db_session, admin, "council", "prtlgn", {"id": "dev"})
        branches.remove(db_session, admin, "council", "prtlgn", "dev", {"soft": True})
        assert branches.find(db_session, admin, "council", "prtlgn", "dev") == []
        found = branches.find(
            db_session, admin, "council", "prtlgn", "dev", {"archived": True}
        )
        assert found[0].archived is True
