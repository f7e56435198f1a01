from dataclasses import replace
from unittest.mock import patch

import pytest
from fastapi import HTTPException

from app.config import settings
from app.models.mbee import Organization
from app.models.user import User
from app.services.organization import organizations
from app.services.user import users, verify_password

USER_PASSWORD = "Alice1234"


class TestCreateUsers:
    def test_admin_creates_local_user(self, db_session, admin) -> None:
        created = users.create(
            db_session,
            admin,
            {"username": "morty", "password": "Morty1234", "fname": "Morty"},
        )
        morty = created[0]
        assert morty.username == "morty"
        assert morty.admin is False
        assert verify_password("Morty1234", morty.password_hash)
        assert morty.created_by == "admin"

    def test_joins_default_org(self, db_session, admin) -> None:
        users.create(db_session, admin, {"username": "morty", "password": "Morty1234"})
        default = db_session.get(Organization, "default")
        assert default.permissions["morty"] == ["read", "write"]

    def test_non_admin_cannot_create(self, db_session, user) -> None:
        with pytest.raises(HTTPException) as exc:
            users.create(
                db_session, user, {"username": "morty", "password": "Morty1234"}
            )
        assert exc.value.status_code == 403

    def test_weak_password(self, db_session, admin) -> None:
        with pytest.raises(HTTPException) as exc:
            users.create(db_session, admin, {"username": "morty", "password": "short"})
        assert exc.value.status_code == 400
        assert exc.value.detail == "Password does not meet the strength requirements."

    def test_password_over_72_bytes(self, db_session, admin) -> None:
        with pytest.raises(HTTPException) as exc:
            users.create(
                db_session, admin, {"username": "carol", "password": "Aa1" + "x" * 80}
            )
        assert exc.value.status_code == 400
        assert exc.value.detail == "Password cannot be longer than 72 bytes."

    def test_local_user_needs_password(self, db_session, admin) -> None:
        with pytest.raises(HTTPException) as exc:
            users.create(db_session, admin, {"username": "morty"})
        assert exc.value.status_code == 400

    def test_invalid_username(self, db_session, admin) -> None:
        with pytest.raises(HTTPException) as exc:
            users.create(
                db_session, admin, {"username": "9lives", "password": "Morty1234"}
            )
        assert exc.value.status_code == 400

    def test_existing_username(self, db_session, admin, user) -> None:
        with pytest.raises(HTTPException) as exc:
            users.create(
                db_session, admin, {"username": "alice", "password": "Alice1234"}
            )
        assert exc.value.status_code == 409


class TestFindUsers:
    def test_any_user_can_list(self, db_session, admin, user) -> None:
        found = users.find(db_session, user)
        assert {u.username for u in found} == {"admin", "alice"}

    def test_by_username(self, db_session, admin, user) -> None:
        found = users.find(db_session, user, "admin")
        assert [u.username for u in found] == ["admin"]


class TestUpdateUsers:
    def test_user_updates_self(self, db_session, user) -> None:
        updated = users.update(
            db_session, user, {"username": "alice", "fname": "Alicia"}
        )
        assert updated[0].fname == "Alicia"

    def test_user_cannot_update_other(self, db_session, user, other_user) -> None:
        with pytest.raises(HTTPException) as exc:
            users.update(db_session, user, {"username": "bob", "fname": "Robert"})
        assert exc.value.status_code == 403

    def test_admin_flag_is_immutable(self, db_session, admin, user) -> None:
        with pytest.raises(HTTPException) as exc:
            users.update(db_session, admin, {"username": "alice", "admin": True})
        assert exc.value.status_code == 409

    def test_clear_nullable_field(self, db_session, user) -> None:
        updated = users.update(db_session, user, {"username": "alice", "fname": None})
        assert updated[0].fname is None


class TestUpdatePassword:
    def test_changes_password(self, db_session, user) -> None:
        updated = users.update_password(
            db_session, user, USER_PASSWORD, "Newpass123", "Newpass123"
        )
        assert verify_password("Newpass123", updated.password_hash)

    def test_wrong_old_password(self, db_session, user) -> None:
        with pytest.raises(HTTPException) as exc:
            users.update_password(
                db_session, user, "Wrong1234", "Newpass123", "Newpass123"
            )
        assert exc.value.status_code == 403

    def test_confirmation_mismatch(self, db_session, user) -> None:
        with pytest.raises(HTTPException) as exc:
            users.update_password(
                db_session, user, USER_PASSWORD, "Newpass123", "Newpass124"
            )
        assert exc.value.status_code == 400
        assert exc.value.detail == "Passwords do not match."


class TestRemoveUsers:
    def test_cannot_remove_self(self, db_session, admin) -> None:
        with pytest.raises(HTTPException) as exc:
            users.remove(db_session, admin, "admin")
        assert exc.value.status_code == 403

    def test_non_admin_cannot_remove(self, db_session, user, other_user) -> None:
        with pytest.raises(HTTPException) as exc:
            users.remove(db_session, user, "bob")
        assert exc.value.status_code == 403

    def test_remove_strips_permissions(self, db_session, admin, user, org) -> None:
        organizations.update(
            db_session, admin, {"id": "council", "permissions": {"alice": "write"}}
        )
        removed = users.remove(db_session, admin, ["alice"])
        assert removed[0]["username"] == "alice"
        assert db_session.get(User, "alice") is None
        assert "alice" not in db_session.get(Organization, "council").permissions
        assert "alice" not in db_session.get(Organization, "default").permissions

    def test_strip_permissions_pages_through_orgs(
        self, db_session, admin, user, org
    ) -> None:
        organizations.create(
            db_session,
            admin,
            [
                {"id": "guild", "name": "Guild", "permissions": {"alice": "read"}},
                {"id": "lodge", "name": "Lodge", "permissions": {"alice": "admin"}},
            ],
        )
        small_pages = replace(settings, batch_size=1)
        with patch("app.services.user.settings", small_pages):
            users.remove(db_session, admin, ["alice"])
        for org_id in ("council", "default", "guild", "lodge"):
            assert "alice" not in db_session.get(Organization, org_id).permissions

    def test_soft_remove_blocks_login(self, db_session, admin, user) -> None:
        users.remove(db_session, admin, "alice", {"soft": True})
        db_session.expire_all()
        assert users.authenticate(db_session, "alice", USER_PASSWORD) is None


class TestAuthentication:
    def test_authenticate(self, db_session, user) -> None:
        assert users.authenticate(db_session, "alice", USER_PASSWORD) is user
        assert users.authenticate(db_session, "alice", "Wrong1234") is None
        assert users.authenticate(db_session, "nobody", USER_PASSWORD) is None

    def test_long_password_never_matches(self, db_session, user) -> None:
        assert users.authenticate(db_session, "alice", "A1" + "x" * 80) is None

    def test_whoami(self, db_session, user) -> None:
        assert users.whoami(db_session, user) is user

    def test_ensure_admin(self, db_session, default_org) -> None:
        configured = replace(
            settings, admin_username="root", admin_password="Rootpass1"
        )
        with patch("app.services.user.settings", configured):
            created = users.ensure_admin(db_session)
            again = users.ensure_admin(db_session)
        assert created.admin is True
        assert again is created
        assert users.authenticate(db_session, "root", "Rootpass1") is created

    def test_ensure_admin_unconfigured(self, db_session) -> None:
        configured = replace(settings, admin_username=None, admin_password=None)
        with patch("app.services.user.settings", configured):
            assert users.ensure_admin(db_session) is None
