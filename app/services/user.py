import logging
import re

import bcrypt
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import PermissionDeniedError, ValidationError
from app.models.user import User
from app.schemas.user import UserCreate, UserUpdate
from app.services import ids
from app.services import permissions
from app.services.common import chunked, classify_input, parse_options
from app.services.crud import (
    UpdatePolicy,
    check_requesting_user,
    reject_duplicates,
    reject_existing,
    require_all_found,
    require_update_ids,
    stamp_created,
    update_batch,
    validate_payload,
)
from app.services.event import EventType, publish_event
from app.services.response import ListResponseMixin
from app.services.store import orgs_store, projects_store, snapshot, users_store

logger = logging.getLogger(__name__)

USER_POLICY = UpdatePolicy(
    name="User",
    schema=UserUpdate,
    updatable=frozenset(
        {"fname", "lname", "preferred_name", "email", "custom", "archived"}
    ),
    immutable=frozenset({"username", "admin", "provider", "password"}),
    key="username",
)


MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    encoded = password.encode("utf-8")
    if not password_hash or len(encoded) > MAX_PASSWORD_BYTES:
        return False
    return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))


def validate_password(password: str) -> None:
    """At least 8 characters with a digit, a lowercase and an uppercase letter.

    Passwords over 72 bytes are refused.
    """
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            f"Password cannot be longer than {MAX_PASSWORD_BYTES} bytes."
        )
    if (
        len(password) < 8
        or not re.search(r"\d", password)
        or not re.search(r"[a-z]", password)
        or not re.search(r"[A-Z]", password)
    ):
        raise ValidationError("Password does not meet the strength requirements.")


class Users(ListResponseMixin):
    @staticmethod
    def find(
        db: Session, requesting_user, usernames=None, options: dict | None = None
    ) -> list[User]:
        check_requesting_user(requesting_user)
        opts = parse_options(options, {"archived", "limit", "skip"})
        kind, requested = classify_input(usernames, "find")
        permissions.read_user(requesting_user)
        filters = {"username": requested} if kind == "ids" else {}
        return users_store.find(
            db,
            filters,
            archived=opts["archived"],
            limit=opts["limit"],
            skip=opts["skip"],
        )

    @staticmethod
    def create(
        db: Session, requesting_user, users, options: dict | None = None
    ) -> list[User]:
        check_requesting_user(requesting_user)
        parse_options(options, set())
        _, items = classify_input(users, "create")
        permissions.create_user(requesting_user)

        payloads = [validate_payload(UserCreate, item, "user") for item in items]
        usernames = [ids.validate_username(payload.username) for payload in payloads]
        reject_duplicates(usernames, "create")
        for payload in payloads:
            if payload.provider == "local":
                if not payload.password:
                    raise ValidationError(
                        f"User [{payload.username}] requires a password."
                    )
                validate_password(payload.password)
        reject_existing(db, users_store, usernames)

        created = []
        for payload in payloads:
            data = payload.model_dump(exclude={"password"})
            user = User(**data)
            if payload.password:
                user.password_hash = hash_password(payload.password)
            stamp_created(user, requesting_user.username)
            created.append(user)
        users_store.insert_many(db, created)
        Users._join_default_org(db, usernames)

        for user in created:
            db.refresh(user)
        logger.info("Created users %s", usernames)
        publish_event(
            EventType.user_created, "user", usernames, requesting_user.username
        )
        return created

    @staticmethod
    def update(
        db: Session, requesting_user, users, options: dict | None = None
    ) -> list[User]:
        check_requesting_user(requesting_user)
        parse_options(options, set())
        _, updates = classify_input(users, "update")
        usernames = require_update_ids(updates, key="username")
        reject_duplicates(usernames, "update")

        found = users_store.find(db, {"username": usernames}, archived=True)
        index = require_all_found(users_store, usernames, found)
        for user in found:
            permissions.update_user(requesting_user, user)

        updated = update_batch(
            db, index, updates, USER_POLICY, requesting_user.username
        )
        logger.info("Updated users %s", usernames)
        publish_event(
            EventType.user_updated, "user", usernames, requesting_user.username
        )
        return updated

    @staticmethod
    def update_password(
        db: Session,
        requesting_user,
        old_password: str,
        new_password: str,
        confirm_password: str,
    ) -> User:
        check_requesting_user(requesting_user)
        user = db.get(User, requesting_user.username)
        if user is None or user.provider != "local":
            raise ValidationError("Password can only be changed for local users.")
        if not verify_password(old_password, user.password_hash):
            raise PermissionDeniedError("Old password is incorrect.")
        if new_password != confirm_password:
            raise ValidationError("Passwords do not match.")
        validate_password(new_password)
        user.password_hash = hash_password(new_password)
        user.last_modified_by = requesting_user.username
        db.flush()
        db.refresh(user)
        logger.info("Updated password for user %s", user.username)
        return user

    @staticmethod
    def remove(
        db: Session, requesting_user, usernames, options: dict | None = None
    ) -> list[dict]:
        check_requesting_user(requesting_user)
        opts = parse_options(options, {"soft"})
        _, requested = classify_input(usernames, "remove")
        reject_duplicates(requested, "remove")

        found = users_store.find(db, {"username": requested}, archived=True)
        require_all_found(users_store, requested, found)
        for user in found:
            permissions.delete_user(requesting_user, user)
            if user.username == requesting_user.username:
                raise PermissionDeniedError("User cannot delete themselves.")

        removed = [snapshot(user) for user in found]
        if opts["soft"]:
            users_store.archive_many(db, requested, requesting_user.username)
        else:
            Users._strip_permissions(db, set(requested))
            users_store.delete_many(db, {"username": requested})
        db.flush()
        logger.info("Removed users %s (soft=%s)", requested, opts["soft"])
        publish_event(
            EventType.user_deleted, "user", requested, requesting_user.username
        )
        return removed

    @staticmethod
    def whoami(db: Session, requesting_user) -> User:
        check_requesting_user(requesting_user)
        return requesting_user

    @staticmethod
    def authenticate(db: Session, username: str, password: str) -> User | None:
        user = db.get(User, username)
        if user is None or user.archived:
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    @staticmethod
    def ensure_admin(db: Session) -> User | None:
        """Creates the bootstrap admin named in settings, if any."""
        if not settings.admin_username or not settings.admin_password:
            return None
        user = db.get(User, settings.admin_username)
        if user is not None:
            return user
        user = User(
            username=settings.admin_username,
            admin=True,
            password_hash=hash_password(settings.admin_password),
        )
        stamp_created(user, settings.admin_username)
        db.add(user)
        db.flush()
        Users._join_default_org(db, [user.username])
        logger.info("Created bootstrap admin %s", user.username)
        return user

    @staticmethod
    def _join_default_org(db: Session, usernames: list[str]) -> None:
        org = orgs_store.find_one(db, settings.default_org_id)
        if org is None:
            return
        merged = dict(org.permissions or {})
        for username in usernames:
            merged.setdefault(username, permissions.expand_role("write"))
        org.permissions = merged
        db.flush()

    @staticmethod
    def _strip_permissions(db: Session, usernames: set[str]) -> None:
        for store in (orgs_store, projects_store):
            for page in chunked(store.find_ids(db, {}), settings.batch_size):
                for doc in store.find(db, {"id": page}, archived=True):
                    current = doc.permissions or {}
                    if usernames.intersection(current):
                        doc.permissions = {
                            key: value
                            for key, value in current.items()
                            if key not in usernames
                        }
                db.flush()


users = Users()
