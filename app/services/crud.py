"""Batch CRUD engine shared by every entity service.

Each entity service specializes the same flow: check the requesting user,
classify the input, validate ancestors and permissions, check ids, then
write. Update plans every change before writing any, so a single invalid item
aborts the whole batch.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.errors import (
    ArchivedError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.services.common import build_index, find_duplicates
from app.services.permissions import merge_permissions
from app.services.store import users_store

logger = logging.getLogger(__name__)

ARCHIVED_MESSAGE = (
    "The {name} [{id}] is archived. It must first be unarchived before "
    "performing this operation."
)


def check_requesting_user(user) -> None:
    if user is None or not getattr(user, "username", None):
        raise ValidationError("Requesting user is not populated.")


def validate_payload(schema: type[BaseModel], data: dict, name: str) -> BaseModel:
    """Runs a pydantic schema over one input object, raising ``ValidationError``."""
    try:
        return schema.model_validate(data)
    except PydanticValidationError as exc:
        problems = []
        for error in exc.errors(include_url=False):
            location = ".".join(str(part) for part in error["loc"])
            message = error["msg"].removeprefix("Value error, ")
            problems.append(f"{location}: {message}" if location else message)
        raise ValidationError(f"Invalid {name}: {'; '.join(problems)}") from exc


def reject_duplicates(ids: list[str], operation: str) -> None:
    duplicates = find_duplicates(ids)
    if duplicates:
        raise ConflictError(
            f"Multiple objects with the same ID [{', '.join(duplicates)}] exist "
            f"in the {operation}.",
            ids=duplicates,
        )


def reject_existing(db: Session, store, ids: list[str]) -> None:
    existing = sorted(store.existing_ids(db, ids))
    if existing:
        raise ConflictError(
            f"{store.plural} with the following IDs already exist "
            f"[{', '.join(existing)}].",
            ids=existing,
        )


def require_all_found(store, requested: list[str], docs: list) -> dict:
    index = build_index(docs)
    missing = [doc_id for doc_id in dict.fromkeys(requested) if doc_id not in index]
    if missing:
        raise NotFoundError(
            f"The following {store.plural.lower()} were not found: "
            f"[{', '.join(missing)}].",
            ids=missing,
        )
    return index


def find_and_validate(
    db: Session, store, doc_id: str, archived: bool = False
):
    """Loads one ancestor document.

    Missing raises ``NotFoundError``; archived raises ``ArchivedError`` unless
    ``archived`` is set.
    """
    doc = store.find_one(db, doc_id, archived=True)
    if doc is None:
        raise NotFoundError(
            f"The {store.name.lower()} [{doc_id}] was not found.", ids=[doc_id]
        )
    if doc.archived and not archived:
        raise ArchivedError(
            ARCHIVED_MESSAGE.format(name=store.name.lower(), id=doc_id), ids=[doc_id]
        )
    return doc


def stamp_created(doc, username: str) -> None:
    now = datetime.now(timezone.utc)
    doc.created_by = username
    doc.last_modified_by = username
    doc.created_on = now
    doc.updated_on = now
    if doc.archived:
        doc.archived_on = now
        doc.archived_by = username
    else:
        doc.archived = False


# ---------------------------------------------------------------------------
# Update planning
# ---------------------------------------------------------------------------


UpdateHandler = Callable[[object, object], dict]


@dataclass(frozen=True)
class UpdatePolicy:
    """What an entity allows an update to touch.

    ``immutable`` keys are always refused as conflicts, even when the value is
    unchanged. Keys outside ``updatable`` are refused as invalid. ``merge``
    keys are dicts merged one key deep. ``columns`` maps input keys to model
    attributes where the two differ.
    """

    name: str
    schema: type[BaseModel]
    updatable: frozenset[str]
    immutable: frozenset[str] = frozenset()
    merge: frozenset[str] = frozenset({"custom"})
    columns: dict = field(default_factory=dict)
    key: str = "id"


def plan_update(
    doc,
    changes: dict,
    policy: UpdatePolicy,
    username: str,
    handlers: dict[str, UpdateHandler] | None = None,
) -> dict:
    """Returns ``{attribute: new value}`` for one document, or raises.

    ``handlers`` replace the default assignment for specific keys; each one
    receives ``(doc, value)`` and returns the attributes to set.
    """
    handlers = handlers or {}
    requested = {key: value for key, value in changes.items() if key != policy.key}
    doc_id = getattr(doc, policy.key)

    if doc.archived and requested.get("archived") is not False:
        if set(requested) <= {"archived"}:
            return {}
        raise ArchivedError(
            ARCHIVED_MESSAGE.format(name=policy.name.lower(), id=doc_id), ids=[doc_id]
        )

    for key in requested:
        if key in policy.immutable:
            raise ConflictError(
                f"{policy.name} property [{key}] cannot be changed.", ids=[doc_id]
            )
        if key not in policy.updatable:
            raise ValidationError(
                f"{policy.name} property [{key}] cannot be changed.", ids=[doc_id]
            )

    validated = validate_payload(policy.schema, requested, policy.name.lower())
    values = validated.model_dump(exclude_unset=True)

    plan: dict = {}
    for key, value in values.items():
        if key in handlers:
            plan.update(handlers[key](doc, value))
        elif key == "archived":
            if value != doc.archived:
                plan["archived"] = value
                plan["archived_on"] = datetime.now(timezone.utc) if value else None
                plan["archived_by"] = username if value else None
        elif key in policy.merge:
            attr = policy.columns.get(key, key)
            plan[attr] = {**(getattr(doc, attr) or {}), **(value or {})}
        else:
            plan[policy.columns.get(key, key)] = value

    if plan:
        plan["last_modified_by"] = username
        plan["updated_on"] = datetime.now(timezone.utc)
    return plan


def apply_plans(db: Session, plans: list[tuple[object, dict]]) -> list:
    for doc, plan in plans:
        for attr, value in plan.items():
            setattr(doc, attr, value)
    db.flush()
    for doc, plan in plans:
        if plan:
            db.refresh(doc)
    return [doc for doc, _ in plans]


def update_batch(
    db: Session,
    docs_by_id: dict,
    updates: list[dict],
    policy: UpdatePolicy,
    username: str,
    handlers: dict[str, UpdateHandler] | None = None,
) -> list:
    """Plans every update first, then writes them all."""
    plans = [
        (
            docs_by_id[changes[policy.key]],
            plan_update(
                docs_by_id[changes[policy.key]], changes, policy, username, handlers
            ),
        )
        for changes in updates
    ]
    return apply_plans(db, plans)


def require_update_ids(updates: list[dict], key: str = "id") -> list[str]:
    ids = []
    for changes in updates:
        doc_id = changes.get(key)
        if not isinstance(doc_id, str) or not doc_id:
            raise ValidationError(f"Each update object must include an '{key}'.")
        ids.append(doc_id)
    return ids


def merge_permission_changes(db: Session, current: dict | None, changes, actor) -> dict:
    """Applies a ``{username: role}`` update; every named user must exist."""
    if isinstance(changes, dict) and changes:
        named = list(changes)
        existing = users_store.existing_ids(db, named)
        missing = [username for username in named if username not in existing]
        if missing:
            raise NotFoundError(
                f"The following users were not found: [{', '.join(missing)}].",
                ids=missing,
            )
    return merge_permissions(current, changes, actor)
