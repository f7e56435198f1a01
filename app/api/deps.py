from typing import Any

from fastapi import Query

from app.db import get_db
from app.errors import NotFoundError, ValidationError
from app.services import ids as id_codec
from app.services.auth_dependencies import require_user_auth

__all__ = [
    "engine_options",
    "get_db",
    "render",
    "require_user_auth",
    "single",
    "single_payload",
    "split_ids",
]


def engine_options(
    archived: bool | None = None,
    populate: str | None = Query(default=None, description="Comma separated fields"),
    populated: bool | None = None,
    soft: bool | None = None,
    subtree: bool | None = None,
    limit: int | None = Query(default=None, ge=1),
    skip: int | None = Query(default=None, ge=0),
) -> dict:
    raw = {
        "archived": archived,
        "populate": populate,
        "populated": populated,
        "soft": soft,
        "subtree": subtree,
        "limit": limit,
        "skip": skip,
    }
    options = {key: value for key, value in raw.items() if value is not None}
    if "populate" in options:
        options["populate"] = [
            name.strip() for name in options["populate"].split(",") if name.strip()
        ]
    return options


def split_ids(ids: str | None) -> list[str] | None:
    if ids is None:
        return None
    return [value.strip() for value in ids.split(",") if value.strip()]


def single_payload(body: Any, key: str, value: str) -> dict:
    """Body of a single-resource route; its id must agree with the path."""
    if not isinstance(body, dict):
        raise ValidationError("Request body must be an object.")
    if key in body and (
        not isinstance(body[key], str)
        or id_codec.local_id(body[key]) != id_codec.local_id(value)
    ):
        raise ValidationError(
            f"{key} in the body [{body[key]}] does not match the URL [{value}]."
        )
    return {**body, key: value}


def render(doc, schema, options: dict, nested: dict | None = None) -> dict:
    """Serialize ``doc``, expanding each requested field with its ``nested`` schema."""
    data = schema.model_validate(doc).model_dump()
    nested = nested or {}
    fields = list(nested) if options.get("populated") else options.get("populate", [])
    for field in fields:
        if field not in nested or isinstance(doc, dict):
            continue
        value = getattr(doc, field, None)
        data[field] = (
            nested[field].model_validate(value).model_dump()
            if value is not None
            else None
        )
    return data


def single(docs: list, name: str, doc_id: str):
    if not docs:
        raise NotFoundError(f"The {name} [{doc_id}] was not found.", ids=[doc_id])
    return docs[0]
