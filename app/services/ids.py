"""Composite IDs.

Every entity below an organization is keyed by its ancestor chain joined with
``settings.id_delimiter``: ``org``, ``org:project``, ``org:project:branch`` and
``org:project:branch:element``. Parsing an id recovers that chain, which is how
permission checks and cascades find ancestors without a store round-trip.
"""

import re

from app.config import settings
from app.errors import ValidationError

ORG_DEPTH = 1
PROJECT_DEPTH = 2
BRANCH_DEPTH = 3
ELEMENT_DEPTH = 4

_SEGMENT_LABELS = {1: "org", 2: "project", 3: "branch", 4: "element"}

_id_pattern = re.compile(settings.id_pattern)
_username_pattern = re.compile(settings.username_pattern)


def validate_segment(segment, label: str = "ID") -> str:
    if not isinstance(segment, str):
        raise ValidationError(
            f"{label} must be a string, received [{type(segment).__name__}]."
        )
    if len(segment) < settings.id_min_length:
        raise ValidationError(
            f"{label} [{segment}] is too short. Minimum length is "
            f"{settings.id_min_length} characters."
        )
    if len(segment) > settings.id_max_length:
        raise ValidationError(
            f"{label} [{segment}] is too long. Maximum length is "
            f"{settings.id_max_length} characters."
        )
    if not _id_pattern.match(segment):
        raise ValidationError(f"{label} [{segment}] contains invalid characters.")
    return segment


def validate_username(username) -> str:
    validate_segment(username, "Username")
    if not _username_pattern.match(username):
        raise ValidationError(f"Username [{username}] is invalid.")
    return username


def create_id(*segments: str) -> str:
    for position, segment in enumerate(segments, start=1):
        validate_segment(segment, f"{_SEGMENT_LABELS.get(position, 'ID')} ID")
    return settings.id_delimiter.join(segments)


def parse_id(composite_id: str) -> list[str]:
    if not isinstance(composite_id, str) or not composite_id:
        raise ValidationError(f"Invalid ID [{composite_id}].")
    return composite_id.split(settings.id_delimiter)


def validate_id(composite_id, depth: int, label: str | None = None) -> list[str]:
    """Checks ``composite_id`` is a well-formed id of an entity at ``depth``."""
    segments = parse_id(composite_id)
    if len(segments) != depth:
        raise ValidationError(
            f"Invalid {label or _SEGMENT_LABELS[depth]} ID [{composite_id}]."
        )
    if label is not None:
        validate_segment(segments[-1], f"{label} ID")
    create_id(*segments)
    return segments


def depth_of(composite_id: str) -> int:
    return len(parse_id(composite_id))


def local_id(composite_id: str) -> str:
    return parse_id(composite_id)[-1]


def parent_id(composite_id: str) -> str | None:
    segments = parse_id(composite_id)
    if len(segments) == 1:
        return None
    return settings.id_delimiter.join(segments[:-1])


def ancestors(composite_id: str) -> list[str]:
    """Returns every prefix id of ``composite_id``, outermost first, itself last."""
    segments = parse_id(composite_id)
    return [
        settings.id_delimiter.join(segments[: position + 1])
        for position in range(len(segments))
    ]


def qualify(scope_id: str, value, label: str | None = None) -> str:
    """Turns a local id into a composite one under ``scope_id``.

    Values already carrying the delimiter must start with ``scope_id``;
    anything else points outside the scope. ``label`` names the local segment
    in error messages when it differs from the default for its depth.
    """
    if not isinstance(value, str):
        raise ValidationError(
            f"ID must be a string, received [{type(value).__name__}]."
        )
    scope = parse_id(scope_id)
    if settings.id_delimiter in value:
        segments = validate_id(value, len(scope) + 1, label)
        if segments[:-1] != scope:
            raise ValidationError(
                f"ID [{value}] does not belong to [{scope_id}]."
            )
        value = segments[-1]
    if label is not None:
        validate_segment(value, f"{label} ID")
    return create_id(*scope, value)
