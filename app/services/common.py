from collections import Counter
from collections.abc import Iterable, Iterator

from app.errors import ValidationError

# Options every engine operation may be given, and the type each one takes.
OPTION_TYPES = {
    "archived": bool,
    "populated": bool,
    "populate": list,
    "soft": bool,
    "subtree": bool,
    "limit": int,
    "skip": int,
}


def chunked(values: Iterable, size: int) -> Iterator[list]:
    chunk: list = []
    for value in values:
        chunk.append(value)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def _type_name(value) -> str:
    if value is None:
        return "undefined"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    return type(value).__name__


def classify_input(value, operation: str) -> tuple[str, list]:
    """Sorts an engine input into one of the accepted shapes.

    Returns ``(kind, items)`` where ``kind`` is ``"none"``, ``"ids"`` or
    ``"objects"``. ``find`` takes nothing, an id or a list of ids; ``remove``
    takes an id or a list of ids; ``create`` and ``update`` take an object or
    a list of objects.
    """
    accepts_ids = operation in {"find", "remove"}
    if value is None and operation == "find":
        return "none", []
    if accepts_ids and isinstance(value, str):
        return "ids", [value]
    if not accepts_ids and isinstance(value, dict):
        return "objects", [value]
    if isinstance(value, list):
        expected = str if accepts_ids else dict
        wrong = [item for item in value if not isinstance(item, expected)]
        if not wrong:
            return ("ids" if accepts_ids else "objects"), list(value)
        received = _type_name(wrong[0])
    else:
        received = _type_name(value)
    raise ValidationError(f"Invalid input for {operation}: received [{received}].")


def find_duplicates(ids: Iterable[str]) -> list[str]:
    return [key for key, count in Counter(ids).items() if count > 1]


def build_index(docs: Iterable, key: str = "id") -> dict:
    """Builds an id -> document lookup from objects or dicts."""
    index = {}
    for doc in docs:
        doc_id = doc[key] if isinstance(doc, dict) else getattr(doc, key)
        index[doc_id] = doc
    return index


def parse_options(
    options: dict | None,
    allowed: Iterable[str],
    populatable: Iterable[str] = (),
) -> dict:
    allowed = set(allowed)
    populatable = list(populatable)
    parsed = {
        "archived": False,
        "populate": [],
        "soft": False,
        "subtree": False,
        "limit": None,
        "skip": None,
    }
    for key, value in (options or {}).items():
        if key not in allowed:
            raise ValidationError(f"Invalid option [{key}].")
        expected = OPTION_TYPES[key]
        if not isinstance(value, expected) or (
            expected is int and isinstance(value, bool)
        ):
            raise ValidationError(
                f"The option '{key}' is not a {expected.__name__}."
            )
        if key in {"limit", "skip"} and value < 0:
            raise ValidationError(f"The option '{key}' cannot be negative.")
        if key == "populate":
            invalid = [name for name in value if name not in populatable]
            if invalid:
                raise ValidationError(
                    f"Cannot populate the field(s) [{', '.join(map(str, invalid))}]."
                )
            parsed["populate"] = list(value)
        elif key == "populated":
            if value:
                parsed["populate"] = populatable
        else:
            parsed[key] = value
    return parsed
