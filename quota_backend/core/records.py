"""
Row normalization at the store-read boundary.

Records may arrive with snake_case or camelCase field names depending on which
schema revision (or which client) produced them. ``normalize_record`` maps any
raw row to canonical snake_case keys exactly once; everything downstream reads
canonical names only.
"""
import re
from typing import Any, Dict, Mapping, Optional

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def to_snake(name: str) -> str:
    """``tokenLimit`` -> ``token_limit``. Snake_case names pass through."""
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


def to_camel(name: str) -> str:
    """``token_limit`` -> ``tokenLimit``."""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def normalize_record(raw: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return a copy of ``raw`` keyed by snake_case names.

    When both spellings of a field are present, the non-null one wins; if both
    are non-null the snake_case spelling wins, since it is the current schema.
    """
    if raw is None:
        return None

    normalized: Dict[str, Any] = {}
    for key, value in raw.items():
        canonical = to_snake(key)
        is_canonical_spelling = key == canonical
        if canonical not in normalized:
            normalized[canonical] = value
        elif normalized[canonical] is None:
            normalized[canonical] = value
        elif value is not None and is_canonical_spelling:
            normalized[canonical] = value
    return normalized


def first_present(record: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """First non-None value among ``keys`` in an already-normalized record."""
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return default
