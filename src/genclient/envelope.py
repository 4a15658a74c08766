"""Utilities for reading loosely shaped response envelopes."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any


def field_of(payload: Any, key: str, default: Any = None) -> Any:
    """Read a field from a mapping payload; anything else has no fields."""

    if isinstance(payload, Mapping):
        return payload.get(key, default)
    return default


def path_of(payload: Any, path: Iterable[str], default: Any = None) -> Any:
    """Follow a sequence of keys through nested mappings."""

    current = payload
    for key in path:
        if not isinstance(current, Mapping) or key not in current:
            return default
        current = current[key]
    return current


def first_of(payload: Any, *keys: str, default: Any = None) -> Any:
    """Return the first present, non-None value among `keys`."""

    for key in keys:
        value = field_of(payload, key)
        if value is not None:
            return value
    return default
