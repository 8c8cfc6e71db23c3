"""Nested dict helpers for form data."""

from __future__ import annotations

import re
import secrets
import string
from collections.abc import Mapping
from typing import Any

_RANDOM_ALPHABET = string.ascii_letters + string.digits


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``override`` merged in recursively.

    Nested mappings merge key by key; any other value in ``override``
    (lists included) replaces the value in ``base``.
    """
    merged: dict[str, Any] = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def get_path(data: Mapping[str, Any], path: str, default: Any = None, separator: str = ".") -> Any:
    if path in data:
        return data[path]
    current: Any = data
    for part in path.split(separator):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return default
    return current


def set_path(data: dict[str, Any], path: str, value: Any, separator: str = ".") -> None:
    parts = path.split(separator)
    current = data
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def hyphenize(value: str) -> str:
    """``My Contact_Form`` -> ``my-contact-form``."""
    value = re.sub(r"([a-z\d])([A-Z])", r"\1-\2", value.strip())
    value = re.sub(r"[^A-Za-z0-9]+", "-", value)
    return value.strip("-").lower()


def random_string(length: int) -> str:
    return "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(length))
