"""Normalization of submitted form data against the declared fields."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from formstage.utils.payload import deep_merge

logger = logging.getLogger(__name__)

JSON_KEY = "_json"
BOOLEAN_PRESENCE_TYPES = frozenset({"checkbox", "switch"})
_INVALID = object()


def decode_data(data: Any, errors: list[str] | None = None) -> dict[str, Any]:
    """Decode JSON sub-payloads and restore bracket notation in keys."""
    if not isinstance(data, Mapping):
        return {}

    data = dict(data)
    if JSON_KEY in data:
        decoded = _json_decode(data.pop(JSON_KEY), errors, path=JSON_KEY)
        if isinstance(decoded, Mapping):
            data = deep_merge(data, decoded)

    return clean_data_keys(data)


def _json_decode(value: Any, errors: list[str] | None, path: str) -> Any:
    if isinstance(value, Mapping):
        decoded: dict[str, Any] = {}
        for key, item in value.items():
            if item == "":
                continue
            result = _json_decode(item, errors, path=str(key))
            if result is _INVALID:
                continue
            decoded[key] = result
        return decoded

    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Badly encoded JSON data for %s", path)
        if errors is not None:
            errors.append(f"Badly encoded JSON data (for {path}) was sent to the form")
        return _INVALID


def clean_data_keys(source: Any) -> Any:
    """Rewrite literal ``%5B``/``%5D`` in keys to ``[``/``]`` at every depth."""
    if isinstance(source, Mapping):
        out: dict[Any, Any] = {}
        for key, value in source.items():
            if isinstance(key, str):
                key = key.replace("%5B", "[").replace("%5D", "]")
            out[key] = clean_data_keys(value)
        return out
    if isinstance(source, list):
        return [clean_data_keys(item) for item in source]
    return source


def reconcile_fields(fields: Mapping[str, Mapping[str, Any]], data: Mapping[str, Any]) -> dict[str, Any]:
    """Map positional entries to field keys and coerce boolean presence fields.

    ``fields`` must already be processed (see ``process_fields``) so every
    entry carries a ``type``.
    """
    result = dict(data)
    for index, (key, field) in enumerate(fields.items()):
        name = field.get("name", key)
        if "name" not in field:
            for positional in (index, str(index)):
                if positional in result:
                    result[name] = result.pop(positional)
                    break
        if field.get("type") in BOOLEAN_PRESENCE_TYPES:
            result[name] = name in result
    return result


def process_fields(
    fields: Mapping[Any, Mapping[str, Any]] | list[Mapping[str, Any]],
    field_types: Mapping[str, Mapping[str, Any]] | None = None,
) -> dict[str, dict[str, Any]]:
    """Normalize declared fields: default type, type defaults, names, children."""
    if isinstance(fields, list):
        fields = dict(enumerate(fields))

    processed: dict[str, dict[str, Any]] = {}
    for key, value in fields.items():
        field = dict(value or {})
        field.setdefault("type", "text")

        defaults = (field_types or {}).get(field["type"])
        if defaults:
            field = {**defaults, **field}

        if (isinstance(key, int) or str(key).isdigit()) and field.get("name"):
            key = field["name"]

        children = field.get("fields")
        if isinstance(children, (Mapping, list)):
            field["fields"] = process_fields(children, field_types)

        processed[str(key)] = field
    return processed
