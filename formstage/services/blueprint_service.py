"""Minimal form blueprint: declared fields, validation and filtering."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from formstage.services.form_errors import SchemaValidationError
from formstage.utils.payload import get_path, set_path

# Defaults merged into every declared field of that type (the field wins).
FIELD_TYPES: dict[str, dict[str, Any]] = {
    "text": {},
    "textarea": {},
    "email": {},
    "number": {},
    "select": {},
    "radio": {},
    "checkbox": {},
    "switch": {},
    "checkboxes": {"multiple": True},
    "hidden": {},
    "file": {"multiple": False, "input@": True},
    "display": {"input@": False},
    "spacer": {"input@": False},
    "captcha": {"input@": False},
    "section": {"input@": False, "container": True},
    "fieldset": {"input@": False, "container": True},
}

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TEXT_TYPES = {"text", "textarea", "email", "hidden", "password", "tel", "url"}
_OPTION_TYPES = {"select", "radio", "checkboxes"}
_BOOLEAN_TYPES = {"checkbox", "switch"}


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _option_values(options: Any) -> set[str]:
    if isinstance(options, Mapping):
        return {str(key) for key in options}
    if isinstance(options, list):
        values: set[str] = set()
        for option in options:
            if isinstance(option, Mapping):
                values.add(str(option.get("value")))
            else:
                values.add(str(option))
        return values
    return set()


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


class FormBlueprint:
    """Declared fields of one form plus the page/form rule set."""

    def __init__(self, name: str, fields: Mapping[str, Mapping[str, Any]], rules: Mapping[str, Any] | None = None):
        self.name = name
        self._fields = {key: dict(value) for key, value in fields.items()}
        self.rules = dict(rules or {})
        self._flat: dict[str, dict[str, Any]] | None = None

    def fields(self) -> dict[str, dict[str, Any]]:
        return self._fields

    def flatten(self) -> dict[str, dict[str, Any]]:
        """Data-bearing fields keyed by dotted name; containers are transparent."""
        if self._flat is None:
            self._flat = {}
            self._flatten_into(self._fields, "", self._flat)
        return self._flat

    def _flatten_into(self, fields: Mapping[str, Mapping[str, Any]], prefix: str, out: dict[str, dict[str, Any]]) -> None:
        for key, field in fields.items():
            name = str(field.get("name", key))
            children = field.get("fields")
            if field.get("container"):
                if isinstance(children, Mapping):
                    self._flatten_into(children, prefix, out)
                continue
            if field.get("input@") is False:
                continue
            full_name = f"{prefix}{name}"
            if isinstance(children, Mapping) and children:
                self._flatten_into(children, f"{full_name}.", out)
                continue
            out[full_name] = dict(field)

    def get_property(self, name: str | None) -> dict[str, Any] | None:
        if not name:
            return None
        return self.flatten().get(name)

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, data: Mapping[str, Any]) -> None:
        """Raise ``SchemaValidationError`` with messages grouped per field."""
        messages: dict[str, list[str]] = {}
        for name, field in self.flatten().items():
            if field.get("type") == "file":
                continue
            value = get_path(data, name)
            field_messages = self._validate_field(field, name, value)
            if field_messages:
                messages[name] = field_messages
        if messages:
            raise SchemaValidationError(messages)

    def _validate_field(self, field: Mapping[str, Any], name: str, value: Any) -> list[str]:
        label = field.get("label") or name
        rules: dict[str, Any] = dict(field.get("validate") or {})
        named_rule = rules.get("rule")
        if named_rule and isinstance(self.rules.get(named_rule), Mapping):
            rules = {**self.rules[named_rule], **{k: v for k, v in rules.items() if k != "rule"}}

        custom_message = rules.get("message")
        required = bool(field.get("required") or rules.get("required"))
        field_type = field.get("type", "text")

        if field_type in _BOOLEAN_TYPES:
            if required and value is not True:
                return [custom_message or f"Field '{label}' is required"]
            return []

        if _is_empty(value):
            if required:
                return [custom_message or f"Field '{label}' is required"]
            return []

        errors: list[str] = []
        if field_type == "number":
            number = _to_number(value)
            if number is None:
                return [custom_message or f"Field '{label}' must be a number"]
            if rules.get("min") is not None and number < float(rules["min"]):
                errors.append(f"Field '{label}' must be at least {rules['min']}")
            if rules.get("max") is not None and number > float(rules["max"]):
                errors.append(f"Field '{label}' must be at most {rules['max']}")
        elif field_type in _OPTION_TYPES:
            allowed = _option_values(field.get("options"))
            selected = value if isinstance(value, list) else [value]
            if allowed and any(str(item) not in allowed for item in selected):
                errors.append(f"Invalid option for '{label}'")
        else:
            if not isinstance(value, str):
                return [custom_message or f"Field '{label}' must be a string"]
            min_length = rules.get("min_length")
            max_length = rules.get("max_length")
            if min_length is not None and len(value) < int(min_length):
                errors.append(f"Field '{label}' must be at least {min_length} characters")
            if max_length is not None and len(value) > int(max_length):
                errors.append(f"Field '{label}' must be at most {max_length} characters")
            if field_type == "email" and not _EMAIL_RE.match(value.strip()):
                errors.append(f"Field '{label}' must be a valid email address")

        pattern = rules.get("pattern")
        if pattern and isinstance(value, str):
            try:
                if re.fullmatch(pattern, value) is None:
                    errors.append(f"Field '{label}' does not match required pattern")
            except re.error:
                errors.append(f"Invalid validation pattern for '{label}'")

        if errors and custom_message:
            return [custom_message]
        return errors

    # =========================================================================
    # Filtering
    # =========================================================================

    def filter(self, data: dict[str, Any]) -> dict[str, Any]:
        """Cast declared values to their field type in place; other keys are kept."""
        for name, field in self.flatten().items():
            value = get_path(data, name, _MISSING)
            if value is _MISSING:
                continue
            set_path(data, name, _filter_value(field, value))
        return data


_MISSING = object()


def _filter_value(field: Mapping[str, Any], value: Any) -> Any:
    field_type = field.get("type", "text")
    if field_type in _BOOLEAN_TYPES:
        return bool(value)
    if field_type == "number":
        number = _to_number(value)
        if number is None:
            return value
        return int(number) if number.is_integer() else number
    if field_type == "checkboxes" or (field_type == "select" and field.get("multiple")):
        if value is None or value == "":
            return []
        return value if isinstance(value, list) else [value]
    if field_type in _TEXT_TYPES and isinstance(value, str):
        return value.strip() if field_type == "email" else value
    return value
