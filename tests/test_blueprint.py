import pytest

from formstage.services.blueprint_service import FIELD_TYPES, FormBlueprint
from formstage.services.field_normalizer import process_fields
from formstage.services.form_errors import SchemaValidationError


def _blueprint(fields, rules=None):
    return FormBlueprint("test", process_fields(fields, FIELD_TYPES), rules)


def test_flatten_skips_display_fields_and_opens_containers():
    blueprint = _blueprint(
        [
            {"name": "intro", "type": "display"},
            {"name": "details", "type": "section", "fields": [{"name": "city"}]},
            {"name": "address", "type": "text", "fields": [{"name": "street"}]},
        ]
    )

    assert set(blueprint.flatten()) == {"city", "address.street"}
    assert blueprint.get_property("city")["type"] == "text"
    assert blueprint.get_property("missing") is None
    assert blueprint.get_property(None) is None


def test_validate_collects_messages_per_field():
    blueprint = _blueprint(
        [
            {"name": "name", "label": "Name", "validate": {"required": True}},
            {"name": "email", "type": "email", "label": "Email"},
            {"name": "age", "type": "number", "label": "Age", "validate": {"min": 18}},
        ]
    )

    with pytest.raises(SchemaValidationError) as exc_info:
        blueprint.validate({"email": "not-an-email", "age": "12"})

    messages = exc_info.value.messages
    assert set(messages) == {"name", "email", "age"}
    assert messages["name"] == ["Field 'Name' is required"]


def test_validate_length_pattern_and_options():
    blueprint = _blueprint(
        [
            {"name": "code", "validate": {"pattern": "[A-Z]{3}", "max_length": 3}},
            {"name": "color", "type": "select", "options": {"red": "Red", "blue": "Blue"}},
        ]
    )

    blueprint.validate({"code": "ABC", "color": "red"})
    with pytest.raises(SchemaValidationError) as exc_info:
        blueprint.validate({"code": "abcd", "color": "green"})

    assert set(exc_info.value.messages) == {"code", "color"}


def test_validate_named_rule_and_custom_message():
    blueprint = _blueprint(
        [{"name": "username", "validate": {"rule": "slug", "message": "Pick a simple username"}}],
        rules={"slug": {"pattern": "[a-z0-9-]+"}},
    )

    with pytest.raises(SchemaValidationError) as exc_info:
        blueprint.validate({"username": "Not Valid"})

    assert exc_info.value.messages == {"username": ["Pick a simple username"]}


def test_required_checkbox_must_be_checked():
    blueprint = _blueprint([{"name": "agree", "type": "checkbox", "validate": {"required": True}}])

    blueprint.validate({"agree": True})
    with pytest.raises(SchemaValidationError):
        blueprint.validate({"agree": False})


def test_file_fields_are_not_validated():
    blueprint = _blueprint([{"name": "avatar", "type": "file", "validate": {"required": True}}])

    blueprint.validate({})


def test_filter_casts_declared_values_in_place():
    blueprint = _blueprint(
        [
            {"name": "age", "type": "number"},
            {"name": "ratio", "type": "number"},
            {"name": "agree", "type": "checkbox"},
            {"name": "tags", "type": "checkboxes"},
            {"name": "email", "type": "email"},
        ]
    )
    data = {"age": "42", "ratio": "0.5", "agree": 1, "tags": "a", "email": " a@b.co ", "extra": "kept"}

    result = blueprint.filter(data)

    assert result is data
    assert data == {"age": 42, "ratio": 0.5, "agree": True, "tags": ["a"], "email": "a@b.co", "extra": "kept"}
