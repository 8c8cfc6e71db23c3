from formstage.services.field_normalizer import (
    clean_data_keys,
    decode_data,
    process_fields,
    reconcile_fields,
)


def test_decode_data_deep_merges_json_payload():
    decoded = decode_data({"a": {"x": 1}, "_json": '{"a": {"y": 2}}'})

    assert decoded == {"a": {"x": 1, "y": 2}}


def test_decode_data_json_value_overwrites_same_path():
    decoded = decode_data({"a": {"x": 1}, "_json": '{"a": {"x": 5}}'})

    assert decoded == {"a": {"x": 5}}


def test_decode_data_accepts_map_of_json_strings_and_reports_bad_json():
    errors: list[str] = []
    decoded = decode_data(
        {"_json": {"tags": '["a", "b"]', "empty": "", "broken": "{nope"}},
        errors,
    )

    assert decoded == {"tags": ["a", "b"]}
    assert len(errors) == 1
    assert "broken" in errors[0]


def test_decode_data_non_mapping_is_empty():
    assert decode_data("not a dict") == {}
    assert decode_data(None) == {}


def test_clean_data_keys_rewrites_escaped_brackets_at_every_depth():
    cleaned = clean_data_keys({"a%5Bb%5D": {"c%5B0%5D": 1}, "list": [{"d%5Be%5D": 2}]})

    assert cleaned == {"a[b]": {"c[0]": 1}, "list": [{"d[e]": 2}]}


def test_reconcile_moves_positional_values_to_unnamed_fields():
    fields = process_fields({"first": {"type": "text"}, "second": {"type": "text"}})

    result = reconcile_fields(fields, {0: "one", "1": "two"})

    assert result == {"first": "one", "second": "two"}


def test_reconcile_coerces_checkbox_and_switch_to_presence():
    fields = process_fields(
        [
            {"name": "agree", "type": "checkbox"},
            {"name": "newsletter", "type": "switch"},
        ]
    )

    result = reconcile_fields(fields, {"agree": "0"})

    assert result["agree"] is True
    assert result["newsletter"] is False


def test_process_fields_defaults_type_and_renames_numeric_keys():
    processed = process_fields([{"name": "email"}, {"label": "No name"}])

    assert list(processed) == ["email", "1"]
    assert processed["email"]["type"] == "text"
    assert processed["1"]["type"] == "text"


def test_process_fields_merges_type_defaults_with_field_winning():
    types = {"file": {"multiple": False, "accept": ["image/*"]}}

    processed = process_fields({"upload": {"type": "file", "multiple": True}}, types)

    assert processed["upload"] == {"type": "file", "multiple": True, "accept": ["image/*"]}


def test_process_fields_recurses_into_children():
    processed = process_fields(
        {"section": {"type": "section", "fields": [{"name": "city"}]}},
    )

    assert processed["section"]["fields"] == {"city": {"name": "city", "type": "text"}}
