"""Testes da validação de dados coletados contra o subconjunto de JSON Schema."""

from __future__ import annotations

from rotaflow.domain.schema import (
    build_object_schema,
    describe_field,
    matches_type,
    runtime_type_name,
    validate_against_schema,
)

SCHEMA = build_object_schema(
    {
        "name": {"type": "string", "description": "Full name"},
        "guests": {"type": "integer"},
        "price": {"type": ["number", "null"]},
        "size": {"type": "string", "enum": ["S", "M", "L"]},
        "tags": {"type": "array"},
    },
    required=["name"],
)


class TestValidateAgainstSchema:
    """Tipo, enum e campos fora do schema."""

    def test_valid_data_has_no_errors(self):
        data = {"name": "Ana", "guests": 2, "price": 9.5, "size": "M", "tags": ["a"]}
        assert validate_against_schema(data, SCHEMA) == []

    def test_type_mismatch_is_reported(self):
        (error,) = validate_against_schema({"name": 123}, SCHEMA)
        assert error.field == "name"
        assert error.value == 123
        assert error.schema_path == "properties.name.type"
        assert "expected 'string'" in error.message

    def test_unknown_field_is_reported(self):
        (error,) = validate_against_schema({"nickname": "x"}, SCHEMA)
        assert error.field == "nickname"
        assert error.schema_path == "properties.nickname"

    def test_enum_violation_is_reported(self):
        (error,) = validate_against_schema({"size": "XL"}, SCHEMA)
        assert error.schema_path == "properties.size.enum"

    def test_none_is_always_valid(self):
        assert validate_against_schema({"name": None}, SCHEMA) == []

    def test_schema_without_properties_validates_nothing(self):
        assert validate_against_schema({"x": 1}, {"type": "object"}) == []
        assert validate_against_schema({"x": 1}, None) == []

    def test_integer_accepts_integral_float_but_not_bool(self):
        assert validate_against_schema({"guests": 3.0}, SCHEMA) == []
        assert len(validate_against_schema({"guests": 2.5}, SCHEMA)) == 1
        assert len(validate_against_schema({"guests": True}, SCHEMA)) == 1


class TestSchemaHelpers:
    """Helpers de tipo e descrição."""

    def test_runtime_type_name(self):
        assert runtime_type_name(True) == "boolean"
        assert runtime_type_name(1) == "number"
        assert runtime_type_name("x") == "string"
        assert runtime_type_name(None) == "null"
        assert runtime_type_name({"a": 1}) == "object"

    def test_matches_type(self):
        assert matches_type([1], "array")
        assert not matches_type("1", "number")

    def test_describe_field(self):
        assert describe_field(SCHEMA, "name") == ("string", "Full name")
        assert describe_field(SCHEMA, "price") == ("number | null", None)
        assert describe_field(None, "missing") == ("string", None)

    def test_build_object_schema(self):
        assert SCHEMA["required"] == ["name"]
        assert SCHEMA["additionalProperties"] is False
