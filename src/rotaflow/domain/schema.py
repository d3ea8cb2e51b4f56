"""Subconjunto de JSON Schema usado em campos de rota e validação de coleta.

Formato aceito: ``{type, properties, required, items, enum,
additionalProperties, description}``. Não é um validador JSON Schema
completo: verifica apenas presença no schema, tipo em tempo de execução
e enum, que é o necessário para sinalizar (não bloquear) dados coletados.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

JsonSchema = dict[str, Any]

_PY_TYPE_NAMES: tuple[tuple[type, str], ...] = (
    (bool, "boolean"),
    (int, "number"),
    (float, "number"),
    (str, "string"),
    (list, "array"),
    (tuple, "array"),
    (dict, "object"),
)


@dataclass(slots=True)
class ValidationError:
    """Erro informativo de validação; nunca bloqueia o merge de dados."""

    field: str
    value: Any
    message: str
    schema_path: str


def runtime_type_name(value: Any) -> str:
    """Nome do tipo JSON correspondente ao valor Python."""
    # bool antes de int: bool é subclasse de int
    for py_type, name in _PY_TYPE_NAMES:
        if isinstance(value, py_type):
            return name
    if isinstance(value, Mapping):
        return "object"
    if value is None:
        return "null"
    return type(value).__name__


def matches_type(value: Any, expected: str) -> bool:
    """True se o valor satisfaz um tipo JSON Schema.

    ``integer`` aceita números integrais (inclusive floats como 3.0).
    """
    actual = runtime_type_name(value)
    if expected == "integer":
        if actual != "number":
            return False
        return isinstance(value, int) or float(value).is_integer()
    return actual == expected


def allowed_types(field_schema: Mapping[str, Any]) -> list[str]:
    raw = field_schema.get("type")
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    return [str(t) for t in raw]


def validate_field(
    field: str, value: Any, field_schema: Mapping[str, Any]
) -> ValidationError | None:
    """Valida tipo e enum de um campo; None/sem tipo são considerados válidos."""
    if value is None:
        return None

    types = allowed_types(field_schema)
    if types and not any(matches_type(value, t) for t in types):
        return ValidationError(
            field=field,
            value=value,
            message=(
                f"Field '{field}' has type '{runtime_type_name(value)}' "
                f"but expected '{' | '.join(types)}'"
            ),
            schema_path=f"properties.{field}.type",
        )

    choices = field_schema.get("enum")
    if choices and value not in choices:
        return ValidationError(
            field=field,
            value=value,
            message=f"Field '{field}' must be one of {list(choices)}",
            schema_path=f"properties.{field}.enum",
        )
    return None


def validate_against_schema(
    data: Mapping[str, Any], schema: Mapping[str, Any] | None
) -> list[ValidationError]:
    """Valida dados coletados contra as `properties` do schema.

    Campos fora de `properties` e divergências de tipo viram erros.
    Sem `properties` nada é validado.
    """
    if not schema:
        return []
    properties: Mapping[str, Any] | None = schema.get("properties")
    if not properties:
        return []

    errors: list[ValidationError] = []
    for key, value in data.items():
        if key not in properties:
            errors.append(
                ValidationError(
                    field=key,
                    value=value,
                    message=f"Field '{key}' is not defined in schema",
                    schema_path=f"properties.{key}",
                )
            )
            continue
        error = validate_field(key, value, properties[key] or {})
        if error is not None:
            errors.append(error)
    return errors


def describe_field(schema: Mapping[str, Any] | None, field: str) -> tuple[str, str | None]:
    """Retorna (tipo, descrição) de um campo para montagem de prompt."""
    properties = (schema or {}).get("properties") or {}
    field_schema = properties.get(field) or {}
    types = allowed_types(field_schema)
    return (" | ".join(types) if types else "string", field_schema.get("description"))


def build_object_schema(
    properties: Mapping[str, Any],
    required: Sequence[str] = (),
    *,
    additional_properties: bool = False,
) -> JsonSchema:
    """Atalho para montar schema de objeto no subconjunto aceito."""
    schema: JsonSchema = {
        "type": "object",
        "properties": dict(properties),
        "additionalProperties": additional_properties,
    }
    if required:
        schema["required"] = list(required)
    return schema
