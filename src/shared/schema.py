"""JSON Schema (Draft 7) helpers for capability inputs and outputs.

Schemas are checked and compiled once, when a capability is registered;
requests only run the compiled validator.
"""

from typing import Any, Optional

from jsonschema import Draft7Validator, SchemaError
from jsonschema.exceptions import ValidationError


def compile_schema(schema: dict[str, Any]) -> Optional[Draft7Validator]:
    """
    Check a declared schema and build its validator.

    Returns:
        The validator, or None for an empty schema (anything goes)

    Raises:
        ValueError: If the schema is not valid Draft 7
    """
    if not schema:
        return None
    try:
        Draft7Validator.check_schema(schema)
    except SchemaError as e:
        raise ValueError(f"Invalid JSON Schema: {e.message}") from e
    return Draft7Validator(schema, format_checker=Draft7Validator.FORMAT_CHECKER)


def _describe(error: ValidationError) -> str:
    location = ".".join(str(part) for part in error.absolute_path)
    return f"{location}: {error.message}" if location else error.message


def collect_errors(validator: Optional[Draft7Validator], data: Any) -> list[str]:
    """Readable messages for every violation, ordered by location."""
    if validator is None:
        return []
    errors = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
    return [_describe(error) for error in errors]


def validate_schema(data: Any, schema: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate data against a schema that has not been compiled.

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    errors = collect_errors(compile_schema(schema), data)
    return not errors, errors
