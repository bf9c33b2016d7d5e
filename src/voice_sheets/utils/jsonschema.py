"""JSON Schema validation wrapper."""

from __future__ import annotations

from jsonschema import Draft202012Validator

from voice_sheets.errors import RequestValidationError


def validate_payload(schema: dict[str, object], payload: object) -> list[str]:
    """Validate payload against schema and return error messages.

    Messages are prefixed with the JSON path of the offending field when the
    error is nested (``intent.confidence: 1.5 is greater than the maximum``).
    """
    validator = Draft202012Validator(schema)
    errors: list[str] = []
    ordered = sorted(
        validator.iter_errors(payload),
        key=lambda e: [str(p) for p in e.absolute_path],
    )
    for error in ordered:
        path = ".".join(str(p) for p in error.absolute_path)
        errors.append(f"{path}: {error.message}" if path else error.message)
    return errors


def validate_or_raise(schema: dict[str, object], payload: object) -> None:
    errors = validate_payload(schema, payload)
    if errors:
        raise RequestValidationError("Input validation failed: " + "; ".join(errors), errors)
