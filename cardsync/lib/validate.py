"""
JSON Schema checks for card frontmatter and project configuration.

Schemas live in cardsync/schemas/<name>.schema.json. Every failure is
collected, sorted by the key it concerns, and the first one is raised so
the same bad input always produces the same message.
"""

import json
from pathlib import Path

import jsonschema

SCHEMAS_DIR = Path(__file__).parent.parent / "schemas"


class ValidationError(Exception):
    """Data didn't match its schema.

    `path` is the offending key, or "(root)" when no single key is to blame.
    `problems` holds every failure as "path: message", in key order.
    """

    def __init__(self, schema_name: str, message: str, path: str | None = None,
                 problems: list[str] | None = None):
        self.schema_name = schema_name
        self.message = message
        self.path = path
        self.problems = problems or []
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


_validators: dict[str, jsonschema.Draft7Validator] = {}


def _validator(schema_name: str) -> jsonschema.Draft7Validator:
    if schema_name not in _validators:
        schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
        if not schema_path.exists():
            raise ValidationError(schema_name, f"Schema file not found: {schema_path}")
        _validators[schema_name] = jsonschema.Draft7Validator(json.loads(schema_path.read_text()))
    return _validators[schema_name]


def _error_path(error: jsonschema.ValidationError) -> str:
    if error.absolute_path:
        return ".".join(str(p) for p in error.absolute_path)
    # Name the first unexpected key instead of blaming the whole mapping
    if error.validator == "additionalProperties" and isinstance(error.instance, dict):
        known = error.schema.get("properties", {})
        unexpected = sorted(k for k in error.instance if k not in known)
        if unexpected:
            return unexpected[0]
    return "(root)"


def validate(data: dict, schema_name: str) -> None:
    """
    Check `data` against the named schema ("card" or "project").

    Raises:
        ValidationError: on the first failure in key order; all failures are
            listed in `problems`
    """
    failures = sorted(
        ((_error_path(e), e.message) for e in _validator(schema_name).iter_errors(data)),
        key=lambda failure: failure[0],
    )
    if failures:
        path, message = failures[0]
        raise ValidationError(
            schema_name,
            message,
            path,
            problems=[f"{p}: {m}" for p, m in failures],
        )
