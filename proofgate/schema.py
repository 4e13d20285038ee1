"""JSON Schema validation for proofgate documents.

Schemas live in ``proofgate/schemas`` and reference each other by ``$id``
through a shared ``referencing`` registry. Validators are cached.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, List, Optional, Tuple

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"

PUBLIC_INPUTS_SCHEMA = "public-inputs.schema.json"
ATTESTATION_SCHEMA = "attestation.schema.json"


def _load_schema(name: str) -> dict:
    with open(SCHEMAS_DIR / name, encoding="utf-8") as f:
        return json.load(f)


@lru_cache(maxsize=1)
def schema_registry() -> Registry:
    """Registry of every bundled schema, keyed by its ``$id``."""
    resources = []
    for path in sorted(SCHEMAS_DIR.glob("*.schema.json")):
        schema = _load_schema(path.name)
        resources.append((schema["$id"], Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(name: str) -> Draft202012Validator:
    return Draft202012Validator(_load_schema(name), registry=schema_registry())


def validate_against_schema(obj: Any, name: str) -> List[str]:
    """Validate ``obj``; returns error messages (empty if valid)."""
    validator = schema_validator(name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: [str(p) for p in e.path])
    ]


def first_error_field(obj: Any, name: str) -> Optional[Tuple[str, str]]:
    """(field, message) of the first schema violation, or None."""
    validator = schema_validator(name)
    errors = sorted(validator.iter_errors(obj), key=lambda e: [str(p) for p in e.path])
    if not errors:
        return None
    error = errors[0]
    field = str(error.path[0]) if error.path else ""
    if not field and error.validator == "required":
        missing = [k for k in error.validator_value if isinstance(obj, dict) and k not in obj]
        field = missing[0] if missing else ""
    return field, error.message
