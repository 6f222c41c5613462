"""JSON schema checks for rule tables and mark payloads shipped with the package."""
from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Mapping

from jsonschema import Draft202012Validator

SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"


@lru_cache(maxsize=None)
def _validator(schema_name: str) -> Draft202012Validator:
    schema_path = SCHEMA_DIR / schema_name
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema not found: {schema_path}")
    schema = json.loads(schema_path.read_text(encoding="utf-8"))
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


def schema_errors(payload: Mapping[str, object], schema_name: str) -> list[str]:
    """Return one ``location: message`` line per violation, ordered by path."""
    found = sorted(_validator(schema_name).iter_errors(payload), key=lambda e: [str(p) for p in e.path])
    return [f"{' -> '.join(str(part) for part in error.path) or '<root>'}: {error.message}" for error in found]


def _raise(errors: Iterable[str], label: str) -> None:
    joined = "\n".join(f"- {error}" for error in errors)
    raise ValueError(f"Schema validation failed for {label}:\n{joined}")


def validate_payload(payload: Mapping[str, object], schema_name: str, label: str) -> None:
    errors = schema_errors(payload, schema_name)
    if errors:
        _raise(errors, label)


def validate_records(records: Iterable[Mapping[str, object]], schema_name: str, label: str) -> None:
    for index, record in enumerate(records, start=1):
        errors = schema_errors(record, schema_name)
        if errors:
            _raise(errors, f"{label} #{index}")
