from __future__ import annotations

"""SSDLC compliance scoring for protocol names."""

from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml
from jsonschema import Draft202012Validator

from .models import STATUS_AT_RISK, STATUS_SECURE, ComplianceResult


DEFAULT_SCORE = 85
SECURE_THRESHOLD = 95
PROFILE_SCHEMA_VERSION = "0.1"

COMPLIANCE_TABLE: Mapping[str, int] = MappingProxyType(
    {
        "view_editor": 98,
        "view_map": 95,
        "view_security": 100,
        "view_docs": 92,
        "view_security_intel": 100,
        "manage_users": 100,
    }
)

PROFILE_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["schema_version", "profile_id", "scores"],
    "additionalProperties": False,
    "properties": {
        "schema_version": {"const": PROFILE_SCHEMA_VERSION},
        "profile_id": {"type": "string", "minLength": 1, "maxLength": 120},
        "description": {"type": "string"},
        "scores": {
            "type": "object",
            "propertyNames": {"minLength": 1, "maxLength": 200},
            "additionalProperties": {"type": "integer", "minimum": 0, "maximum": 100},
        },
    },
}


def status_for_score(score: int) -> str:
    return STATUS_SECURE if score >= SECURE_THRESHOLD else STATUS_AT_RISK


def _checked_score(protocol: Any, score: Any) -> int:
    if not isinstance(protocol, str) or not protocol:
        raise ValueError(f"Compliance override protocol must be a non-empty string: {protocol!r}")
    if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= 100:
        raise ValueError(f"Compliance score for '{protocol}' must be an integer between 0 and 100.")
    return score


def load_compliance_profile(path: Path) -> dict[str, int]:
    """Load and validate a YAML compliance profile, returning its score overrides."""

    if not path.exists():
        raise ValueError(f"Compliance profile not found: {path}")
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Compliance profile is not valid YAML: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Compliance profile must be a mapping: {path}")
    validator = Draft202012Validator(PROFILE_SCHEMA)
    errors = sorted(validator.iter_errors(payload), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        where = ".".join(str(part) for part in first.path) or "<root>"
        raise ValueError(f"Compliance profile validation failed for {path} at {where}: {first.message}")
    return {str(protocol): int(score) for protocol, score in payload["scores"].items()}


class ComplianceScorer:
    """Pure protocol scorer; the table is frozen at construction."""

    def __init__(self, overrides: Mapping[str, int] | None = None) -> None:
        table = dict(COMPLIANCE_TABLE)
        for protocol, score in (overrides or {}).items():
            table[protocol] = _checked_score(protocol, score)
        self.table: Mapping[str, int] = MappingProxyType(table)

    @classmethod
    def from_profile(cls, path: Path) -> "ComplianceScorer":
        return cls(load_compliance_profile(path))

    def validate_ssdlc_compliance(self, protocol: str) -> ComplianceResult:
        try:
            score = self.table.get(protocol, DEFAULT_SCORE)
        except TypeError:
            score = DEFAULT_SCORE
        return ComplianceResult(status=status_for_score(score), score=score)


_DEFAULT_SCORER = ComplianceScorer()


def validate_ssdlc_compliance(protocol: str) -> ComplianceResult:
    """Score a protocol against the built-in table."""

    return _DEFAULT_SCORER.validate_ssdlc_compliance(protocol)
