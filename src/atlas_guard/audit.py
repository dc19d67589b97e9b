from __future__ import annotations

"""Asset-level SSDLC audit scoring against a set of audit columns."""

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping


COMPLIANT_STRINGS = {
    "sim",
    "yes",
    "true",
    "ativo",
    "active",
    "on",
    "ligado",
    "1",
    "ok",
    "compliant",
    "conformidade",
    "conforme",
}
RISK_LOW = "LOW"
RISK_MEDIUM = "MEDIUM"
RISK_CRITICAL = "CRITICAL"
PROTECTED_SCORE = 90
CRITICAL_GAP_SCORE = 40
NON_ALNUM_PATTERN = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class AuditColumn:
    id: str
    label: str
    key: str


@dataclass(frozen=True)
class NodeCompliance:
    score: int
    risk_level: str
    compliance: dict[str, dict[str, Any]] = field(default_factory=dict)


def is_value_compliant(value: Any) -> bool:
    if value is True:
        return True
    if isinstance(value, int) and not isinstance(value, bool) and value == 1:
        return True
    if isinstance(value, str):
        return value.strip().lower() in COMPLIANT_STRINGS
    return False


def normalize_label(text: str) -> str:
    """Accent- and punctuation-insensitive form used for fuzzy label matching."""

    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return NON_ALNUM_PATTERN.sub("", stripped.lower())


def match_attribute(item: Any, column: AuditColumn) -> tuple[Any, str]:
    """Locate a column's value on an asset, returning `(value, strategy)`.

    Strategies are tried in order: attribute by id, attribute by label,
    direct property by column id, direct property by column key, and finally
    a fuzzy property-name match on the column label. `(None, "none")` means
    nothing matched.
    """

    if not isinstance(item, Mapping):
        return None, "none"
    attributes = _attributes(item)

    for attribute in attributes:
        if attribute.get("attributeId") == column.id:
            return attribute.get("value"), "attr_by_id"

    wanted_label = column.label.lower()
    for attribute in attributes:
        label = attribute.get("label")
        if isinstance(label, str) and label.lower() == wanted_label:
            return attribute.get("value"), "attr_by_label"

    if column.id in item:
        return item[column.id], "direct_by_id"
    if column.key in item:
        return item[column.key], "direct_by_key"

    target = normalize_label(column.label)
    for name in item:
        if isinstance(name, str) and normalize_label(name) == target:
            return item[name], "fuzzy"
    return None, "none"


def risk_level_for(score: int) -> str:
    if score > PROTECTED_SCORE:
        return RISK_LOW
    if score >= 50:
        return RISK_MEDIUM
    return RISK_CRITICAL


def _attributes(node: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    raw = node.get("attributes")
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, Mapping)]


def _native_entry(node: Mapping[str, Any], key: str) -> Mapping[str, Any] | None:
    compliance = node.get("compliance")
    if not isinstance(compliance, Mapping):
        return None
    entry = compliance.get(key)
    if isinstance(entry, Mapping) and entry.get("native"):
        return entry
    return None


def _column_value(node: Mapping[str, Any], column: AuditColumn) -> tuple[Any, str]:
    # Attributes keyed by the column key come first, then the label-based strategies.
    for attribute in _attributes(node):
        if attribute.get("attributeId") == column.key:
            return attribute.get("value"), "attr_by_id"
    return match_attribute(node, column)


def score_node(
    node: Any,
    columns: Iterable[AuditColumn],
    overrides: Mapping[str, bool] | None = None,
) -> NodeCompliance:
    """Score one asset: each satisfied column contributes an equal share of 100.

    A column is satisfied by an override (`"<node id>_<column key>"`), by a
    native compliance entry on the node, or by a compliant attribute value found
    through `match_attribute`. Native entries are copied into the report as-is.
    """

    column_list = list(columns)
    if not isinstance(node, Mapping):
        return NodeCompliance(score=0, risk_level=RISK_CRITICAL)
    overrides = overrides or {}
    per_column = 100 / (len(column_list) or 1)
    node_id = node.get("id")
    total = 0.0
    compliance: dict[str, dict[str, Any]] = {}

    for column in column_list:
        if overrides.get(f"{node_id}_{column.key}"):
            total += per_column
            compliance[column.key] = {"current": True, "native": False, "override": True}
            continue

        entry = _native_entry(node, column.key)
        if entry is not None:
            total += per_column
            compliance[column.key] = {**entry, "current": True, "native": True}
            continue

        value, strategy = _column_value(node, column)
        if strategy != "none" and is_value_compliant(value):
            total += per_column
            compliance[column.key] = {
                "current": True,
                "native": True,
                "value": value,
                "match_strategy": strategy,
            }
            continue

        compliance[column.key] = {"current": False, "native": False}

    # Half-up rounding; round() would bank 62.5 down to 62.
    score = int(total + 0.5)
    return NodeCompliance(score=score, risk_level=risk_level_for(score), compliance=compliance)


def security_stats(scores: Iterable[int]) -> dict[str, int]:
    values = list(scores)
    total = len(values)
    return {
        "total": total,
        "protected_nodes": sum(1 for score in values if score > PROTECTED_SCORE),
        "critical_gaps": sum(1 for score in values if score < CRITICAL_GAP_SCORE),
        "avg_score": int(sum(values) / total + 0.5) if total else 0,
    }
