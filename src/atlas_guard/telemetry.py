from __future__ import annotations

"""Audit telemetry: sanitized, append-only JSONL events for security-relevant paths."""

import hashlib
import json
import platform
import re
import sys
import unicodedata
import uuid
from collections import Counter
from datetime import UTC, datetime
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
from typing import Any


SCHEMA_VERSION = "0.1"
VALID_EVENT_TYPES = {
    "guard.started",
    "write.rejected",
    "write.failed",
    "authz.metadata_corrupt",
    "state.migrated",
    "sync.push_failed",
    "sync.hydrated",
    "sync.hydrate_failed",
    "persist.write_rejected",
    "persist.integrity_failed",
    "risk.flagged",
}
VALID_SOURCES = {"cli", "api", "library"}
MAX_TEXT_LENGTH = 200
REDACTED = "[redacted]"

# Credential shapes that must never reach the event log.
SECRET_PATTERNS = (
    re.compile(r"\bsk-[A-Za-z0-9]{16,}\b"),
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"),
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
    re.compile(r"\b[\w-]{16,}\.[\w-]{16,}\.[\w-]{16,}\b"),
    re.compile(r"\b(?:Bearer|Token)\s+[\w.-]{16,}\b", re.IGNORECASE),
    re.compile(r"-----BEGIN (?:RSA |EC |OPENSSH )?PRIVATE KEY-----"),
)


def looks_secret(text: str) -> bool:
    return any(pattern.search(text) for pattern in SECRET_PATTERNS)


def hashlib_sha256_hex(value: str) -> str:
    """Hash identifiers (rejected keys, unknown event names) before they are logged."""

    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class Scrubber:
    """Recursively clean an event payload, counting what it had to change."""

    def __init__(self) -> None:
        self.redacted = 0
        self.truncated = 0

    @property
    def changed(self) -> bool:
        return bool(self.redacted or self.truncated)

    def scrub(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {self._text(str(key)): self.scrub(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.scrub(item) for item in value]
        if value is None or isinstance(value, (bool, int, float)):
            return value
        return self._text(str(value))

    def _text(self, raw: str) -> str:
        text = "".join(ch for ch in raw if not unicodedata.category(ch).startswith("C")).strip()
        if looks_secret(text):
            self.redacted += 1
            return REDACTED
        if len(text) > MAX_TEXT_LENGTH:
            self.truncated += 1
            return f"{text[:MAX_TEXT_LENGTH]}...[truncated]"
        return text


def _guard_version() -> str:
    try:
        return package_version("atlas-guard")
    except PackageNotFoundError:
        return "0.1.0"


def _timestamp() -> str:
    return datetime.now(tz=UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class TelemetryLogger:
    """Append-only audit logger. Never raises into the caller.

    `source` tags every event with the surface that produced it (`cli`, `api`
    or `library`); a single call may override it.
    """

    def __init__(self, events_path: Path, *, source: str = "library") -> None:
        self.events_path = events_path
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        self.source = source if source in VALID_SOURCES else "library"
        self.build = {
            "guard_version": _guard_version(),
            "python_version": sys.version.split()[0],
            "platform": platform.platform(),
        }

    def _envelope(self, event_type: str, source: str | None, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "event_id": str(uuid.uuid4()),
            "ts": _timestamp(),
            "event_type": event_type,
            "source": source if source in VALID_SOURCES else self.source,
            "build": self.build,
            "data": data,
        }

    def _append(self, event: dict[str, Any]) -> None:
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
        with self.events_path.open("a", encoding="utf-8", newline="\n") as handle:
            handle.write(line + "\n")

    def log_event(self, event_type: str, *, data: dict[str, Any], source: str | None = None) -> None:
        """Append one sanitized event, plus a `risk.flagged` note when scrubbing changed it."""

        try:
            if event_type not in VALID_EVENT_TYPES:
                data = {"reason": "invalid_event_type", "invalid_event_type_hash": hashlib_sha256_hex(event_type)}
                event_type = "risk.flagged"
            scrubber = Scrubber()
            clean = scrubber.scrub(data)
            self._append(self._envelope(event_type, source, clean))
            if scrubber.changed:
                note = {
                    "reason": "telemetry_sanitized",
                    "trigger_event_type": event_type,
                    "fields_redacted_count": scrubber.redacted,
                    "fields_truncated_count": scrubber.truncated,
                }
                self._append(self._envelope("risk.flagged", source, note))
        except Exception as exc:  # noqa: BLE001
            print(f"[telemetry] failed to append event: {exc}", file=sys.stderr)

    def iter_events(self) -> list[dict[str, Any]]:
        if not self.events_path.exists():
            return []
        events: list[dict[str, Any]] = []
        for line in self.events_path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                events.append(payload)
        return events

    def purge(self) -> bool:
        if not self.events_path.exists():
            return False
        self.events_path.unlink()
        return True

    def status(self) -> dict[str, Any]:
        events = self.iter_events()
        by_type = Counter(str(event.get("event_type", "unknown")) for event in events)
        return {
            "events_path": str(self.events_path),
            "event_count": len(events),
            "events_by_type": dict(sorted(by_type.items())),
            "build": self.build,
        }
