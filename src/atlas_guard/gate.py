from __future__ import annotations

"""Write gate enforcing namespace prefixes on every security-relevant write."""

import json
import sys
from typing import Any, Callable, Iterable

from .store import NAMESPACE_PREFIXES, KeyValueStore, NamespacedStore
from .telemetry import TelemetryLogger, hashlib_sha256_hex


WriteListener = Callable[[str, str], None]
MIGRATED_LOGICAL_KEYS = ("session", "groups")


def has_allowed_prefix(key: Any, prefixes: Iterable[str] = NAMESPACE_PREFIXES) -> bool:
    if not isinstance(key, str):
        return False
    return any(key.startswith(prefix) for prefix in prefixes)


def _stringify(value: Any) -> str:
    # Strings are stored as-is so callers never read back '"value"'.
    if isinstance(value, str):
        return value
    return json.dumps(value)


class WriteGate:
    """Refuse writes outside the allowed prefixes; report through the return value."""

    def __init__(
        self,
        backend: KeyValueStore,
        *,
        prefixes: Iterable[str] = NAMESPACE_PREFIXES,
        telemetry: TelemetryLogger | None = None,
    ) -> None:
        self.backend = backend
        self.prefixes = tuple(prefixes)
        self.telemetry = telemetry
        self._listeners: list[WriteListener] = []

    def add_listener(self, listener: WriteListener) -> None:
        self._listeners.append(listener)

    def _emit(self, event_type: str, data: dict[str, Any]) -> None:
        if self.telemetry is not None:
            self.telemetry.log_event(event_type, data=data)

    def secure_write(self, key: str, value: Any) -> bool:
        if not has_allowed_prefix(key, self.prefixes):
            key_text = key if isinstance(key, str) else repr(key)
            self._emit(
                "write.rejected",
                {
                    "reason": "unauthorized_prefix",
                    "key_hash": hashlib_sha256_hex(key_text),
                    "allowed_prefixes": list(self.prefixes),
                },
            )
            return False

        try:
            string_value = _stringify(value)
            self.backend.set(key, string_value)
        except Exception as exc:  # noqa: BLE001
            self._emit(
                "write.failed",
                {"key": key, "error_type": exc.__class__.__name__},
            )
            return False

        for listener in self._listeners:
            try:
                listener(key, string_value)
            except Exception as exc:  # noqa: BLE001
                print(f"[gate] write listener failed for {key}: {exc}", file=sys.stderr)
        return True

    def write_logical(self, logical_key: str, value: Any) -> bool:
        """Write a logical key under the current namespace only."""

        return self.secure_write(f"{self.prefixes[0]}{logical_key}", value)


def migrate_legacy(
    accessor: NamespacedStore,
    gate: WriteGate,
    logical_keys: Iterable[str] = MIGRATED_LOGICAL_KEYS,
) -> list[str]:
    """Copy legacy-only values into the current namespace; legacy keys are kept."""

    migrated: list[str] = []
    for logical_key in logical_keys:
        if accessor.has_current(logical_key):
            continue
        legacy = accessor.legacy_value(logical_key)
        if legacy is None:
            continue
        if gate.write_logical(logical_key, legacy):
            migrated.append(logical_key)
    if migrated and gate.telemetry is not None:
        gate.telemetry.log_event("state.migrated", data={"logical_keys": migrated, "migrated_count": len(migrated)})
    return migrated
