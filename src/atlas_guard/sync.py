from __future__ import annotations

"""Outbox-based sync between the local gated store and the persistence service."""

import ipaddress
import json
from collections import deque
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlsplit
from urllib.request import Request, urlopen

from .gate import WriteGate, has_allowed_prefix
from .telemetry import TelemetryLogger


DEFAULT_TIMEOUT_SECONDS = 10
MAX_OUTBOX = 1000


def is_local_host(hostname: str) -> bool:
    normalized = hostname.strip().lower().rstrip(".")
    if normalized == "localhost":
        return True
    try:
        return ipaddress.ip_address(normalized).is_loopback
    except ValueError:
        return False


def validate_api_base(api_base: str, *, allow_nonlocal: bool = False) -> str:
    """Validate persistence API base URL with localhost-only default safety guard."""

    parsed = urlsplit(api_base)
    if parsed.scheme not in {"http", "https"}:
        raise ValueError("api-base must use http or https scheme.")
    if parsed.username or parsed.password:
        raise ValueError("api-base must not include userinfo.")
    if not parsed.hostname:
        raise ValueError("api-base must include a host.")
    if not allow_nonlocal and not is_local_host(parsed.hostname):
        raise ValueError("api-base must target localhost by default. Use allow_nonlocal to override.")
    return api_base.rstrip("/")


class ClusterSync:
    """Queue gated writes without I/O; push and hydrate only on explicit calls."""

    def __init__(
        self,
        api_base: str,
        gate: WriteGate,
        *,
        allow_nonlocal: bool = False,
        telemetry: TelemetryLogger | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.api_base = validate_api_base(api_base, allow_nonlocal=allow_nonlocal)
        self.gate = gate
        self.telemetry = telemetry
        self.timeout = timeout
        # Oldest entries drop first once the outbox is full.
        self.outbox: deque[tuple[str, str]] = deque(maxlen=MAX_OUTBOX)
        self._hydrating = False
        gate.add_listener(self.enqueue)

    def enqueue(self, key: str, value: str) -> None:
        if self._hydrating:
            return
        self.outbox.append((key, value))

    def enqueue_existing(self) -> int:
        """Queue every prefixed key already in the backing store."""

        queued = 0
        for key in self.gate.backend.keys():
            if not has_allowed_prefix(key, self.gate.prefixes):
                continue
            value = self.gate.backend.get(key)
            if value is None:
                continue
            self.outbox.append((key, value))
            queued += 1
        return queued

    def _emit(self, event_type: str, data: dict[str, Any]) -> None:
        if self.telemetry is not None:
            self.telemetry.log_event(event_type, data=data)

    def _request(self, method: str, path: str, body: bytes | None = None) -> bytes:
        headers = {"Content-Type": "application/json"}
        request = Request(url=f"{self.api_base}{path}", method=method, headers=headers, data=body)
        try:
            with urlopen(request, timeout=self.timeout) as response:  # nosec B310
                return response.read()
        except HTTPError as exc:
            raise RuntimeError(f"API HTTP error {exc.code}") from exc
        except URLError as exc:
            raise RuntimeError(f"API request failed: {exc.reason}") from exc

    def flush(self) -> dict[str, Any]:
        """Push queued writes; failed entries stay queued for the next flush."""

        pushed = 0
        failed: list[str] = []
        remaining: deque[tuple[str, str]] = deque(maxlen=MAX_OUTBOX)
        while self.outbox:
            key, value = self.outbox.popleft()
            try:
                self._request("POST", f"/api/persist/{quote(key, safe='')}", value.encode("utf-8"))
                pushed += 1
            except (RuntimeError, OSError) as exc:
                failed.append(key)
                remaining.append((key, value))
                self._emit("sync.push_failed", {"key": key, "error": str(exc)})
        self.outbox = remaining
        return {"pushed": pushed, "failed": failed, "pending": len(self.outbox)}

    def hydrate(self) -> bool:
        """Apply every string value from the service through the write gate."""

        try:
            payload = json.loads(self._request("GET", "/api/persist/all").decode("utf-8"))
        except (RuntimeError, OSError, ValueError) as exc:
            self._emit("sync.hydrate_failed", {"error": str(exc)})
            return False
        if not isinstance(payload, dict):
            self._emit("sync.hydrate_failed", {"error": "unexpected_payload_shape"})
            return False

        applied = 0
        rejected = 0
        # Hydrated values must not bounce straight back into the outbox.
        self._hydrating = True
        try:
            for key, value in payload.items():
                if not isinstance(value, str):
                    continue
                if self.gate.secure_write(key, value):
                    applied += 1
                else:
                    rejected += 1
        finally:
            self._hydrating = False
        self._emit("sync.hydrated", {"applied_count": applied, "rejected_count": rejected})
        return True
