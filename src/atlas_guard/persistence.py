from __future__ import annotations

"""HTTP persistence service used to share gated keys across clients."""

import json
import threading
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, Field

from .store import STORE_KEY_PATTERN, KeyValueStore
from .telemetry import TelemetryLogger


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1"
    key_count: int = Field(ge=0)


def _is_json(value: str) -> bool:
    try:
        json.loads(value)
    except (TypeError, ValueError):
        return False
    return True


class PersistenceManager:
    """JSON-validated reads and serialized writes over a backend store."""

    def __init__(self, store: KeyValueStore, *, telemetry: TelemetryLogger | None = None) -> None:
        self.store = store
        self.telemetry = telemetry
        # One writer at a time; FileStore reuses a temp path per key.
        self._write_lock = threading.Lock()

    def read(self, key: str) -> str | None:
        try:
            data = self.store.get(key)
        except Exception:  # noqa: BLE001
            return None
        if not data:
            return None
        if not _is_json(data):
            if self.telemetry is not None:
                self.telemetry.log_event(
                    "persist.integrity_failed",
                    source="api",
                    data={"reason": "integrity_check_failed", "key": key},
                )
            return None
        return data

    def write(self, key: str, value: str) -> bool:
        if not STORE_KEY_PATTERN.match(key) or not _is_json(value):
            if self.telemetry is not None:
                self.telemetry.log_event(
                    "persist.write_rejected",
                    source="api",
                    data={"reason": "invalid_key_or_json", "key": key},
                )
            return False
        with self._write_lock:
            try:
                self.store.set(key, value)
            except (OSError, ValueError):
                return False
        return True

    def list_keys(self) -> list[str]:
        try:
            return self.store.keys()
        except OSError:
            return []

    def read_all(self) -> dict[str, str]:
        payload: dict[str, str] = {}
        for key in self.list_keys():
            value = self.read(key)
            if value is not None:
                payload[key] = value
        return payload


def create_persistence_app(manager: PersistenceManager) -> FastAPI:
    """Create the `/api/persist` routes backed by a `PersistenceManager`."""

    app = FastAPI(title="Atlas Guard Persistence API", version="0.1")

    @app.middleware("http")
    async def trace_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        trace_id = f"api:{uuid4()}"
        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001
            if manager.telemetry is not None:
                manager.telemetry.log_event(
                    "risk.flagged",
                    source="api",
                    data={
                        "reason": "api_internal_error",
                        "endpoint": request.url.path,
                        "error_type": exc.__class__.__name__,
                        "trace_id": trace_id,
                    },
                )
            response = JSONResponse(
                status_code=500,
                content={"code": "INTERNAL_SERVER_ERROR", "message": "Internal server error", "trace_id": trace_id},
            )
        response.headers["X-Atlas-Trace-Id"] = trace_id
        return response

    @app.get("/v1/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(key_count=len(manager.list_keys()))

    @app.get("/api/persist/all")
    def read_all() -> dict[str, str]:
        return manager.read_all()

    @app.get("/api/persist/{key}")
    def read_key(key: str) -> Response:
        data = manager.read(key)
        if data is None:
            raise HTTPException(status_code=404, detail="Not Found")
        return Response(content=data, media_type="application/json")

    @app.post("/api/persist/{key}")
    async def write_key(key: str, request: Request) -> PlainTextResponse:
        body = (await request.body()).decode("utf-8", errors="replace")
        if manager.write(key, body):
            return PlainTextResponse("OK", status_code=200)
        return PlainTextResponse("Error", status_code=500)

    return app
