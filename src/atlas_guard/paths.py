from __future__ import annotations

import os
from pathlib import Path


def guard_home() -> Path:
    configured = os.environ.get("ATLAS_GUARD_HOME")
    if configured:
        return Path(configured).expanduser().resolve()
    return Path.home() / ".atlas-guard"


def ensure_home_dirs(base: Path) -> dict[str, Path]:
    store = base / "store"
    telemetry = base / "telemetry"
    server = base / "server"
    for path in (base, store, telemetry, server):
        path.mkdir(parents=True, exist_ok=True)
    return {"base": base, "store": store, "telemetry": telemetry, "server": server}


def env_text(name: str) -> str | None:
    raw = os.environ.get(name, "").strip()
    return raw or None
