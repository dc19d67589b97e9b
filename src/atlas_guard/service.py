from __future__ import annotations

"""Guard service wiring the store, write gate, engine, scorer, telemetry, and sync."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .authz import AuthorizationEngine
from .compliance import ComplianceScorer
from .gate import MIGRATED_LOGICAL_KEYS, WriteGate, migrate_legacy
from .models import ComplianceResult
from .paths import ensure_home_dirs, env_text, guard_home
from .resolver import GroupSessionResolver
from .store import FileStore, KeyValueStore, NamespacedStore
from .sync import ClusterSync
from .telemetry import TelemetryLogger, hashlib_sha256_hex


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class GuardService:
    """Entry point for UI collaborators: three decisions over one injected store."""

    accessor: NamespacedStore
    gate: WriteGate
    resolver: GroupSessionResolver
    engine: AuthorizationEngine
    scorer: ComplianceScorer
    telemetry: TelemetryLogger | None = None
    sync: ClusterSync | None = None
    home: Path | None = None

    @classmethod
    def for_store(
        cls,
        backend: KeyValueStore,
        *,
        telemetry: TelemetryLogger | None = None,
        scorer: ComplianceScorer | None = None,
    ) -> "GuardService":
        """Build a service over an existing backend (in-memory stores in tests)."""

        accessor = NamespacedStore(backend)
        gate = WriteGate(backend, telemetry=telemetry)
        resolver = GroupSessionResolver(accessor)
        return cls(
            accessor=accessor,
            gate=gate,
            resolver=resolver,
            engine=AuthorizationEngine(resolver, telemetry=telemetry),
            scorer=scorer or ComplianceScorer(),
            telemetry=telemetry,
        )

    @classmethod
    def create(cls, home: Path | None = None, *, source: str = "library") -> "GuardService":
        """Instantiate a file-backed service from `ATLAS_GUARD_*` configuration."""

        home = home or guard_home()
        dirs = ensure_home_dirs(home)
        telemetry = TelemetryLogger(dirs["telemetry"] / "events.jsonl", source=source)

        profile = env_text("ATLAS_GUARD_COMPLIANCE_PROFILE")
        scorer = ComplianceScorer.from_profile(Path(profile).expanduser()) if profile else ComplianceScorer()

        service = cls.for_store(FileStore(dirs["store"]), telemetry=telemetry, scorer=scorer)
        service.home = home

        sync_url = env_text("ATLAS_GUARD_SYNC_URL")
        if sync_url:
            service.sync = ClusterSync(
                sync_url,
                service.gate,
                allow_nonlocal=_env_flag("ATLAS_GUARD_SYNC_ALLOW_NONLOCAL"),
                telemetry=telemetry,
            )

        telemetry.log_event(
            "guard.started",
            data={
                "home_path_hash": hashlib_sha256_hex(str(home)),
                "sync_enabled": service.sync is not None,
                "profile_loaded": bool(profile),
            },
        )
        return service

    def secure_write(self, key: str, value: Any) -> bool:
        return self.gate.secure_write(key, value)

    def authorize_protocol(self, protocol: str, user_permissions: Mapping[str, Any] | None = None) -> bool:
        return self.engine.authorize_protocol(protocol, user_permissions)

    def validate_ssdlc_compliance(self, protocol: str) -> ComplianceResult:
        return self.scorer.validate_ssdlc_compliance(protocol)

    def read(self, logical_key: str) -> Any | None:
        return self.accessor.read_json(logical_key)

    def migrate_legacy(self, logical_keys: tuple[str, ...] = MIGRATED_LOGICAL_KEYS) -> list[str]:
        return migrate_legacy(self.accessor, self.gate, logical_keys)

    def require_sync(self) -> ClusterSync:
        if self.sync is None:
            raise ValueError("Cluster sync is not configured. Set ATLAS_GUARD_SYNC_URL.")
        return self.sync
