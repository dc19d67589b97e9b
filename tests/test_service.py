from __future__ import annotations

import json
from pathlib import Path

import pytest

from atlas_guard.service import GuardService


def _events(home: Path) -> list[dict]:
    path = home / "telemetry" / "events.jsonl"
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def test_create_builds_file_backed_service(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    home = tmp_path / "home"
    monkeypatch.setenv("ATLAS_GUARD_HOME", str(home))
    monkeypatch.delenv("ATLAS_GUARD_SYNC_URL", raising=False)
    monkeypatch.delenv("ATLAS_GUARD_COMPLIANCE_PROFILE", raising=False)

    service = GuardService.create()
    assert service.sync is None
    assert service.secure_write("atlas_session", '{"role": "USER", "groupId": "ops"}') is True
    assert service.secure_write("atlas_groups", '[{"id": "ops", "permissions": {"view_map": true}}]') is True
    assert (home / "store" / "atlas_session.json").exists()

    reopened = GuardService.create()
    assert reopened.authorize_protocol("view_map") is True
    assert reopened.authorize_protocol("view_editor") is False
    assert reopened.read("session") == {"role": "USER", "groupId": "ops"}

    started = [event for event in _events(home) if event["event_type"] == "guard.started"]
    assert len(started) == 2
    assert started[0]["data"]["sync_enabled"] is False


def test_create_loads_compliance_profile(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    profile = tmp_path / "profile.yaml"
    profile.write_text('schema_version: "0.1"\nprofile_id: local\nscores:\n  view_docs: 96\n', encoding="utf-8")
    monkeypatch.setenv("ATLAS_GUARD_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("ATLAS_GUARD_COMPLIANCE_PROFILE", str(profile))

    service = GuardService.create()
    assert service.validate_ssdlc_compliance("view_docs").to_dict() == {"status": "SECURE", "score": 96}


def test_create_with_sync_url(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("ATLAS_GUARD_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("ATLAS_GUARD_SYNC_URL", "http://127.0.0.1:9000")
    monkeypatch.delenv("ATLAS_GUARD_COMPLIANCE_PROFILE", raising=False)

    service = GuardService.create()
    assert service.require_sync().api_base == "http://127.0.0.1:9000"
    service.secure_write("atlas_groups", "[]")
    assert len(service.require_sync().outbox) == 1


def test_nonlocal_sync_url_requires_opt_in(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("ATLAS_GUARD_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("ATLAS_GUARD_SYNC_URL", "https://sync.example.com")
    monkeypatch.delenv("ATLAS_GUARD_SYNC_ALLOW_NONLOCAL", raising=False)
    monkeypatch.delenv("ATLAS_GUARD_COMPLIANCE_PROFILE", raising=False)
    with pytest.raises(ValueError):
        GuardService.create()

    monkeypatch.setenv("ATLAS_GUARD_SYNC_ALLOW_NONLOCAL", "1")
    assert GuardService.create().sync is not None


def test_require_sync_without_configuration(tmp_path: Path) -> None:
    service = GuardService.create(tmp_path / "home")
    with pytest.raises(ValueError, match="ATLAS_GUARD_SYNC_URL"):
        service.require_sync()


def test_migrate_legacy_through_service(tmp_path: Path) -> None:
    home = tmp_path / "home"
    service = GuardService.create(home)
    service.secure_write("antigravity_session", '{"role": "ADMIN"}')

    assert service.migrate_legacy() == ["session"]
    assert service.accessor.has_current("session") is True
    assert any(event["event_type"] == "state.migrated" for event in _events(home))
