from __future__ import annotations

"""Fail-closed protocol authorization over the resolved session and groups."""

from typing import Any, Mapping

from .models import Group, Session
from .resolver import GroupSessionResolver
from .telemetry import TelemetryLogger


class AuthorizationEngine:
    """Decide whether the ambient session may invoke a protocol.

    Every call re-resolves from the store. Any internal failure is reported
    as a denial, never as an exception.
    """

    def __init__(self, resolver: GroupSessionResolver, *, telemetry: TelemetryLogger | None = None) -> None:
        self.resolver = resolver
        self.telemetry = telemetry

    def authorize_protocol(self, protocol: str, user_permissions: Mapping[str, Any] | None = None) -> bool:
        try:
            if isinstance(user_permissions, Mapping):
                return user_permissions.get(protocol) is True
            return self._evaluate(protocol)
        except Exception as exc:  # noqa: BLE001
            if self.telemetry is not None:
                self.telemetry.log_event(
                    "authz.metadata_corrupt",
                    data={"reason": "authorization_metadata_corrupt", "error_type": exc.__class__.__name__},
                )
            return False

    def _evaluate(self, protocol: str) -> bool:
        session = Session.from_payload(self.resolver.resolve_session())
        if session is None:
            return False

        # Bypasses are checked before touching the groups collection.
        if session.is_admin or session.in_admin_group:
            return True

        group = self._find_group(session.group_id)
        if group is None:
            return False
        return group.grants(protocol)

    def _find_group(self, group_id: str | None) -> Group | None:
        if group_id is None:
            return None
        for payload in self.resolver.resolve_groups():
            group = Group.from_payload(payload)
            if group is not None and group.group_id == group_id:
                return group
        return None
