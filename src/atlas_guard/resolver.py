from __future__ import annotations

from typing import Any

from .store import NamespacedStore


SESSION_KEY = "session"
GROUPS_KEY = "groups"


class GroupSessionResolver:
    """Load session and group payloads; shape checks are left to callers."""

    def __init__(self, accessor: NamespacedStore) -> None:
        self.accessor = accessor

    def resolve_session(self) -> Any | None:
        return self.accessor.read_json(SESSION_KEY)

    def resolve_groups(self) -> list[Any]:
        groups = self.accessor.read_json(GROUPS_KEY)
        if not isinstance(groups, list):
            return []
        return groups
