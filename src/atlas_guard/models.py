from __future__ import annotations

"""Tolerant views over stored session/group payloads and the compliance result."""

from dataclasses import dataclass
from typing import Any, Mapping


ADMIN_ROLE = "ADMIN"
ADMIN_GROUP_ID = "admin-group"

STATUS_SECURE = "SECURE"
STATUS_AT_RISK = "AT_RISK"
VALID_STATUSES = {STATUS_SECURE, STATUS_AT_RISK}


@dataclass(frozen=True)
class Session:
    """Acting identity. Missing or non-string fields become `None`."""

    role: str | None
    group_id: str | None

    @classmethod
    def from_payload(cls, payload: Any) -> "Session | None":
        if not isinstance(payload, Mapping):
            return None
        role = payload.get("role")
        group_id = payload.get("groupId")
        return cls(
            role=role if isinstance(role, str) else None,
            group_id=group_id if isinstance(group_id, str) else None,
        )

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    @property
    def in_admin_group(self) -> bool:
        return self.group_id == ADMIN_GROUP_ID


@dataclass(frozen=True)
class Group:
    group_id: Any
    permissions: Mapping[str, Any]

    @classmethod
    def from_payload(cls, payload: Any) -> "Group | None":
        if not isinstance(payload, Mapping):
            return None
        permissions = payload.get("permissions")
        return cls(
            group_id=payload.get("id"),
            permissions=permissions if isinstance(permissions, Mapping) else {},
        )

    def grants(self, protocol: str) -> bool:
        # Only an explicit JSON `true` grants; 1, "true" and friends do not.
        return self.permissions.get(protocol) is True


@dataclass(frozen=True)
class ComplianceResult:
    status: str
    score: int

    def __post_init__(self) -> None:
        if self.status not in VALID_STATUSES:
            raise ValueError(f"status '{self.status}' not valid. Must be one of: {sorted(VALID_STATUSES)}")
        if not 0 <= self.score <= 100:
            raise ValueError("score must be between 0 and 100.")

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "score": self.score}
