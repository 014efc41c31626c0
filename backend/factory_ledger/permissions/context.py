# Overview: Per-request authorization context passed explicitly to services.

"""
Role capabilities are resolved once, when a request (or CLI command, or
queued replay) identifies its actor. Services receive the resulting
AuthContext as an argument; nothing in the core looks up a "current user".
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import PermissionDenied
from .roles import DEFAULT_ROLE_PERMISSIONS, ROLE_CHANNELS, ROLES


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    role: str
    capabilities: frozenset = field(default_factory=frozenset)
    channels: tuple = ()

    def has(self, capability: str) -> bool:
        return capability in self.capabilities

    def require(self, capability: str) -> None:
        if capability not in self.capabilities:
            raise PermissionDenied(
                f"Role {self.role} lacks {capability}",
                details={"required_permission": capability, "role": self.role},
            )

    def can_sell_in(self, channel: str) -> bool:
        return channel in self.channels

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "capabilities": sorted(self.capabilities),
            "channels": list(self.channels),
        }


def build_auth_context(user_id: int, role: str) -> AuthContext:
    if role not in ROLES:
        raise PermissionDenied(f"Unknown role {role}", details={"role": role})
    return AuthContext(
        user_id=user_id,
        role=role,
        capabilities=frozenset(DEFAULT_ROLE_PERMISSIONS.get(role, ())),
        channels=tuple(ROLE_CHANNELS.get(role, ())),
    )


def auth_context_for_user(user) -> AuthContext:
    """Resolve an AuthContext from a User row."""
    if not user.is_active:
        raise PermissionDenied("User account is deactivated", details={"user_id": user.id})
    return build_auth_context(user.id, user.role)
