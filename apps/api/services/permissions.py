"""Role and capability model used by the single authorization boundary."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet


class Role(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"
    USER = "user"


class Capability(str, Enum):
    MANAGE_CATALOG = "manage_catalog"
    UPLOAD_MEDIA = "upload_media"
    MANAGE_SITE = "manage_site"
    MANAGE_USERS = "manage_users"


ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.ADMIN: frozenset(Capability),
    Role.STAFF: frozenset({Capability.MANAGE_CATALOG, Capability.UPLOAD_MEDIA}),
    Role.USER: frozenset(),
}


def parse_role(value: str | None) -> Role:
    """Map a stored role string onto the enum; unknown values get no privileges."""
    try:
        return Role(str(value or "").strip().lower())
    except ValueError:
        return Role.USER


def role_allows(role: Role, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def capabilities_for(role: Role) -> list[str]:
    return sorted(cap.value for cap in ROLE_CAPABILITIES.get(role, frozenset()))
