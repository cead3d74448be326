from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Role(str, Enum):
    SUPERADMIN = "SUPERADMIN_ROLE"
    BOD = "BOD_ROLE"
    SALES_MANAGER = "SALES_MANAGER_ROLE"
    SALES_SUPERVISOR = "SALES_SUPERVISOR_ROLE"
    AUDITOR = "AUDITOR_ROLE"
    NO_ROLE = "NO_ROLE"


DEFAULT_ROLE = Role.NO_ROLE
ADMIN_ROLES = frozenset({Role.SUPERADMIN})
UNRESTRICTED_READ_ROLES = frozenset({Role.SUPERADMIN, Role.BOD, Role.AUDITOR})
LOCATION_SCOPED_ROLES = frozenset({Role.SALES_MANAGER, Role.SALES_SUPERVISOR})
ASSIGNABLE_ROLES = frozenset(UNRESTRICTED_READ_ROLES | LOCATION_SCOPED_ROLES)

ROLE_DISPLAY = {
    Role.SUPERADMIN: "Super Admin",
    Role.BOD: "BOD",
    Role.SALES_MANAGER: "Sales Manager",
    Role.SALES_SUPERVISOR: "Sales Supervisor",
    Role.AUDITOR: "Auditor",
    Role.NO_ROLE: "No Role",
}


def _normalize_role(role: Any) -> str:
    if not isinstance(role, str):
        return ""
    return role.strip().upper()


def parse_role(role: Any) -> Role | None:
    if isinstance(role, Role):
        return role
    try:
        return Role(_normalize_role(role))
    except ValueError:
        return None


def coerce_role(role: Any) -> Role:
    """Parse a role from untrusted metadata, falling back to the default role."""
    parsed = parse_role(role)
    if parsed is None:
        if role:
            logger.warning("Unknown role %r in identity metadata, using %s", role, DEFAULT_ROLE.value)
        return DEFAULT_ROLE
    return parsed


def is_admin(role: Role | str | None) -> bool:
    return parse_role(role) in ADMIN_ROLES


def is_unrestricted_reader(role: Role | str | None) -> bool:
    return parse_role(role) in UNRESTRICTED_READ_ROLES


def is_location_scoped(role: Role | str | None) -> bool:
    return parse_role(role) in LOCATION_SCOPED_ROLES


def coerce_location_ids(values: Any) -> list[int]:
    if values is None:
        return []
    if isinstance(values, (str, bytes, dict)) or not isinstance(values, Iterable):
        values = [values]
    location_ids: set[int] = set()
    for value in values:
        if isinstance(value, bool):
            logger.warning("Dropping non-integer location id %r", value)
            continue
        try:
            location_id = int(str(value).strip())
        except (TypeError, ValueError):
            logger.warning("Dropping non-integer location id %r", value)
            continue
        if location_id <= 0:
            logger.warning("Dropping non-positive location id %r", value)
            continue
        location_ids.add(location_id)
    return sorted(location_ids)


def normalize_assignment(role: Role, locations: Iterable[Any] | None) -> list[int]:
    """Locations are kept only for location-scoped roles."""
    location_ids = coerce_location_ids(locations)
    if location_ids and not is_location_scoped(role):
        logger.info("Clearing locations %s for non location-scoped role %s", location_ids, role.value)
        return []
    return location_ids
