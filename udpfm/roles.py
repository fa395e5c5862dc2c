from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple, Union

from .errors import validation

"""
roles.py — the static role → capability table.

Capability sets are configuration, not per-session state: a session only ever
points at one of the four roles below, and the table itself never changes.
"""


class Role(str, Enum):
    ADMIN = "admin"
    POWER_USER = "power_user"
    MODERATOR = "moderator"
    USER = "user"


class Capability(str, Enum):
    READ = "read"
    WRITE = "write"
    EXECUTE = "execute"
    DELETE = "delete"
    MANAGE_USERS = "manage_users"


@dataclass(frozen=True)
class Capabilities:
    can_read: bool
    can_write: bool
    can_execute: bool
    can_delete: bool
    can_manage_users: bool
    description: str = ""

    def allows(self, capability: Capability) -> bool:
        return {
            Capability.READ: self.can_read,
            Capability.WRITE: self.can_write,
            Capability.EXECUTE: self.can_execute,
            Capability.DELETE: self.can_delete,
            Capability.MANAGE_USERS: self.can_manage_users,
        }[capability]


ROLE_PERMISSIONS: Dict[Role, Capabilities] = {
    Role.ADMIN: Capabilities(True, True, True, True, True, "Full system access"),
    Role.POWER_USER: Capabilities(True, True, True, False, False, "Can read, write, and execute files"),
    Role.MODERATOR: Capabilities(True, True, False, False, False, "Can read and write files"),
    Role.USER: Capabilities(True, False, False, False, False, "Can only read files"),
}

# Roles an admin may hand out. Admin itself is never assignable.
ASSIGNABLE_ROLES: Tuple[Role, ...] = (Role.USER, Role.MODERATOR, Role.POWER_USER)


def capabilities_of(role: Union[Role, str, None]) -> Capabilities:
    """Look up a role's capabilities; anything unknown gets the `user` set."""
    try:
        return ROLE_PERMISSIONS[Role(role)]
    except ValueError:
        return ROLE_PERMISSIONS[Role.USER]


def parse_assignable_role(value: str) -> Role:
    """Turn a client-supplied role name into a Role an admin may assign."""
    valid = ", ".join(r.value for r in ASSIGNABLE_ROLES)
    try:
        role = Role(value)
    except ValueError:
        raise validation(f"Invalid role. Valid roles are: {valid}") from None
    if role not in ASSIGNABLE_ROLES:
        raise validation(f"Invalid role. Valid roles are: {valid}")
    return role
