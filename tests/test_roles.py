import pytest

from udpfm.errors import CommandError
from udpfm.roles import (
    ASSIGNABLE_ROLES,
    Capability,
    Role,
    capabilities_of,
    parse_assignable_role,
)


def test_capability_table_matches_role_hierarchy():
    assert capabilities_of("user").can_write is False
    assert capabilities_of("admin").can_write is True
    assert capabilities_of("moderator").can_execute is False
    assert capabilities_of("power_user").can_delete is False


@pytest.mark.parametrize(
    "role, expected",
    [
        (Role.ADMIN, {"read", "write", "execute", "delete", "manage_users"}),
        (Role.POWER_USER, {"read", "write", "execute"}),
        (Role.MODERATOR, {"read", "write"}),
        (Role.USER, {"read"}),
    ],
)
def test_allows_lists_exactly_the_granted_capabilities(role, expected):
    caps = capabilities_of(role)
    granted = {c.value for c in Capability if caps.allows(c)}
    assert granted == expected


@pytest.mark.parametrize("unknown", ["root", "", None, "ADMIN"])
def test_unknown_roles_fail_closed_to_user(unknown):
    assert capabilities_of(unknown) == capabilities_of(Role.USER)


def test_only_non_admin_roles_are_assignable():
    assert Role.ADMIN not in ASSIGNABLE_ROLES
    assert parse_assignable_role("moderator") is Role.MODERATOR


@pytest.mark.parametrize("value", ["admin", "root", ""])
def test_parse_assignable_role_rejects_admin_and_unknown(value):
    with pytest.raises(CommandError) as info:
        parse_assignable_role(value)
    assert info.value.message == "Invalid role. Valid roles are: user, moderator, power_user"
