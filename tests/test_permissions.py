"""Tests for :func:`vaulty_bot.core.permissions.is_admin`."""

from types import SimpleNamespace

from vaulty_bot.core.models import GuildConfig
from vaulty_bot.core.permissions import is_admin

CONFIG = GuildConfig(guild_id=1, name="Guild", sheet_tab="Guild Onboarding", admin_roles=["Staff"])


def perms(**flags) -> SimpleNamespace:
    base = dict(administrator=False, manage_guild=False, manage_roles=False, manage_channels=False)
    base.update(flags)
    return SimpleNamespace(**base)


def role(name: str, **flags) -> SimpleNamespace:
    return SimpleNamespace(name=name, permissions=perms(**flags))


def member(user_id: int = 5, roles=(), **flags) -> SimpleNamespace:
    return SimpleNamespace(
        id=user_id,
        guild=SimpleNamespace(owner_id=1),
        guild_permissions=perms(**flags),
        roles=list(roles),
    )


def test_owner_is_admin() -> None:
    check = is_admin(member(user_id=1), CONFIG)
    assert check and check.reason == "Server Owner"


def test_administrator_permission() -> None:
    assert is_admin(member(administrator=True), CONFIG).reason == "Administrator Permission"


def test_configured_role_name_is_case_insensitive() -> None:
    check = is_admin(member(roles=[role("staff")]), CONFIG)
    assert check.allowed
    assert check.reason == "Admin Role: staff"


def test_management_permission_on_role() -> None:
    assert is_admin(member(roles=[role("Mods", manage_roles=True)]), None)


def test_plain_member_is_refused() -> None:
    check = is_admin(member(roles=[role("Fan")]), CONFIG)
    assert not check
    assert check.reason == "No admin permissions found"
