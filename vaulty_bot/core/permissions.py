"""Admin capability check shared by every configuration command."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .models import GuildConfig

# Discord permission flags that mark a role as administrative even when it is
# not listed in ``GuildConfig.admin_roles``.
_KEY_PERMISSIONS = ("manage_guild", "manage_roles", "manage_channels")


@dataclass(frozen=True)
class AdminCheck:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


def is_admin(member: Any, config: GuildConfig | None) -> AdminCheck:
    """Decide whether ``member`` may run configuration commands.

    Checked in order: guild owner, the Administrator permission, any role
    listed in ``config.admin_roles`` (case-insensitive), then any role that
    carries a key management permission.
    """
    guild = getattr(member, "guild", None)
    if guild is not None and getattr(guild, "owner_id", None) == member.id:
        return AdminCheck(True, "Server Owner")

    perms = getattr(member, "guild_permissions", None)
    if perms is not None and getattr(perms, "administrator", False):
        return AdminCheck(True, "Administrator Permission")

    roles = list(getattr(member, "roles", []) or [])
    if config is not None:
        wanted = {name.lower() for name in config.admin_roles}
        for role in roles:
            if role.name.lower() in wanted:
                return AdminCheck(True, f"Admin Role: {role.name}")

    for role in roles:
        role_perms = getattr(role, "permissions", None)
        if role_perms is None:
            continue
        if any(getattr(role_perms, flag, False) for flag in _KEY_PERMISSIONS):
            return AdminCheck(True, f"Admin Role: {role.name}")

    return AdminCheck(False, "No admin permissions found")
