from __future__ import annotations

import logging
from typing import Any

import discord

from ..adapters.discord import channel_name_for
from ..core.models import GuildConfig
from ..core.permissions import is_admin
from ..core.storage import GuildConfigStore
from ..onboarding.engine import SessionEngine, is_onboarding_channel

log = logging.getLogger("vaulty.commands")

# Fields that survive a re-run of /server-setup on an existing record.
_CARRIED_FIELDS = (
    "sheet_tab",
    "joined_at",
    "questions",
    "question_version",
    "last_question_update",
    "admin_roles",
    "onboarding_role",
    "onboarded_role",
    "sample_role",
    "welcome_role",
)


async def ensure_admin(interaction: discord.Interaction, store: GuildConfigStore) -> bool:
    """Reply with a refusal and return ``False`` unless the caller is an admin."""
    if interaction.guild is None:
        await interaction.response.send_message(
            "This command can only be used inside a server.", ephemeral=True
        )
        return False
    check = is_admin(interaction.user, store.get_config(interaction.guild.id))
    if not check:
        log.info("Refused admin command from %s in %s: %s", interaction.user, interaction.guild.name, check.reason)
        await interaction.response.send_message(
            "❌ You need administrative permissions to use this command.\n\n"
            "**Required:** Administrator permission, Server Owner, or an admin role.\n\n"
            f"**Reason:** {check.reason}",
            ephemeral=True,
        )
        return False
    return True


def setup_overrides(
    existing: GuildConfig | None,
    *,
    welcome_channel: str | None = None,
    audit_channel: int | None = None,
) -> dict[str, Any]:
    """Build ``configure`` overrides for a (re-)run of server setup.

    An existing record keeps its sheet binding, its question catalog and its
    role names; explicitly chosen channels win over auto-detection.
    """
    overrides: dict[str, Any] = {}
    if existing is not None:
        for name in _CARRIED_FIELDS:
            overrides[name] = getattr(existing, name)
    if welcome_channel:
        overrides["welcome_channel"] = welcome_channel
    if audit_channel:
        overrides["audit_channel"] = audit_channel
    return overrides


def parse_id_list(raw: str) -> list[str]:
    """Split a comma or whitespace separated list of question IDs."""
    return [part for part in raw.replace(",", " ").split() if part]


def welcome_channel_for(guild: discord.Guild, config: GuildConfig) -> discord.TextChannel | None:
    if not config.welcome_channel:
        return None
    return discord.utils.get(guild.text_channels, name=config.welcome_channel)


REQUIRED_PERMISSIONS = (
    "view_channel",
    "send_messages",
    "embed_links",
    "read_message_history",
    "manage_channels",
    "manage_roles",
)


def server_health(guild: discord.Guild, config: GuildConfig) -> list[str]:
    """List what would stop onboarding from working in ``guild``."""
    issues: list[str] = []
    perms = guild.me.guild_permissions
    missing = [name for name in REQUIRED_PERMISSIONS if not getattr(perms, name)]
    if missing:
        issues.append(f"Missing permission: {', '.join(missing)}")
    if not config.audit_channel:
        issues.append("No audit channel configured")
    elif guild.get_channel(config.audit_channel) is None:
        issues.append("Audit channel not accessible")
    if welcome_channel_for(guild, config) is None:
        issues.append("Welcome channel not found")
    roles = [config.welcome_role, config.onboarding_role, config.onboarded_role]
    absent = [name for name in roles if name and discord.utils.get(guild.roles, name=name) is None]
    if absent:
        issues.append(f"Missing roles: {', '.join(absent)}")
    return issues


def health_label(issues: list[str]) -> str:
    if not issues:
        return "Excellent"
    if len(issues) <= 2:
        return "Good"
    if len(issues) <= 4:
        return "Warning"
    return "Critical"


def onboarding_channel_owner(
    guild: discord.Guild, channel: Any, engine: SessionEngine
) -> discord.Member | None:
    """Find the member an ``onboarding-*`` channel was created for.

    A live session bound to the channel wins; otherwise the channel name is
    matched against each member's cleaned username.
    """
    if not is_onboarding_channel(getattr(channel, "name", "")):
        return None
    session = engine.session_for_channel(channel.id)
    if session is not None:
        member = guild.get_member(session.user_id)
        if member is not None:
            return member
    for member in guild.members:
        if channel.name in (channel_name_for(member), channel_name_for(member, test_mode=True)):
            return member
    return None
