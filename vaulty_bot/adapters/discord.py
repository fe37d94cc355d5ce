"""Discord implementation of :class:`~vaulty_bot.adapters.base.Provisioning`.

Works directly on :mod:`discord.py` guild, member and channel objects handed
in by the event handlers in :mod:`vaulty_bot.bot`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

import discord

from ..core.errors import ProvisioningFailed
from ..core.models import GuildConfig
from ..ui.embeds import audit_embed
from .base import AuditRecord, Provisioning, RoleChange

log = logging.getLogger("vaulty.discord")


def channel_name_for(member: discord.Member, *, test_mode: bool = False) -> str:
    clean = re.sub(r"[^a-zA-Z0-9]", "", member.name).lower() or str(member.id)
    prefix = "test-onboarding" if test_mode else "onboarding"
    return f"{prefix}-{clean}"


class DiscordProvisioning(Provisioning):
    """Channel and role operations backed by the gateway client."""

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    # ------------------------------------------------------------------
    async def create_private_channel(
        self, member: discord.Member, *, test_mode: bool = False
    ) -> discord.TextChannel:
        """Create a text channel visible only to ``member``, the bot and admins.

        Raises :class:`~vaulty_bot.core.errors.ProvisioningFailed` when the bot
        lacks Manage Channels or Manage Roles, or Discord rejects the request.
        """
        guild = member.guild
        me = guild.me
        perms = me.guild_permissions
        if not perms.manage_channels or not perms.manage_roles:
            log.error("Missing Manage Channels/Roles permission in %s", guild.name)
            raise ProvisioningFailed("Bot lacks Manage Channels or Manage Roles permission")

        overwrites: dict[Any, discord.PermissionOverwrite] = {
            guild.default_role: discord.PermissionOverwrite(view_channel=False),
            member: discord.PermissionOverwrite(
                view_channel=True, send_messages=True, read_message_history=True
            ),
            me: discord.PermissionOverwrite(
                view_channel=True,
                send_messages=True,
                read_message_history=True,
                embed_links=True,
                attach_files=True,
                manage_channels=True,
            ),
        }
        for role in guild.roles:
            if role.is_default():
                continue
            if role.permissions.administrator or role.permissions.manage_guild:
                # admins can read along but not post
                overwrites[role] = discord.PermissionOverwrite(
                    view_channel=True, read_message_history=True, send_messages=False
                )

        try:
            channel = await guild.create_text_channel(
                channel_name_for(member, test_mode=test_mode),
                overwrites=overwrites,
                topic=f"Private onboarding channel for {member} (ID: {member.id})",
                reason="Member onboarding",
            )
        except discord.HTTPException as exc:
            raise ProvisioningFailed(f"Could not create onboarding channel: {exc}") from exc
        log.info("Created private channel %s for %s", channel.name, member)
        return channel

    async def send_welcome(
        self, channel: discord.TextChannel, member: discord.Member, *, test_mode: bool = False
    ) -> None:
        if test_mode:
            text = (
                f"<@{member.id}> 🧪 **TEST MODE** - Hi {member.name}!\n\n"
                "This is a test run of the onboarding flow. Your answers are logged "
                "as test data and no roles will be changed."
            )
        else:
            text = (
                f"<@{member.id}> 👋 Hi {member.name}! Welcome to {member.guild.name}!\n\n"
                "This is your private onboarding channel. Only you and I can see these messages.\n\n"
                "I'll ask you a few simple questions to get you set up. "
                "Just reply with your answers and we'll get you onboarded quickly!"
            )
        await channel.send(text)

    async def delete_channel(self, channel: discord.abc.GuildChannel) -> None:
        try:
            await channel.delete(reason="Onboarding finished")
        except discord.NotFound:
            log.debug("Channel %s was already deleted", channel.id)
            return
        log.info("Deleted onboarding channel %s", channel.name)

    # ------------------------------------------------------------------
    @staticmethod
    def _role(guild: discord.Guild, name: str | None) -> discord.Role | None:
        if not name:
            return None
        return discord.utils.get(guild.roles, name=name)

    async def assign_initial_role(
        self, member: discord.Member, config: GuildConfig | None
    ) -> RoleChange:
        change = RoleChange()
        name = (config.welcome_role or config.onboarding_role) if config else "Onboarding"
        role = self._role(member.guild, name)
        if role is None:
            log.warning("Welcome role %r not found in %s", name, member.guild.name)
            change.missing.append(name or "")
            return change
        if role not in member.roles:
            await member.add_roles(role, reason="Joined server; onboarding pending")
            change.added.append(role.name)
        return change

    async def assign_completion_roles(
        self, member: discord.Member, config: GuildConfig, *, requested_sample: bool = False
    ) -> RoleChange:
        change = RoleChange()
        guild = member.guild
        wanted = [("onboarding", config.onboarding_role), ("onboarded", config.onboarded_role)]
        if requested_sample:
            wanted.append(("sample", config.sample_role))
        resolved: dict[str, discord.Role] = {}
        for label, name in wanted:
            if not name:
                continue
            role = self._role(guild, name)
            if role is None:
                log.warning("%s role %r not found in %s", label.capitalize(), name, guild.name)
                change.missing.append(name)
            else:
                resolved[label] = role

        to_add = [
            resolved[label]
            for label in ("onboarded", "sample")
            if label in resolved and resolved[label] not in member.roles
        ]
        to_remove = [resolved["onboarding"]] if resolved.get("onboarding") in member.roles else []
        try:
            if to_add:
                await member.add_roles(*to_add, reason="Onboarding completed")
                change.added.extend(r.name for r in to_add)
            if to_remove:
                await member.remove_roles(*to_remove, reason="Onboarding completed")
                change.removed.extend(r.name for r in to_remove)
        except discord.HTTPException:
            log.exception("Role assignment error for %s in %s", member, guild.name)
        return change

    async def set_nickname(self, member: discord.Member, nickname: str) -> bool:
        guild = member.guild
        if not guild.me.guild_permissions.manage_nicknames:
            log.warning("Missing Manage Nicknames permission in %s; nickname skipped", guild.name)
            return False
        if member.id == guild.owner_id or member.top_role >= guild.me.top_role:
            log.warning("Cannot manage member %s in %s; nickname skipped", member, guild.name)
            return False
        old = member.nick or member.name
        await member.edit(nick=nickname, reason="Onboarding nickname")
        log.info("Applied nickname to %s: %r -> %r", member, old, nickname)
        return True

    async def send_audit(self, member: discord.Member, channel_id: int, record: AuditRecord) -> bool:
        channel = self.client.get_channel(channel_id)
        if channel is None:
            channel = await self.client.fetch_channel(channel_id)
        await channel.send(embed=audit_embed(record, avatar_url=member.display_avatar.url))
        log.info("Audit log sent for %s", member)
        return True



@dataclass
class RoleSetup:
    created: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)


# (config field, fallback name, colour, mentionable), highest role first
ONBOARDING_ROLES = (
    ("onboarded_role", "Onboarded", 0x00FF00, True),
    ("onboarding_role", "Onboarding", 0xFFA500, False),
    ("welcome_role", "Welcome", 0x3498DB, False),
)


async def create_onboarding_roles(guild: discord.Guild, config: GuildConfig | None = None) -> RoleSetup:
    """Create the Onboarded, Onboarding and Welcome roles that don't exist yet.

    Names come from ``config`` when the guild has one. Roles are created
    highest first so a new role lands below the previous one.
    """
    if not guild.me.guild_permissions.manage_roles:
        raise ProvisioningFailed("Bot lacks Manage Roles permission to create roles")
    setup = RoleSetup()
    for attr, fallback, colour, mentionable in ONBOARDING_ROLES:
        name = (getattr(config, attr, None) if config else None) or fallback
        # the default config reuses Onboarding as the welcome role
        if name in setup.created or name in setup.existing:
            continue
        if discord.utils.get(guild.roles, name=name) is not None:
            setup.existing.append(name)
            continue
        try:
            await guild.create_role(
                name=name,
                colour=discord.Colour(colour),
                hoist=False,
                mentionable=mentionable,
                reason="Vaulty onboarding roles",
            )
        except discord.HTTPException as exc:
            raise ProvisioningFailed(f'Failed to create role "{name}": {exc}') from exc
        log.info("Created role %r in %s", name, guild.name)
        setup.created.append(name)
    return setup
