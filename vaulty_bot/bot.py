"""Discord bot wiring for the onboarding workflow.

Gateway events are routed here: new members get a private onboarding
channel, messages in those channels are fed to the
:class:`~vaulty_bot.onboarding.engine.SessionEngine`, and guild join/leave
events toggle the stored configuration.
"""

from __future__ import annotations

from typing import Any

import discord
from discord.ext import commands

from .adapters.base import Notifier, NullNotifier, RowWriter
from .adapters.discord import DiscordProvisioning
from .core.errors import VaultyError
from .core.storage import GuildConfigStore
from .logging_config import setup_logging
from .onboarding.engine import SessionEngine, Timings
from .ui.views import StartOnboardingView


class VaultyBot(commands.Bot):
    """``discord.py`` bot that owns the store and the session engine."""

    def __init__(
        self,
        store: GuildConfigStore,
        writer: RowWriter,
        notifier: Notifier | None = None,
        *,
        timings: Timings | None = None,
        sync_per_guild: bool = True,
        **kwargs: Any,
    ) -> None:
        intents = kwargs.pop("intents", None) or discord.Intents.default()
        # Answers arrive as plain messages and joins drive onboarding.
        intents.message_content = True
        intents.members = True
        super().__init__(
            command_prefix=kwargs.pop("command_prefix", "!"),
            intents=intents,
            **kwargs,
        )
        self.log = setup_logging()
        self.store = store
        self.notifier = notifier or NullNotifier()
        self.sync_per_guild = sync_per_guild
        self._started = False
        self.provisioning = DiscordProvisioning(self)
        self.engine = SessionEngine(
            store, self.provisioning, writer, self.notifier, timings=timings
        )

    async def setup_hook(self) -> None:
        """Re-attach persistent views and sync slash commands."""
        self.add_view(StartOnboardingView(self.engine, self.store))
        await self.tree.sync()
        await super().setup_hook()

    async def on_ready(self) -> None:
        await self.change_presence(activity=discord.Game(name="Onboarding new members"))
        self.log.info(
            "Logged in as %s (%s) in %d guild(s), %d configured",
            self.user,
            self.user.id if self.user else "?",
            len(self.guilds),
            len(self.store.active_configs()),
        )
        # on_ready fires again after every gateway reconnect
        if self._started:
            return
        self._started = True
        if self.sync_per_guild:
            for guild in self.guilds:
                await self._sync_guild(guild)
        count = len(self.guilds)
        await self.notifier.notify(
            f"🤖 Vaulty Bot is now online and ready!\n\n📊 Managing {count} Discord "
            f"server{'s' if count != 1 else ''}",
            title="Bot Started",
        )

    async def _sync_guild(self, guild: discord.abc.Snowflake) -> None:
        try:
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
        except discord.HTTPException:
            self.log.exception("Failed to sync commands for guild %s", guild.id)

    # ------------------------------------------------------------------
    # Members and messages
    async def on_member_join(self, member: discord.Member) -> None:
        if member.bot:
            return
        guild = member.guild
        config = self.store.get_config(guild.id)
        if config is None or not config.active:
            self.log.info("Skipping onboarding for %s: %s is not configured", member, guild.name)
            return
        try:
            await self.provisioning.assign_initial_role(member, config)
        except discord.HTTPException:
            self.log.exception("Could not assign welcome role to %s in %s", member, guild.name)
        try:
            await self.engine.begin(member)
        except VaultyError as exc:
            self.log.warning("Onboarding not started for %s in %s: %s", member, guild.name, exc)
        except Exception as exc:
            self.log.exception("Error starting onboarding for %s in %s", member, guild.name)
            await self.notifier.critical(
                "Onboarding Start Failed", f"Could not onboard {member}: {exc}", guild.name
            )

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        try:
            await self.engine.handle_incoming_answer(message)
        except Exception:
            self.log.exception(
                "Error handling onboarding answer from %s in channel %s",
                message.author,
                message.channel.id,
            )

    # ------------------------------------------------------------------
    # Guild lifecycle
    async def on_guild_join(self, guild: discord.Guild) -> None:
        if self.store.reactivate(guild.id):
            self.log.info("Rejoined %s (%s); configuration reactivated", guild.name, guild.id)
        else:
            self.log.info("Joined new guild %s (%s); waiting for /server-setup", guild.name, guild.id)
            await self.notifier.notify(
                f"📥 Bot joined new server!\n\n🏠 Server: {guild.name}\n🆔 ID: {guild.id}\n\n"
                "Waiting for admin to run /server-setup",
                title="New Server",
            )
        if self.sync_per_guild:
            await self._sync_guild(guild)

    async def on_guild_remove(self, guild: discord.Guild) -> None:
        if self.store.deactivate(guild.id):
            self.log.info("Removed from %s (%s); configuration deactivated", guild.name, guild.id)

    async def close(self) -> None:
        self.engine.shutdown()
        closer = getattr(self.notifier, "close", None)
        if closer is not None:
            await closer()
        await super().close()


__all__ = ["VaultyBot"]
