from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

import discord

from ..core.errors import VaultyError
from ..core.storage import GuildConfigStore
from ..onboarding.engine import SessionEngine
from .embeds import config_embed

log = logging.getLogger("vaulty.ui")

START_ONBOARDING_ID = "start_onboarding"


class StartOnboardingView(discord.ui.View):
    """Persistent button posted in the welcome channel.

    The custom id is fixed so the bot can re-attach the view after a restart.
    """

    def __init__(self, engine: SessionEngine, store: GuildConfigStore) -> None:
        super().__init__(timeout=None)
        self.engine = engine
        self.store = store

    @discord.ui.button(
        label="Start Onboarding",
        emoji="🚀",
        style=discord.ButtonStyle.primary,
        custom_id=START_ONBOARDING_ID,
    )
    async def start_onboarding(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        guild = interaction.guild
        if guild is None or not self.store.is_configured(guild.id):
            await interaction.response.send_message(
                "This server is not configured yet. Please ask an admin to run `/server-setup`.",
                ephemeral=True,
            )
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            channel, _ = await self.engine.begin(interaction.user)
        except VaultyError as exc:
            await interaction.followup.send(str(exc), ephemeral=True)
            return
        await interaction.followup.send(
            f"Your onboarding channel is ready: {channel.mention}", ephemeral=True
        )


class ConfirmView(discord.ui.View):
    """Two-button confirmation restricted to the admin who asked for it."""

    def __init__(
        self,
        requester_id: int,
        on_confirm: Callable[[discord.Interaction], Awaitable[None]],
        *,
        timeout: float = 60.0,
    ) -> None:
        super().__init__(timeout=timeout)
        self.requester_id = requester_id
        self.on_confirm = on_confirm
        self.confirmed: bool | None = None

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.requester_id:
            await interaction.response.send_message(
                "Only the admin who started this action can confirm it.", ephemeral=True
            )
            return False
        return True

    @discord.ui.button(label="Confirm", style=discord.ButtonStyle.danger, custom_id="confirm_reset")
    async def confirm(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.confirmed = True
        self.stop()
        await self.on_confirm(interaction)

    @discord.ui.button(label="Cancel", style=discord.ButtonStyle.secondary, custom_id="cancel_reset")
    async def cancel(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.confirmed = False
        self.stop()
        await interaction.response.edit_message(content="Cancelled. Nothing was changed.", view=None)


def reset_config_view(store: GuildConfigStore, guild_id: int, requester_id: int) -> ConfirmView:
    async def do_reset(interaction: discord.Interaction) -> None:
        try:
            cfg = store.reset_config(guild_id)
        except VaultyError as exc:
            await interaction.response.edit_message(content=str(exc), view=None)
            return
        log.info("Configuration for guild %s reset by %s", guild_id, interaction.user)
        await interaction.response.edit_message(
            content="Configuration reset. Run `/server-setup` to configure the server again.",
            embed=config_embed(cfg),
            view=None,
        )

    return ConfirmView(requester_id, do_reset)
