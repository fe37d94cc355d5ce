"""Registration of slash commands for the bot."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

import discord

from ..adapters.discord import create_onboarding_roles
from ..core.errors import VaultyError
from ..core.permissions import is_admin
from ..core.storage import GuildConfigStore
from ..onboarding.engine import STALE_CHANNEL_AGE, is_onboarding_channel
from ..ui.embeds import config_embed, questions_embed, status_embed
from ..ui.modals import AddQuestionModal, EditQuestionModal
from ..ui.views import StartOnboardingView, reset_config_view
from .utils import (
    ensure_admin,
    health_label,
    onboarding_channel_owner,
    parse_id_list,
    server_health,
    setup_overrides,
    welcome_channel_for,
)

if TYPE_CHECKING:
    from ..bot import VaultyBot

log = logging.getLogger("vaulty.commands")


def register_commands(bot: VaultyBot, store: GuildConfigStore) -> None:
    """Register the setup, configuration, question and onboarding commands."""
    tree = bot.tree
    engine = bot.engine

    @tree.error
    async def on_app_command_error(
        interaction: discord.Interaction, error: discord.app_commands.AppCommandError
    ) -> None:
        original = getattr(error, "original", error)
        if isinstance(original, VaultyError):
            text = str(original)
        else:
            log.exception(
                "Command %s failed for %s",
                interaction.command.qualified_name if interaction.command else "?",
                interaction.user,
                exc_info=original,
            )
            text = "❌ Something went wrong while running that command."
        if interaction.response.is_done():
            await interaction.followup.send(text, ephemeral=True)
        else:
            await interaction.response.send_message(text, ephemeral=True)

    # ------------------------------------------------------------------
    # Setup
    @tree.command(name="server-setup", description="Configure Vaulty for this server (Admin only)")
    @discord.app_commands.guild_only()
    @discord.app_commands.describe(
        welcome_channel="Channel where new members are greeted",
        audit_channel="Channel that receives completed onboarding summaries",
        reconfigure="Run setup again even if the server is already configured",
    )
    async def server_setup(
        interaction: discord.Interaction,
        welcome_channel: discord.TextChannel | None = None,
        audit_channel: discord.TextChannel | None = None,
        reconfigure: bool = False,
    ) -> None:
        if not await ensure_admin(interaction, store):
            return
        guild = interaction.guild
        existing = store.get_config(guild.id)
        if existing is not None and existing.active and not reconfigure:
            await interaction.response.send_message(
                f"**{guild.name}** is already configured. "
                "Use `reconfigure: True` to run setup again.",
                embed=config_embed(existing),
                ephemeral=True,
            )
            return
        cfg = store.configure(
            guild.id,
            guild,
            setup_overrides(
                existing,
                welcome_channel=welcome_channel.name if welcome_channel else None,
                audit_channel=audit_channel.id if audit_channel else None,
            ),
        )
        posted = ""
        channel = welcome_channel_for(guild, cfg)
        if channel is not None:
            try:
                await channel.send(
                    "👋 New here? Press the button below to start onboarding.",
                    view=StartOnboardingView(engine, store),
                )
                posted = f"\nOnboarding button posted in {channel.mention}."
            except discord.HTTPException:
                log.exception("Could not post onboarding button in %s", channel.name)
        log.info("Server setup completed for %s by %s", guild.name, interaction.user)
        await interaction.response.send_message(
            f"✅ **{guild.name}** is configured for onboarding.{posted}",
            embed=config_embed(cfg),
            ephemeral=True,
        )

    # ------------------------------------------------------------------
    # /server-config
    server_config = discord.app_commands.Group(
        name="server-config", description="View or change this server's onboarding settings", guild_only=True
    )

    @server_config.command(name="view", description="Show the current configuration")
    async def config_view(interaction: discord.Interaction) -> None:
        if not await ensure_admin(interaction, store):
            return
        cfg = store.get_config(interaction.guild.id)
        if cfg is None:
            await interaction.response.send_message(
                "This server is not configured yet. Run `/server-setup` first.", ephemeral=True
            )
            return
        await interaction.response.send_message(embed=config_embed(cfg), ephemeral=True)

    @server_config.command(name="set-welcome", description="Set the welcome channel")
    @discord.app_commands.describe(channel="Welcome channel")
    async def config_set_welcome(interaction: discord.Interaction, channel: discord.TextChannel) -> None:
        if not await ensure_admin(interaction, store):
            return
        store.update(interaction.guild.id, welcome_channel=channel.name)
        await interaction.response.send_message(f"✅ Welcome channel set to {channel.mention}.", ephemeral=True)

    @server_config.command(name="set-audit", description="Set or clear the audit channel")
    @discord.app_commands.describe(channel="Audit channel; leave empty to disable audit summaries")
    async def config_set_audit(
        interaction: discord.Interaction, channel: discord.TextChannel | None = None
    ) -> None:
        if not await ensure_admin(interaction, store):
            return
        store.update(interaction.guild.id, audit_channel=channel.id if channel else None)
        text = f"✅ Audit channel set to {channel.mention}." if channel else "✅ Audit channel cleared."
        await interaction.response.send_message(text, ephemeral=True)

    @server_config.command(name="set-roles", description="Choose the roles used during onboarding")
    @discord.app_commands.describe(
        onboarding="Role held while onboarding is in progress",
        onboarded="Role granted when onboarding completes",
        welcome="Role given to members as soon as they join",
        sample="Optional extra role for sample requests",
    )
    async def config_set_roles(
        interaction: discord.Interaction,
        onboarding: discord.Role | None = None,
        onboarded: discord.Role | None = None,
        welcome: discord.Role | None = None,
        sample: discord.Role | None = None,
    ) -> None:
        if not await ensure_admin(interaction, store):
            return
        changes = {
            key: role.name
            for key, role in (
                ("onboarding_role", onboarding),
                ("onboarded_role", onboarded),
                ("welcome_role", welcome),
                ("sample_role", sample),
            )
            if role is not None
        }
        if not changes:
            await interaction.response.send_message("Nothing to change.", ephemeral=True)
            return
        cfg = store.update(interaction.guild.id, **changes)
        await interaction.response.send_message("✅ Roles updated.", embed=config_embed(cfg), ephemeral=True)

    @server_config.command(name="add-admin-role", description="Allow a role to manage onboarding")
    async def config_add_admin_role(interaction: discord.Interaction, role: discord.Role) -> None:
        if not await ensure_admin(interaction, store):
            return
        roles = store.add_admin_role(interaction.guild.id, role.name)
        await interaction.response.send_message(f"✅ Admin roles: {', '.join(roles)}", ephemeral=True)

    @server_config.command(name="remove-admin-role", description="Stop a role from managing onboarding")
    async def config_remove_admin_role(interaction: discord.Interaction, role: discord.Role) -> None:
        if not await ensure_admin(interaction, store):
            return
        roles = store.remove_admin_role(interaction.guild.id, role.name)
        await interaction.response.send_message(
            f"✅ Admin roles: {', '.join(roles) or 'None'}", ephemeral=True
        )

    @server_config.command(name="reset", description="Reset channels and roles to defaults")
    async def config_reset(interaction: discord.Interaction) -> None:
        if not await ensure_admin(interaction, store):
            return
        if store.get_config(interaction.guild.id) is None:
            await interaction.response.send_message(
                "This server is not configured yet. Run `/server-setup` first.", ephemeral=True
            )
            return
        await interaction.response.send_message(
            "⚠️ This resets channels, roles and admin roles to their defaults. "
            "The sheet tab and questions are kept. Continue?",
            view=reset_config_view(store, interaction.guild.id, interaction.user.id),
            ephemeral=True,
        )

    tree.add_command(server_config)

    # ------------------------------------------------------------------
    # /questions
    questions = discord.app_commands.Group(
        name="questions", description="Manage this server's onboarding questions", guild_only=True
    )

    async def question_id_autocomplete(
        interaction: discord.Interaction, current: str
    ) -> list[discord.app_commands.Choice[str]]:
        current_lower = current.lower()
        results = [
            discord.app_commands.Choice(name=f"{q.order}. {q.text}"[:100], value=q.id)
            for q in store.list_questions(interaction.guild_id)
            if current_lower in q.text.lower() or current_lower in q.id.lower()
        ]
        return results[:25]

    @questions.command(name="list", description="List every question, including inactive ones")
    async def questions_list(interaction: discord.Interaction) -> None:
        if not await ensure_admin(interaction, store):
            return
        await interaction.response.send_message(
            embed=questions_embed(interaction.guild.name, store.list_questions(interaction.guild.id)),
            ephemeral=True,
        )

    @questions.command(name="add", description="Add a question to the end of the list")
    async def questions_add(interaction: discord.Interaction) -> None:
        if not await ensure_admin(interaction, store):
            return
        if store.get_config(interaction.guild.id) is None:
            await interaction.response.send_message(
                "This server is not configured yet. Run `/server-setup` first.", ephemeral=True
            )
            return
        await interaction.response.send_modal(AddQuestionModal(store, interaction.guild.id))

    @questions.command(name="edit", description="Edit a question's text, validation or example")
    @discord.app_commands.describe(question_id="Question to edit")
    @discord.app_commands.autocomplete(question_id=question_id_autocomplete)
    async def questions_edit(interaction: discord.Interaction, question_id: str) -> None:
        if not await ensure_admin(interaction, store):
            return
        cfg = store.get_config(interaction.guild.id)
        question = cfg.find_question(question_id) if cfg else None
        if question is None:
            await interaction.response.send_message(f"Question `{question_id}` not found.", ephemeral=True)
            return
        await interaction.response.send_modal(EditQuestionModal(store, interaction.guild.id, question))

    @questions.command(name="remove", description="Delete a question")
    @discord.app_commands.describe(question_id="Question to delete")
    @discord.app_commands.autocomplete(question_id=question_id_autocomplete)
    async def questions_remove(interaction: discord.Interaction, question_id: str) -> None:
        if not await ensure_admin(interaction, store):
            return
        removed = store.remove_question(interaction.guild.id, question_id)
        await interaction.response.send_message(f"🗑️ Removed question: {removed.text}", ephemeral=True)

    @questions.command(name="reorder", description="Set the question order")
    @discord.app_commands.describe(
        question_ids="Question IDs in the new order, separated by commas; unlisted ones follow"
    )
    async def questions_reorder(interaction: discord.Interaction, question_ids: str) -> None:
        if not await ensure_admin(interaction, store):
            return
        ordered = store.reorder_questions(interaction.guild.id, parse_id_list(question_ids))
        lines = "\n".join(f"{q.order}. {q.text}" for q in ordered)
        await interaction.response.send_message(f"✅ New order:\n{lines}"[:1900], ephemeral=True)

    @questions.command(name="toggle", description="Turn a question on or off without deleting it")
    @discord.app_commands.describe(question_id="Question to toggle", active="Whether the question is asked")
    @discord.app_commands.autocomplete(question_id=question_id_autocomplete)
    async def questions_toggle(interaction: discord.Interaction, question_id: str, active: bool) -> None:
        if not await ensure_admin(interaction, store):
            return
        question = store.set_question_active(interaction.guild.id, question_id, active)
        state = "active" if question.active else "inactive"
        await interaction.response.send_message(f"✅ `{question.text}` is now {state}.", ephemeral=True)

    @questions.command(name="reset", description="Restore the default questions")
    async def questions_reset(interaction: discord.Interaction) -> None:
        if not await ensure_admin(interaction, store):
            return
        restored = store.reset_questions(interaction.guild.id)
        await interaction.response.send_message(
            f"✅ Restored {len(restored)} default questions.", ephemeral=True
        )

    tree.add_command(questions)

    # ------------------------------------------------------------------
    # Onboarding
    async def launch(interaction: discord.Interaction, *, test_mode: bool) -> None:
        guild = interaction.guild
        if not store.is_configured(guild.id):
            await interaction.response.send_message(
                "This server is not configured yet. Please ask an admin to run `/server-setup`.",
                ephemeral=True,
            )
            return
        if engine.is_onboarding(interaction.user.id):
            await interaction.response.send_message(
                "You are already in an active onboarding session. "
                "Please complete your current onboarding first.",
                ephemeral=True,
            )
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            channel, _ = await engine.begin(interaction.user, test_mode=test_mode)
        except VaultyError as exc:
            await interaction.followup.send(f"❌ {exc}", ephemeral=True)
            return
        prefix = "🧪 Test onboarding" if test_mode else "Your onboarding"
        await interaction.followup.send(f"{prefix} channel is ready: {channel.mention}", ephemeral=True)

    @tree.command(name="onboard", description="Start (or restart) your onboarding")
    @discord.app_commands.guild_only()
    async def onboard(interaction: discord.Interaction) -> None:
        await launch(interaction, test_mode=False)

    @tree.command(name="test-onboard", description="Walk through onboarding without changing roles (Admin only)")
    @discord.app_commands.guild_only()
    async def test_onboard(interaction: discord.Interaction) -> None:
        if not await ensure_admin(interaction, store):
            return
        await launch(interaction, test_mode=True)

    @tree.command(name="onboarding-list", description="List members currently onboarding (Admin only)")
    @discord.app_commands.guild_only()
    async def onboarding_list(interaction: discord.Interaction) -> None:
        if not await ensure_admin(interaction, store):
            return
        sessions = [s for s in engine.active_sessions() if s.guild_id == interaction.guild.id]
        if not sessions:
            await interaction.response.send_message("Nobody is onboarding right now.", ephemeral=True)
            return
        total = len(store.get_active_questions(interaction.guild.id))
        embed = discord.Embed(title="Active onboarding sessions", color=discord.Color.blurple())
        for session in sessions[:25]:
            embed.add_field(
                name=f"{'🧪 ' if session.is_test_mode else ''}User {session.user_id}",
                value=(
                    f"<@{session.user_id}> in <#{session.channel_id}>\n"
                    f"Progress: {session.current_question_index}/{total}\n"
                    f"Last activity: <t:{int(session.last_activity_at.timestamp())}:R>"
                ),
                inline=False,
            )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @tree.command(name="onboarding-clear", description="Clear a member's stuck onboarding session (Admin only)")
    @discord.app_commands.guild_only()
    @discord.app_commands.describe(member="Member whose session should be cleared")
    async def onboarding_clear(interaction: discord.Interaction, member: discord.Member) -> None:
        if not await ensure_admin(interaction, store):
            return
        if engine.clear_session(member.id):
            log.info("Onboarding session for %s cleared by %s", member, interaction.user)
            await interaction.response.send_message(
                f"✅ Cleared the onboarding session for {member.mention}. They can run `/onboard` again.",
                ephemeral=True,
            )
        else:
            await interaction.response.send_message(
                f"{member.mention} has no active onboarding session.", ephemeral=True
            )

    @tree.command(
        name="restart-onboarding",
        description="Restart onboarding for a member or for this onboarding channel (Admin only)",
    )
    @discord.app_commands.guild_only()
    @discord.app_commands.describe(member="Member to restart; leave empty inside an onboarding channel")
    async def restart_onboarding(interaction: discord.Interaction, member: discord.Member | None = None) -> None:
        if not await ensure_admin(interaction, store):
            return
        guild = interaction.guild
        here = interaction.channel
        target = member or onboarding_channel_owner(guild, here, engine)
        if target is None:
            await interaction.response.send_message(
                "❌ Please specify a member to restart onboarding for, "
                "or use this command in an onboarding channel.",
                ephemeral=True,
            )
            return
        session = engine.registry.get(target.id)
        old_channel = None
        if session is not None:
            old_channel = guild.get_channel(session.channel_id)
        elif is_onboarding_channel(getattr(here, "name", "")):
            old_channel = here
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            channel, _ = await engine.restart(target, old_channel=old_channel)
        except VaultyError as exc:
            await interaction.followup.send(f"❌ Failed to restart onboarding for {target.mention}: {exc}", ephemeral=True)
            return
        log.info("Onboarding for %s restarted by %s", target, interaction.user)
        embed = discord.Embed(
            title="🔄 Onboarding Restarted",
            description=f"Successfully restarted onboarding for {target.mention}",
            color=discord.Color.green(),
        )
        embed.add_field(name="📝 New Channel", value=channel.mention, inline=True)
        embed.set_footer(text=f"Restarted by {interaction.user}")
        await interaction.followup.send(embed=embed, ephemeral=True)

    @tree.command(name="server-status", description="Server health and onboarding activity (Admin only)")
    @discord.app_commands.guild_only()
    async def server_status(interaction: discord.Interaction) -> None:
        if not await ensure_admin(interaction, store):
            return
        guild = interaction.guild
        cfg = store.get_config(guild.id)
        if cfg is None:
            await interaction.response.send_message(
                "❌ This server is not configured yet. Run `/server-setup` first.", ephemeral=True
            )
            return
        issues = server_health(guild, cfg)
        active_here = sum(1 for s in engine.active_sessions() if s.guild_id == guild.id)
        # NaN until the first heartbeat
        latency = None if math.isnan(bot.latency) else bot.latency * 1000
        embed = status_embed(
            cfg,
            store.stats(),
            health=health_label(issues),
            issues=issues,
            active_here=active_here,
            active_total=engine.session_count(),
            latency_ms=latency,
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @tree.command(
        name="create-onboarding-roles",
        description="Create the Welcome, Onboarding and Onboarded roles (Admin only)",
    )
    @discord.app_commands.guild_only()
    async def create_roles(interaction: discord.Interaction) -> None:
        if not await ensure_admin(interaction, store):
            return
        guild = interaction.guild
        await interaction.response.defer(ephemeral=True, thinking=True)
        setup = await create_onboarding_roles(guild, store.get_config(guild.id))
        lines = [f"🆕 Created: {', '.join(setup.created)}" if setup.created else "🆕 Created: none"]
        if setup.existing:
            lines.append(f"⏭️ Already existed: {', '.join(setup.existing)}")
        lines.append("Run `/server-setup` next, then adjust channel permissions for these roles as needed.")
        await interaction.followup.send("✅ Onboarding roles are ready.\n" + "\n".join(lines), ephemeral=True)

    @tree.command(
        name="cleanup-onboarding",
        description="Delete this onboarding channel, or purge ones older than 48 hours",
    )
    @discord.app_commands.guild_only()
    @discord.app_commands.describe(mode="individual: this channel; purge_old: every channel older than 48 hours")
    @discord.app_commands.choices(
        mode=[
            discord.app_commands.Choice(name="individual", value="individual"),
            discord.app_commands.Choice(name="purge_old", value="purge_old"),
        ]
    )
    async def cleanup_onboarding(interaction: discord.Interaction, mode: str = "individual") -> None:
        guild = interaction.guild
        if mode == "purge_old":
            if not await ensure_admin(interaction, store):
                return
            await interaction.response.defer(ephemeral=True, thinking=True)
            report = await engine.purge_stale_channels(guild.text_channels)
            log.info("Stale onboarding channels purged in %s by %s", guild.name, interaction.user)
            text = (
                f"🧹 Purged {len(report.purged)} of {report.found} onboarding channel(s) "
                f"older than {STALE_CHANNEL_AGE.total_seconds() / 3600:g} hours."
            )
            if report.failed:
                text += f"\n❌ Failed: {', '.join(report.failed)}"
            await interaction.followup.send(text, ephemeral=True)
            return

        channel = interaction.channel
        if not is_onboarding_channel(getattr(channel, "name", "")):
            await interaction.response.send_message(
                "❌ This command can only be used in private onboarding channels.", ephemeral=True
            )
            return
        owner = onboarding_channel_owner(guild, channel, engine)
        is_own = owner is not None and owner.id == interaction.user.id
        if not is_own and not is_admin(interaction.user, store.get_config(guild.id)):
            await interaction.response.send_message(
                "❌ You can only clean up your own onboarding channel.", ephemeral=True
            )
            return
        session = engine.session_for_channel(channel.id)
        if session is not None:
            engine.clear_session(session.user_id)
        await interaction.response.send_message("🧹 Deleting this onboarding channel...", ephemeral=True)
        log.info("Onboarding channel %s cleaned up by %s", channel.name, interaction.user)
        await engine.provisioning.delete_channel(channel)
