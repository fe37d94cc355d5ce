from __future__ import annotations

import discord

from ..adapters.base import AuditRecord
from ..core.models import GuildConfig, Question, StoreStats
from ..core.storage import validate_config

FIELD_LIMIT = 1024


def _clip(text: str, limit: int = FIELD_LIMIT) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


def audit_embed(record: AuditRecord, avatar_url: str | None = None) -> discord.Embed:
    """Summary of one completed onboarding for the guild's audit channel."""
    if record.test_mode:
        title = "🧪 Test Onboarding Completed"
        color = discord.Color.orange()
    else:
        title = "📋 New Member Onboarding Completed"
        color = discord.Color.green()
    e = discord.Embed(title=title, color=color, timestamp=record.timestamp)
    if avatar_url:
        e.set_thumbnail(url=avatar_url)
    e.add_field(
        name="👤 User Information",
        value=(
            f"**User:** <@{record.user_id}>\n"
            f"**Username:** {record.user_tag}\n"
            f"**User ID:** {record.user_id}\n"
            f"**Channel:** {record.channel_name}"
        ),
        inline=False,
    )
    for index, (question, answer) in enumerate(record.answers, start=1):
        e.add_field(name=_clip(f"{index}. {question}", 256), value=_clip(answer or "—"), inline=False)
    if record.nickname:
        e.add_field(name="🏷️ Nickname", value=f"`{record.nickname}`", inline=True)
    footer = "Vaulty Bot Test Mode" if record.test_mode else "Vaulty Bot Onboarding"
    e.set_footer(text=footer)
    return e


def config_embed(config: GuildConfig) -> discord.Embed:
    check = validate_config(config)
    e = discord.Embed(
        title=f"⚙️ Configuration for {config.name}",
        color=discord.Color.blurple() if config.active else discord.Color.dark_grey(),
    )
    e.add_field(name="Status", value="Active" if config.active else "Inactive", inline=True)
    e.add_field(name="Sheet tab", value=f"`{config.sheet_tab}`", inline=True)
    e.add_field(name="Welcome channel", value=f"#{config.welcome_channel}" if config.welcome_channel else "Not set", inline=True)
    e.add_field(name="Audit channel", value=f"<#{config.audit_channel}>" if config.audit_channel else "Not set", inline=True)
    e.add_field(
        name="Roles",
        value=(
            f"Welcome: {config.welcome_role or 'Not set'}\n"
            f"Onboarding: {config.onboarding_role or 'Not set'}\n"
            f"Onboarded: {config.onboarded_role or 'Not set'}\n"
            f"Sample: {config.sample_role or 'Not set'}"
        ),
        inline=False,
    )
    e.add_field(name="Admin roles", value=", ".join(config.admin_roles) or "None", inline=False)
    e.add_field(
        name="Questions",
        value=f"{len(config.active_questions())} active (version {config.question_version})",
        inline=True,
    )
    if check.errors or check.warnings:
        lines = [f"❌ {msg}" for msg in check.errors] + [f"⚠️ {msg}" for msg in check.warnings]
        e.add_field(name="Checks", value=_clip("\n".join(lines)), inline=False)
    e.set_footer(text=f"Last updated {config.last_updated:%Y-%m-%d %H:%M} UTC")
    return e


def questions_embed(guild_name: str, questions: list[Question]) -> discord.Embed:
    e = discord.Embed(title=f"📝 Onboarding questions for {guild_name}", color=discord.Color.blurple())
    if not questions:
        e.description = "No questions configured."
        return e
    for question in questions[:25]:
        state = "" if question.active else " (inactive)"
        detail = f"ID: `{question.id}`\nValidation: {question.validation}"
        if question.placeholder:
            detail += f"\nExample: {question.placeholder}"
        e.add_field(name=_clip(f"{question.order}. {question.text}{state}", 256), value=detail, inline=False)
    return e


_HEALTH = {
    "Excellent": ("💚", discord.Color.green()),
    "Good": ("💚", discord.Color.green()),
    "Warning": ("🟡", discord.Color.orange()),
    "Critical": ("🔴", discord.Color.red()),
}


def status_embed(
    config: GuildConfig,
    stats: StoreStats,
    *,
    health: str,
    issues: list[str],
    active_here: int,
    active_total: int,
    latency_ms: float | None = None,
) -> discord.Embed:
    """Health, live sessions and configuration summary for ``/server-status``."""
    emoji, color = _HEALTH.get(health, ("🤔", discord.Color.blurple()))
    e = discord.Embed(title=f"📊 {config.name} - Server Status", color=color)
    e.add_field(
        name="🏥 Server Health",
        value=(
            f"**Status:** {emoji} {health}\n"
            f"**Configuration:** {'✅ Active' if config.active else '⚠️ Inactive'}"
        ),
        inline=True,
    )
    e.add_field(
        name="📈 Onboarding Activity",
        value=f"**Active here:** {active_here}\n**Active everywhere:** {active_total}",
        inline=True,
    )
    bot_lines = [f"**Servers:** {stats.active_servers} active / {stats.total_servers} known"]
    if latency_ms is not None:
        bot_lines.append(f"**Latency:** {latency_ms:.0f}ms")
    e.add_field(name="🤖 Bot", value="\n".join(bot_lines), inline=True)
    e.add_field(
        name="⚙️ Configuration Summary",
        value=(
            f"**Welcome Channel:** {'#' + config.welcome_channel if config.welcome_channel else 'Not set'}\n"
            f"**Audit Channel:** {f'<#{config.audit_channel}>' if config.audit_channel else 'Not set'}\n"
            f"**Active Questions:** {len(config.active_questions())}\n"
            f"**Admin Roles:** {len(config.admin_roles)}\n"
            f"**Google Sheet Tab:** {config.sheet_tab}"
        ),
        inline=False,
    )
    if issues:
        e.add_field(name="🚨 Alerts", value=_clip("\n".join(f"• {issue}" for issue in issues)), inline=False)
    e.set_footer(text="Vaulty Server Status")
    return e
