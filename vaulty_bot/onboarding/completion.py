"""Finalisation run once a member has answered every question."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..adapters.base import AuditRecord, Notifier, Provisioning, RoleChange, RowWriter
from ..core.errors import (
    GuildNotConfigured,
    PersistenceWriteFailed,
    RoleResolutionFailed,
)
from ..core.models import NOT_PROVIDED, GuildConfig, Question, utc_now
from ..core.nickname import derive_nickname, find_tiktok_username
from ..core.storage import GuildConfigStore
from .session import OnboardingSession

log = logging.getLogger("vaulty.onboarding.completion")

LEADING_HEADERS = ["Timestamp", "Guild Name", "Guild ID", "User Tag", "User ID", "Channel"]
TRAILING_HEADERS = ["Roles Added", "Run ID"]
TEST_ROLES_MARKER = "TEST MODE - No role changes"

CloseChannel = Callable[..., Awaitable[None]]


def sheet_headers(questions: Sequence[Question]) -> list[str]:
    return [*LEADING_HEADERS, *(q.text for q in questions), *TRAILING_HEADERS]


def new_run_id(test_mode: bool = False) -> str:
    run_id = uuid.uuid4().hex[:6]
    return f"TEST-{run_id}" if test_mode else run_id


def build_row(
    member: Any,
    channel: Any,
    questions: Sequence[Question],
    responses: dict[str, str],
    roles: RoleChange,
    *,
    test_mode: bool = False,
    run_id: str | None = None,
) -> list[str]:
    """Flatten one completed onboarding into a spreadsheet row.

    One column per active question, in catalog order, between the fixed
    leading and trailing columns of :func:`sheet_headers`.
    """
    guild = member.guild
    if test_mode:
        roles_col = TEST_ROLES_MARKER
    else:
        roles_col = ", ".join(roles.added) or "None"
    return [
        utc_now().isoformat(),
        guild.name,
        str(guild.id),
        str(member),
        str(member.id),
        channel.name,
        *(responses.get(q.id, NOT_PROVIDED) for q in questions),
        roles_col,
        run_id or new_run_id(test_mode),
    ]


@dataclass
class CompletionResult:
    roles: RoleChange = field(default_factory=RoleChange)
    nickname: str | None = None
    row: list[str] | None = None
    row_saved: bool = False
    audit_sent: bool = False
    failed_step: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CompletionTransaction:
    """Assign roles, record the answers, notify, and close the channel.

    Each sub-step after the configuration lookup is fault tolerant; only a
    missing guild configuration aborts the whole run up front.
    """

    def __init__(
        self,
        store: GuildConfigStore,
        provisioning: Provisioning,
        writer: RowWriter,
        notifier: Notifier,
        close_channel: CloseChannel,
    ) -> None:
        self.store = store
        self.provisioning = provisioning
        self.writer = writer
        self.notifier = notifier
        self.close_channel = close_channel

    async def run(self, channel: Any, member: Any, session: OnboardingSession) -> CompletionResult:
        result = CompletionResult()
        guild = member.guild
        test_mode = session.is_test_mode
        step = "config"
        try:
            config = self.store.get_config(guild.id)
            if config is None:
                raise GuildNotConfigured(guild.id)
            questions = self.store.get_active_questions(guild.id)

            step = "roles"
            if not test_mode:
                result.roles = await self.provisioning.assign_completion_roles(
                    member, config, requested_sample=session.requested_sample
                )
                if result.roles.missing:
                    log.warning(
                        "Role assignment for %s in %s was partial: %s",
                        member,
                        guild.name,
                        RoleResolutionFailed(result.roles.missing),
                    )

            step = "nickname"
            result.nickname = await self._apply_nickname(member, questions, session)

            step = "persist"
            result.row = build_row(
                member, channel, questions, session.responses, result.roles, test_mode=test_mode
            )
            result.row_saved = await self._persist(config, member, questions, result.row)

            step = "message"
            await channel.send(self._completion_message(member, result, test_mode))
            if not test_mode:
                await self._notify_completed(member, questions, session)

            step = "audit"
            result.audit_sent = await self._send_audit(member, channel, config, questions, session, result)

            step = "cleanup"
            await self.close_channel(channel, test_mode=test_mode)
            log.info(
                "%s onboarding completed for %s in %s",
                "Test" if test_mode else "Live",
                member,
                guild.name,
            )
        except Exception as exc:
            result.failed_step = step
            result.error = exc
            await self._handle_failure(channel, member, step, exc, test_mode)
        return result

    # ------------------------------------------------------------------
    async def _apply_nickname(
        self, member: Any, questions: list[Question], session: OnboardingSession
    ) -> str | None:
        nickname = derive_nickname(questions, session.responses)
        if nickname is None:
            log.info("No usable TikTok username for %s; nickname unchanged", member)
            return None
        try:
            applied = await self.provisioning.set_nickname(member, nickname)
        except Exception:
            log.exception("Error applying nickname %r to %s", nickname, member)
            return None
        return nickname if applied else None

    async def _persist(
        self, config: GuildConfig, member: Any, questions: list[Question], row: list[str]
    ) -> bool:
        try:
            await self.writer.append_row(config.sheet_tab, sheet_headers(questions), row)
        except Exception as exc:
            log.error(
                "Failed to save onboarding row for %s (user %s) in %s (guild %s), %d columns: %s",
                member,
                member.id,
                config.name,
                config.guild_id,
                len(row),
                exc,
            )
            await self.notifier.critical(
                "Google Sheets Save Failed",
                f"Failed to save onboarding data for {member} in {config.name}",
                config.name,
            )
            return False
        return True

    async def _notify_completed(
        self, member: Any, questions: list[Question], session: OnboardingSession
    ) -> None:
        message = f"✅ Onboarding completed!\n\n👤 User: {member}\n🏠 Server: {member.guild.name}"
        username = find_tiktok_username(questions, session.responses)
        if username:
            message += f"\n📱 TikTok: @{username}"
        await self.notifier.notify(message, title="Onboarding Complete")

    async def _send_audit(
        self,
        member: Any,
        channel: Any,
        config: GuildConfig,
        questions: list[Question],
        session: OnboardingSession,
        result: CompletionResult,
    ) -> bool:
        if not config.audit_channel:
            log.debug("No audit channel configured for %s", config.name)
            return False
        record = AuditRecord(
            user_id=member.id,
            user_tag=str(member),
            user_name=member.name,
            channel_name=channel.name,
            timestamp=utc_now(),
            answers=[(q.text, session.responses.get(q.id, NOT_PROVIDED)) for q in questions],
            test_mode=session.is_test_mode,
            nickname=result.nickname,
        )
        try:
            return await self.provisioning.send_audit(member, config.audit_channel, record)
        except Exception:
            log.exception("Failed to send audit log for %s in %s", member, config.name)
            return False

    @staticmethod
    def _completion_message(member: Any, result: CompletionResult, test_mode: bool) -> str:
        if test_mode:
            text = f"<@{member.id}> 🧪 Test completed, {member.name}!"
            if result.row_saved:
                text += "\n\nYour answers were saved to the test logs."
        else:
            text = f"<@{member.id}> 🎉 Great! You've completed onboarding, {member.name}!"
            if result.row_saved:
                text += "\n\nYour info has been saved and you now have access to the full server."
            else:
                text += "\n\nYou now have access to the full server."
        if not result.row_saved:
            text += (
                "\n\n⚠️ We couldn't save your answers right now. "
                "Please contact an admin to verify your information was recorded."
            )
        if result.nickname:
            text += f"\n\n👤 **Your nickname has been set to:** `{result.nickname}`"
        if test_mode:
            text += "\n\n*Note: no roles were changed during this test.*"
        else:
            text += f"\n\nWelcome to {member.guild.name}! Check out the channels and say hi to everyone."
        return text

    async def _handle_failure(
        self, channel: Any, member: Any, step: str, exc: Exception, test_mode: bool
    ) -> None:
        guild = member.guild
        log.error(
            "Onboarding completion failed at step %r for %s (user %s) in %s (guild %s), test=%s",
            step,
            member,
            member.id,
            guild.name,
            guild.id,
            test_mode,
            exc_info=exc,
        )
        await self.notifier.critical(
            "Onboarding Completion Failed",
            f"Error during onboarding completion for {member} in {guild.name} at {step}: {exc}",
            guild.name,
        )
        if isinstance(exc, GuildNotConfigured):
            text = f"<@{member.id}> ⚠️ {exc} Please contact an admin for help."
        elif isinstance(exc, PersistenceWriteFailed):
            text = (
                f"<@{member.id}> ⚠️ Onboarding completed but there was an issue saving your data. "
                "Please contact an admin to verify your information was recorded."
            )
        elif isinstance(exc, RoleResolutionFailed) or step == "roles":
            text = (
                f"<@{member.id}> ⚠️ Onboarding completed but there was an issue assigning your roles. "
                "Please contact an admin to get your roles manually."
            )
        else:
            text = f"<@{member.id}> ❌ Oops! Something went wrong during onboarding. Please contact an admin for help."
        try:
            await channel.send(text)
        except Exception:
            log.exception("Failed to send failure message to %s in channel %s", member, channel.id)
