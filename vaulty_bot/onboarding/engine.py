"""The onboarding session engine.

One linear question/answer conversation per member, held in a
:class:`~vaulty_bot.onboarding.session.SessionRegistry` owned by the engine.
Every inbound message is offered to :meth:`SessionEngine.handle_incoming_answer`,
which reports whether it belonged to a live session.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..adapters.base import Notifier, NullNotifier, Provisioning, RowWriter
from ..core.errors import AlreadyOnboarding
from ..core.models import NOT_PROVIDED, utc_now
from ..core.questions import format_question, is_skip, validate_answer, validation_error
from ..core.storage import GuildConfigStore
from .completion import CompletionResult, CompletionTransaction
from .session import OnboardingSession, SessionRegistry

log = logging.getLogger("vaulty.onboarding")

# Policies for which an empty answer or "skip" is recorded as NOT_PROVIDED.
SKIPPABLE = frozenset({"optional", "phone"})

CHANNEL_PREFIXES = ("onboarding-", "test-onboarding-")
STALE_CHANNEL_AGE = datetime.timedelta(hours=48)


def is_onboarding_channel(name: str) -> bool:
    return name.startswith(CHANNEL_PREFIXES)


@dataclass(frozen=True)
class Timings:
    question_delay: float = 2.0
    reminder_after: float = 10 * 60.0
    expire_after: float = 20 * 60.0
    cleanup_delay: float = 30.0
    test_cleanup_delay: float = 10.0
    restart_cleanup_delay: float = 5.0


@dataclass
class PurgeReport:
    found: int = 0
    purged: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class SessionEngine:
    """Drive onboarding conversations and hand finished ones to completion."""

    def __init__(
        self,
        store: GuildConfigStore,
        provisioning: Provisioning,
        writer: RowWriter,
        notifier: Notifier | None = None,
        *,
        registry: SessionRegistry | None = None,
        timings: Timings | None = None,
    ) -> None:
        self.store = store
        self.provisioning = provisioning
        self.notifier = notifier or NullNotifier()
        self.registry = registry if registry is not None else SessionRegistry()
        self.timings = timings or Timings()
        self.completion = CompletionTransaction(
            store, provisioning, writer, self.notifier, self.close_channel
        )
        self._cleanup_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Registry views
    def is_onboarding(self, user_id: int) -> bool:
        return user_id in self.registry

    def active_sessions(self) -> list[OnboardingSession]:
        return list(self.registry)

    def session_count(self) -> int:
        return len(self.registry)

    def clear_session(self, user_id: int) -> bool:
        """Cancel the member's timers and forget their session."""
        return self.registry.remove(user_id) is not None

    # ------------------------------------------------------------------
    # Conversation
    async def begin(self, member: Any, *, test_mode: bool = False) -> tuple[Any, OnboardingSession]:
        """Provision a private channel for ``member``, greet them and start.

        The channel is removed again if another session won the race while it
        was being created, or if the greeting or the first question fails.
        """
        if self.is_onboarding(member.id):
            raise AlreadyOnboarding(member.id)
        channel = await self.provisioning.create_private_channel(member, test_mode=test_mode)
        try:
            await self.provisioning.send_welcome(channel, member, test_mode=test_mode)
            session = await self.start(channel, member, test_mode=test_mode)
        except AlreadyOnboarding:
            await self.provisioning.delete_channel(channel)
            raise
        except Exception:
            log.exception("Could not start onboarding for %s; removing channel %s", member, channel.id)
            current = self.registry.get(member.id)
            if current is not None and current.channel_id == channel.id:
                self.clear_session(member.id)
            try:
                await self.provisioning.delete_channel(channel)
            except Exception:
                log.exception("Error deleting onboarding channel %s", channel.id)
            raise
        return channel, session

    async def restart(
        self, member: Any, *, old_channel: Any = None, test_mode: bool = False
    ) -> tuple[Any, OnboardingSession]:
        """Drop any live session for ``member`` and begin a fresh one.

        ``old_channel`` gets a pointer to the new channel and is deleted after
        the restart delay.
        """
        if self.clear_session(member.id):
            log.info("Cleared existing onboarding session for %s before restart", member)
        channel, session = await self.begin(member, test_mode=test_mode)
        if old_channel is not None and old_channel.id != channel.id:
            try:
                await old_channel.send(
                    f"🔄 **Onboarding Restarted**\n\nYour onboarding has been restarted in "
                    f"<#{channel.id}>. This channel will be deleted in a few seconds."
                )
            except Exception:
                log.exception("Could not post restart notice in %s", old_channel.id)
            self._schedule_delete(old_channel, self.timings.restart_cleanup_delay)
        return channel, session

    def session_for_channel(self, channel_id: int) -> OnboardingSession | None:
        return next((s for s in self.registry if s.channel_id == channel_id), None)

    async def purge_stale_channels(
        self,
        channels: Iterable[Any],
        *,
        max_age: datetime.timedelta = STALE_CHANNEL_AGE,
        now: datetime.datetime | None = None,
    ) -> PurgeReport:
        """Delete onboarding channels created more than ``max_age`` ago.

        Any session still bound to a purged channel is cleared first.
        """
        now = now or utc_now()
        report = PurgeReport()
        for channel in channels:
            if not is_onboarding_channel(channel.name):
                continue
            report.found += 1
            if now - channel.created_at < max_age:
                continue
            session = self.session_for_channel(channel.id)
            if session is not None:
                self.clear_session(session.user_id)
            try:
                await self.provisioning.delete_channel(channel)
            except Exception:
                log.exception("Error purging onboarding channel %s", channel.name)
                report.failed.append(channel.name)
                continue
            report.purged.append(channel.name)
        log.info(
            "Purged %d of %d onboarding channel(s), %d failed",
            len(report.purged),
            report.found,
            len(report.failed),
        )
        return report

    async def start(self, channel: Any, member: Any, *, test_mode: bool = False) -> OnboardingSession:
        """Open a session bound to ``channel`` and ask the first question.

        Raises :class:`~vaulty_bot.core.errors.AlreadyOnboarding` if the member
        already has one.
        """
        session = self.registry.register(
            OnboardingSession(
                user_id=member.id,
                guild_id=member.guild.id,
                channel_id=channel.id,
                is_test_mode=test_mode,
            )
        )
        self._arm_timers(session, channel, member)
        log.info(
            "Started %sonboarding for %s in %s (channel %s)",
            "test " if test_mode else "",
            member,
            member.guild.name,
            channel.id,
        )
        if not test_mode:
            await self.notifier.notify(
                f"🎯 New onboarding started!\n\n👤 User: {member}\n🏠 Server: {member.guild.name}",
                title="New Onboarding",
            )
        if self.timings.question_delay > 0:
            await asyncio.sleep(self.timings.question_delay)
        await self._ask_or_complete(channel, member, session)
        return session

    async def handle_incoming_answer(self, message: Any) -> bool:
        """Consume ``message`` if it answers the author's current question."""
        author = message.author
        session = self.registry.get(author.id)
        if session is None or message.channel.id != session.channel_id:
            return False

        if session.completing:
            return True

        channel = message.channel
        session.touch()
        self._arm_timers(session, channel, author)

        questions = self.store.get_active_questions(session.guild_id)
        index = session.current_question_index
        if index >= len(questions):
            log.error(
                "Invalid question index %d of %d for %s; clearing session",
                index,
                len(questions),
                author,
            )
            await channel.send(
                f"<@{author.id}> ❌ Sorry, there was an issue with the onboarding process. "
                "Please try again by using the `/onboard` command."
            )
            self.clear_session(author.id)
            return True

        question = questions[index]
        answer = (message.content or "").strip()
        if question.validation in SKIPPABLE and is_skip(answer):
            session.record(question.id, NOT_PROVIDED)
        elif not validate_answer(question, answer):
            await channel.send(f"<@{author.id}> ❌ {validation_error(question)}")
            return True
        else:
            session.record(question.id, answer)

        await self._ask_or_complete(channel, author, session)
        return True

    async def _ask_or_complete(self, channel: Any, member: Any, session: OnboardingSession) -> None:
        if self.registry.get(session.user_id) is not session:
            return
        questions = self.store.get_active_questions(session.guild_id)
        index = session.current_question_index
        if index >= len(questions):
            await self._complete(channel, member, session)
            return
        await channel.send(
            format_question(questions[index], index, len(questions), test_mode=session.is_test_mode)
        )

    async def _complete(self, channel: Any, member: Any, session: OnboardingSession) -> CompletionResult:
        # Drop the timers first so an expiry can't race the completion.
        session.completing = True
        session.cancel_timers()
        try:
            return await self.completion.run(channel, member, session)
        finally:
            if self.registry.get(session.user_id) is session:
                self.registry.remove(session.user_id)

    # ------------------------------------------------------------------
    # Timers and channel teardown
    def _arm_timers(self, session: OnboardingSession, channel: Any, member: Any) -> None:
        session.cancel_timers()
        session.reminder_task = asyncio.create_task(self._remind_later(session, channel, member))
        session.expire_task = asyncio.create_task(self._expire_later(session, channel, member))

    async def _remind_later(self, session: OnboardingSession, channel: Any, member: Any) -> None:
        await asyncio.sleep(self.timings.reminder_after)
        if self.registry.get(session.user_id) is not session:
            return
        try:
            await channel.send(
                f"<@{member.id}> 👋 Just checking in! Are you still there? "
                "Please reply to continue with onboarding."
            )
            log.info("Sent inactivity reminder to %s", member)
        except Exception:
            log.exception("Error sending inactivity reminder to %s", member)

    async def _expire_later(self, session: OnboardingSession, channel: Any, member: Any) -> None:
        await asyncio.sleep(self.timings.expire_after)
        if self.registry.get(session.user_id) is not session:
            return
        log.info("Onboarding session for %s expired due to inactivity", member)
        self.registry.remove(session.user_id)
        try:
            await channel.send(
                f"<@{member.id}> ⏰ Your onboarding session has expired due to inactivity.\n\n"
                "To restart onboarding, please use the `/onboard` command in the welcome channel."
            )
            await self.close_channel(channel, test_mode=session.is_test_mode)
        except Exception:
            log.exception("Error during inactivity cleanup for %s", member)

    async def close_channel(self, channel: Any, *, test_mode: bool = False) -> None:
        """Post a closing notice and delete ``channel`` after a grace delay."""
        delay = self.timings.test_cleanup_delay if test_mode else self.timings.cleanup_delay
        if test_mode:
            notice = f"🧪 This test channel will be deleted in {delay:g} seconds."
        else:
            notice = f"This channel will be deleted in {delay:g} seconds. Enjoy the server!"
        await channel.send(notice)
        self._schedule_delete(channel, delay)

    def _schedule_delete(self, channel: Any, delay: float) -> None:
        task = asyncio.create_task(self._delete_later(channel, delay))
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)

    async def _delete_later(self, channel: Any, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.provisioning.delete_channel(channel)
        except Exception:
            log.exception("Error deleting onboarding channel %s", getattr(channel, "id", "?"))

    async def drain(self) -> None:
        """Wait for pending channel deletions to finish."""
        if self._cleanup_tasks:
            await asyncio.gather(*list(self._cleanup_tasks), return_exceptions=True)

    def shutdown(self) -> None:
        """Cancel every timer and pending deletion owned by this engine."""
        for session in self.registry:
            session.cancel_timers()
        for task in list(self._cleanup_tasks):
            task.cancel()
