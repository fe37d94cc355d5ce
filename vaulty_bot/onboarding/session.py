"""Session state for in-progress onboarding conversations."""

from __future__ import annotations

import asyncio
import datetime
from collections.abc import Iterator
from dataclasses import dataclass, field

from ..core.errors import AlreadyOnboarding
from ..core.models import utc_now


@dataclass
class OnboardingSession:
    user_id: int
    guild_id: int
    channel_id: int
    current_question_index: int = 0
    responses: dict[str, str] = field(default_factory=dict)
    started_at: datetime.datetime = field(default_factory=utc_now)
    last_activity_at: datetime.datetime = field(default_factory=utc_now)
    is_test_mode: bool = False
    # set once the last answer is in; later messages are swallowed
    completing: bool = False
    # Reserved: nothing in the flow asks for a sample yet.
    requested_sample: bool = False
    reminder_task: asyncio.Task | None = field(default=None, repr=False)
    expire_task: asyncio.Task | None = field(default=None, repr=False)

    def touch(self) -> None:
        self.last_activity_at = utc_now()

    def record(self, question_id: str, value: str) -> None:
        """Store ``value`` for ``question_id`` and move to the next question."""
        self.responses[question_id] = value
        self.current_question_index += 1

    def cancel_timers(self) -> None:
        current = asyncio.current_task() if _loop_running() else None
        for task in (self.reminder_task, self.expire_task):
            # a timer callback may be the one clearing its own session
            if task is not None and task is not current and not task.done():
                task.cancel()
        self.reminder_task = None
        self.expire_task = None


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class SessionRegistry:
    """In-memory map of user ID to their live :class:`OnboardingSession`.

    None of these methods await, so a check-then-register done through
    :meth:`register` is atomic with respect to other tasks on the loop.
    """

    def __init__(self) -> None:
        self._sessions: dict[int, OnboardingSession] = {}

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[OnboardingSession]:
        return iter(list(self._sessions.values()))

    def get(self, user_id: int) -> OnboardingSession | None:
        return self._sessions.get(user_id)

    def register(self, session: OnboardingSession) -> OnboardingSession:
        if session.user_id in self._sessions:
            raise AlreadyOnboarding(session.user_id)
        self._sessions[session.user_id] = session
        return session

    def remove(self, user_id: int) -> OnboardingSession | None:
        """Cancel the session's timers and drop it from the registry."""
        session = self._sessions.get(user_id)
        if session is None:
            return None
        session.cancel_timers()
        del self._sessions[user_id]
        return session
