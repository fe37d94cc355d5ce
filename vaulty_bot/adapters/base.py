"""Interfaces the onboarding core uses to reach the outside world."""

from __future__ import annotations

import datetime
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..core.models import GuildConfig


@dataclass
class RoleChange:
    """Role names actually changed on a member, plus names that didn't resolve."""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


@dataclass
class AuditRecord:
    user_id: int
    user_tag: str
    user_name: str
    channel_name: str
    timestamp: datetime.datetime
    answers: list[tuple[str, str]]
    test_mode: bool = False
    nickname: str | None = None


class Provisioning(ABC):
    """Channel, role and member operations on the chat platform."""

    @abstractmethod
    async def create_private_channel(self, member: Any, *, test_mode: bool = False) -> Any:
        """Create a channel only ``member``, the bot and admins can see."""

    @abstractmethod
    async def send_welcome(self, channel: Any, member: Any, *, test_mode: bool = False) -> None:
        """Post the greeting that precedes the first question."""

    @abstractmethod
    async def delete_channel(self, channel: Any) -> None:
        """Delete ``channel`` immediately."""

    @abstractmethod
    async def assign_initial_role(self, member: Any, config: GuildConfig | None) -> RoleChange:
        """Give a newly joined member the restricted welcome role."""

    @abstractmethod
    async def assign_completion_roles(
        self, member: Any, config: GuildConfig, *, requested_sample: bool = False
    ) -> RoleChange:
        """Swap the onboarding role for the onboarded role."""

    @abstractmethod
    async def set_nickname(self, member: Any, nickname: str) -> bool:
        """Return ``False`` when the nickname could not be applied."""

    @abstractmethod
    async def send_audit(self, member: Any, channel_id: int, record: AuditRecord) -> bool:
        """Post ``record`` to the audit channel ``channel_id``."""


class RowWriter(ABC):
    """Append-only sink for completed onboarding rows."""

    @abstractmethod
    async def append_row(self, tab: str, headers: Sequence[str], row: Sequence[str]) -> None:
        """Append ``row`` to ``tab``; raise ``PersistenceWriteFailed`` on failure."""


class Notifier(ABC):
    """Best-effort push notifications for operators."""

    @abstractmethod
    async def notify(self, message: str, *, title: str | None = None, priority: int = 0) -> bool:
        """Send ``message``; never raises."""

    async def critical(self, error_type: str, details: str, guild_name: str | None = None) -> bool:
        message = f"🚨 Critical Error: {error_type}\n\n{details}"
        if guild_name:
            message += f"\n🏠 Server: {guild_name}"
        return await self.notify(message, title="Critical Error", priority=1)


class NullNotifier(Notifier):
    """Used when push notifications are not configured."""

    async def notify(self, message: str, *, title: str | None = None, priority: int = 0) -> bool:
        return False
