"""Exceptions raised by the onboarding core."""

from __future__ import annotations


class VaultyError(Exception):
    """Base class for errors that carry a user-facing message."""


class AlreadyOnboarding(VaultyError):
    def __init__(self, user_id: int) -> None:
        super().__init__(
            "You are already in an active onboarding session. "
            "Please complete your current onboarding first."
        )
        self.user_id = user_id


class GuildNotConfigured(VaultyError):
    def __init__(self, guild_id: int) -> None:
        super().__init__(
            "This server is not configured yet. Run `/server-setup` first."
        )
        self.guild_id = guild_id


class QuestionNotFound(VaultyError):
    def __init__(self, question_ids: list[str]) -> None:
        super().__init__(f"Question(s) not found: {', '.join(question_ids)}")
        self.question_ids = question_ids


class ValidationFailed(VaultyError):
    """Admin or member input did not satisfy a validation rule."""


class RoleResolutionFailed(VaultyError):
    def __init__(self, role_names: list[str]) -> None:
        super().__init__(f"Role(s) not found: {', '.join(role_names)}")
        self.role_names = role_names


class PersistenceWriteFailed(VaultyError):
    def __init__(self, tab: str, reason: str) -> None:
        super().__init__(f"Failed to save onboarding row to '{tab}': {reason}")
        self.tab = tab
        self.reason = reason


class ProvisioningFailed(VaultyError):
    """A private onboarding channel could not be created."""
