"""Data models for the per-guild onboarding configuration.

The models are implemented using :mod:`pydantic` so that they provide
runtime validation and convenient serialisation to and from dictionaries,
which is how :class:`~vaulty_bot.core.storage.GuildConfigStore` persists them.
"""

from __future__ import annotations

import datetime
import uuid
from datetime import UTC
from typing import Literal

from pydantic import BaseModel, Field

ValidationPolicy = Literal["required", "optional", "email", "url", "phone"]
QuestionKind = Literal["text", "email", "phone"]

NOT_PROVIDED = "Not provided"
SHEET_TAB_SUFFIX = "Onboarding"
SHEET_TAB_MAX = 31


def utc_now() -> datetime.datetime:
    """Return the current UTC timestamp."""
    return datetime.datetime.now(tz=UTC)


def new_question_id() -> str:
    return f"question_{uuid.uuid4().hex[:12]}"


class Question(BaseModel):
    """A single onboarding prompt.

    Attributes
    ----------
    id:
        Stable identifier, unique within a guild's catalog.
    text:
        Prompt shown to the member.
    kind:
        Semantic type tag used for display.
    validation:
        Policy applied to the member's answer.
    placeholder:
        Optional example answer shown under the prompt.
    order:
        1-based display position. Contiguous after every structural edit.
    active:
        Inactive questions are skipped by the live flow but kept on record.

    """

    id: str = Field(default_factory=new_question_id)
    text: str
    kind: QuestionKind = "text"
    validation: ValidationPolicy = "required"
    placeholder: str = ""
    order: int = 1
    active: bool = True
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    @property
    def is_optional(self) -> bool:
        return self.validation == "optional"


class GuildConfig(BaseModel):
    """Durable configuration record for one Discord guild."""

    guild_id: int
    name: str
    welcome_channel: str | None = "welcome"
    audit_channel: int | None = None
    onboarding_role: str | None = "Onboarding"
    onboarded_role: str | None = "Onboarded"
    sample_role: str | None = None
    welcome_role: str | None = "Onboarding"
    admin_roles: list[str] = Field(default_factory=lambda: ["Owner", "Admin", "Moderator"])
    questions: list[Question] = Field(default_factory=list)
    active: bool = True
    sheet_tab: str
    joined_at: datetime.datetime = Field(default_factory=utc_now)
    last_updated: datetime.datetime = Field(default_factory=utc_now)
    question_version: int = 1
    last_question_update: datetime.datetime | None = None

    def active_questions(self) -> list[Question]:
        """Return active questions sorted by ``order``."""
        return sorted((q for q in self.questions if q.active), key=lambda q: q.order)

    def find_question(self, question_id: str) -> Question | None:
        return next((q for q in self.questions if q.id == question_id), None)


class ConfigValidation(BaseModel):
    """Result of :func:`~vaulty_bot.core.storage.validate_config`."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class StoreStats(BaseModel):
    total_servers: int = 0
    active_servers: int = 0
    inactive_servers: int = 0
    configured_audit_channels: int = 0
    total_questions: int = 0
