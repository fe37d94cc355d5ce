"""JSON-backed storage for per-guild onboarding configuration."""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from .errors import GuildNotConfigured, QuestionNotFound
from .models import (
    SHEET_TAB_MAX,
    SHEET_TAB_SUFFIX,
    ConfigValidation,
    GuildConfig,
    Question,
    StoreStats,
    utc_now,
)
from .questions import default_questions

log = logging.getLogger("vaulty.storage")

_WELCOME_HINTS = ("welcome", "join", "intro")
_AUDIT_HINTS = ("audit", "log")
_QUESTION_FIELDS = {"text", "kind", "validation", "placeholder", "active"}


def sanitize_guild_name(name: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9\s-]", "", name or "")
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned[:30]


def generate_sheet_tab(guild_name: str) -> str:
    """Build the worksheet tab name for a guild, at most 31 characters.

    The display name is truncated so the ``Onboarding`` suffix always
    survives.
    """
    base = sanitize_guild_name(guild_name) or "Server"
    name = f"{base} {SHEET_TAB_SUFFIX}"
    if len(name) <= SHEET_TAB_MAX:
        return name
    keep = SHEET_TAB_MAX - len(SHEET_TAB_SUFFIX) - 1
    return f"{base[:keep].rstrip()} {SHEET_TAB_SUFFIX}"


def _channels_of(guild: Any) -> list[Any]:
    channels = getattr(guild, "text_channels", None)
    if channels is None:
        channels = getattr(guild, "channels", [])
    return list(channels or [])


def detect_welcome_channel(guild: Any) -> str | None:
    for channel in _channels_of(guild):
        name = channel.name.lower()
        if any(hint in name for hint in _WELCOME_HINTS):
            return channel.name
    return None


def detect_audit_channel(guild: Any) -> int | None:
    for channel in _channels_of(guild):
        name = channel.name.lower()
        if any(hint in name for hint in _AUDIT_HINTS):
            return int(channel.id)
    return None


def validate_config(config: GuildConfig) -> ConfigValidation:
    errors: list[str] = []
    warnings: list[str] = []
    if not config.name:
        errors.append("Server name is required")
    if not config.sheet_tab:
        errors.append("Sheet tab name is required")
    elif len(config.sheet_tab) > SHEET_TAB_MAX:
        errors.append(f"Sheet tab name exceeds {SHEET_TAB_MAX} character limit")
    if not config.audit_channel:
        warnings.append("No audit channel configured")
    if not config.onboarding_role or not config.onboarded_role:
        warnings.append("Onboarding roles are not fully configured")
    return ConfigValidation(valid=not errors, errors=errors, warnings=warnings)


class GuildConfigStore:
    """Persist :class:`GuildConfig` records keyed by guild ID.

    The whole document is rewritten atomically on every mutation. Reads hand
    out deep copies, so a caller holding a config across an ``await`` can
    never write a stale copy back; every change goes through :meth:`_mutate`.
    """

    def __init__(self, path: Path | str) -> None:
        """Initialise storage using the JSON file at ``path``."""
        self.path = Path(path)
        self._configs: dict[int, GuildConfig] = {}
        if self.path.exists():
            self._load()

    # ------------------------------------------------------------------
    # Internal helpers
    def _load(self) -> None:
        data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        self._configs = {
            int(gid): GuildConfig(**item) for gid, item in data.get("guilds", {}).items()
        }

    def _save(self) -> None:
        data = {
            "guilds": {
                str(gid): cfg.model_dump(mode="json") for gid, cfg in self._configs.items()
            }
        }
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)

    def _mutate(self, guild_id: int, change: Callable[[GuildConfig], Any]) -> Any:
        """Apply ``change`` to the stored record, bump timestamps, persist."""
        current = self._configs.get(guild_id)
        if current is None:
            raise GuildNotConfigured(guild_id)
        working = current.model_copy(deep=True)
        result = change(working)
        working.last_updated = utc_now()
        self._configs[guild_id] = GuildConfig.model_validate(working.model_dump())
        self._save()
        return result

    def _mutate_questions(
        self, guild_id: int, change: Callable[[GuildConfig], Any]
    ) -> Any:
        def wrapped(cfg: GuildConfig) -> Any:
            if not cfg.questions:
                cfg.questions = default_questions()
            result = change(cfg)
            cfg.question_version += 1
            cfg.last_question_update = utc_now()
            return result

        return self._mutate(guild_id, wrapped)

    @staticmethod
    def _renumber(questions: list[Question]) -> None:
        for position, question in enumerate(questions, start=1):
            question.order = position

    # ------------------------------------------------------------------
    # Guild records
    def get_config(self, guild_id: int) -> GuildConfig | None:
        """Return a copy of the guild's config, or ``None`` if unknown."""
        cfg = self._configs.get(guild_id)
        return cfg.model_copy(deep=True) if cfg is not None else None

    def is_configured(self, guild_id: int) -> bool:
        cfg = self._configs.get(guild_id)
        return bool(cfg and cfg.active)

    def all_configs(self) -> list[GuildConfig]:
        return [cfg.model_copy(deep=True) for cfg in self._configs.values()]

    def active_configs(self) -> list[GuildConfig]:
        return [cfg for cfg in self.all_configs() if cfg.active]

    def configure(
        self, guild_id: int, guild: Any, overrides: dict[str, Any] | None = None
    ) -> GuildConfig:
        """Create (or overwrite) the record for ``guild`` and persist it.

        ``sheet_tab`` is regenerated from the guild's name unless the caller
        carries it forward in ``overrides``.
        """
        overrides = dict(overrides or {})
        now = utc_now()
        fields: dict[str, Any] = {
            "guild_id": guild_id,
            "name": guild.name,
            "sheet_tab": generate_sheet_tab(guild.name),
            "joined_at": now,
            "last_updated": now,
        }
        welcome = detect_welcome_channel(guild)
        if welcome:
            fields["welcome_channel"] = welcome
        fields["audit_channel"] = detect_audit_channel(guild)
        fields.update(overrides)
        cfg = GuildConfig(**fields)
        self._configs[guild_id] = cfg
        self._save()
        log.info("Configured guild %s (%s) with tab %r", cfg.name, guild_id, cfg.sheet_tab)
        return cfg.model_copy(deep=True)

    def update(self, guild_id: int, **changes: Any) -> GuildConfig:
        """Merge ``changes`` into an existing record."""

        def apply(cfg: GuildConfig) -> None:
            for key, value in changes.items():
                if key not in GuildConfig.model_fields:
                    raise ValueError(f"Unknown config field: {key}")
                setattr(cfg, key, value)

        self._mutate(guild_id, apply)
        return self.get_config(guild_id)  # type: ignore[return-value]

    def reset_config(self, guild_id: int) -> GuildConfig:
        """Reset channels and roles to defaults, keeping the sheet binding.

        The guild is left inactive so the next ``/server-setup`` run walks the
        admin through configuration again.
        """
        current = self.get_config(guild_id)
        if current is None:
            raise GuildNotConfigured(guild_id)
        defaults = GuildConfig(guild_id=guild_id, name=current.name, sheet_tab=current.sheet_tab)
        return self.update(
            guild_id,
            welcome_channel=None,
            audit_channel=None,
            onboarding_role=defaults.onboarding_role,
            onboarded_role=defaults.onboarded_role,
            sample_role=None,
            welcome_role=defaults.welcome_role,
            admin_roles=defaults.admin_roles,
            active=False,
        )

    def deactivate(self, guild_id: int) -> bool:
        if guild_id not in self._configs:
            return False
        self.update(guild_id, active=False)
        return True

    def reactivate(self, guild_id: int) -> bool:
        if guild_id not in self._configs:
            return False
        self.update(guild_id, active=True)
        return True

    def add_admin_role(self, guild_id: int, role_name: str) -> list[str]:
        def apply(cfg: GuildConfig) -> list[str]:
            if role_name not in cfg.admin_roles:
                cfg.admin_roles.append(role_name)
            return list(cfg.admin_roles)

        return self._mutate(guild_id, apply)

    def remove_admin_role(self, guild_id: int, role_name: str) -> list[str]:
        def apply(cfg: GuildConfig) -> list[str]:
            cfg.admin_roles = [r for r in cfg.admin_roles if r != role_name]
            return list(cfg.admin_roles)

        return self._mutate(guild_id, apply)

    def stats(self) -> StoreStats:
        active = [cfg for cfg in self._configs.values() if cfg.active]
        return StoreStats(
            total_servers=len(self._configs),
            active_servers=len(active),
            inactive_servers=len(self._configs) - len(active),
            configured_audit_channels=sum(1 for cfg in active if cfg.audit_channel),
            total_questions=sum(len(cfg.active_questions()) for cfg in active),
        )

    # ------------------------------------------------------------------
    # Question catalog
    def get_active_questions(self, guild_id: int) -> list[Question]:
        """Return the live question list, falling back to the defaults."""
        cfg = self._configs.get(guild_id)
        if cfg is None or not cfg.questions:
            return default_questions()
        return [q.model_copy(deep=True) for q in cfg.active_questions()]

    def list_questions(self, guild_id: int) -> list[Question]:
        """Return every question (active or not) sorted by ``order``."""
        cfg = self._configs.get(guild_id)
        if cfg is None or not cfg.questions:
            return default_questions()
        return sorted((q.model_copy(deep=True) for q in cfg.questions), key=lambda q: q.order)

    def add_question(
        self,
        guild_id: int,
        text: str,
        *,
        kind: str = "text",
        validation: str = "required",
        placeholder: str = "",
    ) -> Question:
        def apply(cfg: GuildConfig) -> Question:
            next_order = max((q.order for q in cfg.questions), default=0) + 1
            question = Question(
                text=text,
                kind=kind,
                validation=validation,
                placeholder=placeholder,
                order=next_order,
            )
            cfg.questions.append(question)
            return question

        return self._mutate_questions(guild_id, apply)

    def update_question(self, guild_id: int, question_id: str, **changes: Any) -> Question:
        unknown = set(changes) - _QUESTION_FIELDS
        if unknown:
            raise ValueError(f"Cannot update question field(s): {', '.join(sorted(unknown))}")

        def apply(cfg: GuildConfig) -> Question:
            question = cfg.find_question(question_id)
            if question is None:
                raise QuestionNotFound([question_id])
            for key, value in changes.items():
                setattr(question, key, value)
            question.updated_at = utc_now()
            return Question.model_validate(question.model_dump())

        return self._mutate_questions(guild_id, apply)

    def set_question_active(self, guild_id: int, question_id: str, active: bool) -> Question:
        return self.update_question(guild_id, question_id, active=active)

    def remove_question(self, guild_id: int, question_id: str) -> Question:
        def apply(cfg: GuildConfig) -> Question:
            question = cfg.find_question(question_id)
            if question is None:
                raise QuestionNotFound([question_id])
            remaining = sorted(
                (q for q in cfg.questions if q.id != question_id), key=lambda q: q.order
            )
            self._renumber(remaining)
            cfg.questions = remaining
            return question

        return self._mutate_questions(guild_id, apply)

    def reorder_questions(self, guild_id: int, question_ids: Iterable[str]) -> list[Question]:
        """Put ``question_ids`` first, in the given order.

        Questions not mentioned keep their relative order after the listed
        ones.
        """
        wanted = list(dict.fromkeys(question_ids))

        def apply(cfg: GuildConfig) -> list[Question]:
            by_id = {q.id: q for q in cfg.questions}
            missing = [qid for qid in wanted if qid not in by_id]
            if missing:
                raise QuestionNotFound(missing)
            rest = sorted(
                (q for q in cfg.questions if q.id not in wanted), key=lambda q: q.order
            )
            ordered = [by_id[qid] for qid in wanted] + rest
            now = utc_now()
            for question in ordered:
                question.updated_at = now
            self._renumber(ordered)
            cfg.questions = ordered
            return [q.model_copy(deep=True) for q in ordered]

        return self._mutate_questions(guild_id, apply)

    def reset_questions(self, guild_id: int) -> list[Question]:
        def apply(cfg: GuildConfig) -> list[Question]:
            cfg.questions = default_questions()
            return [q.model_copy(deep=True) for q in cfg.questions]

        return self._mutate_questions(guild_id, apply)
