"""Derive a display nickname from a member's TikTok answer."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

from .models import NOT_PROVIDED, Question

_ALLOWED = re.compile(r"^[A-Za-z0-9_.]+$")
_HANDLE_HINTS = ("username", "handle", "@", "account")


def find_tiktok_question(questions: Iterable[Question]) -> Question | None:
    """Return the first question whose wording asks for a TikTok handle."""
    for question in questions:
        text = question.text.lower()
        if "tiktok" in text and any(hint in text for hint in _HANDLE_HINTS):
            return question
    return None


def clean_tiktok_username(raw: str | None) -> str | None:
    """Strip ``@`` prefixes and URL remnants, or return ``None`` if unusable.

    ``"@My.Name/"`` and ``"https://tiktok.com/@my.name?lang=en"`` both reduce to
    the bare handle.
    """
    if not raw:
        return None
    cleaned = raw.strip().lstrip("@").strip()
    # take the last non-empty path segment, then drop any query string
    segments = [s for s in cleaned.split("/") if s]
    if not segments:
        return None
    cleaned = segments[-1].split("?")[0].lstrip("@")
    if not _ALLOWED.match(cleaned):
        return None
    return cleaned


def find_tiktok_username(
    questions: Iterable[Question], responses: Mapping[str, str]
) -> str | None:
    question = find_tiktok_question(questions)
    if question is None:
        return None
    answer = responses.get(question.id)
    if not answer or answer == NOT_PROVIDED:
        return None
    return clean_tiktok_username(answer)


def derive_nickname(
    questions: Iterable[Question], responses: Mapping[str, str]
) -> str | None:
    """Return ``@<handle>`` or ``None`` when no usable handle was given."""
    username = find_tiktok_username(questions, responses)
    return f"@{username}" if username else None
