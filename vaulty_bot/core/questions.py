"""Default question catalog, answer validation and prompt formatting."""

from __future__ import annotations

import re

from .models import Question

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_URL_RE = re.compile(r"^https?://.+")
_PHONE_RE = re.compile(r"^\+?[\d\s\-().]{7,20}$")
_PHONE_SEPARATORS = re.compile(r"[\s\-().]")

SKIP_WORD = "skip"


def default_questions() -> list[Question]:
    """Return the built-in three question catalog.

    A fresh list is built on every call so callers may mutate it freely.
    """
    return [
        Question(
            id="tiktok_handle",
            text="What's your TikTok username? (without the @ symbol)",
            kind="text",
            validation="required",
            placeholder="e.g., khaby.lame",
            order=1,
        ),
        Question(
            id="email_address",
            text="What's your email address?",
            kind="email",
            validation="email",
            placeholder="your@email.com",
            order=2,
        ),
        Question(
            id="whatsapp_number",
            text="What's your WhatsApp number? (or type 'skip' if you don't have one)",
            kind="phone",
            validation="phone",
            placeholder="+1234567890",
            order=3,
        ),
    ]


def is_skip(answer: str) -> bool:
    answer = answer.strip()
    return answer == "" or answer.lower() == SKIP_WORD


def is_valid_email(answer: str) -> bool:
    answer = answer.strip()
    return bool(_EMAIL_RE.match(answer)) and "@" in answer and "." in answer


def is_valid_url(answer: str) -> bool:
    return bool(_URL_RE.match(answer.strip()))


def is_valid_phone(answer: str) -> bool:
    answer = answer.strip()
    if is_skip(answer):
        return True
    if not any(ch.isdigit() for ch in answer):
        return False
    if not _PHONE_RE.match(answer):
        return False
    return len(_PHONE_SEPARATORS.sub("", answer)) >= 7


def validate_answer(question: Question, answer: str) -> bool:
    """Return whether ``answer`` satisfies ``question.validation``."""
    trimmed = answer.strip()
    policy = question.validation
    if policy == "optional":
        return True
    if policy == "email":
        return is_valid_email(trimmed)
    if policy == "url":
        return is_valid_url(trimmed)
    if policy == "phone":
        return is_valid_phone(trimmed)
    return len(trimmed) > 0


def validation_error(question: Question) -> str:
    """Return the message shown when an answer fails validation."""
    policy = question.validation
    if policy == "email":
        return (
            "Please provide a valid email address (e.g., yourname@example.com). "
            "Make sure it includes an @ symbol and a domain."
        )
    if policy == "url":
        return (
            "Please provide a valid URL (e.g., https://example.com). "
            "Make sure it starts with http:// or https://."
        )
    if policy == "phone":
        return (
            "Please provide a valid phone number (e.g., +1-234-567-8900 or "
            "234-567-8900), or type 'skip' if you don't have one."
        )
    return f"Please provide an answer for: {question.text}"


def format_question(question: Question, index: int, total: int, *, test_mode: bool = False) -> str:
    """Render the prompt for the question at 0-based ``index``."""
    label = "🧪 **Test Question" if test_mode else "**Question"
    parts = [f"{label} {index + 1}/{total}:**\n{question.text}"]
    if question.placeholder:
        parts.append(f"*(Example: {question.placeholder})*")
    if question.is_optional:
        parts.append('*(Type "skip" if you don\'t have this)*')
    if question.validation == "email":
        parts.append("*(Make sure your email includes an @ symbol and a domain like .com)*")
    elif question.validation == "phone":
        parts.append("*(Include country code for international numbers, e.g., +1 for US/Canada)*")
    if test_mode:
        parts.append("*This is just a test - no roles will be changed*")
    return "\n\n".join(parts)
