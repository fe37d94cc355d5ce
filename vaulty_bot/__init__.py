"""Core package for Vaulty.

This module exposes the configuration models and the storage layer so that
consumers of the package can simply import them from ``vaulty_bot``.
"""

from .core.models import GuildConfig, Question
from .core.storage import GuildConfigStore

__all__ = ["GuildConfig", "Question", "GuildConfigStore"]
