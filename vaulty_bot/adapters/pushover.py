"""Pushover notifier using :mod:`httpx`."""

from __future__ import annotations

import logging

import httpx

from .base import Notifier

log = logging.getLogger("vaulty.pushover")

DEFAULT_TITLE = "Vaulty Bot Alert"


class PushoverNotifier(Notifier):
    """Send operator alerts through the Pushover messages API.

    Delivery is best effort: transport errors and non-200 responses are
    logged and reported as ``False``.
    """

    api_url = "https://api.pushover.net/1/messages.json"

    def __init__(
        self, token: str, user: str, client: httpx.AsyncClient | None = None
    ) -> None:
        self.token = token
        self.user = user
        self.client = client or httpx.AsyncClient(timeout=10.0)

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.user)

    async def notify(
        self,
        message: str,
        *,
        title: str | None = None,
        priority: int = 0,
        sound: str = "pushover",
    ) -> bool:
        if not self.enabled:
            log.debug("Pushover disabled (missing credentials)")
            return False
        payload = {
            "token": self.token,
            "user": self.user,
            "message": message,
            "title": title or DEFAULT_TITLE,
            "priority": str(priority),
            "sound": sound,
        }
        try:
            response = await self.client.post(self.api_url, data=payload)
        except httpx.HTTPError as exc:
            log.error("Pushover request error: %s", exc)
            return False
        if response.status_code != 200:
            log.error("Pushover rejected notification (%s): %s", response.status_code, response.text)
            return False
        log.debug("Pushover notification sent: %s", title or DEFAULT_TITLE)
        return True

    async def close(self) -> None:
        """Close the underlying :class:`httpx.AsyncClient`."""
        await self.client.aclose()
