"""Google Sheets implementation of :class:`~vaulty_bot.adapters.base.RowWriter`.

gspread is synchronous, so every call is pushed onto a worker thread with
:func:`asyncio.to_thread`. Each row goes to the guild's own tab and is mirrored
to the shared ``Master Log`` tab. Only the guild tab decides whether a write
failed; a mirror that cannot be written is logged and skipped.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

import gspread
from gspread.exceptions import WorksheetNotFound

from ..core.errors import PersistenceWriteFailed
from .base import RowWriter

log = logging.getLogger("vaulty.sheets")

MASTER_TAB = "Master Log"


def load_credentials(raw: str) -> Mapping[str, Any]:
    """Parse service-account JSON taken from the environment."""
    try:
        creds = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RuntimeError("GOOGLE_CREDENTIALS_JSON must be valid JSON") from exc
    if not isinstance(creds, Mapping):
        raise RuntimeError("GOOGLE_CREDENTIALS_JSON must represent an object")
    return creds


class SheetsRowWriter(RowWriter):
    """Append onboarding rows to a spreadsheet.

    Parameters
    ----------
    spreadsheet_id:
        Key of the master spreadsheet.
    credentials:
        Service-account info, used to build a client on first use.
    client:
        Pre-built :class:`gspread.Client`; tests pass a fake here.
    attempts:
        Tries per tab before giving up.
    base_delay:
        Seconds slept after the first failed try, doubled after each one.
    """

    def __init__(
        self,
        spreadsheet_id: str,
        credentials: Mapping[str, Any] | None = None,
        *,
        client: Any = None,
        attempts: int = 3,
        base_delay: float = 0.3,
        master_tab: str | None = MASTER_TAB,
    ) -> None:
        self.spreadsheet_id = spreadsheet_id
        self.credentials = credentials
        self.attempts = attempts
        self.base_delay = base_delay
        self.master_tab = master_tab
        self._client = client
        self._spreadsheet: Any = None
        self._ready: set[tuple[str, tuple[str, ...]]] = set()

    # ------------------------------------------------------------------
    def _open(self) -> Any:
        if self._spreadsheet is None:
            if self._client is None:
                if self.credentials is None:
                    raise RuntimeError("Google service-account credentials are not configured")
                log.debug("Authorising gspread client with service-account credentials")
                self._client = gspread.service_account_from_dict(dict(self.credentials))
            self._spreadsheet = self._client.open_by_key(self.spreadsheet_id)
        return self._spreadsheet

    def _worksheet(self, tab: str, columns: int) -> Any:
        spreadsheet = self._open()
        try:
            return spreadsheet.worksheet(tab)
        except WorksheetNotFound:
            log.info("Creating worksheet %r", tab)
            return spreadsheet.add_worksheet(title=tab, rows=1000, cols=max(columns, 1))

    def _ensure_header(self, worksheet: Any, tab: str, headers: list[str], *, overwrite: bool) -> None:
        key = (tab, tuple(headers))
        if key in self._ready:
            return
        current = worksheet.row_values(1)
        if not current or (overwrite and current != headers):
            log.info("Writing %d header columns to %r", len(headers), tab)
            worksheet.update(values=[headers], range_name="A1")
        self._ready.add(key)

    def _append_once(self, tab: str, headers: list[str], row: list[str], *, overwrite: bool) -> None:
        worksheet = self._worksheet(tab, len(headers))
        self._ensure_header(worksheet, tab, headers, overwrite=overwrite)
        worksheet.append_row(row, value_input_option="RAW")

    async def _append_with_attempts(
        self, tab: str, headers: list[str], row: list[str], *, overwrite: bool
    ) -> None:
        delay = self.base_delay
        for attempt in range(1, self.attempts + 1):
            try:
                await asyncio.to_thread(self._append_once, tab, headers, row, overwrite=overwrite)
                log.info("Appended onboarding row to %r", tab)
                return
            except Exception as exc:
                log.warning("Sheets append to %r failed (attempt %s/%s): %s", tab, attempt, self.attempts, exc)
                # a failed open may have left a half-built handle behind
                self._spreadsheet = None
                if attempt == self.attempts:
                    raise PersistenceWriteFailed(tab, str(exc)) from exc
                await asyncio.sleep(delay)
                delay *= 2

    async def append_row(self, tab: str, headers: Sequence[str], row: Sequence[str]) -> None:
        headers = [str(h) for h in headers]
        row = [str(v) for v in row]
        await self._append_with_attempts(tab, headers, row, overwrite=True)
        if not self.master_tab or self.master_tab == tab:
            return
        # Guilds ask different questions, so the master tab keeps whatever
        # header it was first given.
        try:
            await self._append_with_attempts(self.master_tab, headers, row, overwrite=False)
        except PersistenceWriteFailed:
            # the guild tab already holds the row
            log.error("Row saved to %r but not mirrored to %r", tab, self.master_tab)


class DisabledRowWriter(RowWriter):
    """Stand-in used when no spreadsheet is configured; every write fails."""

    async def append_row(self, tab: str, headers: Sequence[str], row: Sequence[str]) -> None:
        log.warning("MASTER_SPREADSHEET_ID is not set; dropping row for %r", tab)
        raise PersistenceWriteFailed(tab, "MASTER_SPREADSHEET_ID is not set")
