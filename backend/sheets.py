"""
Google Sheets API v4 reader (values endpoint, API key auth).
"""

import logging
import re
from typing import Any, List, Optional

import httpx

from backend.errors import SheetsUnavailableError

logger = logging.getLogger(__name__)

SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"


def extract_sheet_id(sheet: str) -> str:
    """Accept a bare spreadsheet id or a docs.google.com URL."""
    sheet = (sheet or "").strip()
    match = re.search(r"/spreadsheets/d/([a-zA-Z0-9-_]+)", sheet)
    if match:
        return match.group(1)
    if re.fullmatch(r"[a-zA-Z0-9-_]+", sheet):
        return sheet
    raise ValueError(f"Cannot extract sheet ID from: {sheet}")


def quote_range(range_name: str) -> str:
    """Worksheet titles with spaces or punctuation must be quoted in A1 notation."""
    title, _, cells = range_name.partition("!")
    if any(ch in title for ch in (" ", "/", "(", ")")) and not title.startswith("'"):
        title = f"'{title}'"
    return f"{title}!{cells}" if cells else title


class GoogleSheetsClient:
    """Read-only client for one spreadsheet tab"""

    def __init__(self, api_key: str = "", client: Optional[httpx.AsyncClient] = None):
        self.api_key = (api_key or "").strip()
        if not self.api_key:
            logger.warning("Google API key not configured. Only public sheets will be accessible.")
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0, headers={"Accept": "application/json"})
        return self._client

    async def fetch_values(self, sheet: str, range_name: str = "Sheet1") -> List[List[str]]:
        """Formatted cell values of ``range_name``, row by row"""
        try:
            sheet_id = extract_sheet_id(sheet)
        except ValueError as e:
            raise SheetsUnavailableError(f"Invalid Google Sheet ID or URL: {sheet!r}") from e
        url = f"{SHEETS_API_BASE}/{sheet_id}/values/{quote_range(range_name)}"
        params = {
            "majorDimension": "ROWS",
            "valueRenderOption": "FORMATTED_VALUE",
        }
        if self.api_key:
            params["key"] = self.api_key

        try:
            response = await self._get_client().get(url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 403:
                raise SheetsUnavailableError(
                    "Cannot access the Google Sheet. "
                    "Please ensure it's shared with 'Anyone with the link can view' permission."
                ) from e
            raise SheetsUnavailableError(
                f"Google Sheets request failed with status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise SheetsUnavailableError(f"Google Sheets request failed: {e}") from e

        values: List[List[Any]] = response.json().get("values", [])
        logger.info("Fetched %d row(s) from sheet %s range %s", len(values), sheet_id, range_name)
        return [["" if cell is None else str(cell) for cell in row] for row in values]

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
