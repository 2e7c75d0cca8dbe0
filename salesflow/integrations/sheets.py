from __future__ import annotations

from typing import List
from urllib.parse import quote

from salesflow.integrations.http import ApiClient


class SheetsReader:
    """Read-only access to Google Sheets ranges using an API key."""

    def __init__(self, api_key: str, base_url: str = "https://sheets.googleapis.com/v4") -> None:
        self.api_key = api_key
        self.client = ApiClient("spreadsheet", base_url)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def read_range(self, sheet_id: str, cell_range: str) -> List[List[str]]:
        data = self.client.get(
            f"/spreadsheets/{quote(sheet_id, safe='')}/values/{quote(cell_range, safe='')}",
            params={"key": self.api_key},
        )
        return data.get("values") or []
