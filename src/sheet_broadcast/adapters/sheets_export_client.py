"""Google Sheets public CSV export client."""

from dataclasses import dataclass
from typing import Protocol

import httpx

_EXPORT_URL = "https://docs.google.com/spreadsheets/d/{sheet_id}/export"


class SheetExportClient(Protocol):
    """Interface for downloading a spreadsheet tab as CSV."""

    async def export_csv(self, sheet_id: str, gid: str) -> str:
        """Return the CSV text of one tab."""


@dataclass
class HttpxSheetExportClient(SheetExportClient):
    """HTTPX-backed CSV export client."""

    http_client: httpx.AsyncClient
    export_url: str = _EXPORT_URL

    @classmethod
    def create(cls) -> "HttpxSheetExportClient":
        """Create an export client with a managed httpx session."""
        return cls(http_client=httpx.AsyncClient(follow_redirects=True))

    async def export_csv(self, sheet_id: str, gid: str) -> str:
        """Download a tab through the public export endpoint."""
        response = await self.http_client.get(
            self.export_url.format(sheet_id=sheet_id),
            params={"format": "csv", "gid": gid},
            timeout=15,
        )
        response.raise_for_status()
        return response.text

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
