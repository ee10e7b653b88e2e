"""Spreadsheet cell lookups for message templates."""

import csv
import io
import json
import logging
import re
from dataclasses import dataclass

import httpx

from sheet_broadcast.adapters.sheets_export_client import SheetExportClient
from sheet_broadcast.domain.documents import sheet_id, tab_gid
from sheet_broadcast.domain.schedules import CellMapping
from sheet_broadcast.services.cache import Cache

_CELL_RE = re.compile(r"^([A-Za-z]+)(\d+)$")
_NOT_PUBLIC_STATUSES = {401, 403}

_logger = logging.getLogger(__name__)


@dataclass
class SheetDataService:
    """Reads mapped cells from a public spreadsheet with short caching."""

    export_client: SheetExportClient
    cache: Cache
    ttl_seconds: float = 30.0

    async def fetch_cells(
        self, url: str, mappings: list[CellMapping]
    ) -> dict[str, str]:
        """Return ``{variable: cell value}`` for each mapping.

        Failures are logged and produce an empty mapping so a broadcast can
        still go out without sheet values.
        """
        if not mappings:
            return {}
        cache_key = "sheets:" + url + ":" + json.dumps(
            [mapping.model_dump() for mapping in mappings], sort_keys=True
        )
        cached = self.cache.get(cache_key)
        if isinstance(cached, dict):
            _logger.debug("Using cached sheet data for %s", url)
            return cached

        data = await self._fetch(url, mappings)
        self.cache.set(cache_key, data, ttl_seconds=self.ttl_seconds)
        return data

    def clear(self) -> None:
        self.cache.clear()

    async def _fetch(self, url: str, mappings: list[CellMapping]) -> dict[str, str]:
        document_id = sheet_id(url)
        if not document_id:
            _logger.error("Could not extract a spreadsheet id from %s", url)
            return {}
        gid = tab_gid(url) or "0"
        try:
            text = await self.export_client.export_csv(document_id, gid)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code in _NOT_PUBLIC_STATUSES:
                _logger.error(
                    "Spreadsheet %s is not public; share it as "
                    "'Anyone with the link can view'",
                    document_id,
                )
            else:
                _logger.error(
                    "Spreadsheet export failed with status %s for %s",
                    exc.response.status_code,
                    document_id,
                )
            return {}
        except httpx.HTTPError as exc:
            _logger.error("Spreadsheet export failed for %s: %s", document_id, exc)
            return {}

        rows = parse_csv(text)
        values = {
            mapping.variable: cell_value(rows, mapping.cell) for mapping in mappings
        }
        _logger.info("Sheet data fetched: %s", sorted(values))
        return values


def parse_csv(text: str) -> list[list[str]]:
    """Parse CSV text into rows of stripped cell strings."""
    reader = csv.reader(io.StringIO(text))
    return [[cell.strip() for cell in row] for row in reader]


def parse_cell_reference(cell: str) -> tuple[int, int] | None:
    """Convert ``B2`` or ``Sheet1!B2`` into zero-based ``(row, column)``."""
    reference = cell.split("!", 1)[1] if "!" in cell else cell
    match = _CELL_RE.match(reference.strip())
    if not match:
        return None
    column = 0
    for letter in match.group(1).upper():
        column = column * 26 + (ord(letter) - ord("A") + 1)
    return int(match.group(2)) - 1, column - 1


def cell_value(rows: list[list[str]], cell: str) -> str:
    """Return the value at a cell reference, or an empty string."""
    position = parse_cell_reference(cell)
    if position is None:
        _logger.warning("Invalid cell reference: %s", cell)
        return ""
    row, column = position
    if row < 0 or row >= len(rows) or column < 0 or column >= len(rows[row]):
        return ""
    return rows[row][column]
