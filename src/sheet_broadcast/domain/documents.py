"""Spreadsheet document references."""

import logging
import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SHEET_ID_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
_GID_RE = re.compile(r"[#&?]gid=(\d+)")
_SHEETS_BASE = "https://docs.google.com/spreadsheets/d"

_logger = logging.getLogger(__name__)


def sheet_id(url: str) -> str | None:
    """Return the spreadsheet id embedded in a Google Sheets URL."""
    match = _SHEET_ID_RE.search(url)
    return match.group(1) if match else None


def tab_gid(url: str) -> str | None:
    """Return the tab gid selected by a URL, if any."""
    match = _GID_RE.search(url)
    return match.group(1) if match else None


def base_key(url: str) -> str:
    """Return the document identity without its tab selector.

    Google Sheets URLs collapse to ``.../spreadsheets/d/<id>`` so that
    ``/edit``, ``/edit?usp=sharing`` and ``#gid=`` variants share a key.
    Other URLs drop the fragment and any ``gid`` query parameter.
    """
    cleaned = url.strip()
    if not cleaned:
        return ""
    document_id = sheet_id(cleaned)
    if document_id:
        return f"{_SHEETS_BASE}/{document_id}"
    parts = urlsplit(cleaned)
    query = urlencode(
        [(key, value) for key, value in parse_qsl(parts.query) if key != "gid"]
    )
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme, parts.netloc, path, query, ""))


def with_tab(url: str, tab: str | None) -> str:
    """Build the URL of a spreadsheet with a specific tab selected."""
    if not tab:
        return url
    document_id = sheet_id(url)
    if not document_id:
        return url
    gid = tab.strip()
    if not gid.isdigit():
        _logger.warning(
            "Tab %r cannot be resolved to a gid without authentication; "
            "use the numeric gid",
            tab,
        )
        return url
    return f"{_SHEETS_BASE}/{document_id}/edit#gid={gid}"
