"""Rendering engine interfaces."""

import asyncio
import logging
from collections.abc import Awaitable
from typing import Protocol

from sheet_broadcast.domain.capture import ClipRegion, Viewport
from sheet_broadcast.domain.errors import LoadTimeout

_logger = logging.getLogger(__name__)


class RenderPage(Protocol):
    """A single live browser page."""

    async def set_viewport(self, viewport: Viewport) -> None:
        """Resize the page viewport."""

    async def load(self, url: str, timeout_seconds: float) -> None:
        """Perform a full load of a document."""

    async def switch_view(self, url: str, timeout_seconds: float) -> None:
        """Navigate the loaded document to another tab without a fresh load."""

    async def reload(self, timeout_seconds: float) -> None:
        """Re-fetch the currently loaded document."""

    async def screenshot(
        self, *, selector: str | None = None, clip: ClipRegion | None = None
    ) -> bytes:
        """Return a PNG of the viewport, a clip region or a single element."""

    async def close(self) -> None:
        """Release the page."""


class RenderEngine(Protocol):
    """Factory for browser pages."""

    @property
    def is_running(self) -> bool:
        """Whether the engine can open pages."""

    async def start(self) -> None:
        """Launch the browser."""

    async def new_page(self) -> RenderPage:
        """Open a fresh page."""

    async def stop(self) -> None:
        """Close the browser."""


async def load_within(operation: Awaitable[None], timeout: float, url: str) -> None:
    """Await a load or navigation, raising LoadTimeout past the bound."""
    try:
        await asyncio.wait_for(operation, timeout=timeout)
    except TimeoutError as exc:
        raise LoadTimeout(f"Document did not load within {timeout}s: {url}") from exc


async def close_quietly(page: RenderPage, timeout: float, label: str) -> None:
    """Close a page, logging instead of raising on failure or timeout."""
    try:
        await asyncio.wait_for(page.close(), timeout=timeout)
    except TimeoutError:
        _logger.warning("Timed out closing page for %s", label)
    except Exception:
        _logger.exception("Failed to close page for %s", label)
