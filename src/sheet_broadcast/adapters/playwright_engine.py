"""Playwright-backed rendering engine."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from sheet_broadcast.domain.capture import ClipRegion, Viewport
from sheet_broadcast.domain.errors import (
    LoadTimeout,
    SelectorNotFound,
    SessionUnavailable,
    TransientNetworkError,
)

_CHROME_PATHS = (
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
)

_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-software-rasterizer",
]

_logger = logging.getLogger(__name__)


def find_chrome(configured: str | None = None) -> str | None:
    """Return a Chrome executable path, or None to use the bundled Chromium."""
    if configured:
        return configured
    for candidate in _CHROME_PATHS:
        if Path(candidate).exists():
            return candidate
    return None


@contextmanager
def _translate_errors(action: str, url: str | None = None) -> Iterator[None]:
    """Map Playwright exceptions onto the capture error taxonomy."""
    try:
        yield
    except PlaywrightTimeoutError as exc:
        raise LoadTimeout(f"{action} timed out: {url or ''}".strip()) from exc
    except PlaywrightError as exc:
        raise TransientNetworkError(f"{action} failed: {exc.message}") from exc


@dataclass
class PlaywrightPage:
    """A Playwright page implementing the RenderPage interface."""

    page: Page

    async def set_viewport(self, viewport: Viewport) -> None:
        """Resize the page viewport."""
        with _translate_errors("set_viewport"):
            await self.page.set_viewport_size(
                {"width": viewport.width, "height": viewport.height}
            )

    async def load(self, url: str, timeout_seconds: float) -> None:
        """Load a document and wait for the network to go idle."""
        with _translate_errors("load", url):
            await self.page.goto(
                url, wait_until="networkidle", timeout=timeout_seconds * 1000
            )

    async def switch_view(self, url: str, timeout_seconds: float) -> None:
        """Change tabs; a fragment-only change stays within the document."""
        with _translate_errors("switch_view", url):
            await self.page.goto(url, timeout=timeout_seconds * 1000)

    async def reload(self, timeout_seconds: float) -> None:
        """Reload the current document."""
        with _translate_errors("reload", self.page.url):
            await self.page.reload(
                wait_until="networkidle", timeout=timeout_seconds * 1000
            )

    async def screenshot(
        self, *, selector: str | None = None, clip: ClipRegion | None = None
    ) -> bytes:
        """Capture a PNG of an element, a clip region or the visible page."""
        with _translate_errors("screenshot", self.page.url):
            if selector:
                element = await self.page.query_selector(selector)
                if element is None:
                    raise SelectorNotFound(selector)
                return await element.screenshot(type="png")
            if clip is not None:
                return await self.page.screenshot(
                    type="png",
                    clip={
                        "x": clip.x,
                        "y": clip.y,
                        "width": clip.width,
                        "height": clip.height,
                    },
                )
            return await self.page.screenshot(type="png", full_page=False)

    async def close(self) -> None:
        """Close the page."""
        with _translate_errors("close"):
            await self.page.close()


@dataclass
class PlaywrightEngine:
    """Owns the Playwright driver and a single Chromium browser."""

    headless: bool = True
    chrome_path: str | None = None
    _playwright: Playwright | None = field(default=None, init=False, repr=False)
    _browser: Browser | None = field(default=None, init=False, repr=False)

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def start(self) -> None:
        """Launch Chromium if it is not already running."""
        if self.is_running:
            return
        executable = find_chrome(self.chrome_path)
        _logger.info(
            "Starting browser (headless=%s, executable=%s)",
            self.headless,
            executable or "bundled",
        )
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            executable_path=executable,
            args=_LAUNCH_ARGS,
        )
        _logger.info("Browser started")

    async def new_page(self) -> PlaywrightPage:
        """Open a new page in the running browser."""
        if self._browser is None:
            raise SessionUnavailable("Browser not started")
        with _translate_errors("new_page"):
            page = await self._browser.new_page()
        return PlaywrightPage(page=page)

    async def stop(self) -> None:
        """Close the browser and stop the driver."""
        try:
            if self._browser is not None:
                await self._browser.close()
                _logger.info("Browser closed")
        finally:
            self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
