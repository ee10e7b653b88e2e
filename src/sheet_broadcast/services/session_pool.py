"""Pool of reusable browser pages keyed by spreadsheet document."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from sheet_broadcast.domain.capture import PoolStats, Viewport
from sheet_broadcast.domain.documents import base_key
from sheet_broadcast.domain.errors import SessionUnavailable
from sheet_broadcast.services.render import (
    RenderEngine,
    RenderPage,
    close_quietly,
    load_within,
)

_logger = logging.getLogger(__name__)


@dataclass
class RenderSession:
    """A live page holding one document, owned by the pool."""

    base_key: str
    page: RenderPage
    viewport: Viewport
    last_used: float
    loaded_ref: str | None


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@dataclass
class SessionPool:
    """Keeps one page per document and evicts pages left idle.

    The map lock only guards lookups and membership changes. Loading,
    navigating and capturing run under a per-document lock so different
    documents proceed concurrently while a single document is never
    navigated by two callers at once.
    """

    engine: RenderEngine
    idle_timeout: float = 300.0
    reap_interval: float = 60.0
    load_timeout: float = 30.0
    destroy_timeout: float = 5.0
    reload_on_view_switch: bool = False
    clock: Callable[[], float] = time.monotonic
    _sessions: dict[str, RenderSession] = field(default_factory=dict, init=False)
    _key_locks: dict[str, _KeyLock] = field(default_factory=dict, init=False)
    _map_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _stop_reaper: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    _reaper: asyncio.Task | None = field(default=None, init=False)
    _closed: bool = field(default=False, init=False)

    def start(self) -> None:
        """Start the idle reaper. Must be called from a running event loop."""
        if self._closed:
            raise SessionUnavailable("Session pool is closed")
        if self._reaper is not None and not self._reaper.done():
            return
        self._stop_reaper = asyncio.Event()
        self._reaper = asyncio.create_task(
            self._reap_loop(), name="session-pool-reaper"
        )
        _logger.info(
            "Session pool started (idle_timeout=%ss, reap_interval=%ss)",
            self.idle_timeout,
            self.reap_interval,
        )

    async def acquire_session(
        self, url: str, viewport: Viewport, *, force_refresh: bool = False
    ) -> RenderSession:
        """Return the pooled session for a document, creating it on a miss."""
        key = _validated_key(url, viewport)
        async with self._locked(key):
            return await self._acquire_locked(key, url, viewport, force_refresh)

    @asynccontextmanager
    async def borrow(
        self, url: str, viewport: Viewport
    ) -> AsyncIterator[RenderSession]:
        """Hold a session exclusively for the duration of one capture."""
        key = _validated_key(url, viewport)
        async with self._locked(key):
            session = await self._acquire_locked(key, url, viewport, False)
            try:
                yield session
            finally:
                async with self._map_lock:
                    session.last_used = self.clock()

    async def evict_idle(self, idle_threshold: float | None = None) -> int:
        """Destroy sessions unused for longer than the threshold."""
        threshold = self.idle_timeout if idle_threshold is None else idle_threshold
        now = self.clock()
        async with self._map_lock:
            expired = [
                session
                for key, session in self._sessions.items()
                if now - session.last_used > threshold and not self._in_use(key)
            ]
            for session in expired:
                del self._sessions[session.base_key]
        for session in expired:
            _logger.info(
                "Evicting idle session %s (idle %.0fs)",
                session.base_key,
                now - session.last_used,
            )
            await self._destroy(session)
        return len(expired)

    async def close_all(self) -> None:
        """Stop the reaper and destroy every pooled session."""
        if self._closed:
            return
        self._closed = True
        await self._stop_reaper_task()
        async with self._map_lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        await asyncio.gather(*(self._destroy(session) for session in sessions))
        _logger.info("Session pool closed (%s sessions destroyed)", len(sessions))

    def stats(self) -> PoolStats:
        """Return the current pool membership."""
        keys = sorted(self._sessions)
        return PoolStats(size=len(keys), keys=keys)

    async def _acquire_locked(
        self, key: str, url: str, viewport: Viewport, force_refresh: bool
    ) -> RenderSession:
        self._ensure_available()
        async with self._map_lock:
            session = self._sessions.get(key)

        if session is not None:
            await self._refresh(session, url, viewport, force_refresh)
            async with self._map_lock:
                session.last_used = self.clock()
            return session

        page = await self._open(url, viewport)
        session = RenderSession(
            base_key=key,
            page=page,
            viewport=viewport,
            last_used=self.clock(),
            loaded_ref=url,
        )
        async with self._map_lock:
            if self._closed:
                closed = True
            else:
                closed = False
                self._sessions[key] = session
        if closed:
            await self._destroy(session)
            raise SessionUnavailable("Session pool closed while loading")
        _logger.info("Created session for %s", key)
        return session

    async def _open(self, url: str, viewport: Viewport) -> RenderPage:
        page = await self.engine.new_page()
        try:
            await page.set_viewport(viewport)
            await self._timed(page.load(url, self.load_timeout), url)
        except Exception:
            await close_quietly(page, self.destroy_timeout, url)
            raise
        return page

    async def _refresh(
        self,
        session: RenderSession,
        url: str,
        viewport: Viewport,
        force_refresh: bool,
    ) -> None:
        page = session.page
        try:
            if viewport != session.viewport:
                await page.set_viewport(viewport)
                session.viewport = viewport
            if session.loaded_ref is None:
                await self._timed(page.load(url, self.load_timeout), url)
            elif url == session.loaded_ref:
                _logger.debug("Reloading %s", url)
                await self._timed(page.reload(self.load_timeout), url)
            else:
                _logger.debug("Switching %s to %s", session.base_key, url)
                await self._timed(page.switch_view(url, self.load_timeout), url)
                if force_refresh or self.reload_on_view_switch:
                    await self._timed(page.reload(self.load_timeout), url)
        except Exception:
            # Page state is unknown; the next acquire performs a full load.
            session.loaded_ref = None
            raise
        session.loaded_ref = url

    async def _timed(self, operation: Awaitable[None], url: str) -> None:
        await load_within(operation, self.load_timeout, url)

    async def _destroy(self, session: RenderSession) -> None:
        await close_quietly(session.page, self.destroy_timeout, session.base_key)

    async def _reap_loop(self) -> None:
        while True:
            try:
                await asyncio.wait_for(
                    self._stop_reaper.wait(), timeout=self.reap_interval
                )
                return
            except TimeoutError:
                pass
            try:
                evicted = await self.evict_idle(self.idle_timeout)
            except Exception:
                _logger.exception("Idle session scan failed")
                continue
            if evicted:
                _logger.info("Idle reaper evicted %s sessions", evicted)

    async def _stop_reaper_task(self) -> None:
        if self._reaper is None:
            return
        self._stop_reaper.set()
        await self._reaper
        self._reaper = None

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        # Entries live only while a caller holds or waits for the key.
        entry = self._key_locks.setdefault(key, _KeyLock())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if not entry.users and self._key_locks.get(key) is entry:
                del self._key_locks[key]

    def _in_use(self, key: str) -> bool:
        return key in self._key_locks

    def _ensure_available(self) -> None:
        if self._closed:
            raise SessionUnavailable("Session pool is closed")
        if not self.engine.is_running:
            raise SessionUnavailable("Rendering engine is not running")


def _validated_key(url: str, viewport: Viewport) -> str:
    key = base_key(url)
    if not key:
        raise ValueError("Document reference resolves to an empty key")
    if viewport.width <= 0 or viewport.height <= 0:
        raise ValueError("Viewport must have positive dimensions")
    return key
