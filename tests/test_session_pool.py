"""Tests for the document session pool."""

import asyncio
import time

import pytest

from sheet_broadcast.domain.capture import CaptureRequest, CaptureResult, Viewport
from sheet_broadcast.domain.errors import (
    LoadTimeout,
    SessionUnavailable,
    TransientNetworkError,
)
from sheet_broadcast.services.capture import CaptureOrchestrator
from sheet_broadcast.services.session_pool import SessionPool
from tests.conftest import OTHER_SHEET_URL, SHEET_URL, FakeRenderEngine

VIEWPORT = Viewport(width=800, height=600)


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_acquire_reuses_page_for_same_document() -> None:
    engine = FakeRenderEngine()
    pool = SessionPool(engine=engine)

    async def scenario() -> None:
        first = await pool.acquire_session(SHEET_URL, VIEWPORT)
        second = await pool.acquire_session(SHEET_URL, VIEWPORT)
        assert first is second

    asyncio.run(scenario())

    assert len(engine.pages) == 1
    page = engine.pages[0]
    assert page.loads == [SHEET_URL]
    assert page.reloads == 1
    assert pool.stats().size == 1


def test_tab_change_switches_view_without_new_page() -> None:
    engine = FakeRenderEngine()
    pool = SessionPool(engine=engine)
    tab_url = "https://docs.google.com/spreadsheets/d/sheet-abc/edit#gid=5"

    async def scenario() -> None:
        await pool.acquire_session(SHEET_URL, VIEWPORT)
        session = await pool.acquire_session(tab_url, VIEWPORT)
        assert session.loaded_ref == tab_url

    asyncio.run(scenario())

    page = engine.pages[0]
    assert len(engine.pages) == 1
    assert page.switches == [tab_url]
    assert page.reloads == 0


def test_tab_change_reloads_when_configured() -> None:
    engine = FakeRenderEngine()
    pool = SessionPool(engine=engine, reload_on_view_switch=True)
    tab_url = f"{SHEET_URL}#gid=7"

    async def scenario() -> None:
        await pool.acquire_session(SHEET_URL, VIEWPORT)
        await pool.acquire_session(tab_url, VIEWPORT)

    asyncio.run(scenario())

    assert engine.pages[0].switches == [tab_url]
    assert engine.pages[0].reloads == 1


def test_distinct_documents_get_distinct_sessions() -> None:
    engine = FakeRenderEngine()
    pool = SessionPool(engine=engine)

    async def scenario() -> None:
        await pool.acquire_session(SHEET_URL, VIEWPORT)
        await pool.acquire_session(OTHER_SHEET_URL, VIEWPORT)

    asyncio.run(scenario())

    stats = pool.stats()
    assert stats.size == 2
    assert stats.keys == [
        "https://docs.google.com/spreadsheets/d/sheet-abc",
        "https://docs.google.com/spreadsheets/d/sheet-xyz",
    ]


def test_force_refresh_switches_then_reloads_new_tab() -> None:
    engine = FakeRenderEngine()
    pool = SessionPool(engine=engine)
    orchestrator = CaptureOrchestrator(pool=pool, engine=engine, retry_base_delay=0)
    tab_url = f"{SHEET_URL}#gid=3"

    async def scenario() -> list[CaptureResult]:
        await pool.acquire_session(SHEET_URL, VIEWPORT)
        session = await pool.acquire_session(tab_url, VIEWPORT, force_refresh=True)
        assert session.loaded_ref == tab_url
        assert engine.pages[0].switches == [tab_url]
        assert engine.pages[0].reloads == 1
        return await orchestrator.capture_all(
            [CaptureRequest("tab", tab_url, VIEWPORT, settle_seconds=0)]
        )

    results = asyncio.run(scenario())

    assert len(engine.pages) == 1
    assert engine.pages[0].url == tab_url
    assert results[0].image == f"png:{tab_url}".encode()


def test_viewport_change_resizes_existing_page() -> None:
    engine = FakeRenderEngine()
    pool = SessionPool(engine=engine)
    wide = Viewport(width=1920, height=1080)

    async def scenario() -> None:
        await pool.acquire_session(SHEET_URL, VIEWPORT)
        session = await pool.acquire_session(SHEET_URL, wide)
        assert session.viewport == wide

    asyncio.run(scenario())

    assert len(engine.pages) == 1
    assert engine.pages[0].viewport == wide


def test_evict_idle_uses_last_use_time() -> None:
    engine = FakeRenderEngine()
    clock = _Clock()
    pool = SessionPool(engine=engine, clock=clock)

    async def scenario() -> int:
        await pool.acquire_session(SHEET_URL, VIEWPORT)
        clock.now = 240.0
        await pool.acquire_session(OTHER_SHEET_URL, VIEWPORT)
        clock.now = 360.0
        return await pool.evict_idle(300.0)

    evicted = asyncio.run(scenario())

    assert evicted == 1
    assert pool.stats().keys == ["https://docs.google.com/spreadsheets/d/sheet-xyz"]
    assert engine.pages[0].closed
    assert not engine.pages[1].closed


def test_evict_idle_skips_borrowed_session() -> None:
    engine = FakeRenderEngine()
    clock = _Clock()
    pool = SessionPool(engine=engine, clock=clock)

    async def scenario() -> tuple[int, int]:
        async with pool.borrow(SHEET_URL, VIEWPORT):
            clock.now = 1000.0
            during = await pool.evict_idle(300.0)
        after = await pool.evict_idle(300.0)
        return during, after

    during, after = asyncio.run(scenario())

    assert during == 0
    # Returning the session refreshes its last use time.
    assert after == 0
    assert pool.stats().size == 1


def test_reaper_evicts_idle_sessions() -> None:
    engine = FakeRenderEngine()
    pool = SessionPool(engine=engine, idle_timeout=0.01, reap_interval=0.02)

    async def scenario() -> int:
        pool.start()
        await pool.acquire_session(SHEET_URL, VIEWPORT)
        await asyncio.sleep(0.15)
        size = pool.stats().size
        await pool.close_all()
        return size

    assert asyncio.run(scenario()) == 0
    assert engine.pages[0].closed


def test_close_all_is_idempotent_and_rejects_new_work() -> None:
    engine = FakeRenderEngine()
    pool = SessionPool(engine=engine)

    async def scenario() -> None:
        await pool.acquire_session(SHEET_URL, VIEWPORT)
        await pool.acquire_session(OTHER_SHEET_URL, VIEWPORT)
        await pool.close_all()
        await pool.close_all()
        with pytest.raises(SessionUnavailable):
            await pool.acquire_session(SHEET_URL, VIEWPORT)

    asyncio.run(scenario())

    assert pool.stats().size == 0
    assert all(page.closed for page in engine.pages)


def test_evict_idle_continues_past_failing_close() -> None:
    engine = FakeRenderEngine()
    clock = _Clock()
    pool = SessionPool(engine=engine, clock=clock)

    async def scenario() -> int:
        await pool.acquire_session(SHEET_URL, VIEWPORT)
        await pool.acquire_session(OTHER_SHEET_URL, VIEWPORT)
        engine.pages[0].close_error = RuntimeError("target crashed")
        clock.now = 1000.0
        return await pool.evict_idle(300.0)

    assert asyncio.run(scenario()) == 2
    assert pool.stats().size == 0
    assert not engine.pages[0].closed
    assert engine.pages[1].closed


def test_close_all_bounds_hanging_close() -> None:
    engine = FakeRenderEngine()
    pool = SessionPool(engine=engine, destroy_timeout=0.05)

    async def scenario() -> float:
        await pool.acquire_session(SHEET_URL, VIEWPORT)
        await pool.acquire_session(OTHER_SHEET_URL, VIEWPORT)
        engine.pages[0].close_delay = 10.0
        started = time.monotonic()
        await pool.close_all()
        return time.monotonic() - started

    elapsed = asyncio.run(scenario())

    assert elapsed < 1.0
    assert pool.stats().size == 0
    assert engine.pages[1].closed


def test_key_locks_are_released_with_their_users() -> None:
    engine = FakeRenderEngine()
    clock = _Clock()
    pool = SessionPool(engine=engine, clock=clock)
    key = "https://docs.google.com/spreadsheets/d/sheet-abc"

    async def scenario() -> None:
        async with pool.borrow(SHEET_URL, VIEWPORT):
            assert list(pool._key_locks) == [key]
        await pool.acquire_session(OTHER_SHEET_URL, VIEWPORT)
        assert pool._key_locks == {}
        clock.now = 1000.0
        assert await pool.evict_idle(300.0) == 2
        assert pool._key_locks == {}

    asyncio.run(scenario())


def test_acquire_requires_running_engine() -> None:
    pool = SessionPool(engine=FakeRenderEngine(running=False))

    with pytest.raises(SessionUnavailable, match="not running"):
        asyncio.run(pool.acquire_session(SHEET_URL, VIEWPORT))


def test_failed_open_leaves_pool_empty() -> None:
    engine = FakeRenderEngine(failing_urls={SHEET_URL})
    pool = SessionPool(engine=engine)

    with pytest.raises(TransientNetworkError):
        asyncio.run(pool.acquire_session(SHEET_URL, VIEWPORT))

    assert pool.stats().size == 0
    assert engine.pages[0].closed


def test_slow_load_raises_load_timeout() -> None:
    engine = FakeRenderEngine(load_delay=0.5)
    pool = SessionPool(engine=engine, load_timeout=0.05)

    with pytest.raises(LoadTimeout, match="did not load"):
        asyncio.run(pool.acquire_session(SHEET_URL, VIEWPORT))

    assert pool.stats().size == 0
    assert engine.pages[0].closed


def test_failed_refresh_forces_full_load_next_time() -> None:
    engine = FakeRenderEngine()
    pool = SessionPool(engine=engine)

    async def scenario() -> None:
        await pool.acquire_session(SHEET_URL, VIEWPORT)
        engine.load_failures = 1
        with pytest.raises(TransientNetworkError):
            await pool.acquire_session(SHEET_URL, VIEWPORT)
        session = await pool.acquire_session(SHEET_URL, VIEWPORT)
        assert session.loaded_ref == SHEET_URL

    asyncio.run(scenario())

    assert len(engine.pages) == 1
    assert engine.pages[0].loads == [SHEET_URL, SHEET_URL]


def test_concurrent_acquires_share_one_page() -> None:
    engine = FakeRenderEngine(load_delay=0.05)
    pool = SessionPool(engine=engine)

    async def scenario() -> None:
        first, second = await asyncio.gather(
            pool.acquire_session(SHEET_URL, VIEWPORT),
            pool.acquire_session(f"{SHEET_URL}?usp=sharing", VIEWPORT),
        )
        assert first is second

    asyncio.run(scenario())

    assert len(engine.pages) == 1


def test_empty_document_reference_is_rejected() -> None:
    pool = SessionPool(engine=FakeRenderEngine())

    with pytest.raises(ValueError, match="empty key"):
        asyncio.run(pool.acquire_session("   ", VIEWPORT))
