"""Tests for delivery helpers and the group directory."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from sheet_broadcast.services.cache import InMemoryCache
from sheet_broadcast.services.messaging import (
    GroupDirectory,
    broadcast_image,
    group_jid,
)
from tests.conftest import FakeMessagingClient


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


def test_group_jid_normalizes_ids() -> None:
    assert group_jid("123@g.us") == "123@g.us"
    assert group_jid("+55 (11) 9999") == "55119999@g.us"


def test_broadcast_image_continues_after_failure() -> None:
    client = FakeMessagingClient(failing_recipients={"b@g.us"})

    results = asyncio.run(
        broadcast_image(
            client, ["a@g.us", "b@g.us", "c@g.us"], b"img", "caption", 0
        )
    )

    assert list(results) == ["a@g.us", "b@g.us", "c@g.us"]
    assert results["a@g.us"].success
    assert not results["b@g.us"].success
    assert "500" in (results["b@g.us"].error or "")
    assert [recipient for recipient, _, _ in client.sent] == ["a@g.us", "c@g.us"]


def test_group_directory_serves_cache_until_expiry() -> None:
    client = FakeMessagingClient()
    clock = _Clock()
    directory = GroupDirectory(client, InMemoryCache(now=clock), ttl_seconds=300)

    async def scenario() -> list[bool]:
        flags = []
        for step in (0, 100, 400):
            clock.now += timedelta(seconds=step)
            _, from_cache = await directory.list_groups()
            flags.append(from_cache)
        return flags

    assert asyncio.run(scenario()) == [False, True, False]
    assert client.fetch_calls == [False, False]
    assert directory.last_sync() == clock.now


def test_group_directory_falls_back_to_stale_cache() -> None:
    client = FakeMessagingClient()
    clock = _Clock()
    directory = GroupDirectory(client, InMemoryCache(now=clock), ttl_seconds=60)

    async def scenario() -> tuple[int, bool]:
        await directory.list_groups()
        clock.now += timedelta(seconds=120)
        client.fetch_error = RuntimeError("provider down")
        groups, from_cache = await directory.list_groups()
        return len(groups), from_cache

    assert asyncio.run(scenario()) == (2, True)


def test_group_directory_raises_without_cache() -> None:
    client = FakeMessagingClient(fetch_error=RuntimeError("provider down"))
    directory = GroupDirectory(client, InMemoryCache())

    with pytest.raises(RuntimeError, match="provider down"):
        asyncio.run(directory.list_groups())


def test_group_directory_refresh_forces_sync() -> None:
    client = FakeMessagingClient()
    directory = GroupDirectory(client, InMemoryCache())

    groups = asyncio.run(directory.refresh())
    directory.invalidate()

    assert len(groups) == 2
    assert client.fetch_calls == [True]
    assert directory.last_sync() is None
