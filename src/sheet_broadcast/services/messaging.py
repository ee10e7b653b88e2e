"""Messaging client interface and delivery helpers."""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sheet_broadcast.domain.messaging import (
    ConnectionStatus,
    MessagingGroup,
    PairingCode,
    SendResult,
)
from sheet_broadcast.services.cache import Cache

_GROUPS_CACHE_KEY = "messaging:groups"

_logger = logging.getLogger(__name__)


class MessagingClient(Protocol):
    """Interface for a remote messaging API."""

    async def connection_status(self) -> ConnectionStatus:
        """Return the provider's connection state."""

    async def is_connected(self) -> bool:
        """Return whether the account can send messages."""

    async def pairing_code(self) -> PairingCode:
        """Request a QR code to link the account."""

    async def send_image(
        self, recipient: str, image: bytes, caption: str
    ) -> SendResult:
        """Send a PNG with a caption to a recipient."""

    async def fetch_groups(self, force: bool = False) -> list[MessagingGroup]:
        """Return the groups visible to the account."""

    async def logout(self) -> None:
        """Disconnect the linked account."""

    async def restart(self) -> None:
        """Restart the provider instance."""

    async def close(self) -> None:
        """Release HTTP resources."""


def group_jid(group_id: str) -> str:
    """Normalize a group identifier to a WhatsApp group JID."""
    if "@g.us" in group_id:
        return group_id
    return f"{re.sub(r'[^0-9]', '', group_id)}@g.us"


async def broadcast_image(
    client: MessagingClient,
    groups: list[str],
    image: bytes,
    caption: str,
    delay_seconds: float = 5.0,
) -> dict[str, SendResult]:
    """Send one image to several groups, one at a time."""
    results: dict[str, SendResult] = {}
    for index, group in enumerate(groups):
        _logger.info("Sending to group %s/%s: %s", index + 1, len(groups), group)
        results[group] = await send_safely(client, group, image, caption)
        if index < len(groups) - 1 and delay_seconds > 0:
            await asyncio.sleep(delay_seconds)

    log_delivery_summary(results)
    return results


async def send_safely(
    client: MessagingClient, recipient: str, image: bytes, caption: str
) -> SendResult:
    """Send an image, converting failures into a failed SendResult."""
    try:
        return await client.send_image(recipient, image, caption)
    except Exception as exc:
        _logger.error("Failed to send to %s: %s", recipient, exc)
        return SendResult(recipient=recipient, error=str(exc) or type(exc).__name__)


def log_delivery_summary(results: dict[str, SendResult]) -> None:
    successful = sum(1 for result in results.values() if result.success)
    _logger.info(
        "Delivery finished: total=%s successful=%s failed=%s",
        len(results),
        successful,
        len(results) - successful,
    )


@dataclass
class GroupDirectory:
    """Caches the provider's group list.

    Serves the cached list while it is fresh, refetches once it expires and
    falls back to the stale list when the provider errors.
    """

    client: MessagingClient
    cache: Cache
    ttl_seconds: float = 300.0

    async def list_groups(self) -> tuple[list[MessagingGroup], bool]:
        """Return the groups and whether they came from the cache."""
        cached = self.cache.get(_GROUPS_CACHE_KEY)
        if isinstance(cached, list):
            return cached, True
        try:
            groups = await self.client.fetch_groups()
        except Exception:
            stale = self.cache.get_stale(_GROUPS_CACHE_KEY)
            if isinstance(stale, list):
                _logger.warning("Group list fetch failed; serving stale cache")
                return stale, True
            raise
        self.cache.set(_GROUPS_CACHE_KEY, groups, ttl_seconds=self.ttl_seconds)
        return groups, False

    async def refresh(self) -> list[MessagingGroup]:
        """Force the provider to resync and replace the cache."""
        _logger.info("Forcing group list refresh")
        groups = await self.client.fetch_groups(force=True)
        self.cache.set(_GROUPS_CACHE_KEY, groups, ttl_seconds=self.ttl_seconds)
        return groups

    def last_sync(self) -> datetime | None:
        return self.cache.stored_at(_GROUPS_CACHE_KEY)

    def invalidate(self) -> None:
        self.cache.clear()
