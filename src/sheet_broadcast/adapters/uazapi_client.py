"""UAZAPI (WhatsApp) client adapter."""

import base64
import logging
from dataclasses import dataclass

import httpx

from sheet_broadcast.domain.errors import MessagingError
from sheet_broadcast.domain.messaging import (
    ConnectionStatus,
    MessagingGroup,
    PairingCode,
    SendResult,
)
from sheet_broadcast.services.messaging import MessagingClient, group_jid

_logger = logging.getLogger(__name__)

# The connect endpoint answers 409 with a usable QR code payload.
_USABLE_ERROR_STATUSES = {409}


@dataclass
class HttpxUazapiClient(MessagingClient):
    """UAZAPI client implemented with httpx."""

    base_url: str
    token: str
    instance_id: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(
        cls, base_url: str, token: str, instance_id: str
    ) -> "HttpxUazapiClient":
        """Create a UAZAPI client with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            token=token,
            instance_id=instance_id,
            http_client=httpx.AsyncClient(),
        )

    async def connection_status(self) -> ConnectionStatus:
        """Read the instance status."""
        payload = await self._request(
            "GET", "/instance/status", params={"instance": self.instance_id}
        )
        instance = payload.get("instance") or {}
        status = payload.get("status") or {}
        connected = status.get("connected") is True or (
            instance.get("status") == "connected"
        )
        return ConnectionStatus(
            connected=connected,
            state=instance.get("status")
            or ("connected" if connected else "disconnected"),
            logged_in=status.get("loggedIn"),
        )

    async def is_connected(self) -> bool:
        """Return False instead of raising when the status check fails."""
        try:
            return (await self.connection_status()).connected
        except (httpx.HTTPError, RuntimeError) as exc:
            _logger.error("UAZAPI connection check failed: %s", exc)
            return False

    async def pairing_code(self) -> PairingCode:
        """Request a QR code via /instance/connect."""
        payload = await self._request(
            "POST", "/instance/connect", json={"instance": self.instance_id}
        )
        instance = payload.get("instance") or {}
        return PairingCode(
            qr_code=payload.get("qrcode") or instance.get("qrcode") or "",
            pairing_code=payload.get("paircode") or instance.get("paircode"),
        )

    async def send_image(
        self, recipient: str, image: bytes, caption: str
    ) -> SendResult:
        """Send a PNG through /send/media."""
        jid = group_jid(recipient)
        encoded = base64.b64encode(image).decode("ascii")
        _logger.info(
            "Sending image via UAZAPI to %s (caption=%s chars, image=%s bytes)",
            jid,
            len(caption),
            len(image),
        )
        payload = await self._request(
            "POST",
            "/send/media",
            json={
                "number": jid,
                "type": "image",
                "file": f"data:image/png;base64,{encoded}",
                "text": caption,
            },
        )
        message_id = payload.get("messageId") or payload.get("id")
        return SendResult(
            recipient=recipient, message_id=str(message_id) if message_id else None
        )

    async def fetch_groups(self, force: bool = False) -> list[MessagingGroup]:
        """List groups; ``force`` asks WhatsApp for a fresh list."""
        params = {"instance": self.instance_id}
        if force:
            params["force"] = "true"
        payload = await self._request("GET", "/group/list", params=params)
        groups = [
            MessagingGroup(
                id=group.get("JID", ""),
                name=group.get("Name", ""),
                size=group.get("ParticipantCount"),
                created=group.get("GroupCreated"),
            )
            for group in payload.get("groups") or []
        ]
        _logger.info("Fetched %s groups from UAZAPI (force=%s)", len(groups), force)
        return groups

    async def logout(self) -> None:
        """Log the instance out."""
        await self._request(
            "POST", "/instance/logout", json={"instance": self.instance_id}
        )

    async def restart(self) -> None:
        """Restart the instance."""
        await self._request(
            "POST", "/instance/restart", json={"instance": self.instance_id}
        )

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        json: dict[str, object] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict:
        response = await self.http_client.request(
            method,
            f"{self.base_url}{endpoint}",
            json=json,
            params=params,
            headers={"token": self.token},
            timeout=30,
        )
        try:
            payload = response.json()
        except ValueError as exc:
            if response.is_error:
                raise MessagingError(response.status_code, response.text) from exc
            raise RuntimeError(f"Invalid JSON response: {response.text}") from exc
        if response.is_error and response.status_code not in _USABLE_ERROR_STATUSES:
            _logger.error(
                "UAZAPI error %s on %s: %s",
                response.status_code,
                endpoint,
                response.text,
            )
            raise MessagingError(response.status_code, response.text)
        return payload if isinstance(payload, dict) else {"data": payload}
