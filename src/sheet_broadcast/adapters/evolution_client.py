"""Evolution API (WhatsApp) client adapter."""

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


@dataclass
class HttpxEvolutionClient(MessagingClient):
    """Evolution API client implemented with httpx."""

    base_url: str
    api_key: str
    instance_name: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(
        cls, base_url: str, api_key: str, instance_name: str
    ) -> "HttpxEvolutionClient":
        """Create an Evolution client with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            api_key=api_key,
            instance_name=instance_name,
            http_client=httpx.AsyncClient(),
        )

    async def connection_status(self) -> ConnectionStatus:
        payload = await self._request(
            "GET", f"/instance/connectionState/{self.instance_name}"
        )
        state = (payload.get("instance") or {}).get("state") or "unknown"
        return ConnectionStatus(connected=state == "open", state=state)

    async def is_connected(self) -> bool:
        try:
            return (await self.connection_status()).connected
        except (httpx.HTTPError, RuntimeError) as exc:
            _logger.error("Evolution connection check failed: %s", exc)
            return False

    async def pairing_code(self) -> PairingCode:
        payload = await self._request(
            "GET", f"/instance/connect/{self.instance_name}"
        )
        return PairingCode(
            qr_code=payload.get("base64") or "",
            pairing_code=payload.get("pairingCode"),
        )

    async def send_image(
        self, recipient: str, image: bytes, caption: str
    ) -> SendResult:
        """Send a PNG through /message/sendMedia."""
        jid = group_jid(recipient)
        _logger.info("Sending image via Evolution to %s", jid)
        payload = await self._request(
            "POST",
            f"/message/sendMedia/{self.instance_name}",
            json={
                "number": jid,
                "mediatype": "image",
                "mimetype": "image/png",
                "caption": caption,
                "media": base64.b64encode(image).decode("ascii"),
                "fileName": "snapshot.png",
            },
        )
        message_id = (payload.get("key") or {}).get("id")
        return SendResult(recipient=recipient, message_id=message_id)

    async def fetch_groups(self, force: bool = False) -> list[MessagingGroup]:
        """List groups without participants.

        Evolution always queries WhatsApp directly, so ``force`` is ignored.
        """
        payload = await self._request(
            "GET",
            f"/group/fetchAllGroups/{self.instance_name}",
            params={"getParticipants": "false"},
        )
        return [
            MessagingGroup(
                id=group.get("id", ""),
                name=group.get("subject", ""),
                size=group.get("size"),
                created=str(group["creation"]) if group.get("creation") else None,
            )
            for group in payload.get("data") or []
        ]

    async def logout(self) -> None:
        await self._request("DELETE", f"/instance/logout/{self.instance_name}")

    async def restart(self) -> None:
        await self._request("POST", f"/instance/restart/{self.instance_name}")

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
            headers={"apikey": self.api_key},
            timeout=30,
        )
        if response.is_error:
            _logger.error(
                "Evolution error %s on %s: %s",
                response.status_code,
                endpoint,
                response.text,
            )
            raise MessagingError(response.status_code, response.text)
        try:
            payload = response.json()
        except ValueError as exc:
            raise RuntimeError(f"Invalid JSON response: {response.text}") from exc
        return payload if isinstance(payload, dict) else {"data": payload}
