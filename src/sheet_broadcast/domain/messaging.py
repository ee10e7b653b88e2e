"""Messaging domain models."""

from dataclasses import dataclass


@dataclass(frozen=True)
class SendResult:
    """Outcome of sending one image to one recipient."""

    recipient: str
    message_id: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ConnectionStatus:
    """Connection state reported by a messaging provider."""

    connected: bool
    state: str
    logged_in: bool | None = None


@dataclass(frozen=True)
class MessagingGroup:
    """A chat group visible to the connected account."""

    id: str
    name: str
    size: int | None = None
    created: str | None = None


@dataclass(frozen=True)
class PairingCode:
    """QR code (data URI) and optional pairing code for login."""

    qr_code: str
    pairing_code: str | None = None
