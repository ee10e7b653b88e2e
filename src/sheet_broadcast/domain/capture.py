"""Capture domain models."""

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class Viewport:
    """Browser viewport size in CSS pixels."""

    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Viewport must be positive, got {self.width}x{self.height}"
            )


@dataclass(frozen=True)
class ClipRegion:
    """Rectangular sub-region of the viewport to capture."""

    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class CaptureRequest:
    """A single snapshot to produce for one recipient."""

    correlation_id: str
    url: str
    viewport: Viewport
    settle_seconds: float = 2.0
    selector: str | None = None
    clip: ClipRegion | None = None


@dataclass(frozen=True)
class CaptureResult:
    """Outcome of one capture request."""

    correlation_id: str
    success: bool
    image: bytes | None = None
    error: str | None = None

    @classmethod
    def ok(cls, correlation_id: str, image: bytes) -> "CaptureResult":
        return cls(correlation_id=correlation_id, success=True, image=image)

    @classmethod
    def failed(cls, correlation_id: str, error: str) -> "CaptureResult":
        return cls(correlation_id=correlation_id, success=False, error=error)


class CaptureState(str, Enum):
    """Lifecycle of a single capture attempt."""

    PENDING = "PENDING"
    LOADING = "LOADING"
    SETTLING = "SETTLING"
    CAPTURING = "CAPTURING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class PoolStats:
    """Read-only view of the session pool."""

    size: int
    keys: list[str] = field(default_factory=list)
