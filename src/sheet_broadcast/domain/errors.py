"""Error taxonomy for capture and configuration failures."""


class CaptureError(RuntimeError):
    """Base class for failures while producing a snapshot."""

    retryable: bool = False


class LoadTimeout(CaptureError):
    """The document did not finish loading within the bound."""

    retryable = True


class SelectorNotFound(CaptureError):
    """The requested element is absent from the loaded document."""

    def __init__(self, selector: str) -> None:
        super().__init__(f"Element not found: {selector}")
        self.selector = selector


class SessionUnavailable(CaptureError):
    """The pool is closed or the rendering engine is not running."""


class TransientNetworkError(CaptureError):
    """Fetching or navigating the document failed."""

    retryable = True


class ConfigError(ValueError):
    """Raised when the schedule file cannot be used."""


class MessagingError(RuntimeError):
    """Raised when a messaging provider rejects a request."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Messaging API error: {status_code} - {body}")
        self.status_code = status_code
        self.body = body


class MessagingUnavailable(RuntimeError):
    """Raised when the messaging account is not connected."""


class ScheduleNotFound(LookupError):
    """Raised when a schedule id does not match any configured schedule."""

    def __init__(self, schedule_id: str) -> None:
        super().__init__(f"Schedule not found: {schedule_id}")
        self.schedule_id = schedule_id
