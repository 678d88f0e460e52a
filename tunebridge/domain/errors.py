class TunebridgeError(Exception):
    """Base class for resolution engine errors."""


class ExtractionError(TunebridgeError):
    """A link pattern could not be compiled. Fatal configuration error."""


class TransportError(TunebridgeError):
    """Network or HTTP failure talking to a catalog. Retrying may succeed."""


class RateLimited(TransportError):
    """Operation was rate limited by provider. Includes suggested wait time in milliseconds."""

    def __init__(self, retry_after_ms: int, message: str = "Rate limited") -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class NotFoundError(TunebridgeError):
    """Catalog returned no data for the requested id."""
