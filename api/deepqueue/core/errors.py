class DeepQueueError(Exception):
    """Base error for the research relay."""


class AuthenticationError(DeepQueueError):
    """Raised when a signature or a broker credential is rejected."""


class ValidationError(DeepQueueError):
    """Raised when an inbound payload cannot be accepted as-is."""


class UpstreamError(DeepQueueError):
    """Raised when the broker, the provider or the store fails or times out."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(DeepQueueError):
    """Raised when a required secret or url is not configured."""
