from typing import Optional


class InventoryError(Exception):
    """Base class for every failure the application reports to a caller."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(InventoryError):
    """A required field is missing or malformed. Never retried."""


class PermissionDenied(InventoryError):
    """The authorization predicate refused the action. Never retried."""


class StateError(InventoryError):
    """The requested lifecycle transition is not valid from the current state."""


class IntegrationError(InventoryError):
    """
    The backend could not be reached or answered badly.

    kind is one of "timeout", "http", "parse" or "network".
    """

    TIMEOUT = "timeout"
    HTTP = "http"
    PARSE = "parse"
    NETWORK = "network"

    def __init__(
        self,
        message: str,
        kind: str = HTTP,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        if self.kind == self.HTTP:
            return self.status_code is not None and self.status_code >= 500
        return True

    def __repr__(self) -> str:
        return (
            f"IntegrationError(kind={self.kind!r}, "
            f"status_code={self.status_code!r}, message={self.message!r})"
        )
