from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from errors import IntegrationError

T = TypeVar("T")


@dataclass(frozen=True)
class Confirmed(Generic[T]):
    """The backend stored the entity; this is its answer."""

    entity: T
    confirmed = True


@dataclass(frozen=True)
class PendingSync(Generic[T]):
    """
    The backend could not be reached, so the entity was stamped locally.

    It is not durable until a later retry turns it into Confirmed.
    """

    entity: T
    error: IntegrationError
    confirmed = False

    @property
    def warning(self) -> str:
        return f"Saved locally, not yet confirmed by the server: {self.error.message}"


CreateResult = Union[Confirmed[T], PendingSync[T]]
