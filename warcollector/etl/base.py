"""Abstract base class and error taxonomy for war data providers."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional


class ResponseClass(str, Enum):
    """Classification of a single provider response."""

    OK = "ok"
    ABSENT = "absent"  # not found / war log private
    FORBIDDEN = "forbidden"  # invalid or expired credential
    UNAVAILABLE = "unavailable"  # maintenance, rate limit, timeout, transport error
    UNEXPECTED = "unexpected"


def classify_status(status_code: int) -> ResponseClass:
    """Map an HTTP status code to a response class."""
    if status_code == 200:
        return ResponseClass.OK
    if status_code == 404:
        return ResponseClass.ABSENT
    if status_code == 403:
        return ResponseClass.FORBIDDEN
    if status_code in (429, 503):
        return ResponseClass.UNAVAILABLE
    return ResponseClass.UNEXPECTED


class ProviderError(RuntimeError):
    """Base class for provider failures."""


class ProviderForbiddenError(ProviderError):
    """Credential rejected. Terminal: never retried."""


class ProviderUnavailableError(ProviderError):
    """Provider kept answering 'try later' until attempts ran out."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class ProviderUnexpectedError(ProviderError):
    """Unexpected status code. Terminal; carries status and body for diagnostics."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"Unexpected status {status_code}: {body[:500]}")
        self.status_code = status_code
        self.body = body


class TransformError(ValueError):
    """Raised when a provider payload cannot be mapped to a canonical record."""


class WarDataProvider(ABC):
    """Abstract base class for clan war data providers.

    Every fetch returns the raw payload, or None when the provider reports
    the resource as absent (not found / private). Errors are raised as
    ProviderError subclasses.
    """

    @abstractmethod
    async def fetch_current_match(self, clan_tag: str) -> Optional[dict]:
        """Fetch the clan's current regular war."""
        pass

    @abstractmethod
    async def fetch_current_league_group(self, clan_tag: str) -> Optional[dict]:
        """Fetch the clan's current CWL league group."""
        pass

    @abstractmethod
    async def fetch_league_match(self, war_tag: str) -> Optional[dict]:
        """Fetch a single CWL war by its war tag."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        pass
