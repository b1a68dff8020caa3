from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from ..models import TrackingAnswer

T = TypeVar("T")

DEFAULT_TIMEOUT = 20.0
USER_AGENT = "moyaposylka/0.1 (+https://moyaposylka.ru)"


class TrackingError(RuntimeError):
    """Base class for every failure of a tracking resolution.

    ``str(exc)`` is a human-readable message suitable for direct display.
    """


class InvalidInput(TrackingError):
    """Raised when a tracking code is malformed; no request is sent."""


class LookupFailure(TrackingError):
    """Raised when carrier lookup fails or yields no carriers."""

    def __init__(
        self, message: str, *, status: Optional[int] = None, url: Optional[str] = None
    ) -> None:
        super().__init__(message)
        self.status = status
        self.url = url


class ResolutionFailure(TrackingError):
    """Base class for failures of the fetch/register/refetch flow."""


class UpstreamRejected(ResolutionFailure):
    """Raised when the aggregator rejects a tracking fetch (other than 'not found')."""


class RegistrationFailed(ResolutionFailure):
    """Raised when registering a tracking code with the aggregator fails."""


class PostRegistrationFetchFailed(ResolutionFailure):
    """Raised when the fetch following a successful registration still fails."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"Tracking {code} could not be fetched after registration: {message}")
        self.code = code
        self.reason = message


class DecodingFailure(TrackingError):
    """Raised when a response body matches none of the expected shapes."""


class MissingCredentialsError(TrackingError):
    """Raised when required provider credentials are not configured."""


def default_headers(
    *, user_agent: str = USER_AGENT, accept: str = "application/json"
) -> Dict[str, str]:
    return {"User-Agent": user_agent, "Accept": accept}


def build_client(timeout: float = DEFAULT_TIMEOUT) -> httpx.Client:
    """Create an httpx.Client with the default headers and timeout."""
    return httpx.Client(timeout=timeout, headers=default_headers())


def build_async_client(timeout: float = DEFAULT_TIMEOUT) -> httpx.AsyncClient:
    """Create an httpx.AsyncClient with the default headers and timeout."""
    return httpx.AsyncClient(timeout=timeout, headers=default_headers())


def ensure_credential(env_var: str, value: Optional[str] = None) -> str:
    """Return ``value`` or the credential from the environment, or raise a helpful error."""
    val = value or os.getenv(env_var)
    if not val:
        raise MissingCredentialsError(
            f"{env_var} is not set. Pass an API key or add it to your environment or .env file."
        )
    return val


def decode_body(adapter: TypeAdapter[T], response: httpx.Response) -> T:
    """Validate a JSON response body against ``adapter``.

    Used with a ``Union`` adapter this is structural union decoding: pydantic
    tries each shape and keeps the one the body fits, no discriminant needed.
    """
    try:
        return adapter.validate_json(response.content)
    except ValidationError as exc:
        snippet = response.text[:200] if response.content else "<empty body>"
        raise DecodingFailure(
            f"Unexpected response from {response.request.url} "
            f"(HTTP {response.status_code}): {snippet}"
        ) from exc


class ProviderBase(ABC):
    """
    Minimal base class for tracking providers.

    Subclasses implement track/track_async and can use helpers to standardize
    headers, credentials and HTTP client construction.
    """

    # Machine-readable provider key. Override in subclass.
    provider: str = "unknown"

    timeout: float = DEFAULT_TIMEOUT
    user_agent: str = USER_AGENT

    # Optional public tracking website base. Subclasses may override and
    # implement build_tracking_url accordingly.
    website_base: Optional[str] = None

    # --- Core contract ---
    @abstractmethod
    def track(self, tracking_number: str, **kwargs: Any) -> TrackingAnswer:
        """Resolve tracking details (synchronous)."""
        raise NotImplementedError

    @abstractmethod
    async def track_async(
        self,
        tracking_number: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs: Any,
    ) -> TrackingAnswer:
        """Resolve tracking details (asynchronous)."""
        raise NotImplementedError

    # --- Human-facing tracking link ---
    def build_tracking_url(self, tracking_number: str, **kwargs: Any) -> Optional[str]:
        """Return a human-facing tracking URL, or None if not supported."""
        return None

    # --- Helpers ---
    def build_headers(
        self,
        *,
        accept: str = "application/json",
        extra: Optional[Dict[str, str]] = None,
    ) -> Dict[str, str]:
        """Construct default headers with optional extra fields."""
        headers = default_headers(user_agent=self.user_agent, accept=accept)
        if extra:
            headers.update(extra)
        return headers

    def new_client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, headers=self.build_headers())

    def new_async_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, headers=self.build_headers())
