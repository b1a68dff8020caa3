"""Moyaposylka (moyaposylka.ru) tracking aggregator.

The aggregator tracks parcels of many carriers. A tracking number is resolved
in two steps: the carrier is discovered first, then the tracking history is
fetched for (carrier, number). Numbers the aggregator has never seen must be
registered for tracking before any history is available.

API Documentation: https://moyaposylka.ru/api
"""

import asyncio
import os
import time
from typing import Annotated, Any, List, Optional, Union
from urllib.parse import quote

import httpx
from loguru import logger
from pydantic import Field, TypeAdapter

from ..models import Carrier, RegistrationAck, TrackingAnswer, UpstreamError
from ..utils import send_request, async_send_request
from .base import (
    DEFAULT_TIMEOUT,
    InvalidInput,
    LookupFailure,
    PostRegistrationFetchFailed,
    ProviderBase,
    RegistrationFailed,
    TrackingError,
    UpstreamRejected,
    build_async_client,
    build_client,
    decode_body,
    ensure_credential,
)

BASE_URL = "https://moyaposylka.ru/api/v1"
WEBSITE_BASE = "https://moyaposylka.ru/tracker"

API_KEY_ENV = "MOYAPOSYLKA_API_KEY"
BASE_URL_ENV = "MOYAPOSYLKA_BASE_URL"

# Shorter numbers are never sent upstream
MIN_TRACKING_CODE_LENGTH = 7

# Time the aggregator needs to ingest a freshly registered number
SETTLE_DELAY_SECONDS = 5.0

# Status the aggregator reports for numbers it does not track yet
NOT_FOUND = 404
REGISTRATION_OK = "success"

_CARRIERS = TypeAdapter(List[Carrier])
# Error shape first: a body matching both shapes is an error
_TRACKING = TypeAdapter(
    Annotated[Union[UpstreamError, TrackingAnswer], Field(union_mode="left_to_right")]
)
_REGISTRATION = TypeAdapter(
    Annotated[Union[UpstreamError, RegistrationAck], Field(union_mode="left_to_right")]
)


def validate_tracking_code(tracking_number: str) -> str:
    """Strip surrounding whitespace and reject numbers that are too short."""
    code = (tracking_number or "").strip()
    if len(code) < MIN_TRACKING_CODE_LENGTH:
        raise InvalidInput(f"Invalid tracking number: {code!r}")
    return code


def _base_url(base_url: Optional[str]) -> str:
    return (base_url or os.getenv(BASE_URL_ENV) or BASE_URL).rstrip("/")


def _carriers_url(base: str, code: str) -> str:
    return f"{base}/carriers/{quote(code, safe='')}"


def _tracker_url(base: str, carrier: str, code: str) -> str:
    return f"{base}/trackers/{quote(carrier, safe='')}/{quote(code, safe='')}"


def _registration_headers(api_key: str) -> dict:
    return {"X-Api-Key": api_key, "Content-Type": "application/json"}


def build_tracking_url(
    tracking_number: str, *, website_base: str = WEBSITE_BASE
) -> Optional[str]:
    """Return the human-facing moyaposylka.ru page for this tracking number."""
    return f"{website_base.rstrip('/')}/{quote(tracking_number.strip(), safe='')}"


# --- Response interpretation (shared by sync and async flows) ---


def _carriers_from_response(code: str, response: httpx.Response) -> List[Carrier]:
    url = str(response.request.url)
    if not response.is_success:
        raise LookupFailure(
            f"Failed to look up carriers for {code}: HTTP {response.status_code} {url}",
            status=response.status_code,
            url=url,
        )
    carriers = decode_body(_CARRIERS, response)
    if not carriers:
        raise LookupFailure(
            f"No carrier data for tracking number {code}",
            status=response.status_code,
            url=url,
        )
    return carriers


def _answer_or_not_found(
    code: str, outcome: Union[TrackingAnswer, UpstreamError]
) -> Optional[TrackingAnswer]:
    """Interpret the first fetch. None means the number must be registered."""
    if isinstance(outcome, TrackingAnswer):
        return outcome
    if outcome.status == NOT_FOUND:
        return None
    raise UpstreamRejected(f"Failed to fetch tracking for {code}: {outcome.error}")


def _check_registration(code: str, response: httpx.Response) -> None:
    if not response.is_success:
        raise RegistrationFailed(
            f"Failed to register {code} for tracking: HTTP {response.status_code}"
        )
    ack = decode_body(_REGISTRATION, response)
    if isinstance(ack, UpstreamError):
        raise RegistrationFailed(f"Failed to register {code} for tracking: {ack.error}")
    if ack.result != REGISTRATION_OK:
        raise RegistrationFailed(f"Failed to register {code} for tracking: {ack.result}")


def _answer_after_registration(
    code: str, outcome: Union[TrackingAnswer, UpstreamError]
) -> TrackingAnswer:
    if isinstance(outcome, UpstreamError):
        raise PostRegistrationFetchFailed(code, outcome.error)
    return outcome


def _pick_carrier(code: str, carriers: List[Carrier]) -> str:
    if len(carriers) > 1:
        logger.debug(
            "Several carriers match {}: {}; using the first",
            code,
            ", ".join(c.code for c in carriers),
        )
    return carriers[0].code


# --- Blocking flow ---


def resolve_carriers(
    tracking_number: str,
    *,
    client: Optional[httpx.Client] = None,
    base_url: Optional[str] = None,
) -> List[Carrier]:
    """Look up the carriers the aggregator associates with a tracking number.

    API URL Format: {base}/carriers/{code} (GET)

    Response format:
    - Success: JSON array of {"code": "<carrier id>"} records
    - Empty array: the number is unknown to every carrier

    Raises:
        InvalidInput: number shorter than MIN_TRACKING_CODE_LENGTH
        LookupFailure: non-2xx status, transport error or no carriers
        DecodingFailure: body is not a list of carrier records
    """
    code = validate_tracking_code(tracking_number)
    if client is None:
        with build_client() as own:
            return resolve_carriers(code, client=own, base_url=base_url)

    url = _carriers_url(_base_url(base_url), code)
    try:
        response = send_request(client, "GET", url)
    except httpx.HTTPError as exc:
        raise LookupFailure(f"Failed to look up carriers for {code}: {exc}", url=url) from exc
    return _carriers_from_response(code, response)


def _fetch(client: httpx.Client, url: str) -> Union[TrackingAnswer, UpstreamError]:
    return decode_body(_TRACKING, send_request(client, "GET", url))


def resolve_tracking(
    tracking_number: str,
    carrier: str,
    *,
    api_key: Optional[str] = None,
    client: Optional[httpx.Client] = None,
    base_url: Optional[str] = None,
    settle_delay: float = SETTLE_DELAY_SECONDS,
) -> TrackingAnswer:
    """Fetch tracking history, registering the number first if needed.

    API URL Format: {base}/trackers/{carrier}/{code}
    - GET: tracking history, or {"status", "error"} when unavailable
    - POST: register the number for tracking; needs X-Api-Key and
      Content-Type: application/json headers; answers {"result"} or
      {"status", "error"}

    Flow:
    1. GET history; a success body is returned as-is
    2. Error status 404: POST registration
    3. After a "success" registration, sleep settle_delay seconds and GET
       once more; whatever that returns is final

    Args:
        tracking_number: The tracking number
        carrier: Carrier id as returned by resolve_carriers
        api_key: Aggregator API key (defaults to $MOYAPOSYLKA_API_KEY); only
            needed when the number must be registered
        client: Optional httpx.Client to reuse
        base_url: Aggregator base URL override
        settle_delay: Seconds to wait between registration and refetch

    Raises:
        UpstreamRejected: first fetch failed with a status other than 404
        RegistrationFailed: registration not acknowledged with "success"
        PostRegistrationFetchFailed: refetch after registration failed
        DecodingFailure: a body matched no expected shape
        MissingCredentialsError: registration needed but no API key
    """
    code = validate_tracking_code(tracking_number)
    if client is None:
        with build_client() as own:
            return resolve_tracking(
                code,
                carrier,
                api_key=api_key,
                client=own,
                base_url=base_url,
                settle_delay=settle_delay,
            )

    url = _tracker_url(_base_url(base_url), carrier, code)

    # Fetch
    try:
        outcome = _fetch(client, url)
    except httpx.HTTPError as exc:
        raise UpstreamRejected(f"Failed to fetch tracking for {code}: {exc}") from exc
    answer = _answer_or_not_found(code, outcome)
    if answer is not None:
        return answer

    # Register
    key = ensure_credential(API_KEY_ENV, api_key)
    logger.info("Registering tracking number {} ({}) for tracking", code, carrier)
    try:
        response = send_request(client, "POST", url, headers=_registration_headers(key))
    except httpx.HTTPError as exc:
        raise RegistrationFailed(f"Failed to register {code} for tracking: {exc}") from exc
    _check_registration(code, response)

    # Refetch, exactly once
    logger.info("Waiting {}s for the aggregator to pick up {}", settle_delay, code)
    time.sleep(settle_delay)
    try:
        outcome = _fetch(client, url)
    except httpx.HTTPError as exc:
        raise PostRegistrationFetchFailed(code, str(exc)) from exc
    return _answer_after_registration(code, outcome)


def track(
    tracking_number: str,
    *,
    api_key: Optional[str] = None,
    client: Optional[httpx.Client] = None,
    base_url: Optional[str] = None,
    settle_delay: float = SETTLE_DELAY_SECONDS,
) -> TrackingAnswer:
    """Resolve a tracking number end to end: carrier lookup, then tracking.

    When the aggregator knows several carriers for the number, the first one
    returned is used.
    """
    code = validate_tracking_code(tracking_number)
    if client is None:
        with build_client() as own:
            return track(
                code,
                api_key=api_key,
                client=own,
                base_url=base_url,
                settle_delay=settle_delay,
            )

    carriers = resolve_carriers(code, client=client, base_url=base_url)
    return resolve_tracking(
        code,
        _pick_carrier(code, carriers),
        api_key=api_key,
        client=client,
        base_url=base_url,
        settle_delay=settle_delay,
    )


def track_or_reason(
    tracking_number: str, api_key: Optional[str] = None, **kwargs: Any
) -> Union[TrackingAnswer, str]:
    """Like track(), but return the failure message instead of raising."""
    try:
        return track(tracking_number, api_key=api_key, **kwargs)
    except TrackingError as exc:
        return str(exc)


# --- Cooperative (asyncio) flow ---


async def resolve_carriers_async(
    tracking_number: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    base_url: Optional[str] = None,
) -> List[Carrier]:
    """Async version of resolve_carriers."""
    code = validate_tracking_code(tracking_number)
    if client is None:
        async with build_async_client() as own:
            return await resolve_carriers_async(code, client=own, base_url=base_url)

    url = _carriers_url(_base_url(base_url), code)
    try:
        response = await async_send_request(client, "GET", url)
    except httpx.HTTPError as exc:
        raise LookupFailure(f"Failed to look up carriers for {code}: {exc}", url=url) from exc
    return _carriers_from_response(code, response)


async def _fetch_async(
    client: httpx.AsyncClient, url: str
) -> Union[TrackingAnswer, UpstreamError]:
    return decode_body(_TRACKING, await async_send_request(client, "GET", url))


async def resolve_tracking_async(
    tracking_number: str,
    carrier: str,
    *,
    api_key: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
    base_url: Optional[str] = None,
    settle_delay: float = SETTLE_DELAY_SECONDS,
) -> TrackingAnswer:
    """Async version of resolve_tracking.

    The settling delay is an asyncio.sleep, so the event loop stays free while
    the aggregator ingests the number.
    """
    code = validate_tracking_code(tracking_number)
    if client is None:
        async with build_async_client() as own:
            return await resolve_tracking_async(
                code,
                carrier,
                api_key=api_key,
                client=own,
                base_url=base_url,
                settle_delay=settle_delay,
            )

    url = _tracker_url(_base_url(base_url), carrier, code)

    try:
        outcome = await _fetch_async(client, url)
    except httpx.HTTPError as exc:
        raise UpstreamRejected(f"Failed to fetch tracking for {code}: {exc}") from exc
    answer = _answer_or_not_found(code, outcome)
    if answer is not None:
        return answer

    key = ensure_credential(API_KEY_ENV, api_key)
    logger.info("Registering tracking number {} ({}) for tracking", code, carrier)
    try:
        response = await async_send_request(
            client, "POST", url, headers=_registration_headers(key)
        )
    except httpx.HTTPError as exc:
        raise RegistrationFailed(f"Failed to register {code} for tracking: {exc}") from exc
    _check_registration(code, response)

    logger.info("Waiting {}s for the aggregator to pick up {}", settle_delay, code)
    await asyncio.sleep(settle_delay)
    try:
        outcome = await _fetch_async(client, url)
    except httpx.HTTPError as exc:
        raise PostRegistrationFetchFailed(code, str(exc)) from exc
    return _answer_after_registration(code, outcome)


async def track_async(
    tracking_number: str,
    *,
    api_key: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
    base_url: Optional[str] = None,
    settle_delay: float = SETTLE_DELAY_SECONDS,
) -> TrackingAnswer:
    """Async version of track().

    See track() and resolve_tracking() for the protocol details.
    """
    code = validate_tracking_code(tracking_number)
    if client is None:
        async with build_async_client() as own:
            return await track_async(
                code,
                api_key=api_key,
                client=own,
                base_url=base_url,
                settle_delay=settle_delay,
            )

    carriers = await resolve_carriers_async(code, client=client, base_url=base_url)
    return await resolve_tracking_async(
        code,
        _pick_carrier(code, carriers),
        api_key=api_key,
        client=client,
        base_url=base_url,
        settle_delay=settle_delay,
    )


class MoyaposylkaProvider(ProviderBase):
    """Class interface over the module-level functions.

    API key, base URL, timeout and settling delay are fixed at construction.
    """

    provider = "moyaposylka"
    website_base = WEBSITE_BASE

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        settle_delay: float = SETTLE_DELAY_SECONDS,
    ) -> None:
        self.api_key = api_key or os.getenv(API_KEY_ENV)
        self.base_url = _base_url(base_url)
        self.timeout = timeout
        self.settle_delay = settle_delay

    def build_tracking_url(self, tracking_number: str, **kwargs: Any) -> Optional[str]:
        return build_tracking_url(tracking_number, website_base=self.website_base)

    def track(
        self,
        tracking_number: str,
        *,
        client: Optional[httpx.Client] = None,
        **kwargs: Any,
    ) -> TrackingAnswer:
        if client is None:
            with self.new_client() as own:
                return self.track(tracking_number, client=own)
        return track(
            tracking_number,
            api_key=self.api_key,
            client=client,
            base_url=self.base_url,
            settle_delay=self.settle_delay,
        )

    async def track_async(
        self,
        tracking_number: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs: Any,
    ) -> TrackingAnswer:
        if client is None:
            async with self.new_async_client() as own:
                return await self.track_async(tracking_number, client=own)
        return await track_async(
            tracking_number,
            api_key=self.api_key,
            client=client,
            base_url=self.base_url,
            settle_delay=self.settle_delay,
        )

    def track_or_reason(self, tracking_number: str) -> Union[TrackingAnswer, str]:
        """Collaborator-facing variant: a TrackingAnswer or a display-ready message."""
        try:
            return self.track(tracking_number)
        except TrackingError as exc:
            return str(exc)
