"""Parcel tracking through the moyaposylka.ru aggregator."""

from .models import Carrier, TrackingAnswer, TrackingEvent
from .providers.base import (
    DecodingFailure,
    InvalidInput,
    LookupFailure,
    MissingCredentialsError,
    PostRegistrationFetchFailed,
    RegistrationFailed,
    ResolutionFailure,
    TrackingError,
    UpstreamRejected,
)
from .providers.moyaposylka import (
    SETTLE_DELAY_SECONDS,
    MoyaposylkaProvider,
    resolve_carriers,
    resolve_carriers_async,
    resolve_tracking,
    resolve_tracking_async,
    track,
    track_async,
    track_or_reason,
)

__version__ = "0.1.0"

__all__ = [
    "Carrier",
    "DecodingFailure",
    "InvalidInput",
    "LookupFailure",
    "MissingCredentialsError",
    "MoyaposylkaProvider",
    "PostRegistrationFetchFailed",
    "RegistrationFailed",
    "ResolutionFailure",
    "SETTLE_DELAY_SECONDS",
    "TrackingAnswer",
    "TrackingError",
    "TrackingEvent",
    "UpstreamRejected",
    "resolve_carriers",
    "resolve_carriers_async",
    "resolve_tracking",
    "resolve_tracking_async",
    "track",
    "track_async",
    "track_or_reason",
]
