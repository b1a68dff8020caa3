"""
Pydantic models for moyaposylka.ru tracking data.

Field names are snake_case; the aggregator's camelCase keys are accepted as
aliases so responses can be validated as-is.
"""

from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from .utils import from_epoch_ms


class Carrier(BaseModel):
    """A carrier record returned by the carrier-lookup endpoint."""

    code: str = Field(description="Aggregator's carrier identifier")

    model_config = ConfigDict(frozen=True)


class TrackingEvent(BaseModel):
    """A single entry of a parcel's tracking history."""

    event_date: int = Field(
        alias="eventDate", description="When the event occurred (epoch milliseconds)"
    )
    operation: str = Field(description="Human-readable status description")
    location: str = Field("", description="Location where event occurred")

    @field_validator("location", mode="before")
    @classmethod
    def _none_as_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @property
    def occurred_at(self) -> datetime:
        return from_epoch_ms(self.event_date)

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class TrackingAttributes(BaseModel):
    recipient: str = Field("", description="Recipient name, if disclosed")
    estimated_delivery: str = Field(
        "",
        alias="estimatedDelivery",
        description="Estimated delivery date as sent by the aggregator (unparsed)",
    )

    @field_validator("recipient", "estimated_delivery", mode="before")
    @classmethod
    def _none_as_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class TrackingAnswer(BaseModel):
    """Resolved state of a parcel."""

    attributes: TrackingAttributes
    events: List[TrackingEvent] = Field(
        description="Tracking history, newest first as ordered by the aggregator"
    )
    delivered: bool = Field(False, description="Whether the parcel was delivered")

    @property
    def recipient(self) -> str:
        return self.attributes.recipient

    @property
    def estimated_delivery(self) -> str:
        return self.attributes.estimated_delivery

    @property
    def latest_event(self) -> Optional[TrackingEvent]:
        """Most recent event (the first one) if any."""
        return self.events[0] if self.events else None

    model_config = ConfigDict(frozen=True)


class UpstreamError(BaseModel):
    """Error body reported by the aggregator."""

    status: int
    error: str

    model_config = ConfigDict(frozen=True)


class RegistrationAck(BaseModel):
    """Body returned when a tracking code is registered for tracking."""

    result: str

    model_config = ConfigDict(frozen=True)
