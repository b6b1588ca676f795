from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

EventType = Literal["listing", "sold", "price_change", "unlisted", "relisted", "rental"]
EventStatus = Literal["active", "sold", "withdrawn"]
Outcome = Literal[
    "connected", "left_message", "no_answer", "not_interested",
    "appraisal_booked", "callback_requested", "wrong_number",
]


def _small_int(v):
    if v is None or v == "" or v == "?":
        return None
    if isinstance(v, str):
        v = v.strip()
        if not v.isdigit():
            return None
    return int(v)


class EventRecord(BaseModel):
    """Normalized inbound event every source adapter produces."""
    type: EventType
    address: str
    suburb: Optional[str] = None
    beds: Optional[int] = None
    baths: Optional[int] = None
    cars: Optional[int] = None
    property_type: Optional[str] = None
    price: Optional[str] = None
    price_previous: Optional[str] = None
    agent_name: Optional[str] = None
    agency: Optional[str] = None
    source: str = "manual"
    event_date: Optional[date] = None

    @field_validator("address")
    @classmethod
    def _address_present(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("address is required")
        return v

    @field_validator("beds", "baths", "cars", mode="before")
    @classmethod
    def _coerce_counts(cls, v):
        return _small_int(v)


class IngestResponse(BaseModel):
    inserted: bool
    contact_count: int
    id: Optional[int] = None


class EventUpdate(BaseModel):
    status: Optional[EventStatus] = None
    confirmed_price: Optional[str] = None
    price: Optional[str] = None
    price_previous: Optional[str] = None
    address: Optional[str] = None
    suburb: Optional[str] = None
    beds: Optional[int] = None
    baths: Optional[int] = None
    cars: Optional[int] = None
    property_type: Optional[str] = None
    agent_name: Optional[str] = None
    agency: Optional[str] = None

    @field_validator("beds", "baths", "cars", mode="before")
    @classmethod
    def _coerce_counts(cls, v):
        return _small_int(v)


class OutcomeRequest(BaseModel):
    outcome: Outcome
    notes: Optional[str] = None
    called_at: Optional[datetime] = None


class TopUpRequest(BaseModel):
    count: int = Field(gt=0, le=500)
