import json

from sqlalchemy import (
    Column, String, Integer, Float, Text, DateTime, Boolean, ForeignKey, UniqueConstraint, Index,
)

from .db import Base
from .timeutil import now_utc

EVENT_TYPES = ("listing", "sold", "price_change", "unlisted", "relisted", "rental")
EVENT_STATUSES = ("active", "sold", "withdrawn")
QUEUE_STATUSES = ("active", "snoozed", "done")
OUTCOMES = (
    "connected", "left_message", "no_answer", "not_interested",
    "appraisal_booked", "callback_requested", "wrong_number",
)


class Contact(Base):
    __tablename__ = "contacts"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    address = Column(String, nullable=True)
    suburb = Column(String, nullable=True, index=True)
    source = Column(String, nullable=False, default="crm")  # rp_data (primary) | crm
    contact_class = Column(String, nullable=True)
    do_not_call = Column(Boolean, nullable=False, default=False)
    occupancy = Column(String, nullable=False, default="unknown")  # owner-occupied | investor | unknown
    property_type = Column(String, nullable=True)
    beds = Column(Integer, nullable=True)
    baths = Column(Integer, nullable=True)
    tenure_years = Column(Integer, nullable=True)
    appraisal_count = Column(Integer, nullable=False, default=0)
    propensity_score = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=now_utc)
    updated_at = Column(DateTime, default=now_utc, onupdate=now_utc)


class MarketEvent(Base):
    __tablename__ = "market_events"
    __table_args__ = (
        UniqueConstraint("address", "type", "event_date", name="uq_market_events_dedup"),
        Index("idx_market_events_detected", "detected_at"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(String, nullable=False)  # normalized
    suburb = Column(String, nullable=True)
    type = Column(String, nullable=False)
    event_date = Column(String, nullable=False)  # YYYY-MM-DD
    detected_at = Column(DateTime, nullable=False, default=now_utc)
    price = Column(String, nullable=True)
    price_previous = Column(String, nullable=True)
    confirmed_price = Column(String, nullable=True)
    beds = Column(Integer, nullable=True)
    baths = Column(Integer, nullable=True)
    cars = Column(Integer, nullable=True)
    property_type = Column(String, nullable=True)
    agent_name = Column(String, nullable=True)
    agency = Column(String, nullable=True)
    source = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active")
    top_contacts_json = Column("top_contacts", Text, nullable=True)
    linked_event_id = Column(Integer, ForeignKey("market_events.id", ondelete="SET NULL"), nullable=True)

    @property
    def top_contacts(self) -> list[dict]:
        return json.loads(self.top_contacts_json) if self.top_contacts_json else []

    @top_contacts.setter
    def top_contacts(self, value: list[dict]):
        self.top_contacts_json = json.dumps(value, ensure_ascii=False)


class CallQueueEntry(Base):
    __tablename__ = "call_queue"
    id = Column(Integer, primary_key=True, autoincrement=True)  # insertion order
    contact_id = Column(String, ForeignKey("contacts.id"), unique=True, nullable=False)
    status = Column(String, nullable=False, default="active")  # active | snoozed | done
    added_at = Column(DateTime, nullable=False, default=now_utc)
    snooze_until = Column(DateTime, nullable=True)
    cooldown_until = Column(DateTime, nullable=True)
    last_outcome = Column(String, nullable=True)
    last_called_at = Column(DateTime, nullable=True)
    propensity_score = Column(Integer, nullable=False, default=0)
    source = Column(String, nullable=True)  # market_event | top_up | manual | migration
    intel = Column(Text, nullable=True)
    angle = Column(Text, nullable=True)


class CallLogEntry(Base):
    __tablename__ = "call_log"
    id = Column(Integer, primary_key=True, autoincrement=True)
    contact_id = Column(String, ForeignKey("contacts.id"), nullable=False, index=True)
    called_at = Column(DateTime, nullable=False, default=now_utc)
    outcome = Column(String, nullable=False)
    notes = Column(Text, nullable=True)
    propensity_score_at_call = Column(Integer, nullable=True)


class GeocodeCacheEntry(Base):
    __tablename__ = "geocode_cache"
    address_key = Column(String, primary_key=True)
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)
    fetched_at = Column(DateTime, default=now_utc)
