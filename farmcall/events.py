"""
Market event store.

Events are unique on (address, type, event_date). Ingesting the same key twice
is a silent no-op. Each new event is scored once and its ranked contacts are
stored as a snapshot; the best of them are upserted into the call queue.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from . import call_queue
from .address import normalize, split_address, street_keyword, street_part
from .briefing import build_angle, build_intel
from .config import settings
from .errors import DuplicateEventError, MalformedRecordError, UnknownEventError
from .models import Contact, MarketEvent, EVENT_STATUSES
from .propensity import compute_propensity
from .report import BatchReport
from .schemas import EventRecord
from .scoring import ContactScorer, score_event, dedupe_across_events
from .timeutil import now_utc, local_today

logger = logging.getLogger(__name__)

LISTING_TYPES = ("listing", "relisted", "price_change")
RESCORE_FIELDS = ("address", "suburb", "beds", "property_type")


@dataclass
class IngestResult:
    inserted: bool
    contact_count: int
    event_id: int | None = None


def canonical_address(address: str, suburb: str | None) -> tuple[str, str]:
    street, parsed_suburb = split_address(address)
    if not street:
        raise MalformedRecordError("event has no address")
    if not parsed_suburb and suburb:
        address = f"{street}, {suburb}"
    street, parsed_suburb = split_address(address)
    return normalize(address), parsed_suburb


def _find(db, address: str, type_: str, event_date: str):
    return (
        db.query(MarketEvent)
        .filter(MarketEvent.address == address, MarketEvent.type == type_, MarketEvent.event_date == event_date)
        .one_or_none()
    )


def _originating_listing(db, address: str, exclude_id=None):
    q = db.query(MarketEvent).filter(MarketEvent.address == address, MarketEvent.type.in_(LISTING_TYPES))
    if exclude_id is not None:
        q = q.filter(MarketEvent.id != exclude_id)
    return q.order_by(MarketEvent.detected_at.desc(), MarketEvent.id.desc()).first()


def _flag_investors(db, address: str) -> int:
    """A rental listing reveals the owner is an investor."""
    target = street_part(address)
    keyword = street_keyword(address)
    flagged = 0
    for c in db.query(Contact).filter(Contact.address.ilike(f"%{keyword}%")):
        if street_part(c.address) == target and c.occupancy != "investor":
            c.occupancy = "investor"
            c.propensity_score = compute_propensity(c)
            flagged += 1
    return flagged


def _queue_top_contacts(db, event: MarketEvent, scored, now):
    for s in scored[: settings.MARKET_EVENT_QUEUE_COUNT]:
        call_queue.enqueue(
            db, s.contact, now=now, source="market_event",
            intel=build_intel(s.contact), angle=build_angle(s.contact, event),
        )


def ingest(db, record: EventRecord, scorer: ContactScorer, relaxed: bool = False, now=None) -> IngestResult:
    now = now or now_utc()
    address, suburb = canonical_address(record.address, record.suburb)
    event_date = (record.event_date or local_today(now)).isoformat()

    existing = _find(db, address, record.type, event_date)
    if existing is not None:
        logger.debug("[ingest] duplicate %s %s %s", record.type, address, event_date)
        return IngestResult(False, len(existing.top_contacts), existing.id)

    ev = MarketEvent(
        address=address, suburb=suburb or None, type=record.type, event_date=event_date,
        detected_at=now, price=record.price, price_previous=record.price_previous,
        beds=record.beds, baths=record.baths, cars=record.cars, property_type=record.property_type,
        agent_name=record.agent_name, agency=record.agency, source=record.source, status="active",
    )
    # score before any write so the geocoder never runs inside a write transaction
    scored = score_event(db, ev, scorer, relaxed=relaxed, now=now)
    ev.top_contacts = [s.snapshot() for s in scored]

    try:
        if record.type in ("sold", "unlisted"):
            listing = _originating_listing(db, address)
            if listing is not None:
                listing.status = "sold" if record.type == "sold" else "withdrawn"
                if record.type == "sold":
                    ev.linked_event_id = listing.id
            ev.status = "sold" if record.type == "sold" else "withdrawn"
        elif record.type == "rental":
            flagged = _flag_investors(db, address)
            if flagged:
                logger.info("[ingest] %s: %d contacts flagged investor", address, flagged)

        db.add(ev)
        db.flush()
        _queue_top_contacts(db, ev, scored, now)
        db.commit()
    except IntegrityError:
        # lost a race with another writer on the dedup key
        db.rollback()
        existing = _find(db, address, record.type, event_date)
        if existing is None:
            raise
        return IngestResult(False, len(existing.top_contacts), existing.id)
    except Exception:
        db.rollback()
        raise

    logger.info("[ingest] %s %s from %s: %d contacts", ev.type, ev.address, ev.source, len(scored))
    return IngestResult(True, len(scored), ev.id)


def ingest_batch(db, records, scorer: ContactScorer, relaxed: bool = True, now=None) -> BatchReport:
    """
    Ingest raw dicts or EventRecords. Malformed records are skipped and counted;
    storage errors propagate so the job fails as a whole.
    """
    report = BatchReport()
    for raw in records:
        try:
            record = raw if isinstance(raw, EventRecord) else EventRecord.model_validate(raw)
            result = ingest(db, record, scorer, relaxed=relaxed, now=now)
        except (ValidationError, MalformedRecordError) as e:
            report.skipped += 1
            logger.warning("[ingest] skipped malformed event: %s", e)
            continue
        if result.inserted:
            report.inserted += 1
        else:
            report.skipped += 1
    logger.info("[ingest] batch done: %s", report)
    return report


def get_event(db, event_id: int) -> MarketEvent:
    ev = db.get(MarketEvent, event_id)
    if ev is None:
        raise UnknownEventError(event_id)
    return ev


def update_event(db, event_id: int, changes: dict, scorer: ContactScorer, now=None) -> MarketEvent:
    """Disposition or attribute edit; re-scores when location or property attributes change."""
    now = now or now_utc()
    ev = get_event(db, event_id)
    changes = {k: v for k, v in changes.items() if v is not None}
    if "status" in changes and changes["status"] not in EVENT_STATUSES:
        raise MalformedRecordError(f"unknown status {changes['status']!r}")

    if "address" in changes:
        address, suburb = canonical_address(changes["address"], changes.get("suburb", ev.suburb))
        changes["address"], changes["suburb"] = address, suburb or None
    elif "suburb" in changes:
        address, suburb = canonical_address(street_part(ev.address), changes["suburb"])
        changes["address"], changes["suburb"] = address, suburb or None

    rescore = any(f in changes and changes[f] != getattr(ev, f) for f in RESCORE_FIELDS)
    for field, value in changes.items():
        setattr(ev, field, value)

    if ev.status == "sold" and ev.type == "sold" and ev.linked_event_id is None:
        listing = _originating_listing(db, ev.address, exclude_id=ev.id)
        if listing is not None:
            ev.linked_event_id = listing.id

    try:
        if rescore:
            scored = score_event(db, ev, scorer, now=now)
            ev.top_contacts = [s.snapshot() for s in scored]
            _queue_top_contacts(db, ev, scored, now)
            logger.info("[ingest] re-scored event %s: %d contacts", ev.id, len(scored))
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise DuplicateEventError(str(event_id)) from e
    except Exception:
        db.rollback()
        raise
    return ev


def delete_event(db, event_id: int):
    ev = get_event(db, event_id)
    try:
        db.query(MarketEvent).filter(MarketEvent.linked_event_id == ev.id).update(
            {"linked_event_id": None}, synchronize_session=False
        )
        db.delete(ev)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("[ingest] deleted event %s (%s)", event_id, ev.address)


def rescore_active_events(db, scorer: ContactScorer, now=None) -> BatchReport:
    """Rebuild every active event's snapshot after scoring inputs change."""
    now = now or now_utc()
    report = BatchReport()
    for ev in db.query(MarketEvent).filter(MarketEvent.status == "active").order_by(MarketEvent.id).all():
        scored = score_event(db, ev, scorer, relaxed=True, now=now)
        ev.top_contacts = [s.snapshot() for s in scored]
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        report.updated += 1
    logger.info("[ingest] rebuilt top contacts: %s", report)
    return report


def event_to_dict(ev: MarketEvent, contacts: list[dict] | None = None) -> dict:
    return {
        "id": ev.id,
        "address": ev.address,
        "suburb": ev.suburb,
        "type": ev.type,
        "status": ev.status,
        "event_date": ev.event_date,
        "detected_at": ev.detected_at,
        "price": ev.price,
        "price_previous": ev.price_previous,
        "confirmed_price": ev.confirmed_price,
        "beds": ev.beds,
        "baths": ev.baths,
        "cars": ev.cars,
        "property_type": ev.property_type,
        "agent_name": ev.agent_name,
        "agency": ev.agency,
        "source": ev.source,
        "linked_event_id": ev.linked_event_id,
        "top_contacts": ev.top_contacts if contacts is None else contacts,
    }


def list_events(db, days: int = 30, include_historical: bool = False, now=None) -> list[dict]:
    """Recent events, newest first, each contact shown only under its best-scoring event."""
    now = now or now_utc()
    q = db.query(MarketEvent)
    if not include_historical:
        q = q.filter(MarketEvent.detected_at >= now - timedelta(days=days))
    events = q.order_by(MarketEvent.detected_at.desc(), MarketEvent.id.desc()).all()
    display = dedupe_across_events([(ev.id, ev.top_contacts) for ev in events])
    return [event_to_dict(ev, display[ev.id]) for ev in events]
