"""
Call queue: one row per contact, status active -> snoozed/done -> active.

Outcome transitions:
    left_message    snoozed, snooze_until   = called_at + SNOOZE_LEFT_MESSAGE_DAYS
    no_answer       snoozed, snooze_until   = called_at + SNOOZE_NO_ANSWER_DAYS
    connected       done,    cooldown_until = called_at + COOLDOWN_DAYS
    not_interested  done,    cooldown_until = called_at + COOLDOWN_DAYS
    anything else   done,    no timer (stays done until re-added by hand)

A timer is only stored while it lies in the future; the sweep flips elapsed
rows back to active and clears both timers.
"""
import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from sqlalchemy import and_, or_

from . import call_log
from .address import is_farm_suburb
from .briefing import build_angle, build_intel
from .config import settings
from .errors import InvalidOutcomeError, UnknownContactError
from .models import CallLogEntry, CallQueueEntry, Contact, MarketEvent, OUTCOMES
from .report import BatchReport
from .scoring import is_eligible
from .timeutil import as_naive_utc, now_utc, days_between

logger = logging.getLogger(__name__)


def transition_for(outcome: str) -> tuple[str, str | None, int | None]:
    """outcome -> (status, timer column, days)."""
    if outcome not in OUTCOMES:
        raise InvalidOutcomeError(f"unknown outcome {outcome!r}")
    table = {
        "left_message": ("snoozed", "snooze_until", settings.SNOOZE_LEFT_MESSAGE_DAYS),
        "no_answer": ("snoozed", "snooze_until", settings.SNOOZE_NO_ANSWER_DAYS),
        "connected": ("done", "cooldown_until", settings.COOLDOWN_DAYS),
        "not_interested": ("done", "cooldown_until", settings.COOLDOWN_DAYS),
    }
    return table.get(outcome, ("done", None, None))


def _reactivate(entry: CallQueueEntry):
    entry.status = "active"
    entry.snooze_until = None
    entry.cooldown_until = None


def apply_outcome(entry: CallQueueEntry, outcome: str, called_at: datetime, now: datetime):
    status, timer, days = transition_for(outcome)
    entry.last_outcome = outcome
    entry.last_called_at = called_at
    _reactivate(entry)
    if timer is None:
        entry.status = status
        return
    until = called_at + timedelta(days=days)
    if until > now:
        entry.status = status
        setattr(entry, timer, until)
    # a backdated call whose timer already ran out leaves the row active


@dataclass
class OutcomeResult:
    entry: CallQueueEntry
    log: CallLogEntry
    applied: bool


def record_outcome(db, contact_id: str, outcome: str, notes: str | None = None,
                   called_at: datetime | None = None, now: datetime | None = None) -> OutcomeResult:
    """
    Append the call to the log and move the queue row, in one transaction.
    A call older than the row's stored last_called_at is logged but does not
    overwrite the newer transition.
    """
    if outcome not in OUTCOMES:
        raise InvalidOutcomeError(f"unknown outcome {outcome!r}")
    now = now or now_utc()
    called_at = called_at or now
    try:
        contact = db.get(Contact, contact_id)
        if contact is None:
            raise UnknownContactError(contact_id)

        entry = db.query(CallQueueEntry).filter(CallQueueEntry.contact_id == contact_id).one_or_none()
        if entry is None:
            entry = CallQueueEntry(
                contact_id=contact_id, status="active", added_at=now, source="manual",
                propensity_score=contact.propensity_score or 0,
            )
            db.add(entry)

        log = call_log.append(db, contact_id, outcome, called_at=called_at, notes=notes,
                              propensity_score=contact.propensity_score)
        applied = entry.last_called_at is None or called_at >= entry.last_called_at
        if applied:
            apply_outcome(entry, outcome, called_at, now)
        else:
            logger.info("[queue] %s: %s at %s is older than stored call, transition skipped",
                        contact_id, outcome, called_at.isoformat())
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("[queue] %s -> %s (%s)", contact_id, entry.status, outcome)
    return OutcomeResult(entry=entry, log=log, applied=applied)


def enqueue(db, contact: Contact, now: datetime | None = None, source: str = "manual",
            reactivate: bool = False, intel: str | None = None, angle: str | None = None):
    """
    Upsert a contact's queue row without committing. Returns (entry, action) where
    action is inserted | reactivated | unchanged | ineligible.

    A done row comes back to active when its cooldown has elapsed, or whenever
    `reactivate` is set (manual re-add). Active and snoozed rows keep their state.
    """
    now = now or now_utc()
    if not is_eligible(contact):
        return None, "ineligible"

    entry = db.query(CallQueueEntry).filter(CallQueueEntry.contact_id == contact.id).one_or_none()
    if entry is None:
        entry = CallQueueEntry(
            contact_id=contact.id, status="active", added_at=now, source=source,
            propensity_score=contact.propensity_score or 0,
            intel=intel or build_intel(contact), angle=angle or build_angle(contact),
        )
        db.add(entry)
        db.flush()
        return entry, "inserted"

    entry.propensity_score = contact.propensity_score or 0
    if intel:
        entry.intel = intel
    if angle:
        entry.angle = angle

    if entry.status != "done":
        return entry, "unchanged"
    cooldown_elapsed = entry.cooldown_until is not None and entry.cooldown_until <= now
    if reactivate or cooldown_elapsed:
        _reactivate(entry)
        entry.source = source
        return entry, "reactivated"
    return entry, "unchanged"


def reactivation_sweep(db, now: datetime | None = None) -> dict:
    now = now or now_utc()
    cleared = {"status": "active", "snooze_until": None, "cooldown_until": None}
    try:
        done = (
            db.query(CallQueueEntry)
            .filter(CallQueueEntry.status == "done",
                    CallQueueEntry.cooldown_until.isnot(None),
                    CallQueueEntry.cooldown_until <= now)
            .update(cleared, synchronize_session=False)
        )
        snoozed = (
            db.query(CallQueueEntry)
            .filter(CallQueueEntry.status == "snoozed",
                    CallQueueEntry.snooze_until.isnot(None),
                    CallQueueEntry.snooze_until <= now)
            .update(cleared, synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.expire_all()
    logger.info("[queue] sweep: %d cooldowns ended, %d snoozes ended", done, snoozed)
    return {"cooldowns_ended": done, "snoozes_ended": snoozed}


def boosted_contact_ids(db, now: datetime | None = None) -> set[str]:
    """Contacts named in any market event snapshot detected inside the boost window."""
    since = (now or now_utc()) - timedelta(days=settings.EVENT_BOOST_DAYS)
    ids = set()
    for ev in db.query(MarketEvent).filter(MarketEvent.detected_at >= since):
        ids.update(c["id"] for c in ev.top_contacts)
    return ids


def todays_call_list(db, limit: int | None = None, now: datetime | None = None) -> list[dict]:
    now = now or now_utc()
    rows = (
        db.query(CallQueueEntry, Contact)
        .join(Contact, Contact.id == CallQueueEntry.contact_id)
        .filter(Contact.do_not_call.is_(False))
        .filter(or_(
            CallQueueEntry.status == "active",
            and_(CallQueueEntry.status == "snoozed", CallQueueEntry.snooze_until <= now),
        ))
        .all()
    )
    # migrated stub contacts have no phone until an import fills it in
    rows = [(entry, contact) for entry, contact in rows if is_eligible(contact)]
    boosted = boosted_contact_ids(db, now)

    def sort_key(row):
        entry, contact = row
        idle = days_between(entry.last_called_at, now) if entry.last_called_at else math.inf
        return (
            0 if contact.id in boosted else 1,
            -(contact.propensity_score or 0),
            -idle,
            entry.id,
        )

    rows.sort(key=sort_key)
    if limit is not None:
        rows = rows[:limit]
    return [_as_item(entry, contact, contact.id in boosted) for entry, contact in rows]


def _as_item(entry: CallQueueEntry, contact: Contact, boosted: bool) -> dict:
    return {
        "contact_id": contact.id,
        "name": contact.name,
        "phone": contact.phone,
        "address": contact.address,
        "suburb": contact.suburb,
        "status": entry.status,
        "propensity_score": contact.propensity_score or 0,
        "tenure_years": contact.tenure_years,
        "occupancy": contact.occupancy,
        "property_type": contact.property_type,
        "added_at": entry.added_at,
        "last_outcome": entry.last_outcome,
        "last_called_at": entry.last_called_at,
        "intel": entry.intel,
        "angle": entry.angle,
        "market_event_boost": boosted,
    }


def top_up(db, count: int, now: datetime | None = None) -> list[CallQueueEntry]:
    """
    Admit up to `count` farm-area contacts by propensity. Contacts already
    queued (active, snoozed, done on a running cooldown, or done for good)
    are never re-admitted here; only done rows whose cooldown has run out are.
    """
    now = now or now_utc()
    if count <= 0:
        return []
    blocked = {
        cid for (cid,) in db.query(CallQueueEntry.contact_id).filter(or_(
            CallQueueEntry.status != "done",
            CallQueueEntry.cooldown_until.is_(None),
            CallQueueEntry.cooldown_until > now,
        ))
    }
    candidates = (
        db.query(Contact)
        .filter(Contact.do_not_call.is_(False), Contact.phone.isnot(None))
        .order_by(Contact.propensity_score.desc(), Contact.created_at, Contact.id)
        .all()
    )
    admitted = []
    try:
        for c in candidates:
            if len(admitted) >= count:
                break
            if c.id in blocked or not is_farm_suburb(c.suburb):
                continue
            entry, action = enqueue(db, c, now=now, source="top_up")
            if action in ("inserted", "reactivated"):
                admitted.append(entry)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("[queue] top-up admitted %d of %d requested", len(admitted), count)
    return admitted


def migrate_legacy_cooldowns(db, path: str, now: datetime | None = None,
                             default_days: int = 90) -> BatchReport:
    """
    One-time import of a legacy {contact_id: {plannedAt, name, cooldownDays}}
    file. Running cooldowns become done rows; existing queue rows win.
    """
    now = now or now_utc()
    report = BatchReport()
    raw = json.loads(Path(path).read_text())
    try:
        for contact_id, entry in raw.items():
            try:
                planned = datetime.fromisoformat(str(entry["plannedAt"]).replace("Z", "+00:00"))
            except (KeyError, ValueError):
                report.errored += 1
                continue
            planned = as_naive_utc(planned)
            until = planned + timedelta(days=int(entry.get("cooldownDays") or default_days))
            if until <= now or db.query(CallQueueEntry).filter(CallQueueEntry.contact_id == contact_id).count():
                report.skipped += 1
                continue
            if db.get(Contact, contact_id) is None:
                db.add(Contact(id=contact_id, name=entry.get("name") or contact_id, source="crm"))
                db.flush()
            db.add(CallQueueEntry(
                contact_id=contact_id, status="done", added_at=planned,
                cooldown_until=until, source="migration",
            ))
            report.inserted += 1
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("[queue] legacy cooldown migration: %s", report)
    return report
