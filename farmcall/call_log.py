"""Append-only call history and its derived read models."""
from collections import defaultdict
from datetime import timedelta

from sqlalchemy import func

from .errors import InvalidOutcomeError
from .models import CallLogEntry, OUTCOMES
from .timeutil import now_utc


def append(db, contact_id: str, outcome: str, called_at=None, notes: str | None = None,
           propensity_score: int | None = None) -> CallLogEntry:
    """Stage one log row on the caller's session; the caller owns the commit."""
    if outcome not in OUTCOMES:
        raise InvalidOutcomeError(f"unknown outcome {outcome!r}")
    entry = CallLogEntry(
        contact_id=contact_id,
        called_at=called_at or now_utc(),
        outcome=outcome,
        notes=notes,
        propensity_score_at_call=propensity_score,
    )
    db.add(entry)
    return entry


def history(db, contact_id: str, limit: int = 50) -> list[CallLogEntry]:
    return (
        db.query(CallLogEntry)
        .filter(CallLogEntry.contact_id == contact_id)
        .order_by(CallLogEntry.called_at.desc(), CallLogEntry.id.desc())
        .limit(limit)
        .all()
    )


def most_recent_outcomes(db, contact_ids=None) -> dict[str, CallLogEntry]:
    latest = db.query(
        CallLogEntry.contact_id, func.max(CallLogEntry.called_at).label("called_at")
    )
    if contact_ids is not None:
        latest = latest.filter(CallLogEntry.contact_id.in_(list(contact_ids)))
    latest = latest.group_by(CallLogEntry.contact_id).subquery()

    rows = (
        db.query(CallLogEntry)
        .join(latest, (CallLogEntry.contact_id == latest.c.contact_id)
              & (CallLogEntry.called_at == latest.c.called_at))
        .order_by(CallLogEntry.id)
        .all()
    )
    # same-timestamp ties resolve to the later insert
    return {r.contact_id: r for r in rows}


def outcomes_within(db, days: int, contact_ids=None, now=None) -> dict[str, list[tuple]]:
    """contact_id -> [(called_at, outcome), ...] for calls in the last `days` days."""
    since = (now or now_utc()) - timedelta(days=days)
    q = db.query(CallLogEntry.contact_id, CallLogEntry.called_at, CallLogEntry.outcome).filter(
        CallLogEntry.called_at >= since
    )
    if contact_ids is not None:
        q = q.filter(CallLogEntry.contact_id.in_(list(contact_ids)))
    out = defaultdict(list)
    for contact_id, called_at, outcome in q.order_by(CallLogEntry.called_at):
        out[contact_id].append((called_at, outcome))
    return dict(out)
