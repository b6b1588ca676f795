import asyncio
import logging

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import call_log, call_queue, events
from .db import get_session, init_db
from .errors import (
    DuplicateEventError, InvalidOutcomeError, MalformedRecordError,
    UnknownContactError, UnknownEventError,
)
from .imap_listener import imap_configured, process_mailbox
from .models import Contact
from .scheduler import run_scheduler
from .schemas import EventRecord, EventUpdate, IngestResponse, OutcomeRequest, TopUpRequest
from .scoring import ContactScorer, default_scorer
from .timeutil import as_naive_utc

logger = logging.getLogger(__name__)

app = FastAPI(title="Farm Call Engine")


def get_scorer() -> ContactScorer:
    return default_scorer()


@app.on_event("startup")
async def startup():
    init_db()
    # fire-and-forget scheduler
    asyncio.create_task(run_scheduler())


# ----------------------------
# Error mapping
# ----------------------------
@app.exception_handler(MalformedRecordError)
@app.exception_handler(InvalidOutcomeError)
async def bad_request(_: Request, exc: Exception):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(UnknownContactError)
@app.exception_handler(UnknownEventError)
async def not_found(_: Request, exc: Exception):
    return JSONResponse(status_code=404, content={"detail": f"not found: {exc}"})


@app.exception_handler(DuplicateEventError)
async def conflict(_: Request, exc: Exception):
    return JSONResponse(status_code=409, content={"detail": "an event with that address, type and date already exists"})


@app.exception_handler(SQLAlchemyError)
async def storage_error(_: Request, exc: SQLAlchemyError):
    logger.error("[api] storage error: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "internal error"})


@app.get("/health")
def health():
    return {"status": "ok"}


# ----------------------------
# Market events
# ----------------------------
@app.post("/api/market-events", response_model=IngestResponse)
def create_market_event(record: EventRecord, db: Session = Depends(get_session),
                        scorer: ContactScorer = Depends(get_scorer)):
    result = events.ingest(db, record, scorer)
    return IngestResponse(inserted=result.inserted, contact_count=result.contact_count, id=result.event_id)


@app.get("/api/market-events")
def list_market_events(days: int = Query(30, ge=1, le=365), include_historical: bool = False,
                       db: Session = Depends(get_session)):
    return events.list_events(db, days=days, include_historical=include_historical)


@app.get("/api/market-events/{event_id}")
def get_market_event(event_id: int, db: Session = Depends(get_session)):
    return events.event_to_dict(events.get_event(db, event_id))


@app.patch("/api/market-events/{event_id}")
def update_market_event(event_id: int, changes: EventUpdate, db: Session = Depends(get_session),
                        scorer: ContactScorer = Depends(get_scorer)):
    ev = events.update_event(db, event_id, changes.model_dump(exclude_unset=True), scorer)
    return events.event_to_dict(ev)


@app.delete("/api/market-events/{event_id}")
def delete_market_event(event_id: int, db: Session = Depends(get_session)):
    events.delete_event(db, event_id)
    return {"deleted": event_id}


# ----------------------------
# Call queue
# ----------------------------
@app.get("/api/queue")
def get_queue(limit: int = Query(50, ge=1, le=500), db: Session = Depends(get_session)):
    return call_queue.todays_call_list(db, limit=limit)


@app.post("/api/queue/top-up")
def queue_top_up(req: TopUpRequest, db: Session = Depends(get_session)):
    admitted = call_queue.top_up(db, req.count)
    return {"added": len(admitted), "contact_ids": [e.contact_id for e in admitted]}


@app.post("/api/queue/sweep")
def queue_sweep(db: Session = Depends(get_session)):
    return call_queue.reactivation_sweep(db)


@app.post("/api/queue/{contact_id}")
def queue_add(contact_id: str, db: Session = Depends(get_session)):
    contact = db.get(Contact, contact_id)
    if contact is None:
        raise UnknownContactError(contact_id)
    try:
        entry, action = call_queue.enqueue(db, contact, source="manual", reactivate=True)
        db.commit()
    except Exception:
        db.rollback()
        raise
    if entry is None:
        raise HTTPException(status_code=400, detail="contact has no callable phone or is do-not-call")
    return {"contact_id": contact_id, "status": entry.status, "action": action}


@app.post("/api/queue/{contact_id}/outcome")
def queue_outcome(contact_id: str, req: OutcomeRequest, db: Session = Depends(get_session)):
    result = call_queue.record_outcome(
        db, contact_id, req.outcome, notes=req.notes, called_at=as_naive_utc(req.called_at),
    )
    entry = result.entry
    return {
        "contact_id": contact_id,
        "status": entry.status,
        "snooze_until": entry.snooze_until,
        "cooldown_until": entry.cooldown_until,
        "applied": result.applied,
    }


# ----------------------------
# Contacts
# ----------------------------
@app.get("/api/contacts/{contact_id}/calls")
def contact_calls(contact_id: str, limit: int = Query(50, ge=1, le=500), db: Session = Depends(get_session)):
    if db.get(Contact, contact_id) is None:
        raise UnknownContactError(contact_id)
    return [
        {"id": r.id, "called_at": r.called_at, "outcome": r.outcome, "notes": r.notes,
         "propensity_score_at_call": r.propensity_score_at_call}
        for r in call_log.history(db, contact_id, limit=limit)
    ]


@app.post("/mailbox/poll")
def mailbox_poll(db: Session = Depends(get_session), scorer: ContactScorer = Depends(get_scorer)):
    # Trigger IMAP poll manually (or via cron outside)
    if not imap_configured():
        raise HTTPException(status_code=503, detail="mailbox is not configured")
    return process_mailbox(db, scorer=scorer).as_dict()
