import email
import imaplib
import logging
from email.header import decode_header, make_header
from email.message import Message

from bs4 import BeautifulSoup
from sqlalchemy.orm import Session

from .config import settings
from .db import SessionLocal
from .events import ingest_batch
from .parsers import route_email
from .report import BatchReport
from .scoring import ContactScorer, default_scorer

logger = logging.getLogger(__name__)


def imap_configured() -> bool:
    return bool(settings.IMAP_HOST and settings.IMAP_USERNAME and settings.IMAP_PASSWORD)


def _header(msg: Message, name: str) -> str:
    raw = msg.get(name)
    if not raw:
        return ""
    return str(make_header(decode_header(raw)))


def _decoded_parts(msg: Message, content_type: str) -> str:
    parts = msg.walk() if msg.is_multipart() else [msg]
    payload = ""
    for part in parts:
        if part.get_content_type() != content_type:
            continue
        data = part.get_payload(decode=True)
        if data:
            payload += data.decode(part.get_content_charset() or "utf-8", errors="ignore")
    return payload


def _html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    lines = (line.strip() for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


def _plain_text(msg: Message) -> str:
    """text/plain body, or the text/html body rendered to lines when that is all there is."""
    text = _decoded_parts(msg, "text/plain")
    if text.strip():
        return text
    html = _decoded_parts(msg, "text/html")
    return _html_to_text(html) if html else ""


def process_message(db: Session, subject: str, body: str, sender: str,
                    scorer: ContactScorer | None = None) -> BatchReport:
    """Route one email to its parser and ingest whatever it yields."""
    records = route_email(subject, body, sender)
    if not records:
        logger.debug("[mailbox] no events in %r from %s", subject, sender)
        return BatchReport()
    logger.info("[mailbox] %d events from %r", len(records), subject)
    return ingest_batch(db, records, scorer or default_scorer(), relaxed=True)


def process_mailbox(db: Session | None = None, scorer: ContactScorer | None = None) -> BatchReport:
    own_session = db is None
    if own_session:
        db = SessionLocal()
    scorer = scorer or default_scorer()
    report = BatchReport()
    try:
        imap = imaplib.IMAP4_SSL(settings.IMAP_HOST, settings.IMAP_PORT)
        imap.login(settings.IMAP_USERNAME, settings.IMAP_PASSWORD)
        imap.select(settings.IMAP_MAILBOX)
        status, messages = imap.search(None, "UNSEEN")
        if status != "OK":
            logger.warning("[mailbox] search failed: %s", status)
            return report

        for msg_id in messages[0].split():
            _, msg_data = imap.fetch(msg_id, "(RFC822)")
            for response_part in msg_data:
                if not isinstance(response_part, tuple):
                    continue
                msg = email.message_from_bytes(response_part[1])
                result = process_message(
                    db, _header(msg, "Subject"), _plain_text(msg), _header(msg, "From"), scorer=scorer,
                )
                report.inserted += result.inserted
                report.skipped += result.skipped
                report.errored += result.errored
            imap.store(msg_id, "+FLAGS", "\\Seen")
        imap.close()
        imap.logout()
    finally:
        if own_session:
            db.close()
    logger.info("[mailbox] poll done: %s", report)
    return report
