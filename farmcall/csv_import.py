import logging
import re

import pandas as pd
from sqlalchemy.orm import Session

from .db import SessionLocal, init_db
from .models import Contact
from .propensity import compute_propensity
from .report import BatchReport
from .scoring import usable_phone
from .timeutil import local_today

logger = logging.getLogger(__name__)

# CRM and property-data export headers, lowercased
HEADER_MAP = {
    "id": "id",
    "contact id": "id",
    "name": "name",
    "full name": "name",
    "owner name": "name",
    "phone": "phone",
    "mobile": "phone",
    "phone number": "phone",
    "email": "email",
    "address": "address",
    "street address": "address",
    "suburb": "suburb",
    "source": "source",
    "class": "contact_class",
    "contact class": "contact_class",
    "do not call": "do_not_call",
    "dnc": "do_not_call",
    "owner type": "occupancy",
    "occupancy": "occupancy",
    "property type": "property_type",
    "beds": "beds",
    "bed": "beds",
    "bedrooms": "beds",
    "baths": "baths",
    "bath": "baths",
    "bathrooms": "baths",
    "tenure": "tenure_years",
    "tenure years": "tenure_years",
    "sale date": "sale_date",
    "last sale date": "sale_date",
    "appraisals": "appraisal_count",
    "appraisal count": "appraisal_count",
}

TEXT_FIELDS = ("name", "email", "address", "suburb", "contact_class", "property_type")
INT_FIELDS = ("beds", "baths", "tenure_years", "appraisal_count")
TRUTHY = {"1", "true", "yes", "y", "x"}


def normalize_cols(df: pd.DataFrame) -> pd.DataFrame:
    """Rename known headers; synonyms ("Mobile", "Phone") fold into one column."""
    out = pd.DataFrame(index=df.index)
    for orig in df.columns:
        target = HEADER_MAP.get(str(orig).lower().strip(), orig)
        if target in out.columns:
            out[target] = out[target].fillna(df[orig])
        else:
            out[target] = df[orig]
    return out


def _text(row, col):
    v = row.get(col)
    if v is None or pd.isna(v):
        return None
    v = str(v).strip()
    return v or None


def _int(row, col):
    v = _text(row, col)
    if v is None:
        return None
    m = re.match(r"^-?\d+", v.replace(",", ""))
    return int(m.group(0)) if m else None


def _occupancy(text: str | None) -> str | None:
    if not text:
        return None
    t = text.lower()
    if "owner" in t and "occup" in t:
        return "owner-occupied"
    if "invest" in t or "rent" in t or "tenant" in t:
        return "investor"
    return "unknown"


def _tenure_from_sale(text: str | None, today) -> int | None:
    if not text or text == "-":
        return None
    sold = pd.to_datetime(text, errors="coerce", dayfirst=True)
    if pd.isna(sold):
        return None
    return max(0, today.year - sold.year)


def contact_id_for(phone: str) -> str:
    return "ph-" + re.sub(r"\D", "", phone)


def _apply(c: Contact, row, today):
    for col in TEXT_FIELDS:
        v = _text(row, col)
        if v is not None:
            setattr(c, col, v)
    for col in INT_FIELDS:
        v = _int(row, col)
        if v is not None:
            setattr(c, col, v)
    if c.tenure_years is None:
        c.tenure_years = _tenure_from_sale(_text(row, "sale_date"), today)
    occupancy = _occupancy(_text(row, "occupancy"))
    if occupancy:
        c.occupancy = occupancy
    dnc = _text(row, "do_not_call")
    if dnc is not None:
        c.do_not_call = dnc.lower() in TRUTHY
    c.propensity_score = compute_propensity(c)


def import_contacts(db: Session, df: pd.DataFrame, source: str = "crm", today=None) -> BatchReport:
    """Upsert contacts from an export frame. Rows without a usable phone are skipped."""
    today = today or local_today()
    report = BatchReport()
    df = normalize_cols(df)
    seen = set()
    try:
        for _, row in df.iterrows():
            phone = _text(row, "phone")
            if not usable_phone(phone):
                report.skipped += 1
                continue
            contact_id = _text(row, "id") or contact_id_for(phone)
            if contact_id in seen:
                report.skipped += 1
                continue
            seen.add(contact_id)

            c = db.get(Contact, contact_id)
            if c is None:
                c = Contact(
                    id=contact_id, name=_text(row, "name") or phone,
                    source=_text(row, "source") or source, occupancy="unknown",
                    do_not_call=False, appraisal_count=0,
                )
                db.add(c)
                report.inserted += 1
            else:
                report.updated += 1
            c.phone = phone
            _apply(c, row, today)

            if (report.inserted + report.updated) % 5000 == 0:
                db.commit()
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("[import] contacts: %s", report)
    return report


def import_csv(path: str, source: str = "crm") -> BatchReport:
    init_db()
    df = pd.read_csv(path, dtype=str)
    db: Session = SessionLocal()
    try:
        return import_contacts(db, df, source=source)
    finally:
        db.close()
