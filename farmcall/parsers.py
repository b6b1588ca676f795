"""
Source-specific text parsers: raw email text -> list[EventRecord].

Each parser is a pure function. Records that fail validation (no address,
for instance) are dropped here and counted by the caller.
"""
import logging
import re

from pydantic import ValidationError

from .config import settings
from .schemas import EventRecord

logger = logging.getLogger(__name__)

UNIT_RE = re.compile(r"unit|apartment|flat|studio", re.I)
PRICE_RE = re.compile(r"\$[\d,]+(?:\.\d+)?(?:\s*(?:million|m|k))?", re.I)
STREET_TYPES_RE = (
    r"(?:Street|St|Road|Rd|Avenue|Ave|Drive|Dr|Court|Ct|Place|Pl|Crescent|Cres|Way|"
    r"Close|Lane|Ln|Parade|Pde|Boulevard|Blvd)"
)


def _suburbs_re() -> str:
    names = sorted(settings.FARM_SUBURBS, key=len, reverse=True)
    return "|".join(re.escape(n) for n in names)


def _property_type(text: str) -> str:
    return "Unit" if UNIT_RE.search(text or "") else "House"


def _counts(body: str, bed=r"bed", bath=r"bath", car=r"car") -> dict:
    out = {}
    for key, word in (("beds", bed), ("baths", bath), ("cars", car)):
        m = re.search(rf"(\d+)\s*(?:{word})", body, re.I)
        if m:
            out[key] = int(m.group(1))
    return out


def _sender_name(sender: str) -> str:
    m = re.match(r"^\s*\"?([^<\"]+)", sender or "")
    return m.group(1).strip() if m else (sender or "")


def _record(**fields) -> EventRecord | None:
    try:
        return EventRecord(**fields)
    except ValidationError as e:
        logger.debug("[parse] dropped record %r: %s", fields.get("address"), e)
        return None


def _keep(records) -> list[EventRecord]:
    return [r for r in records if r is not None]


# ----------------------------
# Homely: "NEW: <address> is now for sale"
# ----------------------------
def parse_homely(subject: str, body: str) -> list[EventRecord]:
    m = re.search(r"NEW:\s*(.+?)\s+is now", subject, re.I)
    price = PRICE_RE.search(body)
    return _keep([_record(
        type="sold" if re.search(r"sold|result", subject, re.I) else "listing",
        address=m.group(1).strip() if m else "",
        price=price.group(0) if price else None,
        property_type=_property_type(body + subject),
        source="Homely",
        **_counts(body),
    )])


# ----------------------------
# Agent weekly wrap: "New Listings:" / "Sold:" blocks
# ----------------------------
def parse_weekly_wrap(body: str, sender: str) -> list[EventRecord]:
    suburbs = _suburbs_re()
    line_re = re.compile(rf"^(.+?(?:{suburbs})[^–\-]*)[–\-]\s*(.+)$", re.I)
    blocks = (
        ("listing", r"New Listings?:([\s\S]*?)(?:Sold:|Auctions?:|$)"),
        ("sold", r"Sold:([\s\S]*?)(?:Auctions?:|New Listings?:|$)"),
    )
    out = []
    for type_, pattern in blocks:
        block = re.search(pattern, body, re.I)
        if not block:
            continue
        for line in filter(None, (l.strip() for l in block.group(1).splitlines())):
            m = line_re.match(line)
            if m:
                out.append(_record(
                    type=type_, address=m.group(1).strip(), price=m.group(2).strip(),
                    property_type=_property_type(line), source=_sender_name(sender) or "Agent",
                ))
    return _keep(out)


# ----------------------------
# Direct agent mail: "Just listed | <address>"
# ----------------------------
def parse_direct_agent(subject: str, body: str, sender: str) -> list[EventRecord]:
    suburbs = _suburbs_re()
    patterns = (
        rf"(?:just listed|just sold|open \w+ \d+[\w:]*(?:am|pm)?)\s*[\-\|]\s*(.+?(?:{suburbs})[^|]*)",
        rf"(\d+[A-Za-z/]*\s+[\w\s]+{STREET_TYPES_RE}[,\s]+(?:\w+\s+)?(?:{suburbs}))",
    )
    address = ""
    for pattern in patterns:
        m = re.search(pattern, subject, re.I)
        if m:
            address = m.group(1).strip()
            break
    if not address:
        m = re.search(rf"({suburbs}),\s*(\d[^\n]+)", body, re.I)
        if m:
            address = f"{m.group(2).strip()}, {m.group(1).strip()}"

    guide = re.search(r"(?:Guide|Auction Guide|Price Guide|Buyers Guide)[:\s]*(\$?[\d,]+(?:\s*(?:million|m|k))?)", body, re.I)
    price = guide.group(1) if guide else (PRICE_RE.search(body).group(0) if PRICE_RE.search(body) else None)
    sold = re.search(r"just\s*sold|sold\s*prior|sold$", subject, re.I)

    return _keep([_record(
        type="sold" if sold else "listing",
        address=address,
        price=price,
        property_type=_property_type(body + subject),
        agent_name=_sender_name(sender),
        source=_sender_name(sender) or "Agent",
        **_counts(body, bed=r"bed|bedroom", bath=r"bath|bathroom", car=r"car|garage|parking"),
    )])


# ----------------------------
# The Agency matched-properties alert
# ----------------------------
def parse_agency_alert(body: str) -> list[EventRecord]:
    suburbs = _suburbs_re()
    out = []
    for m in re.finditer(rf"({suburbs})\s*(\d[^\n]+)\n(\d+\s*bed[^\n]+)", body, re.I):
        suburb, street, features = m.group(1), m.group(2).strip(), m.group(3)
        out.append(_record(
            type="listing", address=f"{street}, {suburb}",
            property_type=_property_type(m.group(0)), source="The Agency", agency="The Agency",
            **_counts(features),
        ))
    return _keep(out)


# ----------------------------
# CoreLogic / RP Data alerts
# ----------------------------
FORWARD_HEADERS = (
    re.compile(r"-{4,}\s*Original Message\s*-{4,}[\s\S]*?Subject:[^\n]*\n+([\s\S]*)", re.I),
    re.compile(r"-{8,}\s*Forwarded message\s*-{8,}[\s\S]*?Subject:[^\n]*\n+([\s\S]*)", re.I),
    re.compile(r"^\s*From:[^\n]+\n(?:Sent:|Date:)[^\n]+\n(?:To:|Cc:)[^\n]+(?:\n(?:Cc:|To:|Bcc:)[^\n]+)*\nSubject:[^\n]*\n+([\s\S]*)", re.I),
)
ADDRESS_LINE = re.compile(r"^\d+[\w/\-]*\s+\w")
SECTION_END = r"(?=Listed Alerts?:|For Rent Alerts?:|Sold Alerts?:|Watchlist|Territory|You are receiving|$)"


def unwrap_forward(body: str) -> str:
    content = body
    for pattern in FORWARD_HEADERS:
        m = pattern.search(content)
        if m:
            content = m.group(1).lstrip()
            break
    return re.sub(r"^>+\s?", "", content, flags=re.M)


def parse_corelogic(subject: str, body: str) -> list[EventRecord]:
    content = unwrap_forward(body)
    out = []

    sections = (
        ("listing", r"Listed Alerts?:([\s\S]*?)"),
        ("rental", r"For Rent Alerts?:([\s\S]*?)"),
        ("sold", r"Sold Alerts?:([\s\S]*?)"),
    )
    for type_, pattern in sections:
        m = re.search(pattern + SECTION_END, content, re.I)
        if not m:
            continue
        for line in m.group(1).splitlines():
            line = re.sub(r"^[\s•\-\*•]+", "", line).strip()
            if ADDRESS_LINE.match(line):
                out.append(_record(type=type_, address=line, property_type=_property_type(line), source="CoreLogic"))

    watchlists = (
        ("listing", r"Watchlist\s*[-–]\s*Listing\s*(?:Price\s*Changes?|Alerts?)([\s\S]*?)(?=Watchlist\s*[-–]|You are receiving|$)"),
        ("sold", r"Watchlist\s*[-–]\s*(?:Sold|Recent\s*Sales?)([\s\S]*?)(?=Watchlist\s*[-–]|You are receiving|$)"),
        ("rental", r"Watchlist\s*[-–]\s*(?:For\s*Rent|Rental)([\s\S]*?)(?=Watchlist\s*[-–]|You are receiving|$)"),
    )
    for type_, pattern in watchlists:
        m = re.search(pattern, content, re.I)
        if not m:
            continue
        block = re.sub(r"\[[^\]]{10,}\]", "", m.group(1))
        current, price = None, None
        for line in filter(None, (l.strip() for l in block.splitlines())):
            if ADDRESS_LINE.match(line):
                if current:
                    out.append(_record(type=type_, address=current, price=price,
                                       property_type=_property_type(current), source="CoreLogic"))
                current, price = line, None
            elif re.match(r"^sale\s+price", line, re.I):
                pm = re.search(r"\$[\d,]+", line)
                if pm:
                    price = pm.group(0)
        if current:
            out.append(_record(type=type_, address=current, price=price,
                               property_type=_property_type(current), source="CoreLogic"))

    territory = re.search(r"Territory\s*[-–]\s*Recent Sale[\s\S]{0,100}?(\d+\w*\s+[^\n,]+(?:,[^\n]+)?)", content, re.I)
    if territory:
        addr = territory.group(1).strip()
        out.append(_record(type="sold", address=addr, property_type=_property_type(addr), source="CoreLogic"))

    return _keep(out)


# ----------------------------
# Routing
# ----------------------------
def is_farm_area(text: str) -> bool:
    return re.search(_suburbs_re(), text or "", re.I) is not None


def is_corelogic(subject: str, sender: str) -> bool:
    s = (sender or "").lower()
    return "corelogic.com.au" in s or re.search(r"fw:.*(?:rp\s*data|your rp data)|corelogic", subject or "", re.I) is not None


def is_property_email(subject: str, body: str) -> bool:
    keywords = (r"just listed|just sold|pocket listing|off.?market|weekly wrap|open tomorrow|open saturday|"
                r"open sunday|new listing|price guide|auction guide")
    return re.search(keywords, subject or "", re.I) is not None and is_farm_area(subject + body)


def route_email(subject: str, body: str, sender: str) -> list[EventRecord]:
    subject, body, s = subject or "", body or "", (sender or "").lower()

    if is_corelogic(subject, sender):
        # CoreLogic territory alerts are already scoped to the farm area
        return parse_corelogic(subject, body)
    if not is_farm_area(subject + body):
        return []
    if "homely.com.au" in s and re.search(r"is now for sale", subject, re.I):
        return parse_homely(subject, body)
    if re.search(r"weekly wrap", subject, re.I):
        return parse_weekly_wrap(body, sender)
    if "theagency.com.au" in s and re.search(r"matched properties", subject, re.I):
        return parse_agency_alert(body)
    if is_property_email(subject, body):
        return parse_direct_agent(subject, body, sender)
    return []
