"""
Address canonicalization used for event dedup and contact matching.

Every function here is pure and deterministic. `normalize` is idempotent:
normalize(normalize(x)) == normalize(x).
"""
import re

from .config import settings

STREET_TYPES = {
    "STREET": "ST", "ST": "ST",
    "ROAD": "RD", "RD": "RD",
    "AVENUE": "AVE", "AVE": "AVE", "AV": "AVE",
    "DRIVE": "DR", "DR": "DR",
    "COURT": "CT", "CT": "CT",
    "PLACE": "PL", "PL": "PL",
    "CRESCENT": "CRES", "CRES": "CRES", "CRESC": "CRES",
    "CLOSE": "CL", "CL": "CL",
    "LANE": "LN", "LN": "LN",
    "PARADE": "PDE", "PDE": "PDE",
    "BOULEVARD": "BLVD", "BLVD": "BLVD",
    "HIGHWAY": "HWY", "HWY": "HWY",
    "TERRACE": "TCE", "TCE": "TCE",
    "CIRCUIT": "CCT", "CCT": "CCT",
    "ESPLANADE": "ESP", "ESP": "ESP",
    "SQUARE": "SQ", "SQ": "SQ",
    "WAY": "WAY",
}

ORDINALS = {
    "FIRST": 1, "SECOND": 2, "THIRD": 3, "FOURTH": 4, "FIFTH": 5,
    "SIXTH": 6, "SEVENTH": 7, "EIGHTH": 8, "NINTH": 9, "TENTH": 10,
    "1ST": 1, "2ND": 2, "3RD": 3, "4TH": 4, "5TH": 5,
    "6TH": 6, "7TH": 7, "8TH": 8, "9TH": 9, "10TH": 10,
}

_STATE_TAIL = re.compile(r"\s*,?\s*\b(NSW|VIC|QLD|SA|WA|TAS|ACT|NT)\b\s*(\d{4})?\s*$")
_POSTCODE_TAIL = re.compile(r"\s*,?\s*\d{4}\s*$")
_UNIT_WORD = r"(?:UNIT|APT|APARTMENT|FLAT|LOT|SHOP|SUITE)"
# "UNIT 5, 10 SMITH ST" and "UNIT 5 10 SMITH ST" -> "5/10 SMITH ST"
_UNIT_FORM = re.compile(rf"^{_UNIT_WORD}\s+(\d+[A-Z]?)\s*,?\s+(\d+[A-Z]?)\s+(?=[A-Z])")
_NUMBER_PREFIX = re.compile(
    rf"^(?:{_UNIT_WORD}\s+(?:\d+[A-Z]?[\s,]+(?=\d))?)?\d+[A-Z]?(?:\s*[/-]\s*\d+[A-Z]?)*\s+"
)


def _clean(text: str) -> str:
    s = (text or "").upper()
    s = s.replace(".", " ").replace("–", "-").replace("—", "-")
    s = re.sub(r"\s*/\s*", "/", s)
    s = re.sub(r"\s*,\s*", ", ", s)
    s = re.sub(r"\s+", " ", s)
    return s.strip(" ,")


def _strip_state(text: str) -> str:
    s = _STATE_TAIL.sub("", text)
    s = _POSTCODE_TAIL.sub("", s)
    return s.strip(" ,")


def _abbreviate(street: str) -> str:
    return " ".join(STREET_TYPES.get(tok, tok) for tok in street.split(" ") if tok)


def _known_suburbs() -> list[str]:
    names = {s.upper() for s in settings.FARM_SUBURBS} | set(settings.SUBURB_ALIASES)
    return sorted(names, key=len, reverse=True)


def split_address(raw: str) -> tuple[str, str]:
    """
    Return (street_part, suburb), both uppercase; suburb may be "".

    Unit designations fold into the slash form, so "Unit 5, 10 Smith Street"
    and "5/10 Smith St" share a street part.
    """
    s = _UNIT_FORM.sub(r"\1/\2 ", _strip_state(_clean(raw)))
    if "," in s:
        street, _, suburb = s.rpartition(",")
        suburb = suburb.strip()
        # a segment starting with a number is still street, not suburb
        if suburb and not suburb[0].isdigit():
            return _abbreviate(street.strip(" ,")), _strip_state(suburb)
        s = s.replace(",", " ")
        s = re.sub(r"\s+", " ", s).strip()
    # "31 WALTER STREET WILLOUGHBY": no comma, look for a known suburb at the end
    for name in _known_suburbs():
        if s.endswith(" " + name):
            return _abbreviate(s[: -len(name)].strip()), name
    return _abbreviate(s), ""


def normalize(raw: str) -> str:
    street, suburb = split_address(raw)
    return f"{street}, {suburb}" if suburb else street


def street_part(raw: str) -> str:
    return split_address(raw)[0]


def normalize_suburb(suburb: str | None) -> str:
    s = _strip_state(_clean(suburb or ""))
    return settings.SUBURB_ALIASES.get(s, s)


def is_farm_suburb(suburb: str | None) -> bool:
    s = normalize_suburb(suburb)
    return bool(s) and s in {normalize_suburb(x) for x in settings.FARM_SUBURBS}


def strip_number(street: str) -> str:
    return _NUMBER_PREFIX.sub("", street).strip()


def street_keyword(raw: str) -> str:
    """'26/166 Mowbray Road, Willoughby' -> 'MOWBRAY'."""
    tokens = strip_number(street_part(raw)).split(" ")
    if len(tokens) > 1 and tokens[-1] in STREET_TYPES.values():
        tokens = tokens[:-1]
    return " ".join(tokens).strip()


def street_type(raw: str) -> str | None:
    tokens = strip_number(street_part(raw)).split(" ")
    return tokens[-1] if tokens and tokens[-1] in STREET_TYPES.values() else None


def avenue_ordinal(raw: str) -> int | None:
    """Position in a numbered-avenue scheme ('Second Avenue' -> 2), else None."""
    if street_type(raw) != "AVE":
        return None
    return ORDINALS.get(street_keyword(raw))


def keyword_in_street(keyword: str, street: str) -> bool:
    if len(keyword) < 3:
        return False
    return re.search(rf"\b{re.escape(keyword)}\b", street) is not None


def address_key(address: str | None, suburb: str | None = None) -> str:
    """Street-plus-suburb identity for one physical property."""
    street, parsed_suburb = split_address(address or "")
    return f"{street}|{normalize_suburb(suburb or parsed_suburb)}"


def categorize_property_type(text: str | None) -> str | None:
    if not text:
        return None
    t = text.lower()
    if re.search(r"house|semi|terrace|townhouse|duplex|villa", t):
        return "House"
    if re.search(r"unit|apartment|flat|studio", t):
        return "Unit"
    return "Other"
