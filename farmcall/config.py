from pydantic import BaseModel
from dotenv import load_dotenv
import os

load_dotenv()


def split_list(text: str) -> list[str]:
    return [p.strip() for p in (text or "").split(",") if p.strip()]


def parse_tiers(text: str) -> list[tuple[int, int]]:
    """
    "50:200,200:150" -> [(50, 200), (200, 150)], sorted by distance.
    Each pair is (max metres, score); a distance at or below the bound earns the score.
    """
    tiers = []
    for part in split_list(text):
        metres, score = part.split(":")
        tiers.append((int(metres), int(score)))
    return sorted(tiers)


def parse_aliases(text: str) -> dict[str, str]:
    """"North Willoughby=Willoughby,Willoughby East=Willoughby" -> uppercase alias map."""
    out = {}
    for part in split_list(text):
        alias, _, canonical = part.partition("=")
        if canonical:
            out[alias.strip().upper()] = canonical.strip().upper()
    return out


class Settings(BaseModel):
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./farmcall.db")
    TIMEZONE: str = os.getenv("TIMEZONE", "Australia/Sydney")

    # Farm area
    FARM_SUBURBS: list[str] = split_list(os.getenv(
        "FARM_SUBURBS",
        "Willoughby,North Willoughby,Willoughby East,Chatswood,Artarmon,Naremburn,Castle Cove,Middle Cove,Castlecrag,Northbridge",
    ))
    SUBURB_ALIASES: dict[str, str] = parse_aliases(os.getenv(
        "SUBURB_ALIASES", "North Willoughby=Willoughby,Willoughby East=Willoughby",
    ))
    STATE: str = os.getenv("STATE", "NSW")

    # Geo proximity ladder
    GEO_TIERS: list[tuple[int, int]] = parse_tiers(os.getenv(
        "GEO_TIERS", "50:200,200:150,500:100,1000:50,1500:25",
    ))
    GEO_SAME_STREET_SCORE: int = int(os.getenv("GEO_SAME_STREET_SCORE", "200"))
    GEO_AVENUE_ADJACENT_SCORE: int = int(os.getenv("GEO_AVENUE_ADJACENT_SCORE", "150"))
    GEO_AVENUE_TWO_APART_SCORE: int = int(os.getenv("GEO_AVENUE_TWO_APART_SCORE", "75"))
    GEO_SUBURB_FLOOR: int = int(os.getenv("GEO_SUBURB_FLOOR", "10"))

    # Call history bonus
    CALLBACK_BONUS: int = int(os.getenv("CALLBACK_BONUS", "60"))
    RECENT_CALL_BONUS: int = int(os.getenv("RECENT_CALL_BONUS", "30"))
    OLDER_CALL_BONUS: int = int(os.getenv("OLDER_CALL_BONUS", "15"))
    CALL_BONUS_RECENT_DAYS: int = int(os.getenv("CALL_BONUS_RECENT_DAYS", "30"))
    CALL_BONUS_MAX_DAYS: int = int(os.getenv("CALL_BONUS_MAX_DAYS", "90"))

    # Comparable property bonus
    TYPE_MATCH_BONUS: int = int(os.getenv("TYPE_MATCH_BONUS", "30"))
    BED_EXACT_BONUS: int = int(os.getenv("BED_EXACT_BONUS", "20"))
    BED_NEAR_BONUS: int = int(os.getenv("BED_NEAR_BONUS", "10"))
    BED_MAX_DIFF: int = int(os.getenv("BED_MAX_DIFF", "1"))

    # Scorer
    TOP_CONTACTS_LIMIT: int = int(os.getenv("TOP_CONTACTS_LIMIT", "30"))
    RELAX_MIN_RESULTS: int = int(os.getenv("RELAX_MIN_RESULTS", "10"))
    GEOCODE_LOOKUP_BUDGET: int = int(os.getenv("GEOCODE_LOOKUP_BUDGET", "100"))

    # Call queue
    SNOOZE_LEFT_MESSAGE_DAYS: int = int(os.getenv("SNOOZE_LEFT_MESSAGE_DAYS", "3"))
    SNOOZE_NO_ANSWER_DAYS: int = int(os.getenv("SNOOZE_NO_ANSWER_DAYS", "2"))
    COOLDOWN_DAYS: int = int(os.getenv("COOLDOWN_DAYS", "120"))
    EVENT_BOOST_DAYS: int = int(os.getenv("EVENT_BOOST_DAYS", "14"))
    MARKET_EVENT_QUEUE_COUNT: int = int(os.getenv("MARKET_EVENT_QUEUE_COUNT", "10"))
    QUEUE_DAILY_TARGET: int = int(os.getenv("QUEUE_DAILY_TARGET", "80"))

    # Geocoder (Nominatim usage policy: max 1 request per second)
    GEOCODER_URL: str = os.getenv("GEOCODER_URL", "https://nominatim.openstreetmap.org/search")
    GEOCODER_USER_AGENT: str = os.getenv("GEOCODER_USER_AGENT", "farmcall/0.1")
    GEOCODER_MIN_INTERVAL: float = max(1.0, float(os.getenv("GEOCODER_MIN_INTERVAL", "1.1")))
    GEOCODER_TIMEOUT: float = float(os.getenv("GEOCODER_TIMEOUT", "10"))
    GEOCODE_CACHE_TTL_SECONDS: int = int(os.getenv("GEOCODE_CACHE_TTL_SECONDS", "3600"))

    IMAP_HOST: str = os.getenv("IMAP_HOST", "imap.gmail.com")
    IMAP_PORT: int = int(os.getenv("IMAP_PORT", "993"))
    IMAP_USERNAME: str = os.getenv("IMAP_USERNAME", "")
    IMAP_PASSWORD: str = os.getenv("IMAP_PASSWORD", "")
    IMAP_MAILBOX: str = os.getenv("IMAP_MAILBOX", "INBOX")

settings = Settings()
