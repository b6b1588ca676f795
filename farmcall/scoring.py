"""
Contact scoring for a market event.

score = propensity + geo_score + call_bonus + comparable_bonus

The scorer itself only reads its inputs; the only side effect is the geocode
cache writing newly resolved addresses.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Callable

from .address import (
    address_key, avenue_ordinal, categorize_property_type, is_farm_suburb,
    keyword_in_street, split_address, street_keyword, street_part,
)
from .config import settings
from . import call_log
from .geocode import GeocodeCache, haversine_m
from .models import Contact
from .timeutil import now_utc, days_between

logger = logging.getLogger(__name__)

NEGATIVE_OUTCOMES = {"not_interested", "wrong_number"}
SOURCE_RANK = {"rp_data": 0, "crm": 1}


def usable_phone(phone: str | None) -> bool:
    return len(re.sub(r"\D", "", phone or "")) >= 8


def is_eligible(contact: Contact) -> bool:
    return usable_phone(contact.phone) and not contact.do_not_call


@dataclass
class ScoredContact:
    contact: Contact
    score: int
    breakdown: dict = field(default_factory=dict)

    def snapshot(self) -> dict:
        c = self.contact
        address = ", ".join(p for p in (c.address, c.suburb) if p)
        return {"id": c.id, "name": c.name, "phone": c.phone, "address": address, "score": self.score}


# ----------------------------
# Candidate pool
# ----------------------------
def build_candidate_pool(db) -> list[Contact]:
    """
    Farm-suburb contacts first (primary source ahead of CRM), then CRM-only
    contacts outside the farm suburbs. One physical address is never
    represented by two sources: the better-ranked source keeps it.
    """
    rows = (
        db.query(Contact)
        .filter(Contact.do_not_call.is_(False), Contact.phone.isnot(None))
        .order_by(Contact.created_at, Contact.id)
        .all()
    )
    eligible = [c for c in rows if usable_phone(c.phone)]
    farm = [c for c in eligible if is_farm_suburb(c.suburb)]
    farm.sort(key=lambda c: SOURCE_RANK.get(c.source, 1))  # stable
    farm_ids = {c.id for c in farm}
    crm_only = [c for c in eligible if c.source == "crm" and c.id not in farm_ids]

    pool, claimed = [], {}
    for c in farm + crm_only:
        key = address_key(c.address, c.suburb)
        rank = SOURCE_RANK.get(c.source, 1)
        if not key.startswith("|"):
            owner = claimed.setdefault(key, rank)
            if owner < rank:
                continue
        pool.append(c)
    return pool


def exclude_vendor(event_address: str, candidates: list[Contact]) -> list[Contact]:
    vendor_street = street_part(event_address)
    return [c for c in candidates if street_part(c.address or "") != vendor_street]


# ----------------------------
# Score components
# ----------------------------
def tier_score(distance_m: float) -> int:
    for max_m, score in settings.GEO_TIERS:
        if distance_m <= max_m:
            return score
    return settings.GEO_SUBURB_FLOOR


def geo_score(event_address: str, contact_address: str | None,
              event_coords: dict | None = None, contact_coords: dict | None = None) -> tuple[int, str]:
    event_street = street_part(event_address)
    keyword = street_keyword(contact_address or "")
    if keyword_in_street(keyword, event_street):
        return settings.GEO_SAME_STREET_SCORE, "same_street"

    if event_coords and contact_coords:
        return tier_score(haversine_m(event_coords, contact_coords)), "distance"

    ev_ord, c_ord = avenue_ordinal(event_address), avenue_ordinal(contact_address or "")
    if ev_ord is not None and c_ord is not None:
        gap = abs(ev_ord - c_ord)
        if gap == 1:
            return settings.GEO_AVENUE_ADJACENT_SCORE, "adjacent_avenue"
        if gap == 2:
            return settings.GEO_AVENUE_TWO_APART_SCORE, "avenue_two_apart"

    return settings.GEO_SUBURB_FLOOR, "suburb"


def call_bonus(calls: list[tuple], now) -> int:
    """Largest single bonus from the contact's recent calls; bonuses never stack."""
    best = 0
    for called_at, outcome in calls or ():
        age = max(0.0, days_between(called_at, now))
        if age > settings.CALL_BONUS_MAX_DAYS or outcome in NEGATIVE_OUTCOMES:
            continue
        if age <= settings.CALL_BONUS_RECENT_DAYS:
            bonus = settings.CALLBACK_BONUS if outcome == "callback_requested" else settings.RECENT_CALL_BONUS
        else:
            bonus = settings.OLDER_CALL_BONUS
        best = max(best, bonus)
    return best


def comparable_bonus(event_type: str | None, event_beds: int | None,
                     contact_type: str | None, contact_beds: int | None) -> int:
    bonus = 0
    bucket = categorize_property_type(event_type)
    if bucket and bucket == categorize_property_type(contact_type):
        bonus += settings.TYPE_MATCH_BONUS
    if event_beds is not None and contact_beds is not None:
        diff = abs(event_beds - contact_beds)
        if diff == 0:
            bonus += settings.BED_EXACT_BONUS
        elif diff <= settings.BED_MAX_DIFF:
            bonus += settings.BED_NEAR_BONUS
    return bonus


# ----------------------------
# Progressive relaxation
# ----------------------------
def relaxation_ladder(property_type: str | None, beds: int | None) -> list[tuple[str, Callable[[Contact], bool]]]:
    bucket = categorize_property_type(property_type)

    def same_bucket(c):
        # an event of unknown type filters on beds only
        return bucket is None or categorize_property_type(c.property_type) == bucket

    def beds_within(n):
        def check(c):
            return beds is None or (c.beds is not None and abs(c.beds - beds) <= n)
        return check

    within_1, within_2 = beds_within(1), beds_within(2)
    return [
        ("type_and_beds_1", lambda c: same_bucket(c) and within_1(c)),
        ("type_and_beds_2", lambda c: same_bucket(c) and within_2(c)),
        ("type_only", same_bucket),
        ("any", lambda c: True),
    ]


def relax(candidates: list[Contact], ladder, min_results: int) -> tuple[str, list[Contact]]:
    """First rung with at least `min_results` matches, else the broadest rung."""
    name, matched = None, []
    for name, predicate in ladder:
        matched = [c for c in candidates if predicate(c)]
        if len(matched) >= min_results:
            break
    return name, matched


# ----------------------------
# Scorer
# ----------------------------
class ContactScorer:
    def __init__(self, geocache=None, lookup_budget: int | None = None):
        self.geocache = geocache
        self.lookup_budget = settings.GEOCODE_LOOKUP_BUDGET if lookup_budget is None else lookup_budget

    def _coords(self, event_address: str, event_suburb: str | None, candidates: list[Contact]):
        if self.geocache is None:
            return None, {}
        street, parsed_suburb = split_address(event_address)
        event_coords = self.geocache.resolve(street, event_suburb or parsed_suburb or None)
        if event_coords is None:
            return None, {}

        coords, budget = {}, self.lookup_budget
        # street matches score max without a distance; geocode the rest by propensity
        needs = [c for c in candidates
                 if c.address and not keyword_in_street(street_keyword(c.address), street)]
        needs.sort(key=lambda c: -(c.propensity_score or 0))
        for c in needs:
            c_street, c_suburb = split_address(c.address)
            c_suburb = c.suburb or c_suburb or None
            hit = self.geocache.lookup(c_street, c_suburb)
            if hit is None and budget > 0:
                budget -= 1
                hit = self.geocache.resolve(c_street, c_suburb)
            if hit is not None:
                coords[c.id] = hit
        return event_coords, coords

    def score(self, event, candidates: list[Contact], call_history: dict | None = None,
              now=None, limit: int | None = None) -> list[ScoredContact]:
        now = now or now_utc()
        call_history = call_history or {}
        limit = settings.TOP_CONTACTS_LIMIT if limit is None else limit

        candidates = exclude_vendor(event.address, candidates)
        event_coords, coords = self._coords(event.address, event.suburb, candidates)

        scored = []
        for c in candidates:
            geo, reason = geo_score(event.address, c.address, event_coords, coords.get(c.id))
            calls = call_bonus(call_history.get(c.id), now)
            comp = comparable_bonus(event.property_type, event.beds, c.property_type, c.beds)
            propensity = c.propensity_score or 0
            scored.append(ScoredContact(
                contact=c,
                score=propensity + geo + calls + comp,
                breakdown={"propensity": propensity, "geo": geo, "geo_reason": reason,
                           "call": calls, "comparable": comp},
            ))

        # sorted() is stable: ties keep pool order
        scored = sorted(scored, key=lambda s: -s.score)
        return scored[:limit]

    def score_relaxed(self, event, candidates: list[Contact], call_history: dict | None = None,
                      now=None, min_results: int | None = None, limit: int | None = None) -> list[ScoredContact]:
        min_results = settings.RELAX_MIN_RESULTS if min_results is None else min_results
        candidates = exclude_vendor(event.address, candidates)
        rung, matched = relax(candidates, relaxation_ladder(event.property_type, event.beds), min_results)
        logger.info("[score] %s: relaxation stopped at %s with %d candidates", event.address, rung, len(matched))
        return self.score(event, matched, call_history, now=now, limit=limit)


def score_event(db, event, scorer: ContactScorer, relaxed: bool = False, now=None) -> list[ScoredContact]:
    """Build the pool and call history from storage, then rank contacts for `event`."""
    now = now or now_utc()
    pool = build_candidate_pool(db)
    history = call_log.outcomes_within(db, settings.CALL_BONUS_MAX_DAYS, now=now)
    if relaxed:
        return scorer.score_relaxed(event, pool, history, now=now)
    return scorer.score(event, pool, history, now=now)


def dedupe_across_events(event_lists: list[tuple]) -> dict:
    """
    [(event_id, [snapshot, ...]), ...] -> {event_id: [snapshot, ...]}

    Each contact stays only under the event where it scored highest (the
    earlier event wins a tie). Input lists are not modified.
    """
    best = {}
    for idx, (_, contacts) in enumerate(event_lists):
        for c in contacts:
            if c["id"] not in best or c["score"] > best[c["id"]][0]:
                best[c["id"]] = (c["score"], idx)
    return {
        key: [c for c in contacts if best[c["id"]][1] == idx]
        for idx, (key, contacts) in enumerate(event_lists)
    }


_GEOCACHE = None


def default_scorer() -> ContactScorer:
    """Scorer backed by the process-wide geocode cache."""
    global _GEOCACHE
    if _GEOCACHE is None:
        _GEOCACHE = GeocodeCache()
    return ContactScorer(geocache=_GEOCACHE)
