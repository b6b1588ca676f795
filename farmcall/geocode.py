"""
Persistent geocode cache in front of a rate-limited external geocoder.

Lookups hit the in-memory map first (by street part, then "street, suburb").
A miss issues one request to the provider, paced to at most one request per
GEOCODER_MIN_INTERVAL seconds with a single request in flight. Hits are written
to the geocode_cache table before they are returned; failures return None and
are not cached so a later run can retry.
"""
import json
import logging
import math
import threading
import time
from datetime import timedelta
from pathlib import Path

import requests

from .config import settings
from .db import SessionLocal
from .models import GeocodeCacheEntry
from .timeutil import now_utc

logger = logging.getLogger(__name__)

# provider url -> (lock, [last request monotonic time])
_PROVIDER_STATE: dict[str, tuple[threading.Lock, list]] = {}
_STATE_LOCK = threading.Lock()


def _provider_state(url: str):
    with _STATE_LOCK:
        if url not in _PROVIDER_STATE:
            _PROVIDER_STATE[url] = (threading.Lock(), [0.0])
        return _PROVIDER_STATE[url]


class NominatimGeocoder:
    """One lookup at a time per provider, with a minimum gap between requests."""

    def __init__(self, url: str | None = None, user_agent: str | None = None,
                 min_interval: float | None = None, timeout: float | None = None,
                 session: requests.Session | None = None, sleep=time.sleep, monotonic=time.monotonic):
        self.url = url or settings.GEOCODER_URL
        self.user_agent = user_agent or settings.GEOCODER_USER_AGENT
        self.min_interval = max(1.0, min_interval if min_interval is not None else settings.GEOCODER_MIN_INTERVAL)
        self.timeout = timeout if timeout is not None else settings.GEOCODER_TIMEOUT
        self.session = session or requests.Session()
        self._sleep = sleep
        self._monotonic = monotonic

    def fetch(self, query: str) -> dict | None:
        lock, last = _provider_state(self.url)
        with lock:
            wait = self.min_interval - (self._monotonic() - last[0])
            if wait > 0:
                self._sleep(wait)
            try:
                resp = self.session.get(
                    self.url,
                    params={"format": "json", "q": query, "limit": 1},
                    headers={"User-Agent": self.user_agent},
                    timeout=self.timeout,
                )
                resp.raise_for_status()
                rows = resp.json()
            except (requests.RequestException, ValueError) as e:
                logger.warning("[geocode] lookup failed for %r: %s", query, e)
                return None
            finally:
                last[0] = self._monotonic()

        if not isinstance(rows, list):
            logger.warning("[geocode] unexpected response for %r: %r", query, rows)
            return None
        if not rows:
            logger.info("[geocode] no match for %r", query)
            return None
        try:
            return {"lat": float(rows[0]["lat"]), "lon": float(rows[0]["lon"])}
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("[geocode] malformed result for %r: %s", query, e)
            return None


class GeocodeCache:
    def __init__(self, session_factory=SessionLocal, geocoder=None,
                 ttl_seconds: int | None = None, clock=now_utc):
        self.session_factory = session_factory
        self.geocoder = geocoder or NominatimGeocoder()
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else settings.GEOCODE_CACHE_TTL_SECONDS)
        self.clock = clock
        self.entries: dict[str, dict] = {}
        self.loaded_at = None
        self.lookups = 0

    def is_stale(self, now=None) -> bool:
        if self.loaded_at is None:
            return True
        return (now or self.clock()) - self.loaded_at >= self.ttl

    def reload(self):
        db = self.session_factory()
        try:
            rows = db.query(GeocodeCacheEntry).all()
            self.entries = {r.address_key: {"lat": r.lat, "lon": r.lon} for r in rows}
        finally:
            db.close()
        self.loaded_at = self.clock()
        logger.debug("[geocode] loaded %d cached addresses", len(self.entries))

    @staticmethod
    def keys_for(street: str, suburb: str | None) -> list[str]:
        street = (street or "").strip()
        keys = [street]
        if suburb:
            keys.append(f"{street}, {suburb.strip()}")
        return keys

    def lookup(self, street: str, suburb: str | None = None) -> dict | None:
        """Cache-only read; never touches the network."""
        if self.is_stale():
            self.reload()
        for key in self.keys_for(street, suburb):
            if key in self.entries:
                return self.entries[key]
        return None

    def resolve(self, street: str, suburb: str | None = None) -> dict | None:
        if not (street or "").strip():
            return None
        hit = self.lookup(street, suburb)
        if hit is not None:
            return hit

        query = ", ".join(p for p in (street, suburb, settings.STATE, "Australia") if p)
        self.lookups += 1
        coords = self.geocoder.fetch(query)
        if coords is None:
            return None

        key = self.keys_for(street, suburb)[0]
        self._persist(key, coords)
        self.entries[key] = coords
        return coords

    def _persist(self, key: str, coords: dict):
        db = self.session_factory()
        try:
            db.merge(GeocodeCacheEntry(address_key=key, lat=coords["lat"], lon=coords["lon"], fetched_at=self.clock()))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def import_json(self, path: str) -> int:
        """Seed the table from a legacy {address: {lat, lon}} JSON file; existing keys win."""
        data = json.loads(Path(path).read_text())
        db = self.session_factory()
        added = 0
        try:
            existing = {k for (k,) in db.query(GeocodeCacheEntry.address_key).all()}
            for key, coords in data.items():
                if key in existing or not coords:
                    continue
                db.add(GeocodeCacheEntry(address_key=key, lat=float(coords["lat"]), lon=float(coords["lon"])))
                existing.add(key)
                added += 1
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        self.reload()
        return added


def haversine_m(a: dict, b: dict) -> float:
    r = 6371e3
    phi1, phi2 = math.radians(a["lat"]), math.radians(b["lat"])
    dphi = math.radians(b["lat"] - a["lat"])
    dlmb = math.radians(b["lon"] - a["lon"])
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return r * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
