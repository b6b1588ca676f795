import itertools
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from farmcall.db import init_db, make_engine
from farmcall.geocode import GeocodeCache
from farmcall.models import Contact
from farmcall.scoring import ContactScorer

NOW = datetime(2025, 3, 1, 9, 0, 0)


class FakeGeocoder:
    """Answers queries whose text starts with a known street; records every call."""

    def __init__(self, coords=None):
        self.coords = {k.upper(): v for k, v in (coords or {}).items()}
        self.queries = []

    def fetch(self, query):
        self.queries.append(query)
        q = query.upper()
        for street, coords in self.coords.items():
            if q.startswith(street):
                return coords
        return None


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def geocache(session_factory, geocoder):
    return GeocodeCache(session_factory=session_factory, geocoder=geocoder, clock=lambda: NOW)


@pytest.fixture
def scorer():
    # no geocoder: geo falls back to street and avenue matching
    return ContactScorer(geocache=None)


@pytest.fixture
def make_contact(db):
    counter = itertools.count(1)

    def _make(**fields):
        n = next(counter)
        values = dict(
            id=f"c{n:03d}",
            name=f"Contact {n}",
            phone=f"04{n:08d}",
            suburb="Willoughby",
            source="crm",
            occupancy="unknown",
            do_not_call=False,
            appraisal_count=0,
            propensity_score=0,
            created_at=NOW - timedelta(days=365) + timedelta(seconds=n),
        )
        values.update(fields)
        contact = Contact(**values)
        db.add(contact)
        db.commit()
        return contact

    return _make
