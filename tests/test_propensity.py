import pytest

from farmcall.briefing import build_angle, build_intel
from farmcall.models import Contact, MarketEvent
from farmcall.propensity import compute_propensity, recompute_all


@pytest.mark.parametrize("fields, expected", [
    ({}, 0),
    ({"tenure_years": 7}, 0),
    ({"tenure_years": 8}, 22),
    ({"tenure_years": 30}, 40),
    ({"appraisal_count": 2}, 30),
    ({"occupancy": "investor"}, 15),
    ({"contact_class": "Past Vendor"}, 25),
    ({"contact_class": "Prospective Vendor"}, 15),
    ({"tenure_years": 9, "appraisal_count": 1, "occupancy": "investor", "contact_class": "vendor"}, 24 + 30 + 15 + 25),
])
def test_compute_propensity(fields, expected):
    assert compute_propensity(Contact(id="x", name="x", **fields)) == expected


def test_recompute_all_updates_changed_rows(db, make_contact):
    stale = make_contact(tenure_years=12, propensity_score=0)
    current = make_contact(appraisal_count=1, propensity_score=30)

    assert recompute_all(db) == 1
    assert db.get(Contact, stale.id).propensity_score == 30
    assert db.get(Contact, current.id).propensity_score == 30


def test_briefing_text():
    c = Contact(id="x", name="x", tenure_years=None, occupancy="owner-occupied", appraisal_count=1)
    assert build_intel(c) == "Unknown tenure owned | owner-occupied | 1 past appraisal"
    assert build_angle(c) == ("Appraised before, worth revisiting where the market sits now. "
                              "Offer a no-pressure market update.")

    ev = MarketEvent(address="23 WALLACE ST, WILLOUGHBY", type="sold", price="$2.1m", confirmed_price="$2,150,000")
    assert build_angle(c, ev).startswith("A property nearby at 23 WALLACE ST, WILLOUGHBY just sold ($2,150,000).")
