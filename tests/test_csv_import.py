from datetime import date

import pandas as pd

from farmcall.csv_import import contact_id_for, import_contacts, normalize_cols
from farmcall.models import Contact

TODAY = date(2025, 3, 1)


def _frame(rows):
    return pd.DataFrame(rows)


def test_headers_map_case_insensitively():
    df = normalize_cols(pd.DataFrame(columns=["Full Name", " MOBILE ", "Street Address", "Owner Type", "Other"]))
    assert list(df.columns) == ["name", "phone", "address", "occupancy", "Other"]


def test_import_inserts_and_scores(db):
    df = _frame([
        {"Contact ID": "ab-1", "Name": "Alice", "Mobile": "0412 345 678", "Address": "3 Penshurst Street",
         "Suburb": "Willoughby", "Class": "Prospective Vendor", "Tenure": "10", "Appraisals": "1",
         "Owner Type": "Investor", "Beds": "4", "Property Type": "House"},
        {"Name": "Bob", "Phone": "(02) 9958 1234", "Address": "8 Oak St", "Suburb": "Chatswood",
         "Sale Date": "15/06/2012", "Owner Type": "Owner Occupied"},
    ])

    report = import_contacts(db, df, source="crm", today=TODAY)

    assert (report.inserted, report.skipped) == (2, 0)
    alice = db.get(Contact, "ab-1")
    assert alice.occupancy == "investor"
    assert alice.propensity_score == (20 + 6) + 30 + 15 + 15
    bob = db.get(Contact, contact_id_for("(02) 9958 1234"))
    assert bob.id == "ph-0299581234"
    assert bob.tenure_years == 13
    assert bob.occupancy == "owner-occupied"
    assert bob.propensity_score == 20 + 12


def test_rows_without_usable_phone_are_skipped(db):
    df = _frame([
        {"Name": "No Phone", "Address": "1 Oak St"},
        {"Name": "Short", "Phone": "1234", "Address": "2 Oak St"},
        {"Name": "Ok", "Phone": "0400000001"},
    ])
    report = import_contacts(db, df, today=TODAY)
    assert (report.inserted, report.skipped) == (1, 2)
    assert db.query(Contact).count() == 1


def test_reimport_updates_by_id(db):
    import_contacts(db, _frame([{"ID": "x1", "Name": "Carol", "Phone": "0400000002", "DNC": "no"}]), today=TODAY)
    report = import_contacts(db, _frame([{"ID": "x1", "Phone": "0400000002", "DNC": "yes", "Beds": "3"}]),
                             today=TODAY)

    assert (report.inserted, report.updated) == (0, 1)
    carol = db.get(Contact, "x1")
    assert carol.name == "Carol"
    assert carol.do_not_call is True
    assert carol.beds == 3


def test_source_column_overrides_default(db):
    import_contacts(db, _frame([{"Phone": "0400000003", "Source": "rp_data"}]), source="crm", today=TODAY)
    assert db.query(Contact).one().source == "rp_data"
