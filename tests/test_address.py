import pytest

from farmcall.address import (
    address_key, avenue_ordinal, categorize_property_type, is_farm_suburb,
    keyword_in_street, normalize, normalize_suburb, split_address, street_keyword, street_part,
)


def test_unit_address_variants_share_one_key():
    assert normalize("26/166 Mowbray Road") == normalize("26/166 MOWBRAY RD")
    assert normalize("26/166 Mowbray Road") == "26/166 MOWBRAY RD"


@pytest.mark.parametrize("raw", [
    "23 Wallace Street, Willoughby",
    "23 Wallace St, Willoughby NSW 2068",
    "41 Tyneside Avenue Willoughby",
    "  7 / 12  The Crescent ,  Chatswood ",
    "Unit 4 9 Second Ave, North Willoughby",
])
def test_normalize_is_idempotent(raw):
    once = normalize(raw)
    assert normalize(once) == once


def test_state_and_postcode_are_dropped():
    assert normalize("23 Wallace Street, Willoughby NSW 2068") == "23 WALLACE ST, WILLOUGHBY"


def test_known_suburb_split_without_comma():
    assert split_address("41 Tyneside Avenue Willoughby") == ("41 TYNESIDE AVE", "WILLOUGHBY")


def test_street_part_ignores_suburb():
    assert street_part("41 Tyneside Avenue, Willoughby") == street_part("41 TYNESIDE AVE")


def test_street_keyword_strips_unit_and_type():
    assert street_keyword("26/166 Mowbray Road, Willoughby") == "MOWBRAY"
    assert street_keyword("Unit 3/14 Penshurst Street") == "PENSHURST"


def test_keyword_needs_word_boundary():
    assert keyword_in_street("MOWBRAY", "166 MOWBRAY RD")
    assert not keyword_in_street("BRAY", "166 MOWBRAY RD")
    assert not keyword_in_street("ST", "1 ST JOHNS AVE")


def test_avenue_ordinal():
    assert avenue_ordinal("9 Second Avenue, Willoughby") == 2
    assert avenue_ordinal("3 5th Ave") == 5
    assert avenue_ordinal("9 Second Street") is None


def test_suburb_aliases_fold():
    assert normalize_suburb("North Willoughby") == "WILLOUGHBY"
    assert is_farm_suburb("willoughby east")
    assert not is_farm_suburb("Bondi")
    assert not is_farm_suburb(None)


def test_address_key_uses_suburb_argument():
    assert address_key("5 Frenchs Road", "Willoughby") == address_key("5 Frenchs Rd, North Willoughby")


def test_categorize_property_type():
    assert categorize_property_type("Semi-detached") == "House"
    assert categorize_property_type("Apartment") == "Unit"
    assert categorize_property_type("Vacant land") == "Other"
    assert categorize_property_type(None) is None


@pytest.mark.parametrize("raw", [
    "Unit 5, 10 Smith Street",
    "Unit 5, 10 Smith St",
    "unit 5 10 smith st",
    "5/10 Smith Street",
])
def test_unit_comma_form_folds_to_slash(raw):
    assert split_address(raw) == ("5/10 SMITH ST", "")
    assert street_keyword(raw) == "SMITH"


def test_unit_comma_form_keeps_trailing_suburb():
    assert split_address("Unit 5, 10 Smith Street, Chatswood") == ("5/10 SMITH ST", "CHATSWOOD")
    assert normalize("Unit 5, 10 Smith Street, Chatswood") == normalize("5/10 Smith St, Chatswood")


def test_segment_starting_with_number_is_not_a_suburb():
    assert split_address("Level 2, 10 Smith Street") == ("LEVEL 2 10 SMITH ST", "")
    assert split_address("Level 2, 10 Smith Street Willoughby") == ("LEVEL 2 10 SMITH ST", "WILLOUGHBY")


def test_unit_prefix_with_street_number_is_stripped():
    assert street_keyword("Unit 4 9 Second Ave, North Willoughby") == "SECOND"
    assert avenue_ordinal("Unit 4 9 Second Ave, North Willoughby") == 2
