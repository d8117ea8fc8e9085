import pytest

from payments.exceptions import ValidationError
from payments.validators import (
    normalize_phone_number,
    to_msisdn,
    validate_amount,
    validate_identifier,
    validate_user_type,
)


@pytest.mark.parametrize("raw", [
    "0722000000",
    "254722000000",
    "+254722000000",
    "722000000",
    "0722 000 000",
    "+254-722-000-000",
])
def test_accepted_shapes_normalize_to_same_number(raw):
    assert normalize_phone_number(raw) == "+254722000000"


def test_airtel_and_safaricom_01_ranges_accepted():
    assert normalize_phone_number("0110123456") == "+254110123456"
    assert normalize_phone_number("254110123456") == "+254110123456"


@pytest.mark.parametrize("raw", [
    "",
    "072200000",        # too short
    "07220000000",      # too long
    "2547220000001",
    "0822000000",       # not a mobile range
    "255722000000",     # another country code
    "+1722000000",
    "07220000ab",
    "phone",
    None,
    722000000,
])
def test_invalid_phone_numbers_rejected(raw):
    with pytest.raises(ValidationError) as exc:
        normalize_phone_number(raw)
    assert "0722000000" in str(exc.value)


def test_msisdn_drops_plus():
    assert to_msisdn("+254722000000") == "254722000000"


@pytest.mark.parametrize("raw,expected", [(1, 1), (2000, 2000), ("2000", 2000), (" 15 ", 15)])
def test_valid_amounts(raw, expected):
    assert validate_amount(raw) == expected


@pytest.mark.parametrize("raw", [0, -5, 10.5, "10.5", "abc", "", None, True, "-3", 250001, 10**19, "10000000000000000000"])
def test_invalid_amounts(raw):
    with pytest.raises(ValidationError):
        validate_amount(raw)


def test_amount_ceiling_follows_settings(settings):
    settings.MPESA_MAX_AMOUNT = 70000
    assert validate_amount(70000) == 70000
    with pytest.raises(ValidationError, match="70000"):
        validate_amount("70001")


def test_identifier_is_stripped_and_required():
    assert validate_identifier("  P-001 ", "userId") == "P-001"
    with pytest.raises(ValidationError, match="userId is required"):
        validate_identifier("   ", "userId")
    with pytest.raises(ValidationError):
        validate_identifier(None, "plan")


def test_user_type_must_be_known():
    assert validate_user_type("doctor") == "doctor"
    with pytest.raises(ValidationError, match="patient, doctor"):
        validate_user_type("admin")
