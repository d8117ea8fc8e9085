import re

from django.conf import settings

from .exceptions import ValidationError
from .models import UserType

PHONE_FORMAT_HINT = "a Kenyan mobile number such as 0722000000, 254722000000 or +254722000000"

# Subscriber numbers start with 7 or 1 (Safaricom 07xx / 01xx ranges).
_SUBSCRIBER = r"[17][0-9]{8}"
_PHONE_PATTERNS = (
    re.compile(rf"^\+254({_SUBSCRIBER})$"),
    re.compile(rf"^254({_SUBSCRIBER})$"),
    re.compile(rf"^0({_SUBSCRIBER})$"),
    re.compile(rf"^({_SUBSCRIBER})$"),
)


def normalize_phone_number(phone):
    """Return the canonical +254XXXXXXXXX form or raise ValidationError.

    Accepts 07XXXXXXXX, 2547XXXXXXXX, +2547XXXXXXXX and the bare
    7XXXXXXXX subscriber number. Spaces and dashes are ignored.
    """
    if not isinstance(phone, str):
        raise ValidationError(f"Phone number must be {PHONE_FORMAT_HINT}.")
    cleaned = re.sub(r"[\s-]", "", phone)
    for pattern in _PHONE_PATTERNS:
        match = pattern.match(cleaned)
        if match:
            return f"+254{match.group(1)}"
    raise ValidationError(f"Invalid phone number. Expected {PHONE_FORMAT_HINT}.")


def to_msisdn(phone):
    """Canonical phone number in the digits-only form the gateway expects."""
    return phone.lstrip("+")


def validate_amount(amount):
    if isinstance(amount, bool):
        raise ValidationError("Amount must be a positive whole number.")
    if isinstance(amount, str) and re.fullmatch(r"[0-9]+", amount.strip()):
        amount = int(amount.strip())
    if not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be a positive whole number.")
    if amount > settings.MPESA_MAX_AMOUNT:
        raise ValidationError(f"Amount must not exceed {settings.MPESA_MAX_AMOUNT} KES.")
    return amount


def validate_identifier(value, label):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required.")
    return value.strip()


def validate_user_type(user_type):
    if user_type not in UserType.values:
        raise ValidationError(
            f"userType must be one of: {', '.join(UserType.values)}."
        )
    return user_type
