from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any, Callable, Mapping, Optional

from dateutil.relativedelta import relativedelta


# PAN/VAT numbers are capped at 14 characters on every form
MAX_TAX_ID_LENGTH = 14
MAX_CITIZENSHIP_ID_LENGTH = 20
PHONE_DIGITS = 10
MINIMUM_MEMBER_AGE_YEARS = 18

SUBSCRIPTION_DURATIONS = ("6months", "12months")
GENDERS = ("Male", "Female", "Other")

_ORG_NAME_RE = re.compile(r"^[A-Za-z\s]+$")
_PERSON_NAME_RE = re.compile(r"^[A-Za-z\s.'-]+$")
_EMAIL_RE = re.compile(r"^[A-Za-z0-9._-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
_TAX_ID_CREATE_RE = re.compile(r"^[A-Za-z0-9]*$")
_TAX_ID_EDIT_RE = re.compile(r"^\d*$")
_CITIZENSHIP_ID_RE = re.compile(r"^[A-Za-z0-9-]+$")
_NON_DIGITS_RE = re.compile(r"\D")
_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")

Validator = Callable[[Any], Optional[str]]


class ValidationError(ValueError):
    """
    400-level input problem.

    Carries the offending field and a field->message map so callers can
    surface every problem at once.
    """

    def __init__(self, field: str | None, message: str, errors: Mapping[str, str] | None = None):
        super().__init__(message)
        self.field = field
        self.message = message
        if errors is None:
            errors = {field: message} if field else {}
        self.errors = dict(errors)


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate member email)."""

    def __init__(self, field: str | None, message: str):
        super().__init__(message)
        self.field = field
        self.message = message
        self.errors = {field: message} if field else {}


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def validate_org_name(value: Any) -> Optional[str]:
    name = _text(value)
    if not name:
        return "Organization name is required"
    if not _ORG_NAME_RE.match(name):
        return "Organization name can only contain letters and spaces"
    return None


def validate_person_name(value: Any) -> Optional[str]:
    name = _text(value)
    if not name:
        return "Name is required"
    if not _PERSON_NAME_RE.match(name):
        return "Name can only contain letters, spaces, apostrophes, hyphens, and periods"
    return None


def validate_email(value: Any) -> Optional[str]:
    email = _text(value)
    if not email:
        return "Email is required"
    if not _EMAIL_RE.match(email):
        return "Please enter a valid email address"
    return None


def format_phone(value: Any) -> str:
    return _NON_DIGITS_RE.sub("", _text(value))


def validate_phone(value: Any) -> Optional[str]:
    if not _text(value):
        return "Phone number is required"
    if len(format_phone(value)) != PHONE_DIGITS:
        return "Phone number must be 10 digits."
    return None


def format_tax_id_create(value: Any) -> str:
    return _NON_ALNUM_RE.sub("", _text(value)).upper()[:MAX_TAX_ID_LENGTH]


def validate_tax_id_create(value: Any) -> Optional[str]:
    """
    PAN/VAT rule used when an organization is registered.

    Letters are accepted (and uppercased by format_tax_id_create).
    Kept apart from validate_tax_id_edit on purpose: the edit flow only
    accepts digits, and nobody has confirmed whether that difference is
    intended.
    """
    tax_id = _text(value)
    if not tax_id:
        return None
    if len(tax_id) > MAX_TAX_ID_LENGTH:
        return "PAN/VAT must be 14 characters or less"
    if not _TAX_ID_CREATE_RE.match(tax_id):
        return "PAN/VAT can only contain letters and digits"
    return None


def format_tax_id_edit(value: Any) -> str:
    return _NON_DIGITS_RE.sub("", _text(value))[:MAX_TAX_ID_LENGTH]


def validate_tax_id_edit(value: Any) -> Optional[str]:
    """PAN/VAT rule used when an existing organization or member profile is edited."""
    tax_id = _text(value)
    if not tax_id:
        return None
    if len(tax_id) > MAX_TAX_ID_LENGTH:
        return "PAN/VAT must be 14 characters or less"
    if not _TAX_ID_EDIT_RE.match(tax_id):
        return "PAN/VAT can only contain digits"
    return None


def validate_citizenship_id(value: Any) -> Optional[str]:
    citizenship_id = _text(value)
    if not citizenship_id:
        return "Citizenship number is required"
    if len(citizenship_id) > MAX_CITIZENSHIP_ID_LENGTH or not _CITIZENSHIP_ID_RE.match(citizenship_id):
        return "Citizenship number is invalid (max 20, alphanumeric/-)"
    return None


def coerce_coordinate(value: Any) -> Optional[float]:
    """Return the coordinate as a finite float, or None when it is not one."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(_text(value))
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    return number


def _coordinate_validator(label: str) -> Validator:
    def validate(value: Any) -> Optional[str]:
        if coerce_coordinate(value) is None:
            return f"{label} must be a valid number"
        return None
    validate.__name__ = f"validate_{label.lower()}"
    return validate


# Latitude and longitude are checked independently and never range-checked
validate_latitude = _coordinate_validator("Latitude")
validate_longitude = _coordinate_validator("Longitude")


def validate_address(value: Any) -> Optional[str]:
    if not _text(value):
        return "Address is required"
    return None


def validate_subscription_type(value: Any) -> Optional[str]:
    if _text(value) not in SUBSCRIPTION_DURATIONS:
        return f"Subscription type must be one of: {', '.join(SUBSCRIPTION_DURATIONS)}"
    return None


def validate_deactivation_reason(value: Any) -> Optional[str]:
    if not _text(value):
        return "Deactivation reason is required"
    return None


def validate_gender(value: Any) -> Optional[str]:
    gender = _text(value)
    if gender and gender not in GENDERS:
        return f"Gender must be one of: {', '.join(GENDERS)}"
    return None


def validate_date_of_birth(value: Any, *, today: date) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dob = value.date()
    elif isinstance(value, date):
        dob = value
    else:
        try:
            dob = date.fromisoformat(_text(value))
        except ValueError:
            return "Date of birth must be a valid date (YYYY-MM-DD)"
    if dob + relativedelta(years=MINIMUM_MEMBER_AGE_YEARS) > today:
        return "User must be at least 18 years old"
    return None


def collect_errors(values: Mapping[str, Any], rules: Mapping[str, Validator]) -> dict[str, str]:
    """
    Run every rule against its field and return the field->error map.

    Missing fields are validated as None so required-field rules fire.
    An empty map means the values may be submitted.
    """
    errors: dict[str, str] = {}
    for field_name, rule in rules.items():
        message = rule(values.get(field_name))
        if message:
            errors[field_name] = message
    return errors


def address_link(latitude: float, longitude: float) -> str:
    """Map link derived from the coordinates; never stored independently."""
    return f"https://maps.google.com/?q={latitude},{longitude}"
