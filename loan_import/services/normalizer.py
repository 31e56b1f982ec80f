from __future__ import annotations

import re

from ..models.config_models import FieldMappings
from ..models.normalized import NormalizedRecord
from ..models.raw_row import RawRow

"""Rule-based field normalizer.

Every function here is pure. Values that cannot be normalized come back as
None (absent) rather than raising: absence is a data-quality signal that the
quarantine router acts on, never a fatal condition.

Confidence starts at 1.0 and takes independent multiplicative penalties:

    no name resolved                      x 0.7
    neither phone nor NRC resolved        x 0.6
    phone recovered from the email field  x 0.9
    email present but not valid           x 0.9
"""

__all__ = [
    "DEFAULT_COUNTRY_CODE",
    "PHONE_FROM_EMAIL_WARNING",
    "extract_phone_from_email",
    "normalize_address",
    "normalize_email",
    "normalize_full_name",
    "normalize_nrc",
    "normalize_phone",
    "normalize_row",
]

DEFAULT_COUNTRY_CODE = "260"
PHONE_FROM_EMAIL_WARNING = "Phone number extracted from email field"

PENALTY_NO_NAME = 0.7
PENALTY_NO_IDENTIFIER = 0.6
PENALTY_PHONE_FROM_EMAIL = 0.9
PENALTY_INVALID_EMAIL = 0.9

NRC_MIN_LENGTH = 8
NRC_MAX_LENGTH = 20

_NON_PHONE_CHARS = re.compile(r"[^\d+]")
_LOCAL_MOBILE = re.compile(r"^0?([679]\d{8})$")
_EMAIL_SHAPE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_WHITESPACE = re.compile(r"\s+")


def normalize_phone(phone: str | None, country_code: str = DEFAULT_COUNTRY_CODE) -> str | None:
    """Canonicalize a phone number to +<country><9 digits>.

    Accepted shapes after stripping everything but digits and '+':
    +<cc>XXXXXXXXX, <cc>XXXXXXXXX, 0XXXXXXXXX and bare XXXXXXXXX where the
    local number starts with a mobile lead digit (6, 7 or 9).

    Examples:
        >>> normalize_phone("097-654-3210")
        '+260976543210'
        >>> normalize_phone("260 97 123 4567")
        '+260971234567'
        >>> normalize_phone("12345") is None
        True
    """
    if not phone:
        return None
    cleaned = _NON_PHONE_CHARS.sub("", str(phone).strip())
    if not cleaned:
        return None
    intl_prefix = f"+{country_code}"
    if cleaned.startswith(intl_prefix):
        if len(cleaned) == len(intl_prefix) + 9 and cleaned[len(intl_prefix):].isdigit():
            return cleaned
        return None
    if "+" in cleaned:
        return None
    if cleaned.startswith(country_code) and len(cleaned) == len(country_code) + 9:
        return "+" + cleaned
    m = _LOCAL_MOBILE.match(cleaned)
    if m:
        return intl_prefix + m.group(1)
    return None


def extract_phone_from_email(
    email: str | None, country_code: str = DEFAULT_COUNTRY_CODE
) -> tuple[str, str | None]:
    """Pull an embedded phone number out of an email string.

    Returns:
        (cleaned email, normalized phone or None). When nothing phone-shaped is
        found the email is returned with punctuation tidied and phone is None.

    Examples:
        >>> extract_phone_from_email("danny0970842495sakala@gmail.com")
        ('dannysakala@gmail.com', '+260970842495')
    """
    if not email:
        return "", None
    patterns = (
        re.compile(rf"\+?{re.escape(country_code)}[679]\d{{8}}"),
        re.compile(r"0?[679]\d{8}"),
    )
    cleaned = email
    phone: str | None = None
    for pattern in patterns:
        m = pattern.search(email)
        if m:
            phone = normalize_phone(m.group(0), country_code)
            cleaned = pattern.sub("", cleaned)
            break
    cleaned = re.sub(r"\.+", ".", cleaned)
    cleaned = cleaned.replace("@.", "@").replace(".@", "@").strip()
    return cleaned or email, phone


def normalize_email(email: str | None) -> str | None:
    """Lowercase and validate; one repair round before giving up."""
    if not email:
        return None
    cleaned = str(email).strip().lower()
    if _EMAIL_SHAPE.match(cleaned):
        return cleaned
    cleaned = _WHITESPACE.sub("", cleaned)
    cleaned = re.sub(r"\.{2,}", ".", cleaned)
    cleaned = cleaned.replace("@.", "@").replace(".@", "@")
    if _EMAIL_SHAPE.match(cleaned):
        return cleaned
    return None


def normalize_full_name(name: str | None) -> str | None:
    """Trim and title-case each whitespace-delimited token."""
    if not name:
        return None
    tokens = [t[0].upper() + t[1:].lower() for t in _WHITESPACE.split(str(name).strip()) if t]
    return " ".join(tokens) or None


def normalize_nrc(nrc: str | None) -> str | None:
    """Uppercase, drop hyphens and spaces; only 8 to 20 characters are accepted.

    Examples:
        >>> normalize_nrc("123456/10/1")
        '123456/10/1'
        >>> normalize_nrc(" 1234-5678 ")
        '12345678'
    """
    if not nrc:
        return None
    cleaned = re.sub(r"[-\s]", "", str(nrc).strip().upper())
    if NRC_MIN_LENGTH <= len(cleaned) <= NRC_MAX_LENGTH:
        return cleaned
    return None


def normalize_address(address: str | None) -> str | None:
    if not address:
        return None
    stripped = str(address).strip()
    if '"' in stripped:
        # quoted addresses are passed through as written
        return stripped or None
    return _WHITESPACE.sub(" ", stripped) or None


def normalize_row(
    row: RawRow,
    field_mappings: FieldMappings | None = None,
    country_code: str = DEFAULT_COUNTRY_CODE,
) -> NormalizedRecord:
    """Normalize one raw row into a NormalizedRecord.

    Args:
        row: source row from the section splitter
        field_mappings: candidate headers per field, first non-empty wins
        country_code: dialing code used for phone canonicalization

    Returns:
        NormalizedRecord referencing `row`, with confidence in [0, 1]
    """
    mappings = field_mappings or FieldMappings()
    warnings: list[str] = []

    phone_raw = row.first(mappings.phone)
    phone = normalize_phone(phone_raw, country_code)
    if phone_raw and phone is None:
        warnings.append(f"Unrecognized phone format: {phone_raw}")

    email_raw = row.first(mappings.email)
    email = normalize_email(email_raw)
    phone_from_email = False
    if email_raw and phone is None:
        cleaned_email, extracted = extract_phone_from_email(email_raw, country_code)
        if extracted:
            phone = extracted
            email = normalize_email(cleaned_email)
            phone_from_email = True
            warnings.append(PHONE_FROM_EMAIL_WARNING)
    if email_raw and email is None:
        warnings.append(f"Invalid email: {email_raw}")

    full_name = normalize_full_name(row.first(mappings.full_name))

    nrc_raw = row.first(mappings.nrc)
    nrc = normalize_nrc(nrc_raw)
    if nrc_raw and nrc is None:
        warnings.append(f"NRC length out of range: {nrc_raw}")

    address = normalize_address(row.first(mappings.address))

    confidence = 1.0
    if not full_name:
        confidence *= PENALTY_NO_NAME
    if not phone and not nrc:
        confidence *= PENALTY_NO_IDENTIFIER
    if phone_from_email:
        confidence *= PENALTY_PHONE_FROM_EMAIL
    if email_raw and email is None:
        confidence *= PENALTY_INVALID_EMAIL

    return NormalizedRecord(
        source=row,
        phone=phone,
        email=email,
        full_name=full_name,
        nrc=nrc,
        address=address,
        confidence=confidence,
        warnings=tuple(warnings),
        phone_from_email=phone_from_email,
    )
