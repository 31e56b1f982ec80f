from __future__ import annotations

import pytest

from loan_import.models.config_models import FieldMappings
from loan_import.models.raw_row import RawRow
from loan_import.services.normalizer import (
    PHONE_FROM_EMAIL_WARNING,
    extract_phone_from_email,
    normalize_address,
    normalize_email,
    normalize_full_name,
    normalize_nrc,
    normalize_phone,
    normalize_row,
)


def _row(**values: str) -> RawRow:
    return RawRow.from_fields(0, list(values), list(values.values()), section="Customers")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("097-654-3210", "+260976543210"),
        ("0976543210", "+260976543210"),
        ("976543210", "+260976543210"),
        ("260976543210", "+260976543210"),
        ("+260 97 654 3210", "+260976543210"),
        ("(096) 111-2223", "+260961112223"),
        ("0771234567", "+260771234567"),
    ],
)
def test_normalize_phone_accepted_shapes(raw, expected):
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", ["12345", "0211234567", "+27821234567", "", None, "phone", "+2609712345678"])
def test_normalize_phone_rejects_other_shapes(raw):
    assert normalize_phone(raw) is None


@pytest.mark.parametrize("raw", ["097-654-3210", "+260976543210", "0961112223"])
def test_normalize_phone_is_idempotent(raw):
    once = normalize_phone(raw)
    assert normalize_phone(once) == once


def test_normalize_phone_other_country_code():
    assert normalize_phone("0712345678", country_code="254") == "+254712345678"


def test_extract_phone_from_email():
    cleaned, phone = extract_phone_from_email("danny0970842495sakala@gmail.com")
    assert phone == "+260970842495"
    assert cleaned == "dannysakala@gmail.com"


def test_extract_phone_with_international_prefix_and_dots():
    cleaned, phone = extract_phone_from_email("mary.260961112223.phiri@mail.com")
    assert phone == "+260961112223"
    assert cleaned == "mary.phiri@mail.com"


def test_extract_phone_from_email_without_phone():
    assert extract_phone_from_email("plain@example.com") == ("plain@example.com", None)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("John@Example.COM", "john@example.com"),
        ("  John@Example.com ", "john@example.com"),
        ("john banda@example.com", "johnbanda@example.com"),
        ("john banda.@example.com", "johnbanda@example.com"),
        ("not-an-email", None),
        ("", None),
    ],
)
def test_normalize_email(raw, expected):
    assert normalize_email(raw) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("john   BANDA", "John Banda"),
        ("  mary phiri ", "Mary Phiri"),
        ("", None),
    ],
)
def test_normalize_full_name(raw, expected):
    assert normalize_full_name(raw) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("123456/10/1", "123456/10/1"),
        ("abc-123 456", "ABC123456"),
        ("1234567", None),
        ("1" * 21, None),
    ],
)
def test_normalize_nrc(raw, expected):
    assert normalize_nrc(raw) == expected


def test_normalize_address():
    assert normalize_address("  Plot 5   Kabulonga  ") == "Plot 5 Kabulonga"
    assert normalize_address('"Plot  5"') == '"Plot  5"'
    assert normalize_address("") is None


def test_normalize_row_clean_record_has_full_confidence():
    record = normalize_row(_row(Name="john banda", Phone="097-654-3210", Email="John@Example.com", NRC="234567/11/1"))
    assert record.full_name == "John Banda"
    assert record.phone == "+260976543210"
    assert record.email == "john@example.com"
    assert record.nrc == "234567/11/1"
    assert record.confidence == 1.0
    assert record.warnings == ()


def test_normalize_row_extracts_phone_from_email():
    record = normalize_row(_row(Name="Danny Sakala", Email="danny0970842495sakala@gmail.com"))
    assert record.phone == "+260970842495"
    assert record.email == "dannysakala@gmail.com"
    assert PHONE_FROM_EMAIL_WARNING in record.warnings
    assert record.phone_from_email is True
    assert record.confidence == pytest.approx(0.9)


def test_normalize_row_penalties_multiply():
    record = normalize_row(_row(Email="broken"))
    # no name x0.7, no phone/NRC x0.6, invalid email x0.9
    assert record.confidence == pytest.approx(0.7 * 0.6 * 0.9)
    assert "Invalid email: broken" in record.warnings


def test_normalize_row_reports_unrecognized_phone_and_bad_nrc():
    record = normalize_row(_row(Name="A Banda", Phone="12345", NRC="12"))
    assert record.phone is None
    assert record.nrc is None
    assert "Unrecognized phone format: 12345" in record.warnings
    assert "NRC length out of range: 12" in record.warnings


def test_normalize_row_uses_custom_field_mappings():
    mappings = FieldMappings.from_mapping({"phone": ["Cell"]})
    record = normalize_row(_row(Name="A Banda", Cell="0971234567"), mappings)
    assert record.phone == "+260971234567"


def test_normalize_row_keeps_source_reference():
    row = _row(Name="A Banda", Phone="0971234567")
    assert normalize_row(row).source is row


@pytest.mark.parametrize(
    "values",
    [
        {},
        {"Name": "x"},
        {"Email": "a@b"},
        {"Phone": "garbage", "NRC": "?", "Email": "??"},
        {"Name": "A Banda", "Phone": "0971234567", "NRC": "123456/10/1"},
    ],
)
def test_confidence_always_within_unit_interval(values):
    record = normalize_row(_row(**values) if values else RawRow.from_fields(0, [], []))
    assert 0.0 <= record.confidence <= 1.0
