from __future__ import annotations

import pytest

from loan_import.models.enums import ImportType, SectionType
from loan_import.models.file_section import IMPLICIT_SECTION_NAME
from loan_import.parsing.sections import (
    describe_section,
    detect_import_type,
    infer_type_from_headers,
    infer_type_from_name,
    section_to_csv,
    split_sections,
)


def test_borrowers_then_loans_split_into_two_typed_sections(mixed_csv):
    sections = split_sections(mixed_csv)
    assert [s.name for s in sections] == ["BORROWERS", "LOANS"]
    assert [s.inferred_type for s in sections] == [SectionType.CUSTOMERS, SectionType.LOANS]
    assert sections[0].row_count == 2
    assert sections[1].row_count == 2


def test_rows_keep_literal_headers_and_aliases(mixed_csv):
    borrowers = split_sections(mixed_csv)[0]
    row = borrowers.rows[0]
    assert row.get("Full Name") == "john banda"
    assert row.get("fullname") == "john banda"
    assert row.original() == {
        "Full Name": "john banda",
        "Phone": "097-654-3210",
        "Email": "john@example.com",
        "NRC": "234567/11/1",
    }
    assert row.line_number == 3
    assert row.section == "BORROWERS"


def test_file_without_delimiters_is_one_implicit_section():
    sections = split_sections("Name,Phone\nJohn Banda,0976543210\n")
    assert len(sections) == 1
    assert sections[0].name == IMPLICIT_SECTION_NAME
    assert sections[0].inferred_type is SectionType.CUSTOMERS
    assert sections[0].row_count == 1


def test_empty_file_is_one_empty_section():
    sections = split_sections("")
    assert len(sections) == 1
    assert sections[0].row_count == 0
    assert sections[0].headers == ()


def test_lines_before_first_delimiter_are_recorded_as_dropped():
    text = "exported 2024-01-01\n=== Customers ===\nName,Phone\nA Banda,0971234567\n"
    sections = split_sections(text)
    assert len(sections) == 1
    dropped = sections[0].dropped_lines
    assert len(dropped) == 1
    assert dropped[0].line_number == 1
    assert dropped[0].reason == "outside any section"


def test_short_rows_are_dropped_with_an_audit_entry():
    text = "=== Customers ===\nName,Phone,Email,NRC\nonly-one-field\nA Banda,0971234567,,\n"
    section = split_sections(text)[0]
    assert section.row_count == 1
    assert len(section.dropped_lines) == 1
    assert section.dropped_lines[0].text == "only-one-field"


def test_quoted_field_may_span_lines():
    text = 'Name,Address,Phone\nA Banda,"Plot 5\nKabulonga",0971234567\n'
    section = split_sections(text)[0]
    assert section.row_count == 1
    assert section.rows[0].get("Address") == "Plot 5\nKabulonga"
    assert section.rows[0].get("Phone") == "0971234567"


def test_two_equals_delimiter_and_bom_are_accepted():
    text = "\ufeff== Loan Book ==\nAmount,Rate\n100,5\n"
    sections = split_sections(text)
    assert sections[0].name == "Loan Book"
    assert sections[0].inferred_type is SectionType.LOANS


@pytest.mark.parametrize(
    "name, expected",
    [
        ("BORROWERS", SectionType.CUSTOMERS),
        ("Client list", SectionType.CUSTOMERS),
        ("Loans 2024", SectionType.LOANS),
        ("Branch Offices", SectionType.BRANCHES),
        ("Payments", SectionType.TRANSACTIONS),
        ("Sheet1", SectionType.UNKNOWN),
    ],
)
def test_infer_type_from_name(name, expected):
    assert infer_type_from_name(name) is expected


@pytest.mark.parametrize(
    "headers, expected",
    [
        (["Borrower Name", "Amount", "Interest Rate"], SectionType.LOANS),
        (["Customer", "Phone"], SectionType.CUSTOMERS),
        (["Name", "Mobile"], SectionType.CUSTOMERS),
        (["Branch Code", "City"], SectionType.BRANCHES),
        (["Transaction Ref", "Value"], SectionType.TRANSACTIONS),
        (["a", "b"], SectionType.UNKNOWN),
    ],
)
def test_infer_type_from_headers(headers, expected):
    assert infer_type_from_headers(headers) is expected


def test_unknown_named_section_falls_back_to_headers():
    text = "=== Sheet1 ===\nName,Phone\nA Banda,0971234567\n"
    assert split_sections(text)[0].inferred_type is SectionType.CUSTOMERS


def test_detect_import_type(mixed_csv):
    assert detect_import_type(split_sections(mixed_csv)) is ImportType.MIXED
    assert detect_import_type(split_sections("=== Loans ===\nAmount,Rate\n1,2\n")) is ImportType.LOANS
    assert detect_import_type(split_sections("a,b\n1,2\n")) is ImportType.CUSTOMERS


def test_describe_section(mixed_csv):
    borrowers, loans = split_sections(mixed_csv)
    assert describe_section(borrowers) == "Borrowers - 2 rows"
    assert describe_section(loans) == "Loans - 2 rows"
    single = split_sections("=== Customers ===\nName,Phone\nA Banda,0971234567\n")[0]
    assert describe_section(single) == "Borrowers - 1 row"


def test_section_to_csv_requotes_values():
    text = '=== Customers ===\nName,Address\nA Banda,"Plot 5, Kabulonga"\n'
    section = split_sections(text)[0]
    assert section_to_csv(section) == 'Name,Address\nA Banda,"Plot 5, Kabulonga"'


def test_quoted_edge_whitespace_survives_the_raw_row():
    text = '=== Customers ===\nName,Address\nA Banda," Plot 5 "\n'
    section = split_sections(text)[0]
    (row,) = section.rows
    assert row.original() == {"Name": "A Banda", "Address": " Plot 5 "}
    assert row.first(["Address"]) == "Plot 5"
    assert section_to_csv(section) == 'Name,Address\nA Banda," Plot 5 "'
