from __future__ import annotations

import pytest

from loan_import.parsing.csv_line import encode_csv_line, parse_csv_line, quote_count_is_odd


def test_plain_fields_are_split_and_trimmed():
    assert parse_csv_line(" a , b,c ") == ["a", "b", "c"]


def test_quoted_comma_stays_literal():
    assert parse_csv_line('John,"Plot 5, Kabulonga",Lusaka') == ["John", "Plot 5, Kabulonga", "Lusaka"]


def test_doubled_quote_is_one_literal_quote():
    assert parse_csv_line('"say ""hi""",x') == ['say "hi"', "x"]


def test_doubled_quote_closing_a_field_after_padding():
    assert parse_csv_line('a, "b,c" ,"say ""hi"""') == ["a", "b,c", 'say "hi"']


def test_module_docstring_examples():
    import doctest

    from loan_import.parsing import csv_line

    failures, attempted = doctest.testmod(csv_line)
    assert attempted > 0
    assert failures == 0


def test_trailing_comma_yields_empty_field():
    assert parse_csv_line("a,b,") == ["a", "b", ""]


def test_empty_line_is_one_empty_field():
    assert parse_csv_line("") == [""]


def test_quoted_whitespace_is_preserved():
    assert parse_csv_line('"  padded  ",x') == ["  padded  ", "x"]


def test_quoted_newline_is_literal():
    assert parse_csv_line('"line one\nline two",b') == ["line one\nline two", "b"]


@pytest.mark.parametrize(
    "line",
    [
        '"unterminated,field',
        'a"b,c',
        '"closed"trailing,x',
        ',,,',
        '"""',
    ],
)
def test_malformed_input_never_raises(line):
    fields = parse_csv_line(line)
    assert isinstance(fields, list)
    assert all(isinstance(f, str) for f in fields)


@pytest.mark.parametrize(
    "fields",
    [
        ["John Banda", "+260976543210", "john@example.com"],
        ["Plot 5, Kabulonga", 'He said "ok"', ""],
        [" leading", "trailing ", "multi\nline"],
        [""],
    ],
)
def test_encode_then_parse_returns_the_same_fields(fields):
    assert parse_csv_line(encode_csv_line(fields)) == fields


def test_encode_quotes_only_when_needed():
    assert encode_csv_line(["a", "b,c", 'd"e']) == 'a,"b,c","d""e"'


def test_quote_count_is_odd():
    assert quote_count_is_odd('a,"open') is True
    assert quote_count_is_odd('a,"closed"') is False
