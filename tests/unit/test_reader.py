from __future__ import annotations

import pandas as pd
import pytest

from loan_import.parsing.reader import SourceReadError, read_upload, workbook_to_text
from loan_import.parsing.sections import split_sections


def test_reads_utf8_text(tmp_path):
    path = tmp_path / "upload.csv"
    path.write_text("Name,Phone\nJohn Banda,0976543210\n", encoding="utf-8")
    source = read_upload(path)
    assert source.text.startswith("Name,Phone")
    assert source.file_name == "upload.csv"
    assert source.file_size == path.stat().st_size


def test_utf8_bom_is_stripped(tmp_path):
    path = tmp_path / "bom.csv"
    path.write_bytes("Name\nMülenga\n".encode("utf-8-sig"))
    assert read_upload(path).text == "Name\nMülenga\n"


def test_latin1_fallback(tmp_path):
    path = tmp_path / "legacy.csv"
    path.write_bytes("Name\nM\xfclenga\n".encode("latin-1"))
    assert read_upload(path).text == "Name\nMülenga\n"


def test_missing_file(tmp_path):
    with pytest.raises(SourceReadError, match="input file not found"):
        read_upload(tmp_path / "nope.csv")


def test_corrupt_workbook(tmp_path):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"not a zip file")
    with pytest.raises(SourceReadError, match="cannot read broken.xlsx"):
        read_upload(path)


def test_workbook_sheets_become_sections(tmp_path):
    path = tmp_path / "book.xlsx"
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        pd.DataFrame({"Name": ["John Banda"], "Phone": ["0976543210"]}).to_excel(
            writer, sheet_name="Borrowers", index=False
        )
        pd.DataFrame({"Amount": ["5000"], "Rate": ["10"]}).to_excel(writer, sheet_name="Loans", index=False)

    sections = split_sections(read_upload(path).text)
    assert [s.name for s in sections] == ["Borrowers", "Loans"]
    # leading zero survives because cells are read as text
    assert sections[0].rows[0].get("Phone") == "0976543210"
    assert sections[1].rows[0].get("Amount") == "5000"


def test_workbook_to_text_skips_blank_rows_and_quotes_commas():
    frame = pd.DataFrame([["Name", "Address"], ["", ""], ["A Banda", "Plot 5, Kabulonga"]])
    assert workbook_to_text({"Sheet1": frame}) == '=== Sheet1 ===\nName,Address\nA Banda,"Plot 5, Kabulonga"'
