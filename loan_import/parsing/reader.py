from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from .csv_line import encode_csv_line

"""Upload reader: turns a file on disk into section-splitter input text.

- .csv / .txt (and any other extension): decoded as UTF-8 (BOM tolerated),
  falling back to Latin-1 for legacy exports
- .xlsx / .xlsm / .xls: every sheet becomes one `=== <sheet name> ===` section,
  cells read as strings so phone numbers keep their leading zeros

Any failure to read the input is a SourceReadError, the only batch-level
failure of the pipeline.
"""

__all__ = [
    "ImportSource",
    "SourceReadError",
    "WORKBOOK_SUFFIXES",
    "read_upload",
    "workbook_to_text",
]

WORKBOOK_SUFFIXES = frozenset({".xlsx", ".xlsm", ".xls"})


class SourceReadError(Exception):
    """Raised when the uploaded file cannot be read at all."""


@dataclass(frozen=True)
class ImportSource:
    text: str
    file_name: str
    file_size: int


def _decode(raw: bytes) -> str:
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def workbook_to_text(frames: dict[str, pd.DataFrame]) -> str:
    """Render raw (header=None) sheet frames as a multi-section dump."""
    blocks: list[str] = []
    for sheet_name, df in frames.items():
        lines = [f"=== {sheet_name} ==="]
        for values in df.itertuples(index=False, name=None):
            cells = ["" if v is None or (isinstance(v, float) and pd.isna(v)) else str(v) for v in values]
            # 全セル空の行は出力しない
            if not any(c.strip() for c in cells):
                continue
            lines.append(encode_csv_line(cells))
        blocks.append("\n".join(lines))
    return "\n".join(blocks)


def read_upload(path: Path) -> ImportSource:
    """Read an uploaded file into an ImportSource.

    Args:
        path: file to read

    Returns:
        ImportSource with the decoded text, the file name and its size in bytes

    Raises:
        SourceReadError: missing, unreadable or corrupt input
    """
    if not path.exists():
        raise SourceReadError(f"input file not found: {path}")
    try:
        file_size = path.stat().st_size
        if path.suffix.lower() in WORKBOOK_SUFFIXES:
            frames = pd.read_excel(
                path,
                sheet_name=None,
                header=None,
                dtype=str,
                keep_default_na=False,
            )
            text = workbook_to_text({str(k): v for k, v in frames.items()})
        else:
            text = _decode(path.read_bytes())
    except SourceReadError:
        raise
    except Exception as e:  # pandas / openpyxl raise a wide range of types
        raise SourceReadError(f"cannot read {path.name}: {e}") from e
    return ImportSource(text=text, file_name=path.name, file_size=file_size)
