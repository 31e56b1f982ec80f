from __future__ import annotations

from dataclasses import dataclass, field

from .enums import SectionType
from .raw_row import DroppedLine, RawRow

"""FileSection model for the loan import pipeline.

A FileSection is the processing unit for one `=== NAME ===` block of an
uploaded file (or the whole file when it carries no delimiters).
"""

__all__ = [
    "FileSection",
    "IMPLICIT_SECTION_NAME",
]

IMPLICIT_SECTION_NAME = "Main Data"


@dataclass(frozen=True)
class FileSection:
    """One section of an uploaded file with its parsed rows.

    dropped_lines holds every data line the splitter discarded so that nothing
    disappears without an audit trail.
    """
    name: str
    inferred_type: SectionType
    headers: tuple[str, ...] = ()
    rows: tuple[RawRow, ...] = ()
    line_start: int = 0  # 1-based line of the delimiter (or first line when implicit)
    dropped_lines: tuple[DroppedLine, ...] = field(default_factory=tuple)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def implicit(self) -> bool:
        return self.name == IMPLICIT_SECTION_NAME
