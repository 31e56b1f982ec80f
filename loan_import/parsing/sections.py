from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from ..models.enums import ImportType, SectionType
from ..models.file_section import IMPLICIT_SECTION_NAME, FileSection
from ..models.raw_row import DroppedLine, RawRow
from .csv_line import encode_csv_line, parse_csv_line, quote_count_is_odd

"""Section splitter for single and multi-section CSV dumps.

A line matching `=== NAME ===` (two or three '=' on either side) opens a new
section and closes the previous one. The first non-empty line after a
delimiter is the header row; later lines are data rows zipped against it.
A file without any delimiter is one implicit section named "Main Data" whose
type comes from its headers.

Lines are joined while a quoted field is still open, so a quoted value may
span physical lines.
"""

__all__ = [
    "DELIMITER_PATTERN",
    "describe_section",
    "detect_import_type",
    "infer_type_from_headers",
    "infer_type_from_name",
    "section_to_csv",
    "split_sections",
]

logger = logging.getLogger(__name__)

DELIMITER_PATTERN = re.compile(r"^===?\s*(.+?)\s*===?$", re.IGNORECASE)

_NAME_VOCABULARY: tuple[tuple[SectionType, tuple[str, ...]], ...] = (
    (SectionType.CUSTOMERS, ("borrower", "customer", "client", "person")),
    (SectionType.LOANS, ("loan",)),
    (SectionType.BRANCHES, ("branch", "location")),
    (SectionType.TRANSACTIONS, ("transaction", "payment")),
)


def infer_type_from_name(name: str) -> SectionType:
    lowered = name.lower()
    for section_type, words in _NAME_VOCABULARY:
        if any(w in lowered for w in words):
            return section_type
    return SectionType.UNKNOWN


def infer_type_from_headers(headers: Sequence[str]) -> SectionType:
    """Keyword heuristics over the header row.

    Loan shape is tested first: loan sheets usually also carry borrower
    columns, while customer sheets rarely carry amount + rate columns.
    """
    lowered = [h.lower() for h in headers]

    def has(*words: str) -> bool:
        return any(w in h for h in lowered for w in words)

    if has("amount", "principal") and has("rate", "interest", "duration", "term", "months"):
        return SectionType.LOANS
    if has("borrower", "customer") or (has("name") and has("phone", "mobile", "nrc", "email", "id")):
        return SectionType.CUSTOMERS
    if has("branch"):
        return SectionType.BRANCHES
    if has("transaction", "payment"):
        return SectionType.TRANSACTIONS
    return SectionType.UNKNOWN


@dataclass
class _SectionBuilder:
    name: str
    line_start: int
    named: bool
    headers: list[str] = field(default_factory=list)
    rows: list[RawRow] = field(default_factory=list)
    dropped: list[DroppedLine] = field(default_factory=list)

    def add_line(self, line_number: int, text: str) -> None:
        if not self.headers:
            self.headers = [h for h in parse_csv_line(text)]
            return
        fields = parse_csv_line(text)
        if all(not f for f in fields):
            return
        if len(fields) < len(self.headers) / 2:
            reason = f"{len(fields)} field(s) for {len(self.headers)} header(s)"
            logger.warning(
                "dropped line %d in section '%s': %s", line_number, self.name, reason
            )
            self.dropped.append(
                DroppedLine(line_number=line_number, text=text, reason=reason, section=self.name)
            )
            return
        self.rows.append(
            RawRow.from_fields(
                len(self.rows),
                self.headers,
                fields,
                line_number=line_number,
                section=self.name,
            )
        )

    def build(self) -> FileSection:
        section_type = SectionType.UNKNOWN
        if self.named:
            section_type = infer_type_from_name(self.name)
        if section_type is SectionType.UNKNOWN:
            section_type = infer_type_from_headers(self.headers)
        return FileSection(
            name=self.name,
            inferred_type=section_type,
            headers=tuple(self.headers),
            rows=tuple(self.rows),
            line_start=self.line_start,
            dropped_lines=tuple(self.dropped),
        )


def _logical_lines(text: str) -> Iterator[tuple[int, str]]:
    """Yield (1-based start line, text), joining lines inside open quotes."""
    physical = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    i = 0
    while i < len(physical):
        start = i + 1
        buffer = physical[i]
        i += 1
        while quote_count_is_odd(buffer) and i < len(physical):
            buffer += "\n" + physical[i]
            i += 1
        yield start, buffer


def split_sections(text: str) -> list[FileSection]:
    """Split file text into sections.

    Returns at least one section: a file with zero delimiter lines is exactly
    one implicit section (possibly without headers when the file is empty).
    """
    lines = list(_logical_lines(text.lstrip("\ufeff")))
    has_delimiters = any(DELIMITER_PATTERN.match(t.strip()) for _, t in lines)

    sections: list[FileSection] = []
    preamble: list[DroppedLine] = []
    current: _SectionBuilder | None = None
    if not has_delimiters:
        current = _SectionBuilder(name=IMPLICIT_SECTION_NAME, line_start=1, named=False)

    for line_number, raw in lines:
        stripped = raw.strip()
        match = DELIMITER_PATTERN.match(stripped) if has_delimiters else None
        if match:
            if current is not None:
                sections.append(current.build())
            current = _SectionBuilder(name=match.group(1).strip(), line_start=line_number, named=True)
            continue
        if not stripped:
            continue
        if current is None:
            logger.warning("dropped line %d: outside any section", line_number)
            preamble.append(DroppedLine(line_number=line_number, text=raw, reason="outside any section"))
            continue
        current.add_line(line_number, raw)

    if current is not None:
        sections.append(current.build())

    if preamble and sections:
        first = sections[0]
        sections[0] = FileSection(
            name=first.name,
            inferred_type=first.inferred_type,
            headers=first.headers,
            rows=first.rows,
            line_start=first.line_start,
            dropped_lines=tuple(preamble) + first.dropped_lines,
        )

    logger.debug(
        "split %d section(s): %s",
        len(sections),
        ", ".join(f"{s.name}<{s.inferred_type.value}>={s.row_count}" for s in sections),
    )
    return sections


def detect_import_type(sections: Sequence[FileSection]) -> ImportType:
    """Pick the executor mode for a file from its section types."""
    types = {s.inferred_type for s in sections}
    if SectionType.CUSTOMERS in types:
        return ImportType.MIXED if SectionType.LOANS in types else ImportType.CUSTOMERS
    if SectionType.LOANS in types:
        return ImportType.LOANS
    return ImportType.CUSTOMERS


def describe_section(section: FileSection) -> str:
    """Human-readable label, e.g. "Borrowers - 3 rows"."""
    rows_text = "row" if section.row_count == 1 else "rows"
    labels = {
        SectionType.CUSTOMERS: "Borrowers",
        SectionType.LOANS: "Loans",
        SectionType.BRANCHES: "Branches",
        SectionType.TRANSACTIONS: "Transactions",
    }
    label = labels.get(section.inferred_type, section.name)
    return f"{label} - {section.row_count} {rows_text}"


def section_to_csv(section: FileSection) -> str:
    """Re-encode a section (headers + original values) as plain CSV text."""
    lines = [encode_csv_line(section.headers)]
    for row in section.rows:
        original = row.original()
        lines.append(encode_csv_line([original.get(h, "") for h in section.headers]))
    return "\n".join(lines)
