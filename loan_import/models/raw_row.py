from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

"""RawRow model for the loan import pipeline.

A RawRow is one data line of a section after tokenization, zipped against the
section headers. Values are reachable both by the literal header text and by a
normalized alias (lowercased, whitespace removed) so downstream lookups may use
either spelling.
"""

__all__ = [
    "DroppedLine",
    "RawRow",
    "header_alias",
]

_WHITESPACE = re.compile(r"\s+")


def header_alias(header: str) -> str:
    """Normalized lookup key for a header: lowercase, all whitespace removed."""
    return _WHITESPACE.sub("", header.strip().lower())


@dataclass(frozen=True)
class RawRow:
    """One immutable data row of a section.

    index is the 0-based position of the row within its section; headers keeps
    the literal header order so the original columns can be replayed.
    """
    index: int
    headers: tuple[str, ...]
    values: Mapping[str, str]  # literal header + alias -> value
    line_number: int = -1  # 1-based physical line in the source file (-1 = unknown)
    section: str = ""

    @classmethod
    def from_fields(
        cls,
        index: int,
        headers: Sequence[str],
        fields: Sequence[str],
        *,
        line_number: int = -1,
        section: str = "",
    ) -> RawRow:
        values: dict[str, str] = {}
        for i, header in enumerate(headers):
            value = fields[i] if i < len(fields) else ""
            values[header] = value
            alias = header_alias(header)
            # 同名エイリアスはリテラル側を優先
            if alias and alias not in values:
                values[alias] = value
        return cls(
            index=index,
            headers=tuple(headers),
            values=values,
            line_number=line_number,
            section=section,
        )

    def get(self, key: str) -> str | None:
        """Look a value up by literal header, its case variants, or its alias."""
        for candidate in (key, key.lower(), key.upper(), header_alias(key)):
            if candidate in self.values:
                return self.values[candidate]
        return None

    def first(self, keys: Iterable[str]) -> str | None:
        """Return the first present, non-empty value among candidate keys."""
        for key in keys:
            value = self.get(key)
            if value is not None and value.strip():
                return value.strip()
        return None

    def original(self) -> dict[str, str]:
        """Literal header -> value, in header order (no aliases)."""
        return {h: self.values.get(h, "") for h in self.headers}

    @property
    def is_blank(self) -> bool:
        return all(not v for v in self.values.values())


@dataclass(frozen=True)
class DroppedLine:
    """A source line discarded by the splitter, kept for audit."""
    line_number: int
    text: str
    reason: str
    section: str = ""
