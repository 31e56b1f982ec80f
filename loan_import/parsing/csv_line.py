from __future__ import annotations

from collections.abc import Sequence

"""Single-line CSV tokenizer and encoder.

parse_csv_line is pure tokenization with no header knowledge:
- fields are comma separated
- a double-quoted span keeps commas and newlines literal, "" is one quote
- whitespace outside quotes at either end of a field is trimmed
- malformed input (unterminated quote, text after a closing quote) is
  tokenized best effort and never raises
"""

__all__ = [
    "encode_csv_line",
    "parse_csv_line",
    "quote_count_is_odd",
]

_QUOTE = '"'


def parse_csv_line(line: str) -> list[str]:
    """Split one logical line into its field strings.

    Examples:
        >>> parse_csv_line('a, "b,c" ,"say ""hi"" twice"')
        ['a', 'b,c', 'say "hi" twice']
        >>> parse_csv_line("a,b,")
        ['a', 'b', '']
    """
    fields: list[str] = []
    # (char, quoted) pairs so trimming never touches quoted whitespace
    current: list[tuple[str, bool]] = []
    in_quotes = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == _QUOTE:
            if in_quotes and i + 1 < n and line[i + 1] == _QUOTE:
                current.append((_QUOTE, True))
                i += 2
                continue
            in_quotes = not in_quotes
        elif ch == "," and not in_quotes:
            fields.append(_finish_field(current))
            current = []
        else:
            current.append((ch, in_quotes))
        i += 1
    fields.append(_finish_field(current))
    return fields


def _finish_field(chars: list[tuple[str, bool]]) -> str:
    start, end = 0, len(chars)
    while start < end and not chars[start][1] and chars[start][0].isspace():
        start += 1
    while end > start and not chars[end - 1][1] and chars[end - 1][0].isspace():
        end -= 1
    return "".join(c for c, _ in chars[start:end])


def _needs_quoting(value: str) -> bool:
    if not value:
        return False
    if any(c in value for c in (",", _QUOTE, "\n", "\r")):
        return True
    # unquoted edge whitespace would be trimmed on the way back in
    return value[0].isspace() or value[-1].isspace()


def encode_csv_line(fields: Sequence[str]) -> str:
    """Inverse of parse_csv_line for any list of at least one field."""
    out = []
    for value in fields:
        if _needs_quoting(value):
            out.append(_QUOTE + value.replace(_QUOTE, _QUOTE * 2) + _QUOTE)
        else:
            out.append(value)
    return ",".join(out)


def quote_count_is_odd(text: str) -> bool:
    """True when text leaves a quoted field open (used to join physical lines)."""
    return text.count(_QUOTE) % 2 == 1
