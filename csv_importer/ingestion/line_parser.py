"""Comma-delimited line parsing."""

from typing import List


def parse_csv_line(line: str) -> List[str]:
    """Split one raw line into fields.

    Commas inside double-quoted regions do not split. A double quote only
    toggles the quoted state and is never part of the value, so ``""``
    inside a quoted field yields nothing rather than a literal quote.
    Unbalanced quotes leave the rest of the line in the final field.

    Args:
        line: A single line without its trailing newline.

    Returns:
        List of field values; at least one element, even for ``""``.
    """
    values: List[str] = []
    current: List[str] = []
    in_quotes = False

    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == "," and not in_quotes:
            values.append("".join(current))
            current = []
        else:
            current.append(ch)

    values.append("".join(current))
    return values
