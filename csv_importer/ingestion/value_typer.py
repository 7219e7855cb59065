"""Per-field type inference for CSV values.

Values are classified as null, date, number, leading-zero code or plain
text and returned in the string form that is written to the staging
table. Dates are normalised to ``YYYY-MM-DD`` and numbers to their
canonical fixed-point form.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

# Tried in order; the first format that parses wins. Day and month are
# always two digits, so ``1-2-2024`` stays text.
DATE_FORMATS = (
    ("%d-%m-%Y", re.compile(r"^\d{2}-\d{2}-\d{4}$")),
    ("%m/%d/%Y", re.compile(r"^\d{2}/\d{2}/\d{4}$")),
    ("%Y-%m-%d", re.compile(r"^\d{4}-\d{2}-\d{2}$")),
)
OUTPUT_DATE_FORMAT = "%Y-%m-%d"

_LEADING_ZERO_PATTERN = re.compile(r"^0+\d+$")
_GROUPED_NUMBER_PATTERN = re.compile(r"^[+-]?\d{1,3}(,\d{3})+(\.\d*)?$")
_NUMBER_CHARS = re.compile(r"^[+-]?[\d.]+([eE][+-]?\d+)?$")
# Largest magnitude exponent accepted for a decimal value.
_MAX_ADJUSTED_EXPONENT = 28


class TypingSession:
    """Memoised conversions for one file's batching.

    Keys are lower-cased raw values. Create one per file and call
    ``clear()`` when the file is done.
    """

    def __init__(self):
        self.dates: Dict[str, str] = {}
        self.numbers: Dict[str, str] = {}

    def clear(self) -> None:
        self.dates.clear()
        self.numbers.clear()

    def __len__(self) -> int:
        return len(self.dates) + len(self.numbers)


def parse_date(value: str) -> Optional[str]:
    """Return ``value`` as ``YYYY-MM-DD`` if it matches an accepted format."""
    for fmt, shape in DATE_FORMATS:
        if not shape.match(value):
            continue
        try:
            return datetime.strptime(value, fmt).strftime(OUTPUT_DATE_FORMAT)
        except ValueError:
            continue
    return None


def parse_decimal(value: str) -> Optional[Decimal]:
    """Parse a locale-invariant decimal, or return ``None``.

    Accepts a sign, ``,`` thousands grouping, a decimal point, an exponent
    and accounting-style parentheses for negatives. ``NaN``, infinities
    and out-of-range magnitudes are not numbers.
    """
    negative = False
    if len(value) > 2 and value[0] == "(" and value[-1] == ")":
        negative = True
        value = value[1:-1]

    if _GROUPED_NUMBER_PATTERN.match(value):
        value = value.replace(",", "")
    if not _NUMBER_CHARS.match(value):
        return None

    try:
        number = Decimal(value)
    except InvalidOperation:
        return None
    if not number.is_finite() or abs(number.adjusted()) > _MAX_ADJUSTED_EXPONENT:
        return None
    if negative:
        if number.is_signed():
            return None
        number = -number
    return number


def format_decimal(number: Decimal) -> str:
    """Canonical fixed-point string for a decimal (no exponent, no ``+``)."""
    text = format(number, "f")
    if text.startswith("-") and number.is_zero():
        text = text[1:]
    return text


def type_value(value: str, preserve_leading_zeros: bool, session: TypingSession) -> Optional[str]:
    """Classify a trimmed field value and return what should be stored.

    Args:
        value: Field value, already trimmed.
        preserve_leading_zeros: Keep values such as ``00123`` verbatim.
        session: Conversion cache for the file being processed.

    Returns:
        The value to store, or ``None`` for empty input.
    """
    if not value or value.isspace():
        return None

    if preserve_leading_zeros and value[0] == "0" and _LEADING_ZERO_PATTERN.match(value):
        return value

    key = value.lower()
    cached = session.dates.get(key)
    if cached is not None:
        return cached
    cached = session.numbers.get(key)
    if cached is not None:
        return cached

    formatted = parse_date(value)
    if formatted is not None:
        session.dates[key] = formatted
        return formatted

    number = parse_decimal(value)
    if number is not None:
        if preserve_leading_zeros and len(value) > 1 and value[0] == "0":
            return value
        formatted = format_decimal(number)
        session.numbers[key] = formatted
        return formatted

    return value
