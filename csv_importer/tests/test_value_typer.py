"""Tests for per-field type inference."""

from decimal import Decimal

import pytest

from csv_importer.ingestion.value_typer import (
    TypingSession,
    format_decimal,
    parse_date,
    parse_decimal,
    type_value,
)


@pytest.fixture
def session():
    return TypingSession()


class TestParseDate:
    """Tests for parse_date."""

    @pytest.mark.parametrize("value", ["31-01-2024", "01/31/2024", "2024-01-31"])
    def test_accepted_formats(self, value):
        assert parse_date(value) == "2024-01-31"

    def test_day_first_wins_for_dashes(self):
        assert parse_date("01-02-2024") == "2024-02-01"

    def test_single_digit_day_or_month_is_not_a_date(self):
        assert parse_date("1-2-2024") is None
        assert parse_date("1/31/2024") is None
        assert parse_date("2024-1-31") is None

    def test_invalid_dates(self):
        assert parse_date("31/01/2024") is None
        assert parse_date("2024-02-30") is None
        assert parse_date("hello") is None


class TestParseDecimal:
    """Tests for parse_decimal and format_decimal."""

    def test_plain_numbers(self):
        assert parse_decimal("123") == Decimal("123")
        assert parse_decimal("-4.5") == Decimal("-4.5")
        assert parse_decimal("+7") == Decimal("7")

    def test_thousands_grouping(self):
        assert parse_decimal("1,234,567.89") == Decimal("1234567.89")

    def test_parentheses_mean_negative(self):
        assert parse_decimal("(42)") == Decimal("-42")

    def test_exponent(self):
        assert format_decimal(parse_decimal("1e3")) == "1000"

    def test_not_numbers(self):
        for value in ("NaN", "Infinity", "-inf", "12abc", "1,2", "1e400", ""):
            assert parse_decimal(value) is None, value

    def test_negative_zero_formats_as_zero(self):
        assert format_decimal(Decimal("-0")) == "0"

    def test_format_keeps_scale(self):
        assert format_decimal(Decimal("1234.50")) == "1234.50"


class TestTypeValue:
    """Tests for type_value."""

    def test_empty_is_null(self, session):
        assert type_value("", True, session) is None
        assert type_value("   ", True, session) is None

    def test_leading_zeros_preserved(self, session):
        assert type_value("00123", True, session) == "00123"
        assert type_value("0.50", True, session) == "0.50"

    def test_leading_zeros_normalised_when_not_preserved(self, session):
        assert type_value("00123", False, session) == "123"

    def test_single_zero_is_a_number(self, session):
        assert type_value("0", True, session) == "0"

    def test_numbers_are_canonical(self, session):
        assert type_value("123", True, session) == "123"
        assert type_value("1,234.50", True, session) == "1234.50"
        assert type_value("(42)", True, session) == "-42"

    def test_dates_are_normalised(self, session):
        assert type_value("31-01-2024", True, session) == "2024-01-31"
        assert type_value("01/31/2024", True, session) == "2024-01-31"

    def test_short_dates_stay_text(self, session):
        assert type_value("1-2-2024", True, session) == "1-2-2024"

    def test_text_is_returned_unchanged(self, session):
        assert type_value("Alice", True, session) == "Alice"
        assert type_value("NaN", True, session) == "NaN"

    def test_conversions_are_cached(self, session):
        type_value("31-01-2024", True, session)
        type_value("1E3", True, session)
        assert session.dates == {"31-01-2024": "2024-01-31"}
        assert session.numbers == {"1e3": "1000"}
        assert len(session) == 2

    def test_cached_value_is_reused(self, session):
        session.numbers["42"] = "cached"
        assert type_value("42", True, session) == "cached"

    def test_text_is_not_cached(self, session):
        type_value("Alice", True, session)
        assert len(session) == 0

    def test_clear_empties_session(self, session):
        type_value("2024-01-31", True, session)
        session.clear()
        assert len(session) == 0
