"""
Tests for date detection, parsing and the date-normalization rule.
"""

from datetime import date, datetime

import pytest

from crmprep.services.date_rules import (
    DATE_NORMALIZATION,
    is_date_header,
    is_time_header,
    parse_date_value,
    resolve_day_month,
)
from crmprep.services.header_matcher import match_headers
from crmprep.services.rule_types import RuleContext
from crmprep.services.schema_fields import get_default_schema_fields


def _context(rows):
    matches = match_headers(list(rows[0].keys()), get_default_schema_fields())
    return RuleContext(rows=rows, header_matches=matches)


# ============================================================================
# HEADER DETECTION
# ============================================================================

class TestDateHeaders:
    def test_date_headers(self):
        assert is_date_header("Date of Birth")
        assert is_date_header("Birthday")
        assert is_date_header("Created At")
        assert is_date_header("start_date")

    def test_not_date_headers(self):
        assert not is_date_header("Candidate")
        assert not is_date_header("Email")

    def test_time_headers(self):
        assert is_time_header("Created At")
        assert is_time_header("Event Timestamp")
        assert not is_time_header("Close Date")


# ============================================================================
# PARSING
# ============================================================================

class TestResolveDayMonth:
    def test_day_first_when_first_exceeds_twelve(self):
        assert resolve_day_month(25, 12, dayfirst=False) == (12, 25, False)

    def test_month_first_when_second_exceeds_twelve(self):
        assert resolve_day_month(3, 25, dayfirst=True) == (3, 25, False)

    def test_ambiguous_follows_preference(self):
        assert resolve_day_month(3, 4, dayfirst=False) == (3, 4, True)
        assert resolve_day_month(3, 4, dayfirst=True) == (4, 3, True)

    def test_equal_parts_not_ambiguous(self):
        assert resolve_day_month(5, 5, dayfirst=False) == (5, 5, False)


class TestParseDateValue:
    @pytest.mark.parametrize("raw, expected", [
        ("2024-01-05", datetime(2024, 1, 5)),
        ("2024-01-05T14:30:00Z", datetime(2024, 1, 5, 14, 30)),
        ("2024/1/5", datetime(2024, 1, 5)),
        ("1/5/2024", datetime(2024, 1, 5)),
        ("1/5/99", datetime(1999, 1, 5)),
        ("13/5/2024", datetime(2024, 5, 13)),
        ("1/5/2024 2:30 PM", datetime(2024, 1, 5, 14, 30)),
        ("25.12.2024", datetime(2024, 12, 25)),
        ("March 5, 2024", datetime(2024, 3, 5)),
        ("5 Mar 2024", datetime(2024, 3, 5)),
        ("20240105", datetime(2024, 1, 5)),
        ("1704067200", datetime(2024, 1, 1)),
        ("1704067200000", datetime(2024, 1, 1)),
        ("45292", datetime(2024, 1, 1)),
    ])
    def test_formats(self, raw, expected):
        parsed, _ = parse_date_value(raw)
        assert parsed == expected

    def test_native_values(self):
        assert parse_date_value(date(2024, 1, 5)) == (datetime(2024, 1, 5), False)
        assert parse_date_value(datetime(2024, 1, 5, 9, 0)) == (datetime(2024, 1, 5, 9, 0), False)

    def test_ambiguous_dot_date(self):
        assert parse_date_value("03.04.2024", dayfirst=False) == (datetime(2024, 3, 4), True)
        assert parse_date_value("03.04.2024", dayfirst=True) == (datetime(2024, 4, 3), True)

    def test_invalid(self):
        assert parse_date_value("2024-13-40") == (None, False)
        assert parse_date_value("not a date") == (None, False)
        assert parse_date_value("May") == (None, False)


# ============================================================================
# RULE
# ============================================================================

class TestDateNormalizationRule:
    def test_converts_date_column(self):
        outcome = DATE_NORMALIZATION.execute(_context([{"Date of Birth": "March 5, 1990", "Name": "x"}]))
        assert outcome.rows[0]["Date of Birth"] == "1990-03-05"
        assert outcome.changes[0].reason == 'Converted "March 5, 1990" to 1990-03-05'

    def test_invalid_date_reported_and_kept(self):
        outcome = DATE_NORMALIZATION.execute(_context([{"Close Date": "2024-13-40"}]))
        assert outcome.rows[0]["Close Date"] == "2024-13-40"
        assert [e.kind for e in outcome.errors] == ["invalid_date"]
        assert outcome.changes == []

    def test_datetime_column(self):
        outcome = DATE_NORMALIZATION.execute(_context([{"Created At": "2024-01-05T14:30:00Z"}]))
        assert outcome.rows[0]["Created At"] == "2024-01-05 14:30:00"

    def test_invalid_datetime_kind(self):
        outcome = DATE_NORMALIZATION.execute(_context([{"Created At": "soon"}]))
        assert [e.kind for e in outcome.errors] == ["invalid_datetime"]

    def test_ambiguous_warning(self):
        outcome = DATE_NORMALIZATION.execute(_context([{"Start Date": "03.04.2024"}]))
        assert outcome.rows[0]["Start Date"] == "2024-03-04"
        assert [w.kind for w in outcome.warnings] == ["ambiguous_date"]

    def test_non_date_columns_untouched(self):
        rows = [{"Zip": "20240105", "Close Date": "1/5/2024"}]
        outcome = DATE_NORMALIZATION.execute(_context(rows))
        assert outcome.rows[0] == {"Zip": "20240105", "Close Date": "2024-01-05"}

    def test_idempotent(self):
        context = _context([{"Close Date": "1/5/2024", "Created At": "1/5/2024 2:30 PM"}])
        first = DATE_NORMALIZATION.execute(context)
        second = DATE_NORMALIZATION.execute(
            RuleContext(rows=first.rows, header_matches=context.header_matches)
        )
        assert second.rows == first.rows
        assert second.changes == []
