"""
Tests for email normalization/validation and phone normalization.
"""

import pytest

from crmprep.services.contact_rules import (
    EMAIL_NORMALIZATION,
    EMAIL_VALIDATION,
    PHONE_NORMALIZATION,
    extract_digits,
    normalize_phone,
    split_extension,
    suggest_domain,
)
from crmprep.services.header_matcher import match_headers
from crmprep.services.rule_types import RuleContext
from crmprep.services.schema_fields import get_default_schema_fields


def _context(rows, required=("email",)):
    matches = match_headers(list(rows[0].keys()), get_default_schema_fields())
    return RuleContext(rows=rows, header_matches=matches, required_fields=list(required))


# ============================================================================
# EMAIL HELPERS
# ============================================================================

class TestSuggestDomain:
    def test_known_typo(self):
        assert suggest_domain("gmial.com") == "gmail.com"

    def test_edit_distance_one(self):
        assert suggest_domain("gmaill.com") == "gmail.com"
        assert suggest_domain("outlook.cm") == "outlook.com"

    def test_correct_domains(self):
        assert suggest_domain("gmail.com") is None
        assert suggest_domain("acme.com") is None


# ============================================================================
# EMAIL RULES
# ============================================================================

class TestEmailNormalization:
    def test_trim_and_lowercase(self):
        outcome = EMAIL_NORMALIZATION.execute(_context([{"Email": " Jane@Acme.COM "}, {"Email": "bob@acme.com"}]))
        assert [r["Email"] for r in outcome.rows] == ["jane@acme.com", "bob@acme.com"]
        assert len(outcome.changes) == 1
        assert outcome.changes[0].reason == "Trimmed whitespace and converted to lowercase"

    def test_idempotent(self):
        context = _context([{"Email": "Jane@Acme.com"}])
        first = EMAIL_NORMALIZATION.execute(context)
        second = EMAIL_NORMALIZATION.execute(
            RuleContext(rows=first.rows, header_matches=context.header_matches)
        )
        assert second.changes == []


class TestEmailValidation:
    def _kinds(self, email):
        outcome = EMAIL_VALIDATION.execute(_context([{"Email": email}]))
        return [e.kind for e in outcome.errors], [w.kind for w in outcome.warnings]

    def test_valid_business_email(self):
        assert self._kinds("jane@acme.com") == ([], [])

    def test_invalid_format(self):
        assert self._kinds("not-an-email") == (["invalid_format"], [])

    def test_disposable(self):
        assert self._kinds("x@mailinator.com") == (["disposable_email"], [])

    def test_personal(self):
        assert self._kinds("jane@gmail.com") == ([], ["personal_email"])

    def test_typo(self):
        assert self._kinds("jane@gmial.com") == ([], ["possible_typo"])

    def test_suspicious(self):
        assert self._kinds("ja!ne@acme.com") == ([], ["suspicious_format"])

    def test_required_blank(self):
        outcome = EMAIL_VALIDATION.execute(_context([{"Email": ""}]))
        assert [e.kind for e in outcome.errors] == ["missing_required"]
        assert outcome.errors[0].row_index == 0

    def test_blank_allowed_when_not_required(self):
        outcome = EMAIL_VALIDATION.execute(_context([{"Email": ""}], required=()))
        assert outcome.errors == []

    def test_missing_field_run_level(self):
        outcome = EMAIL_VALIDATION.execute(_context([{"First Name": "Jane"}]))
        assert len(outcome.errors) == 1
        assert outcome.errors[0].kind == "missing_field"
        assert outcome.errors[0].row_index == -1

    def test_never_mutates(self):
        rows = [{"Email": " Jane@GMAIL.com "}]
        outcome = EMAIL_VALIDATION.execute(_context(rows))
        assert outcome.rows[0]["Email"] == " Jane@GMAIL.com "
        assert outcome.changes == []


# ============================================================================
# PHONE
# ============================================================================

class TestPhoneHelpers:
    def test_extract_digits(self):
        assert extract_digits("(555) 123-4567") == "5551234567"

    def test_split_extension(self):
        assert split_extension("555-123-4567 ext. 89") == ("555-123-4567", "89")
        assert split_extension("555-123-4567x12") == ("555-123-4567", "12")
        assert split_extension("555-123-4567") == ("555-123-4567", None)


class TestNormalizePhone:
    @pytest.mark.parametrize("raw", ["(555) 123-4567", "555.123.4567", "15551234567", "+1 555 123 4567"])
    def test_north_american(self, raw):
        assert normalize_phone(raw) == ("+15551234567", None)

    def test_too_short(self):
        assert normalize_phone("12345") == (None, "too_short")

    def test_missing_area_code(self):
        assert normalize_phone("555-1234") == ("+15551234", "missing_area_code")

    def test_international_with_plus(self):
        assert normalize_phone("+44 20 7946 0958") == ("+442079460958", None)

    def test_double_zero_prefix(self):
        assert normalize_phone("0044 20 7946 0958") == ("+442079460958", None)

    def test_unknown_international(self):
        assert normalize_phone("442079460958") == ("+442079460958", "verify_country_code")

    def test_extension_kept(self):
        assert normalize_phone("(555) 123-4567 x89") == ("+15551234567 ext. 89", None)

    def test_too_long(self):
        assert normalize_phone("+1234567890123456") == ("+1234567890123456", "too_long")

    def test_other_country_code(self):
        assert normalize_phone("2079460958", country_code="44") == ("+442079460958", None)


class TestPhoneNormalizationRule:
    def test_phone_and_mobile_columns(self):
        rows = [{"Phone": "(555) 123-4567", "Mobile": "555.987.6543"}]
        outcome = PHONE_NORMALIZATION.execute(_context(rows))
        assert outcome.rows[0] == {"Phone": "+15551234567", "Mobile": "+15559876543"}
        assert len(outcome.changes) == 2

    def test_numeric_cell(self):
        outcome = PHONE_NORMALIZATION.execute(_context([{"Phone": 5551234567.0}]))
        assert outcome.rows[0]["Phone"] == "+15551234567"

    def test_short_number_warned_and_kept(self):
        outcome = PHONE_NORMALIZATION.execute(_context([{"Phone": "1234"}]))
        assert outcome.rows[0]["Phone"] == "1234"
        assert [w.kind for w in outcome.warnings] == ["too_short"]

    def test_idempotent(self):
        context = _context([{"Phone": "15551234567"}, {"Phone": "555-1234"}, {"Phone": "555 123 4567 ext 9"}])
        first = PHONE_NORMALIZATION.execute(context)
        second = PHONE_NORMALIZATION.execute(
            RuleContext(rows=first.rows, header_matches=context.header_matches)
        )
        assert second.rows == first.rows
        assert second.changes == []
