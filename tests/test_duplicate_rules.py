"""
Tests for duplicate detection by email, name and phone.
"""

from crmprep.services.duplicate_rules import DUPLICATE_DETECTION, find_duplicate_groups
from crmprep.services.header_matcher import match_headers
from crmprep.services.rule_types import RuleContext
from crmprep.services.schema_fields import get_default_schema_fields


def _run(rows):
    matches = match_headers(list(rows[0].keys()), get_default_schema_fields())
    return DUPLICATE_DETECTION.execute(RuleContext(rows=rows, header_matches=matches))


class TestFindDuplicateGroups:
    def test_groups(self):
        assert find_duplicate_groups(["a", None, "a", "b", "b", "c"]) == [[0, 2], [3, 4]]

    def test_no_duplicates(self):
        assert find_duplicate_groups(["a", "b", None, None]) == []
        assert find_duplicate_groups([]) == []


class TestDuplicateDetection:
    def test_email_duplicates_reference_each_other(self):
        outcome = _run([
            {"Email": "jane@acme.com"},
            {"Email": " JANE@acme.com"},
            {"Email": "bob@acme.com"},
        ])
        assert [(w.row_index, w.kind) for w in outcome.warnings] == [
            (0, "duplicate_email"), (1, "duplicate_email"),
        ]
        assert outcome.warnings[0].message.endswith("also found in rows: 2")
        assert outcome.warnings[1].message.endswith("also found in rows: 1")

    def test_name_duplicates_with_different_emails(self):
        outcome = _run([
            {"First Name": "Jane", "Last Name": "Doe", "Email": "jane@acme.com"},
            {"First Name": "jane", "Last Name": "DOE", "Email": "jdoe@other.com"},
        ])
        assert [w.kind for w in outcome.warnings] == ["duplicate_name", "duplicate_name"]

    def test_name_duplicates_with_same_email_reported_once(self):
        outcome = _run([
            {"First Name": "Jane", "Last Name": "Doe", "Email": "jane@acme.com"},
            {"First Name": "Jane", "Last Name": "Doe", "Email": "jane@acme.com"},
        ])
        assert [w.kind for w in outcome.warnings] == ["duplicate_email", "duplicate_email"]

    def test_phone_duplicates_across_formats(self):
        outcome = _run([
            {"Phone": "(555) 123-4567"},
            {"Phone": "+1 555 123 4567"},
            {"Phone": "123"},
            {"Phone": "123"},
        ])
        assert [(w.row_index, w.kind) for w in outcome.warnings] == [
            (0, "duplicate_phone"), (1, "duplicate_phone"),
        ]

    def test_never_mutates(self):
        rows = [{"Email": "A@b.com"}, {"Email": "a@b.com"}]
        outcome = _run(rows)
        assert outcome.rows == [{"Email": "A@b.com"}, {"Email": "a@b.com"}]
        assert outcome.changes == []

    def test_single_row(self):
        assert _run([{"Email": "a@b.com"}]).warnings == []
