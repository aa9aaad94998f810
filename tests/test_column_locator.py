"""
Tests for locating the column that holds a canonical field.
"""

from crmprep.services.column_locator import locate_column, locate_columns
from crmprep.services.header_matcher import HeaderMatch, match_headers
from crmprep.services.schema_fields import (
    OBJECT_COMPANIES,
    OBJECT_DEALS,
    SchemaField,
    get_default_schema_fields,
)


def _matches(headers):
    return match_headers(headers, get_default_schema_fields())


class TestLocateColumn:
    def test_claimed_header_wins(self):
        rows = [{"Contact Email": "a@b.com", "Email": "c@d.com"}]
        matches = _matches(["Contact Email", "Email"])
        assert locate_column("email", matches, rows) == "Email"

    def test_fallback_exact_pattern(self):
        rows = [{"E-mail Address": "a@b.com"}]
        assert locate_column("email", [], rows) == "E-mail Address"

    def test_fallback_substring(self):
        rows = [{"Name": "x", "Primary Email": "a@b.com"}]
        assert locate_column("email", [], rows) == "Primary Email"

    def test_fallback_skips_columns_claimed_by_other_fields(self):
        close_date = SchemaField("closedate", "Close Date", OBJECT_DEALS)
        matches = [HeaderMatch("Close Date", close_date, 1.0, True, "exact")]
        rows = [{"Close Date": "2024-01-01", "Start Date": "2024-02-01"}]
        assert locate_column("date", matches, rows) == "Start Date"

    def test_not_found(self):
        assert locate_column("email", [], [{"Foo": 1}]) is None
        assert locate_column("email", [], []) is None

    def test_object_type_filter(self):
        rows = [{"Phone": "1", "Office Phone": "2"}]
        matches = _matches(["Phone", "Office Phone"])
        assert locate_column("phone", matches, rows) == "Phone"
        assert locate_column("phone", matches, rows, object_type=OBJECT_COMPANIES) == "Office Phone"


class TestLocateColumns:
    def test_all_claims_contacts_first(self):
        rows = [{"Office Phone": "2", "Phone": "1"}]
        matches = _matches(["Office Phone", "Phone"])
        assert locate_columns("phone", matches, rows) == ["Phone", "Office Phone"]

    def test_fallback_guess(self):
        assert locate_columns("state", [], [{"Province": "ON"}]) == ["Province"]

    def test_nothing(self):
        assert locate_columns("state", [], [{"Foo": 1}]) == []
