"""
Export helpers: shaping the cleaned rows for the CRM hand-off.

Rows come out of the runner keyed by the original spreadsheet headers.
These helpers rename them to canonical field ids, to the target system's
property names, or split them per CRM object for the sync step.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from crmprep.services.header_matcher import HeaderMatch
from crmprep.services.rule_runner import RunReport
from crmprep.services.rule_types import Row, is_blank
from crmprep.services.schema_fields import OBJECT_TYPE_PRIORITY


def _canonical_names(header_matches: Sequence[HeaderMatch]) -> Dict[str, str]:
    return {m.header: m.field_id for m in header_matches if m.is_matched}


def _clean(value: Any) -> Any:
    return None if is_blank(value) else value


def to_canonical_rows(rows: Sequence[Row], header_matches: Sequence[HeaderMatch]) -> List[Dict[str, Any]]:
    """Matched headers renamed to their field id; unmatched keep the original header."""
    names = _canonical_names(header_matches)
    result = []
    for row in rows:
        out: Dict[str, Any] = {}
        for header, value in row.items():
            key = names.get(header, header)
            # Two headers claiming one field id in different objects: first wins
            out.setdefault(key, _clean(value))
        result.append(out)
    return result


def to_target_rows(
    rows: Sequence[Row],
    header_matches: Sequence[HeaderMatch],
    property_names: Mapping[str, str],
) -> List[Dict[str, Any]]:
    """Canonical rows with field ids renamed to the target system's property names."""
    return [
        {property_names.get(key, key): value for key, value in row.items()}
        for row in to_canonical_rows(rows, header_matches)
    ]


def split_by_object_type(row: Row, header_matches: Sequence[HeaderMatch]) -> Dict[str, Dict[str, Any]]:
    """
    One row as {"contacts": {...}, "companies": {...}, "deals": {...}}.

    Unmatched columns are dropped and blank values omitted.
    """
    split: Dict[str, Dict[str, Any]] = {object_type: {} for object_type in OBJECT_TYPE_PRIORITY}
    for match in header_matches:
        if not match.is_matched or match.header not in row:
            continue
        value = row[match.header]
        if is_blank(value):
            continue
        split.setdefault(match.object_type, {})[match.field_id] = value
    return split


def export_frame(
    rows: Sequence[Row],
    header_matches: Sequence[HeaderMatch],
    use_original_headers: bool = True,
) -> pd.DataFrame:
    """Final rows as a DataFrame, in original header order."""
    headers = [m.header for m in header_matches]
    if use_original_headers:
        records = [{k: _clean(v) for k, v in row.items()} for row in rows]
        extra = [k for row in rows for k in row.keys() if k not in headers]
        columns = headers + list(dict.fromkeys(extra))
    else:
        records = to_canonical_rows(rows, header_matches)
        names = _canonical_names(header_matches)
        columns = list(dict.fromkeys(names.get(h, h) for h in headers))
        columns += [k for k in dict.fromkeys(k for r in records for k in r) if k not in columns]
    return pd.DataFrame(records, columns=columns)


def validation_summary(report: RunReport, row_count: Optional[int] = None) -> Dict[str, Any]:
    """Counts for the review screen; can_continue is False while any error remains."""
    total_rows = row_count if row_count is not None else len(report.rows)
    invalid_rows = len(report.invalid_row_indices())
    return {
        "total_rows": total_rows,
        "valid_rows": total_rows - invalid_rows,
        "invalid_rows": invalid_rows,
        "total_changes": report.total_changes,
        "total_errors": report.total_errors,
        "total_warnings": report.total_warnings,
        "errors_by_kind": report.issues_by_kind(),
        "warnings_by_kind": report.issues_by_kind(warnings=True),
        "can_continue": not report.has_errors,
    }
