"""
Pipeline facade: header matching plus rule execution for one upload.

    headers ─► resolve overrides ─► match_headers ─► missing_required_fields
                                                   │
    rows ──────────────────────────────────────────┴─► RuleRunner.run ─► RunReport
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from crmprep.services.custom_rules import StoredRuleDefinition, build_registry_with_custom_rules
from crmprep.services.header_matcher import (
    HeaderMatch,
    HeaderOverride,
    match_headers,
    missing_required_fields,
    resolve_mapping_overrides,
)
from crmprep.services.rule_registry import RuleRegistry, get_default_registry
from crmprep.services.rule_runner import RuleRunner, RunReport
from crmprep.services.rule_types import Row
from crmprep.services.schema_fields import (
    SchemaField,
    get_default_schema_fields,
    required_field_ids,
)

logger = logging.getLogger(__name__)


def headers_from_rows(rows: Sequence[Row]) -> List[str]:
    """Column order of the first row, plus any keys that only appear later."""
    headers: List[str] = []
    for row in rows:
        for key in row.keys():
            if key not in headers:
                headers.append(key)
    return headers


def process_upload(
    headers: Optional[Sequence[str]],
    rows: List[Row],
    schema_fields: Optional[Iterable[SchemaField]] = None,
    required_fields: Optional[Iterable[str]] = None,
    admin_overrides: Optional[Iterable[HeaderOverride]] = None,
    manual_choices: Optional[Iterable[HeaderOverride]] = None,
    enabled_rule_ids: Optional[Iterable[str]] = None,
    custom_rules: Optional[Iterable[StoredRuleDefinition]] = None,
    registry: Optional[RuleRegistry] = None,
) -> Tuple[List[HeaderMatch], RunReport]:
    """
    Match headers, then run the selected rules over the rows.

    Required fields no header claims are reported as run-level missing_field
    errors on the RunReport; the rules still run. A gap a rule already
    reported itself (email-validation does for email) is not repeated.
    """
    fields = list(schema_fields) if schema_fields is not None else get_default_schema_fields()
    required = list(required_fields) if required_fields is not None else required_field_ids(fields)
    if headers is None:
        headers = headers_from_rows(rows)

    overrides = resolve_mapping_overrides(admin_overrides, manual_choices)
    header_matches = match_headers(headers, fields, overrides=overrides)
    missing = missing_required_fields(header_matches, required, fields)
    if missing:
        logger.warning("Required fields not mapped: %s", ", ".join(e.field for e in missing))

    registry = registry or get_default_registry()
    if custom_rules:
        registry = build_registry_with_custom_rules(custom_rules, registry)

    report = RuleRunner(registry).run(
        rows,
        header_matches=header_matches,
        required_fields=required,
        enabled_rule_ids=enabled_rule_ids,
    )
    reported = {
        e.field for r in report.rule_reports for e in r.errors
        if e.is_run_level and e.kind == "missing_field"
    }
    report.run_errors = [e for e in missing if e.field not in reported] + report.run_errors
    return header_matches, report
