"""
Rule Runner: the pipeline orchestrator.

Runs the selected rules one after another, threading the current row set
through them:
- every rule gets its own copy of the current rows
- only transform rules replace the current rows
- a rule that raises, or returns something other than a RuleOutcome, is
  recorded as one run-level execution_error and the next rule sees the last
  good rows
- unknown rule ids are reported as script_not_found
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from crmprep.services.header_matcher import HeaderMatch
from crmprep.services.rule_registry import RuleRegistry
from crmprep.services.rule_types import (
    ChangeRecord,
    IssueRecord,
    Rule,
    RuleContext,
    Row,
    RuleOutcome,
    copy_rows,
)

logger = logging.getLogger(__name__)


# ============================================================================
# REPORTS
# ============================================================================

@dataclass
class RuleReport:
    """Result of one rule within a run."""
    rule_id: str
    name: str
    kind: str
    success: bool
    changes: List[ChangeRecord] = field(default_factory=list)
    errors: List[IssueRecord] = field(default_factory=list)
    warnings: List[IssueRecord] = field(default_factory=list)
    rows_processed: int = 0
    rows_touched: int = 0
    execution_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "name": self.name,
            "kind": self.kind,
            "success": self.success,
            "changes": [c.to_dict() for c in self.changes],
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "rows_processed": self.rows_processed,
            "rows_touched": self.rows_touched,
            "execution_ms": self.execution_ms,
        }


@dataclass
class RunReport:
    """Everything one pipeline run produced, including the final rows."""
    rule_reports: List[RuleReport]
    rows: List[Row]
    run_errors: List[IssueRecord] = field(default_factory=list)

    @property
    def changes(self) -> List[ChangeRecord]:
        return [c for r in self.rule_reports for c in r.changes]

    @property
    def errors(self) -> List[IssueRecord]:
        return list(self.run_errors) + [e for r in self.rule_reports for e in r.errors]

    @property
    def warnings(self) -> List[IssueRecord]:
        return [w for r in self.rule_reports for w in r.warnings]

    @property
    def total_changes(self) -> int:
        return sum(len(r.changes) for r in self.rule_reports)

    @property
    def total_errors(self) -> int:
        return len(self.run_errors) + sum(len(r.errors) for r in self.rule_reports)

    @property
    def total_warnings(self) -> int:
        return sum(len(r.warnings) for r in self.rule_reports)

    @property
    def has_errors(self) -> bool:
        return self.total_errors > 0

    def report_for(self, rule_id: str) -> Optional[RuleReport]:
        return next((r for r in self.rule_reports if r.rule_id == rule_id), None)

    def issues_by_kind(self, warnings: bool = False) -> Dict[str, int]:
        """Count errors (or warnings) per kind."""
        counts: Dict[str, int] = {}
        for issue in (self.warnings if warnings else self.errors):
            counts[issue.kind] = counts.get(issue.kind, 0) + 1
        return counts

    def issues_by_row(self) -> Dict[int, Dict[str, List[IssueRecord]]]:
        """Row index -> {"errors": [...], "warnings": [...]}; -1 collects run-level issues."""
        grouped: Dict[int, Dict[str, List[IssueRecord]]] = {}
        for key, issues in (("errors", self.errors), ("warnings", self.warnings)):
            for issue in issues:
                bucket = grouped.setdefault(issue.row_index, {"errors": [], "warnings": []})
                bucket[key].append(issue)
        return dict(sorted(grouped.items()))

    def invalid_row_indices(self) -> List[int]:
        return sorted({e.row_index for e in self.errors if not e.is_run_level})

    def change_log_frame(self) -> pd.DataFrame:
        """Audit log of every change, one row per corrected cell."""
        records = [
            {"rule_id": r.rule_id, **c.to_dict()}
            for r in self.rule_reports
            for c in r.changes
        ]
        columns = ["rule_id", "row_index", "field", "original_value", "new_value", "reason"]
        return pd.DataFrame(records, columns=columns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_reports": [r.to_dict() for r in self.rule_reports],
            "run_errors": [e.to_dict() for e in self.run_errors],
            "total_changes": self.total_changes,
            "total_errors": self.total_errors,
            "total_warnings": self.total_warnings,
            "rows": self.rows,
        }


# ============================================================================
# RUNNER
# ============================================================================

def _not_found_report(rule_id: str) -> RuleReport:
    return RuleReport(
        rule_id=rule_id,
        name=rule_id,
        kind="",
        success=False,
        errors=[IssueRecord(-1, rule_id, None, "script_not_found", f'Rule "{rule_id}" is not registered')],
    )


def _failure_report(rule: Rule, row_count: int, message: str, elapsed_ms: float) -> RuleReport:
    return RuleReport(
        rule_id=rule.rule_id,
        name=rule.name,
        kind=rule.kind,
        success=False,
        errors=[IssueRecord(-1, rule.rule_id, None, "execution_error", message)],
        rows_processed=row_count,
        execution_ms=elapsed_ms,
    )


class RuleRunner:
    def __init__(self, registry: RuleRegistry):
        self.registry = registry

    def _execute(
        self,
        rule: Rule,
        rows: List[Row],
        header_matches: List[HeaderMatch],
        required_fields: List[str],
    ):
        """Run one rule. Returns (report, new_rows); new_rows is None unless a transform succeeded."""
        context = RuleContext(
            rows=copy_rows(rows),
            header_matches=list(header_matches),
            required_fields=list(required_fields),
        )
        logger.debug("Running rule %s on %d rows", rule.rule_id, len(rows))
        start = time.perf_counter()
        try:
            outcome = rule.execute(context)
        except Exception as exc:
            elapsed = round((time.perf_counter() - start) * 1000, 3)
            logger.exception("Rule %s raised", rule.rule_id)
            return _failure_report(rule, len(rows), f"Rule execution failed: {exc}", elapsed), None
        elapsed = round((time.perf_counter() - start) * 1000, 3)

        if not isinstance(outcome, RuleOutcome):
            logger.error("Rule %s returned %s instead of a RuleOutcome", rule.rule_id, type(outcome).__name__)
            message = f"Rule returned {type(outcome).__name__}, not a RuleOutcome"
            return _failure_report(rule, len(rows), message, elapsed), None

        if rule.is_transform and not isinstance(outcome.rows, list):
            logger.error("Rule %s returned rows of type %s", rule.rule_id, type(outcome.rows).__name__)
            message = f"Rule returned rows of type {type(outcome.rows).__name__}, not a list"
            return _failure_report(rule, len(rows), message, elapsed), None

        if rule.is_transform and len(outcome.rows) != len(rows):
            logger.error(
                "Rule %s returned %d rows for %d input rows; discarding its output",
                rule.rule_id, len(outcome.rows), len(rows),
            )
            message = f"Rule returned {len(outcome.rows)} rows for {len(rows)} input rows"
            return _failure_report(rule, len(rows), message, elapsed), None

        report = RuleReport(
            rule_id=rule.rule_id,
            name=rule.name,
            kind=rule.kind,
            success=outcome.success,
            changes=list(outcome.changes),
            errors=list(outcome.errors),
            warnings=list(outcome.warnings),
            rows_processed=len(rows),
            rows_touched=len({c.row_index for c in outcome.changes if c.row_index >= 0}),
            execution_ms=elapsed,
        )
        return report, (outcome.rows if rule.is_transform else None)

    def run(
        self,
        rows: List[Row],
        header_matches: Optional[Iterable[HeaderMatch]] = None,
        required_fields: Optional[Iterable[str]] = None,
        enabled_rule_ids: Optional[Iterable[str]] = None,
    ) -> RunReport:
        header_matches = list(header_matches or [])
        required_fields = list(required_fields or [])
        selected, unknown = self.registry.select(enabled_rule_ids)

        reports = [_not_found_report(rule_id) for rule_id in unknown]
        current = copy_rows(rows)

        for rule in selected:
            report, new_rows = self._execute(rule, current, header_matches, required_fields)
            reports.append(report)
            if new_rows is not None:
                current = new_rows

        run_report = RunReport(rule_reports=reports, rows=current)
        logger.info(
            "Pipeline ran %d rules over %d rows: %d changes, %d errors, %d warnings",
            len(selected), len(current),
            run_report.total_changes, run_report.total_errors, run_report.total_warnings,
        )
        return run_report

    def run_rule(
        self,
        rule_id: str,
        rows: List[Row],
        header_matches: Optional[Iterable[HeaderMatch]] = None,
        required_fields: Optional[Iterable[str]] = None,
    ) -> RunReport:
        """Run a single rule by id."""
        return self.run(rows, header_matches, required_fields, enabled_rule_ids=[rule_id])
