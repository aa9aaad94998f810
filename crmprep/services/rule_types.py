"""
Rule types shared by the registry, the runner and every rule module.

A Rule is a plain value: id, name, kind (transform | validate), order and an
execute callable taking a RuleContext and returning a RuleOutcome.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

import pandas as pd

if TYPE_CHECKING:
    from crmprep.services.header_matcher import HeaderMatch


KIND_TRANSFORM = "transform"
KIND_VALIDATE = "validate"
RULE_KINDS = (KIND_TRANSFORM, KIND_VALIDATE)

Row = dict[str, Any]


# ============================================================================
# RECORDS
# ============================================================================

@dataclass
class ChangeRecord:
    """One corrected cell."""
    row_index: int
    field: str
    original_value: Any
    new_value: Any
    reason: str

    def to_dict(self) -> dict:
        return {
            "row_index": self.row_index,
            "field": self.field,
            "original_value": self.original_value,
            "new_value": self.new_value,
            "reason": self.reason,
        }


@dataclass
class IssueRecord:
    """An error or warning. row_index -1 means run-level."""
    row_index: int
    field: str
    value: Any
    kind: str
    message: str

    @property
    def is_run_level(self) -> bool:
        return self.row_index < 0

    def to_dict(self) -> dict:
        return {
            "row_index": self.row_index,
            "field": self.field,
            "value": self.value,
            "kind": self.kind,
            "message": self.message,
        }


@dataclass
class RuleContext:
    rows: list[Row]
    header_matches: list["HeaderMatch"] = field(default_factory=list)
    required_fields: list[str] = field(default_factory=list)


@dataclass
class RuleOutcome:
    """What a rule hands back to the runner."""
    rows: list[Row]
    changes: list[ChangeRecord] = field(default_factory=list)
    errors: list[IssueRecord] = field(default_factory=list)
    warnings: list[IssueRecord] = field(default_factory=list)
    success: bool = True

    def change(self, row_index: int, column: str, original: Any, new: Any, reason: str) -> None:
        self.changes.append(ChangeRecord(row_index, column, original, new, reason))

    def error(self, row_index: int, column: str, value: Any, kind: str, message: str) -> None:
        self.errors.append(IssueRecord(row_index, column, value, kind, message))

    def warn(self, row_index: int, column: str, value: Any, kind: str, message: str) -> None:
        self.warnings.append(IssueRecord(row_index, column, value, kind, message))


@dataclass(frozen=True)
class Rule:
    rule_id: str
    name: str
    kind: str
    order: int
    execute: Callable[[RuleContext], RuleOutcome]
    description: str = ""
    target_fields: tuple[str, ...] = ()

    def __post_init__(self):
        if self.kind not in RULE_KINDS:
            raise ValueError(f"Unknown rule kind: {self.kind!r}")

    @property
    def is_transform(self) -> bool:
        return self.kind == KIND_TRANSFORM

    def describe(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "name": self.name,
            "description": self.description,
            "kind": self.kind,
            "order": self.order,
            "target_fields": list(self.target_fields),
        }


# ============================================================================
# HELPERS
# ============================================================================

def is_blank(value: Any) -> bool:
    """Check if a cell is None, NaN or whitespace-only."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float) and math.isnan(value):
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def copy_rows(rows: list[Row]) -> list[Row]:
    """Fresh row mappings, same order."""
    return [dict(row) for row in rows]


def row_number(row_index: int) -> int:
    """1-based row number for user-facing messages."""
    return row_index + 1


def as_text(value: Any) -> str:
    """Cell value as trimmed text; integral floats lose their ".0"."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()
