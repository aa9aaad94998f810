"""
Custom Rules

Stored rule definitions compiled into ordinary Rules. The definition's
config["op"] picks the behaviour:

    map_enum        (transform) {table, case_insensitive=True, default=None}
    regex_replace   (transform) {pattern, replacement, ignore_case=False}
    format          (transform) {case: lower|upper|title|none, trim=True}
    allowed_values  (validate)  {values, case_insensitive=True, message?}
    regex_match     (validate)  {pattern, message?}
    required        (validate)  blank cells fail
    custom_script   (either)    {source}, one sandboxed expression

A definition that cannot be compiled still becomes a Rule; running it
reports a single run-level invalid_code error.
"""

import logging
import re
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from crmprep.services.header_matcher import HeaderMatch
from crmprep.services.rule_registry import RuleRegistry
from crmprep.services.rule_types import (
    KIND_TRANSFORM,
    KIND_VALIDATE,
    RULE_KINDS,
    Rule,
    RuleContext,
    RuleOutcome,
    Row,
    as_text,
    copy_rows,
    is_blank,
    row_number,
)
from crmprep.services.script_sandbox import SandboxError, compile_expression

logger = logging.getLogger(__name__)


class CustomRuleError(ValueError):
    """A stored rule definition cannot be compiled."""


# Transform cell functions return the new value; validate cell functions
# return (valid, message).
CellFunction = Callable[[Any, str, Dict[str, Any]], Any]

TRANSFORM_OPS = {"map_enum", "regex_replace", "format"}
VALIDATE_OPS = {"allowed_values", "regex_match", "required"}
EITHER_OPS = {"custom_script"}
FORMAT_CASES = {"lower", "upper", "title", "none"}


@dataclass
class StoredRuleDefinition:
    rule_id: str
    name: str
    kind: str
    order: int
    config: Dict[str, Any] = field(default_factory=dict)
    description: str = ""
    target_fields: List[str] = field(default_factory=list)
    enabled: bool = True

    @property
    def op(self) -> Optional[str]:
        return self.config.get("op")


# ============================================================================
# OPERATION COMPILERS
# ============================================================================

def _compile_regex(config: Dict[str, Any], flags: int = 0) -> "re.Pattern[str]":
    pattern = config.get("pattern")
    if not isinstance(pattern, str) or not pattern:
        raise CustomRuleError("A regex pattern is required")
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        raise CustomRuleError(f"Invalid regex pattern: {exc}") from exc


def _map_enum(config: Dict[str, Any]) -> CellFunction:
    table = config.get("table")
    if not isinstance(table, dict) or not table:
        raise CustomRuleError("map_enum needs a non-empty table")
    case_insensitive = config.get("case_insensitive", True)
    default = config.get("default")
    lookup = {
        (str(k).strip().lower() if case_insensitive else str(k).strip()): v
        for k, v in table.items()
    }

    def apply(value, field_id, row):
        if is_blank(value):
            return value
        key = as_text(value).lower() if case_insensitive else as_text(value)
        if key in lookup:
            return lookup[key]
        return default if default is not None else value

    return apply


def _regex_replace(config: Dict[str, Any]) -> CellFunction:
    flags = re.IGNORECASE if config.get("ignore_case") else 0
    pattern = _compile_regex(config, flags)
    replacement = str(config.get("replacement", ""))

    def apply(value, field_id, row):
        if is_blank(value) or not isinstance(value, str):
            return value
        return pattern.sub(replacement, value)

    return apply


def _format(config: Dict[str, Any]) -> CellFunction:
    case = config.get("case", "none")
    if case not in FORMAT_CASES:
        raise CustomRuleError(f"Unknown format case: {case!r}")
    trim = config.get("trim", True)

    def apply(value, field_id, row):
        if is_blank(value) or not isinstance(value, str):
            return value
        text = value.strip() if trim else value
        if case == "lower":
            return text.lower()
        if case == "upper":
            return text.upper()
        if case == "title":
            return text.title()
        return text

    return apply


def _allowed_values(config: Dict[str, Any]) -> CellFunction:
    values = config.get("values")
    if not isinstance(values, (list, tuple, set)) or not values:
        raise CustomRuleError("allowed_values needs a non-empty list of values")
    case_insensitive = config.get("case_insensitive", True)
    allowed = {str(v).strip().lower() if case_insensitive else str(v).strip() for v in values}
    message = config.get("message")

    def check(value, field_id, row):
        if is_blank(value):
            return True, None
        text = as_text(value)
        if (text.lower() if case_insensitive else text) in allowed:
            return True, None
        return False, message or f'"{text}" is not an allowed value for {field_id}'

    return check


def _regex_match(config: Dict[str, Any]) -> CellFunction:
    pattern = _compile_regex(config)
    message = config.get("message")

    def check(value, field_id, row):
        if is_blank(value):
            return True, None
        text = as_text(value)
        if pattern.fullmatch(text):
            return True, None
        return False, message or f'"{text}" does not match the expected format for {field_id}'

    return check


def _required(config: Dict[str, Any]) -> CellFunction:
    message = config.get("message")

    def check(value, field_id, row):
        if is_blank(value):
            return False, message or f"{field_id} is required but empty"
        return True, None

    return check


def _custom_script(config: Dict[str, Any], kind: str) -> CellFunction:
    try:
        expression = compile_expression(config.get("source", ""))
    except SandboxError as exc:
        raise CustomRuleError(str(exc)) from exc

    if kind == KIND_TRANSFORM:
        def apply(value, field_id, row):
            return expression.evaluate(value=None if is_blank(value) else value, field=field_id, row=row)
        return apply

    def check(value, field_id, row):
        result = expression.evaluate(value=None if is_blank(value) else value, field=field_id, row=row)
        if isinstance(result, dict):
            if result.get("valid", True):
                return True, None
            return False, str(result.get("message") or f"{field_id} failed validation")
        if result is False:
            return False, f"{field_id} failed validation"
        return True, None

    return check


OP_COMPILERS: Dict[str, Callable[[Dict[str, Any]], CellFunction]] = {
    "map_enum": _map_enum,
    "regex_replace": _regex_replace,
    "format": _format,
    "allowed_values": _allowed_values,
    "regex_match": _regex_match,
    "required": _required,
}


def compile_cell_function(definition: StoredRuleDefinition) -> CellFunction:
    """Turn a definition's config into a per-cell callable. Raises CustomRuleError."""
    if definition.kind not in RULE_KINDS:
        raise CustomRuleError(f"Unknown rule kind: {definition.kind!r}")
    op = definition.op
    if op in EITHER_OPS:
        return _custom_script(definition.config, definition.kind)
    if op in TRANSFORM_OPS and definition.kind != KIND_TRANSFORM:
        raise CustomRuleError(f"{op} can only be used by transform rules")
    if op in VALIDATE_OPS and definition.kind != KIND_VALIDATE:
        raise CustomRuleError(f"{op} can only be used by validate rules")
    if op not in OP_COMPILERS:
        raise CustomRuleError(f"Unknown operation: {op!r}")
    return OP_COMPILERS[op](definition.config)


# ============================================================================
# EXECUTION
# ============================================================================

def target_columns(
    targets: Sequence[str],
    header_matches: Sequence[HeaderMatch],
    rows: Sequence[Row],
) -> List[str]:
    """
    Headers a custom rule applies to.

    A target names a field id ("email") or an object-qualified id
    ("companies.phone"); a target no header claims is tried as a raw header.
    """
    headers = [m.header for m in header_matches] or (list(rows[0].keys()) if rows else [])
    columns: List[str] = []
    for target in targets:
        wanted = target.strip().lower()
        found = [
            m.header for m in header_matches
            if m.is_matched and wanted in (m.field_id.lower(), f"{m.object_type}.{m.field_id}".lower())
        ]
        if not found:
            found = [h for h in headers if h.strip().lower() == wanted]
        for header in found:
            if header not in columns:
                columns.append(header)
    return columns


def row_view(row: Row, header_matches: Sequence[HeaderMatch]) -> Dict[str, Any]:
    """A row keyed by field id, or by raw header for unmatched columns."""
    view: Dict[str, Any] = {}
    matched = {m.header: m for m in header_matches if m.is_matched}
    for header, value in row.items():
        value = None if is_blank(value) else value
        match = matched.get(header)
        if match is None:
            view.setdefault(header, value)
            continue
        view[f"{match.object_type}.{match.field_id}"] = value
        view.setdefault(match.field_id, value)
    return view


def _differs(original: Any, new: Any) -> bool:
    if is_blank(original) and is_blank(new):
        return False
    return original != new


def _field_names(header_matches: Sequence[HeaderMatch]) -> Dict[str, str]:
    return {m.header: m.field_id for m in header_matches if m.is_matched}


def _cell_failure(outcome: RuleOutcome, definition: StoredRuleDefinition, idx: int, column: str, value: Any, exc: Exception) -> None:
    logger.warning("Custom rule %s failed on row %d: %s", definition.rule_id, row_number(idx), exc)
    outcome.error(
        idx, column, value, "execution_error",
        f'Row {row_number(idx)}: rule "{definition.name}" failed: {exc}',
    )


def _run_transform(definition: StoredRuleDefinition, apply: CellFunction, context: RuleContext) -> RuleOutcome:
    rows = copy_rows(context.rows)
    outcome = RuleOutcome(rows=rows)
    columns = target_columns(definition.target_fields, context.header_matches, rows)
    names = _field_names(context.header_matches)
    reason = definition.description or f'Applied custom rule "{definition.name}"'

    for idx, row in enumerate(rows):
        view = row_view(row, context.header_matches)
        for column in columns:
            original = row.get(column)
            try:
                new = apply(original, names.get(column, column), view)
            except Exception as exc:
                _cell_failure(outcome, definition, idx, column, original, exc)
                continue
            if _differs(original, new):
                row[column] = new
                outcome.change(idx, column, original, new, reason)

    return outcome


def _run_validate(definition: StoredRuleDefinition, check: CellFunction, context: RuleContext) -> RuleOutcome:
    outcome = RuleOutcome(rows=context.rows)
    columns = target_columns(definition.target_fields, context.header_matches, context.rows)
    names = _field_names(context.header_matches)

    for idx, row in enumerate(context.rows):
        view = row_view(row, context.header_matches)
        for column in columns:
            value = row.get(column)
            try:
                valid, message = check(value, names.get(column, column), view)
            except Exception as exc:
                _cell_failure(outcome, definition, idx, column, value, exc)
                continue
            if not valid:
                outcome.error(idx, column, value, definition.rule_id, f"Row {row_number(idx)}: {message}")

    return outcome


def _run_invalid(definition: StoredRuleDefinition, message: str, context: RuleContext) -> RuleOutcome:
    outcome = RuleOutcome(rows=context.rows, success=False)
    outcome.error(-1, definition.rule_id, None, "invalid_code", f'Rule "{definition.name}" is invalid: {message}')
    return outcome


def build_custom_rule(definition: StoredRuleDefinition) -> Rule:
    try:
        cell_function = compile_cell_function(definition)
    except CustomRuleError as exc:
        logger.warning("Custom rule %s could not be compiled: %s", definition.rule_id, exc)
        return Rule(
            rule_id=definition.rule_id,
            name=definition.name,
            kind=definition.kind if definition.kind in RULE_KINDS else KIND_VALIDATE,
            order=definition.order,
            execute=partial(_run_invalid, definition, str(exc)),
            description=definition.description,
            target_fields=tuple(definition.target_fields),
        )

    runner = _run_transform if definition.kind == KIND_TRANSFORM else _run_validate
    return Rule(
        rule_id=definition.rule_id,
        name=definition.name,
        kind=definition.kind,
        order=definition.order,
        execute=partial(runner, definition, cell_function),
        description=definition.description,
        target_fields=tuple(definition.target_fields),
    )


def build_registry_with_custom_rules(
    definitions: Iterable[StoredRuleDefinition],
    base_registry: RuleRegistry,
) -> RuleRegistry:
    """
    The built-in rules plus every enabled stored definition.

    A definition whose id matches a built-in rule does not replace it.
    """
    registry = RuleRegistry(base_registry)
    for definition in sorted(definitions, key=lambda d: d.order):
        if not definition.enabled:
            continue
        if definition.rule_id in registry:
            logger.info("Stored rule %s uses the built-in implementation", definition.rule_id)
            continue
        registry.register(build_custom_rule(definition))
    return registry
