"""
Duplicate Detection Rule: duplicate-detection (100, validate)

Groups rows by normalized email, by (first, last) name and by phone digits.
Every member of a group with more than one row gets a warning naming the
other rows. Name groups whose rows all share one email are skipped, since
the email warning already covers them.
"""

from typing import List, Optional

import pandas as pd

from crmprep.config import settings
from crmprep.services.column_locator import locate_column
from crmprep.services.contact_rules import extract_digits, normalize_email
from crmprep.services.rule_types import (
    KIND_VALIDATE,
    Rule,
    RuleContext,
    RuleOutcome,
    Row,
    as_text,
    is_blank,
    row_number,
)


MIN_PHONE_DIGITS = 7


def find_duplicate_groups(keys: List[Optional[str]]) -> List[List[int]]:
    """Row-index groups sharing a non-null key, ordered by first member."""
    frame = pd.DataFrame({"key": pd.Series(keys, dtype="object")})
    frame = frame.dropna()
    if frame.empty:
        return []
    groups = frame.groupby("key", sort=False).groups
    found = [sorted(int(i) for i in index) for index in groups.values() if len(index) > 1]
    return sorted(found, key=lambda g: g[0])


def _email_key(row: Row, column: Optional[str]) -> Optional[str]:
    if column is None or is_blank(row.get(column)):
        return None
    return normalize_email(as_text(row[column]))


def _name_key(row: Row, first_col: Optional[str], last_col: Optional[str]) -> Optional[str]:
    if first_col is None or last_col is None:
        return None
    first, last = row.get(first_col), row.get(last_col)
    if is_blank(first) or is_blank(last):
        return None
    return f"{as_text(first).lower()}|{as_text(last).lower()}"


def _phone_key(row: Row, column: Optional[str]) -> Optional[str]:
    if column is None or is_blank(row.get(column)):
        return None
    digits = extract_digits(as_text(row[column]))
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    cc = settings.DEFAULT_COUNTRY_CODE
    if len(digits) == 10 + len(cc) and digits.startswith(cc):
        digits = digits[len(cc):]
    return digits


def _siblings(group: List[int], idx: int) -> str:
    return ", ".join(str(row_number(i)) for i in group if i != idx)


def run_duplicate_detection(context: RuleContext) -> RuleOutcome:
    rows = context.rows
    outcome = RuleOutcome(rows=rows)
    if len(rows) < 2:
        return outcome

    email_col = locate_column("email", context.header_matches, rows)
    first_col = locate_column("firstname", context.header_matches, rows)
    last_col = locate_column("lastname", context.header_matches, rows)
    phone_col = locate_column("phone", context.header_matches, rows)

    email_keys = [_email_key(row, email_col) for row in rows]

    if email_col is not None:
        for group in find_duplicate_groups(email_keys):
            for idx in group:
                outcome.warn(
                    idx, email_col, rows[idx].get(email_col), "duplicate_email",
                    f'Row {row_number(idx)}: duplicate email "{email_keys[idx]}" '
                    f"also found in rows: {_siblings(group, idx)}",
                )

    if first_col is not None and last_col is not None:
        name_keys = [_name_key(row, first_col, last_col) for row in rows]
        for group in find_duplicate_groups(name_keys):
            emails = {email_keys[i] for i in group}
            if len(emails) == 1 and None not in emails:
                continue
            for idx in group:
                full_name = f"{as_text(rows[idx][first_col])} {as_text(rows[idx][last_col])}"
                outcome.warn(
                    idx, first_col, full_name, "duplicate_name",
                    f'Row {row_number(idx)}: duplicate name "{full_name}" '
                    f"also found in rows: {_siblings(group, idx)}",
                )

    if phone_col is not None:
        phone_keys = [_phone_key(row, phone_col) for row in rows]
        for group in find_duplicate_groups(phone_keys):
            for idx in group:
                outcome.warn(
                    idx, phone_col, rows[idx].get(phone_col), "duplicate_phone",
                    f'Row {row_number(idx)}: duplicate phone number '
                    f"also found in rows: {_siblings(group, idx)}",
                )

    return outcome


DUPLICATE_DETECTION = Rule(
    rule_id="duplicate-detection",
    name="Duplicate Detection",
    kind=KIND_VALIDATE,
    order=100,
    execute=run_duplicate_detection,
    description="Flags rows sharing an email address, a full name or a phone number.",
    target_fields=("email", "firstname", "lastname", "phone"),
)

RULES = [DUPLICATE_DETECTION]
