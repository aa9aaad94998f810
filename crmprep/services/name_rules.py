"""
Name Rules

full-name-splitter (order 5, transform)
- Source: a combined-name column ("Full Name", "Name", "Contact Name", ...)
  that the matcher left unmatched or only matched fuzzily
- Splits into first/last when either is blank on that row
- 1 token: first name only + single_name warning
- trailing suffix (Jr., III, ...): last name keeps "<last> <suffix>"
- 3+ tokens: first and last token, middle dropped (noted in the reason)

name-capitalization (order 50, transform)
- Particles (van, von, de, ...) lowercase except as first token
- Mc / Mac / O' / D' capitalize the following segment
- Suffixes get canonical casing (Jr., III, PhD)
- Hyphenated segments capitalized independently
- Tokens already in deliberate mixed case are kept
- ALL-CAPS input raises an all_caps warning
"""

from typing import Dict, List, Optional, Tuple

from crmprep.services.column_locator import locate_column
from crmprep.services.header_matcher import SOURCE_FUZZY, normalize_header
from crmprep.services.rule_types import (
    KIND_TRANSFORM,
    Rule,
    RuleContext,
    RuleOutcome,
    copy_rows,
    is_blank,
)


# ============================================================================
# CONSTANTS
# ============================================================================

FULL_NAME_HEADERS = {
    "full name", "fullname", "name", "contact name", "person name",
    "client name", "customer name", "contact",
}

# Canonical written form, keyed by lowercase token
NAME_SUFFIXES: Dict[str, str] = {
    "jr": "Jr.", "jr.": "Jr.",
    "sr": "Sr.", "sr.": "Sr.",
    "ii": "II", "iii": "III", "iv": "IV", "v": "V",
    "phd": "PhD", "ph.d.": "PhD", "ph.d": "PhD",
    "md": "MD", "m.d.": "MD",
    "dds": "DDS",
    "esq": "Esq.", "esq.": "Esq.",
}

LOWERCASE_PARTICLES = {
    "van", "von", "de", "del", "della", "der", "den", "di", "da", "du",
    "la", "le", "el", "dos", "das", "ter",
}

# Names starting with "mac" that are not Mac + surname
MAC_EXCEPTIONS = {
    "mack", "macy", "mace", "macon", "machado", "macias", "mackey",
    "mackie", "maceo", "machin", "macha",
}

FIRST_COLUMN_DEFAULT = "First Name"
LAST_COLUMN_DEFAULT = "Last Name"


# ============================================================================
# HELPERS
# ============================================================================

def is_suffix(token: str) -> bool:
    return token.lower().rstrip(",") in NAME_SUFFIXES


def split_full_name(full_name: str) -> Tuple[str, Optional[str], str]:
    """
    Split a combined name.

    Returns (first, last, note) where note is "" / "single" / "suffix" /
    "middle_dropped".
    """
    tokens = full_name.split()
    if not tokens:
        return "", None, ""
    if len(tokens) == 1:
        return tokens[0], None, "single"
    if len(tokens) == 2:
        return tokens[0], tokens[1], ""

    if is_suffix(tokens[-1]):
        last = f"{tokens[-2]} {tokens[-1].rstrip(',')}"
        note = "suffix" if len(tokens) == 3 else "middle_dropped"
        return tokens[0], last, note
    return tokens[0], tokens[-1], "middle_dropped"


def _find_full_name_column(context: RuleContext) -> Optional[str]:
    if not context.rows:
        return None
    matches = {m.header: m for m in context.header_matches}
    for header in context.rows[0].keys():
        if normalize_header(header) not in FULL_NAME_HEADERS:
            continue
        match = matches.get(header)
        if match is None or not match.is_matched or match.source == SOURCE_FUZZY:
            return header
    return None


def _is_mixed_case(token: str) -> bool:
    """Check if a token already has deliberate internal capitals (McDonald, DeShawn)."""
    letters = [c for c in token if c.isalpha()]
    if len(letters) < 2 or not letters[0].isupper():
        return False
    rest = letters[1:]
    return any(c.isupper() for c in rest) and any(c.islower() for c in rest)


def _capitalize_segment(segment: str) -> str:
    lower = segment.lower()
    if not lower:
        return segment
    if lower in NAME_SUFFIXES:
        return NAME_SUFFIXES[lower]

    if "'" in lower:
        head, _, tail = lower.partition("'")
        if len(head) <= 2 and tail:
            return f"{head.capitalize()}'{_capitalize_segment(tail)}"
        return lower.capitalize()

    if lower.startswith("mc") and len(lower) > 2:
        return "Mc" + lower[2].upper() + lower[3:]
    if lower.startswith("mac") and len(lower) > 5 and lower not in MAC_EXCEPTIONS:
        return "Mac" + lower[3].upper() + lower[4:]
    return lower.capitalize()


def capitalize_name(value: str) -> str:
    """Token-wise name capitalization."""
    tokens = value.split()
    result = []
    for position, token in enumerate(tokens):
        if _is_mixed_case(token):
            result.append(token)
        elif position > 0 and token.lower() in LOWERCASE_PARTICLES:
            result.append(token.lower())
        else:
            result.append("-".join(_capitalize_segment(s) for s in token.split("-")))
    return " ".join(result)


def is_all_caps(value: str) -> bool:
    letters = [c for c in value if c.isalpha()]
    return len(letters) > 1 and all(c.isupper() for c in letters)


# ============================================================================
# RULES
# ============================================================================

def run_full_name_splitter(context: RuleContext) -> RuleOutcome:
    rows = copy_rows(context.rows)
    outcome = RuleOutcome(rows=rows)

    source = _find_full_name_column(context)
    if source is None:
        return outcome

    first_col = locate_column("firstname", context.header_matches, rows)
    last_col = locate_column("lastname", context.header_matches, rows)
    if last_col == source:
        last_col = None
    if first_col is None:
        first_col = FIRST_COLUMN_DEFAULT
    if last_col is None:
        last_col = LAST_COLUMN_DEFAULT
    for row in rows:
        row.setdefault(first_col, None)
        row.setdefault(last_col, None)

    first_is_source = first_col == source

    for idx, row in enumerate(rows):
        full = row.get(source)
        if is_blank(full):
            continue
        existing_first = None if first_is_source else row.get(first_col)
        existing_last = row.get(last_col)
        if not is_blank(existing_last) and (first_is_source or not is_blank(existing_first)):
            continue

        full_text = str(full).strip()
        first, last, note = split_full_name(full_text)
        reason = f'Split from "{source}": "{full_text}"'
        if note == "middle_dropped":
            reason += " (middle name dropped)"
        elif note == "suffix":
            reason += " (with suffix)"

        if first and is_blank(existing_first) and row.get(first_col) != first:
            outcome.change(idx, first_col, row.get(first_col), first, reason)
            row[first_col] = first
        if last and is_blank(existing_last):
            outcome.change(idx, last_col, existing_last, last, reason)
            row[last_col] = last
        if note == "single":
            outcome.warn(
                idx, source, full_text, "single_name",
                f'Row {idx + 1}: "{full_text}" has a single name; last name left blank',
            )

    return outcome


def run_name_capitalization(context: RuleContext) -> RuleOutcome:
    rows = copy_rows(context.rows)
    outcome = RuleOutcome(rows=rows)

    columns: List[str] = []
    for field_id in ("firstname", "lastname"):
        column = locate_column(field_id, context.header_matches, rows)
        if column and column not in columns:
            columns.append(column)

    for column in columns:
        for idx, row in enumerate(rows):
            value = row.get(column)
            if is_blank(value) or not isinstance(value, str):
                continue
            if is_all_caps(value):
                outcome.warn(
                    idx, column, value, "all_caps",
                    f'Row {idx + 1}: name "{value}" was entered in all caps',
                )
            fixed = capitalize_name(value)
            if fixed != value:
                row[column] = fixed
                outcome.change(idx, column, value, fixed, "Standardized name capitalization")

    return outcome


FULL_NAME_SPLITTER = Rule(
    rule_id="full-name-splitter",
    name="Full Name Splitter",
    kind=KIND_TRANSFORM,
    order=5,
    execute=run_full_name_splitter,
    description="Splits a combined name column into first and last name.",
    target_fields=("firstname", "lastname"),
)

NAME_CAPITALIZATION = Rule(
    rule_id="name-capitalization",
    name="Name Capitalization",
    kind=KIND_TRANSFORM,
    order=50,
    execute=run_name_capitalization,
    description="Applies proper capitalization to first and last names "
                "(particles, Mc/Mac/O' prefixes, suffixes, hyphenated names).",
    target_fields=("firstname", "lastname"),
)

RULES = [FULL_NAME_SPLITTER, NAME_CAPITALIZATION]
