"""
Enumeration Normalization Rules

All transform, all blank-preserving:
- state-normalization (10): abbreviations, casing, misspellings -> full state name
- whitespace-validation (12), new-business-validation (13): Yes/No columns
- role-normalization (15), program-type-normalization (16),
  solution-normalization (17): allow-lists with an "Other" fallback

Exact allow-list values pass through untouched. A case-insensitive hit
fixes the casing. Anything else is cleared (Yes/No), replaced by "Other"
(role, program type, solution) or flagged and left alone (state).
"""

from typing import Callable, Dict, List, Optional

from rapidfuzz import fuzz, process

from crmprep.services.column_locator import locate_columns
from crmprep.services.rule_types import (
    KIND_TRANSFORM,
    Rule,
    RuleContext,
    RuleOutcome,
    as_text,
    copy_rows,
    is_blank,
    row_number,
)


# ============================================================================
# STATE CONSTANTS
# ============================================================================

STATE_MAP: Dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho",
    "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming",
    "DC": "District of Columbia", "PR": "Puerto Rico", "VI": "U.S. Virgin Islands",
    "GU": "Guam", "AS": "American Samoa", "MP": "Northern Mariana Islands",
}

STATE_NAMES = sorted(set(STATE_MAP.values()))
STATE_NAME_LOOKUP = {name.upper(): name for name in STATE_NAMES}

# Common misspellings seen in uploads, keyed uppercase
STATE_VARIANTS: Dict[str, str] = {
    "CALI": "California",
    "CALIF": "California",
    "CALIFRONIA": "California",
    "CLAIFORNIA": "California",
    "NEWYORK": "New York",
    "NEW YORK CITY": "New York",
    "NYC": "New York",
    "TEXS": "Texas",
    "FLORDA": "Florida",
    "FLORDIA": "Florida",
    "GEORIGA": "Georgia",
    "ILLNOIS": "Illinois",
    "ILLINIOS": "Illinois",
    "MASSACHUSETS": "Massachusetts",
    "MASSACHUSSETTS": "Massachusetts",
    "MICHGAN": "Michigan",
    "MINNESOTTA": "Minnesota",
    "MISSIPPI": "Mississippi",
    "MISSISIPPI": "Mississippi",
    "MISOURI": "Missouri",
    "MISSOURRI": "Missouri",
    "CONNETICUT": "Connecticut",
    "CONNECTICUTT": "Connecticut",
    "PENNSLVANIA": "Pennsylvania",
    "PENSYLVANIA": "Pennsylvania",
    "TENNESSE": "Tennessee",
    "TENNESEE": "Tennessee",
    "VIRGINA": "Virginia",
    "WASHINTON": "Washington",
    "WISCONSON": "Wisconsin",
    "WISCONSN": "Wisconsin",
    "WASHINGTON DC": "District of Columbia",
    "WASHINGTON D.C.": "District of Columbia",
    "D.C.": "District of Columbia",
}

STATE_FUZZY_CUTOFF = 85


# ============================================================================
# ALLOW-LISTS
# ============================================================================

YES_NO_LOOKUP: Dict[str, str] = {
    "yes": "Yes", "y": "Yes", "true": "Yes", "1": "Yes",
    "no": "No", "n": "No", "false": "No", "0": "No",
}
YES_NO_VALUES = {"Yes", "No"}

VALID_ROLES = [
    "Admin", "Administrator", "Ascend Employee", "ATI Champion", "ATI Employee",
    "Champion Nominee", "Coordinator", "Dean", "Director", "Educator",
    "Instructor", "Other", "Proctor", "Student", "TEAS Student", "LMS Admin",
]

VALID_PROGRAM_TYPES = [
    "ADN", "BSN", "OTHER-BSN", "RN", "PN", "Allied Health", "Diploma", "Other",
    "Testing Center", "ATI Allied Health", "RN to BSN", "APRN", "Healthcare",
    "Bookstore", "LPN", "DNP", "MSN", "CNA", "ADN - Online", "BSN - Online",
    "BSN Philippines", "CT", "CV Sonography", "Dental Assisting",
    "Dental Hygiene", "HCO", "Health Occupations", "Healthcare-ADN", "Hospital",
    "ICV", "LPN to RN", "MRI", "Medical Assisting", "Medical Sonography",
    "NHA Allied Health", "Nuclear Medicine", "Occupational Assisting",
    "PN - Online", "PhD", "Physical Therapy", "Radiation Therapy", "Radiography",
    "Resident", "Respiratory Therapy", "Sports Medicine", "TEAS Only",
    "Test Program Type", "Therapeutic Massage",
]

VALID_SOLUTIONS = ["OPTIMAL", "SUPREME", "STO", "CARP", "BASIC", "MID-MARKET", "COMPLETE"]

OTHER = "Other"


# ============================================================================
# HELPERS
# ============================================================================

def normalize_state(value: str) -> Optional[str]:
    """Return the canonical state name, or None if unrecognized."""
    text = value.strip()
    upper = text.upper()
    if upper in STATE_MAP:
        return STATE_MAP[upper]
    if upper in STATE_NAME_LOOKUP:
        return STATE_NAME_LOOKUP[upper]
    if upper in STATE_VARIANTS:
        return STATE_VARIANTS[upper]
    if len(upper) < 4:
        return None
    best = process.extractOne(
        text.lower(),
        [n.lower() for n in STATE_NAMES],
        scorer=fuzz.ratio,
        score_cutoff=STATE_FUZZY_CUTOFF,
    )
    if best is None:
        return None
    return STATE_NAMES[best[2]]


def _case_insensitive(values: List[str]) -> Callable[[str], Optional[str]]:
    lookup = {v.lower(): v for v in values}
    return lambda text: lookup.get(text.lower())


def _solution_lookup(text: str) -> Optional[str]:
    upper = text.upper()
    return upper if upper in VALID_SOLUTIONS else None


def _run_enum_normalization(
    context: RuleContext,
    field_id: str,
    allowed: set,
    resolve: Callable[[str], Optional[str]],
    invalid_kind: str,
    label: str,
    fallback: Optional[str] = None,
    clear_invalid: bool = False,
) -> RuleOutcome:
    rows = copy_rows(context.rows)
    outcome = RuleOutcome(rows=rows)

    for column in locate_columns(field_id, context.header_matches, rows):
        for idx, row in enumerate(rows):
            value = row.get(column)
            if is_blank(value):
                continue
            if isinstance(value, str) and value in allowed:
                continue
            text = as_text(value)
            if fallback is not None and text == fallback:
                continue

            resolved = resolve(text)
            if resolved is not None:
                if resolved != value:
                    row[column] = resolved
                    outcome.change(idx, column, value, resolved, f'Normalized "{text}" to "{resolved}"')
                continue

            if clear_invalid:
                row[column] = None
                outcome.change(idx, column, value, None, f'"{text}" is not a valid {label}; value cleared')
                outcome.warn(
                    idx, column, value, invalid_kind,
                    f'Row {row_number(idx)}: "{text}" in "{column}" is not Yes/No; value cleared',
                )
            elif fallback is not None:
                row[column] = fallback
                outcome.change(idx, column, value, fallback, f'"{text}" is not a valid {label}; set to "{fallback}"')
                outcome.warn(
                    idx, column, value, invalid_kind,
                    f'Row {row_number(idx)}: "{text}" is not a recognized {label}; set to "{fallback}"',
                )
            else:
                outcome.warn(
                    idx, column, value, invalid_kind,
                    f'Row {row_number(idx)}: "{text}" is not a recognized {label}',
                )

    return outcome


# ============================================================================
# RULES
# ============================================================================

def run_state_normalization(context: RuleContext) -> RuleOutcome:
    return _run_enum_normalization(
        context, "state", set(STATE_NAMES), normalize_state, "invalid_state", "state",
    )


def _run_yes_no(context: RuleContext, field_id: str, invalid_kind: str) -> RuleOutcome:
    return _run_enum_normalization(
        context, field_id, YES_NO_VALUES,
        lambda text: YES_NO_LOOKUP.get(text.lower()),
        invalid_kind, "Yes/No value", clear_invalid=True,
    )


def run_whitespace_validation(context: RuleContext) -> RuleOutcome:
    return _run_yes_no(context, "whitespace", "invalid_whitespace")


def run_new_business_validation(context: RuleContext) -> RuleOutcome:
    return _run_yes_no(context, "new_business", "invalid_new_business")


def run_role_normalization(context: RuleContext) -> RuleOutcome:
    return _run_enum_normalization(
        context, "role", set(VALID_ROLES), _case_insensitive(VALID_ROLES),
        "invalid_role", "Role", fallback=OTHER,
    )


def run_program_type_normalization(context: RuleContext) -> RuleOutcome:
    return _run_enum_normalization(
        context, "program_type", set(VALID_PROGRAM_TYPES), _case_insensitive(VALID_PROGRAM_TYPES),
        "invalid_program_type", "Program Type", fallback=OTHER,
    )


def run_solution_normalization(context: RuleContext) -> RuleOutcome:
    return _run_enum_normalization(
        context, "solution", set(VALID_SOLUTIONS), _solution_lookup,
        "invalid_solution", "Solution", fallback=OTHER,
    )


STATE_NORMALIZATION = Rule(
    rule_id="state-normalization",
    name="State Normalization",
    kind=KIND_TRANSFORM,
    order=10,
    execute=run_state_normalization,
    description="Converts state abbreviations (e.g. AZ) to full names (Arizona) "
                "and fixes casing and common misspellings.",
    target_fields=("state",),
)

WHITESPACE_VALIDATION = Rule(
    rule_id="whitespace-validation",
    name="Whitespace Yes/No Validation",
    kind=KIND_TRANSFORM,
    order=12,
    execute=run_whitespace_validation,
    description='Ensures the Whitespace column holds only "Yes", "No" or blank.',
    target_fields=("whitespace",),
)

NEW_BUSINESS_VALIDATION = Rule(
    rule_id="new-business-validation",
    name="New Business Yes/No Validation",
    kind=KIND_TRANSFORM,
    order=13,
    execute=run_new_business_validation,
    description='Ensures the New Business column holds only "Yes", "No" or blank.',
    target_fields=("new_business",),
)

ROLE_NORMALIZATION = Rule(
    rule_id="role-normalization",
    name="Role Normalization",
    kind=KIND_TRANSFORM,
    order=15,
    execute=run_role_normalization,
    description='Validates roles against the allowed list; others become "Other".',
    target_fields=("role",),
)

PROGRAM_TYPE_NORMALIZATION = Rule(
    rule_id="program-type-normalization",
    name="Program Type Normalization",
    kind=KIND_TRANSFORM,
    order=16,
    execute=run_program_type_normalization,
    description='Validates program types against the allowed list; others become "Other".',
    target_fields=("program_type",),
)

SOLUTION_NORMALIZATION = Rule(
    rule_id="solution-normalization",
    name="Solution Normalization",
    kind=KIND_TRANSFORM,
    order=17,
    execute=run_solution_normalization,
    description='Validates solution values against the allowed list; others become "Other".',
    target_fields=("solution",),
)

RULES = [
    STATE_NORMALIZATION,
    WHITESPACE_VALIDATION,
    NEW_BUSINESS_VALIDATION,
    ROLE_NORMALIZATION,
    PROGRAM_TYPE_NORMALIZATION,
    SOLUTION_NORMALIZATION,
]
