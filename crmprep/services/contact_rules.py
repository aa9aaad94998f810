"""
Contact Rules

email-normalization (19, transform): trim + lowercase
email-validation (20, validate):
- missing_field (run-level) when email is required but no header claims it
- missing_required when a required email cell is blank
- invalid_format (error) when the permissive shape regex fails
- disposable_email (error), personal_email / possible_typo / suspicious_format (warnings)

phone-normalization (30, transform): digits with a leading "+country"
- <7 digits: too_short warning, value left alone
- 10 digits: +1XXXXXXXXXX
- 11 digits starting with the country code: +1XXXXXXXXXX
- 7-9 digits: country code forced on, missing_area_code warning
- anything else: treated as international, verify_country_code warning
"""

import re
from typing import List, Optional, Tuple

from rapidfuzz.distance import Levenshtein

from crmprep.config import settings
from crmprep.services.column_locator import locate_column, locate_columns
from crmprep.services.rule_types import (
    KIND_TRANSFORM,
    KIND_VALIDATE,
    Rule,
    RuleContext,
    RuleOutcome,
    as_text,
    copy_rows,
    is_blank,
    row_number,
)


# ============================================================================
# EMAIL CONSTANTS
# ============================================================================

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
STRICT_EMAIL_REGEX = re.compile(r"^[a-z0-9._%+'\-]+@[a-z0-9\-]+(\.[a-z0-9\-]+)*\.[a-z]{2,}$")

PERSONAL_DOMAINS = {
    "gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "aol.com",
    "icloud.com", "mail.com", "protonmail.com", "zoho.com", "ymail.com",
    "live.com", "msn.com", "me.com", "mac.com",
}

DISPOSABLE_DOMAINS = {
    "mailinator.com", "guerrillamail.com", "tempmail.com", "throwaway.email",
    "10minutemail.com", "temp-mail.org", "fakeinbox.com", "sharklasers.com",
    "trashmail.com", "yopmail.com", "maildrop.cc", "dispostable.com",
}

DOMAIN_TYPOS = {
    "gmial.com": "gmail.com",
    "gmai.com": "gmail.com",
    "gmal.com": "gmail.com",
    "gamil.com": "gmail.com",
    "gnail.com": "gmail.com",
    "gmail.con": "gmail.com",
    "gmail.co": "gmail.com",
    "yaho.com": "yahoo.com",
    "yahooo.com": "yahoo.com",
    "yahoo.con": "yahoo.com",
    "hotmal.com": "hotmail.com",
    "hotmai.com": "hotmail.com",
    "hotmail.con": "hotmail.com",
    "outloo.com": "outlook.com",
    "outlok.com": "outlook.com",
    "outlook.con": "outlook.com",
}

# Edit-distance-1 neighbours of these are almost always typos
POPULAR_DOMAINS = [
    "gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "aol.com",
    "icloud.com", "comcast.net", "protonmail.com",
]


# ============================================================================
# PHONE CONSTANTS
# ============================================================================

EXTENSION_PATTERN = re.compile(r"\s*(?:ext\.?|extension|x|#)\s*(\d+)\s*$", re.IGNORECASE)
MAX_PHONE_DIGITS = 15


# ============================================================================
# EMAIL HELPERS
# ============================================================================

def normalize_email(value: str) -> str:
    return value.strip().lower()


def is_valid_email_shape(email: str) -> bool:
    return bool(EMAIL_REGEX.match(email))


def suggest_domain(domain: str) -> Optional[str]:
    """Suggest the intended domain for a misspelled one, or None."""
    domain = domain.lower()
    if domain in DOMAIN_TYPOS:
        return DOMAIN_TYPOS[domain]
    if domain in PERSONAL_DOMAINS or domain in DISPOSABLE_DOMAINS:
        return None
    for known in POPULAR_DOMAINS:
        if Levenshtein.distance(domain, known) == 1:
            return known
    return None


# ============================================================================
# PHONE HELPERS
# ============================================================================

def extract_digits(value: str) -> str:
    return re.sub(r"\D", "", value)


def split_extension(value: str) -> Tuple[str, Optional[str]]:
    match = EXTENSION_PATTERN.search(value)
    if not match:
        return value, None
    return value[:match.start()], match.group(1)


def normalize_phone(raw: str, country_code: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    """
    Normalize a phone number.

    Returns (normalized, warning_kind). normalized is None when the value
    should be left as it is.
    """
    cc = country_code or settings.DEFAULT_COUNTRY_CODE
    number, extension = split_extension(raw.strip())
    digits = extract_digits(number)
    has_plus = number.strip().startswith("+")
    if not has_plus and digits.startswith("00") and len(digits) > 11:
        has_plus = True
        digits = digits[2:]

    if len(digits) < 7:
        return None, "too_short"

    warning = None
    if has_plus:
        normalized = "+" + digits
        if digits.startswith(cc) and 7 <= len(digits) - len(cc) <= 9:
            warning = "missing_area_code"
    elif len(digits) == 10:
        normalized = "+" + cc + digits
    elif len(digits) == 10 + len(cc) and digits.startswith(cc):
        normalized = "+" + digits
    elif len(digits) < 10:
        normalized = "+" + cc + digits
        warning = "missing_area_code"
    else:
        normalized = "+" + digits
        warning = "verify_country_code"

    if warning is None and len(digits) > MAX_PHONE_DIGITS:
        warning = "too_long"
    if extension:
        normalized = f"{normalized} ext. {extension}"
    return normalized, warning


PHONE_WARNING_MESSAGES = {
    "too_short": 'phone "{value}" has too few digits to be a phone number',
    "missing_area_code": 'phone "{value}" may be missing an area code',
    "verify_country_code": 'phone "{value}" was treated as international; verify the country code',
    "too_long": 'phone "{value}" has more digits than any valid phone number',
}


# ============================================================================
# RULES
# ============================================================================

def run_email_normalization(context: RuleContext) -> RuleOutcome:
    rows = copy_rows(context.rows)
    outcome = RuleOutcome(rows=rows)

    column = locate_column("email", context.header_matches, rows)
    if column is None:
        return outcome

    for idx, row in enumerate(rows):
        value = row.get(column)
        if is_blank(value) or not isinstance(value, str):
            continue
        normalized = normalize_email(value)
        if normalized != value:
            row[column] = normalized
            outcome.change(idx, column, value, normalized, "Trimmed whitespace and converted to lowercase")

    return outcome


def run_email_validation(context: RuleContext) -> RuleOutcome:
    outcome = RuleOutcome(rows=context.rows)
    required = "email" in context.required_fields

    claimed = any(m.is_matched and m.field_id == "email" for m in context.header_matches)
    if required and not claimed:
        outcome.error(
            -1, "email", None, "missing_field",
            "Email is required but no column is mapped to it",
        )

    column = locate_column("email", context.header_matches, context.rows)
    if column is None:
        return outcome

    for idx, row in enumerate(context.rows):
        raw = row.get(column)
        n = row_number(idx)
        if is_blank(raw):
            if required:
                outcome.error(idx, column, raw, "missing_required", f"Row {n}: email is required but empty")
            continue

        email = normalize_email(as_text(raw))
        if not is_valid_email_shape(email):
            outcome.error(idx, column, raw, "invalid_format", f'Row {n}: "{email}" is not a valid email address')
            continue

        local, domain = email.rsplit("@", 1)
        if domain in DISPOSABLE_DOMAINS:
            outcome.error(
                idx, column, raw, "disposable_email",
                f'Row {n}: "{email}" uses a disposable email provider ({domain})',
            )
            continue

        if not STRICT_EMAIL_REGEX.match(email):
            outcome.warn(idx, column, raw, "suspicious_format", f'Row {n}: "{email}" has an unusual format')

        suggestion = suggest_domain(domain)
        if suggestion:
            outcome.warn(
                idx, column, raw, "possible_typo",
                f'Row {n}: "{domain}" looks like a typo; did you mean "{local}@{suggestion}"?',
            )
        elif domain in PERSONAL_DOMAINS:
            outcome.warn(
                idx, column, raw, "personal_email",
                f'Row {n}: "{email}" is a personal email address ({domain})',
            )

    return outcome


def _phone_columns(context: RuleContext) -> List[str]:
    columns: List[str] = []
    for field_id in ("phone", "mobilephone"):
        for column in locate_columns(field_id, context.header_matches, context.rows):
            if column not in columns:
                columns.append(column)
    return columns


def run_phone_normalization(context: RuleContext) -> RuleOutcome:
    rows = copy_rows(context.rows)
    outcome = RuleOutcome(rows=rows)

    for column in _phone_columns(context):
        for idx, row in enumerate(rows):
            value = row.get(column)
            if is_blank(value):
                continue
            text = as_text(value)
            normalized, warning = normalize_phone(text)
            if warning:
                message = PHONE_WARNING_MESSAGES[warning].format(value=text)
                outcome.warn(idx, column, value, warning, f"Row {row_number(idx)}: {message}")
            if normalized is not None and normalized != value:
                row[column] = normalized
                outcome.change(idx, column, value, normalized, f'Formatted phone number "{text}" as "{normalized}"')

    return outcome


EMAIL_NORMALIZATION = Rule(
    rule_id="email-normalization",
    name="Email Normalization",
    kind=KIND_TRANSFORM,
    order=19,
    execute=run_email_normalization,
    description="Trims whitespace and lowercases email addresses.",
    target_fields=("email",),
)

EMAIL_VALIDATION = Rule(
    rule_id="email-validation",
    name="Email Validation",
    kind=KIND_VALIDATE,
    order=20,
    execute=run_email_validation,
    description="Flags malformed, disposable, personal and misspelled email addresses "
                "and missing required emails.",
    target_fields=("email",),
)

PHONE_NORMALIZATION = Rule(
    rule_id="phone-normalization",
    name="Phone Normalization",
    kind=KIND_TRANSFORM,
    order=30,
    execute=run_phone_normalization,
    description="Reduces phone numbers to digits with a leading +country code.",
    target_fields=("phone", "mobilephone"),
)

RULES = [EMAIL_NORMALIZATION, EMAIL_VALIDATION, PHONE_NORMALIZATION]
