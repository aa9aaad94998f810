"""
Date Normalization Rule: date-normalization (35, transform)

Date columns are the ones matched to a date field, plus any header whose
words name a date (date, dob, birthday, created at, ...). Values are tried
against, in order:
- native date / datetime cells
- ISO 8601 (YYYY-MM-DD, optional time)
- YYYY/MM/DD
- US slash M/D/YYYY and M/D/YY (2-digit year > 50 is 19xx)
- dot/dash D.M.YYYY / D-M-YYYY, resolved by whichever part exceeds 12
- month names ("March 5, 2024", "5 Mar 2024") via dateutil
- compact YYYYMMDD
- Unix timestamps (seconds or milliseconds)
- Excel serial day numbers

Output is DATE_OUTPUT_FORMAT, or DATETIME_OUTPUT_FORMAT for headers that
mention a time. Unparseable values are left alone and reported as
invalid_date / invalid_datetime errors.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple

from dateutil import parser as dateutil_parser

from crmprep.config import settings
from crmprep.services.header_matcher import normalize_header
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
# CONSTANTS
# ============================================================================

DATE_FIELD_IDS = {"date_of_birth", "createdate", "closedate"}

DATE_HEADER_TOKENS = {
    "date", "dob", "birthday", "birthdate", "timestamp", "datetime",
    "createdate", "closedate", "startdate", "enddate", "duedate",
    "datecreated", "lastmodifieddate",
}
DATE_HEADER_PHRASES = ("created at", "updated at", "modified at", "created on", "updated on")
TIME_HEADER_TOKENS = {"time", "timestamp", "datetime"}

ISO_PATTERN = re.compile(
    r"^(\d{4})-(\d{1,2})-(\d{1,2})"
    r"(?:[T ](\d{1,2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?)?"
    r"(?:Z|[+-]\d{2}:?\d{2})?$"
)
YMD_SLASH_PATTERN = re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$")
US_SLASH_PATTERN = re.compile(
    r"^(\d{1,2})/(\d{1,2})/(\d{4}|\d{2})"
    r"(?:\s+(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([AaPp][Mm])?)?$"
)
DOT_DASH_PATTERN = re.compile(r"^(\d{1,2})[.\-](\d{1,2})[.\-](\d{4})$")
COMPACT_PATTERN = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
TIMESTAMP_SECONDS_PATTERN = re.compile(r"^\d{9,10}(?:\.\d+)?$")
TIMESTAMP_MILLIS_PATTERN = re.compile(r"^\d{12,13}$")
EXCEL_SERIAL_PATTERN = re.compile(r"^\d{5}(?:\.\d+)?$")
MONTH_NAME_PATTERN = re.compile(
    r"\b(jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?(?=[\s,\-/]|$)",
    re.IGNORECASE,
)
FOUR_DIGIT_YEAR = re.compile(r"\b\d{4}\b")

EXCEL_EPOCH = datetime(1899, 12, 30)
EXCEL_SERIAL_RANGE = (20000, 80000)
COMPACT_YEAR_RANGE = (1900, 2100)


# ============================================================================
# HELPERS
# ============================================================================

def is_date_header(header: str) -> bool:
    norm = normalize_header(header)
    if any(phrase in norm for phrase in DATE_HEADER_PHRASES):
        return True
    return any(token in DATE_HEADER_TOKENS for token in norm.split())


def is_time_header(header: str) -> bool:
    tokens = normalize_header(header).split()
    if any(token in TIME_HEADER_TOKENS for token in tokens):
        return True
    return len(tokens) >= 2 and tokens[-1] == "at"


def _expand_year(year: str) -> int:
    if len(year) == 2:
        yy = int(year)
        return 1900 + yy if yy > 50 else 2000 + yy
    return int(year)


def _build(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> Optional[datetime]:
    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None


def _to_24h(hour: int, meridiem: Optional[str]) -> int:
    if not meridiem:
        return hour
    meridiem = meridiem.lower()
    if meridiem == "pm" and hour < 12:
        return hour + 12
    if meridiem == "am" and hour == 12:
        return 0
    return hour


def resolve_day_month(first: int, second: int, dayfirst: bool) -> Tuple[int, int, bool]:
    """
    Decide (month, day) for two numeric parts.

    The interpretation that is unambiguous wins; otherwise dayfirst decides
    and the result is flagged ambiguous.
    """
    if first > 12 >= second:
        return second, first, False
    if second > 12 >= first:
        return first, second, False
    ambiguous = first != second
    if dayfirst:
        return second, first, ambiguous
    return first, second, ambiguous


def _parse_iso(text: str) -> Optional[datetime]:
    m = ISO_PATTERN.match(text)
    if not m:
        return None
    y, mo, d, hh, mm, ss = m.groups()
    return _build(int(y), int(mo), int(d), int(hh or 0), int(mm or 0), int(ss or 0))


def _parse_ymd_slash(text: str) -> Optional[datetime]:
    m = YMD_SLASH_PATTERN.match(text)
    if not m:
        return None
    return _build(int(m.group(1)), int(m.group(2)), int(m.group(3)))


def _parse_us_slash(text: str) -> Optional[datetime]:
    m = US_SLASH_PATTERN.match(text)
    if not m:
        return None
    a, b, year, hh, mm, ss, meridiem = m.groups()
    month, day, _ = resolve_day_month(int(a), int(b), dayfirst=False)
    hour = _to_24h(int(hh or 0), meridiem)
    return _build(_expand_year(year), month, day, hour, int(mm or 0), int(ss or 0))


def _parse_dot_dash(text: str, dayfirst: bool) -> Tuple[Optional[datetime], bool]:
    m = DOT_DASH_PATTERN.match(text)
    if not m:
        return None, False
    month, day, ambiguous = resolve_day_month(int(m.group(1)), int(m.group(2)), dayfirst)
    return _build(int(m.group(3)), month, day), ambiguous


def _parse_month_name(text: str) -> Optional[datetime]:
    if not MONTH_NAME_PATTERN.search(text) or not FOUR_DIGIT_YEAR.search(text):
        return None
    try:
        parsed = dateutil_parser.parse(text, default=datetime(1900, 1, 1))
    except (ValueError, OverflowError):
        return None
    return parsed.replace(tzinfo=None)


def _parse_compact(text: str) -> Optional[datetime]:
    m = COMPACT_PATTERN.match(text)
    if not m:
        return None
    year = int(m.group(1))
    if not COMPACT_YEAR_RANGE[0] <= year <= COMPACT_YEAR_RANGE[1]:
        return None
    return _build(year, int(m.group(2)), int(m.group(3)))


def _parse_timestamp(text: str) -> Optional[datetime]:
    if TIMESTAMP_MILLIS_PATTERN.match(text):
        seconds = int(text) / 1000
    elif TIMESTAMP_SECONDS_PATTERN.match(text):
        seconds = float(text)
    else:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_excel_serial(text: str) -> Optional[datetime]:
    if not EXCEL_SERIAL_PATTERN.match(text):
        return None
    serial = float(text)
    if not EXCEL_SERIAL_RANGE[0] <= serial <= EXCEL_SERIAL_RANGE[1]:
        return None
    return EXCEL_EPOCH + timedelta(days=serial)


def parse_date_value(value, dayfirst: Optional[bool] = None) -> Tuple[Optional[datetime], bool]:
    """
    Parse a cell into a datetime.

    Returns (parsed, ambiguous). parsed is None when no pattern fits.
    """
    if dayfirst is None:
        dayfirst = settings.DATE_DAYFIRST
    if isinstance(value, datetime):
        return value.replace(tzinfo=None), False
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day), False

    text = as_text(value)
    if not text:
        return None, False

    for parse in (_parse_iso, _parse_ymd_slash, _parse_us_slash):
        parsed = parse(text)
        if parsed is not None:
            return parsed, False

    parsed, ambiguous = _parse_dot_dash(text, dayfirst)
    if parsed is not None:
        return parsed, ambiguous

    for parse in (_parse_month_name, _parse_compact, _parse_timestamp, _parse_excel_serial):
        parsed = parse(text)
        if parsed is not None:
            return parsed, False
    return None, False


def _date_columns(context: RuleContext) -> List[str]:
    columns: List[str] = []
    for m in context.header_matches:
        if m.is_matched and m.field_id in DATE_FIELD_IDS:
            columns.append(m.header)
    headers = list(context.rows[0].keys()) if context.rows else [m.header for m in context.header_matches]
    for header in headers:
        if header not in columns and is_date_header(header):
            columns.append(header)
    return columns


# ============================================================================
# RULE
# ============================================================================

def run_date_normalization(context: RuleContext) -> RuleOutcome:
    rows = copy_rows(context.rows)
    outcome = RuleOutcome(rows=rows)

    for column in _date_columns(context):
        with_time = is_time_header(column)
        fmt = settings.DATETIME_OUTPUT_FORMAT if with_time else settings.DATE_OUTPUT_FORMAT
        kind = "invalid_datetime" if with_time else "invalid_date"

        for idx, row in enumerate(rows):
            value = row.get(column)
            if is_blank(value):
                continue
            parsed, ambiguous = parse_date_value(value)
            if parsed is None:
                outcome.error(
                    idx, column, value, kind,
                    f'Row {row_number(idx)}: could not parse "{value}" in "{column}" as a date',
                )
                continue

            formatted = parsed.strftime(fmt)
            if ambiguous:
                outcome.warn(
                    idx, column, value, "ambiguous_date",
                    f'Row {row_number(idx)}: "{value}" is ambiguous; read as {formatted}',
                )
            if formatted != value:
                row[column] = formatted
                outcome.change(idx, column, value, formatted, f'Converted "{value}" to {formatted}')

    return outcome


DATE_NORMALIZATION = Rule(
    rule_id="date-normalization",
    name="Date Normalization",
    kind=KIND_TRANSFORM,
    order=35,
    execute=run_date_normalization,
    description="Parses dates in common formats and rewrites them in one canonical format.",
    target_fields=tuple(sorted(DATE_FIELD_IDS)),
)

RULES = [DATE_NORMALIZATION]
