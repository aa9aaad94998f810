"""
Company Name Rule: company-normalization (60, transform)

Token-wise:
- trailing legal suffixes -> canonical form (inc -> Inc., llc -> LLC)
- known acronyms -> uppercase
- connector words (of, and, the, ...) -> lowercase unless first
- tokens with deliberate mixed case (eBay, McDonald's) -> kept
- everything else -> capitalized per hyphen segment

Spaces before commas and periods are removed, commas get one space after.
All-caps input (longer than 3 characters, not an acronym) is flagged.
"""

import re
from typing import List

from crmprep.services.column_locator import locate_column
from crmprep.services.rule_types import (
    KIND_TRANSFORM,
    Rule,
    RuleContext,
    RuleOutcome,
    copy_rows,
    is_blank,
    row_number,
)
from crmprep.services.schema_fields import OBJECT_COMPANIES


COMPANY_SUFFIXES = {
    "inc": "Inc.", "inc.": "Inc.",
    "llc": "LLC", "l.l.c.": "LLC",
    "llp": "LLP",
    "lp": "LP",
    "ltd": "Ltd.", "ltd.": "Ltd.",
    "corp": "Corp.", "corp.": "Corp.",
    "co": "Co.", "co.": "Co.",
    "plc": "PLC",
    "gmbh": "GmbH",
    "ag": "AG",
    "sa": "SA", "s.a.": "SA",
    "nv": "NV", "n.v.": "NV",
    "bv": "BV", "b.v.": "BV",
    "pty": "Pty",
}

ACRONYMS = {
    "ibm", "hp", "att", "at&t", "usa", "us", "uk", "nyc", "ai", "it", "hr",
    "bmw", "ups", "ge", "3m", "cvs", "kfc", "nasa", "abc", "nbc", "cbs",
    "cnn", "espn", "dhl", "aws", "ati", "saas", "b2b", "crm", "erp", "llc",
    "ymca", "pwc", "kpmg", "ey", "bp", "hsbc", "ubs", "rbc", "td", "amd",
    "nvidia", "sap", "vmware", "defi",
}
# Written in a fixed mixed form rather than uppercase
ACRONYM_OVERRIDES = {"nvidia": "NVIDIA", "vmware": "VMware", "defi": "DeFi"}

CONNECTOR_WORDS = {"a", "an", "the", "and", "or", "of", "for", "in", "on", "at", "to", "by"}

SPACE_BEFORE_PUNCT = re.compile(r"\s+([,.])")
COMMA_WITHOUT_SPACE = re.compile(r",(?=\S)")
MULTI_SPACE = re.compile(r"\s{2,}")
TRAILING_PUNCT = ",;:"


def _is_mixed_case(token: str) -> bool:
    letters = [c for c in token if c.isalpha()]
    if not any(c.isupper() for c in letters) or not any(c.islower() for c in letters):
        return False
    simple_capitalized = letters[0].isupper() and all(c.islower() for c in letters[1:])
    return not simple_capitalized


def _capitalize_word(word: str) -> str:
    return "-".join(segment[:1].upper() + segment[1:].lower() for segment in word.split("-"))


def _suffix_start(cores: List[str]) -> int:
    """Index of the first token in the trailing run of legal suffixes."""
    start = len(cores)
    while start > 1 and cores[start - 1].lower() in COMPANY_SUFFIXES:
        start -= 1
    return start


def normalize_company_name(value: str) -> str:
    text = SPACE_BEFORE_PUNCT.sub(r"\1", value.strip())
    text = COMMA_WITHOUT_SPACE.sub(", ", text)
    text = MULTI_SPACE.sub(" ", text)

    tokens = text.split(" ")
    cores = [t.rstrip(TRAILING_PUNCT) for t in tokens]
    suffix_from = _suffix_start(cores)

    result = []
    for position, (token, core) in enumerate(zip(tokens, cores)):
        trail = token[len(core):]
        lower = core.lower()
        bare = lower.strip(".")
        if position >= suffix_from:
            word = COMPANY_SUFFIXES[lower]
        elif bare in ACRONYMS:
            word = ACRONYM_OVERRIDES.get(bare, core.upper())
        elif position > 0 and lower in CONNECTOR_WORDS:
            word = lower
        elif _is_mixed_case(core):
            word = core
        else:
            word = _capitalize_word(core)
        result.append(word + trail)
    return " ".join(result)


def is_all_caps_company(value: str) -> bool:
    letters = [c for c in value if c.isalpha()]
    if len(value.strip()) <= 3 or not letters:
        return False
    if value.strip().lower() in ACRONYMS:
        return False
    return all(c.isupper() for c in letters)


def run_company_normalization(context: RuleContext) -> RuleOutcome:
    rows = copy_rows(context.rows)
    outcome = RuleOutcome(rows=rows)

    columns = []
    for column in (
        locate_column("company", context.header_matches, rows),
        locate_column("name", context.header_matches, [], object_type=OBJECT_COMPANIES),
    ):
        if column and column not in columns:
            columns.append(column)

    for column in columns:
        for idx, row in enumerate(rows):
            value = row.get(column)
            if is_blank(value) or not isinstance(value, str):
                continue
            if is_all_caps_company(value):
                outcome.warn(
                    idx, column, value, "all_caps",
                    f'Row {row_number(idx)}: company "{value}" was entered in all caps',
                )
            fixed = normalize_company_name(value)
            if fixed != value:
                row[column] = fixed
                outcome.change(idx, column, value, fixed, "Standardized company name formatting")

    return outcome


COMPANY_NORMALIZATION = Rule(
    rule_id="company-normalization",
    name="Company Name Normalization",
    kind=KIND_TRANSFORM,
    order=60,
    execute=run_company_normalization,
    description="Standardizes company name capitalization and legal suffixes (Inc., LLC, Ltd.).",
    target_fields=("company", "name"),
)

RULES = [COMPANY_NORMALIZATION]
