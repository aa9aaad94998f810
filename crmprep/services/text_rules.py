"""
Text Cleanup Rules

whitespace-cleanup (order 1, transform), applied to every column:
- Repair mojibake: replacement table first, then a cp1252/latin-1 -> UTF-8
  re-decode when garbled markers remain
- Non-breaking space -> space, zero-width characters removed
- Trim, collapse runs of whitespace
- Strip symmetric wrapping quotes when the inner text is non-empty
"""

import re
from typing import List, Optional, Tuple

from crmprep.services.rule_types import (
    KIND_TRANSFORM,
    Rule,
    RuleContext,
    RuleOutcome,
    copy_rows,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# (garbled, fixed). UTF-8 read as cp1252 ("Ã©") and as Mac Roman ("√©").
MOJIBAKE_FIXES: List[Tuple[str, str]] = [
    ("â€™", "'"),
    ("â€˜", "'"),
    ("â€œ", '"'),
    ("â€\x9d", '"'),
    ("â€”", "-"),
    ("â€“", "-"),
    ("â€¦", "..."),
    ("â€¢", "•"),
    ("Ã©", "é"),
    ("Ã¨", "è"),
    ("Ãª", "ê"),
    ("Ã«", "ë"),
    ("Ã¡", "á"),
    ("Ã\xa0", "à"),
    ("Ã¢", "â"),
    ("Ã¤", "ä"),
    ("Ã£", "ã"),
    ("Ã¥", "å"),
    ("Ã±", "ñ"),
    ("Ã³", "ó"),
    ("Ã²", "ò"),
    ("Ã´", "ô"),
    ("Ã¶", "ö"),
    ("Ã¸", "ø"),
    ("Ãº", "ú"),
    ("Ã¹", "ù"),
    ("Ã»", "û"),
    ("Ã¼", "ü"),
    ("Ã\xad", "í"),
    ("Ã®", "î"),
    ("Ã¯", "ï"),
    ("Ã§", "ç"),
    ("Ã‰", "É"),
    ("Ã‡", "Ç"),
    ("Ã–", "Ö"),
    ("Ãœ", "Ü"),
    ("Ã„", "Ä"),
    ("ÃŸ", "ß"),
    ("Â©", "©"),
    ("Â®", "®"),
    ("Â°", "°"),
    ("Â£", "£"),
    ("Â\xa0", " "),
    ("√©", "é"),
    ("√®", "è"),
    ("√†", "à"),
    ("√°", "á"),
    ("√±", "ñ"),
    ("√≥", "ó"),
    ("√≠", "í"),
    ("√∫", "ú"),
    ("√∂", "ö"),
    ("√º", "ü"),
]
# Longest sequence first so "â€™" is not eaten by a shorter entry
MOJIBAKE_FIXES.sort(key=lambda pair: len(pair[0]), reverse=True)

MOJIBAKE_MARKERS = re.compile(r"Ã.|Â.|â€|√.")

ZERO_WIDTH = re.compile("[\u200b\u200c\u200d\ufeff]")
MULTI_WHITESPACE = re.compile(r"\s{2,}")
WRAPPING_QUOTES = ('"', "'")

REASON_WHITESPACE = "Cleaned whitespace/formatting"
REASON_MOJIBAKE = "Fixed character encoding issue (mojibake)"


# ============================================================================
# HELPERS
# ============================================================================

def has_mojibake(text: str) -> bool:
    """Check if text carries a known garbled-encoding sequence."""
    return bool(MOJIBAKE_MARKERS.search(text))


def _redecode(text: str) -> Optional[str]:
    for codec in ("cp1252", "latin-1"):
        try:
            return text.encode(codec).decode("utf-8")
        except (UnicodeEncodeError, UnicodeDecodeError):
            continue
    return None


def fix_mojibake(text: str) -> str:
    """Substitute known garbled sequences, then try a round-trip re-decode."""
    fixed = text
    for garbled, correct in MOJIBAKE_FIXES:
        if garbled in fixed:
            fixed = fixed.replace(garbled, correct)

    if has_mojibake(fixed):
        redecoded = _redecode(fixed)
        if redecoded is not None:
            before = len(MOJIBAKE_MARKERS.findall(fixed))
            after = len(MOJIBAKE_MARKERS.findall(redecoded))
            if after < before:
                fixed = redecoded
    return fixed


def clean_whitespace(text: str) -> str:
    s = text.replace("\u00a0", " ")
    s = ZERO_WIDTH.sub("", s)
    s = s.strip()
    s = MULTI_WHITESPACE.sub(" ", s)
    while len(s) >= 2 and s[0] == s[-1] and s[0] in WRAPPING_QUOTES:
        inner = s[1:-1].strip()
        if not inner:
            break
        s = inner
    return s


def clean_text(text: str) -> Tuple[str, Optional[str]]:
    """
    Return (cleaned, reason). reason is None when nothing changed.
    """
    repaired = fix_mojibake(text)
    cleaned = clean_whitespace(repaired)
    if cleaned == text:
        return text, None
    if repaired != text:
        return cleaned, REASON_MOJIBAKE
    return cleaned, REASON_WHITESPACE


# ============================================================================
# RULE
# ============================================================================

def run_whitespace_cleanup(context: RuleContext) -> RuleOutcome:
    rows = copy_rows(context.rows)
    outcome = RuleOutcome(rows=rows)

    for idx, row in enumerate(rows):
        for column, value in row.items():
            if not isinstance(value, str):
                continue
            cleaned, reason = clean_text(value)
            if reason is None:
                continue
            row[column] = cleaned
            outcome.change(idx, column, value, cleaned, reason)

    return outcome


WHITESPACE_CLEANUP = Rule(
    rule_id="whitespace-cleanup",
    name="Whitespace & Encoding Cleanup",
    kind=KIND_TRANSFORM,
    order=1,
    execute=run_whitespace_cleanup,
    description="Trims and collapses whitespace, removes invisible characters, "
                "strips wrapping quotes and repairs garbled encodings in every column.",
    target_fields=("*",),
)

RULES = [WHITESPACE_CLEANUP]
