"""
Header Matcher

Binds raw spreadsheet headers to Schema Fields in three passes:
1. Explicit overrides: a curated mapping for the normalized header, confidence 1.0
2. Exact variant match: normalized header == normalized label, variant or
   field id, confidence 1.0
3. Fuzzy match: rapidfuzz ratio, matched only when score >= threshold

A claimed (field_id, object_type) set is threaded through the passes, so a
field bound by one pass is invisible to the later ones and no two headers
share a field. When several fields qualify, contacts beat companies beat
deals.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from rapidfuzz import fuzz

from crmprep.config import settings
from crmprep.services.rule_types import IssueRecord
from crmprep.services.schema_fields import OBJECT_CONTACTS, SchemaField

logger = logging.getLogger(__name__)


SOURCE_OVERRIDE = "override"
SOURCE_EXACT = "exact"
SOURCE_FUZZY = "fuzzy"
SOURCE_IGNORED = "ignored"
SOURCE_NONE = "none"

_SEPARATORS = re.compile(r"[_\-\s]+")
_NON_ALNUM = re.compile(r"[^a-z0-9 ]")
_MULTI_SPACE = re.compile(r"\s+")

# A bare "Name" column holds a person's full name, so the companies field id
# "name" is not an exact alias; the full-name splitter owns that column.
GENERIC_FIELD_IDS = {"name"}


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class HeaderMatch:
    """Binding decision for one spreadsheet header."""
    header: str
    field: Optional[SchemaField] = None
    confidence: float = 0.0
    is_matched: bool = False
    source: str = SOURCE_NONE

    @property
    def field_id(self) -> Optional[str]:
        return self.field.field_id if self.field else None

    @property
    def object_type(self) -> Optional[str]:
        return self.field.object_type if self.field else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "header": self.header,
            "field_id": self.field_id,
            "object_type": self.object_type,
            "label": self.field.label if self.field else None,
            "confidence": self.confidence,
            "is_matched": self.is_matched,
            "source": self.source,
        }


@dataclass(frozen=True)
class HeaderOverride:
    """
    A curated mapping for one header.

    field_id=None means the column is deliberately left unmapped.
    """
    header: str
    field_id: Optional[str]
    object_type: str = OBJECT_CONTACTS


# ============================================================================
# HELPERS
# ============================================================================

def normalize_header(text: Any) -> str:
    """Lowercase, collapse separators, strip non-alphanumerics."""
    if text is None:
        return ""
    s = str(text).lower().strip()
    s = _SEPARATORS.sub(" ", s)
    s = _NON_ALNUM.sub("", s)
    return _MULTI_SPACE.sub(" ", s).strip()


def _pick_by_priority(candidates: List[Tuple[int, SchemaField]]) -> Tuple[int, SchemaField]:
    """Lowest object-type priority, then catalog order."""
    return min(candidates, key=lambda c: (c[1].priority, c[0]))


def resolve_mapping_overrides(
    admin_overrides: Optional[Iterable[HeaderOverride]] = None,
    manual_choices: Optional[Iterable[HeaderOverride]] = None,
) -> List[HeaderOverride]:
    """
    Merge the two override sources by normalized header.

    Admin overrides win over a user's manual choice for the same header.
    Both outrank automatic matching because the result feeds pass 1.
    """
    merged: Dict[str, HeaderOverride] = {}
    for choice in manual_choices or []:
        merged[normalize_header(choice.header)] = choice
    for override in admin_overrides or []:
        key = normalize_header(override.header)
        if key in merged and merged[key] != override:
            logger.debug("Admin override for %r replaces manual choice", override.header)
        merged[key] = override
    return list(merged.values())


# ============================================================================
# MATCHING PASSES
# ============================================================================

def _apply_overrides(
    headers: Sequence[str],
    normalized: List[str],
    fields: List[SchemaField],
    overrides: Iterable[HeaderOverride],
    results: List[Optional[HeaderMatch]],
    claimed: Set[Tuple[str, str]],
) -> None:
    by_header = {normalize_header(o.header): o for o in overrides}
    if not by_header:
        return
    by_key = {f.key: f for f in fields}

    for i, norm in enumerate(normalized):
        override = by_header.get(norm)
        if override is None or results[i] is not None:
            continue
        if override.field_id is None:
            results[i] = HeaderMatch(headers[i], source=SOURCE_IGNORED)
            continue
        key = (override.field_id, override.object_type)
        target = by_key.get(key)
        if target is None:
            logger.warning(
                "Override for header %r names unknown field %s.%s; ignoring",
                headers[i], override.object_type, override.field_id,
            )
            continue
        if key in claimed:
            continue
        results[i] = HeaderMatch(headers[i], target, 1.0, True, SOURCE_OVERRIDE)
        claimed.add(key)


def _exact_names(f: SchemaField) -> Tuple[str, ...]:
    """Label, variants and, unless too generic, the field id itself."""
    if normalize_header(f.field_id) in GENERIC_FIELD_IDS:
        return f.all_names()
    return f.all_names() + (f.field_id,)


def _apply_exact(
    headers: Sequence[str],
    normalized: List[str],
    fields: List[SchemaField],
    results: List[Optional[HeaderMatch]],
    claimed: Set[Tuple[str, str]],
) -> None:
    index: Dict[str, List[Tuple[int, SchemaField]]] = {}
    for pos, f in enumerate(fields):
        for name in _exact_names(f):
            norm = normalize_header(name)
            if norm:
                bucket = index.setdefault(norm, [])
                if not bucket or bucket[-1][0] != pos:
                    bucket.append((pos, f))

    for i, norm in enumerate(normalized):
        if results[i] is not None or not norm:
            continue
        candidates = [c for c in index.get(norm, []) if c[1].key not in claimed]
        if not candidates:
            continue
        _, chosen = _pick_by_priority(candidates)
        results[i] = HeaderMatch(headers[i], chosen, 1.0, True, SOURCE_EXACT)
        claimed.add(chosen.key)


def _best_candidate(
    scores: List[float],
    fields: List[SchemaField],
    claimed: Set[Tuple[str, str]],
    tie_delta: float,
) -> Optional[Tuple[float, SchemaField]]:
    open_scores = [
        (pos, score) for pos, score in enumerate(scores)
        if score > 0 and fields[pos].key not in claimed
    ]
    if not open_scores:
        return None
    top = max(score for _, score in open_scores)
    near = [(pos, fields[pos]) for pos, score in open_scores if score >= top - tie_delta]
    pos, chosen = _pick_by_priority(near)
    return scores[pos], chosen


def _apply_fuzzy(
    headers: Sequence[str],
    normalized: List[str],
    fields: List[SchemaField],
    results: List[Optional[HeaderMatch]],
    claimed: Set[Tuple[str, str]],
    threshold: float,
    tie_delta: float,
) -> None:
    pending = [i for i, norm in enumerate(normalized) if results[i] is None and norm]
    if not pending:
        return

    field_names = [
        [n for n in (normalize_header(name) for name in f.all_names()) if n]
        for f in fields
    ]
    scores: Dict[int, List[float]] = {}
    for i in pending:
        scores[i] = [
            max((fuzz.ratio(normalized[i], name) for name in names), default=0.0) / 100.0
            for names in field_names
        ]

    # Best score first across all headers, so a weak header cannot take a
    # field that a later header matches better.
    while pending:
        best: Optional[Tuple[float, int, SchemaField]] = None
        for i in pending:
            candidate = _best_candidate(scores[i], fields, claimed, tie_delta)
            if candidate is None:
                continue
            score, f = candidate
            if best is None or score > best[0]:
                best = (score, i, f)
        if best is None or best[0] < threshold:
            break
        score, i, f = best
        results[i] = HeaderMatch(headers[i], f, round(score, 4), True, SOURCE_FUZZY)
        claimed.add(f.key)
        pending.remove(i)

    # Below threshold: report the suggestion without claiming it
    for i in pending:
        candidate = _best_candidate(scores[i], fields, claimed, tie_delta)
        if candidate is not None:
            score, f = candidate
            results[i] = HeaderMatch(headers[i], f, round(score, 4), False, SOURCE_FUZZY)


# ============================================================================
# PUBLIC API
# ============================================================================

def match_headers(
    headers: Sequence[str],
    schema_fields: Iterable[SchemaField],
    overrides: Optional[Iterable[HeaderOverride]] = None,
    threshold: Optional[float] = None,
    tie_delta: Optional[float] = None,
) -> List[HeaderMatch]:
    """
    Match every header against the schema catalog.

    Returns one HeaderMatch per header, in input order. Never raises on
    missing required fields; see missing_required_fields().
    """
    if threshold is None:
        threshold = settings.HEADER_MATCH_THRESHOLD
    if tie_delta is None:
        tie_delta = settings.HEADER_TIE_DELTA

    fields = list(schema_fields)
    headers = [str(h) if h is not None else "" for h in headers]
    normalized = [normalize_header(h) for h in headers]
    results: List[Optional[HeaderMatch]] = [None] * len(headers)
    claimed: Set[Tuple[str, str]] = set()

    _apply_overrides(headers, normalized, fields, overrides or [], results, claimed)
    _apply_exact(headers, normalized, fields, results, claimed)
    _apply_fuzzy(headers, normalized, fields, results, claimed, threshold, tie_delta)

    matches = [r if r is not None else HeaderMatch(headers[i]) for i, r in enumerate(results)]
    logger.debug(
        "Matched %d of %d headers (%d claimed fields)",
        sum(1 for m in matches if m.is_matched), len(matches), len(claimed),
    )
    return matches


def missing_required_fields(
    header_matches: Iterable[HeaderMatch],
    required_field_ids: Iterable[str],
    schema_fields: Optional[Iterable[SchemaField]] = None,
) -> List[IssueRecord]:
    """Run-level missing_field errors for required fields no header claims."""
    claimed_ids = {m.field_id for m in header_matches if m.is_matched}
    labels: Dict[str, str] = {}
    for f in schema_fields or []:
        labels.setdefault(f.field_id, f.label)

    errors = []
    for field_id in required_field_ids:
        if field_id in claimed_ids:
            continue
        label = labels.get(field_id, field_id)
        errors.append(IssueRecord(
            row_index=-1,
            field=field_id,
            value=None,
            kind="missing_field",
            message=f'Required field "{label}" is not mapped to any column',
        ))
    return errors


def match_summary(header_matches: Iterable[HeaderMatch]) -> Dict[str, Any]:
    matches = list(header_matches)
    by_source: Dict[str, int] = {}
    for m in matches:
        key = m.source if m.is_matched or m.source == SOURCE_IGNORED else SOURCE_NONE
        by_source[key] = by_source.get(key, 0) + 1
    matched = sum(1 for m in matches if m.is_matched)
    return {
        "total": len(matches),
        "matched": matched,
        "unmatched": len(matches) - matched,
        "by_source": by_source,
    }
