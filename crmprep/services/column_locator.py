"""
Column Locator

Finds the spreadsheet header that holds a canonical field. Header matches
are consulted first; if no header claims the field, the first row's keys
are scanned against HEADER_PATTERNS (exact pattern first, then substring).
"""

from typing import Dict, List, Optional, Sequence

from crmprep.services.header_matcher import HeaderMatch, normalize_header
from crmprep.services.rule_types import Row
from crmprep.services.schema_fields import OBJECT_TYPE_PRIORITY


HEADER_PATTERNS: Dict[str, List[str]] = {
    "state": ["state", "state/province", "state province", "state/region", "state region", "province", "region"],
    "solution": ["solution", "solution type", "solution_type"],
    "email": ["email", "e-mail", "email address", "email_address"],
    "phone": ["phone", "phone number", "phone_number", "telephone", "tel", "mobile", "cell", "cell phone", "mobile phone"],
    "firstname": ["first name", "first_name", "firstname", "first", "given name", "given_name"],
    "lastname": ["last name", "last_name", "lastname", "last", "surname", "family name", "family_name"],
    "company": ["company", "company name", "company_name", "organization", "organisation", "org"],
    "role": ["role", "user role", "user_role", "account role"],
    "program_type": ["program type", "program_type", "programtype", "program"],
    "whitespace": ["whitespace"],
    "new_business": ["new business", "new_business", "newbusiness"],
    "date": ["date", "created date", "close date", "start date", "end date", "birthday", "birthdate"],
    "city": ["city", "town"],
    "zip": ["zip", "zip code", "zipcode", "postal code", "postcode"],
    "country": ["country", "nation"],
    "address": ["address", "street", "street address"],
    "jobtitle": ["title", "job title", "position"],
    "website": ["website", "url", "web"],
    "dealname": ["deal name", "deal"],
    "amount": ["amount", "deal amount", "value"],
}


def _claimed_headers(header_matches: Sequence[HeaderMatch], field_id: str) -> List[HeaderMatch]:
    claims = [m for m in header_matches if m.is_matched and m.field_id == field_id]
    return sorted(claims, key=lambda m: OBJECT_TYPE_PRIORITY.get(m.object_type, len(OBJECT_TYPE_PRIORITY)))


def _fallback_scan(
    field_id: str,
    header_matches: Sequence[HeaderMatch],
    rows: Sequence[Row],
) -> Optional[str]:
    patterns = [normalize_header(p) for p in HEADER_PATTERNS.get(field_id, [field_id])]
    patterns = [p for p in patterns if p]
    if not rows or not patterns:
        return None

    # Columns the matcher bound to some other field are not guesses
    taken = {m.header for m in header_matches if m.is_matched and m.field_id != field_id}
    keys = [k for k in rows[0].keys() if k not in taken]
    normalized = [(k, normalize_header(k)) for k in keys]

    for key, norm in normalized:
        if norm in patterns:
            return key
    for key, norm in normalized:
        if norm and any(p in norm for p in patterns):
            return key
    return None


def locate_column(
    field_id: str,
    header_matches: Sequence[HeaderMatch],
    rows: Sequence[Row],
    object_type: Optional[str] = None,
) -> Optional[str]:
    """Return the header holding field_id, or None."""
    claims = _claimed_headers(header_matches, field_id)
    if object_type is not None:
        claims = [m for m in claims if m.object_type == object_type]
    if claims:
        return claims[0].header
    return _fallback_scan(field_id, header_matches, rows)


def locate_columns(
    field_id: str,
    header_matches: Sequence[HeaderMatch],
    rows: Sequence[Row],
) -> List[str]:
    """Every header claimed for field_id across object types, else the fallback guess."""
    claims = _claimed_headers(header_matches, field_id)
    if claims:
        return [m.header for m in claims]
    guess = _fallback_scan(field_id, header_matches, rows)
    return [guess] if guess else []
