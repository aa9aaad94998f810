"""
Schema Field catalog

Canonical CRM properties that spreadsheet headers are matched against.
Each field belongs to one object type (contacts, companies, deals) and
carries the textual variants that the header matcher compares against.

Catalog order matters: it is the tie-break after object-type priority.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


OBJECT_CONTACTS = "contacts"
OBJECT_COMPANIES = "companies"
OBJECT_DEALS = "deals"

# Lower index wins when one header matches several object types
OBJECT_TYPE_PRIORITY = {
    OBJECT_CONTACTS: 0,
    OBJECT_COMPANIES: 1,
    OBJECT_DEALS: 2,
}


@dataclass(frozen=True)
class SchemaField:
    """A canonical target property."""
    field_id: str
    label: str
    object_type: str = OBJECT_CONTACTS
    variants: tuple[str, ...] = ()
    required: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.field_id, self.object_type)

    @property
    def priority(self) -> int:
        return OBJECT_TYPE_PRIORITY.get(self.object_type, len(OBJECT_TYPE_PRIORITY))

    def all_names(self) -> tuple[str, ...]:
        """Label followed by the known variants."""
        return (self.label,) + tuple(self.variants)


# ============================================================================
# DEFAULT CATALOG
# ============================================================================

DEFAULT_SCHEMA_FIELDS: tuple[SchemaField, ...] = (
    # Contacts
    SchemaField("firstname", "First Name", OBJECT_CONTACTS, (
        "first name", "first_name", "firstname", "fname", "given name", "first",
    )),
    SchemaField("lastname", "Last Name", OBJECT_CONTACTS, (
        "last name", "last_name", "lastname", "lname", "surname", "family name", "last",
    )),
    SchemaField("email", "Email", OBJECT_CONTACTS, (
        "email", "e-mail", "email address", "e-mail address", "mail", "email_address",
    ), required=True),
    SchemaField("phone", "Phone Number", OBJECT_CONTACTS, (
        "phone", "phone number", "telephone", "tel", "phone_number", "work phone",
    )),
    SchemaField("mobilephone", "Mobile Phone", OBJECT_CONTACTS, (
        "mobile", "mobile phone", "cell", "cell phone", "cellphone",
    )),
    SchemaField("company", "Company Name", OBJECT_CONTACTS, (
        "company", "company name", "organization", "organisation", "employer",
    )),
    SchemaField("jobtitle", "Job Title", OBJECT_CONTACTS, (
        "job title", "title", "position", "role title", "designation",
    )),
    SchemaField("address", "Street Address", OBJECT_CONTACTS, (
        "address", "street", "street address", "address line 1", "address1",
    )),
    SchemaField("city", "City", OBJECT_CONTACTS, ("city", "town", "locality")),
    SchemaField("state", "State/Region", OBJECT_CONTACTS, (
        "state", "state/region", "region", "province", "state province",
    )),
    SchemaField("zip", "Postal Code", OBJECT_CONTACTS, (
        "zip", "zip code", "zipcode", "postal code", "postcode",
    )),
    SchemaField("country", "Country/Region", OBJECT_CONTACTS, ("country", "nation")),
    SchemaField("website", "Website URL", OBJECT_CONTACTS, (
        "website", "url", "web", "homepage", "site",
    )),
    SchemaField("role", "User Role", OBJECT_CONTACTS, ("role", "user role", "account role")),
    SchemaField("program_type", "Program Type", OBJECT_CONTACTS, (
        "program type", "programtype", "program",
    )),
    SchemaField("solution", "Solution", OBJECT_CONTACTS, ("solution", "solution type")),
    SchemaField("whitespace", "Whitespace", OBJECT_CONTACTS, ("whitespace", "white space")),
    SchemaField("new_business", "New Business", OBJECT_CONTACTS, (
        "new business", "newbusiness", "new biz",
    )),
    SchemaField("date_of_birth", "Date of Birth", OBJECT_CONTACTS, (
        "date of birth", "dob", "birthday", "birthdate", "birth date",
    )),
    SchemaField("createdate", "Create Date", OBJECT_CONTACTS, (
        "create date", "created date", "created", "date created", "created at",
    )),
    # Companies
    SchemaField("name", "Company Name", OBJECT_COMPANIES, (
        "company name", "organization name", "account name", "business name",
    )),
    SchemaField("domain", "Company Domain Name", OBJECT_COMPANIES, (
        "domain", "company domain", "company website", "website domain",
    )),
    SchemaField("phone", "Company Phone", OBJECT_COMPANIES, (
        "company phone", "office phone", "main phone", "phone",
    )),
    SchemaField("address", "Company Address", OBJECT_COMPANIES, (
        "company address", "office address", "address",
    )),
    SchemaField("city", "Company City", OBJECT_COMPANIES, ("company city", "city")),
    SchemaField("state", "Company State", OBJECT_COMPANIES, ("company state", "state")),
    SchemaField("zip", "Company Postal Code", OBJECT_COMPANIES, ("company zip", "zip")),
    SchemaField("country", "Company Country", OBJECT_COMPANIES, ("company country", "country")),
    SchemaField("industry", "Industry", OBJECT_COMPANIES, ("industry", "sector", "vertical")),
    # Deals
    SchemaField("dealname", "Deal Name", OBJECT_DEALS, ("deal name", "deal", "opportunity")),
    SchemaField("amount", "Amount", OBJECT_DEALS, ("amount", "deal amount", "value", "deal value")),
    SchemaField("closedate", "Close Date", OBJECT_DEALS, ("close date", "closing date", "closed date")),
    SchemaField("dealstage", "Deal Stage", OBJECT_DEALS, ("deal stage", "stage")),
    SchemaField("pipeline", "Pipeline", OBJECT_DEALS, ("pipeline", "deal pipeline")),
)


def get_default_schema_fields() -> list[SchemaField]:
    return list(DEFAULT_SCHEMA_FIELDS)


def merge_schema_fields(
    base: Iterable[SchemaField],
    extra: Iterable[SchemaField],
) -> list[SchemaField]:
    """
    Overlay admin-curated fields on a base catalog.

    A field with the same (field_id, object_type) key replaces the base entry
    in place; new keys are appended in the order given.
    """
    merged = list(base)
    positions = {f.key: i for i, f in enumerate(merged)}
    for f in extra:
        if f.key in positions:
            merged[positions[f.key]] = f
        else:
            positions[f.key] = len(merged)
            merged.append(f)
    return merged


def fields_for_object(fields: Iterable[SchemaField], object_type: str) -> list[SchemaField]:
    return [f for f in fields if f.object_type == object_type]


def required_field_ids(fields: Iterable[SchemaField]) -> list[str]:
    """Field ids flagged required, deduplicated, catalog order."""
    seen: list[str] = []
    for f in fields:
        if f.required and f.field_id not in seen:
            seen.append(f.field_id)
    return seen
