from __future__ import annotations
from typing import Any, Optional
from pydantic import BaseModel


# ── Schema fields and header matching ────────────────────────────────────────

class SchemaFieldModel(BaseModel):
    field_id: str
    label: str
    object_type: str = "contacts"
    variants: list[str] = []
    required: bool = False


class HeaderOverrideModel(BaseModel):
    header: str
    field_id: Optional[str] = None   # None = leave the column unmapped
    object_type: str = "contacts"


class HeaderMatchModel(BaseModel):
    header: str
    field_id: Optional[str] = None
    object_type: Optional[str] = None
    label: Optional[str] = None
    confidence: float
    is_matched: bool
    source: str


class IssueModel(BaseModel):
    row_index: int
    field: str
    value: Any = None
    kind: str
    message: str


class ChangeModel(BaseModel):
    row_index: int
    field: str
    original_value: Any = None
    new_value: Any = None
    reason: str


class MatchHeadersRequest(BaseModel):
    headers: list[str]
    schema_fields: list[SchemaFieldModel] = []
    admin_overrides: list[HeaderOverrideModel] = []
    manual_choices: list[HeaderOverrideModel] = []
    required_fields: Optional[list[str]] = None


class MatchHeadersResponse(BaseModel):
    header_matches: list[HeaderMatchModel]
    summary: dict[str, Any]
    missing_required: list[IssueModel]


# ── Rules and pipeline runs ──────────────────────────────────────────────────

class RuleDescription(BaseModel):
    rule_id: str
    name: str
    description: str
    kind: str
    order: int
    target_fields: list[str]


class CustomRuleModel(BaseModel):
    rule_id: str
    name: str
    kind: str
    order: int
    config: dict[str, Any]
    description: str = ""
    target_fields: list[str] = []
    enabled: bool = True


class RunPipelineRequest(BaseModel):
    rows: list[dict[str, Any]]
    headers: Optional[list[str]] = None          # default: keys of the rows
    schema_fields: list[SchemaFieldModel] = []
    admin_overrides: list[HeaderOverrideModel] = []
    manual_choices: list[HeaderOverrideModel] = []
    required_fields: Optional[list[str]] = None  # default: catalog required
    enabled_rule_ids: Optional[list[str]] = None  # default: every rule
    custom_rules: list[CustomRuleModel] = []


class RuleReportModel(BaseModel):
    rule_id: str
    name: str
    kind: str
    success: bool
    changes: list[ChangeModel]
    errors: list[IssueModel]
    warnings: list[IssueModel]
    rows_processed: int
    rows_touched: int
    execution_ms: float


class ValidationSummary(BaseModel):
    total_rows: int
    valid_rows: int
    invalid_rows: int
    total_changes: int
    total_errors: int
    total_warnings: int
    errors_by_kind: dict[str, int]
    warnings_by_kind: dict[str, int]
    can_continue: bool


class RunPipelineResponse(BaseModel):
    header_matches: list[HeaderMatchModel]
    rule_reports: list[RuleReportModel]
    run_errors: list[IssueModel]
    summary: ValidationSummary
    rows: list[dict[str, Any]]
    canonical_rows: list[dict[str, Any]]


# ── AI enrichment ────────────────────────────────────────────────────────────

class EnrichmentConfigModel(BaseModel):
    name: str
    prompt: str
    input_fields: list[str]
    output_field: str
    enabled: bool = True


class EnrichRequest(BaseModel):
    rows: list[dict[str, Any]]
    configs: list[EnrichmentConfigModel]


class EnrichmentRowResultModel(BaseModel):
    row_index: int
    config_name: str
    success: bool
    value: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False


class EnrichResponse(BaseModel):
    rows: list[dict[str, Any]]
    results: list[EnrichmentRowResultModel]
    enriched_count: int
    failed_count: int
    skipped_count: int
