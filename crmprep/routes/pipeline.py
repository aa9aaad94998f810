from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException

from crmprep.schemas.pipeline import (
    EnrichRequest,
    EnrichResponse,
    HeaderOverrideModel,
    MatchHeadersRequest,
    MatchHeadersResponse,
    RuleDescription,
    RunPipelineRequest,
    RunPipelineResponse,
    SchemaFieldModel,
)
from crmprep.services.crm_export import to_canonical_rows, validation_summary
from crmprep.services.custom_rules import StoredRuleDefinition
from crmprep.services.enrichment import EnrichmentConfig, EnrichmentError, enrich_rows
from crmprep.services.header_matcher import (
    HeaderOverride,
    match_headers,
    match_summary,
    missing_required_fields,
    resolve_mapping_overrides,
)
from crmprep.services.pipeline import process_upload
from crmprep.services.rule_registry import get_default_registry
from crmprep.services.schema_fields import (
    SchemaField,
    fields_for_object,
    get_default_schema_fields,
    merge_schema_fields,
    required_field_ids,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pipeline", tags=["pipeline"])


def _schema_fields(extra: list[SchemaFieldModel]) -> list[SchemaField]:
    """Default catalog with any request-supplied fields laid over it."""
    fields = [
        SchemaField(f.field_id, f.label, f.object_type, tuple(f.variants), f.required)
        for f in extra
    ]
    return merge_schema_fields(get_default_schema_fields(), fields)


def _overrides(models: list[HeaderOverrideModel]) -> list[HeaderOverride]:
    return [HeaderOverride(m.header, m.field_id, m.object_type) for m in models]


# ─────────────────────────────────────────────────────────────────────────────
# Catalog
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/rules", response_model=list[RuleDescription])
def list_rules():
    """Every built-in rule in execution order."""
    return get_default_registry().describe()


@router.get("/schema-fields", response_model=list[SchemaFieldModel])
def list_schema_fields(object_type: Optional[str] = None):
    fields = get_default_schema_fields()
    if object_type:
        fields = fields_for_object(fields, object_type)
    return [
        SchemaFieldModel(
            field_id=f.field_id,
            label=f.label,
            object_type=f.object_type,
            variants=list(f.variants),
            required=f.required,
        )
        for f in fields
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Step 1: Match spreadsheet headers to CRM fields
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/match-headers", response_model=MatchHeadersResponse)
def match_upload_headers(payload: MatchHeadersRequest):
    """
    Preview the column mapping before running the rules.
    Admin overrides win over manual choices, both win over automatic matching.
    """
    if not payload.headers:
        raise HTTPException(status_code=422, detail="No headers provided")

    fields = _schema_fields(payload.schema_fields)
    overrides = resolve_mapping_overrides(
        _overrides(payload.admin_overrides),
        _overrides(payload.manual_choices),
    )
    matches = match_headers(payload.headers, fields, overrides=overrides)
    required = payload.required_fields if payload.required_fields is not None else required_field_ids(fields)

    return MatchHeadersResponse(
        header_matches=[m.to_dict() for m in matches],
        summary=match_summary(matches),
        missing_required=[e.to_dict() for e in missing_required_fields(matches, required, fields)],
    )


# ─────────────────────────────────────────────────────────────────────────────
# Step 2: Run the cleaning pipeline
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/run", response_model=RunPipelineResponse)
def run_pipeline(payload: RunPipelineRequest):
    """
    Match headers, then run every selected rule over the rows.
    Returns the cleaned rows, the per-rule reports and a validation summary.
    """
    if not payload.rows:
        raise HTTPException(status_code=422, detail="No rows provided")

    custom_rules = [
        StoredRuleDefinition(
            rule_id=r.rule_id,
            name=r.name,
            kind=r.kind,
            order=r.order,
            config=r.config,
            description=r.description,
            target_fields=list(r.target_fields),
            enabled=r.enabled,
        )
        for r in payload.custom_rules
    ]

    header_matches, report = process_upload(
        headers=payload.headers,
        rows=payload.rows,
        schema_fields=_schema_fields(payload.schema_fields),
        required_fields=payload.required_fields,
        admin_overrides=_overrides(payload.admin_overrides),
        manual_choices=_overrides(payload.manual_choices),
        enabled_rule_ids=payload.enabled_rule_ids,
        custom_rules=custom_rules,
    )

    return RunPipelineResponse(
        header_matches=[m.to_dict() for m in header_matches],
        rule_reports=[r.to_dict() for r in report.rule_reports],
        run_errors=[e.to_dict() for e in report.run_errors],
        summary=validation_summary(report),
        rows=report.rows,
        canonical_rows=to_canonical_rows(report.rows, header_matches),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Step 3: AI enrichment of derived columns
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/enrich", response_model=EnrichResponse)
def enrich(payload: EnrichRequest):
    if not payload.rows:
        raise HTTPException(status_code=422, detail="No rows provided")

    configs = [
        EnrichmentConfig(c.name, c.prompt, list(c.input_fields), c.output_field, c.enabled)
        for c in payload.configs
    ]
    try:
        result = enrich_rows(payload.rows, configs)
    except EnrichmentError as exc:
        logger.warning("Enrichment unavailable: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc))

    return EnrichResponse(
        rows=result.rows,
        results=[r.to_dict() for r in result.results],
        enriched_count=result.enriched_count,
        failed_count=result.failed_count,
        skipped_count=result.skipped_count,
    )
