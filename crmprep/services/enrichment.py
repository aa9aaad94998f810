"""
AI Enrichment Service: uses OpenAI to fill a derived column from other
columns of the same row (e.g. an industry guess from company name and
website).

Each EnrichmentConfig is a prompt template with {column} placeholders. A
row is skipped when its output cell is already populated or every input is
blank. One failed row never aborts the batch.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import OpenAI

from crmprep.config import settings
from crmprep.services.rule_types import Row, as_text, copy_rows, is_blank

logger = logging.getLogger(__name__)

_client: Optional[OpenAI] = None

PLACEHOLDER = re.compile(r"\{([^{}]+)\}")
CODE_FENCE = re.compile(r"```[a-z]*\n?")

SYSTEM_PROMPT = (
    "You enrich CRM records. Answer with the requested value only, "
    "no explanation. Answer Unknown if the input is not enough."
)


class EnrichmentError(RuntimeError):
    """Enrichment cannot run at all (e.g. no API key configured)."""


@dataclass
class EnrichmentConfig:
    name: str
    prompt: str
    input_fields: List[str]
    output_field: str
    enabled: bool = True


@dataclass
class EnrichmentRowResult:
    row_index: int
    config_name: str
    success: bool
    value: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row_index": self.row_index,
            "config_name": self.config_name,
            "success": self.success,
            "value": self.value,
            "error": self.error,
            "skipped": self.skipped,
        }


@dataclass
class EnrichmentResult:
    rows: List[Row]
    results: List[EnrichmentRowResult] = field(default_factory=list)

    @property
    def enriched_count(self) -> int:
        return sum(1 for r in self.results if r.success and not r.skipped)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def skipped_count(self) -> int:
        return sum(1 for r in self.results if r.skipped)


def _get_client() -> OpenAI:
    global _client
    if not settings.OPENAI_API_KEY:
        raise EnrichmentError("OPENAI_API_KEY is not configured")
    if _client is None:
        _client = OpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


def render_prompt(template: str, row: Row) -> str:
    """Fill {column} placeholders from the row; unknown or blank columns become ''."""
    def replace(match: "re.Match[str]") -> str:
        value = row.get(match.group(1).strip())
        return "" if is_blank(value) else as_text(value)

    return PLACEHOLDER.sub(replace, template)


def _clean_answer(text: Optional[str]) -> str:
    """Strip markdown fences and wrapping quotes GPT sometimes adds."""
    clean = CODE_FENCE.sub("", text or "").strip()
    if len(clean) >= 2 and clean[0] == clean[-1] and clean[0] in "\"'`":
        clean = clean[1:-1].strip()
    return clean


def _ask(client: OpenAI, prompt: str) -> str:
    response = client.chat.completions.create(
        model=settings.ENRICHMENT_MODEL,
        messages=[
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        temperature=0.2,
        max_tokens=settings.ENRICHMENT_MAX_TOKENS,
    )
    return _clean_answer(response.choices[0].message.content)


def enrich_rows(
    rows: List[Row],
    configs: List[EnrichmentConfig],
    client: Optional[OpenAI] = None,
) -> EnrichmentResult:
    """
    Apply every enabled config to every row.

    Returns new rows; the input rows are not modified. Raises EnrichmentError
    only when no client can be built.
    """
    if client is None:
        client = _get_client()

    enriched = copy_rows(rows)
    result = EnrichmentResult(rows=enriched)

    for config in configs:
        if not config.enabled:
            continue
        for idx, row in enumerate(enriched):
            if not is_blank(row.get(config.output_field)):
                result.results.append(EnrichmentRowResult(idx, config.name, True, skipped=True))
                continue
            if all(is_blank(row.get(f)) for f in config.input_fields):
                result.results.append(EnrichmentRowResult(idx, config.name, True, skipped=True))
                continue

            try:
                answer = _ask(client, render_prompt(config.prompt, row))
            except Exception as exc:
                logger.warning("Enrichment %r failed on row %d: %s", config.name, idx + 1, exc)
                result.results.append(EnrichmentRowResult(idx, config.name, False, error=str(exc)))
                continue

            if not answer:
                result.results.append(
                    EnrichmentRowResult(idx, config.name, False, error="Empty response from model")
                )
                continue
            row[config.output_field] = answer
            result.results.append(EnrichmentRowResult(idx, config.name, True, value=answer))

    logger.info(
        "Enrichment finished: %d enriched, %d failed, %d skipped",
        result.enriched_count, result.failed_count, result.skipped_count,
    )
    return result
