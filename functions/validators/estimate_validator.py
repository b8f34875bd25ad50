"""Estimate output validation.

The generative model is asked for structured output, but that contract is
best-effort. Every candidate estimate goes through ``validate_estimate``
before it can reach a caller: shape and enum violations fail closed with a
SchemaError naming the offending field path, and line item totals are
re-derived from quantity and rate.
"""

import math
from typing import Any, Dict, List, Sequence

from pydantic import ValidationError as PydanticValidationError
import structlog

from config.errors import SchemaError
from models.estimate import (
    EstimateResult,
    LineItem,
    ITEM_CATEGORIES,
    INSIGHT_TYPES,
    INSIGHT_IMPACTS,
)

logger = structlog.get_logger(__name__)


# Structured-output contract handed to the generation provider. Keys match
# what the model emits; the validator accepts csi_division or csiDivision.
ESTIMATE_RESULT_JSON_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "projectSummary": {"type": "string"},
        "paymentTerms": {"type": "string"},
        "items": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "name": {"type": "string"},
                    "qty": {"type": "number"},
                    "unit": {"type": "string"},
                    "rate": {"type": "number"},
                    "total": {"type": "number"},
                    "category": {"type": "string", "enum": list(ITEM_CATEGORIES)},
                    "csi_division": {"type": "string"},
                    "retailerName": {"type": "string"},
                    "storeLink": {"type": "string"},
                    "logic": {"type": "string"},
                },
                "required": [
                    "id", "name", "qty", "unit", "rate", "total",
                    "category", "csi_division", "retailerName", "storeLink",
                ],
            },
        },
        "insights": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": list(INSIGHT_TYPES)},
                    "title": {"type": "string"},
                    "text": {"type": "string"},
                    "impact": {"type": "string", "enum": list(INSIGHT_IMPACTS)},
                },
                "required": ["type", "title", "text", "impact"],
            },
        },
        "marketConfidence": {"type": "number"},
        "regionalMultiplier": {"type": "number"},
        "suggestedAgenda": {"type": "array", "items": {"type": "string"}},
    },
    "required": [
        "projectSummary", "paymentTerms", "items", "insights",
        "marketConfidence", "regionalMultiplier",
    ],
}


def line_total(qty: float, rate: float) -> float:
    return qty * rate


def recompute_line_item_totals(items: Sequence[LineItem]) -> List[LineItem]:
    """Return copies of ``items`` with ``total`` set to ``qty * rate``.

    Any total supplied upstream is discarded.
    """
    return [item.model_copy(update={"total": line_total(item.qty, item.rate)}) for item in items]


def _error_path(loc: Sequence[Any]) -> str:
    # pydantic reports tagged/choice branches (e.g. 'list[...]') in loc; keep the data path only
    parts = [str(part) for part in loc if not (isinstance(part, str) and ("[" in part or part.startswith("function-")))]
    return ".".join(parts) or "$"


def _describe(errors: List[Dict[str, Any]]) -> List[str]:
    return [f"{_error_path(err['loc'])}: {err['msg']}" for err in errors]


def validate_estimate(raw: Any) -> EstimateResult:
    """Validate a candidate estimate and re-derive line item totals.

    Args:
        raw: Parsed JSON object from the generation provider.

    Returns:
        A validated EstimateResult whose item totals equal qty * rate.

    Raises:
        SchemaError: On any missing field, wrong type or out-of-enum value.
            No partial result is ever returned.
    """
    if not isinstance(raw, dict):
        raise SchemaError(
            f"Estimate must be a JSON object, got {type(raw).__name__}",
            fields=["$"]
        )

    try:
        parsed = EstimateResult.model_validate(raw)
    except PydanticValidationError as e:
        errors = e.errors()
        fields = list(dict.fromkeys(_error_path(err["loc"]) for err in errors))
        problems = _describe(errors)
        logger.warning(
            "estimate_schema_invalid",
            error_count=len(errors),
            fields=fields[:10],
        )
        raise SchemaError(
            f"Estimate failed schema validation: {'; '.join(problems[:5])}",
            fields=fields,
            details={"errors": problems}
        )

    items = recompute_line_item_totals(parsed.items)
    overflowed = [f"items.{i}.total" for i, item in enumerate(items) if not math.isfinite(item.total)]
    if overflowed:
        raise SchemaError(
            "Line item total is not a finite number",
            fields=overflowed,
        )
    return parsed.model_copy(update={"items": items})
