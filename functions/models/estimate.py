"""Estimate result models for Myers Construct.

Pydantic models for the structured estimate returned by the synthesis
pipeline. Field aliases match the camelCase JSON the web client and the
ledger use.
"""

import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


ItemCategory = Literal["Material", "Labor", "Permit", "Sub", "Equipment"]
InsightType = Literal["risk", "market", "compliance"]
InsightImpact = Literal["low", "medium", "high"]

ITEM_CATEGORIES = ("Material", "Labor", "Permit", "Sub", "Equipment")
INSIGHT_TYPES = ("risk", "market", "compliance")
INSIGHT_IMPACTS = ("low", "medium", "high")

# "03", "03 30 00", "Div 03", "Division 03 30 00" carry no name
BARE_CSI_CODE = re.compile(r"^\s*(div(ision)?\.?\s*)?[\d\s.\-]*$", re.IGNORECASE)


class LineItem(BaseModel):
    """One priced unit of work or material.

    ``total`` is always re-derived from ``qty * rate`` by the estimate
    validator; whatever the generator supplied is discarded.
    """

    id: str
    name: str
    qty: float = Field(strict=True, allow_inf_nan=False)
    unit: str
    rate: float = Field(strict=True, allow_inf_nan=False)
    total: float = Field(strict=True, allow_inf_nan=False)
    category: ItemCategory
    csi_division: str = Field(
        alias="csiDivision",
        validation_alias=AliasChoices("csiDivision", "csi_division"),
        description="Full MasterFormat division name",
    )
    retailer_name: str = Field(alias="retailerName")
    store_link: str = Field(alias="storeLink")
    logic: Optional[str] = Field(default=None, description="Rationale, for audit only")

    class Config:
        populate_by_name = True
        frozen = True

    @field_validator("csi_division")
    @classmethod
    def require_named_division(cls, value: str) -> str:
        if BARE_CSI_CODE.match(value):
            raise ValueError("CSI division must include the division name, not just its code")
        return value


class Insight(BaseModel):
    """Qualitative risk, market or compliance flag."""

    type: InsightType
    title: str
    text: str
    impact: InsightImpact

    class Config:
        frozen = True

    @field_validator("impact", mode="before")
    @classmethod
    def lowercase_impact(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class GroundingSource(BaseModel):
    """Citation for a price or fact used in synthesis."""

    title: str
    uri: str

    class Config:
        frozen = True


class EstimateResult(BaseModel):
    """Finalized estimate produced by one successful pipeline run."""

    project_summary: str = Field(alias="projectSummary")
    payment_terms: str = Field(alias="paymentTerms")
    items: List[LineItem] = Field(min_length=1)
    insights: List[Insight]
    market_confidence: float = Field(alias="marketConfidence", strict=True, allow_inf_nan=False, ge=0.0, le=1.0)
    regional_multiplier: float = Field(alias="regionalMultiplier", strict=True, allow_inf_nan=False, gt=0.0)
    grounding_sources: List[GroundingSource] = Field(default_factory=list, alias="groundingSources")
    suggested_agenda: Optional[List[str]] = Field(default=None, alias="suggestedAgenda")

    class Config:
        populate_by_name = True
        frozen = True

    @property
    def base_cost(self) -> float:
        return sum(item.total for item in self.items)

    def insights_of_type(self, insight_type: str) -> List[Insight]:
        return [insight for insight in self.insights if insight.type == insight_type]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with camelCase keys for JSON responses and Firestore."""
        return self.model_dump(by_alias=True, exclude_none=True)
