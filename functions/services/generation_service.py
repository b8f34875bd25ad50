"""Generative estimation client for Myers Construct.

Two passes around one generative model:

1. Material identification - a short, free-form call that names the most
   critical materials for the project. Best-effort: anything unparseable
   degrades to an empty list.
2. Final synthesis - the full estimate, with live market prices and the
   contractor's won bids injected as context, an optional blueprint image
   attached, and the estimate JSON schema requested as structured output.

The model sits behind the GenerationProvider protocol so tests (and other
vendors) can substitute a deterministic provider.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import structlog

from config.errors import EstimatorError, MalformedOutput
from models.estimate import GroundingSource
from models.market import PriceRecord
from models.pipeline import StageOutcome
from models.project import Attachment, HistoricalBid, ProjectRequest
from services.llm_service import LLMService, WEB_SEARCH_TOOL, strip_code_fences
from validators.estimate_validator import ESTIMATE_RESULT_JSON_SCHEMA

logger = structlog.get_logger(__name__)


TARGET_MATERIAL_COUNT = 5

PLACEHOLDER_SOURCE = GroundingSource(title="AI Market Reasoning (General)", uri="#")


FOREMAN_SYSTEM_INSTRUCTION = """
You are the Myers Construct AI Foreman, a pre-construction estimator.
Synthesize accurate, grounded construction estimates using spatial reasoning and the contractor's own historical context.

SPATIAL TAKEOFF PROTOCOL:
- Detect architectural scales (e.g., 1/4" = 1') automatically from attached plans.
- Calculate square footage, linear footage and counts directly from the geometry in the plan.
- If the plan is low-resolution, hand-drawn or has ambiguous scaling, do not refuse. Add a high-impact 'risk' insight explaining the ambiguity and apply a conservative 20% contingency.

HISTORICAL BID PROTOCOL:
- Use PROVIDED_HISTORICAL_BIDS to weight the estimate: align margins, labor rates and vendor preferences with the contractor's won work.
- If historical bids conflict (e.g., divergent margins for similar work), prefer the MOST RECENT bid and add a 'market' insight flagging the discrepancy.

STRICT DATA PROTOCOL:
1. CATEGORY: every line item has a 'category' from exactly: "Material", "Labor", "Permit", "Sub", "Equipment".
2. INSIGHT TYPE: exactly one of "risk", "market", "compliance".
3. INSIGHT IMPACT: lowercase "low", "medium" or "high".
4. CSI DIVISION: full MasterFormat names (e.g., "Div 03 00 00 Concrete"), never a bare code.
5. GROUNDING: use LIVE_MARKET_GROUNDING_DATA prices and links where provided.
6. Provide at least three insights. marketConfidence is between 0 and 1; regionalMultiplier is a positive labor/cost factor.
""".strip()


IDENTIFICATION_INSTRUCTION = (
    "You are a construction materials specialist. "
    "Answer with a JSON array of strings only."
)


# =============================================================================
# Provider contract
# =============================================================================


@dataclass
class GenerationRequest:
    """One call to the generative model."""

    system_instruction: str
    text_parts: List[str]
    image: Optional[Attachment] = None
    response_schema: Optional[Dict[str, Any]] = None
    enable_web_search: bool = False


@dataclass
class GenerationResponse:
    """Raw model output plus any citations it reported."""

    text: str
    citations: List[GroundingSource] = field(default_factory=list)


class GenerationProvider(Protocol):
    """Anything that can turn a GenerationRequest into a GenerationResponse.

    Implementations raise GenerationUnavailable on transport/auth failure.
    """

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        ...


class LangChainGenerationProvider:
    """GenerationProvider backed by LangChain's ChatOpenAI."""

    def __init__(self, llm_service: Optional[LLMService] = None):
        self.llm = llm_service or LLMService()

    def _user_content(self, request: GenerationRequest) -> Any:
        text = "\n".join(part for part in request.text_parts if part)
        if request.image is None:
            return text
        return [
            {"type": "text", "text": text},
            {"type": "image_url", "image_url": {"url": request.image.to_data_url()}},
        ]

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        response_format = None
        if request.response_schema:
            response_format = {
                "type": "json_schema",
                "json_schema": {"name": "estimate_result", "schema": request.response_schema},
            }

        result = await self.llm.generate_with_system_prompt(
            request.system_instruction,
            self._user_content(request),
            tools=[WEB_SEARCH_TOOL] if request.enable_web_search else None,
            response_format=response_format,
        )
        return GenerationResponse(text=result["content"], citations=result["citations"])


# =============================================================================
# Prompt assembly
# =============================================================================


def build_market_block(grounding: Sequence[PriceRecord]) -> str:
    if not grounding:
        return ""
    return "LIVE_MARKET_GROUNDING_DATA:\n" + "\n".join(record.to_prompt_line() for record in grounding)


def build_history_block(history: Sequence[HistoricalBid]) -> str:
    if not history:
        return ""
    return "PROVIDED_HISTORICAL_BIDS (FOR WEIGHTING, MOST RECENT FIRST):\n" + "\n".join(
        bid.to_prompt_line() for bid in history
    )


def build_synthesis_parts(
    request: ProjectRequest,
    grounding: Sequence[PriceRecord],
    history: Sequence[HistoricalBid]
) -> List[str]:
    parts = [
        "PROJECT_DATA:\n"
        f"Scope: {request.scope}\n"
        f"Locale: {request.location}\n"
        f"Details: {request.description}"
    ]
    market_block = build_market_block(grounding)
    if market_block:
        parts.append(market_block)
    history_block = build_history_block(history)
    if history_block:
        parts.append(history_block)
    action = "ACTION: Synthesize the proposal matching the schema."
    if request.attachment is not None:
        action = "ACTION: Perform a spatial takeoff from the attached plan and synthesize the proposal matching the schema."
    parts.append(action)
    return parts


def parse_material_list(text: str) -> Optional[List[str]]:
    """Parse the identification pass output; None when it isn't a list of names."""
    try:
        parsed = json.loads(strip_code_fences(text))
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(parsed, list):
        return None
    materials = [item.strip() for item in parsed if isinstance(item, str) and item.strip()]
    if len(materials) != len(parsed):
        return None
    return materials


def collect_sources(
    market_sources: Sequence[GroundingSource],
    citations: Sequence[GroundingSource]
) -> List[GroundingSource]:
    """Merge market and model citations, dropping repeated URIs.

    Falls back to a single placeholder so the UI always has a source to show.
    """
    seen = set()
    sources: List[GroundingSource] = []
    for source in list(market_sources) + list(citations):
        if source.uri in seen:
            continue
        seen.add(source.uri)
        sources.append(source)
    return sources or [PLACEHOLDER_SOURCE]


# =============================================================================
# Estimation client
# =============================================================================


@dataclass
class SynthesisOutput:
    """Parsed (not yet validated) synthesis payload."""

    payload: Dict[str, Any]
    citations: List[GroundingSource] = field(default_factory=list)


class EstimationClient:
    """Generative Estimation Client."""

    def __init__(self, provider: GenerationProvider, enable_web_search: bool = True):
        self.provider = provider
        self.enable_web_search = enable_web_search

    async def identify_materials(self, scope: str, location: str) -> StageOutcome[List[str]]:
        """Pass 1: name the most critical materials for the project.

        Never raises for provider or parse failures; returns a degraded
        outcome with an empty list instead.
        """
        prompt = (
            f"List the {TARGET_MATERIAL_COUNT} most critical construction materials for this specific "
            f"project: {scope} in {location}. Output JSON array of strings only."
        )
        try:
            response = await self.provider.generate(GenerationRequest(
                system_instruction=IDENTIFICATION_INSTRUCTION,
                text_parts=[prompt],
            ))
        except EstimatorError as e:
            logger.warning("material_identification_unavailable", error=e.message)
            return StageOutcome.degrade([], e.message)

        materials = parse_material_list(response.text)
        if materials is None:
            logger.warning("material_identification_unparseable", raw=response.text[:200])
            return StageOutcome.degrade([], "material list could not be parsed")

        logger.info("materials_identified", count=len(materials))
        return StageOutcome.ok(materials[:TARGET_MATERIAL_COUNT])

    async def synthesize(
        self,
        request: ProjectRequest,
        grounding: Sequence[PriceRecord] = (),
        history: Sequence[HistoricalBid] = ()
    ) -> SynthesisOutput:
        """Pass 2: generate the full estimate.

        Raises:
            GenerationUnavailable: If the provider could not be reached.
            MalformedOutput: If the response is not a JSON object.
        """
        response = await self.provider.generate(GenerationRequest(
            system_instruction=FOREMAN_SYSTEM_INSTRUCTION,
            text_parts=build_synthesis_parts(request, grounding, history),
            image=request.attachment,
            response_schema=ESTIMATE_RESULT_JSON_SCHEMA,
            enable_web_search=self.enable_web_search,
        ))

        try:
            payload = json.loads(strip_code_fences(response.text))
        except (json.JSONDecodeError, TypeError) as e:
            raise MalformedOutput(
                "Synthesis response was not valid JSON",
                details={"parse_error": str(e), "raw_content": (response.text or "")[:500]},
                cause=e,
            )

        if not isinstance(payload, dict):
            raise MalformedOutput(
                "Synthesis response was not a JSON object",
                details={"type": type(payload).__name__},
            )

        logger.info(
            "estimate_synthesized",
            grounded_materials=len(grounding),
            historical_bids=len(history),
            has_attachment=request.attachment is not None,
            citation_count=len(response.citations),
        )
        return SynthesisOutput(payload=payload, citations=list(response.citations))
