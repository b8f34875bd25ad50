"""Estimate Orchestrator for Myers Construct.

Drives one estimate request through the synthesis pipeline:

    received -> identifying -> grounding -> context_building
             -> synthesizing -> validating -> done

with ``failed`` reachable from any stage.

Identification, grounding and historical context only improve estimate
quality, so their failures (including timeouts) degrade to "absent" and the
run carries on. Synthesis and validation define correctness: their failures
end the run with a single typed error tagged with the failing stage. The
orchestrator never retries; retry policy belongs to the caller.
"""

import asyncio
import time
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, Tuple, TypeVar
from uuid import uuid4

from config.settings import Settings
from config.errors import (
    EstimatorError,
    ErrorCode,
    GenerationUnavailable,
    InvalidRequest,
)
from models.estimate import EstimateResult
from models.financials import FinancialSummary, compute_financial_summary
from models.market import PriceRecord
from models.pipeline import PipelineStage, PipelineTrace, StageOutcome, StageStatus
from models.project import HistoricalBid, ProjectRequest
from services.generation_service import EstimationClient, SynthesisOutput, collect_sources
from services.history_service import HistoryService
from utils.pipeline_logger import (
    log_pipeline_complete,
    log_pipeline_failed,
    log_pipeline_start,
    log_stage,
)
from validators.estimate_validator import validate_estimate

T = TypeVar("T")


class MarketClient(Protocol):
    async def ground_materials(self, materials: Sequence[str], location: str) -> List[PriceRecord]:
        ...


class EstimateOrchestrator:
    """Runs the estimate-synthesis pipeline.

    Holds only collaborators and configuration; all per-request state lives
    in the PipelineTrace of that run, so one orchestrator can serve
    concurrent requests.
    """

    def __init__(
        self,
        config: Settings,
        estimation_client: EstimationClient,
        market_client: MarketClient,
        history_service: HistoryService
    ):
        """Initialize EstimateOrchestrator.

        Args:
            config: Timeouts and bounds for this pipeline.
            estimation_client: Generative estimation client.
            market_client: Market grounding client.
            history_service: Historical bid context builder.
        """
        self.config = config
        self.estimation = estimation_client
        self.market = market_client
        self.history = history_service

    async def synthesize_estimate(self, request: ProjectRequest, user_id: Optional[str]) -> EstimateResult:
        """Produce a validated estimate for a project request.

        Args:
            request: The contractor's project request (not mutated).
            user_id: Requesting user, used for historical context.

        Returns:
            Validated EstimateResult with grounding sources attached.

        Raises:
            InvalidRequest: Required request fields are blank.
            GenerationUnavailable: Final synthesis call failed or timed out.
            MalformedOutput: Final synthesis output was not a JSON object.
            SchemaError: Final synthesis output violated the estimate schema.
        """
        return await self.run(request, user_id)

    async def synthesize_estimate_with_trace(
        self,
        request: ProjectRequest,
        user_id: Optional[str]
    ) -> Tuple[EstimateResult, PipelineTrace]:
        """Like synthesize_estimate, also returning the run's PipelineTrace.

        On failure the raised error carries the trace as ``error.trace``.
        """
        trace = PipelineTrace(request_id=f"req-{uuid4().hex[:12]}", user_id=user_id)
        try:
            result = await self.run(request, user_id, trace)
        except EstimatorError as e:
            e.trace = trace
            raise
        return result, trace

    async def run(
        self,
        request: ProjectRequest,
        user_id: Optional[str],
        trace: Optional[PipelineTrace] = None
    ) -> EstimateResult:
        """Same as synthesize_estimate, recording stages into ``trace``."""
        trace = trace or PipelineTrace(request_id=f"req-{uuid4().hex[:12]}", user_id=user_id)
        start_time = time.time()

        log_pipeline_start(trace.request_id, user_id, request.attachment is not None)

        try:
            result = await self._run_stages(request, user_id, trace)
        except EstimatorError as e:
            e.stage = e.stage or trace.current_stage.value
            trace.record(
                PipelineStage(e.stage),
                StageStatus.FAILED,
                int((time.time() - start_time) * 1000),
                error=e.message,
            )
            trace.enter(PipelineStage.FAILED)
            log_pipeline_failed(trace.request_id, e.stage, e.to_dict(), int((time.time() - start_time) * 1000))
            raise

        trace.enter(PipelineStage.DONE)
        log_pipeline_complete(
            trace.request_id,
            item_count=len(result.items),
            source_count=len(result.grounding_sources),
            degraded_stages=trace.degraded_stages,
            duration_ms=int((time.time() - start_time) * 1000),
        )
        return result

    async def _run_stages(
        self,
        request: ProjectRequest,
        user_id: Optional[str],
        trace: PipelineTrace
    ) -> EstimateResult:
        # received
        missing = request.missing_fields()
        if missing:
            raise InvalidRequest(
                f"Missing required project fields: {', '.join(missing)}",
                fields=missing,
            )

        # identifying
        materials = await self._degradable(
            trace,
            PipelineStage.IDENTIFYING,
            lambda: self._identify(request),
            empty=[],
            timeout=self.config.identification_timeout_seconds,
        )

        # grounding
        grounding: List[PriceRecord] = await self._degradable(
            trace,
            PipelineStage.GROUNDING,
            lambda: self._wrap(self.market.ground_materials(materials, request.location)),
            empty=[],
            timeout=self.config.market_timeout_seconds,
        )

        # context_building
        history: List[HistoricalBid] = await self._degradable(
            trace,
            PipelineStage.CONTEXT_BUILDING,
            lambda: self.history.build_context(user_id),
            empty=[],
            timeout=self.config.history_timeout_seconds,
        )

        # synthesizing
        synthesis = await self._fatal(
            trace,
            PipelineStage.SYNTHESIZING,
            lambda: self._synthesize(request, grounding, history),
        )

        # validating
        estimate = await self._fatal(
            trace,
            PipelineStage.VALIDATING,
            lambda: self._validate(synthesis),
        )

        sources = collect_sources(
            [record.to_grounding_source() for record in grounding],
            synthesis.citations,
        )
        return estimate.model_copy(update={"grounding_sources": sources})

    # ------------------------------------------------------------------
    # Stage bodies
    # ------------------------------------------------------------------

    async def _identify(self, request: ProjectRequest) -> StageOutcome[List[str]]:
        return await self.estimation.identify_materials(request.scope, request.location)

    async def _wrap(self, awaitable: Awaitable[T]) -> StageOutcome[T]:
        return StageOutcome.ok(await awaitable)

    async def _synthesize(
        self,
        request: ProjectRequest,
        grounding: List[PriceRecord],
        history: List[HistoricalBid]
    ) -> SynthesisOutput:
        try:
            return await asyncio.wait_for(
                self.estimation.synthesize(request, grounding, history),
                timeout=self.config.synthesis_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise GenerationUnavailable(
                f"Synthesis timed out after {self.config.synthesis_timeout_seconds}s",
                code=ErrorCode.PIPELINE_TIMEOUT,
                cause=e,
            )
        except EstimatorError:
            raise
        except Exception as e:
            raise GenerationUnavailable(f"Synthesis failed: {e}", cause=e)

    async def _validate(self, synthesis: SynthesisOutput) -> EstimateResult:
        return validate_estimate(synthesis.payload)

    # ------------------------------------------------------------------
    # Stage policies
    # ------------------------------------------------------------------

    async def _degradable(
        self,
        trace: PipelineTrace,
        stage: PipelineStage,
        body: Callable[[], Awaitable[StageOutcome[T]]],
        empty: T,
        timeout: float
    ) -> T:
        """Run a best-effort stage; any failure or timeout yields ``empty``."""
        trace.enter(stage)
        started = time.time()
        try:
            outcome = await asyncio.wait_for(body(), timeout=timeout)
        except asyncio.TimeoutError:
            outcome = StageOutcome.degrade(empty, f"timed out after {timeout}s")
        except Exception as e:
            outcome = StageOutcome.degrade(empty, str(e) or type(e).__name__)

        duration_ms = int((time.time() - started) * 1000)
        status = StageStatus.DEGRADED if outcome.degraded else StageStatus.COMPLETED
        count = len(outcome.value) if hasattr(outcome.value, "__len__") else None
        trace.record(stage, status, duration_ms, error=outcome.error, count=count)
        log_stage(trace.request_id, stage.value, status.value, duration_ms, count=count, error=outcome.error)
        return outcome.value

    async def _fatal(
        self,
        trace: PipelineTrace,
        stage: PipelineStage,
        body: Callable[[], Awaitable[T]]
    ) -> T:
        """Run a correctness stage; failures propagate tagged with ``stage``."""
        trace.enter(stage)
        started = time.time()
        try:
            value = await body()
        except EstimatorError as e:
            e.stage = stage.value
            raise

        duration_ms = int((time.time() - started) * 1000)
        trace.record(stage, StageStatus.COMPLETED, duration_ms)
        log_stage(trace.request_id, stage.value, StageStatus.COMPLETED.value, duration_ms)
        return value


def compute_financials(result: EstimateResult, markup: float, overhead: float) -> FinancialSummary:
    """Derive sell price for a finished estimate (see models.financials)."""
    return compute_financial_summary(result.items, markup=markup, overhead=overhead)


def create_orchestrator(
    config: Optional[Settings] = None,
    market_client: Optional[MarketClient] = None
) -> EstimateOrchestrator:
    """Wire production collaborators from an explicit configuration.

    Args:
        config: Pipeline settings; validated before any client is built.
        market_client: Shared grounding client. Defaults to a new
            SerpApiService built from ``config``.

    Raises:
        ValueError: If ``config`` is invalid.
    """
    from services.firestore_service import FirestoreService
    from services.generation_service import LangChainGenerationProvider
    from services.llm_service import LLMService
    from services.serpapi_service import SerpApiService

    config = config or Settings()
    config.validate()

    llm = LLMService.from_settings(config)
    return EstimateOrchestrator(
        config=config,
        estimation_client=EstimationClient(
            LangChainGenerationProvider(llm),
            enable_web_search=config.enable_web_search,
        ),
        market_client=market_client or SerpApiService(
            api_key=config.serp_api_key,
            timeout=config.market_timeout_seconds,
            max_materials=config.max_grounded_materials,
        ),
        history_service=HistoryService(FirestoreService(), limit=config.history_limit),
    )


async def synthesize_estimate(
    request: ProjectRequest,
    user_id: Optional[str],
    config: Optional[Settings] = None
) -> EstimateResult:
    """Convenience function: run one request through a fresh orchestrator."""
    return await create_orchestrator(config).synthesize_estimate(request, user_id)
