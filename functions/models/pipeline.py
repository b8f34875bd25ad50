"""Pipeline state models for Myers Construct.

Tracks the stages of one estimate-synthesis run. A trace is created per
run and never shared between requests.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field


T = TypeVar("T")


class PipelineStage(str, Enum):
    """Stages of one estimate request, in order."""

    RECEIVED = "received"
    IDENTIFYING = "identifying"
    GROUNDING = "grounding"
    CONTEXT_BUILDING = "context_building"
    SYNTHESIZING = "synthesizing"
    VALIDATING = "validating"
    DONE = "done"
    FAILED = "failed"


class StageStatus(str, Enum):
    """How a stage ended."""

    COMPLETED = "completed"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class StageOutcome(Generic[T]):
    """Result of a best-effort stage.

    ``value`` is always usable: a degraded stage carries an empty value
    and the error that caused the degrade.
    """

    value: T
    degraded: bool = False
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "StageOutcome[T]":
        return cls(value=value)

    @classmethod
    def degrade(cls, empty: T, error: str) -> "StageOutcome[T]":
        return cls(value=empty, degraded=True, error=error)


class StageRecord(BaseModel):
    """One finished stage in a pipeline trace."""

    stage: PipelineStage
    status: StageStatus
    duration_ms: int = Field(default=0, alias="durationMs", ge=0)
    detail: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None

    class Config:
        populate_by_name = True
        use_enum_values = True


class PipelineTrace(BaseModel):
    """Stage-by-stage record of one pipeline run."""

    request_id: str = Field(alias="requestId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    current_stage: PipelineStage = Field(default=PipelineStage.RECEIVED, alias="currentStage")
    stages: List[StageRecord] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=datetime.utcnow, alias="startedAt")

    class Config:
        populate_by_name = True

    def enter(self, stage: PipelineStage) -> None:
        self.current_stage = stage

    def record(
        self,
        stage: PipelineStage,
        status: StageStatus,
        duration_ms: int,
        error: Optional[str] = None,
        **detail: Any
    ) -> StageRecord:
        entry = StageRecord(
            stage=stage,
            status=status,
            duration_ms=max(duration_ms, 0),
            detail=detail,
            error=error,
        )
        self.stages.append(entry)
        return entry

    @property
    def degraded_stages(self) -> List[str]:
        return [record.stage for record in self.stages if record.status == StageStatus.DEGRADED.value]

    @property
    def failed(self) -> bool:
        return self.current_stage == PipelineStage.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
