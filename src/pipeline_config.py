"""Pipeline configuration: stage/status enums and PipelineConfig dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.config import Settings


class Stage(str, Enum):
    """Top-level pipeline stages, in the order they are visited."""

    IDLE = "idle"
    SEGMENTATION = "segmentation"
    AGGREGATING = "aggregating"
    PENDING_APPROVAL = "pending_approval"
    ANALYSIS = "analysis"
    COMPLETED = "completed"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobType(str, Enum):
    SLICE_WORKER = "slice_worker"
    AGGREGATOR = "aggregator"
    CHUNK_ANALYSIS = "chunk_analysis"


class AnalysisSubStage(str, Enum):
    """Progress markers shown while a chunk is being analysed."""

    QUEUED = "queued"
    ANALYZING = "analyzing"
    SCORING = "scoring"
    REFINING = "refining"
    COMPILING = "compiling"


SUBSTAGE_PROGRESSION: tuple[AnalysisSubStage, ...] = (
    AnalysisSubStage.ANALYZING,
    AnalysisSubStage.SCORING,
    AnalysisSubStage.REFINING,
    AnalysisSubStage.COMPILING,
)


class LogLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class ModelRole(str, Enum):
    """Which per-stage model selection a job draws from."""

    SEGMENTATION = "segmentation"
    ANALYSIS = "analysis"


class ErrorKind(str, Enum):
    """Failure classification recorded on failed jobs and chunks."""

    QUOTA_EXCEEDED = "quota_exceeded"
    TIMEOUT = "timeout"
    UNCLASSIFIED = "unclassified"


class QualityClass(str, Enum):
    """Three-level quality classification reported by chunk analysis."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable tuning for the scheduler and slice planner.

    Defaults mirror the settings defaults; use :meth:`from_settings` to pick
    up environment overrides.
    """

    max_concurrency: int = 5
    cooldown_seconds: int = 60
    approval_seconds: int = 60
    slice_size: int = 50
    slice_context: int = 3
    substage_interval_seconds: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        return cls(
            max_concurrency=settings.max_concurrency,
            cooldown_seconds=settings.cooldown_seconds,
            approval_seconds=settings.approval_seconds,
            slice_size=settings.slice_size,
            slice_context=settings.slice_context,
        )
