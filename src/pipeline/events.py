"""Transition events. The reducer is the only place they are applied."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from src.pipeline.models import Job, PipelineState
from src.pipeline_config import ErrorKind, LogLevel, ModelRole, Stage
from src.segmentation.models import Chunk


@dataclass(frozen=True)
class StartSegmentation:
    jobs: tuple[Job, ...]


@dataclass(frozen=True)
class AddAggregatorJob:
    job: Job


@dataclass(frozen=True)
class StageFailed:
    """Stage-level fatal condition; scheduling of new stages stops until an operator acts."""

    reason: str


@dataclass(frozen=True)
class StartJob:
    job_id: str
    model: str
    at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class CompleteJob:
    job_id: str
    result: str
    at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class FailJob:
    job_id: str
    error: str
    kind: ErrorKind = ErrorKind.UNCLASSIFIED
    at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class AggregatorSucceeded:
    report: str
    chunks: tuple[Chunk, ...]
    approval_seconds: int = 60


@dataclass(frozen=True)
class StartAnalysis:
    jobs: tuple[Job, ...]


@dataclass(frozen=True)
class AdvanceChunkSubStage:
    chunk_id: str


@dataclass(frozen=True)
class ChunkAnalysisSucceeded:
    chunk_id: str
    result: str


@dataclass(frozen=True)
class ChunkAnalysisFailed:
    chunk_id: str
    error: str
    kind: ErrorKind = ErrorKind.UNCLASSIFIED


@dataclass(frozen=True)
class FinalizePipeline:
    output: str


@dataclass(frozen=True)
class TriggerCooldown:
    seconds: int = 60


@dataclass(frozen=True)
class CooldownTick:
    pass


@dataclass(frozen=True)
class EndCooldown:
    pass


@dataclass(frozen=True)
class PauseForModelSwitch:
    stage: Stage
    model: str


@dataclass(frozen=True)
class RequeueRateLimited:
    pass


@dataclass(frozen=True)
class ResumeAfterModelSwitch:
    pass


@dataclass(frozen=True)
class RetryAllFailed:
    pass


@dataclass(frozen=True)
class SetModel:
    role: ModelRole
    model: str


@dataclass(frozen=True)
class SetThinkingMode:
    enabled: bool
    thinking_model: str


@dataclass(frozen=True)
class ApprovalCountdownTick:
    pass


@dataclass(frozen=True)
class Log:
    level: LogLevel
    message: str


@dataclass(frozen=True)
class Reset:
    initial: PipelineState


Event = (
    StartSegmentation
    | AddAggregatorJob
    | StageFailed
    | StartJob
    | CompleteJob
    | FailJob
    | AggregatorSucceeded
    | StartAnalysis
    | AdvanceChunkSubStage
    | ChunkAnalysisSucceeded
    | ChunkAnalysisFailed
    | FinalizePipeline
    | TriggerCooldown
    | CooldownTick
    | EndCooldown
    | PauseForModelSwitch
    | RequeueRateLimited
    | ResumeAfterModelSwitch
    | RetryAllFailed
    | SetModel
    | SetThinkingMode
    | ApprovalCountdownTick
    | Log
    | Reset
)
