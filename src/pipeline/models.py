"""Process-wide pipeline state.

Every value here is immutable; the reducer produces a new ``PipelineState``
for each event, so a snapshot read at any point is internally consistent.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from src.pipeline_config import ErrorKind, JobStatus, JobType, LogLevel, ModelRole, Stage
from src.segmentation.models import Chunk


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Job:
    """A unit of dispatchable work."""

    job_id: str
    type: JobType
    stage: Stage
    payload: str
    slice_id: str | None = None
    chunk_id: str | None = None
    status: JobStatus = JobStatus.PENDING
    attempt: int = 0
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    completed_at: float | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    result: str | None = None
    model: str | None = None  # model actually used by the latest attempt

    @property
    def label(self) -> str:
        if self.type is JobType.AGGREGATOR:
            return "Aggregator"
        return self.slice_id or self.chunk_id or f"Job {self.job_id[:5]}"


@dataclass(frozen=True)
class LogEntry:
    level: LogLevel
    message: str
    id: str = field(default_factory=new_id)
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


@dataclass(frozen=True)
class ModelSelection:
    segmentation: str
    analysis: str

    def for_role(self, role: ModelRole) -> str:
        return self.segmentation if role is ModelRole.SEGMENTATION else self.analysis


class RecoveryMode(str, Enum):
    """Rate-limit recovery variant; exactly one is active at a time."""

    NORMAL = "normal"
    PAUSED = "paused"  # waiting for an operator to switch model and resume
    COOLDOWN = "cooldown"  # serial execution until the countdown ends


@dataclass(frozen=True)
class RecoveryState:
    mode: RecoveryMode = RecoveryMode.NORMAL
    affected_stage: Stage | None = None
    failing_model: str | None = None
    switch_attempted: bool = False
    cooldown_remaining: int = 0


@dataclass(frozen=True)
class PipelineState:
    stage: Stage = Stage.IDLE
    max_concurrency: int = 5
    default_concurrency: int = 5
    active_jobs: int = 0
    models: ModelSelection = ModelSelection("", "")
    thinking_mode: bool = False
    jobs: tuple[Job, ...] = ()
    chunks: tuple[Chunk, ...] = ()
    logs: tuple[LogEntry, ...] = ()
    segmentation_report: str = ""
    final_output: str = ""
    approval_countdown: int | None = None
    recovery: RecoveryState = RecoveryState()
    fatal_error: str | None = None

    @property
    def is_paused(self) -> bool:
        return self.recovery.mode is RecoveryMode.PAUSED

    @property
    def is_cooling_down(self) -> bool:
        return self.recovery.mode is RecoveryMode.COOLDOWN

    @property
    def cooldown_remaining(self) -> int:
        return self.recovery.cooldown_remaining

    def find_job(self, job_id: str) -> Job | None:
        return next((j for j in self.jobs if j.job_id == job_id), None)

    def find_chunk(self, chunk_id: str) -> Chunk | None:
        return next((c for c in self.chunks if c.chunk_id == chunk_id), None)

    def next_pending_job(self) -> Job | None:
        return next((j for j in self.jobs if j.status is JobStatus.PENDING), None)

    def jobs_of_type(self, job_type: JobType) -> list[Job]:
        return [j for j in self.jobs if j.type is job_type]
