"""Pydantic request/response schemas for the pipeline control API."""

from __future__ import annotations

from pydantic import BaseModel

from src.pipeline.models import Job, LogEntry, PipelineState
from src.pipeline_config import (
    AnalysisSubStage,
    ErrorKind,
    JobStatus,
    JobType,
    LogLevel,
    ModelRole,
    QualityClass,
    Stage,
)
from src.segmentation.models import Chunk


class StartRequest(BaseModel):
    """Request body for the /api/pipeline/start endpoint."""

    script: str
    slide_content: str = ""


class StartResponse(BaseModel):
    started: bool
    slice_jobs: int
    stage: Stage


class ApproveResponse(BaseModel):
    analysis_jobs: int
    stage: Stage


class ResumeResponse(BaseModel):
    resumed: bool


class ModelRequest(BaseModel):
    """Request body for PUT /api/pipeline/models/{role}."""

    model: str


class ThinkingModeRequest(BaseModel):
    enabled: bool


class JobView(BaseModel):
    job_id: str
    type: JobType
    stage: Stage
    slice_id: str | None = None
    chunk_id: str | None = None
    status: JobStatus
    attempt: int
    model: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    created_at: float
    started_at: float | None = None
    completed_at: float | None = None

    @classmethod
    def from_job(cls, job: Job) -> JobView:
        return cls(
            job_id=job.job_id,
            type=job.type,
            stage=job.stage,
            slice_id=job.slice_id,
            chunk_id=job.chunk_id,
            status=job.status,
            attempt=job.attempt,
            model=job.model,
            error=job.error,
            error_kind=job.error_kind,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )


class ChunkView(BaseModel):
    chunk_id: str
    slide_range: str
    ts_list: list[str]
    ts_start: str
    ts_end: str
    flags: list[str]
    notes: str
    quality: QualityClass | None = None
    analysis_status: JobStatus
    sub_stage: AnalysisSubStage
    analysis_error: str | None = None
    attempts: int = 0

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> ChunkView:
        return cls(
            chunk_id=chunk.chunk_id,
            slide_range=chunk.slide_range,
            ts_list=list(chunk.ts_list),
            ts_start=chunk.ts_start,
            ts_end=chunk.ts_end,
            flags=list(chunk.flags),
            notes=chunk.notes,
            quality=chunk.quality,
            analysis_status=chunk.analysis_status,
            sub_stage=chunk.sub_stage,
            analysis_error=chunk.analysis_error,
            attempts=chunk.attempts,
        )


class LogView(BaseModel):
    id: str
    timestamp: str
    level: LogLevel
    message: str

    @classmethod
    def from_entry(cls, entry: LogEntry) -> LogView:
        return cls(id=entry.id, timestamp=entry.timestamp, level=entry.level, message=entry.message)


class RateLimitView(BaseModel):
    paused: bool
    cooling_down: bool
    cooldown_remaining: int
    affected_stage: Stage | None = None
    failing_model: str | None = None
    switch_attempted: bool


class StateResponse(BaseModel):
    """Snapshot of the pipeline for dashboards."""

    stage: Stage
    max_concurrency: int
    active_jobs: int
    models: dict[ModelRole, str]
    thinking_mode: bool
    approval_countdown: int | None = None
    fatal_error: str | None = None
    rate_limit: RateLimitView
    jobs: list[JobView]
    chunks: list[ChunkView]
    logs: list[LogView]

    @classmethod
    def from_state(cls, state: PipelineState, log_limit: int | None = None) -> StateResponse:
        logs = state.logs[-log_limit:] if log_limit else state.logs
        return cls(
            stage=state.stage,
            max_concurrency=state.max_concurrency,
            active_jobs=state.active_jobs,
            models={
                ModelRole.SEGMENTATION: state.models.segmentation,
                ModelRole.ANALYSIS: state.models.analysis,
            },
            thinking_mode=state.thinking_mode,
            approval_countdown=state.approval_countdown,
            fatal_error=state.fatal_error,
            rate_limit=RateLimitView(
                paused=state.is_paused,
                cooling_down=state.is_cooling_down,
                cooldown_remaining=state.cooldown_remaining,
                affected_stage=state.recovery.affected_stage,
                failing_model=state.recovery.failing_model,
                switch_attempted=state.recovery.switch_attempted,
            ),
            jobs=[JobView.from_job(j) for j in state.jobs],
            chunks=[ChunkView.from_chunk(c) for c in state.chunks],
            logs=[LogView.from_entry(e) for e in logs],
        )


class ReportResponse(BaseModel):
    """Segmentation report awaiting (or past) approval."""

    stage: Stage
    report: str
    approval_countdown: int | None = None
    chunk_count: int


class ResultResponse(BaseModel):
    """Final merged analysis table."""

    stage: Stage
    markdown: str
    refined_scripts: list[str] = []
