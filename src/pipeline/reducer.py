"""Pure state reducer: ``reduce(state, event) -> state``."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from typing import Any

from src.pipeline import events
from src.pipeline.machine import check_transition
from src.pipeline.models import LogEntry, PipelineState, RecoveryMode, RecoveryState
from src.pipeline_config import (
    SUBSTAGE_PROGRESSION,
    AnalysisSubStage,
    ErrorKind,
    JobStatus,
    JobType,
    LogLevel,
    ModelRole,
    Stage,
)
from src.segmentation.models import Chunk
from src.segmentation.parsers import parse_quality_classification


def _log(state: PipelineState, level: LogLevel, message: str) -> tuple[LogEntry, ...]:
    return (*state.logs, LogEntry(level=level, message=message))


def _move(state: PipelineState, target: Stage) -> Stage:
    check_transition(state.stage, target)
    return target


def _update_job(state: PipelineState, job_id: str, **changes: Any) -> tuple:
    return tuple(replace(j, **changes) if j.job_id == job_id else j for j in state.jobs)


def _update_chunk(state: PipelineState, chunk_id: str, **changes: Any) -> tuple[Chunk, ...]:
    return tuple(replace(c, **changes) if c.chunk_id == chunk_id else c for c in state.chunks)


def _start_segmentation(state: PipelineState, event: events.StartSegmentation) -> PipelineState:
    return replace(
        state,
        stage=_move(state, Stage.SEGMENTATION),
        jobs=event.jobs,
        final_output="",
        fatal_error=None,
        logs=_log(
            state,
            LogLevel.INFO,
            f"Stage 1: Slicing complete. {len(event.jobs)} worker jobs created.",
        ),
    )


def _add_aggregator_job(state: PipelineState, event: events.AddAggregatorJob) -> PipelineState:
    return replace(
        state,
        stage=_move(state, Stage.AGGREGATING),
        jobs=(*state.jobs, event.job),
        logs=_log(
            state, LogLevel.INFO, "Stage 1: All slice workers finished. Starting aggregator job."
        ),
    )


def _stage_failed(state: PipelineState, event: events.StageFailed) -> PipelineState:
    return replace(
        state,
        fatal_error=event.reason,
        logs=_log(state, LogLevel.ERROR, f"FATAL ({state.stage.value}): {event.reason}"),
    )


def _start_job(state: PipelineState, event: events.StartJob) -> PipelineState:
    job = state.find_job(event.job_id)
    if job is None:
        return state

    chunks = state.chunks
    if job.type is JobType.CHUNK_ANALYSIS and job.chunk_id:
        chunk = state.find_chunk(job.chunk_id)
        chunks = _update_chunk(
            state,
            job.chunk_id,
            analysis_status=JobStatus.PROCESSING,
            sub_stage=AnalysisSubStage.ANALYZING,
            attempts=(chunk.attempts + 1) if chunk else 1,
        )

    return replace(
        state,
        active_jobs=state.active_jobs + 1,
        jobs=_update_job(
            state,
            event.job_id,
            status=JobStatus.PROCESSING,
            started_at=event.at,
            attempt=job.attempt + 1,
            model=event.model,
        ),
        chunks=chunks,
        logs=_log(state, LogLevel.INFO, f"{job.label} started on {event.model}."),
    )


def _complete_job(state: PipelineState, event: events.CompleteJob) -> PipelineState:
    job = state.find_job(event.job_id)
    if job is None:
        return state
    return replace(
        state,
        active_jobs=max(0, state.active_jobs - 1),
        jobs=_update_job(
            state,
            event.job_id,
            status=JobStatus.COMPLETED,
            completed_at=event.at,
            result=event.result,
            error=None,
            error_kind=None,
        ),
        logs=_log(state, LogLevel.SUCCESS, f"{job.label} completed successfully."),
    )


def _fail_job(state: PipelineState, event: events.FailJob) -> PipelineState:
    job = state.find_job(event.job_id)
    if job is None:
        return state
    return replace(
        state,
        active_jobs=max(0, state.active_jobs - 1),
        jobs=_update_job(
            state,
            event.job_id,
            status=JobStatus.FAILED,
            completed_at=event.at,
            error=event.error,
            error_kind=event.kind,
        ),
        logs=_log(state, LogLevel.ERROR, f"{job.label} failed. Error: {event.error}"),
    )


def _aggregator_succeeded(
    state: PipelineState, event: events.AggregatorSucceeded
) -> PipelineState:
    return replace(
        state,
        stage=_move(state, Stage.PENDING_APPROVAL),
        approval_countdown=event.approval_seconds,
        jobs=(),
        active_jobs=0,
        segmentation_report=event.report,
        chunks=event.chunks,
        logs=_log(
            state,
            LogLevel.SUCCESS,
            f"Stage 1: Aggregator finished. Parsed {len(event.chunks)} chunks. "
            "Waiting for user approval.",
        ),
    )


def _start_analysis(state: PipelineState, event: events.StartAnalysis) -> PipelineState:
    return replace(
        state,
        stage=_move(state, Stage.ANALYSIS),
        jobs=event.jobs,
        final_output="",
        approval_countdown=None,
        chunks=tuple(
            replace(
                c,
                analysis_status=JobStatus.PENDING,
                sub_stage=AnalysisSubStage.QUEUED,
                analysis_error=None,
                analysis_error_kind=None,
            )
            for c in state.chunks
        ),
        logs=_log(
            state,
            LogLevel.INFO,
            f"Stage 2 & 3: Starting analysis for {len(event.jobs)} chunks.",
        ),
    )


def _advance_sub_stage(state: PipelineState, event: events.AdvanceChunkSubStage) -> PipelineState:
    chunk = state.find_chunk(event.chunk_id)
    if chunk is None or chunk.analysis_status is not JobStatus.PROCESSING:
        return state
    try:
        index = SUBSTAGE_PROGRESSION.index(chunk.sub_stage)
    except ValueError:
        return state
    if index >= len(SUBSTAGE_PROGRESSION) - 1:
        return state
    return replace(
        state,
        chunks=_update_chunk(state, event.chunk_id, sub_stage=SUBSTAGE_PROGRESSION[index + 1]),
    )


def _chunk_succeeded(state: PipelineState, event: events.ChunkAnalysisSucceeded) -> PipelineState:
    return replace(
        state,
        chunks=_update_chunk(
            state,
            event.chunk_id,
            analysis_status=JobStatus.COMPLETED,
            sub_stage=AnalysisSubStage.QUEUED,
            analysis_result=event.result,
            analysis_error=None,
            analysis_error_kind=None,
            quality=parse_quality_classification(event.result),
        ),
        logs=_log(state, LogLevel.SUCCESS, f"Chunk {event.chunk_id} analysis completed."),
    )


def _chunk_failed(state: PipelineState, event: events.ChunkAnalysisFailed) -> PipelineState:
    return replace(
        state,
        chunks=_update_chunk(
            state,
            event.chunk_id,
            analysis_status=JobStatus.FAILED,
            sub_stage=AnalysisSubStage.QUEUED,
            analysis_error=event.error,
            analysis_error_kind=event.kind,
        ),
        logs=_log(
            state, LogLevel.ERROR, f"Chunk {event.chunk_id} analysis failed. Error: {event.error}"
        ),
    )


def _finalize(state: PipelineState, event: events.FinalizePipeline) -> PipelineState:
    return replace(
        state,
        stage=_move(state, Stage.COMPLETED),
        final_output=event.output,
        jobs=(),
        logs=_log(state, LogLevel.SUCCESS, "Pipeline finished. Final report generated."),
    )


def _trigger_cooldown(state: PipelineState, event: events.TriggerCooldown) -> PipelineState:
    return replace(
        state,
        max_concurrency=1,
        recovery=replace(
            state.recovery,
            mode=RecoveryMode.COOLDOWN,
            cooldown_remaining=event.seconds,
        ),
        logs=_log(
            state,
            LogLevel.WARNING,
            f"Rate limit hit. Triggering {event.seconds}s cooldown.",
        ),
    )


def _cooldown_tick(state: PipelineState, event: events.CooldownTick) -> PipelineState:
    if not state.is_cooling_down:
        return state
    return replace(
        state,
        recovery=replace(
            state.recovery, cooldown_remaining=max(0, state.recovery.cooldown_remaining - 1)
        ),
    )


def _end_cooldown(state: PipelineState, event: events.EndCooldown) -> PipelineState:
    if not state.is_cooling_down:
        return state
    return replace(
        state,
        max_concurrency=state.default_concurrency,
        # A fresh quota failure may pause for a switch again.
        recovery=replace(
            state.recovery,
            mode=RecoveryMode.NORMAL,
            cooldown_remaining=0,
            switch_attempted=False,
        ),
        logs=_log(state, LogLevel.INFO, "Cooldown finished. Resuming normal operations."),
    )


def _pause(state: PipelineState, event: events.PauseForModelSwitch) -> PipelineState:
    return replace(
        state,
        recovery=RecoveryState(
            mode=RecoveryMode.PAUSED,
            affected_stage=event.stage,
            failing_model=event.model,
            switch_attempted=False,
        ),
        logs=_log(
            state,
            LogLevel.WARNING,
            f"RATE_LIMIT_EXCEEDED on {event.model}. Please switch model to continue.",
        ),
    )


def _requeue_rate_limited(state: PipelineState, event: events.RequeueRateLimited) -> PipelineState:
    jobs = tuple(
        replace(j, status=JobStatus.PENDING, error=None, error_kind=None)
        if j.status is JobStatus.FAILED and j.error_kind is ErrorKind.QUOTA_EXCEEDED
        else j
        for j in state.jobs
    )
    chunks = tuple(
        replace(
            c,
            analysis_status=JobStatus.PENDING,
            sub_stage=AnalysisSubStage.QUEUED,
            analysis_error=None,
            analysis_error_kind=None,
        )
        if c.analysis_status is JobStatus.FAILED
        and c.analysis_error_kind is ErrorKind.QUOTA_EXCEEDED
        else c
        for c in state.chunks
    )
    return replace(state, jobs=jobs, chunks=chunks)


def _resume(state: PipelineState, event: events.ResumeAfterModelSwitch) -> PipelineState:
    if not state.is_paused:
        return state
    return replace(
        state,
        recovery=replace(state.recovery, mode=RecoveryMode.NORMAL, switch_attempted=True),
        logs=_log(state, LogLevel.INFO, "Model switched. Retrying rate-limited jobs..."),
    )


def _retry_all_failed(state: PipelineState, event: events.RetryAllFailed) -> PipelineState:
    jobs = tuple(
        replace(j, status=JobStatus.PENDING, error=None, error_kind=None)
        if j.status is JobStatus.FAILED
        else j
        for j in state.jobs
    )
    chunks = tuple(
        replace(
            c,
            analysis_status=JobStatus.PENDING,
            sub_stage=AnalysisSubStage.QUEUED,
            analysis_error=None,
            analysis_error_kind=None,
        )
        if c.analysis_status is JobStatus.FAILED
        else c
        for c in state.chunks
    )
    return replace(
        state,
        jobs=jobs,
        chunks=chunks,
        fatal_error=None,
        logs=_log(state, LogLevel.INFO, "Retrying all failed jobs."),
    )


def _set_model(state: PipelineState, event: events.SetModel) -> PipelineState:
    if event.role is ModelRole.SEGMENTATION:
        models = replace(state.models, segmentation=event.model)
    else:
        models = replace(state.models, analysis=event.model)
    return replace(
        state,
        models=models,
        logs=_log(state, LogLevel.INFO, f"{event.role.value.capitalize()} model set to {event.model}."),
    )


def _set_thinking_mode(state: PipelineState, event: events.SetThinkingMode) -> PipelineState:
    models = state.models
    if event.enabled:
        models = replace(models, analysis=event.thinking_model)
    return replace(state, thinking_mode=event.enabled, models=models)


def _approval_tick(state: PipelineState, event: events.ApprovalCountdownTick) -> PipelineState:
    if state.approval_countdown is None:
        return state
    return replace(state, approval_countdown=max(0, state.approval_countdown - 1))


def _append_log(state: PipelineState, event: events.Log) -> PipelineState:
    return replace(state, logs=_log(state, event.level, event.message))


def _reset(state: PipelineState, event: events.Reset) -> PipelineState:
    return event.initial


_REDUCERS: dict[type, Callable[[PipelineState, Any], PipelineState]] = {
    events.StartSegmentation: _start_segmentation,
    events.AddAggregatorJob: _add_aggregator_job,
    events.StageFailed: _stage_failed,
    events.StartJob: _start_job,
    events.CompleteJob: _complete_job,
    events.FailJob: _fail_job,
    events.AggregatorSucceeded: _aggregator_succeeded,
    events.StartAnalysis: _start_analysis,
    events.AdvanceChunkSubStage: _advance_sub_stage,
    events.ChunkAnalysisSucceeded: _chunk_succeeded,
    events.ChunkAnalysisFailed: _chunk_failed,
    events.FinalizePipeline: _finalize,
    events.TriggerCooldown: _trigger_cooldown,
    events.CooldownTick: _cooldown_tick,
    events.EndCooldown: _end_cooldown,
    events.PauseForModelSwitch: _pause,
    events.RequeueRateLimited: _requeue_rate_limited,
    events.ResumeAfterModelSwitch: _resume,
    events.RetryAllFailed: _retry_all_failed,
    events.SetModel: _set_model,
    events.SetThinkingMode: _set_thinking_mode,
    events.ApprovalCountdownTick: _approval_tick,
    events.Log: _append_log,
    events.Reset: _reset,
}


def reduce(state: PipelineState, event: events.Event) -> PipelineState:
    """Apply *event* to *state*.

    Raises:
        InvalidTransitionError: If the event implies a disallowed stage change.
        TypeError: For an unknown event type.
    """
    handler = _REDUCERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unknown pipeline event: {type(event).__name__}")
    return handler(state, event)
