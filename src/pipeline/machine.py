"""Stage model: allowed transitions and the reactive stage driver."""

from __future__ import annotations

import logging

from src.pipeline import events
from src.pipeline.jobs import build_aggregator_job
from src.pipeline.models import PipelineState
from src.pipeline_config import JobStatus, JobType, LogLevel, Stage
from src.segmentation.parsers import merge_result_tables, parse_report_table

logger = logging.getLogger(__name__)

# Reset is handled separately: any stage may return to IDLE through it.
ALLOWED_TRANSITIONS: dict[Stage, frozenset[Stage]] = {
    Stage.IDLE: frozenset({Stage.SEGMENTATION}),
    Stage.SEGMENTATION: frozenset({Stage.AGGREGATING}),
    Stage.AGGREGATING: frozenset({Stage.PENDING_APPROVAL}),
    Stage.PENDING_APPROVAL: frozenset({Stage.ANALYSIS}),
    Stage.ANALYSIS: frozenset({Stage.COMPLETED}),
    Stage.COMPLETED: frozenset(),
}


class InvalidTransitionError(ValueError):
    """An event asked for a stage change the stage model does not allow."""

    def __init__(self, current: Stage, target: Stage) -> None:
        super().__init__(f"Cannot move from {current.value} to {target.value}")
        self.current = current
        self.target = target


def can_transition(current: Stage, target: Stage) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def check_transition(current: Stage, target: Stage) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def derive_stage_events(state: PipelineState, approval_seconds: int = 60) -> list[events.Event]:
    """Events implied by the queue and chunk state right now.

    Called after every tick and every job completion; returns an empty list
    when nothing should change. A pending fatal error or a pause for a model
    switch blocks progression.
    """
    if state.fatal_error is not None or state.is_paused:
        return []

    if state.stage is Stage.SEGMENTATION:
        return _segmentation_events(state)
    if state.stage is Stage.AGGREGATING:
        return _aggregation_events(state, approval_seconds)
    if state.stage is Stage.ANALYSIS:
        return _analysis_events(state)
    return []


def _segmentation_events(state: PipelineState) -> list[events.Event]:
    workers = state.jobs_of_type(JobType.SLICE_WORKER)
    if not workers or not all(j.status.is_terminal for j in workers):
        return []
    if state.jobs_of_type(JobType.AGGREGATOR):
        return []

    results = [
        j.result for j in workers if j.status is JobStatus.COMPLETED and j.result
    ]
    if not results:
        return [events.StageFailed("All slice workers failed, cannot aggregate.")]
    return [events.AddAggregatorJob(build_aggregator_job(results))]


def _aggregation_events(state: PipelineState, approval_seconds: int) -> list[events.Event]:
    aggregators = state.jobs_of_type(JobType.AGGREGATOR)
    if not aggregators:
        return []
    aggregator = aggregators[-1]

    if aggregator.status is JobStatus.FAILED:
        return [events.StageFailed(f"Aggregator failed: {aggregator.error}")]
    if aggregator.status is not JobStatus.COMPLETED:
        return []

    report = aggregator.result or ""
    parsed = parse_report_table(report)
    result: list[events.Event] = []
    if parsed.dropped_rows:
        result.append(
            events.Log(
                LogLevel.WARNING,
                f"Segmentation report: dropped {parsed.dropped_rows} malformed row(s).",
            )
        )
    if not parsed.chunks:
        result.append(events.StageFailed("Aggregated segmentation report contained no chunks."))
        return result
    result.append(events.AggregatorSucceeded(report, parsed.chunks, approval_seconds))
    return result


def _analysis_events(state: PipelineState) -> list[events.Event]:
    if not state.chunks or state.final_output:
        return []
    if not all(c.analysis_status.is_terminal for c in state.chunks):
        return []

    tables = [
        c.analysis_result
        for c in state.chunks
        if c.analysis_status is JobStatus.COMPLETED and c.analysis_result
    ]
    return [events.FinalizePipeline(merge_result_tables(tables))]
