"""Job scheduler: FIFO dispatch under a concurrency ceiling, driven by ticks.

All state changes are events applied through the store; every scheduling
decision reads ``store.state`` at the moment it is made, never a snapshot
captured before an await.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import replace

from src.config import settings
from src.llm.errors import QuotaExceededError, classify_error
from src.llm.prompts import ANALYSIS_ACKNOWLEDGEMENT, extract_worker_reports
from src.llm.retry import RetryPolicy, retry_async
from src.llm.service import GenerativeService
from src.pipeline import events
from src.pipeline.clock import TickThread
from src.pipeline.jobs import build_analysis_jobs, build_slice_jobs
from src.pipeline.machine import InvalidTransitionError, check_transition, derive_stage_events
from src.pipeline.models import Job, ModelSelection, PipelineState
from src.pipeline.recovery import cooldown_tick_events, on_quota_exceeded, resume_events
from src.pipeline.store import PipelineStore
from src.pipeline_config import (
    ErrorKind,
    JobStatus,
    JobType,
    LogLevel,
    ModelRole,
    PipelineConfig,
    Stage,
)
from src.segmentation.aggregator import LocalAggregationError, aggregate_worker_reports
from src.segmentation.slicing import plan_slices

logger = logging.getLogger(__name__)

_SEGMENTATION_FAMILY = (Stage.SEGMENTATION, Stage.AGGREGATING)


def model_role_for(job: Job) -> ModelRole:
    return ModelRole.SEGMENTATION if job.stage in _SEGMENTATION_FAMILY else ModelRole.ANALYSIS


class Scheduler:
    """Owns the pipeline store and drives jobs through the generative service."""

    def __init__(
        self,
        service: GenerativeService,
        config: PipelineConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        models: ModelSelection | None = None,
        thinking_model: str | None = None,
    ) -> None:
        self._service = service
        self._config = config or PipelineConfig.from_settings(settings)
        self._retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self._default_models = models or ModelSelection(
            segmentation=settings.segmentation_model,
            analysis=settings.analysis_model,
        )
        self._thinking_model = thinking_model or settings.thinking_model
        self.store = PipelineStore(self.initial_state())

        self._script = ""
        self._slide_content = ""
        self._tasks: set[asyncio.Task[None]] = set()
        self._seconds = 0
        self._generation = 0
        self._tick_thread: TickThread | None = None

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self.store.state

    @property
    def config(self) -> PipelineConfig:
        return self._config

    def initial_state(self) -> PipelineState:
        return PipelineState(
            max_concurrency=self._config.max_concurrency,
            default_concurrency=self._config.max_concurrency,
            models=self._default_models,
        )

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def start_segmentation(self, script: str, slide_content: str = "") -> int:
        """Plan slices and enter segmentation. Returns the number of slice jobs.

        A transcript without timestamps is a no-op: nothing is queued and the
        stage stays idle.
        """
        check_transition(self.state.stage, Stage.SEGMENTATION)

        slices = plan_slices(
            script,
            slide_content,
            slice_size=self._config.slice_size,
            context=self._config.slice_context,
        )
        if not slices:
            self.store.dispatch(
                events.Log(LogLevel.WARNING, "No timestamps found in script; nothing to segment.")
            )
            return 0

        self._script = script
        self._slide_content = slide_content
        jobs = build_slice_jobs(slices)
        self.store.dispatch(events.StartSegmentation(jobs))
        return len(jobs)

    def approve(self) -> int:
        """Release the approval gate and queue one analysis job per chunk."""
        state = self.state
        check_transition(state.stage, Stage.ANALYSIS)
        if not state.chunks:
            raise InvalidTransitionError(state.stage, Stage.ANALYSIS)

        jobs = build_analysis_jobs(state.chunks, self._script, self._slide_content)
        self.store.dispatch(events.StartAnalysis(jobs))
        return len(jobs)

    def resume(self) -> bool:
        """Re-queue quota failures and lift the pause. False if not paused."""
        pending = resume_events(self.state)
        if not pending:
            return False
        self.store.dispatch(*pending)
        return True

    def retry_all_failed(self) -> None:
        self.store.dispatch(events.RetryAllFailed())

    def set_model(self, role: ModelRole, model: str) -> None:
        self.store.dispatch(events.SetModel(role, model))

    def set_thinking_mode(self, enabled: bool) -> None:
        self.store.dispatch(events.SetThinkingMode(enabled, self._thinking_model))

    def reset(self) -> None:
        # In-flight jobs from the previous run finish against a stale generation.
        self._generation += 1
        self._script = ""
        self._slide_content = ""
        self._seconds = 0
        # Keep the operator's model choices across a reset.
        initial = replace(
            self.initial_state(),
            models=self.state.models,
            thinking_mode=self.state.thinking_mode,
        )
        self.store.dispatch(events.Reset(initial))

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def advance_stage(self) -> None:
        """Apply whatever stage transitions the current queue/chunk state implies."""
        while True:
            pending = derive_stage_events(self.state, self._config.approval_seconds)
            if not pending:
                return
            self.store.dispatch(*pending)

    def tick(self) -> Job | None:
        """Start at most one pending job. Returns the job started, if any."""
        self.advance_stage()
        state = self.state

        if state.is_paused:
            return None
        if (
            state.stage is Stage.PENDING_APPROVAL
            or state.is_cooling_down
            or state.active_jobs >= state.max_concurrency
        ):
            return None

        job = state.next_pending_job()
        if job is None:
            return None

        model = state.models.for_role(model_role_for(job))
        self.store.dispatch(events.StartJob(job.job_id, model))

        task = asyncio.get_running_loop().create_task(
            self._execute(job, model, state.thinking_mode, self._generation),
            name=f"pipeline-job-{job.job_id[:8]}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job

    def clock_tick(self) -> None:
        """One-second housekeeping: cooldown, approval countdown, sub-stage progress."""
        self._seconds += 1

        cooldown = cooldown_tick_events(self.state)
        if cooldown:
            self.store.dispatch(*cooldown)

        state = self.state
        if state.stage is Stage.PENDING_APPROVAL and state.approval_countdown is not None:
            state = self.store.dispatch(events.ApprovalCountdownTick())
            if state.approval_countdown == 0:
                self.store.dispatch(
                    events.Log(LogLevel.INFO, "Approval countdown elapsed; auto-approving.")
                )
                self.approve()

        interval = max(1, self._config.substage_interval_seconds)
        if self.state.stage is Stage.ANALYSIS and self._seconds % interval == 0:
            for chunk in self.state.chunks:
                if chunk.analysis_status is JobStatus.PROCESSING:
                    self.store.dispatch(events.AdvanceChunkSubStage(chunk.chunk_id))

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def _call_service(self, job: Job, model: str, thinking: bool) -> str:
        if job.type is JobType.CHUNK_ANALYSIS:
            return await retry_async(
                lambda: self._service.converse(
                    job.payload, ANALYSIS_ACKNOWLEDGEMENT, model, thinking=thinking
                ),
                self._retry_policy,
            )
        return await retry_async(
            lambda: self._service.generate(job.payload, model), self._retry_policy
        )

    def _aggregate_locally(self, job: Job, model: str) -> str | None:
        try:
            result = aggregate_worker_reports(extract_worker_reports(job.payload), self._script)
        except LocalAggregationError as exc:
            self.store.dispatch(
                events.Log(
                    LogLevel.WARNING,
                    f"Local aggregation failed ({exc}). Falling back to {model}.",
                )
            )
            return None
        if result.dropped_rows:
            self.store.dispatch(
                events.Log(
                    LogLevel.WARNING,
                    f"Local aggregation dropped {result.dropped_rows} malformed worker row(s).",
                )
            )
        return result.report

    async def _execute(self, job: Job, model: str, thinking: bool, generation: int) -> None:
        try:
            result: str | None = None
            if job.type is JobType.AGGREGATOR:
                result = self._aggregate_locally(job, model)
            if result is None:
                result = await self._call_service(job, model, thinking)
        except Exception as exc:
            if self._is_stale(job, generation):
                return
            self._record_failure(job, model, exc)
        else:
            if self._is_stale(job, generation):
                return
            if job.type is JobType.CHUNK_ANALYSIS and job.chunk_id:
                self.store.dispatch(events.ChunkAnalysisSucceeded(job.chunk_id, result))
            self.store.dispatch(events.CompleteJob(job.job_id, result))
        finally:
            if generation == self._generation:
                self.advance_stage()

    def _is_stale(self, job: Job, generation: int) -> bool:
        if generation == self._generation:
            return False
        logger.info("Discarding result of %s: pipeline was reset while it ran", job.label)
        return True

    def _record_failure(self, job: Job, model: str, exc: Exception) -> None:
        kind, reason = classify_error(exc)
        if kind is ErrorKind.UNCLASSIFIED:
            logger.error("Job %s failed: %s", job.label, exc, exc_info=exc)
        if isinstance(exc, QuotaExceededError) and exc.raw:
            logger.warning("Rate limit raw error: %s", exc.raw)

        if kind is ErrorKind.QUOTA_EXCEEDED:
            recovery = on_quota_exceeded(
                self.state, job, model, cooldown_seconds=self._config.cooldown_seconds
            )
            if recovery:
                self.store.dispatch(*recovery)

        if job.type is JobType.CHUNK_ANALYSIS and job.chunk_id:
            self.store.dispatch(events.ChunkAnalysisFailed(job.chunk_id, reason, kind))
        self.store.dispatch(events.FailJob(job.job_id, reason, kind))

    async def join(self) -> None:
        """Wait for every in-flight job to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Background driving
    # ------------------------------------------------------------------

    def start_background(self, interval: float | None = None) -> None:
        """Start the tick thread against the running event loop."""
        if self._tick_thread is not None:
            return
        loop = asyncio.get_running_loop()
        self._tick_thread = TickThread(
            loop,
            on_tick=self._safe(self.tick),
            on_second=self._safe(self.clock_tick),
            interval=interval or settings.tick_interval,
        )
        self._tick_thread.start()

    def stop_background(self) -> None:
        if self._tick_thread is None:
            return
        self._tick_thread.stop()
        self._tick_thread.join(timeout=5)
        self._tick_thread = None

    @staticmethod
    def _safe(callback: Callable[[], object]) -> Callable[[], None]:
        def run() -> None:
            try:
                callback()
            except Exception:
                logger.exception("Scheduler tick failed")

        return run

    async def run_until(
        self,
        done: Callable[[PipelineState], bool],
        interval: float | None = None,
    ) -> PipelineState:
        """Drive the pipeline on the tick thread until ``done(state)`` holds."""
        finished = asyncio.Event()

        def check(state: PipelineState, _event: events.Event) -> None:
            if done(state):
                finished.set()

        unsubscribe = self.store.subscribe(check)
        if done(self.state):
            finished.set()
        self.start_background(interval)
        try:
            await finished.wait()
        finally:
            unsubscribe()
            self.stop_background()
            await self.join()
        return self.state
