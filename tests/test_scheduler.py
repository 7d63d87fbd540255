"""Scheduler tests driven by an in-process fake service (no network)."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest
from conftest import SCRIPT, SLIDES, FakeService, drain

from src.llm.errors import QuotaExceededError
from src.pipeline.machine import InvalidTransitionError
from src.pipeline.models import Job
from src.pipeline.scheduler import Scheduler, model_role_for
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

SchedulerFactory = Callable[..., Scheduler]


def _run_segmentation(scheduler: Scheduler) -> None:
    scheduler.start_segmentation(SCRIPT, SLIDES)
    asyncio.run(drain(scheduler))


class TestModelRole:
    def test_segmentation_family(self) -> None:
        for stage, job_type in [
            (Stage.SEGMENTATION, JobType.SLICE_WORKER),
            (Stage.AGGREGATING, JobType.AGGREGATOR),
        ]:
            job = Job(job_id="j", type=job_type, stage=stage, payload="")
            assert model_role_for(job) is ModelRole.SEGMENTATION

    def test_analysis(self) -> None:
        job = Job(job_id="j", type=JobType.CHUNK_ANALYSIS, stage=Stage.ANALYSIS, payload="")
        assert model_role_for(job) is ModelRole.ANALYSIS


class TestStartSegmentation:
    def test_queues_one_job_per_slice(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        scheduler = make_scheduler(make_service())
        assert scheduler.start_segmentation(SCRIPT, SLIDES) == 2
        state = scheduler.state
        assert state.stage is Stage.SEGMENTATION
        assert [j.slice_id for j in state.jobs] == ["S01", "S02"]
        assert all(j.status is JobStatus.PENDING for j in state.jobs)

    def test_no_timestamps_is_a_no_op(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        scheduler = make_scheduler(make_service())
        assert scheduler.start_segmentation("no markers here") == 0
        assert scheduler.state.stage is Stage.IDLE
        assert scheduler.state.jobs == ()
        assert scheduler.state.logs[-1].level is LogLevel.WARNING

    def test_cannot_start_twice(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        scheduler = make_scheduler(make_service())
        scheduler.start_segmentation(SCRIPT)
        with pytest.raises(InvalidTransitionError):
            scheduler.start_segmentation(SCRIPT)

    def test_approve_before_segmentation_rejected(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        scheduler = make_scheduler(make_service())
        with pytest.raises(InvalidTransitionError):
            scheduler.approve()


class TestEndToEnd:
    def test_segmentation_reaches_approval(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        service = make_service()
        scheduler = make_scheduler(service)
        _run_segmentation(scheduler)

        state = scheduler.state
        assert state.stage is Stage.PENDING_APPROVAL
        assert [c.chunk_id for c in state.chunks] == ["S01-C01", "S02-C01"]
        assert state.chunks[0].ts_list == ("00:15", "01:30")
        assert state.segmentation_report.endswith(
            "TOTAL_TIMESTAMPS = 3; ASSIGNED = 3; MISSING = 0; DUPLICATE = 0; ORDER_OK = YES"
        )
        assert state.approval_countdown == 2
        # Aggregation ran locally, so only the two slice workers hit the service.
        assert service.models_used("generate") == ["seg-model", "seg-model"]

    def test_full_pipeline(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        service = make_service()
        scheduler = make_scheduler(service)
        _run_segmentation(scheduler)

        assert scheduler.approve() == 2
        assert scheduler.state.stage is Stage.ANALYSIS
        asyncio.run(drain(scheduler))

        state = scheduler.state
        assert state.stage is Stage.COMPLETED
        rows = state.final_output.splitlines()
        assert rows[0].startswith("| Timestamp |")
        assert len(rows) == 4
        assert rows[2].startswith("| [00:15]")
        assert rows[3].startswith("| [02:45]")
        assert all(c.quality is QualityClass.HIGH for c in state.chunks)
        assert service.models_used("converse") == ["ana-model", "ana-model"]
        assert state.active_jobs == 0

    def test_concurrency_ceiling_respected(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        scheduler = make_scheduler(make_service(), max_concurrency=1)
        peak: list[int] = []
        scheduler.store.subscribe(lambda state, _event: peak.append(state.active_jobs))
        _run_segmentation(scheduler)
        assert scheduler.state.stage is Stage.PENDING_APPROVAL
        assert max(peak) == 1

    def test_dispatch_holds_during_approval(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        scheduler = make_scheduler(make_service())
        _run_segmentation(scheduler)

        async def tick_once() -> Job | None:
            return scheduler.tick()

        assert asyncio.run(tick_once()) is None
        assert scheduler.state.stage is Stage.PENDING_APPROVAL

    def test_approval_countdown_auto_approves(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        scheduler = make_scheduler(make_service())
        _run_segmentation(scheduler)

        scheduler.clock_tick()
        assert scheduler.state.approval_countdown == 1
        assert scheduler.state.stage is Stage.PENDING_APPROVAL

        scheduler.clock_tick()
        state = scheduler.state
        assert state.stage is Stage.ANALYSIS
        assert len(state.jobs) == 2
        assert any("auto-approving" in e.message for e in state.logs)


class TestLocalAggregationFallback:
    def test_falls_back_to_service(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        service = make_service(worker_output="I could not produce a table.")
        scheduler = make_scheduler(service)
        _run_segmentation(scheduler)

        state = scheduler.state
        assert state.stage is Stage.PENDING_APPROVAL
        assert [c.chunk_id for c in state.chunks] == ["S01-C01"]
        aggregator_calls = [
            model for call, model, payload in service.calls if "AGGREGATOR" in payload
        ]
        assert aggregator_calls == ["seg-model"]
        assert any("Local aggregation failed" in e.message for e in state.logs)


class TestFailures:
    def test_all_slices_failed_is_fatal(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        service = make_service(worker_error=RuntimeError("upstream exploded"))
        scheduler = make_scheduler(service)
        _run_segmentation(scheduler)

        state = scheduler.state
        assert state.stage is Stage.SEGMENTATION
        assert state.fatal_error == "All slice workers failed, cannot aggregate."
        assert all(j.error == "upstream exploded" for j in state.jobs)
        assert all(j.error_kind is ErrorKind.UNCLASSIFIED for j in state.jobs)

    def test_retry_all_failed_recovers(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        service = make_service(worker_error=RuntimeError("flaky"))
        scheduler = make_scheduler(service)
        _run_segmentation(scheduler)
        assert scheduler.state.fatal_error is not None

        service.worker_error = None
        scheduler.retry_all_failed()
        asyncio.run(drain(scheduler))

        state = scheduler.state
        assert state.fatal_error is None
        assert state.stage is Stage.PENDING_APPROVAL
        assert len(state.chunks) == 2
        assert service.models_used("generate") == ["seg-model"] * 4

    def test_segmentation_quota_triggers_cooldown(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        service = make_service(worker_error=QuotaExceededError("429 too many requests"))
        scheduler = make_scheduler(service)
        _run_segmentation(scheduler)

        state = scheduler.state
        assert state.is_cooling_down
        assert state.max_concurrency == 1
        assert not state.is_paused
        assert all(j.error == "RATE_LIMIT_EXCEEDED" for j in state.jobs)

        for _ in range(3):
            scheduler.clock_tick()
        state = scheduler.state
        assert not state.is_cooling_down
        assert state.max_concurrency == 2


class TestPauseForModelSwitch:
    def test_quota_pauses_and_resume_requeues(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        service = make_service(fail_models={"ana-model"})
        scheduler = make_scheduler(service)
        _run_segmentation(scheduler)
        scheduler.approve()

        async def run_analysis() -> None:
            service.gate = asyncio.Event()
            assert scheduler.tick() is not None
            assert scheduler.tick() is not None
            # Operator changes the model while both calls are in flight.
            scheduler.set_model(ModelRole.ANALYSIS, "backup-model")
            service.gate.set()
            await scheduler.join()

            paused = scheduler.state
            assert paused.is_paused
            assert paused.recovery.failing_model == "ana-model"
            assert paused.recovery.affected_stage is Stage.ANALYSIS
            assert paused.stage is Stage.ANALYSIS
            assert all(c.analysis_error_kind is ErrorKind.QUOTA_EXCEEDED for c in paused.chunks)
            assert scheduler.tick() is None

            assert scheduler.resume()
            await drain(scheduler)

        asyncio.run(run_analysis())

        state = scheduler.state
        assert state.stage is Stage.COMPLETED
        assert state.recovery.switch_attempted
        assert all(c.attempts == 2 for c in state.chunks)
        assert service.models_used("converse")[-2:] == ["backup-model", "backup-model"]

    def test_resume_when_not_paused(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        assert not make_scheduler(make_service()).resume()


class TestClockTick:
    def test_sub_stages_advance_while_processing(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        service = make_service()
        scheduler = make_scheduler(service)
        _run_segmentation(scheduler)
        scheduler.approve()

        async def run() -> None:
            service.gate = asyncio.Event()
            scheduler.tick()
            processing = scheduler.state.chunks[0]
            assert processing.sub_stage is AnalysisSubStage.ANALYZING

            scheduler.clock_tick()
            scheduler.clock_tick()
            chunk = scheduler.state.chunks[0]
            assert chunk.sub_stage is AnalysisSubStage.SCORING
            assert scheduler.state.chunks[1].sub_stage is AnalysisSubStage.QUEUED

            service.gate.set()
            await drain(scheduler)

        asyncio.run(run())
        assert scheduler.state.stage is Stage.COMPLETED


class TestOperatorActions:
    def test_reset_keeps_model_choices(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        scheduler = make_scheduler(make_service())
        scheduler.set_model(ModelRole.SEGMENTATION, "fast-model")
        scheduler.start_segmentation(SCRIPT)
        scheduler.reset()

        state = scheduler.state
        assert state.stage is Stage.IDLE
        assert state.jobs == ()
        assert state.logs == ()
        assert state.models.segmentation == "fast-model"

    def test_thinking_mode(
        self, make_service: type[FakeService], make_scheduler: SchedulerFactory
    ) -> None:
        scheduler = make_scheduler(make_service())
        scheduler.set_thinking_mode(True)
        assert scheduler.state.thinking_mode
        assert scheduler.state.models.analysis == "think-model"

    @pytest.mark.parametrize("fail_models", [set(), {"ana-model"}])
    def test_reset_discards_in_flight_jobs(
        self,
        make_service: type[FakeService],
        make_scheduler: SchedulerFactory,
        fail_models: set[str],
    ) -> None:
        service = make_service(fail_models=fail_models)
        scheduler = make_scheduler(service)
        _run_segmentation(scheduler)
        scheduler.approve()

        async def reset_mid_flight() -> None:
            service.gate = asyncio.Event()
            assert scheduler.tick() is not None
            scheduler.reset()
            service.gate.set()
            await scheduler.join()

        asyncio.run(reset_mid_flight())

        state = scheduler.state
        assert state.stage is Stage.IDLE
        assert not state.is_paused
        assert not state.is_cooling_down
        assert state.jobs == ()
        assert state.chunks == ()
        assert state.logs == ()
