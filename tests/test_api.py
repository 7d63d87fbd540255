"""Tests for the pipeline control API (no external API keys required)."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator

import pytest
from conftest import SCRIPT, SLIDES, FakeService, drain
from fastapi.testclient import TestClient

from src.api.main import app
from src.api.routes.pipeline import get_scheduler
from src.pipeline.scheduler import Scheduler

client = TestClient(app)


@pytest.fixture
def scheduler(
    make_service: type[FakeService], make_scheduler: Callable[..., Scheduler]
) -> Iterator[Scheduler]:
    instance = make_scheduler(make_service())
    app.dependency_overrides[get_scheduler] = lambda: instance
    yield instance
    app.dependency_overrides.clear()


def test_health() -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


class TestStart:
    def test_start_queues_slice_jobs(self, scheduler: Scheduler) -> None:
        response = client.post("/api/pipeline/start", json={"script": SCRIPT, "slide_content": SLIDES})
        assert response.status_code == 200
        assert response.json() == {"started": True, "slice_jobs": 2, "stage": "segmentation"}

    def test_start_requires_script(self, scheduler: Scheduler) -> None:
        response = client.post("/api/pipeline/start", json={})
        assert response.status_code == 422

    def test_script_without_timestamps(self, scheduler: Scheduler) -> None:
        response = client.post("/api/pipeline/start", json={"script": "plain prose"})
        assert response.status_code == 200
        assert response.json() == {"started": False, "slice_jobs": 0, "stage": "idle"}

    def test_start_twice_conflicts(self, scheduler: Scheduler) -> None:
        client.post("/api/pipeline/start", json={"script": SCRIPT})
        response = client.post("/api/pipeline/start", json={"script": SCRIPT})
        assert response.status_code == 409
        assert "reset" in response.json()["detail"]


class TestApprovalFlow:
    def test_approve_before_report_conflicts(self, scheduler: Scheduler) -> None:
        response = client.post("/api/pipeline/approve")
        assert response.status_code == 409

    def test_report_then_approve(self, scheduler: Scheduler) -> None:
        assert client.get("/api/pipeline/report").status_code == 404

        scheduler.start_segmentation(SCRIPT, SLIDES)
        asyncio.run(drain(scheduler))

        report = client.get("/api/pipeline/report")
        assert report.status_code == 200
        body = report.json()
        assert body["stage"] == "pending_approval"
        assert body["chunk_count"] == 2
        assert body["approval_countdown"] == 2
        assert "ORDER_OK = YES" in body["report"]

        approved = client.post("/api/pipeline/approve")
        assert approved.status_code == 200
        assert approved.json() == {"analysis_jobs": 2, "stage": "analysis"}

    def test_result_after_completion(self, scheduler: Scheduler) -> None:
        assert client.get("/api/pipeline/result").status_code == 404

        scheduler.start_segmentation(SCRIPT, SLIDES)
        asyncio.run(drain(scheduler))
        scheduler.approve()
        asyncio.run(drain(scheduler))

        response = client.get("/api/pipeline/result")
        assert response.status_code == 200
        body = response.json()
        assert body["stage"] == "completed"
        assert body["markdown"].startswith("| Timestamp |")
        assert body["refined_scripts"] == ["refined [00:15]", "refined [02:45]"]


class TestOperatorActions:
    def test_resume_when_not_paused(self, scheduler: Scheduler) -> None:
        response = client.post("/api/pipeline/resume")
        assert response.status_code == 409

    def test_set_model(self, scheduler: Scheduler) -> None:
        response = client.put("/api/pipeline/models/analysis", json={"model": "other-model"})
        assert response.status_code == 200
        assert response.json()["models"] == {"segmentation": "seg-model", "analysis": "other-model"}

    def test_set_model_unknown_role(self, scheduler: Scheduler) -> None:
        response = client.put("/api/pipeline/models/rendering", json={"model": "x"})
        assert response.status_code == 422

    def test_set_model_blank(self, scheduler: Scheduler) -> None:
        response = client.put("/api/pipeline/models/analysis", json={"model": "  "})
        assert response.status_code == 422

    def test_thinking_mode(self, scheduler: Scheduler) -> None:
        response = client.put("/api/pipeline/thinking-mode", json={"enabled": True})
        assert response.status_code == 200
        body = response.json()
        assert body["thinking_mode"] is True
        assert body["models"]["analysis"] == "think-model"

    def test_retry_and_reset(self, scheduler: Scheduler) -> None:
        client.post("/api/pipeline/start", json={"script": SCRIPT})
        assert client.post("/api/pipeline/retry").status_code == 200

        response = client.post("/api/pipeline/reset")
        assert response.status_code == 200
        body = response.json()
        assert body["stage"] == "idle"
        assert body["jobs"] == []


class TestState:
    def test_state_snapshot(self, scheduler: Scheduler) -> None:
        client.post("/api/pipeline/start", json={"script": SCRIPT})
        body = client.get("/api/pipeline/state").json()

        assert body["stage"] == "segmentation"
        assert body["max_concurrency"] == 2
        assert body["active_jobs"] == 0
        assert [j["slice_id"] for j in body["jobs"]] == ["S01", "S02"]
        assert body["rate_limit"] == {
            "paused": False,
            "cooling_down": False,
            "cooldown_remaining": 0,
            "affected_stage": None,
            "failing_model": None,
            "switch_attempted": False,
        }

    def test_log_limit(self, scheduler: Scheduler) -> None:
        client.put("/api/pipeline/models/analysis", json={"model": "a"})
        client.put("/api/pipeline/models/analysis", json={"model": "b"})
        logs = client.get("/api/pipeline/state", params={"log_limit": 1}).json()["logs"]
        assert len(logs) == 1
        assert logs[0]["message"] == "Analysis model set to b."
        assert logs[0]["level"] == "info"

    def test_invalid_log_limit(self, scheduler: Scheduler) -> None:
        response = client.get("/api/pipeline/state", params={"log_limit": 0})
        assert response.status_code == 422
