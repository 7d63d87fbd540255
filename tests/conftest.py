"""Shared fixtures: an in-process generative service and a fast scheduler."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from typing import Any

import pytest

from src.llm.errors import QuotaExceededError
from src.llm.prompts import ANALYSIS_ACKNOWLEDGEMENT
from src.llm.retry import RetryPolicy
from src.pipeline.models import ModelSelection
from src.pipeline.scheduler import Scheduler
from src.pipeline_config import PipelineConfig

SCRIPT = (
    "[00:15] Welcome to the lecture.\n"
    "[01:30] Today we cover sorting.\n"
    "[02:45] Let us start with bubble sort.\n"
)

SLIDES = "--- SLIDE 1 ---\nSorting algorithms\n"

AGGREGATED_REPORT = (
    "| Chunk_ID | Slide_Range | #Timestamps | Timestamp_Start–End "
    "| Flags(OCR_UNCERTAIN/MAP_UNCERTAIN) | Notes |\n"
    "|---|---|---|---|---|---|\n"
    "| S01-C01 | Slide 1 | 3 | [00:15]–[02:45] |  | TS_LIST=[00:15, 01:30, 02:45] |\n"
    "\n"
    "TOTAL_TIMESTAMPS = 3; ASSIGNED = 3; MISSING = 0; DUPLICATE = 0; ORDER_OK = YES"
)

_SLICE_ID_RE = re.compile(r"<SLICE_ID>(.*?)</SLICE_ID>")
_OWNED_RE = re.compile(r"<OWNED_TIMESTAMPS>(.*?)</OWNED_TIMESTAMPS>")
_FIRST_SCRIPT_TS_RE = re.compile(r"<FULL_SCRIPT>\s*(\[[^\]]+\])")


class FakeService:
    """Scripted stand-in for the generative service.

    Slice workers answer with one chunk per slice; chunk analysis answers with
    a one-row result table. ``gate`` holds analysis answers until it is set.
    """

    def __init__(
        self,
        fail_models: set[str] | None = None,
        worker_error: Exception | None = None,
        worker_output: str | None = None,
    ) -> None:
        self.fail_models = fail_models or set()
        self.worker_error = worker_error
        self.worker_output = worker_output
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple[str, str, str]] = []

    async def generate(self, payload: str, model: str) -> str:
        self.calls.append(("generate", model, payload))
        if "<EXECUTION_MODE>WORKER</EXECUTION_MODE>" in payload:
            if self.worker_error is not None:
                raise self.worker_error
            if self.worker_output is not None:
                return self.worker_output
            return self._worker_report(payload)
        if "<EXECUTION_MODE>AGGREGATOR</EXECUTION_MODE>" in payload:
            return AGGREGATED_REPORT
        raise AssertionError(f"unexpected payload: {payload[:40]}")

    async def converse(
        self,
        payload: str,
        acknowledgement: str,
        model: str,
        thinking: bool = False,
    ) -> str:
        assert acknowledgement == ANALYSIS_ACKNOWLEDGEMENT
        self.calls.append(("converse", model, payload))
        if self.gate is not None:
            await self.gate.wait()
        if model in self.fail_models:
            raise QuotaExceededError(f"429 rate limited on {model}")
        match = _FIRST_SCRIPT_TS_RE.search(payload)
        ts = match.group(1) if match else "[?]"
        return (
            "| Timestamp | Overall Score | Classification | Rationale "
            "| Original Script | Refined Script |\n"
            "|---|---|---|---|---|---|\n"
            f"| {ts} | 8 | High quality | Clear | original | refined {ts} |"
        )

    @staticmethod
    def _worker_report(payload: str) -> str:
        slice_match = _SLICE_ID_RE.search(payload)
        owned_match = _OWNED_RE.search(payload)
        assert slice_match and owned_match
        slice_id = slice_match.group(1)
        owned = [ts.strip() for ts in owned_match.group(1).split(",") if ts.strip()]
        return (
            "| Chunk_ID | Slide_Range | #Timestamps | Timestamp_Start–End "
            "| Flags(OCR_UNCERTAIN/MAP_UNCERTAIN) | Notes |\n"
            "|---|---|---|---|---|---|\n"
            f"| {slice_id}-C01 | Slide 1 | {len(owned)} | {owned[0]}–{owned[-1]} "
            f"|  | TS_LIST=[{', '.join(owned)}] |\n"
            f"SLICE_ID={slice_id}; OWNED_TOTAL = {len(owned)}; ORDER_OK = YES"
        )

    def models_used(self, kind: str) -> list[str]:
        return [model for call, model, _ in self.calls if call == kind]


@pytest.fixture
def make_service() -> type[FakeService]:
    return FakeService


@pytest.fixture
def make_scheduler() -> Callable[..., Scheduler]:
    def factory(service: Any, **overrides: Any) -> Scheduler:
        options: dict[str, Any] = {
            "max_concurrency": 2,
            "cooldown_seconds": 3,
            "approval_seconds": 2,
            "slice_size": 2,
            "slice_context": 1,
            "substage_interval_seconds": 2,
        }
        options.update(overrides)
        return Scheduler(
            service,
            config=PipelineConfig(**options),
            retry_policy=RetryPolicy(max_attempts=1, timeout=None, base_delay=0.0),
            models=ModelSelection(segmentation="seg-model", analysis="ana-model"),
            thinking_model="think-model",
        )

    return factory


async def drain(scheduler: Scheduler, rounds: int = 20) -> None:
    """Tick until idle: start what may start, wait for it, repeat."""
    for _ in range(rounds):
        while scheduler.tick() is not None:
            pass
        await scheduler.join()
