"""Pipeline control endpoints: start, approve, resume, retry, reset, models, read-out."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from src.api.models import (
    ApproveResponse,
    ModelRequest,
    ReportResponse,
    ResultResponse,
    ResumeResponse,
    StartRequest,
    StartResponse,
    StateResponse,
    ThinkingModeRequest,
)
from src.llm.service import AnthropicService
from src.pipeline.machine import InvalidTransitionError
from src.pipeline.scheduler import Scheduler
from src.pipeline_config import ModelRole, Stage
from src.segmentation.parsers import extract_refined_scripts

router = APIRouter(prefix="/api/pipeline")

_scheduler: Scheduler | None = None


def get_scheduler() -> Scheduler:
    """Process-wide scheduler, created on first use."""
    global _scheduler
    if _scheduler is None:
        _scheduler = Scheduler(AnthropicService())
    return _scheduler


SchedulerDep = Annotated[Scheduler, Depends(get_scheduler)]


@router.get("/state", response_model=StateResponse)
async def get_state(
    scheduler: SchedulerDep,
    log_limit: Annotated[int | None, Query(ge=1)] = None,
) -> StateResponse:
    return StateResponse.from_state(scheduler.state, log_limit=log_limit)


@router.post("/start", response_model=StartResponse)
async def start_pipeline(request: StartRequest, scheduler: SchedulerDep) -> StartResponse:
    """Slice the transcript and queue slice-worker jobs.

    A transcript without timestamps is accepted but nothing is queued.
    """
    try:
        count = scheduler.start_segmentation(request.script, request.slide_content)
    except InvalidTransitionError as exc:
        raise HTTPException(
            status_code=409,
            detail=f"Pipeline is {exc.current.value}; reset before starting again.",
        ) from exc
    return StartResponse(started=count > 0, slice_jobs=count, stage=scheduler.state.stage)


@router.post("/approve", response_model=ApproveResponse)
async def approve_segmentation(scheduler: SchedulerDep) -> ApproveResponse:
    try:
        count = scheduler.approve()
    except InvalidTransitionError as exc:
        raise HTTPException(
            status_code=409,
            detail=f"Nothing to approve while the pipeline is {exc.current.value}.",
        ) from exc
    return ApproveResponse(analysis_jobs=count, stage=scheduler.state.stage)


@router.post("/resume", response_model=ResumeResponse)
async def resume_pipeline(scheduler: SchedulerDep) -> ResumeResponse:
    """Re-queue rate-limited work after a model switch."""
    if not scheduler.resume():
        raise HTTPException(status_code=409, detail="Pipeline is not paused.")
    return ResumeResponse(resumed=True)


@router.post("/retry", response_model=StateResponse)
async def retry_failed(scheduler: SchedulerDep) -> StateResponse:
    scheduler.retry_all_failed()
    return StateResponse.from_state(scheduler.state)


@router.post("/reset", response_model=StateResponse)
async def reset_pipeline(scheduler: SchedulerDep) -> StateResponse:
    scheduler.reset()
    return StateResponse.from_state(scheduler.state)


@router.put("/models/{role}", response_model=StateResponse)
async def set_model(role: ModelRole, request: ModelRequest, scheduler: SchedulerDep) -> StateResponse:
    if not request.model.strip():
        raise HTTPException(status_code=422, detail="Model name must not be empty.")
    scheduler.set_model(role, request.model.strip())
    return StateResponse.from_state(scheduler.state)


@router.put("/thinking-mode", response_model=StateResponse)
async def set_thinking_mode(request: ThinkingModeRequest, scheduler: SchedulerDep) -> StateResponse:
    scheduler.set_thinking_mode(request.enabled)
    return StateResponse.from_state(scheduler.state)


@router.get("/report", response_model=ReportResponse)
async def get_report(scheduler: SchedulerDep) -> ReportResponse:
    state = scheduler.state
    if not state.segmentation_report:
        raise HTTPException(status_code=404, detail="No segmentation report yet.")
    return ReportResponse(
        stage=state.stage,
        report=state.segmentation_report,
        approval_countdown=state.approval_countdown,
        chunk_count=len(state.chunks),
    )


@router.get("/result", response_model=ResultResponse)
async def get_result(scheduler: SchedulerDep) -> ResultResponse:
    state = scheduler.state
    if state.stage is not Stage.COMPLETED:
        raise HTTPException(status_code=404, detail="Pipeline has not completed.")
    return ResultResponse(
        stage=state.stage,
        markdown=state.final_output,
        refined_scripts=extract_refined_scripts(state.final_output),
    )
