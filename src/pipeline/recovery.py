"""Rate-limit recovery: pause for a model switch, or fall back to a global cooldown.

A quota failure on an analysis job pauses the whole queue so an operator can
pick another analysis model; resuming re-queues everything that failed on the
quota. A quota failure anywhere else, or a second one after a switch was
already tried, throttles the pipeline to serial execution for a fixed period.
"""

from __future__ import annotations

from src.pipeline import events
from src.pipeline.models import Job, PipelineState, RecoveryMode
from src.pipeline_config import Stage


def on_quota_exceeded(
    state: PipelineState,
    job: Job,
    model: str,
    cooldown_seconds: int = 60,
) -> list[events.Event]:
    """Choose the recovery events for a quota failure of *job* on *model*.

    *state* must be the latest committed state, not the one seen at dispatch.
    """
    recovery = state.recovery

    if recovery.mode is RecoveryMode.PAUSED:
        # Already waiting on the operator; this job is re-queued on resume.
        return []

    if (
        job.stage is Stage.ANALYSIS
        and recovery.mode is RecoveryMode.NORMAL
        and not recovery.switch_attempted
    ):
        return [events.PauseForModelSwitch(stage=Stage.ANALYSIS, model=model)]

    return [events.TriggerCooldown(seconds=cooldown_seconds)]


def resume_events(state: PipelineState) -> list[events.Event]:
    """Events for an operator resume; empty when the pipeline is not paused."""
    if not state.is_paused:
        return []
    return [events.RequeueRateLimited(), events.ResumeAfterModelSwitch()]


def cooldown_tick_events(state: PipelineState) -> list[events.Event]:
    """One second of cooldown; ends it when the countdown reaches zero."""
    if not state.is_cooling_down:
        return []
    if state.cooldown_remaining <= 1:
        return [events.CooldownTick(), events.EndCooldown()]
    return [events.CooldownTick()]
