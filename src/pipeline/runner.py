"""Headless pipeline runner.

Entry point
-----------
Run as a module::

    python -m src.pipeline.runner \\
        --script lecture_script.txt \\
        --slides slides.txt \\
        --output reports/final_table.md \\
        --auto-approve

Without ``--auto-approve`` the approval gate waits for its countdown to
elapse before analysis starts. Use ``--help`` for full argument documentation.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from src.config import settings
from src.llm.service import AnthropicService, GenerativeService
from src.pipeline import events
from src.pipeline.models import PipelineState
from src.pipeline.scheduler import Scheduler
from src.pipeline_config import ModelRole, Stage


def _finished(state: PipelineState) -> bool:
    return state.stage is Stage.COMPLETED or state.fatal_error is not None or state.is_paused


async def run_pipeline(
    scheduler: Scheduler,
    script: str,
    slide_content: str = "",
    auto_approve: bool = False,
    tick_interval: float | None = None,
) -> PipelineState:
    """Run segmentation through analysis and return the final state."""
    if scheduler.start_segmentation(script, slide_content) == 0:
        return scheduler.state

    if auto_approve:

        def approve_when_ready(state: PipelineState, event: events.Event) -> None:
            if isinstance(event, events.AggregatorSucceeded):
                scheduler.approve()

        unsubscribe = scheduler.store.subscribe(approve_when_ready)
    else:
        unsubscribe = None

    try:
        return await scheduler.run_until(_finished, interval=tick_interval)
    finally:
        if unsubscribe is not None:
            unsubscribe()


def _read(path: str | None) -> str:
    if not path:
        return ""
    return Path(path).read_text(encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Segment and analyse a timestamped lecture transcript."
    )
    parser.add_argument("--script", required=True, help="Timestamped transcript file.")
    parser.add_argument("--slides", help="Slide text file with '--- SLIDE n ---' markers.")
    parser.add_argument("--output", help="Where to write the merged result table.")
    parser.add_argument("--report", help="Where to write the segmentation report.")
    parser.add_argument(
        "--auto-approve",
        action="store_true",
        help="Start analysis as soon as segmentation is aggregated.",
    )
    parser.add_argument("--segmentation-model", help="Override the segmentation model.")
    parser.add_argument("--analysis-model", help="Override the analysis model.")
    parser.add_argument("--thinking", action="store_true", help="Enable thinking mode.")
    return parser


def main(argv: list[str] | None = None, service: GenerativeService | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    scheduler = Scheduler(service or AnthropicService())
    if args.segmentation_model:
        scheduler.set_model(ModelRole.SEGMENTATION, args.segmentation_model)
    if args.analysis_model:
        scheduler.set_model(ModelRole.ANALYSIS, args.analysis_model)
    if args.thinking:
        scheduler.set_thinking_mode(True)

    state = asyncio.run(
        run_pipeline(
            scheduler,
            _read(args.script),
            _read(args.slides),
            auto_approve=args.auto_approve,
        )
    )

    if args.report and state.segmentation_report:
        os.makedirs(os.path.dirname(args.report) or ".", exist_ok=True)
        Path(args.report).write_text(state.segmentation_report, encoding="utf-8")

    if state.fatal_error is not None:
        print(f"Pipeline stopped: {state.fatal_error}", file=sys.stderr)
        return 1
    if state.is_paused:
        print(
            f"Paused: rate limit on {state.recovery.failing_model}. "
            "Re-run with a different --analysis-model.",
            file=sys.stderr,
        )
        return 2
    if state.stage is not Stage.COMPLETED:
        print("No timestamps found in the transcript; nothing to do.", file=sys.stderr)
        return 1

    if args.output:
        os.makedirs(os.path.dirname(args.output) or ".", exist_ok=True)
        Path(args.output).write_text(state.final_output, encoding="utf-8")
        print(f"Final table written to {args.output}")
    else:
        print(state.final_output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
