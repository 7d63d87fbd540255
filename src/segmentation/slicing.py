"""Slice planner: split a timestamped transcript into owned/context slices."""

from __future__ import annotations

from src.segmentation.models import Slice
from src.segmentation.timestamps import extract_timestamps


def format_slice_id(index: int) -> str:
    """Zero-padded slice identifier, 1-based (``S01``, ``S02``, ...)."""
    return f"S{index + 1:02d}"


def plan_slices(
    script: str,
    slide_content: str = "",
    slice_size: int = 50,
    context: int = 3,
) -> list[Slice]:
    """Partition the transcript's timestamps into consecutive owned groups.

    Each slice owns ``slice_size`` timestamps (the last may own fewer) and
    carries up to ``context`` neighbouring timestamps on each side for
    disambiguation only. The slice script runs from the first context
    timestamp up to (not including) the timestamp after the context range, or
    to the end of the transcript.

    Args:
        script: The full timestamped transcript.
        slide_content: Slide deck text handed to every slice.
        slice_size: Number of owned timestamps per slice.
        context: Context radius in timestamps.

    Returns:
        Ordered slices; empty when the transcript has no timestamps.
    """
    if slice_size <= 0:
        raise ValueError(f"slice_size must be positive, got {slice_size}")
    context = max(0, context)

    marks = extract_timestamps(script)
    total = len(marks)
    slices: list[Slice] = []

    for start in range(0, total, slice_size):
        end = min(start + slice_size, total)
        context_start = max(0, start - context)
        context_end = min(total, end + context)

        script_start = marks[context_start].offset
        script_end = marks[context_end].offset if context_end < total else len(script)

        slices.append(
            Slice(
                slice_id=format_slice_id(len(slices)),
                owned_timestamps=tuple(m.token for m in marks[start:end]),
                context_timestamps=tuple(
                    m.token for m in marks[context_start:start] + marks[end:context_end]
                ),
                script=script[script_start:script_end],
                slide_content=slide_content,
            )
        )

    return slices
