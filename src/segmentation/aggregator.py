"""Deterministic local aggregation of slice-level segmentation reports.

Merges every worker's table into one global segmentation report and appends
the integrity summary line, without calling the generative service.
"""

from __future__ import annotations

import logging
import math

from src.segmentation.models import AggregationResult, Chunk, IntegritySummary
from src.segmentation.parsers import escape_cell, extract_table_blocks, parse_report_table
from src.segmentation.timestamps import (
    extract_timestamps,
    normalize_timestamp,
    timestamp_to_seconds,
)

logger = logging.getLogger(__name__)

REPORT_HEADER = (
    "| Chunk_ID | Slide_Range | #Timestamps | Timestamp_Start–End "
    "| Flags(OCR_UNCERTAIN/MAP_UNCERTAIN) | Notes |"
)
REPORT_SEPARATOR = "|---|---|---|---|---|---|"


class LocalAggregationError(Exception):
    """No chunk could be parsed from the worker reports."""


def _first_timestamp_seconds(chunk: Chunk) -> float:
    if not chunk.ts_list:
        return math.inf
    return timestamp_to_seconds(chunk.ts_list[0])


def compute_integrity(chunks: list[Chunk], global_timestamps: list[str]) -> IntegritySummary:
    """Coverage, missing, duplicate and order checks against the ground truth.

    *chunks* must already be in report order. Duplicates stay in the flattened
    sequence, so any duplicate also breaks positional order equality.
    """
    assigned: list[str] = []
    seen: set[str] = set()
    duplicates = 0

    for chunk in chunks:
        for ts in chunk.ts_list:
            key = normalize_timestamp(ts)
            if key in seen:
                duplicates += 1
            seen.add(key)
            assigned.append(key)

    total = len(global_timestamps)
    missing = max(0, total - len(seen))
    expected = [normalize_timestamp(ts) for ts in global_timestamps]
    order_ok = duplicates == 0 and missing == 0 and assigned == expected

    return IntegritySummary(
        total=total,
        assigned=len(seen),
        missing=missing,
        duplicate=duplicates,
        order_ok=order_ok,
    )


def format_report_row(chunk: Chunk) -> str:
    cells = [
        chunk.chunk_id,
        chunk.slide_range,
        str(len(chunk.ts_list)),
        f"{chunk.ts_start}–{chunk.ts_end}",
        ", ".join(chunk.flags),
        chunk.notes,
    ]
    return "| " + " | ".join(escape_cell(c) for c in cells) + " |"


def aggregate_worker_reports(worker_reports: str, full_script: str) -> AggregationResult:
    """Merge worker segmentation tables into one globally ordered report.

    Args:
        worker_reports: Concatenated slice reports (any surrounding prose is ignored).
        full_script: The complete transcript, used as timestamp ground truth.

    Returns:
        The merged report text, its integrity summary and the sorted chunks.

    Raises:
        LocalAggregationError: If no table block yields a single chunk.
    """
    global_timestamps = [mark.value for mark in extract_timestamps(full_script)]

    chunks: list[Chunk] = []
    dropped = 0
    for block in extract_table_blocks(worker_reports):
        parsed = parse_report_table(block)
        chunks.extend(parsed.chunks)
        dropped += parsed.dropped_rows

    if not chunks:
        raise LocalAggregationError("No valid chunks parsed from worker reports.")

    # Stable sort keeps worker order for chunks that start at the same second.
    chunks.sort(key=_first_timestamp_seconds)

    summary = compute_integrity(chunks, global_timestamps)
    rows = [format_report_row(c) for c in chunks]
    report = "\n".join([REPORT_HEADER, REPORT_SEPARATOR, *rows, "", summary.format()])

    logger.info(
        "Aggregated %d chunks from worker reports: %s", len(chunks), summary.format()
    )
    return AggregationResult(
        report=report,
        summary=summary,
        chunks=tuple(chunks),
        dropped_rows=dropped,
    )

