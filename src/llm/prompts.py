"""System instruction and payload builders for each job type."""

from __future__ import annotations

import re

from src.segmentation.models import Slice
from src.segmentation.parsers import extract_table_blocks

# Second turn of a chunk-analysis call: approves the segmentation so the
# model proceeds to analysis and refinement for the chunk.
ANALYSIS_ACKNOWLEDGEMENT = "OK SEGMENTATION"

SYSTEM_PROMPT = """\
You are a lecture-analysis assistant working inside a three-stage pipeline:
1. SEGMENTATION - map every transcript timestamp to slides and group them into chunks.
2. ANALYSIS - score the educational value of each chunk (only after approval).
3. REFINEMENT - polish the language of qualifying passages (only after approval).

Never drop a timestamp and never alter the wording of the original script.
The slide deck may contain [IMAGE ANALYSIS]...[/IMAGE ANALYSIS] blocks; use them.

The client always tells you which mode to run in.

<EXECUTION_MODE>WORKER</EXECUTION_MODE>
Segment one slice. Only timestamps in <OWNED_TIMESTAMPS> may appear in your
output; <CONTEXT_TIMESTAMPS> are for orientation only. Output a single
Segmentation Report table and a one-line slice summary, then stop:
| Chunk_ID | Slide_Range | #Timestamps | Timestamp_Start–End | Flags(OCR_UNCERTAIN/MAP_UNCERTAIN) | Notes |
Chunk_ID must be prefixed with the slice id (S03-C01, S03-C02, ...).
Notes must contain TS_LIST=[ts1, ts2, ...] listing the chunk's owned timestamps in order.
SLICE_ID=Sxx; OWNED_TOTAL = n; OWNED_ASSIGNED = n; OWNED_MISSING = 0; OWNED_DUPLICATE = 0; ORDER_OK = YES/NO

<EXECUTION_MODE>AGGREGATOR</EXECUTION_MODE>
Merge the tables in <WORKER_REPORTS> in global timestamp order, keep the slice
prefix of every Chunk_ID, and output the same six-column table followed by:
TOTAL_TIMESTAMPS = N; ASSIGNED = n; MISSING = m; DUPLICATE = d; ORDER_OK = YES/NO

ANALYSIS (after the user replies "OK SEGMENTATION")
Output ONE markdown table and nothing else:
| Timestamp | Overall Score | Classification | Rationale | Original Script | Refined Script |
Classification is one of: High quality, Medium, Low quality.
Original Script is copied verbatim. Refined Script is the edited version or "N/A".
Never break a row across physical lines; use <br> for line breaks and escape
pipes inside cells as \\|.
"""

_WORKER_REPORTS_RE = re.compile(r"<WORKER_REPORTS>(.*?)</WORKER_REPORTS>", re.DOTALL)


def build_worker_payload(slice_: Slice) -> str:
    return (
        "<EXECUTION_MODE>WORKER</EXECUTION_MODE>\n"
        f"<SLICE_ID>{slice_.slice_id}</SLICE_ID>\n"
        f"<OWNED_TIMESTAMPS>{', '.join(slice_.owned_timestamps)}</OWNED_TIMESTAMPS>\n"
        f"<CONTEXT_TIMESTAMPS>{', '.join(slice_.context_timestamps)}</CONTEXT_TIMESTAMPS>\n"
        f"<SLIDE_SUBDECK>{slice_.slide_content}</SLIDE_SUBDECK>\n"
        f"<SCRIPT_SLICE>{slice_.script}</SCRIPT_SLICE>\n"
        "<INSTRUCTION_WRAPPER>You MUST format the \"Notes\" column with: "
        "TS_LIST=[...]</INSTRUCTION_WRAPPER>"
    )


def compact_worker_report(result: str) -> str:
    """Keep only the table blocks of a worker result, one blank line apart."""
    return "\n\n".join(extract_table_blocks(result))


def build_aggregator_payload(worker_results: list[str]) -> str:
    reports = "\n\n".join(compact_worker_report(r) for r in worker_results)
    return (
        "<EXECUTION_MODE>AGGREGATOR</EXECUTION_MODE>"
        f"<WORKER_REPORTS>{reports}</WORKER_REPORTS>"
    )


def extract_worker_reports(payload: str) -> str:
    match = _WORKER_REPORTS_RE.search(payload)
    return match.group(1) if match else ""


def build_analysis_payload(chunk_slides: str, chunk_script: str) -> str:
    return (
        f"<SLIDE_DECK>{chunk_slides}</SLIDE_DECK>\n"
        f"<FULL_SCRIPT>{chunk_script}</FULL_SCRIPT>\n"
        "<INSTRUCTION_WRAPPER>Perform analysis for this specific chunk.</INSTRUCTION_WRAPPER>"
    )
