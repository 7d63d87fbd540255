"""Parsers for pipe-delimited report tables.

Two table shapes flow through the pipeline:

- the six-column segmentation report (``Chunk_ID | Slide_Range | #Timestamps |
  Timestamp_Start–End | Flags | Notes``), whose Notes cell embeds
  ``TS_LIST=[...]``;
- the per-chunk analysis result table, merged into the final output.
"""

from __future__ import annotations

import logging
import re

from src.pipeline_config import QualityClass
from src.segmentation.models import Chunk, ParsedReport

logger = logging.getLogger(__name__)

SEGMENTATION_COLUMNS = 6
TS_LIST_MARKER = "TS_LIST=["
CLASSIFICATION_COLUMN = "Classification"
REFINED_SCRIPT_COLUMN = "Refined Script"

_UNESCAPED_PIPE_RE = re.compile(r"(?<!\\)\|")
_SEPARATOR_CHARS_RE = re.compile(r"[|\s:\-]")
_RANGE_SPLIT_RE = re.compile(r"\s*[-–]\s*")


def is_table_line(line: str) -> bool:
    stripped = line.strip()
    return len(stripped) >= 2 and stripped.startswith("|") and stripped.endswith("|")


def is_separator_line(line: str) -> bool:
    return not _SEPARATOR_CHARS_RE.sub("", line)


def split_row(line: str) -> list[str]:
    """Split a table row on unescaped pipes; ``\\|`` survives as a literal ``|``."""
    cells = _UNESCAPED_PIPE_RE.split(line.strip())
    # Leading and trailing pipes produce empty outer cells.
    return [c.strip().replace("\\|", "|") for c in cells[1:-1]]


def escape_cell(text: str) -> str:
    return text.replace("|", "\\|")


def extract_ts_list(notes: str) -> list[str]:
    """Recover the owned timestamp list from a Notes cell.

    Entries may themselves be bracketed (``TS_LIST=[[00:15], [01:30]]``), so
    the closing bracket is found by depth rather than by the first ``]``.
    """
    start = notes.find(TS_LIST_MARKER)
    if start == -1:
        return []

    pos = start + len(TS_LIST_MARKER)
    depth = 1
    end = pos
    while end < len(notes):
        ch = notes[end]
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                break
        end += 1

    body = notes[pos:end]
    items = (item.strip().strip("[]").strip() for item in body.split(","))
    return [item for item in items if item]


def _table_rows(markdown: str) -> list[str]:
    """Data rows of a table: delimiter-bounded, separators and header removed."""
    lines = [line.strip() for line in markdown.splitlines() if is_table_line(line)]
    content = [line for line in lines if not is_separator_line(line)]
    return content[1:]


def parse_report_table(markdown: str) -> ParsedReport:
    """Parse a segmentation report into chunks, counting rows that were dropped.

    Rows with fewer than six cells are skipped rather than aborting the parse.
    """
    chunks: list[Chunk] = []
    dropped = 0

    for row in _table_rows(markdown):
        cells = split_row(row)
        if len(cells) < SEGMENTATION_COLUMNS:
            dropped += 1
            continue

        chunk_id, slide_range, _count, ts_range, flags_raw, notes = cells[:SEGMENTATION_COLUMNS]
        ts_list = extract_ts_list(notes)

        range_parts = [p for p in _RANGE_SPLIT_RE.split(ts_range.strip(), maxsplit=1) if p]
        ts_start = range_parts[0] if range_parts else (ts_list[0] if ts_list else "")
        ts_end = range_parts[1] if len(range_parts) > 1 else (ts_list[-1] if ts_list else "")

        chunks.append(
            Chunk(
                chunk_id=chunk_id.strip(),
                slide_range=slide_range,
                ts_list=tuple(ts_list),
                ts_start=ts_start,
                ts_end=ts_end,
                flags=tuple(f.strip() for f in flags_raw.split(",") if f.strip()),
                notes=notes,
            )
        )

    if dropped:
        logger.warning("Dropped %d malformed segmentation row(s)", dropped)

    return ParsedReport(chunks=tuple(chunks), dropped_rows=dropped)


def extract_table_blocks(text: str) -> list[str]:
    """Return every run of two or more consecutive table lines in *text*."""
    blocks: list[str] = []
    current: list[str] = []

    for line in text.splitlines():
        if is_table_line(line):
            current.append(line.strip())
            continue
        if len(current) >= 2:
            blocks.append("\n".join(current))
        current = []

    if len(current) >= 2:
        blocks.append("\n".join(current))

    return blocks


def merge_result_tables(segments: list[str]) -> str:
    """Concatenate per-chunk result tables under a single header.

    The header and separator come from the first segment with at least two
    table lines; every segment contributes its data rows in input order.
    Segments that are empty or too short are skipped.
    """
    header = ""
    separator = ""
    rows: list[str] = []

    for segment in segments:
        if not segment:
            continue
        lines = [line.strip() for line in segment.splitlines() if is_table_line(line)]
        if len(lines) < 2:
            continue
        if not header:
            header, separator = lines[0], lines[1]
        rows.extend(lines[2:])

    if not header:
        return ""

    return "\n".join([header, separator, *rows])


def find_column(header_line: str, name: str) -> int | None:
    """Index of the first header cell containing *name* (case-insensitive)."""
    needle = name.lower()
    for index, cell in enumerate(split_row(header_line)):
        if needle in cell.lower():
            return index
    return None


def parse_quality_classification(markdown: str) -> QualityClass | None:
    """Read the quality classification from the first data row of a result table."""
    lines = [line.strip() for line in markdown.splitlines() if is_table_line(line)]
    if len(lines) < 3:
        return None

    column = find_column(lines[0], CLASSIFICATION_COLUMN)
    if column is None:
        return None

    cells = split_row(lines[2])
    if column >= len(cells):
        return None

    value = cells[column].lower()
    if "high" in value:
        return QualityClass.HIGH
    if "medium" in value or "average" in value:
        return QualityClass.MEDIUM
    if "low" in value:
        return QualityClass.LOW
    return None


def extract_refined_scripts(markdown: str) -> list[str]:
    """Non-empty refined-script cells of a merged result table, in row order.

    Cells reading ``n/a`` (not applicable) are skipped.
    """
    lines = [line.strip() for line in markdown.splitlines() if is_table_line(line)]
    if len(lines) < 2:
        return []

    column = find_column(lines[0], REFINED_SCRIPT_COLUMN)
    if column is None:
        return []

    scripts: list[str] = []
    for row in lines[2:]:
        cells = split_row(row)
        if column >= len(cells):
            continue
        cell = cells[column].strip()
        if cell and cell.lower() not in ("n/a", "not applicable"):
            scripts.append(cell.replace("<br>", "\n"))
    return scripts
