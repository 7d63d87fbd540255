"""Pull the transcript lines and slide blocks that belong to a chunk."""

from __future__ import annotations

import re

from src.segmentation.models import Chunk
from src.segmentation.timestamps import LEADING_TIMESTAMP_RE, normalize_timestamp

SLIDE_MARKER = "--- SLIDE "
SLIDES_NOT_FOUND = "Slide content for this range could not be determined."

_SLIDE_RANGE_RE = re.compile(r"(\d+)\s*[-–]\s*(\d+)")
_SLIDE_NUMBER_RE = re.compile(r"(\d+)")
_SLIDE_BLOCK_RE = re.compile(r"^--- SLIDE (\d+) ---", re.MULTILINE)


def extract_script_for_chunk(full_script: str, chunk: Chunk) -> str:
    """Return the transcript lines owned by *chunk*.

    A line opening with one of the chunk's timestamps starts (or continues)
    the chunk; untimed lines after it are continuation text. The first line
    opening with a foreign timestamp after entering the chunk ends it.
    """
    wanted = {normalize_timestamp(ts) for ts in chunk.ts_list}
    selected: list[str] = []
    in_chunk = False

    for line in full_script.splitlines():
        stripped = line.strip()
        if not stripped:
            continue

        match = LEADING_TIMESTAMP_RE.match(stripped)
        if match:
            if normalize_timestamp(match.group(1)) in wanted:
                in_chunk = True
                selected.append(line)
            elif in_chunk:
                break
        elif in_chunk:
            selected.append(line)

    return "\n".join(selected)


def parse_slide_range(slide_range: str) -> tuple[int, int] | None:
    """``"Slide 3–4"`` -> ``(3, 4)``, ``"Slide 7"`` -> ``(7, 7)``."""
    match = _SLIDE_RANGE_RE.search(slide_range)
    if match:
        return int(match.group(1)), int(match.group(2))
    match = _SLIDE_NUMBER_RE.search(slide_range)
    if match:
        number = int(match.group(1))
        return number, number
    return None


def split_slides(slide_content: str) -> dict[int, str]:
    """Map slide number to its full block (marker line included)."""
    starts = list(_SLIDE_BLOCK_RE.finditer(slide_content))
    blocks: dict[int, str] = {}
    for index, match in enumerate(starts):
        end = starts[index + 1].start() if index + 1 < len(starts) else len(slide_content)
        number = int(match.group(1))
        # First block wins if the extractor emitted a slide number twice.
        blocks.setdefault(number, slide_content[match.start() : end].strip())
    return blocks


def extract_slides_for_chunk(slide_content: str, chunk: Chunk) -> str:
    """Return the ``--- SLIDE n ---`` blocks covered by the chunk's slide range."""
    bounds = parse_slide_range(chunk.slide_range)
    if bounds is None:
        return SLIDES_NOT_FOUND

    first, last = bounds
    blocks = split_slides(slide_content)
    return "\n\n".join(blocks[n] for n in range(first, last + 1) if n in blocks)
