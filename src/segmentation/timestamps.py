"""Timestamp extraction and normalisation for bracketed transcript markers."""

from __future__ import annotations

import re

from src.segmentation.models import TimestampMark

# [MM:SS], [H:MM:SS] etc. Anything else is not a timestamp.
TIMESTAMP_RE = re.compile(r"\[(\d{1,2}:\d{2}(?::\d{2})?)\]")
LEADING_TIMESTAMP_RE = re.compile(r"^\[(\d{1,2}:\d{2}(?::\d{2})?)\]")

_LEADING_ZEROS_RE = re.compile(r"^0+(?=\d)")


def extract_timestamps(script: str) -> list[TimestampMark]:
    """Return every timestamp occurrence in *script*, in document order.

    Duplicates are kept as they appear; malformed markers simply do not match.
    """
    return [
        TimestampMark(token=m.group(0), value=m.group(1), offset=m.start())
        for m in TIMESTAMP_RE.finditer(script)
    ]


def strip_brackets(ts: str) -> str:
    return ts.replace("[", "").replace("]", "").strip()


def normalize_timestamp(ts: str) -> str:
    """Canonical form used for timestamp equality (``[05:00]`` == ``5:00``)."""
    return _LEADING_ZEROS_RE.sub("", strip_brackets(ts))


def timestamp_to_seconds(ts: str) -> int:
    """Convert ``MM:SS`` or ``HH:MM:SS`` (brackets allowed) to seconds.

    Unparsable input yields 0.
    """
    parts = strip_brackets(ts).split(":")
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        return 0
    if len(numbers) == 3:
        hours, minutes, seconds = numbers
        return hours * 3600 + minutes * 60 + seconds
    if len(numbers) == 2:
        minutes, seconds = numbers
        return minutes * 60 + seconds
    return 0
