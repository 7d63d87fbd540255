"""Data models for slicing and segmentation reports."""

from __future__ import annotations

from dataclasses import dataclass, field

from src.pipeline_config import AnalysisSubStage, ErrorKind, JobStatus, QualityClass


@dataclass(frozen=True)
class TimestampMark:
    """A timestamp occurrence in the transcript."""

    token: str  # as written, brackets included, e.g. "[01:30]"
    value: str  # inner text, e.g. "01:30"
    offset: int  # character offset of the token in the transcript


@dataclass(frozen=True)
class Slice:
    """A bounded, context-overlapped subdivision of the transcript."""

    slice_id: str
    owned_timestamps: tuple[str, ...]
    context_timestamps: tuple[str, ...]
    script: str
    slide_content: str = ""


@dataclass(frozen=True)
class Chunk:
    """A semantic analysis unit parsed from a segmentation report row."""

    chunk_id: str
    slide_range: str
    ts_list: tuple[str, ...]
    ts_start: str
    ts_end: str
    flags: tuple[str, ...] = ()
    notes: str = ""
    quality: QualityClass | None = None

    analysis_status: JobStatus = JobStatus.PENDING
    sub_stage: AnalysisSubStage = AnalysisSubStage.QUEUED
    analysis_result: str | None = None
    analysis_error: str | None = None
    analysis_error_kind: ErrorKind | None = None
    attempts: int = 0


@dataclass(frozen=True)
class ParsedReport:
    """Chunks recovered from a report plus the count of rows that were dropped."""

    chunks: tuple[Chunk, ...] = ()
    dropped_rows: int = 0


@dataclass(frozen=True)
class IntegritySummary:
    """Deterministic coverage checks over an aggregated report."""

    total: int
    assigned: int
    missing: int
    duplicate: int
    order_ok: bool

    def format(self) -> str:
        return (
            f"TOTAL_TIMESTAMPS = {self.total}; ASSIGNED = {self.assigned}; "
            f"MISSING = {self.missing}; DUPLICATE = {self.duplicate}; "
            f"ORDER_OK = {'YES' if self.order_ok else 'NO'}"
        )


@dataclass(frozen=True)
class AggregationResult:
    """Output of the local aggregator."""

    report: str
    summary: IntegritySummary
    chunks: tuple[Chunk, ...] = field(default=())
    dropped_rows: int = 0
