"""Job factories for each stage."""

from __future__ import annotations

import logging

from src.llm.prompts import build_aggregator_payload, build_analysis_payload, build_worker_payload
from src.pipeline.models import Job, new_id
from src.pipeline_config import JobType, Stage
from src.segmentation.extract import extract_script_for_chunk, extract_slides_for_chunk
from src.segmentation.models import Chunk, Slice

logger = logging.getLogger(__name__)


def build_slice_jobs(slices: list[Slice]) -> tuple[Job, ...]:
    return tuple(
        Job(
            job_id=new_id(),
            type=JobType.SLICE_WORKER,
            stage=Stage.SEGMENTATION,
            payload=build_worker_payload(s),
            slice_id=s.slice_id,
        )
        for s in slices
    )


def build_aggregator_job(worker_results: list[str]) -> Job:
    return Job(
        job_id=new_id(),
        type=JobType.AGGREGATOR,
        stage=Stage.AGGREGATING,
        payload=build_aggregator_payload(worker_results),
    )


def build_analysis_jobs(
    chunks: tuple[Chunk, ...] | list[Chunk],
    script: str,
    slide_content: str,
) -> tuple[Job, ...]:
    """One chunk-analysis job per chunk, carrying its script and slide excerpts."""
    jobs: list[Job] = []
    for chunk in chunks:
        chunk_script = extract_script_for_chunk(script, chunk)
        if not chunk_script:
            logger.warning("Chunk %s has empty script content", chunk.chunk_id)
        chunk_slides = extract_slides_for_chunk(slide_content, chunk)
        jobs.append(
            Job(
                job_id=new_id(),
                type=JobType.CHUNK_ANALYSIS,
                stage=Stage.ANALYSIS,
                payload=build_analysis_payload(chunk_slides, chunk_script),
                chunk_id=chunk.chunk_id,
            )
        )
    return tuple(jobs)
