from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from pipetrace.core.cache.step_outputs import StepOutputCache
from pipetrace.core.chain.controller import JobDetailsController
from pipetrace.core.chain.errors import RootFetchFailure
from pipetrace.core.jobs.schemas import JobResultsView, JobTimeline

from .deps import get_job_details_controller, get_step_output_cache

router = APIRouter()
logger = logging.getLogger("pipetrace.api")


def _not_found(exc: RootFetchFailure) -> HTTPException:
    logger.warning("job chain unavailable", extra={"extra_fields": {"failed_job_id": exc.job_id}})
    return HTTPException(status_code=404, detail=str(exc))


@router.get("/jobs/{job_id}", response_model=JobResultsView)
def get_job_details(
    job_id: str,
    controller: JobDetailsController = Depends(get_job_details_controller),
) -> JobResultsView:
    try:
        return controller.fetch_job_details(job_id)
    except RootFetchFailure as exc:
        raise _not_found(exc) from exc


@router.get("/jobs/{job_id}/timeline", response_model=JobTimeline)
def get_job_timeline(
    job_id: str,
    controller: JobDetailsController = Depends(get_job_details_controller),
) -> JobTimeline:
    try:
        return controller.fetch_timeline(job_id)
    except RootFetchFailure as exc:
        raise _not_found(exc) from exc


@router.get("/subjobs/{subjob_id}", response_model=JobResultsView)
def get_subjob_details(
    subjob_id: str,
    controller: JobDetailsController = Depends(get_job_details_controller),
) -> JobResultsView:
    try:
        return controller.fetch_subjob_details(subjob_id)
    except RootFetchFailure as exc:
        raise _not_found(exc) from exc


@router.get("/step-outputs/{key}")
def get_step_output(key: str, cache: StepOutputCache = Depends(get_step_output_cache)) -> dict[str, object]:
    if key not in cache:
        raise HTTPException(status_code=404, detail="step output not cached")
    return {"key": key, "value": cache.get(key)}
