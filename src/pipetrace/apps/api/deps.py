from __future__ import annotations

from functools import lru_cache

from pipetrace.core.cache.step_outputs import StepOutputCache
from pipetrace.core.chain.controller import JobDetailsController
from pipetrace.core.jobs.source import HTTPJobDataSource, JobDataSource


@lru_cache(maxsize=1)
def get_step_output_cache() -> StepOutputCache:
    return StepOutputCache()


@lru_cache(maxsize=1)
def get_job_source() -> JobDataSource:
    return HTTPJobDataSource()


@lru_cache(maxsize=1)
def get_job_details_controller() -> JobDetailsController:
    return JobDetailsController(
        source=get_job_source(),
        on_step_data_add=get_step_output_cache().add,
    )
