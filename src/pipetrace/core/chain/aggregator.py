from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pipetrace.core.jobs.schemas import StepDescriptor

from .timestamps import parse_timestamp


@dataclass
class JobStepSource:
    """Step data of one chain job: either pre-shaped descriptors or a raw step_results map."""

    job_id: str
    steps: list[StepDescriptor] | None = None
    step_results: dict[str, Any] | None = None
    timestamp: str | None = None
    context_id: int | None = None


def _descriptors_for(source: JobStepSource) -> list[StepDescriptor]:
    if source.steps:
        return list(source.steps)
    if not source.step_results:
        return []
    return [
        StepDescriptor(
            step_number=idx,
            step_name=str(step_name),
            timestamp=source.timestamp,
            has_result=True,
            job_id=source.job_id,
        )
        for idx, step_name in enumerate(source.step_results, start=1)
    ]


def _supersedes(candidate: StepDescriptor, current: StepDescriptor) -> bool:
    # Later reports win unless they are provably older than what we already hold.
    candidate_ts = parse_timestamp(candidate.timestamp)
    current_ts = parse_timestamp(current.timestamp)
    if candidate_ts is not None and current_ts is not None:
        return candidate_ts >= current_ts
    return True


def aggregate_steps(sources: list[JobStepSource], root_job_id: str | None = None) -> list[StepDescriptor]:
    """Merge per-job step lists of a chain into one ordered sequence.

    ``sources`` must be in chain order; a job's position becomes the
    ``execution_context_id`` of its steps unless the source pins its own.
    Repeated reports of the same step within a job (retries) collapse into one
    descriptor. The result is ordered by context, then by the step's own
    number, then by first appearance, so identical input always yields
    identical output.
    """
    root = root_job_id or (sources[0].job_id if sources else None)
    merged: dict[tuple[str, str], tuple[int, StepDescriptor]] = {}
    seen = 0

    for position, source in enumerate(sources):
        for descriptor in _descriptors_for(source):
            tagged = descriptor.model_copy(
                update={
                    "job_id": source.job_id,
                    "root_job_id": root,
                    "execution_context_id": position if source.context_id is None else source.context_id,
                }
            )
            key = (source.job_id, tagged.step_name)
            existing = merged.get(key)
            if existing is None:
                merged[key] = (seen, tagged)
                seen += 1
            elif _supersedes(tagged, existing[1]):
                merged[key] = (existing[0], tagged)

    ordered = sorted(
        merged.values(),
        key=lambda item: (item[1].execution_context_id, item[1].step_number, item[0]),
    )
    return [descriptor for _, descriptor in ordered]
