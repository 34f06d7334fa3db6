from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from pipetrace.core.cache.step_outputs import step_output_key
from pipetrace.core.jobs.schemas import (
    RESUME_JOB_TYPE,
    ApprovalRecord,
    JobRecord,
    JobResultsView,
    JobTimeline,
    JobViewMetadata,
    NormalizedResult,
    PerformanceMetrics,
    ResultsSummary,
    StepDescriptor,
)
from pipetrace.core.jobs.source import JobDataSource, JobSourceError
from pipetrace.core.logging.context import log_context

from .aggregator import JobStepSource, aggregate_steps
from .errors import RootFetchFailure
from .normalizer import extract_step_info, normalize_result
from .timeline import JobBoundary, compose_timeline, execution_contexts
from .timestamps import parse_timestamp
from .walker import ChainWalker

StepDataSink = Callable[[str, Any], None]
T = TypeVar("T")


def _job_list_limit() -> int:
    try:
        return max(1, int(os.getenv("PIPETRACE_JOB_LIST_LIMIT", "200")))
    except ValueError:
        return 200


@dataclass
class _JobData:
    job_id: str
    record: JobRecord | None
    summary: ResultsSummary | None
    normalized: NormalizedResult
    step_source: JobStepSource


class JobDetailsController:
    """Single entry point for rebuilding the merged view of a pipeline run.

    Every capability comes in through the constructor: the data source that
    answers job, result, summary and approval queries, and an optional sink
    that receives step outputs as they are discovered.
    """

    def __init__(self, source: JobDataSource, on_step_data_add: StepDataSink | None = None) -> None:
        self.source = source
        self.on_step_data_add = on_step_data_add
        self.selected_job: JobResultsView | None = None
        self.error: str | None = None
        self.logger = logging.getLogger("pipetrace.chain.controller")
        self._lock = threading.Lock()
        self._generation = 0
        self._current_target: str | None = None

    def fetch_job_details(self, job_id: str) -> JobResultsView:
        return self._run(job_id, redirect_to_root=True)

    def fetch_subjob_details(self, subjob_id: str) -> JobResultsView:
        return self._run(subjob_id, redirect_to_root=False)

    def fetch_timeline(self, job_id: str) -> JobTimeline:
        with log_context(job_id=job_id):
            view = self._reconstruct(job_id, redirect_to_root=True)
        return JobTimeline(
            job_id=job_id,
            root_job_id=view.job_id,
            chain_length=len(view.contexts),
            total_events=len(view.timeline),
            events=view.timeline,
        )

    def _begin(self, target: str) -> int:
        with self._lock:
            self._generation += 1
            self._current_target = target
            return self._generation

    def _publish(self, ticket: int, target: str, view: JobResultsView | None, error: str | None) -> bool:
        with self._lock:
            if ticket != self._generation and self._current_target != target:
                self.logger.info(
                    "discarding superseded reconstruction",
                    extra={"extra_fields": {"target_job_id": target, "current_target": self._current_target}},
                )
                return False
            if view is not None:
                self.selected_job = view
            self.error = error
            return True

    def _run(self, job_id: str, redirect_to_root: bool) -> JobResultsView:
        ticket = self._begin(job_id)
        with log_context(job_id=job_id):
            try:
                view = self._reconstruct(job_id, redirect_to_root)
            except RootFetchFailure as exc:
                self._publish(ticket, job_id, None, str(exc))
                raise
        self._publish(ticket, job_id, view, None)
        return view

    def _safe(self, what: str, job_id: str, fetch: Callable[[], T]) -> T | None:
        try:
            return fetch()
        except JobSourceError as exc:
            self.logger.warning(
                "%s unavailable for job",
                what,
                extra={"extra_fields": {"failed_job_id": job_id, "reason": str(exc)}},
            )
            return None

    def _resolve_root(self, job_id: str, walker: ChainWalker) -> str:
        visited: set[str] = set()
        current_id = job_id
        while True:
            visited.add(current_id)
            try:
                record = self.source.fetch_job(current_id)
            except JobSourceError as exc:
                raise RootFetchFailure(f"failed to fetch job {current_id}", job_id=current_id) from exc
            walker.records[current_id] = record
            parent_id = record.original_job_id if record.is_resume_job else None
            if not parent_id or parent_id in visited:
                return current_id
            self.logger.debug(
                "redirecting resume job to its parent",
                extra={"extra_fields": {"from_job_id": current_id, "to_job_id": parent_id}},
            )
            current_id = parent_id

    def _successor_lookup(self, job_id: str) -> Callable[[str], list[str]]:
        """Lazily index resume jobs by the job they point back to, once per reconstruction."""
        index: dict[str, list[str]] | None = None

        def lookup(parent_id: str) -> list[str]:
            nonlocal index
            if index is None:
                index = self._index_resume_jobs(job_id)
            return index.get(parent_id, [])

        return lookup

    def _index_resume_jobs(self, job_id: str) -> dict[str, list[str]]:
        listed = self._safe(
            "resume job list",
            job_id,
            lambda: self.source.list_jobs(job_type=RESUME_JOB_TYPE, limit=_job_list_limit()),
        ) or []
        index: dict[str, list[str]] = {}
        for record in sorted(listed, key=lambda item: (item.created_at or "", item.id)):
            parent_id = record.original_job_id
            if parent_id and record.id != parent_id:
                index.setdefault(parent_id, []).append(record.id)
        return index

    def _reconstruct(self, job_id: str, redirect_to_root: bool) -> JobResultsView:
        walker = ChainWalker(self.source.fetch_job, find_successors=self._successor_lookup(job_id))
        if redirect_to_root:
            anchor_id = self._resolve_root(job_id, walker)
        else:
            try:
                walker.records[job_id] = self.source.fetch_job(job_id)
            except JobSourceError as exc:
                raise RootFetchFailure(f"failed to fetch job {job_id}", job_id=job_id) from exc
            anchor_id = job_id
        anchor = walker.records[anchor_id]
        chain = walker.walk(anchor_id)
        if job_id not in chain:
            # Neither pointers nor the job list lead from the root to this job; splice its own path in.
            chain = walker.walk(job_id)
        anchor_summary = self._safe("results summary", anchor_id, lambda: self.source.fetch_results_summary(anchor_id))

        if redirect_to_root:
            root_id = anchor_id
            if anchor_summary is not None:
                for subjob_id in anchor_summary.subjobs:
                    if subjob_id in chain:
                        continue
                    record = self._safe("job", subjob_id, lambda: self.source.fetch_job(subjob_id))
                    if record is not None:
                        walker.records[subjob_id] = record
                    chain.append(subjob_id)
            scope = list(chain)
            subjobs = chain[1:]
        else:
            root_id = chain[0]
            scope = [anchor_id]
            subjobs = chain[chain.index(anchor_id) + 1 :]

        with log_context(root_job_id=root_id):
            jobs: list[_JobData] = []
            for job_id_in_scope in scope:
                position = chain.index(job_id_in_scope)
                summary = anchor_summary if job_id_in_scope == anchor_id else None
                jobs.append(self._collect(job_id_in_scope, position, walker.records.get(job_id_in_scope), summary))

            steps = aggregate_steps([job.step_source for job in jobs], root_job_id=root_id)
            self._populate_step_outputs(steps, jobs)
            approvals = self._collect_approvals(scope)

            boundaries = [
                self._boundary(job.job_id, chain.index(job.job_id), len(chain), job.record)
                for job in jobs
            ]
            timeline = compose_timeline(
                steps,
                approvals,
                boundaries,
                root_job_id=root_id,
                default_timestamp=parse_timestamp(anchor.created_at or anchor.started_at),
            )

            view = JobResultsView(
                job_id=anchor_id,
                metadata=JobViewMetadata(
                    job_id=anchor_id,
                    content_type=anchor.content_type,
                    content_id=anchor.content_id,
                    started_at=anchor.started_at,
                    completed_at=anchor.completed_at,
                    status=anchor.status,
                    chain_status=_chain_status([job.record for job in jobs]),
                    title=anchor.title,
                    parent_job_id=anchor.original_job_id,
                    original_job_id=anchor.original_job_id,
                    resume_job_id=anchor.resume_job_id,
                    subjob_ids=subjobs,
                ),
                steps=steps,
                total_steps=len(steps),
                subjobs=subjobs or None,
                parent_job_id=anchor.original_job_id,
                performance_metrics=_merge_metrics(jobs),
                quality_warnings=_merge_warnings(jobs),
                approvals=approvals,
                contexts=execution_contexts(boundaries),
                timeline=timeline,
            )
            self.logger.info(
                "reconstructed job chain",
                extra={
                    "extra_fields": {
                        "chain_length": len(chain),
                        "steps": len(steps),
                        "approvals": len(approvals),
                        "partial_errors": len(walker.partial_errors),
                    }
                },
            )
            return view

    def _collect(
        self,
        job_id: str,
        position: int,
        record: JobRecord | None,
        summary: ResultsSummary | None,
    ) -> _JobData:
        if summary is None:
            summary = self._safe("results summary", job_id, lambda: self.source.fetch_results_summary(job_id))
        payload = self._safe("job result", job_id, lambda: self.source.fetch_job_result(job_id))
        if payload is None and record is not None and record.result is not None:
            payload = {"result": record.result}
        normalized = normalize_result(payload) if payload is not None else NormalizedResult()

        completed_at = record.completed_at if record is not None else None
        steps: list[StepDescriptor] | None = None
        if summary is not None and summary.steps:
            steps = summary.steps
        else:
            steps = extract_step_info(normalized, job_id, completed_at) or None

        step_source = JobStepSource(
            job_id=job_id,
            steps=steps,
            step_results=None if steps else normalized.step_results,
            timestamp=completed_at or (record.started_at if record is not None else None),
            context_id=position,
        )
        return _JobData(job_id=job_id, record=record, summary=summary, normalized=normalized, step_source=step_source)

    def _populate_step_outputs(self, steps: list[StepDescriptor], jobs: list[_JobData]) -> None:
        if self.on_step_data_add is None:
            return
        outputs_by_job = {job.job_id: job.normalized.step_results for job in jobs}
        for step in steps:
            outputs = outputs_by_job.get(step.job_id or "", {})
            value = outputs.get(step.step_name)
            if value is None:
                continue
            self.on_step_data_add(step_output_key(step.job_id or "", step.filename), value)

    def _collect_approvals(self, job_ids: list[str]) -> list[ApprovalRecord]:
        approvals: dict[str, ApprovalRecord] = {}
        for job_id in job_ids:
            fetched = self._safe("approvals", job_id, lambda: self.source.fetch_approvals_for_job(job_id)) or []
            for approval in fetched:
                approvals[approval.id] = approval
        return list(approvals.values())

    @staticmethod
    def _boundary(job_id: str, position: int, total_jobs: int, record: JobRecord | None) -> JobBoundary:
        return JobBoundary(
            job_id=job_id,
            position=position,
            total_jobs=total_jobs,
            is_root=position == 0,
            job_type=record.type if record is not None else None,
            status=record.status if record is not None else None,
            started_at=(record.started_at or record.created_at) if record is not None else None,
            completed_at=record.completed_at if record is not None else None,
        )


def _chain_status(records: list[JobRecord | None]) -> str | None:
    statuses = [record.status for record in records if record is not None]
    if not statuses:
        return None
    if "failed" in statuses:
        return "failed"
    if "waiting_for_approval" in statuses:
        return "blocked"
    if len(statuses) == len(records) and all(status == "completed" for status in statuses):
        return "all_completed"
    return "in_progress"


def _merge_metrics(jobs: list[_JobData]) -> PerformanceMetrics | None:
    execution_times: list[float] = []
    tokens: list[int] = []
    step_info: list[dict[str, Any]] = []
    for job in jobs:
        if job.summary is not None and job.summary.performance_metrics is not None:
            metrics = job.summary.performance_metrics
            execution_time, total_tokens, info = metrics.execution_time_seconds, metrics.total_tokens_used, metrics.step_info
        else:
            metadata = job.normalized.metadata
            execution_time = metadata.get("execution_time_seconds")
            total_tokens = metadata.get("total_tokens_used")
            info = metadata.get("step_info") if isinstance(metadata.get("step_info"), list) else []
        if isinstance(execution_time, (int, float)):
            execution_times.append(float(execution_time))
        if isinstance(total_tokens, int):
            tokens.append(total_tokens)
        step_info.extend(item for item in info if isinstance(item, dict))

    if not execution_times and not tokens and not step_info:
        return None
    return PerformanceMetrics(
        execution_time_seconds=sum(execution_times) if execution_times else None,
        total_tokens_used=sum(tokens) if tokens else None,
        step_info=step_info,
    )


def _merge_warnings(jobs: list[_JobData]) -> list[str]:
    warnings: list[str] = []
    for job in jobs:
        source = job.summary.quality_warnings if job.summary is not None and job.summary.quality_warnings else job.normalized.quality_warnings
        for warning in source:
            if warning not in warnings:
                warnings.append(warning)
    return warnings
