from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pipetrace.core.jobs.schemas import (
    TERMINAL_JOB_STATUSES,
    ApprovalEvent,
    ApprovalRecord,
    ExecutionContext,
    JobBoundaryEvent,
    JobCompletionEvent,
    StepDescriptor,
    StepEvent,
    TimelineEvent,
)

from .timestamps import format_timestamp, parse_timestamp

logger = logging.getLogger("pipetrace.chain.timeline")

# Steps and approvals share one iconography contract, so they share one table.
STATUS_COLORS: dict[str, str] = {
    "completed": "success",
    "approved": "success",
    "failed": "error",
    "rejected": "error",
    "cancelled": "error",
    "processing": "info",
    "queued": "info",
    "modified": "info",
    "waiting_for_approval": "warning",
    "pending": "warning",
}

_RANK_STEP = 0
_RANK_APPROVAL = 1
_RANK_COMPLETION = 2
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def status_color(status: str | None) -> str:
    if not status:
        return "default"
    return STATUS_COLORS.get(status.casefold(), "default")


def context_label(context_id: int) -> str:
    if context_id == 0:
        return "Initial Execution"
    return f"Resume After Approval {context_id}"


@dataclass
class JobBoundary:
    job_id: str
    position: int
    total_jobs: int
    is_root: bool = False
    job_type: str | None = None
    status: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


@dataclass
class _Slot:
    event: TimelineEvent
    step_number: float
    rank: int
    seq: int
    ts: datetime | None
    synthesized: bool = False


@dataclass
class _Context:
    id: int
    boundary: JobBoundary | None = None
    slots: list[_Slot] = field(default_factory=list)


def execution_contexts(boundaries: list[JobBoundary]) -> list[ExecutionContext]:
    return [
        ExecutionContext(id=boundary.position, job_id=boundary.job_id, label=context_label(boundary.position))
        for boundary in sorted(boundaries, key=lambda item: item.position)
    ]


def _dedupe_steps(steps: list[StepDescriptor]) -> list[StepDescriptor]:
    latest: dict[tuple[str | None, int], StepDescriptor] = {}
    for step in steps:
        latest[(step.job_id, step.step_number)] = step
    return list(latest.values())


def _seconds_between(start: str | None, end: str | None) -> float | None:
    start_ts, end_ts = parse_timestamp(start), parse_timestamp(end)
    if start_ts is None or end_ts is None:
        return None
    return max(0.0, (end_ts - start_ts).total_seconds())


def _fill_timestamps(context: _Context, floor: datetime | None) -> None:
    # Natural order first: step number, then kind. Missing timestamps inherit the
    # latest timestamp seen so far so they keep their natural position.
    context.slots.sort(key=lambda slot: (slot.step_number, slot.rank, slot.seq))
    running = floor
    if context.boundary is not None:
        running = parse_timestamp(context.boundary.started_at) or running
    if running is None:
        running = next((slot.ts for slot in context.slots if slot.ts is not None), None)

    for slot in context.slots:
        if slot.ts is None:
            slot.ts = running
            slot.synthesized = True
        elif running is None or slot.ts > running:
            running = slot.ts


def compose_timeline(
    steps: list[StepDescriptor],
    approvals: list[ApprovalRecord],
    boundaries: list[JobBoundary],
    *,
    root_job_id: str | None = None,
    default_timestamp: datetime | None = None,
) -> list[TimelineEvent]:
    """Interleave steps, approvals and job markers into one chronological stream.

    Events are grouped by execution context in chain order. Inside a context
    they are ordered by timestamp, ties and gaps resolved by step number with
    steps before approvals before the job's completion marker. Each context
    opens with exactly one ``job_boundary`` event carrying its label.
    """
    fallback_now = default_timestamp or _EPOCH
    contexts: dict[int, _Context] = {}
    context_of_job: dict[str, int] = {}
    root = root_job_id

    for boundary in boundaries:
        contexts.setdefault(boundary.position, _Context(id=boundary.position)).boundary = boundary
        context_of_job[boundary.job_id] = boundary.position
        if boundary.is_root and root is None:
            root = boundary.job_id

    seq = 0
    steps_by_name: dict[tuple[str, str], StepDescriptor] = {}
    for step in _dedupe_steps(steps):
        context_id = step.execution_context_id
        if context_id is None:
            context_id = context_of_job.get(step.job_id or "", 0)
        job_id = step.job_id or root or ""
        steps_by_name[(job_id, step.step_name)] = step
        event = StepEvent(
            job_id=job_id,
            root_job_id=root,
            execution_context_id=context_id,
            timestamp=step.timestamp,
            status=step.status,
            color=status_color(step.status),
            step_name=step.step_name,
            step_number=step.step_number,
            filename=step.filename,
            execution_time=step.execution_time,
            tokens_used=step.tokens_used,
            error_message=step.error_message,
            duration=step.execution_time,
        )
        contexts.setdefault(context_id, _Context(id=context_id)).slots.append(
            _Slot(event=event, step_number=step.step_number, rank=_RANK_STEP, seq=seq, ts=parse_timestamp(step.timestamp))
        )
        seq += 1

    seen_approvals: set[str] = set()
    for approval in approvals:
        if approval.id in seen_approvals:
            continue
        seen_approvals.add(approval.id)
        context_id = context_of_job.get(approval.job_id)
        if context_id is None:
            logger.debug(
                "approval references a job outside the chain",
                extra={"extra_fields": {"approval_id": approval.id, "approval_job_id": approval.job_id}},
            )
            continue
        target = steps_by_name.get((approval.job_id, approval.target_step))
        own_ts = approval.reviewed_at or approval.created_at
        ts = parse_timestamp(own_ts)
        borrowed = False
        if ts is None and target is not None:
            ts = parse_timestamp(target.timestamp)
            borrowed = ts is not None
        event = ApprovalEvent(
            job_id=approval.job_id,
            root_job_id=root,
            execution_context_id=context_id,
            timestamp=own_ts,
            status=approval.status,
            color=status_color(approval.status),
            approval_id=approval.id,
            step_name=approval.target_step,
            agent_name=approval.agent_name,
            step_number=target.step_number if target is not None else None,
            reviewed_at=approval.reviewed_at,
            reviewed_by=approval.reviewed_by,
        )
        contexts[context_id].slots.append(
            _Slot(
                event=event,
                step_number=target.step_number if target is not None else math.inf,
                rank=_RANK_APPROVAL,
                seq=seq,
                ts=ts,
                synthesized=borrowed,
            )
        )
        seq += 1

    for boundary in boundaries:
        if boundary.status not in TERMINAL_JOB_STATUSES:
            continue
        event = JobCompletionEvent(
            job_id=boundary.job_id,
            root_job_id=root,
            execution_context_id=boundary.position,
            timestamp=boundary.completed_at,
            status=boundary.status,
            color=status_color(boundary.status),
            job_type=boundary.job_type,
            duration=_seconds_between(boundary.started_at, boundary.completed_at),
        )
        contexts[boundary.position].slots.append(
            _Slot(event=event, step_number=math.inf, rank=_RANK_COMPLETION, seq=seq, ts=parse_timestamp(boundary.completed_at))
        )
        seq += 1

    total_jobs = max(len(boundaries), len(contexts))
    events: list[TimelineEvent] = []
    previous_ts: datetime | None = None
    floor: datetime | None = None

    for context_id in sorted(contexts):
        context = contexts[context_id]
        _fill_timestamps(context, floor)
        context.slots.sort(
            key=lambda slot: (slot.ts or fallback_now, slot.step_number, slot.rank, slot.seq)
        )

        boundary = context.boundary
        first_event = context.slots[0] if context.slots else None
        boundary_ts = parse_timestamp(boundary.started_at) if boundary is not None else None
        boundary_synthesized = boundary_ts is None
        if boundary_ts is None:
            boundary_ts = first_event.ts if first_event is not None and first_event.ts is not None else floor or fallback_now

        marker = JobBoundaryEvent(
            job_id=boundary.job_id if boundary is not None else first_event.event.job_id,
            root_job_id=root,
            execution_context_id=context_id,
            status=boundary.status if boundary is not None else None,
            color=status_color(boundary.status if boundary is not None else None),
            label=context_label(context_id),
            job_type=boundary.job_type if boundary is not None else None,
            is_root=boundary.is_root if boundary is not None else context_id == 0,
            is_subjob=not (boundary.is_root if boundary is not None else context_id == 0),
            position=context_id,
            total_jobs=boundary.total_jobs if boundary is not None else total_jobs,
        )
        ordered = [(marker, boundary_ts, boundary_synthesized)]
        ordered.extend((slot.event, slot.ts or fallback_now, slot.synthesized or slot.ts is None) for slot in context.slots)

        for event, ts, synthesized in ordered:
            gap = None
            if previous_ts is not None and ts >= previous_ts:
                gap = (ts - previous_ts).total_seconds()
            events.append(
                event.model_copy(
                    update={
                        "timestamp": event.timestamp if not synthesized and event.timestamp else format_timestamp(ts),
                        "timestamp_synthesized": synthesized,
                        "time_since_previous": gap,
                    }
                )
            )
            previous_ts = ts
            if floor is None or ts > floor:
                floor = ts

    return events
