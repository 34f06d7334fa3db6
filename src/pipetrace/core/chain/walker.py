from __future__ import annotations

import logging
from collections.abc import Callable

from pipetrace.core.jobs.schemas import JobRecord
from pipetrace.core.jobs.source import JobSourceError

from .errors import PartialChainError, RootFetchFailure

FetchJob = Callable[[str], JobRecord]
FindSuccessors = Callable[[str], list[str]]


class ChainWalker:
    """Enumerates every job record belonging to one pipeline run.

    The walk goes backward along ``original_job_id`` until the root is found,
    then forward along ``resume_job_id``. A job without a forward pointer may
    still have been resumed: ``find_successors`` returns the ids of jobs whose
    back pointer names it, and the first unvisited one continues the walk.
    Every direction keeps its own visited set, so cyclic pointer data
    terminates instead of looping.

    Records fetched along the way are kept in ``records`` for reuse by the
    caller. Non-root fetch failures are absorbed and listed in
    ``partial_errors``; only a failure to fetch the starting job raises.
    """

    def __init__(self, fetch_job: FetchJob, find_successors: FindSuccessors | None = None) -> None:
        self.fetch_job = fetch_job
        self.find_successors = find_successors
        self.records: dict[str, JobRecord] = {}
        self.partial_errors: list[PartialChainError] = []
        self.logger = logging.getLogger("pipetrace.chain.walker")

    def _fetch(self, job_id: str) -> JobRecord:
        cached = self.records.get(job_id)
        if cached is not None:
            return cached
        try:
            record = self.fetch_job(job_id)
        except JobSourceError as exc:
            raise PartialChainError(f"failed to fetch chain job {job_id}: {exc}", job_id=job_id) from exc
        self.records[job_id] = record
        return record

    def _absorb(self, exc: PartialChainError) -> None:
        self.partial_errors.append(exc)
        self.logger.warning(
            "chain walk truncated",
            extra={"extra_fields": {"failed_job_id": exc.job_id, "reason": str(exc)}},
        )

    def walk(self, start_job_id: str) -> list[str]:
        try:
            self._fetch(start_job_id)
        except PartialChainError as exc:
            raise RootFetchFailure(f"failed to fetch job {start_job_id}", job_id=start_job_id) from exc

        backward = self._walk_backward(start_job_id)
        root_id = backward[0]

        chain = self.follow_resume_pointers(root_id, seen=set())
        if start_job_id not in chain:
            # The forward pointers skip the start job; splice the backward path in
            # and keep walking forward from the start job itself.
            seen = set(chain)
            for job_id in backward:
                if job_id not in seen:
                    chain.append(job_id)
                    seen.add(job_id)
            chain.extend(self.follow_resume_pointers(start_job_id, seen=seen)[1:])

        self.logger.debug(
            "chain walk finished",
            extra={"extra_fields": {"root_job_id": root_id, "chain_length": len(chain)}},
        )
        return chain

    def _walk_backward(self, start_job_id: str) -> list[str]:
        path = [start_job_id]
        visited = {start_job_id}
        current = self.records[start_job_id]
        while current.original_job_id and current.original_job_id not in visited:
            parent_id = current.original_job_id
            try:
                current = self._fetch(parent_id)
            except PartialChainError as exc:
                self._absorb(exc)
                break
            visited.add(parent_id)
            path.insert(0, parent_id)
        return path

    def follow_resume_pointers(self, head_job_id: str, seen: set[str] | None = None) -> list[str]:
        """Ids reachable from an already-fetched job along resume links, head first."""
        ids = [head_job_id]
        visited = set(seen or ())
        visited.add(head_job_id)
        next_id = self._next_link(self.records[head_job_id], visited)
        while next_id:
            visited.add(next_id)
            ids.append(next_id)
            try:
                record = self._fetch(next_id)
            except PartialChainError as exc:
                self._absorb(exc)
                break
            next_id = self._next_link(record, visited)
        return ids

    def _next_link(self, record: JobRecord, visited: set[str]) -> str | None:
        if record.resume_job_id is not None:
            return record.resume_job_id if record.resume_job_id not in visited else None
        if self.find_successors is None:
            return None
        return next((job_id for job_id in self.find_successors(record.id) if job_id not in visited), None)


def walk_chain(start_job_id: str, fetch_job: FetchJob, find_successors: FindSuccessors | None = None) -> list[str]:
    return ChainWalker(fetch_job, find_successors).walk(start_job_id)
