from __future__ import annotations

from typing import Any

import pytest

from pipetrace.core.jobs.schemas import ApprovalRecord, JobRecord, ResultsSummary, StepDescriptor
from pipetrace.core.jobs.source import JobSourceError


class FakeJobSource:
    """In-memory JobDataSource; ids listed in ``broken`` fail on every endpoint."""

    def __init__(self) -> None:
        self.jobs: dict[str, JobRecord] = {}
        self.results: dict[str, Any] = {}
        self.summaries: dict[str, ResultsSummary] = {}
        self.approvals: dict[str, list[ApprovalRecord]] = {}
        self.broken: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def add_job(self, job_id: str, **fields: Any) -> JobRecord:
        record = JobRecord(id=job_id, **fields)
        self.jobs[job_id] = record
        return record

    def add_summary(self, job_id: str, steps: list[dict[str, Any]], **fields: Any) -> ResultsSummary:
        summary = ResultsSummary(job_id=job_id, steps=[StepDescriptor(**step) for step in steps], **fields)
        self.summaries[job_id] = summary
        return summary

    def add_approval(self, **fields: Any) -> ApprovalRecord:
        approval = ApprovalRecord(**fields)
        self.approvals.setdefault(approval.job_id, []).append(approval)
        return approval

    def _check(self, endpoint: str, job_id: str) -> None:
        self.calls.append((endpoint, job_id))
        if job_id in self.broken:
            raise JobSourceError(f"{endpoint} unavailable", job_id=job_id)

    def fetch_job(self, job_id: str) -> JobRecord:
        self._check("job", job_id)
        if job_id not in self.jobs:
            raise JobSourceError("job not found", job_id=job_id)
        return self.jobs[job_id]

    def fetch_job_result(self, job_id: str) -> Any:
        self._check("result", job_id)
        if job_id not in self.results:
            raise JobSourceError("result not found", job_id=job_id)
        return self.results[job_id]

    def fetch_results_summary(self, job_id: str) -> ResultsSummary | None:
        self._check("summary", job_id)
        return self.summaries.get(job_id)

    def fetch_approvals_for_job(self, job_id: str, status: str | None = None) -> list[ApprovalRecord]:
        self._check("approvals", job_id)
        approvals = self.approvals.get(job_id, [])
        if status:
            approvals = [approval for approval in approvals if approval.status == status]
        return list(approvals)

    def list_jobs(self, job_type: str | None = None, status: str | None = None, limit: int = 50) -> list[JobRecord]:
        self._check("list", "*")
        records = [
            record
            for record in self.jobs.values()
            if (job_type is None or record.type == job_type) and (status is None or record.status == status)
        ]
        return records[:limit]


@pytest.fixture
def fake_source() -> FakeJobSource:
    return FakeJobSource()


@pytest.fixture(autouse=True)
def isolate_pipetrace_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("PIPETRACE_API_BASE_URL", "PIPETRACE_LOG_TO_FILE", "PIPETRACE_LOG_FORMAT", "PIPETRACE_HTTP_RETRIES"):
        monkeypatch.delenv(name, raising=False)
