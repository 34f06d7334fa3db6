from __future__ import annotations

import logging
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

from pipetrace.core.http.client import BackendClient
from pipetrace.core.http.errors import BackendUnavailable

from .schemas import ApprovalRecord, JobRecord, ResultsSummary


class JobSourceError(RuntimeError):
    def __init__(self, message: str, job_id: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id
        self.status_code = status_code


class JobDataSource(Protocol):
    def fetch_job(self, job_id: str) -> JobRecord: ...

    def fetch_job_result(self, job_id: str) -> Any: ...

    def fetch_results_summary(self, job_id: str) -> ResultsSummary | None: ...

    def fetch_approvals_for_job(self, job_id: str, status: str | None = None) -> list[ApprovalRecord]: ...

    def list_jobs(self, job_type: str | None = None, status: str | None = None, limit: int = 50) -> list[JobRecord]: ...


class HTTPJobDataSource:
    """Reads job, result and approval records from the pipeline backend's REST API."""

    def __init__(self, base_url: str | None = None, headers: dict[str, str] | None = None, client: BackendClient | None = None) -> None:
        self.client = client or BackendClient(base_url, headers=headers)
        self.logger = logging.getLogger("pipetrace.jobs.source")

    @property
    def base_url(self) -> str:
        return self.client.base_url

    def _get(self, path: str, *, job_id: str | None, params: dict[str, Any] | None = None, allow_missing: bool = False) -> Any:
        try:
            response = self.client.get(path, params=params)
        except BackendUnavailable as exc:
            raise JobSourceError(str(exc), job_id=job_id) from exc

        if allow_missing and response.status_code == 404:
            return None
        if not response.is_success:
            raise JobSourceError(
                f"GET {path} returned HTTP {response.status_code}",
                job_id=job_id,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise JobSourceError(f"GET {path} returned a non-JSON body", job_id=job_id) from exc

    def _items(self, body: Any, key: str, model: type[BaseModel], job_id: str | None) -> list[Any]:
        items = body.get(key, []) if isinstance(body, dict) else body
        if not isinstance(items, list):
            raise JobSourceError(f"{key} payload is not a list", job_id=job_id)

        parsed: list[Any] = []
        for item in items:
            try:
                parsed.append(model.model_validate(item))
            except ValidationError:
                self.logger.warning(
                    "skipping malformed %s record",
                    key,
                    extra={"extra_fields": {"job_id": job_id}},
                )
        return parsed

    def fetch_job(self, job_id: str) -> JobRecord:
        body = self._get(f"/v1/jobs/{job_id}", job_id=job_id)
        payload = body.get("job", body) if isinstance(body, dict) else body
        try:
            return JobRecord.model_validate(payload)
        except ValidationError as exc:
            raise JobSourceError(f"job {job_id} has an unexpected shape", job_id=job_id) from exc

    def fetch_job_result(self, job_id: str) -> Any:
        return self._get(f"/v1/jobs/{job_id}/result", job_id=job_id)

    def fetch_results_summary(self, job_id: str) -> ResultsSummary | None:
        body = self._get(f"/v1/results/jobs/{job_id}", job_id=job_id, allow_missing=True)
        if body is None:
            return None
        try:
            return ResultsSummary.model_validate(body)
        except ValidationError as exc:
            raise JobSourceError(f"results summary for {job_id} has an unexpected shape", job_id=job_id) from exc

    def fetch_approvals_for_job(self, job_id: str, status: str | None = None) -> list[ApprovalRecord]:
        body = self._get(f"/v1/approvals/job/{job_id}", job_id=job_id, params={"status": status})
        return self._items(body, "approvals", ApprovalRecord, job_id)

    def list_jobs(self, job_type: str | None = None, status: str | None = None, limit: int = 50) -> list[JobRecord]:
        body = self._get("/v1/jobs", job_id=None, params={"job_type": job_type, "status": status, "limit": limit})
        return self._items(body, "jobs", JobRecord, None)
