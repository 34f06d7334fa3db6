from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

JobStatus = Literal["pending", "queued", "processing", "completed", "failed", "cancelled", "waiting_for_approval"]
ApprovalStatus = Literal["pending", "approved", "rejected", "modified"]

TERMINAL_JOB_STATUSES = frozenset({"completed", "failed", "cancelled"})
RESUME_JOB_TYPE = "resume_pipeline"


class JobRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str = "unknown"
    status: JobStatus = "pending"
    content_id: str | None = None
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    progress: float | None = None
    current_step: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    error: str | None = None

    @property
    def resume_job_id(self) -> str | None:
        value = self.metadata.get("resume_job_id")
        return value if isinstance(value, str) and value else None

    @property
    def original_job_id(self) -> str | None:
        value = self.metadata.get("original_job_id")
        if isinstance(value, str) and value:
            return value
        if isinstance(self.result, dict):
            fallback = self.result.get("original_job_id")
            if isinstance(fallback, str) and fallback:
                return fallback
        return None

    @property
    def is_resume_job(self) -> bool:
        return self.type == RESUME_JOB_TYPE or self.original_job_id is not None

    @property
    def content_type(self) -> str:
        if self.type == RESUME_JOB_TYPE:
            original = self.metadata.get("original_content_type")
            if isinstance(original, str) and original:
                return original
        return self.type

    @property
    def title(self) -> str | None:
        title = self.metadata.get("title")
        if isinstance(title, str) and title:
            return title
        input_content = self.metadata.get("input_content")
        if isinstance(input_content, dict) and isinstance(input_content.get("title"), str):
            return input_content["title"]
        return None


class StepDescriptor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    step_number: int
    step_name: str
    filename: str = ""
    timestamp: str | None = None
    has_result: bool = False
    file_size: int = 0
    job_id: str | None = None
    root_job_id: str | None = None
    execution_context_id: int | None = None
    execution_time: float | None = None
    tokens_used: int | None = None
    status: str = "completed"
    error_message: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value: Any) -> Any:
        return value or "completed"

    @model_validator(mode="after")
    def _default_filename(self) -> StepDescriptor:
        if not self.filename:
            self.filename = f"step_{self.step_number}.json"
        return self


class ApprovalRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    job_id: str
    step_name: str = ""
    agent_name: str = ""
    pipeline_step: str | None = None
    status: ApprovalStatus = "pending"
    created_at: str | None = None
    reviewed_at: str | None = None
    reviewed_by: str | None = None
    input_data: dict[str, Any] = Field(default_factory=dict)
    output_data: dict[str, Any] = Field(default_factory=dict)
    modified_output: dict[str, Any] | None = None
    user_comment: str | None = None

    @property
    def target_step(self) -> str:
        return self.step_name or self.pipeline_step or self.agent_name


class PerformanceMetrics(BaseModel):
    execution_time_seconds: float | None = None
    total_tokens_used: int | None = None
    step_info: list[dict[str, Any]] = Field(default_factory=list)


class ResultsSummary(BaseModel):
    """Body of the results endpoint: pre-shaped step descriptors for one job."""

    model_config = ConfigDict(extra="ignore")

    job_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    steps: list[StepDescriptor] = Field(default_factory=list)
    total_steps: int | None = None
    subjobs: list[str] = Field(default_factory=list)
    parent_job_id: str | None = None
    performance_metrics: PerformanceMetrics | None = None
    quality_warnings: list[str] = Field(default_factory=list)


class NormalizedResult(BaseModel):
    step_results: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    quality_warnings: list[str] = Field(default_factory=list)
    shape: Literal["result.pipeline_result", "result", "pipeline_result", "result.result", "flat", "empty"] = "empty"


class ExecutionContext(BaseModel):
    id: int
    job_id: str
    label: str


class _TimelineEventBase(BaseModel):
    job_id: str
    root_job_id: str | None = None
    execution_context_id: int = 0
    timestamp: str | None = None
    timestamp_synthesized: bool = False
    time_since_previous: float | None = None
    status: str | None = None
    color: str = "default"


class StepEvent(_TimelineEventBase):
    event_type: Literal["step"] = "step"
    step_name: str
    step_number: int
    filename: str = ""
    execution_time: float | None = None
    tokens_used: int | None = None
    error_message: str | None = None
    duration: float | None = None


class ApprovalEvent(_TimelineEventBase):
    event_type: Literal["approval"] = "approval"
    approval_id: str
    step_name: str
    agent_name: str = ""
    step_number: int | None = None
    reviewed_at: str | None = None
    reviewed_by: str | None = None


class JobBoundaryEvent(_TimelineEventBase):
    event_type: Literal["job_boundary"] = "job_boundary"
    label: str
    job_type: str | None = None
    is_root: bool = False
    is_subjob: bool = False
    position: int = 0
    total_jobs: int = 1


class JobCompletionEvent(_TimelineEventBase):
    event_type: Literal["job_completion"] = "job_completion"
    job_type: str | None = None
    duration: float | None = None


TimelineEvent = Annotated[
    Union[StepEvent, ApprovalEvent, JobBoundaryEvent, JobCompletionEvent],
    Field(discriminator="event_type"),
]


class JobTimeline(BaseModel):
    success: bool = True
    job_id: str
    root_job_id: str
    chain_length: int
    total_events: int
    events: list[TimelineEvent] = Field(default_factory=list)


class JobViewMetadata(BaseModel):
    job_id: str
    content_type: str | None = None
    content_id: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    status: str | None = None
    chain_status: Literal["all_completed", "in_progress", "blocked", "failed"] | None = None
    title: str | None = None
    parent_job_id: str | None = None
    original_job_id: str | None = None
    resume_job_id: str | None = None
    subjob_ids: list[str] = Field(default_factory=list)


class JobResultsView(BaseModel):
    job_id: str
    metadata: JobViewMetadata
    steps: list[StepDescriptor] = Field(default_factory=list)
    total_steps: int = 0
    subjobs: list[str] | None = None
    parent_job_id: str | None = None
    performance_metrics: PerformanceMetrics | None = None
    quality_warnings: list[str] = Field(default_factory=list)
    approvals: list[ApprovalRecord] = Field(default_factory=list)
    contexts: list[ExecutionContext] = Field(default_factory=list)
    timeline: list[TimelineEvent] = Field(default_factory=list)
