from .schemas import ApprovalRecord, JobRecord, JobResultsView, JobTimeline, ResultsSummary, StepDescriptor
from .source import HTTPJobDataSource, JobDataSource, JobSourceError

__all__ = [
    "ApprovalRecord",
    "HTTPJobDataSource",
    "JobDataSource",
    "JobRecord",
    "JobResultsView",
    "JobSourceError",
    "JobTimeline",
    "ResultsSummary",
    "StepDescriptor",
]
