from __future__ import annotations


class ReconstructionError(RuntimeError):
    """Base error for job-chain reconstruction."""


class PartialChainError(ReconstructionError):
    """A non-root job in the chain could not be fetched; the chain is truncated."""

    def __init__(self, message: str, job_id: str) -> None:
        super().__init__(message)
        self.job_id = job_id


class ShapeMismatch(ReconstructionError):
    """A result payload matched none of the known envelopes."""


class RootFetchFailure(ReconstructionError):
    def __init__(self, message: str, job_id: str) -> None:
        super().__init__(message)
        self.job_id = job_id
