from __future__ import annotations


class BackendUnavailable(RuntimeError):
    """The pipeline backend could not be reached, even after retrying."""

    def __init__(self, message: str, path: str, attempts: int) -> None:
        super().__init__(message)
        self.path = path
        self.attempts = attempts
