from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
job_id_var: ContextVar[str | None] = ContextVar("job_id", default=None)
root_job_id_var: ContextVar[str | None] = ContextVar("root_job_id", default=None)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    "correlation_id": correlation_id_var,
    "job_id": job_id_var,
    "root_job_id": root_job_id_var,
}


def set_context(**kwargs: str | None) -> dict[str, Token[str | None]]:
    tokens: dict[str, Token[str | None]] = {}
    for key, value in kwargs.items():
        var = _CONTEXT_VARS.get(key)
        if var is None:
            continue
        tokens[key] = var.set(value)
    return tokens


def reset_context(tokens: dict[str, Token[str | None]]) -> None:
    for key, token in tokens.items():
        var = _CONTEXT_VARS.get(key)
        if var is not None:
            var.reset(token)


@contextmanager
def log_context(
    correlation_id: str | None = None,
    job_id: str | None = None,
    root_job_id: str | None = None,
) -> Iterator[None]:
    # Only bind what was passed so nested scopes keep the outer correlation id.
    requested = {"correlation_id": correlation_id, "job_id": job_id, "root_job_id": root_job_id}
    tokens = set_context(**{key: value for key, value in requested.items() if value is not None})
    try:
        yield
    finally:
        reset_context(tokens)


def get_log_context() -> dict[str, str]:
    values = {
        "correlation_id": correlation_id_var.get(),
        "job_id": job_id_var.get(),
        "root_job_id": root_job_id_var.get(),
    }
    return {key: value for key, value in values.items() if value is not None}
