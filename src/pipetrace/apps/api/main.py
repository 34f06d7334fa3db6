from __future__ import annotations

import os
from pathlib import Path
from uuid import uuid4

import uvicorn
from fastapi import FastAPI

from pipetrace.core.logging import configure_logging
from pipetrace.core.logging.context import log_context

from .routes_jobs import router as jobs_router


def _state_dir() -> Path:
    configured = os.getenv("PIPETRACE_STATE_DIR")
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".pipetrace"


app = FastAPI(title="pipetrace API")
configure_logging(_state_dir())
app.include_router(jobs_router, tags=["jobs"])


@app.middleware("http")
async def request_context_middleware(request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid4())
    with log_context(correlation_id=correlation_id):
        response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


@app.get("/healthz")
def healthz() -> dict[str, bool]:
    return {"ok": True}


def run() -> None:
    uvicorn.run(
        "pipetrace.apps.api.main:app",
        host=os.getenv("PIPETRACE_HOST", "127.0.0.1"),
        port=int(os.getenv("PIPETRACE_PORT", "8100")),
    )


if __name__ == "__main__":
    run()
