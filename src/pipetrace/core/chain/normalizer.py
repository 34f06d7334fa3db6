from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from pipetrace.core.jobs.schemas import NormalizedResult, StepDescriptor

from .errors import ShapeMismatch

logger = logging.getLogger("pipetrace.chain.normalizer")

_RESERVED_FLAT_KEYS = ("metadata", "quality_warnings")


def _as_dict(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def _warnings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


def _from_envelope(envelope: dict[str, Any], shape: str) -> NormalizedResult:
    return NormalizedResult(
        step_results=dict(envelope.get("step_results") or {}),
        metadata=dict(_as_dict(envelope.get("metadata")) or {}),
        quality_warnings=_warnings(envelope.get("quality_warnings")),
        shape=shape,
    )


def _match(payload: Any) -> NormalizedResult:
    root = _as_dict(payload)
    if root is None:
        raise ShapeMismatch(f"expected a mapping, got {type(payload).__name__}")

    result = _as_dict(root.get("result"))
    if result is not None:
        pipeline_result = _as_dict(result.get("pipeline_result"))
        if pipeline_result is not None and _as_dict(pipeline_result.get("step_results")) is not None:
            return _from_envelope(pipeline_result, "result.pipeline_result")
        if _as_dict(result.get("step_results")) is not None:
            return _from_envelope(result, "result")

    pipeline_result = _as_dict(root.get("pipeline_result"))
    if pipeline_result is not None and _as_dict(pipeline_result.get("step_results")) is not None:
        return _from_envelope(pipeline_result, "pipeline_result")

    if result is not None and "pipeline_result" not in result and "step_results" not in result:
        legacy = _as_dict(result.get("result"))
        if legacy is not None:
            # Older workers wrapped the whole envelope once more under result.result.
            unwrapped = _match({"result": legacy})
            return unwrapped.model_copy(update={"shape": "result.result"})
        logger.debug("reading result as a flat step_results map", extra={"extra_fields": {"keys": sorted(result)}})
        step_results = {key: value for key, value in result.items() if key not in _RESERVED_FLAT_KEYS}
        return NormalizedResult(
            step_results=step_results,
            metadata=dict(_as_dict(result.get("metadata")) or {}),
            quality_warnings=_warnings(result.get("quality_warnings")),
            shape="flat",
        )

    raise ShapeMismatch("payload matches no known result envelope")


def normalize_result(payload: Any, *, strict: bool = False) -> NormalizedResult:
    """Return the canonical ``{step_results, metadata, quality_warnings}`` view of a result payload.

    Two backend endpoints answer with the same data in different envelopes, so
    the known shapes are probed in a fixed order:

    1. ``result.pipeline_result.step_results``
    2. ``result.step_results``
    3. ``pipeline_result.step_results``
    4. ``result.result``, the legacy double wrap, probed again from the top
    5. ``result`` itself, read as a flat step_results map

    ``metadata`` and ``quality_warnings`` come from the envelope that held the
    step results. A payload matching none of them yields empty defaults, or
    raises :class:`ShapeMismatch` when ``strict`` is set.
    """
    try:
        return _match(payload)
    except ShapeMismatch:
        if strict:
            raise
        logger.debug("result payload matched no envelope")
        return NormalizedResult()


def extract_step_info(normalized: NormalizedResult, job_id: str, completed_at: str | None = None) -> list[StepDescriptor]:
    """Build step descriptors from ``metadata.step_info`` of a normalized result."""
    step_info = normalized.metadata.get("step_info")
    if not isinstance(step_info, list):
        return []

    timestamp = normalized.metadata.get("completed_at") or completed_at
    if not isinstance(timestamp, str):
        timestamp = None

    descriptors: list[StepDescriptor] = []
    for idx, raw in enumerate(step_info):
        info = _as_dict(raw)
        if info is None:
            continue
        step_number = info.get("step_number")
        if not isinstance(step_number, int):
            step_number = idx
        step_name = info.get("step_name") or f"step_{idx}"
        try:
            descriptor = StepDescriptor(
                step_number=step_number,
                step_name=step_name,
                timestamp=timestamp,
                has_result=step_name in normalized.step_results,
                execution_time=info.get("execution_time"),
                tokens_used=info.get("tokens_used"),
                status=info.get("status") or "completed",
                error_message=info.get("error_message"),
                job_id=job_id,
            )
        except ValidationError:
            logger.warning("skipping malformed step_info entry", extra={"extra_fields": {"job_id": job_id, "index": idx}})
            continue
        descriptors.append(descriptor)
    return descriptors
