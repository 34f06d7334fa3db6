from .aggregator import JobStepSource, aggregate_steps
from .controller import JobDetailsController
from .errors import PartialChainError, ReconstructionError, RootFetchFailure, ShapeMismatch
from .normalizer import extract_step_info, normalize_result
from .timeline import JobBoundary, compose_timeline, context_label, status_color
from .walker import ChainWalker, walk_chain

__all__ = [
    "ChainWalker",
    "JobBoundary",
    "JobDetailsController",
    "JobStepSource",
    "PartialChainError",
    "ReconstructionError",
    "RootFetchFailure",
    "ShapeMismatch",
    "aggregate_steps",
    "compose_timeline",
    "context_label",
    "extract_step_info",
    "normalize_result",
    "status_color",
    "walk_chain",
]
