from .step_outputs import StepOutputCache, step_output_key

__all__ = ["StepOutputCache", "step_output_key"]
