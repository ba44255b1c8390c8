"""Language-model access."""

from parley.inference.base import Inference, InferenceError, InferenceTimeoutError
from parley.inference.litellm_client import LiteLLMInference

__all__ = ["Inference", "InferenceError", "InferenceTimeoutError", "LiteLLMInference"]
