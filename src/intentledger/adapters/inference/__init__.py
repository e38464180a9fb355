"""HTTP inference adapter."""

from __future__ import annotations

from .client import HttpInferenceCapability, InferenceAPIError

__all__ = ["HttpInferenceCapability", "InferenceAPIError"]
