"""Inference service configuration values."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .env import optional_env_float, require_env_vars
from .http_resilience import ResilienceConfig

INFERENCE_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True)
class InferenceConfig:
    """Holds the HTTP inference endpoint configuration."""

    base_url: str
    api_key: str | None
    resilience: ResilienceConfig


def get_inference_config(*, resilience: ResilienceConfig | None = None) -> InferenceConfig:
    values = require_env_vars(("INTENTLEDGER_INFERENCE_URL",))
    base_url = values["INTENTLEDGER_INFERENCE_URL"]
    api_key = os.getenv("INTENTLEDGER_INFERENCE_API_KEY") or None
    return InferenceConfig(
        base_url=base_url,
        api_key=api_key,
        resilience=resilience
        or ResilienceConfig(
            name="inference",
            base_url=base_url,
            timeout_seconds=optional_env_float(
                "INTENTLEDGER_INFERENCE_TIMEOUT", INFERENCE_TIMEOUT_SECONDS
            ),
        ),
    )
