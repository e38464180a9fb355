"""HTTP client for the external inference service."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from intentledger.adapters.http_resilience import ResilientClient

from .schema import InferenceResponse
from .translator import build_payload, translate_response

if TYPE_CHECKING:
    from collections.abc import Callable

    from intentledger.config.http_resilience import ResilienceConfig
    from intentledger.config.inference import InferenceConfig
    from intentledger.domain.ports.inference import InferenceRequest, InferenceResult

log = getLogger(__name__)

INFER_PATH = "infer"


class InferenceAPIError(RuntimeError):
    """Raised when the inference service returns an unexpected response."""


class HttpInferenceCapability:
    """Inference capability that POSTs one test at a time to ``{base_url}/infer``.

    Calls are synchronous: each one runs its own event loop, so the capability
    can be shared by the inference worker threads.
    """

    def __init__(
        self,
        *,
        config: InferenceConfig,
        client_factory: Callable[[ResilienceConfig], ResilientClient] | None = None,
    ) -> None:
        self._config = config
        self._resilience = config.resilience
        self._client_factory = client_factory or ResilientClient

    def __call__(self, request: InferenceRequest) -> InferenceResult:
        return asyncio.run(self._infer_async(request))

    def _headers(self) -> dict[str, str]:
        if self._config.api_key is None:
            return {}
        return {"Authorization": f"Bearer {self._config.api_key}"}

    async def _infer_async(self, request: InferenceRequest) -> InferenceResult:
        if self._resilience.base_url is None:
            raise InferenceAPIError("Missing inference base_url in resilience configuration")
        payload = build_payload(request).model_dump(by_alias=True, mode="json")

        async with self._client_factory(self._resilience) as client:
            try:
                response = await client.post(INFER_PATH, json=payload, headers=self._headers())
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise InferenceAPIError(f"Inference request failed: {exc}") from exc

        body = response.json()
        if not isinstance(body, dict):
            raise InferenceAPIError("Unexpected inference response payload")
        try:
            parsed = InferenceResponse.model_validate(body)
        except ValidationError as exc:
            raise InferenceAPIError(f"Malformed inference response: {exc}") from exc

        log.debug(
            "Inference for %s::%s returned %s atoms",
            request.test.file_path,
            request.test.name,
            len(parsed.atoms),
        )
        return translate_response(parsed)
