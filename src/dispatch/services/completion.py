"""Completion service client and the worker transport built on it."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from dispatch.delegation.models import AgentRequest, AgentResponse
from dispatch.errors import UpstreamError
from dispatch.logging import get_logger

logger = get_logger(name=__name__)


@dataclass(slots=True)
class Completion:
    text: str
    tokens_used: int = 0
    latency_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "tokens_used": self.tokens_used,
            "latency_ms": self.latency_ms,
        }


class CompletionService(Protocol):
    async def complete(self, prompt: str, context: dict[str, Any]) -> Completion: ...


class HTTPCompletionClient:
    """Posts prompts to ``{base_url}/complete``.

    Any non-2xx status, transport error, timeout or malformed body raises
    UpstreamError.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def complete(self, prompt: str, context: dict[str, Any]) -> Completion:
        client = await self._get_client()
        started = time.monotonic()
        try:
            response = await client.post(
                f"{self._base_url}/complete",
                json={"prompt": prompt, "context": context},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            logger.warning("completion_timeout", url=self._base_url, timeout=self._timeout)
            raise UpstreamError(f"Completion timed out after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            logger.warning("completion_transport_error", url=self._base_url, error=str(exc))
            raise UpstreamError(f"Completion request failed: {exc}") from exc

        if not response.is_success:
            logger.warning("completion_http_error", status_code=response.status_code)
            raise UpstreamError(
                f"Completion service returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
            text = str(body["text"])
        except (ValueError, KeyError, TypeError) as exc:
            raise UpstreamError("Completion service returned a malformed body") from exc

        latency_ms = body.get("latency_ms", body.get("latencyMs"))
        if latency_ms is None:
            latency_ms = (time.monotonic() - started) * 1000.0
        return Completion(
            text=text,
            tokens_used=int(body.get("tokens_used", body.get("tokensUsed", 0)) or 0),
            latency_ms=float(latency_ms),
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class CompletionTransport:
    """Delivers worker requests through a completion service.

    UpstreamError propagates so the fallback bridge can move on to the next
    worker.
    """

    def __init__(self, service: CompletionService) -> None:
        self.service = service

    async def send(self, worker_id: str, request: AgentRequest) -> AgentResponse:
        context = {**request.context, "worker_id": worker_id}
        if request.payload is not None:
            context["payload"] = request.payload
        completion = await self.service.complete(request.message, context)
        return AgentResponse(
            success=True,
            text=completion.text,
            worker_id=worker_id,
            tokens_used=completion.tokens_used,
            latency_ms=completion.latency_ms,
        )
