"""
Fallback Bridge: Ordered Retry Across Alternate Workers

Wraps a primary routing decision: the primary worker is tried first, then each
fallback in order. Every target is attempted at most once; the first success
wins and is marked as a fallback response when it did not come from the
primary. When every attempt fails a single terminal response is returned.

Each retry carries the original request forward with the reason the previous
attempt failed in ``context["fallback_reason"]``.

Usage:
    bridge = FallbackBridge(transport, timeout=30.0)
    response = await bridge.route_with_fallback("anchor", ["pearl", "drake"], request)
"""

import asyncio
import time
from dataclasses import replace
from typing import Any, Dict, List, Optional, Protocol, Sequence

from dispatch.logging import get_logger

from .models import AgentRequest, AgentResponse

logger = get_logger(name=__name__)

ATTEMPT_TIMEOUT = 30.0
UNAVAILABLE_MESSAGE = (
    "All workers are currently handling other duties. "
    "Please try again in a moment, and someone will assist you right away."
)


class AgentTransport(Protocol):
    """Anything that can deliver a request to a worker and return its answer."""

    async def send(self, worker_id: str, request: AgentRequest) -> AgentResponse: ...


class FallbackBridge:
    """Routes a request to a primary worker and falls back in order on failure."""

    def __init__(self, transport: AgentTransport, timeout: float = ATTEMPT_TIMEOUT) -> None:
        self.transport = transport
        self.timeout = timeout

    async def route_with_fallback(
        self,
        primary: str,
        fallbacks: Sequence[str],
        request: AgentRequest,
    ) -> AgentResponse:
        """
        Try ``primary`` then each of ``fallbacks`` until one succeeds.

        Args:
            primary: Worker id to try first
            fallbacks: Alternate worker ids, in the order they should be tried
            request: Request to deliver

        Returns:
            The first successful AgentResponse (``fallback_used`` set when it
            came from a fallback), or a terminal failure response
        """
        targets: List[str] = []
        for worker_id in [primary, *fallbacks]:
            if worker_id and worker_id not in targets:
                targets.append(worker_id)

        attempts: List[Dict[str, Any]] = []
        reason: Optional[str] = None

        for index, worker_id in enumerate(targets):
            attempt_request = request
            if reason is not None:
                attempt_request = replace(
                    request, context={**request.context, "fallback_reason": reason}
                )

            started = time.monotonic()
            response, error = await self._attempt(worker_id, attempt_request)
            elapsed_ms = (time.monotonic() - started) * 1000.0
            attempts.append(
                {
                    "worker_id": worker_id,
                    "success": error is None,
                    "error": error,
                    "latency_ms": round(elapsed_ms, 1),
                }
            )

            if error is None and response is not None:
                response.worker_id = response.worker_id or worker_id
                response.fallback_used = index > 0
                response.attempts = attempts
                if index > 0:
                    logger.info(
                        "fallback_succeeded",
                        primary=primary,
                        worker_id=worker_id,
                        attempts=len(attempts),
                    )
                return response

            reason = f"Worker {worker_id} unavailable: {error}"
            logger.warning("fallback_hop", worker_id=worker_id, error=error)

        logger.warning("all_workers_failed", primary=primary, attempts=len(attempts))
        return AgentResponse(
            success=False,
            text=UNAVAILABLE_MESSAGE,
            worker_id=None,
            fallback_used=len(attempts) > 1,
            attempts=attempts,
            error=reason,
        )

    async def _attempt(
        self, worker_id: str, request: AgentRequest
    ) -> "tuple[Optional[AgentResponse], Optional[str]]":
        """Deliver one request. Exceptions, timeouts and failure flags all become an error string."""
        try:
            response = await asyncio.wait_for(
                self.transport.send(worker_id, request), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            return None, f"timed out after {self.timeout}s"
        except Exception as exc:
            return None, f"{type(exc).__name__}: {exc}"

        if not response.success:
            return response, response.error or "reported failure"
        return response, None
