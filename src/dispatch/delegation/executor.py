"""
Action Executor: Dispatches Approved Actions to Side-Effecting Handlers

Only actions the confidence gate cleared for autonomous execution reach this
module. Handlers are registered per action type and are always awaited under
a timeout; a timeout or exception becomes a failed ExecutionResult.

Usage:
    from dispatch.delegation.executor import ActionExecutor

    executor = ActionExecutor()
    executor.register_handler(ActionType.INVENTORY_UPDATE, update_inventory)
    result = await executor.execute(action, payload={"store_id": "s-1"})
"""

import asyncio
import time
from typing import Any, Callable, Coroutine, Dict, Optional

from dispatch.safety.actions import ActionDescriptor, ActionType

EXECUTION_TIMEOUT = 30.0

# Type alias for async handler: (action, payload) -> result
HandlerFn = Callable[[ActionDescriptor, Dict[str, Any]], Coroutine[Any, Any, Any]]


class ExecutionResult:
    """Result of executing one action."""

    __slots__ = (
        "action_id",
        "action_type",
        "success",
        "detail",
        "duration",
        "timestamp",
    )

    def __init__(
        self,
        action_id: str,
        action_type: str,
        success: bool,
        detail: str = "",
        duration: float = 0.0,
    ) -> None:
        self.action_id = action_id
        self.action_type = action_type
        self.success = success
        self.detail = detail
        self.duration = duration
        self.timestamp = time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_id": self.action_id,
            "action_type": self.action_type,
            "success": self.success,
            "detail": self.detail[:500],
            "duration": self.duration,
            "timestamp": self.timestamp,
        }


class ActionExecutor:
    """Executes actions by dispatching to registered async handlers."""

    def __init__(self, timeout: float = EXECUTION_TIMEOUT) -> None:
        self.timeout = timeout
        self._handlers: Dict[ActionType, HandlerFn] = {}

    def register_handler(self, action_type: ActionType, handler: HandlerFn) -> None:
        """Register an async handler for an action type."""
        self._handlers[action_type] = handler

    def has_handler(self, action_type: ActionType) -> bool:
        return action_type in self._handlers

    async def execute(
        self,
        action: ActionDescriptor,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ExecutionResult:
        """Execute a single action."""
        start = time.time()

        handler = self._handlers.get(action.type)
        if handler is None:
            return ExecutionResult(
                action_id=action.id,
                action_type=action.type.value,
                success=False,
                detail=f"No handler registered for action '{action.type.value}'",
                duration=time.time() - start,
            )

        try:
            raw_result = await asyncio.wait_for(
                handler(action, dict(payload or {})),
                timeout=self.timeout,
            )
            success, detail = self._interpret(raw_result)
            return ExecutionResult(
                action_id=action.id,
                action_type=action.type.value,
                success=success,
                detail=detail,
                duration=time.time() - start,
            )
        except asyncio.TimeoutError:
            return ExecutionResult(
                action_id=action.id,
                action_type=action.type.value,
                success=False,
                detail=f"Execution timed out after {self.timeout}s",
                duration=time.time() - start,
            )
        except Exception as exc:
            return ExecutionResult(
                action_id=action.id,
                action_type=action.type.value,
                success=False,
                detail=f"{type(exc).__name__}: {exc}",
                duration=time.time() - start,
            )

    @staticmethod
    def _interpret(result: Any) -> "tuple[bool, str]":
        """Handlers may return a ``{success, detail}`` mapping, a bool, or text."""
        if isinstance(result, dict):
            success = bool(result.get("success", True))
            detail = result.get("detail") or result.get("error") or ""
            return success, str(detail)
        if isinstance(result, bool):
            return result, ""
        if result is None:
            return True, ""
        return True, str(result)[:1000]
