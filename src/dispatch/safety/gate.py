"""Confidence gate - decides which detected actions run autonomously."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from dispatch.logging import get_logger

from .actions import ActionDescriptor, ActionDetector, RiskLevel

if TYPE_CHECKING:
    from dispatch.delegation.executor import ActionExecutor

logger = get_logger(name=__name__)

EXECUTION_THRESHOLD = 0.8
CONFIRMATION_NOTE = "This action requires your confirmation before execution."


class GateMode(StrEnum):
    EXECUTE = "execute"
    SUGGEST = "suggest"


@dataclass
class GateDecision:
    """Result of a gate check."""

    action: ActionDescriptor
    mode: GateMode
    reason: str | None = None

    @property
    def executes(self) -> bool:
        return self.mode is GateMode.EXECUTE


class ConfidenceGate:
    """Execute-now vs. suggest-only policy for detected actions."""

    def __init__(self, threshold: float = EXECUTION_THRESHOLD) -> None:
        """Initialize the gate.

        Args:
            threshold: Confidence an action must strictly exceed to run (default: 0.8)
        """
        self.threshold = threshold

    def decide(self, action: ActionDescriptor) -> GateDecision:
        """Decide whether an action may run without a human in the loop.

        Args:
            action: Detected action

        Returns:
            GateDecision with mode ``execute`` only when the action is confident,
            low risk and does not require confirmation
        """
        if action.requires_confirmation:
            return GateDecision(action, GateMode.SUGGEST, "requires confirmation")
        if action.risk_level is not RiskLevel.LOW:
            return GateDecision(action, GateMode.SUGGEST, f"{action.risk_level.value} risk")
        if not action.confidence > self.threshold:
            return GateDecision(
                action,
                GateMode.SUGGEST,
                f"confidence {action.confidence:.2f} <= {self.threshold:.2f}",
            )
        return GateDecision(action, GateMode.EXECUTE)


@dataclass
class GatedResponse:
    """Generated text with action annotations appended."""

    text: str
    has_actions: bool = False
    executed: list[dict[str, Any]] = field(default_factory=list)
    suggested: list[ActionDescriptor] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "has_actions": self.has_actions,
            "executed": list(self.executed),
            "suggested": [a.to_dict() for a in self.suggested],
        }


def suggestion_annotation(action: ActionDescriptor) -> str:
    note = (
        f"\n\n**Suggested Action**: {action.description}"
        f"\n*Risk Level: {action.risk_level.value.upper()}* | "
        f"*Estimated Time: {action.estimated_time}*"
    )
    if action.requires_confirmation:
        note += f"\n*{CONFIRMATION_NOTE}*"
    return note


class ActionGate:
    """Detects actions in generated text, runs the ones the gate clears, and
    annotates the text with the outcome of each.

    Actions the gate clears but no executor handler covers are only suggested.
    """

    def __init__(
        self,
        detector: ActionDetector | None = None,
        gate: ConfidenceGate | None = None,
        executor: ActionExecutor | None = None,
    ) -> None:
        self.detector = detector or ActionDetector()
        self.gate = gate or ConfidenceGate()
        self.executor = executor

    async def process(
        self,
        text: str,
        context: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> GatedResponse:
        try:
            detection = self.detector.detect(text, context)
        except Exception:
            logger.exception("action_detection_failed")
            return GatedResponse(text=text)

        if not detection.has_actions:
            return GatedResponse(text=text)

        response = GatedResponse(text=text, has_actions=True)
        executor = self.executor
        for action in detection.actions:
            decision = self.gate.decide(action)
            if decision.executes and executor is not None and executor.has_handler(action.type):
                response.text += await self._execute(executor, action, payload, response)
            else:
                response.suggested.append(action)
                response.text += suggestion_annotation(action)

        logger.info(
            "actions_gated",
            executed=len(response.executed),
            suggested=len(response.suggested),
        )
        return response

    async def _execute(
        self,
        executor: ActionExecutor,
        action: ActionDescriptor,
        payload: dict[str, Any] | None,
        response: GatedResponse,
    ) -> str:
        try:
            result = await executor.execute(action, payload)
        except Exception as exc:
            logger.error("action_execution_error", action_id=action.id, error=str(exc))
            return f"\n\n**Action Error**: Failed to execute {action.description}"

        response.executed.append(result.to_dict())
        if result.success:
            return f"\n\n**Action Executed**: {result.detail or 'Action completed successfully'}"
        logger.warning("action_execution_failed", action_id=action.id, detail=result.detail)
        return f"\n\n**Action Failed**: {result.detail or 'Unknown error occurred'}"
