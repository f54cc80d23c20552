"""Tests for the confidence gate and action annotations."""

from __future__ import annotations

import pytest

from dispatch.delegation.executor import ActionExecutor
from dispatch.safety.actions import ActionDescriptor, ActionType, RiskLevel
from dispatch.safety.gate import ActionGate, ConfidenceGate, GateMode

pytestmark = pytest.mark.anyio

CONFIDENT_UPDATE = "Update inventory for product 42 to 25 units."
DELETE = "I will delete product 7 now."


def make_action(
    confidence: float,
    risk: RiskLevel = RiskLevel.LOW,
    confirm: bool = False,
) -> ActionDescriptor:
    return ActionDescriptor(
        id="action-test",
        type=ActionType.INVENTORY_UPDATE,
        description="Update inventory",
        risk_level=risk,
        confidence=confidence,
        requires_confirmation=confirm,
        estimated_time="1 minute",
    )


# ═══════════════════════════════════════════════════════════════════════════
# GATE POLICY
# ═══════════════════════════════════════════════════════════════════════════


class TestConfidenceGate:
    def test_confident_low_risk_executes(self):
        decision = ConfidenceGate().decide(make_action(0.81))
        assert decision.mode is GateMode.EXECUTE
        assert decision.executes

    def test_threshold_is_strict(self):
        assert ConfidenceGate().decide(make_action(0.8)).mode is GateMode.SUGGEST

    def test_high_risk_never_executes(self):
        decision = ConfidenceGate().decide(make_action(0.95, risk=RiskLevel.HIGH))
        assert decision.mode is GateMode.SUGGEST
        assert decision.reason == "high risk"

    def test_medium_risk_suggested(self):
        assert ConfidenceGate().decide(make_action(1.0, risk=RiskLevel.MEDIUM)).mode is GateMode.SUGGEST

    def test_confirmation_forces_suggest(self):
        assert ConfidenceGate().decide(make_action(1.0, confirm=True)).mode is GateMode.SUGGEST

    def test_custom_threshold(self):
        assert ConfidenceGate(threshold=0.9).decide(make_action(0.85)).mode is GateMode.SUGGEST


# ═══════════════════════════════════════════════════════════════════════════
# DETECT + GATE + EXECUTE
# ═══════════════════════════════════════════════════════════════════════════


class RaisingExecutor:
    def has_handler(self, action_type: ActionType) -> bool:
        return True

    async def execute(self, action, payload=None):
        raise RuntimeError("executor crashed")


class TestActionGate:
    async def test_executes_and_annotates(self):
        calls = []

        async def update_inventory(action, payload):
            calls.append((action.parameters, payload))
            return {"success": True, "detail": "Inventory set to 25"}

        executor = ActionExecutor()
        executor.register_handler(ActionType.INVENTORY_UPDATE, update_inventory)
        gate = ActionGate(executor=executor)

        result = await gate.process(CONFIDENT_UPDATE, payload={"store_id": "s-1"})

        assert result.has_actions
        assert result.text.startswith(CONFIDENT_UPDATE)
        assert "**Action Executed**: Inventory set to 25" in result.text
        assert len(result.executed) == 1
        assert result.suggested == []
        assert calls == [({"product_id": "42", "quantity": "25"}, {"store_id": "s-1"})]

    async def test_failed_execution_annotated(self):
        async def update_inventory(action, payload):
            return {"success": False, "detail": "Quantity out of range"}

        executor = ActionExecutor()
        executor.register_handler(ActionType.INVENTORY_UPDATE, update_inventory)

        result = await ActionGate(executor=executor).process(CONFIDENT_UPDATE)
        assert "**Action Failed**: Quantity out of range" in result.text

    async def test_handler_exception_does_not_abort(self):
        async def update_inventory(action, payload):
            raise RuntimeError("shop API down")

        executor = ActionExecutor()
        executor.register_handler(ActionType.INVENTORY_UPDATE, update_inventory)

        result = await ActionGate(executor=executor).process(CONFIDENT_UPDATE)
        assert "**Action Failed**: RuntimeError: shop API down" in result.text

    async def test_executor_crash_becomes_error_annotation(self):
        result = await ActionGate(executor=RaisingExecutor()).process(CONFIDENT_UPDATE)
        assert "**Action Error**: Failed to execute Update inventory to 25 units" in result.text
        assert result.executed == []

    async def test_high_risk_only_suggested(self):
        calls = []

        async def delete_product(action, payload):
            calls.append(action)

        executor = ActionExecutor()
        executor.register_handler(ActionType.PRODUCT_DELETE, delete_product)

        result = await ActionGate(executor=executor).process(DELETE)
        assert calls == []
        assert len(result.suggested) == 1
        assert "**Suggested Action**: Delete product" in result.text
        assert "*Risk Level: HIGH* | *Estimated Time: 30 seconds*" in result.text
        assert "requires your confirmation" in result.text

    async def test_without_handler_suggests(self):
        result = await ActionGate(executor=ActionExecutor()).process(CONFIDENT_UPDATE)
        assert result.executed == []
        assert len(result.suggested) == 1
        assert "requires your confirmation" not in result.text

    async def test_without_executor_suggests(self):
        result = await ActionGate().process(CONFIDENT_UPDATE)
        assert result.executed == []
        assert len(result.suggested) == 1
        assert "**Suggested Action**" in result.text

    async def test_plain_text_unchanged(self):
        result = await ActionGate().process("Your store looks great.")
        assert not result.has_actions
        assert result.text == "Your store looks great."
