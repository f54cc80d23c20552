"""Tests for the action executor."""

from __future__ import annotations

import asyncio

import pytest

from dispatch.delegation.executor import ActionExecutor, ExecutionResult
from dispatch.safety.actions import ActionDescriptor, ActionType, RiskLevel

pytestmark = pytest.mark.anyio


def make_action(action_type: ActionType = ActionType.CUSTOMER_UPDATE) -> ActionDescriptor:
    return ActionDescriptor(
        id="action-1",
        type=action_type,
        description="Update customer",
        risk_level=RiskLevel.LOW,
        confidence=0.9,
        requires_confirmation=False,
        estimated_time="1 minute",
        parameters={"customer_id": "5"},
    )


class TestExecutionResult:
    def test_to_dict_truncates_detail(self):
        result = ExecutionResult("a", "customer_update", True, detail="x" * 800)
        data = result.to_dict()
        assert len(data["detail"]) == 500
        assert data["success"] is True


class TestActionExecutor:
    async def test_dict_result(self):
        async def handler(action, payload):
            return {"success": True, "detail": f"Customer {action.parameters['customer_id']}"}

        executor = ActionExecutor()
        executor.register_handler(ActionType.CUSTOMER_UPDATE, handler)
        result = await executor.execute(make_action())
        assert result.success
        assert result.detail == "Customer 5"
        assert result.action_type == "customer_update"

    async def test_bool_and_none_results(self):
        async def refuse(action, payload):
            return False

        async def quiet(action, payload):
            return None

        executor = ActionExecutor()
        executor.register_handler(ActionType.CUSTOMER_UPDATE, refuse)
        executor.register_handler(ActionType.CUSTOMER_CREATE, quiet)
        assert not (await executor.execute(make_action())).success
        assert (await executor.execute(make_action(ActionType.CUSTOMER_CREATE))).success

    async def test_payload_is_copied(self):
        seen = {}

        async def handler(action, payload):
            payload["touched"] = True
            seen.update(payload)
            return True

        executor = ActionExecutor()
        executor.register_handler(ActionType.CUSTOMER_UPDATE, handler)
        original = {"store_id": "s-1"}
        await executor.execute(make_action(), original)
        assert seen == {"store_id": "s-1", "touched": True}
        assert original == {"store_id": "s-1"}

    async def test_missing_handler(self):
        result = await ActionExecutor().execute(make_action())
        assert not result.success
        assert "No handler registered" in result.detail

    async def test_timeout(self):
        async def slow(action, payload):
            await asyncio.sleep(5)

        executor = ActionExecutor(timeout=0.05)
        executor.register_handler(ActionType.CUSTOMER_UPDATE, slow)
        result = await executor.execute(make_action())
        assert not result.success
        assert "timed out" in result.detail

    async def test_exception(self):
        async def broken(action, payload):
            raise ValueError("bad customer")

        executor = ActionExecutor()
        executor.register_handler(ActionType.CUSTOMER_UPDATE, broken)
        result = await executor.execute(make_action())
        assert not result.success
        assert result.detail == "ValueError: bad customer"
