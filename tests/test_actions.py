"""Tests for action detection."""

from __future__ import annotations

import pytest

from dispatch.safety.actions import (
    ActionDescriptor,
    ActionDetector,
    ActionType,
    RiskLevel,
    extract_parameters,
)


@pytest.fixture
def detector() -> ActionDetector:
    return ActionDetector()


class TestDetect:
    def test_confident_inventory_update(self, detector):
        result = detector.detect("Update inventory for product 42 to 25 units.")
        assert result.has_actions
        assert len(result.actions) == 1
        action = result.actions[0]
        assert action.type is ActionType.INVENTORY_UPDATE
        assert action.risk_level is RiskLevel.LOW
        assert not action.requires_confirmation
        assert action.parameters == {"product_id": "42", "quantity": "25"}
        assert action.confidence == pytest.approx(1.0)
        assert action.description == "Update inventory to 25 units"

    def test_cue_without_verb_scores_lower(self, detector):
        action = detector.detect("I'll restock 40 units of the blue mug.").actions[0]
        assert action.type is ActionType.INVENTORY_UPDATE
        # base 0.7 + one parameter
        assert action.confidence == pytest.approx(0.75)

    def test_hedging_penalty(self, detector):
        action = detector.detect("Maybe update inventory for product 42 to 25 units.").actions[0]
        assert action.confidence == pytest.approx(0.7)

    def test_destructive_action_requires_confirmation(self, detector):
        action = detector.detect("I will delete product 7 now.").actions[0]
        assert action.type is ActionType.PRODUCT_DELETE
        assert action.risk_level is RiskLevel.HIGH
        assert action.requires_confirmation
        assert action.confidence == pytest.approx(0.95)

    def test_high_price_requires_confirmation(self, detector):
        action = detector.detect("Update product 12 price to $150.00").actions[0]
        assert action.type is ActionType.PRODUCT_UPDATE
        assert action.parameters["price"] == "150.00"
        assert action.requires_confirmation

    def test_bulk_requires_confirmation(self, detector):
        action = detector.detect("Update inventory for all products to 10 units.").actions[0]
        assert action.parameters["bulk"] == "true"
        assert action.requires_confirmation

    def test_duplicate_cues_collapse(self, detector):
        result = detector.detect("Restock and update inventory for product 42.")
        assert len(result.actions) == 1
        assert result.actions[0].parameters == {"product_id": "42"}

    def test_parameters_scoped_to_sentence(self, detector):
        action = detector.detect("Update inventory to 5 units. Product 99 is popular.").actions[0]
        assert action.parameters == {"quantity": "5"}

    def test_context_ids_attached(self, detector):
        action = detector.detect(
            "Update inventory to 5 units.", {"store_id": "store-1", "user": "x"}
        ).actions[0]
        assert action.parameters["store_id"] == "store-1"
        assert "user" not in action.parameters

    def test_no_actions(self, detector):
        result = detector.detect("Thanks for reaching out! Have a great day.")
        assert not result.has_actions
        assert result.actions == []


class TestParameters:
    def test_title_and_price(self):
        params = extract_parameters(
            'Create a new product named "Blue Mug" with price $25', ActionType.PRODUCT_CREATE
        )
        assert params["title"] == "Blue Mug"
        assert params["price"] == "25"

    def test_units_only_for_inventory(self):
        assert "quantity" not in extract_parameters("Ship 3 items", ActionType.ORDER_FULFILL)
        assert extract_parameters("Ship 3 items", ActionType.INVENTORY_UPDATE) == {"quantity": "3"}


class TestDescriptor:
    def test_confidence_range(self):
        with pytest.raises(ValueError):
            ActionDescriptor(
                id="a",
                type=ActionType.ORDER_FULFILL,
                description="Fulfill order",
                risk_level=RiskLevel.MEDIUM,
                confidence=1.2,
                requires_confirmation=False,
                estimated_time="1 minute",
            )

    def test_action_type_parts(self):
        assert ActionType.INVENTORY_BULK_UPDATE.resource == "inventory"
        assert ActionType.INVENTORY_BULK_UPDATE.verb == "update"
