"""Tests for request classification."""

from __future__ import annotations

import pytest

from dispatch.delegation.models import CollaborationType
from dispatch.delegation.taxonomy import (
    GENERAL_INQUIRY,
    RequestClassifier,
    RequestPattern,
    infer_collaboration_type,
    score_pattern,
)


@pytest.fixture
def classifier() -> RequestClassifier:
    return RequestClassifier()


class TestClassify:
    def test_inventory_request(self, classifier):
        result = classifier.classify("Can you check inventory and stock levels?")
        assert result.type == "inventory_management"
        assert result.required_capabilities == ["inventory_management"]
        # 2 keywords + 2 phrases over 10 terms, scaled by 0.8
        assert result.confidence == pytest.approx(0.48)
        assert result.suggested_actions

    def test_no_matches_is_general_inquiry(self, classifier):
        result = classifier.classify("Hello there, how are you?")
        assert result.type == GENERAL_INQUIRY
        assert result.confidence == 0.5
        assert result.required_capabilities == []

    def test_weak_match_falls_below_floor(self, classifier):
        result = classifier.classify("The product is nice")
        assert result.type == GENERAL_INQUIRY
        assert result.confidence == 0.5

    def test_empty_message(self, classifier):
        assert classifier.classify("").type == GENERAL_INQUIRY

    def test_attachment_raises_confidence(self, classifier):
        message = "create product and add to store"
        without = classifier.classify(message)
        with_image = classifier.classify(message, ["image/jpeg"])
        assert without.type == "product_creation"
        assert with_image.type == "product_creation"
        assert with_image.confidence == pytest.approx(9.5 / 22 * 0.9)
        assert with_image.confidence > without.confidence

    def test_case_insensitive(self, classifier):
        result = classifier.classify("CHECK INVENTORY AND STOCK LEVELS")
        assert result.type == "inventory_management"

    def test_custom_floor(self):
        strict = RequestClassifier(floor=0.5)
        assert strict.classify("Can you check inventory and stock levels?").type == GENERAL_INQUIRY


class TestPatternScoring:
    def test_whole_words_only(self):
        pattern = RequestPattern(
            type="stock", keywords=("stock",), phrases=(), confidence=1.0,
            required_capabilities=("inventory",),
        )
        assert score_pattern(pattern, "restocking the shelves")[0] == 0.0
        assert score_pattern(pattern, "stock the shelves")[0] == 1.0

    def test_ties_go_to_earlier_pattern(self):
        first = RequestPattern(
            type="first", keywords=("alpha",), phrases=(), confidence=0.9,
            required_capabilities=("a",),
        )
        second = RequestPattern(
            type="second", keywords=("alpha",), phrases=(), confidence=0.9,
            required_capabilities=("b",),
        )
        result = RequestClassifier([first, second]).classify("alpha")
        assert result.type == "first"
        assert result.required_capabilities == ["a"]

    def test_pattern_needs_terms(self):
        with pytest.raises(ValueError):
            RequestPattern(
                type="empty", keywords=(), phrases=(), confidence=0.5,
                required_capabilities=(),
            )

    def test_pattern_confidence_range(self):
        with pytest.raises(ValueError):
            RequestPattern(
                type="bad", keywords=("x",), phrases=(), confidence=1.5,
                required_capabilities=(),
            )


class TestCollaborationType:
    @pytest.mark.parametrize(
        "hint,expected",
        [
            ("market_research", CollaborationType.CONSULTATION),
            ("analyze_sales", CollaborationType.CONSULTATION),
            ("data_sync", CollaborationType.DATA_SHARING),
            ("share_report", CollaborationType.DATA_SHARING),
            ("joint_launch", CollaborationType.JOINT_TASK),
            ("publish_listing", CollaborationType.DELEGATION),
            (None, CollaborationType.DELEGATION),
        ],
    )
    def test_inference(self, hint, expected):
        assert infer_collaboration_type(hint) is expected
