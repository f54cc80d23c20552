"""Tests for the capability registry."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from dispatch.config import DEFAULT_PROFILES
from dispatch.engine.registry import Availability, CapabilityProfile, CapabilityRegistry
from dispatch.errors import CapacityExceeded, UnknownWorker


class TestCapabilityProfile:
    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            CapabilityProfile(worker_id="w", capabilities=frozenset(), max_concurrent=0)

    def test_rejects_load_over_capacity(self):
        with pytest.raises(ValueError):
            CapabilityProfile(
                worker_id="w", capabilities=frozenset(), max_concurrent=1, current_load=2
            )

    def test_availability(self):
        profile = CapabilityProfile(worker_id="w", capabilities=frozenset(), max_concurrent=1)
        assert profile.availability is Availability.AVAILABLE
        profile.current_load = 1
        assert profile.availability is Availability.BUSY
        profile.online = False
        assert profile.availability is Availability.OFFLINE

    def test_specializations_count_as_skills(self):
        profile = CapabilityProfile(
            worker_id="w",
            capabilities=frozenset({"reporting"}),
            specializations=frozenset({"analytics"}),
        )
        assert profile.covers(["reporting", "analytics"])
        assert not profile.covers(["reporting", "seo"])


class TestRegistryLookup:
    def test_get_unknown_worker(self, registry):
        with pytest.raises(UnknownWorker):
            registry.get("nobody")

    def test_unknown_worker_is_key_error(self, registry):
        with pytest.raises(KeyError):
            registry.get("nobody")

    def test_load_default_profiles(self):
        reg = CapabilityRegistry()
        assert reg.load_profiles(DEFAULT_PROFILES) == 5
        anchor = reg.get("anchor")
        assert "inventory_management" in anchor.capabilities
        assert anchor.max_concurrent == 5
        assert anchor.current_load == 0

    def test_list_eligible_covers_required(self, registry):
        ids = [p.worker_id for p in registry.list_eligible(["reporting"])]
        assert ids == ["pearl", "drake"]
        ids = [p.worker_id for p in registry.list_eligible(["financial_analysis"])]
        assert ids == ["drake"]

    def test_list_eligible_skips_busy_and_offline(self, registry):
        registry.adjust_load("drake", 1)
        registry.set_online("pearl", False)
        assert registry.list_eligible(["reporting"]) == []
        # Busy workers are still capable
        assert [p.worker_id for p in registry.list_capable(["reporting"])] == ["drake"]

    def test_empty_requirement_matches_everyone(self, registry):
        assert len(registry.list_eligible([])) == 2


class TestLoadAccounting:
    def test_increment_up_to_capacity(self, registry):
        assert registry.adjust_load("pearl", 1) == 1
        assert registry.adjust_load("pearl", 1) == 2
        with pytest.raises(CapacityExceeded):
            registry.adjust_load("pearl", 1)
        assert registry.get("pearl").current_load == 2

    def test_decrement_saturates_at_zero(self, registry):
        assert registry.adjust_load("pearl", -1) == 0
        assert registry.get("pearl").current_load == 0

    def test_concurrent_increments_never_pass_capacity(self):
        reg = CapabilityRegistry()
        reg.register(CapabilityProfile(worker_id="w", capabilities=frozenset(), max_concurrent=5))

        def reserve() -> bool:
            try:
                reg.adjust_load("w", 1)
                return True
            except CapacityExceeded:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: reserve(), range(40)))

        assert results.count(True) == 5
        assert reg.get("w").current_load == 5

    def test_stats(self, registry):
        registry.adjust_load("drake", 1)
        stats = registry.get_stats()
        assert stats["total_workers"] == 2
        assert stats["total_load"] == 1
        assert stats["total_capacity"] == 3
        assert stats["by_availability"] == {"available": 1, "busy": 1}


class TestOutcomes:
    def test_failure_moves_success_rate_by_ema_weight(self, registry):
        registry.record_outcome("pearl", success=False, latency_ms=0.0)
        assert registry.get("pearl").success_rate == pytest.approx(90.0)

    def test_success_keeps_perfect_rate(self, registry):
        registry.record_outcome("pearl", success=True, latency_ms=0.0)
        assert registry.get("pearl").success_rate == pytest.approx(100.0)

    def test_latency_average(self, registry):
        registry.record_outcome("pearl", success=True, latency_ms=1000.0)
        assert registry.get("pearl").avg_response_time_ms == pytest.approx(100.0)

    def test_custom_weight(self):
        reg = CapabilityRegistry(ema_weight=0.5)
        reg.register(CapabilityProfile(worker_id="w", capabilities=frozenset()))
        reg.record_outcome("w", success=False, latency_ms=10.0)
        assert reg.get("w").success_rate == pytest.approx(50.0)

    def test_negative_latency_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.record_outcome("pearl", success=True, latency_ms=-1.0)

    def test_invalid_weight(self):
        with pytest.raises(ValueError):
            CapabilityRegistry(ema_weight=0.0)
