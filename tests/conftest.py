"""Shared fixtures."""

from __future__ import annotations

import pytest

from dispatch.engine.registry import CapabilityProfile, CapabilityRegistry


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> CapabilityRegistry:
    reg = CapabilityRegistry()
    reg.register(
        CapabilityProfile(
            worker_id="pearl",
            capabilities=frozenset({"reporting", "data_analysis"}),
            specializations=frozenset({"analytics"}),
            max_concurrent=2,
            success_rate=100.0,
        )
    )
    reg.register(
        CapabilityProfile(
            worker_id="drake",
            capabilities=frozenset({"reporting", "financial_analysis"}),
            max_concurrent=1,
            success_rate=90.0,
        )
    )
    return reg
