"""Capability Registry - Tracks each worker's capabilities, load and rolling performance."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from dispatch.errors import CapacityExceeded, UnknownWorker
from dispatch.logging import get_logger

logger = get_logger(name=__name__)


class Availability(StrEnum):
    """Worker availability states."""

    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


@dataclass
class CapabilityProfile:
    """Capability and performance profile of one worker."""

    worker_id: str
    capabilities: frozenset[str]
    specializations: frozenset[str] = frozenset()
    max_concurrent: int = 1
    current_load: int = 0
    success_rate: float = 100.0  # 0-100, EMA
    avg_response_time_ms: float = 0.0  # EMA
    online: bool = True
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        self.capabilities = frozenset(self.capabilities)
        self.specializations = frozenset(self.specializations)
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be positive, got {self.max_concurrent}")
        if not 0 <= self.current_load <= self.max_concurrent:
            raise ValueError(
                f"current_load must be in [0, {self.max_concurrent}], got {self.current_load}"
            )
        if not 0.0 <= self.success_rate <= 100.0:
            raise ValueError(f"success_rate must be in [0, 100], got {self.success_rate}")

    @property
    def availability(self) -> Availability:
        if not self.online:
            return Availability.OFFLINE
        if self.current_load >= self.max_concurrent:
            return Availability.BUSY
        return Availability.AVAILABLE

    @property
    def skills(self) -> frozenset[str]:
        """Capabilities and specializations combined."""
        return self.capabilities | self.specializations

    def covers(self, required: Iterable[str]) -> bool:
        return set(required) <= self.skills

    def to_dict(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "capabilities": sorted(self.capabilities),
            "specializations": sorted(self.specializations),
            "max_concurrent": self.max_concurrent,
            "current_load": self.current_load,
            "success_rate": round(self.success_rate, 3),
            "avg_response_time_ms": round(self.avg_response_time_ms, 1),
            "availability": self.availability.value,
        }

    @classmethod
    def from_config(cls, data: Mapping[str, Any]) -> CapabilityProfile:
        return cls(
            worker_id=str(data["worker_id"]),
            capabilities=frozenset(data.get("capabilities", ())),
            specializations=frozenset(data.get("specializations", ())),
            max_concurrent=int(data.get("max_concurrent", 1)),
            success_rate=float(data.get("success_rate", 100.0)),
            avg_response_time_ms=float(data.get("avg_response_time_ms", 0.0)),
        )


class CapabilityRegistry:
    """
    In-memory registry of worker profiles.

    Load and outcome updates for a worker happen under that worker's lock, so
    concurrent callers can never push ``current_load`` past ``max_concurrent``.
    Insertion order is preserved and is the tie-break order for scoring.
    """

    DEFAULT_EMA_WEIGHT = 0.1

    def __init__(self, ema_weight: float = DEFAULT_EMA_WEIGHT) -> None:
        if not 0.0 < ema_weight <= 1.0:
            raise ValueError(f"ema_weight must be in (0, 1], got {ema_weight}")
        self.ema_weight = ema_weight
        self._profiles: dict[str, CapabilityProfile] = {}

    def register(self, profile: CapabilityProfile) -> None:
        """Add or replace a worker profile."""
        self._profiles[profile.worker_id] = profile
        logger.debug(
            "worker_registered",
            worker_id=profile.worker_id,
            max_concurrent=profile.max_concurrent,
        )

    def load_profiles(self, configs: Iterable[Mapping[str, Any]]) -> int:
        """Register profiles from static configuration. Returns how many were loaded."""
        count = 0
        for config in configs:
            self.register(CapabilityProfile.from_config(config))
            count += 1
        return count

    def get(self, worker_id: str) -> CapabilityProfile:
        try:
            return self._profiles[worker_id]
        except KeyError:
            raise UnknownWorker(worker_id) from None

    def __contains__(self, worker_id: object) -> bool:
        return worker_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    def all(self) -> list[CapabilityProfile]:
        return list(self._profiles.values())

    def list_capable(self, required: Iterable[str]) -> list[CapabilityProfile]:
        """Workers covering ``required`` regardless of current load."""
        required_set = set(required)
        return [
            p for p in self._profiles.values() if p.online and p.covers(required_set)
        ]

    def list_eligible(self, required: Iterable[str]) -> list[CapabilityProfile]:
        """Available workers whose capabilities and specializations cover ``required``."""
        return [
            p
            for p in self.list_capable(required)
            if p.availability is Availability.AVAILABLE
        ]

    def adjust_load(self, worker_id: str, delta: int) -> int:
        """
        Change a worker's load by ``delta`` and return the new load.

        Decrements saturate at zero. An increment that would pass
        ``max_concurrent`` raises CapacityExceeded and leaves the load unchanged.
        """
        profile = self.get(worker_id)
        with profile._lock:
            new_load = profile.current_load + delta
            if delta > 0 and new_load > profile.max_concurrent:
                raise CapacityExceeded(worker_id, profile.max_concurrent)
            profile.current_load = max(0, new_load)
            load = profile.current_load
        logger.debug("worker_load_adjusted", worker_id=worker_id, delta=delta, load=load)
        return load

    def record_outcome(self, worker_id: str, success: bool, latency_ms: float) -> None:
        """Fold one terminal outcome into the success-rate and latency averages."""
        if latency_ms < 0:
            raise ValueError(f"latency_ms must be >= 0, got {latency_ms}")
        profile = self.get(worker_id)
        w = self.ema_weight
        with profile._lock:
            profile.success_rate = profile.success_rate * (1 - w) + (100.0 if success else 0.0) * w
            profile.avg_response_time_ms = profile.avg_response_time_ms * (1 - w) + latency_ms * w

    def set_online(self, worker_id: str, online: bool) -> None:
        profile = self.get(worker_id)
        with profile._lock:
            profile.online = online

    def get_stats(self) -> dict[str, Any]:
        """Registry statistics."""
        by_availability: dict[str, int] = {}
        for profile in self._profiles.values():
            key = profile.availability.value
            by_availability[key] = by_availability.get(key, 0) + 1
        return {
            "total_workers": len(self._profiles),
            "total_load": sum(p.current_load for p in self._profiles.values()),
            "total_capacity": sum(p.max_concurrent for p in self._profiles.values()),
            "by_availability": by_availability,
        }
