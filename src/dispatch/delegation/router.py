"""
Agent Router: Load- and Reliability-Weighted Worker Selection

Scoring formula for each eligible worker:
    score = success_rate
          + (1 - load / max_concurrent) * LOAD_HEADROOM_WEIGHT
          + max(0, RESPONSIVENESS_CEILING - avg_response_time_ms / 1000)
          + matched_required_capabilities * CAPABILITY_MATCH_WEIGHT
          + priority_bonus (urgent: 20, high: 10)

Candidates are ranked by score; ties keep registry order so selection is
deterministic.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from dispatch.engine.registry import CapabilityProfile, CapabilityRegistry

from .models import CandidateScore, Priority, RoutingDecision

LOAD_HEADROOM_WEIGHT = 50.0
RESPONSIVENESS_CEILING = 10.0
CAPABILITY_MATCH_WEIGHT = 10.0
URGENT_BONUS = 20.0
HIGH_BONUS = 10.0


@dataclass(frozen=True)
class ScoringWeights:
    """Tunable weights for the selection score."""

    load_headroom: float = LOAD_HEADROOM_WEIGHT
    responsiveness_ceiling: float = RESPONSIVENESS_CEILING
    capability_match: float = CAPABILITY_MATCH_WEIGHT
    urgent_bonus: float = URGENT_BONUS
    high_bonus: float = HIGH_BONUS

    def priority_bonus(self, priority: Priority) -> float:
        if priority is Priority.URGENT:
            return self.urgent_bonus
        if priority is Priority.HIGH:
            return self.high_bonus
        return 0.0

    def ceiling(self, required_count: int, priority: Priority) -> float:
        """Highest score any worker could reach for this request."""
        return (
            100.0
            + self.load_headroom
            + self.responsiveness_ceiling
            + required_count * self.capability_match
            + self.priority_bonus(priority)
        )


DEFAULT_WEIGHTS = ScoringWeights()


def score_candidate(
    profile: CapabilityProfile,
    required_capabilities: Iterable[str],
    priority: Priority = Priority.MEDIUM,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> CandidateScore:
    """Score a single worker for a request."""
    skills = profile.skills
    matches = sum(1 for cap in set(required_capabilities) if cap in skills)
    headroom = 1.0 - profile.current_load / profile.max_concurrent

    return CandidateScore(
        worker_id=profile.worker_id,
        success_rate=profile.success_rate,
        load_headroom_bonus=headroom * weights.load_headroom,
        responsiveness_bonus=max(
            0.0, weights.responsiveness_ceiling - profile.avg_response_time_ms / 1000.0
        ),
        capability_match_bonus=matches * weights.capability_match,
        priority_bonus=weights.priority_bonus(priority),
    )


def rank_candidates(
    profiles: Sequence[CapabilityProfile],
    required_capabilities: Iterable[str],
    priority: Priority = Priority.MEDIUM,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> List[CandidateScore]:
    """Score and rank profiles, best first. ``sorted`` is stable, so ties keep input order."""
    required = list(required_capabilities)
    scored = [score_candidate(p, required, priority, weights) for p in profiles]
    return sorted(scored, key=lambda c: c.total, reverse=True)


def select_worker(
    registry: CapabilityRegistry,
    required_capabilities: Iterable[str],
    priority: Priority = Priority.MEDIUM,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
    exclude: Optional[Iterable[str]] = None,
) -> RoutingDecision:
    """
    Pick the best eligible worker for a request.

    Args:
        registry: Capability registry to draw eligible workers from
        required_capabilities: Capabilities the worker must cover
        priority: Request priority (adds a flat bonus for high/urgent)
        weights: Scoring weights
        exclude: Worker ids that must not be selected (e.g. the requester)

    Returns:
        RoutingDecision; ``worker_id`` is None when nobody is eligible
    """
    required = list(required_capabilities)
    excluded = set(exclude or ())
    eligible = [p for p in registry.list_eligible(required) if p.worker_id not in excluded]

    if not eligible:
        return RoutingDecision(
            worker_id=None,
            confidence=0.0,
            candidates=[],
            reasoning=(
                "No available worker covers "
                + (", ".join(sorted(required)) or "the request")
            ),
        )

    ranked = rank_candidates(eligible, required, priority, weights)
    best = ranked[0]
    confidence = min(1.0, best.total / weights.ceiling(len(set(required)), priority))

    reasoning = (
        f"Selected {best.worker_id} (score: {best.total:.1f}) | "
        f"Success: {best.success_rate:.1f}, "
        f"Headroom: {best.load_headroom_bonus:.1f}, "
        f"Responsiveness: {best.responsiveness_bonus:.1f}, "
        f"Capability: {best.capability_match_bonus:.1f}, "
        f"Priority: {best.priority_bonus:.1f}"
    )
    if len(ranked) > 1:
        reasoning += f" | {len(ranked) - 1} alternate(s)"

    return RoutingDecision(
        worker_id=best.worker_id,
        confidence=confidence,
        candidates=ranked,
        reasoning=reasoning,
    )
