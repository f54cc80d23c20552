"""Action detection and the autonomous-execution gate."""

from __future__ import annotations

from .actions import (
    ActionDescriptor,
    ActionDetector,
    ActionType,
    DetectionResult,
    RiskLevel,
)
from .gate import ActionGate, ConfidenceGate, GateDecision, GatedResponse, GateMode

__all__ = [
    "ActionDescriptor",
    "ActionDetector",
    "ActionGate",
    "ActionType",
    "ConfidenceGate",
    "DetectionResult",
    "GateDecision",
    "GateMode",
    "GatedResponse",
    "RiskLevel",
]
