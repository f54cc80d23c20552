"""Routing engine: capability registry and collaboration lifecycle."""

from dispatch.engine.registry import Availability, CapabilityProfile, CapabilityRegistry
from dispatch.engine.lifecycle import (
    AUTO_ACCEPT_FEEDBACK,
    CANCEL_FEEDBACK,
    CollaborationManager,
)

__all__ = [
    "AUTO_ACCEPT_FEEDBACK",
    "Availability",
    "CANCEL_FEEDBACK",
    "CapabilityProfile",
    "CapabilityRegistry",
    "CollaborationManager",
]
