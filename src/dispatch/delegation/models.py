"""
Delegation Data Models

Core dataclasses shared by the classifier, scorer, lifecycle manager and
action gate.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class CollaborationType(str, Enum):
    """How the source worker is involving the target worker."""

    DELEGATION = "delegation"
    CONSULTATION = "consultation"
    DATA_SHARING = "data_sharing"
    JOINT_TASK = "joint_task"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskStatus(str, Enum):
    """Collaboration task states."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.REJECTED, TaskStatus.FAILED})

# Legal edges of the task state machine
TRANSITIONS: Dict[TaskStatus, frozenset] = {
    TaskStatus.PENDING: frozenset({TaskStatus.ACCEPTED, TaskStatus.REJECTED}),
    TaskStatus.ACCEPTED: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.REJECTED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


class Decision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


@dataclass
class CollaborationTask:
    """One delegated request between two workers.

    ``requested_at``/``responded_at``/``completed_at`` are monotonic clock
    readings and are each written at most once.
    """

    id: str
    source_worker_id: str
    target_worker_id: str
    type: CollaborationType
    description: str
    priority: Priority
    requested_at: float
    payload: Any = None
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    feedback: Optional[str] = None
    responded_at: Optional[float] = None
    completed_at: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_worker_id": self.source_worker_id,
            "target_worker_id": self.target_worker_id,
            "type": self.type.value,
            "description": self.description,
            "payload": self.payload,
            "priority": self.priority.value,
            "status": self.status.value,
            "result": self.result,
            "feedback": self.feedback,
            "requested_at": self.requested_at,
            "responded_at": self.responded_at,
            "completed_at": self.completed_at,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollaborationTask":
        return cls(
            id=data["id"],
            source_worker_id=data["source_worker_id"],
            target_worker_id=data["target_worker_id"],
            type=CollaborationType(data["type"]),
            description=data["description"],
            payload=data.get("payload"),
            priority=Priority(data["priority"]),
            status=TaskStatus(data["status"]),
            result=data.get("result"),
            feedback=data.get("feedback"),
            requested_at=data["requested_at"],
            responded_at=data.get("responded_at"),
            completed_at=data.get("completed_at"),
            metadata=data.get("metadata") or {},
        )


@dataclass
class CandidateScore:
    """Scoring breakdown for one eligible worker."""

    worker_id: str
    success_rate: float
    load_headroom_bonus: float
    responsiveness_bonus: float
    capability_match_bonus: float
    priority_bonus: float

    @property
    def total(self) -> float:
        return (
            self.success_rate
            + self.load_headroom_bonus
            + self.responsiveness_bonus
            + self.capability_match_bonus
            + self.priority_bonus
        )


@dataclass
class RoutingDecision:
    """Outcome of a selection pass. ``worker_id`` is None when nobody is eligible."""

    worker_id: Optional[str]
    confidence: float
    candidates: List[CandidateScore] = field(default_factory=list)
    reasoning: str = ""

    @property
    def fallback_chain(self) -> List[str]:
        return [c.worker_id for c in self.candidates[1:]]


@dataclass
class Classification:
    """Result of classifying a free-text request."""

    type: str
    required_capabilities: List[str]
    confidence: float
    suggested_actions: List[str] = field(default_factory=list)
    matched_terms: List[str] = field(default_factory=list)


@dataclass
class AgentRequest:
    """Request forwarded to a worker by the fallback bridge."""

    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    payload: Any = None


@dataclass
class AgentResponse:
    """A worker's answer. ``success`` False means the attempt failed."""

    success: bool
    text: str
    worker_id: Optional[str] = None
    tokens_used: int = 0
    latency_ms: float = 0.0
    fallback_used: bool = False
    attempts: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
