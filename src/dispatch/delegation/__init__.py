"""
Delegation: Classification, Worker Selection and Fallback Routing

Core Components:
- models: CollaborationTask, RoutingDecision, Classification and request/response dataclasses
- taxonomy: Pattern-weighted request classification
- router: Load- and reliability-weighted worker selection
- executor: Action execution dispatcher with per-call timeouts
- fallback: Ordered retry across alternate workers
"""

from .models import (
    AgentRequest,
    AgentResponse,
    CandidateScore,
    Classification,
    CollaborationTask,
    CollaborationType,
    Decision,
    Priority,
    RoutingDecision,
    TaskStatus,
)
from .taxonomy import RequestClassifier, infer_collaboration_type
from .router import ScoringWeights, rank_candidates, score_candidate, select_worker
from .executor import ActionExecutor, ExecutionResult
from .fallback import AgentTransport, FallbackBridge

__all__ = [
    # Models
    "AgentRequest",
    "AgentResponse",
    "CandidateScore",
    "Classification",
    "CollaborationTask",
    "CollaborationType",
    "Decision",
    "Priority",
    "RoutingDecision",
    "TaskStatus",
    # Taxonomy
    "RequestClassifier",
    "infer_collaboration_type",
    # Router
    "ScoringWeights",
    "rank_candidates",
    "score_candidate",
    "select_worker",
    # Executor
    "ActionExecutor",
    "ExecutionResult",
    # Fallback
    "AgentTransport",
    "FallbackBridge",
]
