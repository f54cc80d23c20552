"""Error taxonomy for routing, lifecycle and external collaborators."""

from __future__ import annotations

from collections.abc import Iterable


class DispatchError(Exception):
    """Base class for every error the engine raises."""


class CapacityExceeded(DispatchError):
    """The target worker has no free slot."""

    def __init__(self, worker_id: str, max_concurrent: int | None = None) -> None:
        self.worker_id = worker_id
        self.max_concurrent = max_concurrent
        limit = f" (max {max_concurrent})" if max_concurrent is not None else ""
        super().__init__(f"Worker '{worker_id}' is at capacity{limit}")


class NoEligibleWorker(DispatchError):
    """No registered worker covers the required capabilities."""

    def __init__(self, required: Iterable[str]) -> None:
        self.required = sorted(required)
        super().__init__(
            "No worker satisfies required capabilities: " + (", ".join(self.required) or "<none>")
        )


class InvalidTransition(DispatchError):
    """A task was asked to move along an edge its state machine does not have."""

    def __init__(self, task_id: str, current: str, target: str) -> None:
        self.task_id = task_id
        self.current = current
        self.target = target
        super().__init__(f"Task {task_id}: cannot transition {current} -> {target}")


class UpstreamError(DispatchError):
    """A completion or action-execution call failed or timed out."""

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class PersistenceError(DispatchError):
    """A datastore write or read failed. Never fatal to in-memory state."""


class UnknownWorker(DispatchError, KeyError):
    def __init__(self, worker_id: str) -> None:
        self.worker_id = worker_id
        super().__init__(f"Unknown worker '{worker_id}'")

    def __str__(self) -> str:
        return str(self.args[0])


class TaskNotFound(DispatchError, KeyError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task '{task_id}' not found")

    def __str__(self) -> str:
        return str(self.args[0])
