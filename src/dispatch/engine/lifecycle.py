"""Collaboration Lifecycle - Owns the task state machine and its load accounting."""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable, Iterable
from typing import Any

from dispatch.delegation.models import (
    TRANSITIONS,
    CollaborationTask,
    CollaborationType,
    Priority,
    TaskStatus,
)
from dispatch.engine.registry import CapabilityRegistry
from dispatch.errors import CapacityExceeded, InvalidTransition, TaskNotFound
from dispatch.logging import get_logger

logger = get_logger(name=__name__)

AUTO_ACCEPT_FEEDBACK = "Auto-accepted low priority delegation"
CANCEL_FEEDBACK = "Cancelled"


class CollaborationManager:
    """
    Tracks collaboration tasks and moves them through their states.

    State machine:
        pending -> accepted | rejected
        accepted -> in_progress
        in_progress -> completed | failed

    A slot on the target worker is reserved when the task is opened and
    released exactly once, on the transition into a terminal state, together
    with the outcome update. Every transition of a task runs under that task's
    lock, so concurrent callers (including the auto-accept sweep) see at most
    one winner.
    """

    # Auto-accept threshold for pending low-priority delegations
    AUTO_ACCEPT_AFTER = 300  # seconds

    def __init__(
        self,
        registry: CapabilityRegistry,
        clock: Callable[[], float] = time.monotonic,
        auto_accept_after: float = AUTO_ACCEPT_AFTER,
    ) -> None:
        self.registry = registry
        self.clock = clock
        self.auto_accept_after = auto_accept_after
        self._tasks: dict[str, CollaborationTask] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def open(
        self,
        source_worker_id: str,
        target_worker_id: str,
        description: str,
        priority: Priority = Priority.MEDIUM,
        collaboration_type: CollaborationType = CollaborationType.DELEGATION,
        payload: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> CollaborationTask:
        """
        Reserve a slot on the target and create a pending task.

        Raises:
            CapacityExceeded: the target has no free slot
        """
        self.registry.adjust_load(target_worker_id, 1)

        task = CollaborationTask(
            id=f"collab-{uuid.uuid4().hex[:12]}",
            source_worker_id=source_worker_id,
            target_worker_id=target_worker_id,
            type=collaboration_type,
            description=description,
            payload=payload,
            priority=priority,
            requested_at=self.clock(),
            metadata=dict(metadata or {}),
        )
        with self._guard:
            self._tasks[task.id] = task
            self._locks[task.id] = threading.Lock()

        logger.info(
            "task_opened",
            task_id=task.id,
            source=source_worker_id,
            target=target_worker_id,
            type=task.type.value,
            priority=task.priority.value,
        )
        return task

    def restore(self, task: CollaborationTask) -> CollaborationTask:
        """
        Re-adopt a non-terminal task loaded from storage after a restart.

        Its slot is re-reserved; if the target no longer has room the task is
        failed instead of being tracked over capacity.
        """
        if task.is_terminal:
            raise ValueError(f"Task {task.id} is already {task.status.value}")
        # Monotonic readings from a previous process are meaningless here
        now = self.clock()
        task.requested_at = now
        if task.responded_at is not None:
            task.responded_at = now
        with self._guard:
            self._tasks[task.id] = task
            self._locks[task.id] = threading.Lock()
        try:
            self.registry.adjust_load(task.target_worker_id, 1)
        except CapacityExceeded:
            lock = self._locks[task.id]
            with lock:
                task.status = TaskStatus.FAILED
                task.completed_at = self.clock()
                task.feedback = "Capacity unavailable after restart"
            logger.warning("task_restore_over_capacity", task_id=task.id)
        return task

    # Lookup

    def get(self, task_id: str) -> CollaborationTask:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise TaskNotFound(task_id) from None

    def list_tasks(self, status: TaskStatus | None = None) -> list[CollaborationTask]:
        tasks = list(self._tasks.values())
        if status is not None:
            tasks = [t for t in tasks if t.status is status]
        return tasks

    def get_active(self) -> list[CollaborationTask]:
        return [t for t in self._tasks.values() if not t.is_terminal]

    def history(self, worker_id: str | None = None) -> list[CollaborationTask]:
        """Tasks newest first, optionally only those a worker sent or received."""
        tasks = [
            t
            for t in self._tasks.values()
            if worker_id is None or worker_id in (t.source_worker_id, t.target_worker_id)
        ]
        return sorted(tasks, key=lambda t: t.requested_at, reverse=True)

    # Transitions

    def accept(self, task_id: str, feedback: str | None = None) -> CollaborationTask:
        return self._transition(task_id, TaskStatus.ACCEPTED, feedback=feedback)

    def reject(self, task_id: str, feedback: str | None = None) -> CollaborationTask:
        return self._transition(task_id, TaskStatus.REJECTED, feedback=feedback)

    def cancel(self, task_id: str) -> CollaborationTask:
        """Cancel a pending task. Anything past pending is left alone."""
        return self._transition(task_id, TaskStatus.REJECTED, feedback=CANCEL_FEEDBACK)

    def start(self, task_id: str) -> CollaborationTask:
        return self._transition(task_id, TaskStatus.IN_PROGRESS)

    def complete(self, task_id: str, result: Any = None) -> CollaborationTask:
        return self._transition(task_id, TaskStatus.COMPLETED, result=result)

    def fail(self, task_id: str, error: str) -> CollaborationTask:
        return self._transition(task_id, TaskStatus.FAILED, feedback=error)

    def _transition(
        self,
        task_id: str,
        target: TaskStatus,
        feedback: str | None = None,
        result: Any = None,
    ) -> CollaborationTask:
        task = self.get(task_id)
        with self._locks[task_id]:
            current = task.status
            if target not in TRANSITIONS[current]:
                logger.warning(
                    "invalid_transition",
                    task_id=task_id,
                    current=current.value,
                    target=target.value,
                )
                raise InvalidTransition(task_id, current.value, target.value)

            now = self.clock()
            task.status = target
            if current is TaskStatus.PENDING and task.responded_at is None:
                task.responded_at = now
            if feedback is not None:
                task.feedback = feedback
            if target is TaskStatus.COMPLETED:
                task.result = result
            if target.is_terminal:
                task.completed_at = now
                self._release(task, now)

        logger.info(
            "task_transition",
            task_id=task_id,
            previous=current.value,
            status=target.value,
            target=task.target_worker_id,
        )
        return task

    def _release(self, task: CollaborationTask, finished_at: float) -> None:
        """Give the slot back and record the outcome. Caller holds the task lock."""
        elapsed_ms = max(0.0, (finished_at - task.requested_at) * 1000.0)
        self.registry.adjust_load(task.target_worker_id, -1)
        self.registry.record_outcome(
            task.target_worker_id,
            task.status is TaskStatus.COMPLETED,
            elapsed_ms,
        )

    # Sweep

    def is_auto_acceptable(self, task: CollaborationTask, now: float) -> bool:
        return (
            task.status is TaskStatus.PENDING
            and task.priority is Priority.LOW
            and task.type is CollaborationType.DELEGATION
            and now - task.requested_at > self.auto_accept_after
        )

    def auto_accept_due(self) -> list[CollaborationTask]:
        """Accept every stale low-priority pending delegation. Returns the tasks accepted."""
        now = self.clock()
        accepted: list[CollaborationTask] = []
        for task in self.list_tasks(TaskStatus.PENDING):
            if not self.is_auto_acceptable(task, now):
                continue
            try:
                accepted.append(self.accept(task.id, feedback=AUTO_ACCEPT_FEEDBACK))
            except InvalidTransition:
                # Someone else decided first
                continue
        if accepted:
            logger.info("tasks_auto_accepted", count=len(accepted))
        return accepted

    def cleanup_completed(self, older_than_seconds: float) -> int:
        """Drop terminal tasks finished more than ``older_than_seconds`` ago."""
        cutoff = self.clock() - older_than_seconds
        with self._guard:
            stale = [
                t.id
                for t in self._tasks.values()
                if t.is_terminal and t.completed_at is not None and t.completed_at < cutoff
            ]
            for task_id in stale:
                del self._tasks[task_id]
                del self._locks[task_id]
        return len(stale)

    def get_stats(self, tasks: Iterable[CollaborationTask] | None = None) -> dict[str, Any]:
        """Collaboration statistics over tracked tasks."""
        pool = list(self._tasks.values() if tasks is None else tasks)
        total = len(pool)
        completed = sum(1 for t in pool if t.status is TaskStatus.COMPLETED)

        by_type: dict[str, int] = {}
        by_worker: dict[str, int] = {}
        by_status: dict[str, int] = {}
        for task in pool:
            by_type[task.type.value] = by_type.get(task.type.value, 0) + 1
            by_status[task.status.value] = by_status.get(task.status.value, 0) + 1
            by_worker[task.source_worker_id] = by_worker.get(task.source_worker_id, 0) + 1
            by_worker[task.target_worker_id] = by_worker.get(task.target_worker_id, 0) + 1

        return {
            "total": total,
            "completed": completed,
            "success_rate": (completed / total) * 100 if total else 0.0,
            "by_type": by_type,
            "by_status": by_status,
            "by_worker": by_worker,
            "active": len(self.get_active()),
        }
