"""Delegation Engine - Entry point that wires routing, lifecycle, gating and persistence."""

from __future__ import annotations

import asyncio
import contextlib
import copy
import json
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from dispatch.config import DEFAULT_PROFILES, EngineSettings
from dispatch.delegation.executor import ActionExecutor
from dispatch.delegation.fallback import UNAVAILABLE_MESSAGE, AgentTransport, FallbackBridge
from dispatch.delegation.models import (
    AgentRequest,
    AgentResponse,
    Classification,
    CollaborationTask,
    CollaborationType,
    Decision,
    Priority,
    RoutingDecision,
    TaskStatus,
)
from dispatch.delegation.router import ScoringWeights, select_worker
from dispatch.delegation.taxonomy import RequestClassifier, infer_collaboration_type
from dispatch.engine.lifecycle import CollaborationManager
from dispatch.engine.registry import CapabilityRegistry
from dispatch.errors import (
    CapacityExceeded,
    InvalidTransition,
    NoEligibleWorker,
    PersistenceError,
    UpstreamError,
)
from dispatch.logging import get_logger
from dispatch.safety.actions import ActionDetector
from dispatch.safety.gate import ActionGate, ConfidenceGate, GatedResponse
from dispatch.services.completion import CompletionService, CompletionTransport
from dispatch.storage.database import TaskStore

logger = get_logger(name=__name__)

RESTART_UNKNOWN_WORKER = "Target worker no longer registered after restart"
RESTART_INTERRUPTED = "Execution interrupted by restart"

PROMPT_PREFIXES: dict[CollaborationType, str] = {
    CollaborationType.DELEGATION: "Complete this delegated task",
    CollaborationType.CONSULTATION: "Provide your analysis and recommendation for",
    CollaborationType.DATA_SHARING: "Prepare and share the data requested in",
    CollaborationType.JOINT_TASK: "Contribute your part of this joint task",
}


@dataclass
class InitializationReport:
    """Outcome of engine startup."""

    workers_loaded: int = 0
    tasks_restored: int = 0
    tasks_failed: int = 0
    persistence_available: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "workers_loaded": self.workers_loaded,
            "tasks_restored": self.tasks_restored,
            "tasks_failed": self.tasks_failed,
            "persistence_available": self.persistence_available,
            "errors": list(self.errors),
        }


@dataclass
class SweepReport:
    auto_accepted: int = 0
    persisted: int = 0
    cleaned: int = 0


@dataclass
class RequestOutcome:
    """Everything ``handle_request`` decided for one inbound message."""

    classification: Classification
    routing: RoutingDecision
    response: AgentResponse
    actions: GatedResponse

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.classification.type,
            "confidence": round(self.classification.confidence, 3),
            "required_capabilities": list(self.classification.required_capabilities),
            "suggested_actions": list(self.classification.suggested_actions),
            "worker_id": self.response.worker_id,
            "routing_reasoning": self.routing.reasoning,
            "success": self.response.success,
            "text": self.response.text,
            "fallback_used": self.response.fallback_used,
            "attempts": list(self.response.attempts),
            "actions": self.actions.to_dict(),
        }


class DelegationEngine:
    """
    Routes requests to workers and owns the lifecycle of delegated tasks.

    The in-memory registry and task set are authoritative. Datastore writes
    happen after each transition, bounded by a timeout; a failed write is kept
    in an outbox and retried by the periodic sweep.

    Lifecycle:
        engine = DelegationEngine(settings, store=SQLiteTaskStore(path))
        report = await engine.initialize()
        ...
        await engine.shutdown()
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        registry: CapabilityRegistry | None = None,
        store: TaskStore | None = None,
        completion: CompletionService | None = None,
        executor: ActionExecutor | None = None,
        transport: AgentTransport | None = None,
        profiles: Iterable[Mapping[str, Any]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or EngineSettings()
        s = self.settings

        self.registry = (
            registry if registry is not None else CapabilityRegistry(ema_weight=s.ema_weight)
        )
        self.lifecycle = CollaborationManager(
            self.registry, clock=clock, auto_accept_after=s.auto_accept_after_seconds
        )
        self.classifier = RequestClassifier(
            floor=s.classification_floor, fallback_confidence=s.fallback_confidence
        )
        self.weights = ScoringWeights(
            load_headroom=s.load_headroom_weight,
            responsiveness_ceiling=s.responsiveness_ceiling,
            capability_match=s.capability_match_weight,
            urgent_bonus=s.urgent_bonus,
            high_bonus=s.high_bonus,
        )
        self.executor = (
            executor if executor is not None else ActionExecutor(timeout=s.action_timeout_seconds)
        )
        self.action_gate = ActionGate(
            ActionDetector(), ConfidenceGate(s.execution_threshold), self.executor
        )

        self.store = store
        self.completion = completion
        if transport is None and completion is not None:
            transport = CompletionTransport(completion)
        self.bridge = (
            FallbackBridge(transport, timeout=s.upstream_timeout_seconds)
            if transport is not None
            else None
        )

        self._profiles = list(profiles) if profiles is not None else None
        # Writes are versioned per task: the outbox keeps the newest failed
        # snapshot and a write never overwrites a newer one.
        self._outbox: dict[str, tuple[int, CollaborationTask]] = {}
        self._versions: dict[str, int] = {}
        self._written: dict[str, int] = {}
        self._write_locks: dict[str, asyncio.Lock] = {}
        self._background: set[asyncio.Task[None]] = set()
        self._sweep_task: asyncio.Task[None] | None = None
        self._report: InitializationReport | None = None

    # Startup / shutdown

    async def initialize(self, start_sweep: bool = True) -> InitializationReport:
        """Load the worker roster, restore in-flight tasks and start the sweep.

        Safe to call more than once; later calls return the first report.
        """
        if self._report is not None:
            return self._report

        report = InitializationReport()
        if self._profiles is not None or len(self.registry) == 0:
            report.workers_loaded = self.registry.load_profiles(
                DEFAULT_PROFILES if self._profiles is None else self._profiles
            )
        else:
            report.workers_loaded = len(self.registry)

        if self.store is not None:
            await self._restore_tasks(self.store, report)

        if start_sweep:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

        self._report = report
        logger.info("engine_initialized", **report.to_dict())
        return report

    async def _restore_tasks(self, store: TaskStore, report: InitializationReport) -> None:
        try:
            opener = getattr(store, "open", None)
            if opener is not None:
                await opener()
            active = await asyncio.wait_for(
                store.load_active(), timeout=self.settings.persistence_timeout_seconds
            )
        except (PersistenceError, asyncio.TimeoutError) as exc:
            report.errors.append(f"Task store unavailable: {exc}")
            logger.warning("task_restore_failed", error=str(exc))
            return

        report.persistence_available = True
        for task in active:
            if task.target_worker_id not in self.registry:
                task.status = TaskStatus.FAILED
                task.feedback = RESTART_UNKNOWN_WORKER
                task.completed_at = self.lifecycle.clock()
                report.tasks_failed += 1
                await self._persist(task)
                continue

            restored = self.lifecycle.restore(task)
            if restored.status is TaskStatus.FAILED:
                report.tasks_failed += 1
                await self._persist(restored)
                continue
            if self.completion is not None and restored.status is TaskStatus.IN_PROGRESS:
                # The completion call driving it died with the previous process
                failed = self.lifecycle.fail(restored.id, RESTART_INTERRUPTED)
                report.tasks_failed += 1
                await self._persist(failed)
                continue
            report.tasks_restored += 1
            if restored.status is TaskStatus.ACCEPTED:
                self._schedule_execution(restored.id)

    async def wait_idle(self) -> None:
        """Wait for every background task execution started so far."""
        while True:
            pending = [job for job in self._background if not job.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop the sweep, let in-flight executions settle and close collaborators."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None

        await self.wait_idle()

        await self.flush_outbox()
        if self._outbox:
            logger.warning("outbox_not_flushed", pending=len(self._outbox))

        if self.store is not None:
            await self.store.close()
        closer = getattr(self.completion, "aclose", None)
        if closer is not None:
            await closer()
        self._report = None
        logger.info("engine_shutdown")

    # Tasks

    async def submit_task(
        self,
        source_worker_id: str,
        required_capabilities: Sequence[str],
        description: str,
        priority: Priority | str = Priority.MEDIUM,
        payload: Any = None,
        *,
        task_type: str | None = None,
        collaboration_type: CollaborationType | str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> CollaborationTask:
        """
        Pick a target worker and open a pending task on it.

        The source worker is never chosen as its own target.

        Raises:
            NoEligibleWorker: no online worker covers the capabilities
            CapacityExceeded: capable workers exist but none has a free slot
        """
        priority = Priority(priority)
        required = list(required_capabilities)
        capable = [
            p for p in self.registry.list_capable(required) if p.worker_id != source_worker_id
        ]
        if not capable:
            logger.warning("no_eligible_worker", required=required, source=source_worker_id)
            raise NoEligibleWorker(required)

        decision = select_worker(
            self.registry, required, priority, self.weights, exclude=[source_worker_id]
        )
        if collaboration_type is None:
            collab_type = infer_collaboration_type(task_type)
        else:
            collab_type = CollaborationType(collaboration_type)

        task_metadata = dict(metadata or {})
        task_metadata.update(
            {
                "required_capabilities": required,
                "routing_confidence": round(decision.confidence, 3),
                "routing_reasoning": decision.reasoning,
            }
        )
        if task_type:
            task_metadata["task_type"] = task_type

        # Candidates can fill up between scoring and reservation; take the next one
        for candidate in decision.candidates:
            try:
                task = self.lifecycle.open(
                    source_worker_id,
                    candidate.worker_id,
                    description,
                    priority=priority,
                    collaboration_type=collab_type,
                    payload=payload,
                    metadata=task_metadata,
                )
            except CapacityExceeded:
                continue
            await self._persist(task, insert=True)
            return task

        busy = capable[0]
        logger.warning("capacity_exceeded", required=required, worker_id=busy.worker_id)
        raise CapacityExceeded(busy.worker_id, busy.max_concurrent)

    async def respond(
        self, task_id: str, decision: Decision | str, feedback: str | None = None
    ) -> CollaborationTask:
        """Accept or reject a pending task.

        With a completion service configured, an accepted task is executed in
        the background.
        """
        decision = Decision(decision)
        if decision is Decision.ACCEPT:
            task = self.lifecycle.accept(task_id, feedback)
        else:
            task = self.lifecycle.reject(task_id, feedback)
        await self._persist(task)
        if task.status is TaskStatus.ACCEPTED:
            self._schedule_execution(task.id)
        return task

    async def start(self, task_id: str) -> CollaborationTask:
        task = self.lifecycle.start(task_id)
        await self._persist(task)
        return task

    async def complete(self, task_id: str, result: Any = None) -> CollaborationTask:
        task = self.lifecycle.complete(task_id, result)
        await self._persist(task)
        return task

    async def fail(self, task_id: str, error: str) -> CollaborationTask:
        task = self.lifecycle.fail(task_id, error)
        await self._persist(task)
        return task

    async def cancel(self, task_id: str) -> CollaborationTask:
        task = self.lifecycle.cancel(task_id)
        await self._persist(task)
        return task

    def get_task(self, task_id: str) -> CollaborationTask:
        return self.lifecycle.get(task_id)

    def list_tasks(self, status: TaskStatus | str | None = None) -> list[CollaborationTask]:
        return self.lifecycle.list_tasks(TaskStatus(status) if status is not None else None)

    def history(self, worker_id: str | None = None, limit: int = 50) -> list[CollaborationTask]:
        return self.lifecycle.history(worker_id)[:limit]

    def stats(self, worker_id: str | None = None) -> dict[str, Any]:
        tasks = self.lifecycle.history(worker_id) if worker_id else None
        stats = self.lifecycle.get_stats(tasks)
        stats["workers"] = self.registry.get_stats()
        stats["pending_writes"] = len(self._outbox)
        return stats

    def _schedule_execution(self, task_id: str) -> None:
        """Run an accepted task in the background. No-op without a completion service."""
        if self.completion is None:
            return
        job = asyncio.create_task(self._run_task(task_id, self.completion))
        self._background.add(job)
        job.add_done_callback(self._background.discard)

    async def _run_task(self, task_id: str, service: CompletionService) -> None:
        """Drive an accepted task through the completion service.

        Execution errors never escape: the task is failed with the error text.
        """
        try:
            task = self.lifecycle.start(task_id)
        except InvalidTransition:
            return
        await self._persist(task)

        context = {
            "task_id": task.id,
            "worker_id": task.target_worker_id,
            "source_worker_id": task.source_worker_id,
            "collaboration_type": task.type.value,
            "priority": task.priority.value,
        }
        if task.payload is not None:
            context["payload"] = task.payload

        error: str | None = None
        try:
            completion = await asyncio.wait_for(
                service.complete(_build_prompt(task), context),
                timeout=self.settings.upstream_timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = f"Completion timed out after {self.settings.upstream_timeout_seconds}s"
        except UpstreamError as exc:
            error = exc.detail
        except Exception as exc:
            logger.exception("task_execution_error", task_id=task_id)
            error = f"{type(exc).__name__}: {exc}"

        try:
            if error is None:
                task = self.lifecycle.complete(
                    task_id,
                    {
                        "text": completion.text,
                        "tokens_used": completion.tokens_used,
                        "latency_ms": completion.latency_ms,
                        "worker_id": task.target_worker_id,
                    },
                )
            else:
                logger.warning("task_execution_failed", task_id=task_id, error=error)
                task = self.lifecycle.fail(task_id, error)
        except InvalidTransition:
            # Finished externally while the call was in flight
            return
        await self._persist(task)

    # Requests

    def classify_request(
        self, message: str, attachment_types: Sequence[str] | None = None
    ) -> Classification:
        return self.classifier.classify(message, attachment_types)

    def route(
        self,
        required_capabilities: Sequence[str],
        priority: Priority | str = Priority.MEDIUM,
        exclude: Iterable[str] | None = None,
    ) -> RoutingDecision:
        return select_worker(
            self.registry, required_capabilities, Priority(priority), self.weights, exclude
        )

    async def detect_and_gate_actions(
        self,
        text: str,
        context: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> GatedResponse:
        return await self.action_gate.process(text, context, payload)

    async def route_with_fallback(
        self, primary: str, fallbacks: Sequence[str], request: AgentRequest
    ) -> AgentResponse:
        if self.bridge is None:
            raise UpstreamError("No worker transport configured")
        return await self.bridge.route_with_fallback(primary, fallbacks, request)

    async def handle_request(
        self,
        message: str,
        attachment_types: Sequence[str] | None = None,
        context: dict[str, Any] | None = None,
        priority: Priority | str = Priority.MEDIUM,
    ) -> RequestOutcome:
        """
        Classify a message, route it with fallback, then gate any actions in the reply.

        Raises:
            NoEligibleWorker: no online worker covers the classified capabilities
        """
        context = dict(context or {})
        classification = self.classify_request(message, attachment_types)
        required = classification.required_capabilities
        if not self.registry.list_capable(required):
            raise NoEligibleWorker(required)

        routing = self.route(required, priority)
        if routing.worker_id is None:
            response = AgentResponse(success=False, text=UNAVAILABLE_MESSAGE, error=routing.reasoning)
            return RequestOutcome(classification, routing, response, GatedResponse(text=response.text))

        request = AgentRequest(
            message=message,
            context={
                **context,
                "request_type": classification.type,
                "required_capabilities": list(required),
            },
        )
        fallbacks = routing.fallback_chain[: self.settings.fallback_candidates]
        response = await self.route_with_fallback(routing.worker_id, fallbacks, request)

        if response.success:
            actions = await self.detect_and_gate_actions(response.text, context)
            response.text = actions.text
        else:
            actions = GatedResponse(text=response.text)

        logger.info(
            "request_handled",
            type=classification.type,
            worker_id=response.worker_id,
            success=response.success,
            fallback_used=response.fallback_used,
        )
        return RequestOutcome(classification, routing, response, actions)

    # Sweep / persistence

    async def sweep_once(self) -> SweepReport:
        """One pass of periodic maintenance."""
        report = SweepReport()
        accepted = self.lifecycle.auto_accept_due()
        report.auto_accepted = len(accepted)
        for task in accepted:
            await self._persist(task)
            self._schedule_execution(task.id)

        report.persisted = await self.flush_outbox()
        report.cleaned = self.lifecycle.cleanup_completed(self.settings.task_retention_seconds)
        if report.cleaned:
            self._forget_write_state()
        return report

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval_seconds)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("sweep_failed")

    async def flush_outbox(self) -> int:
        """Retry queued writes. Returns how many succeeded."""
        if self.store is None or not self._outbox:
            return 0
        written = 0
        for version, snapshot in list(self._outbox.values()):
            if await self._write(self.store, version, snapshot, insert=False):
                written += 1
        return written

    async def _persist(self, task: CollaborationTask, insert: bool = False) -> None:
        """Best-effort write of the current state. Failures are logged and queued, never raised."""
        if self.store is None:
            return
        version = self._versions.get(task.id, 0) + 1
        self._versions[task.id] = version
        await self._write(self.store, version, copy.deepcopy(task), insert=insert)

    async def _write(
        self, store: TaskStore, version: int, snapshot: CollaborationTask, insert: bool
    ) -> bool:
        task_id = snapshot.id
        lock = self._write_locks.setdefault(task_id, asyncio.Lock())
        async with lock:
            if self._written.get(task_id, 0) < version:
                write = store.insert if insert else store.update
                try:
                    await asyncio.wait_for(
                        write(snapshot), timeout=self.settings.persistence_timeout_seconds
                    )
                except (PersistenceError, asyncio.TimeoutError) as exc:
                    logger.warning(
                        "persistence_failed",
                        task_id=task_id,
                        version=version,
                        error=str(exc) or type(exc).__name__,
                    )
                    queued = self._outbox.get(task_id)
                    if queued is None or queued[0] < version:
                        self._outbox[task_id] = (version, snapshot)
                    return False
                self._written[task_id] = version

            queued = self._outbox.get(task_id)
            if queued is not None and queued[0] <= self._written[task_id]:
                del self._outbox[task_id]
        return True

    def _forget_write_state(self) -> None:
        live = {task.id for task in self.lifecycle.list_tasks()} | set(self._outbox)
        for task_id in [t for t in self._versions if t not in live]:
            lock = self._write_locks.get(task_id)
            if lock is not None and lock.locked():
                continue
            self._versions.pop(task_id, None)
            self._written.pop(task_id, None)
            self._write_locks.pop(task_id, None)


def _build_prompt(task: CollaborationTask) -> str:
    prompt = f"{PROMPT_PREFIXES[task.type]}: {task.description}"
    if task.payload is not None:
        prompt += "\n\nContext:\n" + json.dumps(task.payload, default=str, indent=2)
    return prompt
