"""Tests for the collaboration task state machine."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from dispatch.delegation.models import CollaborationType, Priority, TaskStatus
from dispatch.engine.lifecycle import AUTO_ACCEPT_FEEDBACK, CANCEL_FEEDBACK, CollaborationManager
from dispatch.errors import CapacityExceeded, InvalidTransition, TaskNotFound


@pytest.fixture
def manager(registry, clock) -> CollaborationManager:
    return CollaborationManager(registry, clock=clock)


def open_task(manager, target="pearl", **kwargs):
    kwargs.setdefault("priority", Priority.MEDIUM)
    return manager.open("anchor", target, "Compile weekly report", **kwargs)


# ═══════════════════════════════════════════════════════════════════════════
# OPEN
# ═══════════════════════════════════════════════════════════════════════════


class TestOpen:
    def test_creates_pending_task_and_reserves_slot(self, manager, registry):
        task = open_task(manager)
        assert task.id.startswith("collab-")
        assert task.status is TaskStatus.PENDING
        assert task.type is CollaborationType.DELEGATION
        assert registry.get("pearl").current_load == 1
        assert manager.get(task.id) is task

    def test_full_target_raises(self, manager, registry):
        open_task(manager, target="drake")
        with pytest.raises(CapacityExceeded):
            open_task(manager, target="drake")
        assert registry.get("drake").current_load == 1
        assert len(manager.list_tasks()) == 1

    def test_unknown_task(self, manager):
        with pytest.raises(TaskNotFound):
            manager.get("collab-missing")


# ═══════════════════════════════════════════════════════════════════════════
# TRANSITIONS
# ═══════════════════════════════════════════════════════════════════════════


class TestTransitions:
    def test_happy_path(self, manager, registry, clock):
        task = open_task(manager)
        clock.advance(1)
        manager.accept(task.id, "On it")
        assert task.status is TaskStatus.ACCEPTED
        assert task.responded_at == 1001.0
        assert task.feedback == "On it"

        manager.start(task.id)
        assert task.status is TaskStatus.IN_PROGRESS

        clock.advance(1)
        manager.complete(task.id, {"rows": 12})
        assert task.status is TaskStatus.COMPLETED
        assert task.result == {"rows": 12}
        assert task.completed_at == 1002.0

        profile = registry.get("pearl")
        assert profile.current_load == 0
        assert profile.success_rate == pytest.approx(100.0)
        # 2s elapsed folded in with weight 0.1
        assert profile.avg_response_time_ms == pytest.approx(200.0)

    def test_fail_lowers_success_rate(self, manager, registry):
        task = open_task(manager)
        manager.accept(task.id)
        manager.start(task.id)
        manager.fail(task.id, "Upstream timed out")
        assert task.status is TaskStatus.FAILED
        assert task.feedback == "Upstream timed out"
        assert registry.get("pearl").current_load == 0
        assert registry.get("pearl").success_rate == pytest.approx(90.0)

    def test_reject_releases_slot_and_counts_as_failure(self, manager, registry):
        task = open_task(manager)
        manager.reject(task.id, "Too busy")
        assert task.status is TaskStatus.REJECTED
        assert task.completed_at is not None
        assert registry.get("pearl").current_load == 0
        assert registry.get("pearl").success_rate == pytest.approx(90.0)

    def test_cannot_skip_states(self, manager):
        task = open_task(manager)
        with pytest.raises(InvalidTransition):
            manager.start(task.id)
        with pytest.raises(InvalidTransition):
            manager.complete(task.id)
        assert task.status is TaskStatus.PENDING

    @pytest.mark.parametrize("finish", ["complete", "fail", "reject"])
    def test_terminal_states_are_final(self, manager, registry, finish):
        task = open_task(manager)
        if finish == "reject":
            manager.reject(task.id)
        else:
            manager.accept(task.id)
            manager.start(task.id)
            if finish == "complete":
                manager.complete(task.id, "ok")
            else:
                manager.fail(task.id, "boom")
        final = task.status
        rate = registry.get("pearl").success_rate

        for attempt in (
            lambda: manager.accept(task.id),
            lambda: manager.reject(task.id),
            lambda: manager.start(task.id),
            lambda: manager.complete(task.id, "again"),
            lambda: manager.fail(task.id, "again"),
            lambda: manager.cancel(task.id),
        ):
            with pytest.raises(InvalidTransition):
                attempt()

        assert task.status is final
        assert registry.get("pearl").current_load == 0
        assert registry.get("pearl").success_rate == rate

    def test_cancel_pending(self, manager, registry):
        task = open_task(manager)
        manager.cancel(task.id)
        assert task.status is TaskStatus.REJECTED
        assert task.feedback == CANCEL_FEEDBACK
        assert registry.get("pearl").current_load == 0

    def test_cancel_after_accept_is_refused(self, manager):
        task = open_task(manager)
        manager.accept(task.id)
        with pytest.raises(InvalidTransition):
            manager.cancel(task.id)
        assert task.status is TaskStatus.ACCEPTED

    def test_concurrent_accepts_have_one_winner(self, manager):
        task = open_task(manager)

        def accept() -> bool:
            try:
                manager.accept(task.id)
                return True
            except InvalidTransition:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: accept(), range(16)))

        assert results.count(True) == 1
        assert task.status is TaskStatus.ACCEPTED


# ═══════════════════════════════════════════════════════════════════════════
# AUTO-ACCEPT SWEEP
# ═══════════════════════════════════════════════════════════════════════════


class TestAutoAccept:
    def test_stale_low_priority_delegation_accepted_once(self, manager, clock):
        task = open_task(manager, priority=Priority.LOW)
        clock.advance(301)

        accepted = manager.auto_accept_due()
        assert accepted == [task]
        assert task.status is TaskStatus.ACCEPTED
        assert task.feedback == AUTO_ACCEPT_FEEDBACK

        assert manager.auto_accept_due() == []
        assert task.status is TaskStatus.ACCEPTED

    def test_not_before_threshold(self, manager, clock):
        task = open_task(manager, priority=Priority.LOW)
        clock.advance(300)
        assert manager.auto_accept_due() == []
        assert task.status is TaskStatus.PENDING

    @pytest.mark.parametrize("priority", [Priority.MEDIUM, Priority.HIGH, Priority.URGENT])
    def test_other_priorities_never_auto_accept(self, manager, clock, priority):
        task = open_task(manager, priority=priority)
        clock.advance(10_000)
        assert manager.auto_accept_due() == []
        assert task.status is TaskStatus.PENDING

    def test_only_delegations(self, manager, clock):
        task = open_task(
            manager,
            priority=Priority.LOW,
            collaboration_type=CollaborationType.CONSULTATION,
        )
        clock.advance(10_000)
        assert manager.auto_accept_due() == []
        assert task.status is TaskStatus.PENDING

    def test_explicit_decision_wins(self, manager, clock):
        task = open_task(manager, priority=Priority.LOW)
        clock.advance(301)
        manager.reject(task.id, "No")
        assert manager.auto_accept_due() == []
        assert task.feedback == "No"


# ═══════════════════════════════════════════════════════════════════════════
# RESTORE / HOUSEKEEPING
# ═══════════════════════════════════════════════════════════════════════════


class TestRestore:
    def test_reserves_slot_again(self, registry, clock):
        first = CollaborationManager(registry, clock=clock)
        task = open_task(first)
        first.accept(task.id)

        registry.get("pearl").current_load = 0
        snapshot = type(task).from_dict(task.to_dict())
        second = CollaborationManager(registry, clock=clock)
        restored = second.restore(snapshot)

        assert restored.status is TaskStatus.ACCEPTED
        assert registry.get("pearl").current_load == 1
        second.start(restored.id)
        second.complete(restored.id, "done")
        assert registry.get("pearl").current_load == 0

    def test_over_capacity_fails_task(self, registry, clock):
        first = CollaborationManager(registry, clock=clock)
        task = open_task(first, target="drake")
        snapshot = type(task).from_dict(task.to_dict())

        restored = CollaborationManager(registry, clock=clock).restore(snapshot)
        assert restored.status is TaskStatus.FAILED
        assert registry.get("drake").current_load == 1

    def test_terminal_task_rejected(self, manager):
        task = open_task(manager)
        manager.reject(task.id)
        with pytest.raises(ValueError):
            manager.restore(task)


class TestHousekeeping:
    def test_history_newest_first(self, manager, clock):
        older = open_task(manager)
        clock.advance(5)
        newer = open_task(manager)
        assert manager.history() == [newer, older]
        assert manager.history("pearl") == [newer, older]
        assert manager.history("drake") == []

    def test_cleanup_completed(self, manager, clock):
        done = open_task(manager)
        manager.reject(done.id)
        live = open_task(manager)
        clock.advance(3601)

        assert manager.cleanup_completed(3600) == 1
        assert manager.list_tasks() == [live]

    def test_stats(self, manager):
        done = open_task(manager)
        manager.accept(done.id)
        manager.start(done.id)
        manager.complete(done.id)
        open_task(manager, target="drake")

        stats = manager.get_stats()
        assert stats["total"] == 2
        assert stats["completed"] == 1
        assert stats["success_rate"] == 50.0
        assert stats["by_type"] == {"delegation": 2}
        assert stats["by_worker"] == {"anchor": 2, "pearl": 1, "drake": 1}
        assert stats["active"] == 1
