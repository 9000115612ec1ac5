"""
Tests for the operation engine — transitions, exclusion, cancellation.
"""

import threading
import uuid

import pytest

from initium.core.engine.operations import OperationStateMachine, error_from
from initium.core.errors import (
    ConflictError,
    ExternalActionError,
    InvalidTransitionError,
    TooLateError,
)
from initium.core.models.metrics import MetricSnapshot
from initium.core.models.operation import OperationKind, OperationState
from initium.core.services.event_bus import EventBus

CREATE = OperationKind.BACKUP_CREATE
INSTALL = OperationKind.SERVICE_INSTALL


@pytest.fixture
def machine():
    m = OperationStateMachine()
    yield m
    m.shutdown()


# ── Manual transitions ──────────────────────────────────────────────


class TestTransitions:
    def test_initially_idle(self, machine):
        for kind in OperationKind:
            assert machine.state(kind) == OperationState.IDLE
            assert machine.current_record(kind) is None
        assert machine.records() == {}

    def test_request(self, machine):
        record = machine.request(CREATE, {"name": "x"})
        assert record.state == OperationState.REQUESTED
        assert record.kind == CREATE
        assert record.payload == {"name": "x"}
        assert record.progress is None
        assert record.started_at is None
        assert machine.current_record(CREATE) == record

    def test_full_success_path(self, machine):
        record = machine.request(CREATE)
        running = machine.begin(CREATE)
        assert running.state == OperationState.RUNNING
        assert running.started_at is not None
        assert running.progress == 0.0

        machine.report_progress(CREATE, 0.4)
        assert machine.current_record(CREATE).progress == 0.4

        done = machine.complete(CREATE, {"ok": True})
        assert done.state == OperationState.SUCCEEDED
        assert done.id == record.id
        assert done.result == {"ok": True}
        assert done.progress == 1.0
        assert done.finished_at >= done.started_at
        assert done.duration_s is not None

    def test_fail_keeps_partial_progress(self, machine):
        machine.request(CREATE)
        machine.begin(CREATE)
        machine.report_progress(CREATE, 0.3)
        failed = machine.fail(CREATE, ExternalActionError("disk full"))
        assert failed.state == OperationState.FAILED
        assert failed.progress == 0.3
        assert failed.error.kind == "external_action"
        assert failed.error.message == "disk full"
        assert failed.finished_at is not None

    def test_progress_out_of_range(self, machine):
        machine.request(CREATE)
        machine.begin(CREATE)
        with pytest.raises(ValueError):
            machine.report_progress(CREATE, 1.5)
        with pytest.raises(ValueError):
            machine.report_progress(CREATE, -0.1)

    def test_progress_only_while_running(self, machine):
        machine.request(CREATE)
        with pytest.raises(InvalidTransitionError):
            machine.report_progress(CREATE, 0.5)
        assert machine.current_record(CREATE).progress is None

    def test_begin_requires_requested(self, machine):
        with pytest.raises(InvalidTransitionError):
            machine.begin(CREATE)
        machine.request(CREATE)
        machine.begin(CREATE)
        with pytest.raises(InvalidTransitionError):
            machine.begin(CREATE)

    def test_complete_requires_running(self, machine):
        machine.request(CREATE)
        with pytest.raises(InvalidTransitionError):
            machine.complete(CREATE)
        assert machine.state(CREATE) == OperationState.REQUESTED

    def test_terminal_states_are_absorbing(self, machine):
        machine.request(CREATE)
        machine.begin(CREATE)
        machine.complete(CREATE)
        with pytest.raises(InvalidTransitionError):
            machine.fail(CREATE, "late")
        with pytest.raises(InvalidTransitionError):
            machine.complete(CREATE)
        assert machine.state(CREATE) == OperationState.SUCCEEDED

    def test_stale_operation_id_rejected(self, machine):
        machine.request(CREATE)
        with pytest.raises(InvalidTransitionError):
            machine.begin(CREATE, operation_id=uuid.uuid4())


# ── Mutual exclusion ────────────────────────────────────────────────


class TestConflicts:
    def test_second_request_conflicts(self, machine):
        first = machine.request(CREATE)
        machine.begin(CREATE)
        with pytest.raises(ConflictError):
            machine.request(CREATE)
        assert machine.current_record(CREATE).id == first.id

    def test_requested_slot_conflicts(self, machine):
        first = machine.request(CREATE)
        with pytest.raises(ConflictError):
            machine.request(CREATE)
        assert machine.current_record(CREATE).id == first.id

    def test_uncleared_terminal_conflicts(self, machine):
        machine.request(CREATE)
        machine.begin(CREATE)
        machine.complete(CREATE)
        with pytest.raises(ConflictError):
            machine.request(CREATE)

    def test_supersede_clears_terminal(self, machine):
        old = machine.request(CREATE)
        machine.begin(CREATE)
        machine.complete(CREATE)
        new = machine.request(CREATE, supersede=True)
        assert new.id != old.id
        assert machine.history(CREATE)[0].id == old.id

    def test_supersede_never_overrides_running(self, machine):
        machine.request(CREATE)
        machine.begin(CREATE)
        with pytest.raises(ConflictError):
            machine.request(CREATE, supersede=True)

    def test_kinds_are_independent(self, machine):
        machine.request(CREATE)
        machine.begin(CREATE)
        other = machine.request(INSTALL)
        assert other.state == OperationState.REQUESTED
        assert machine.is_busy(CREATE)
        assert machine.is_busy(INSTALL)

    def test_concurrent_requests_admit_exactly_one(self, machine):
        barrier = threading.Barrier(8)
        admitted, conflicts = [], []

        def attempt():
            barrier.wait()
            try:
                admitted.append(machine.request(CREATE))
            except ConflictError:
                conflicts.append(1)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5.0)

        assert len(admitted) == 1
        assert len(conflicts) == 7
        assert machine.current_record(CREATE).id == admitted[0].id


# ── Cancel and clear ────────────────────────────────────────────────


class TestCancelAndClear:
    def test_cancel_running(self, machine):
        record = machine.request(CREATE)
        machine.begin(CREATE)
        cancelled = machine.cancel(CREATE)
        assert cancelled.state == OperationState.CANCELLED
        assert cancelled.id == record.id
        assert cancelled.finished_at is not None

    def test_cancel_after_success_is_too_late(self, machine):
        machine.request(CREATE)
        machine.begin(CREATE)
        machine.complete(CREATE, "done")
        with pytest.raises(TooLateError):
            machine.cancel(CREATE)
        assert machine.state(CREATE) == OperationState.SUCCEEDED

    def test_cancel_idle_is_too_late(self, machine):
        with pytest.raises(TooLateError):
            machine.cancel(CREATE)

    def test_cancel_requested_is_too_late(self, machine):
        machine.request(CREATE)
        with pytest.raises(TooLateError):
            machine.cancel(CREATE)
        assert machine.state(CREATE) == OperationState.REQUESTED

    def test_clear_terminal(self, machine):
        record = machine.request(CREATE)
        machine.begin(CREATE)
        machine.fail(CREATE, "nope")
        cleared = machine.clear(CREATE)
        assert cleared.id == record.id
        assert machine.state(CREATE) == OperationState.IDLE
        assert machine.history() == [cleared]
        machine.request(CREATE)

    def test_clear_running_is_too_late(self, machine):
        machine.request(CREATE)
        machine.begin(CREATE)
        with pytest.raises(TooLateError):
            machine.clear(CREATE)
        assert machine.state(CREATE) == OperationState.RUNNING

    def test_clear_idle_is_too_late(self, machine):
        with pytest.raises(TooLateError):
            machine.clear(CREATE)


# ── Driving actions ─────────────────────────────────────────────────


class TestDriving:
    def test_run_success(self, machine):
        record = machine.run(CREATE, lambda ctx: {"payload": ctx.payload}, payload=7)
        assert record.state == OperationState.SUCCEEDED
        assert record.result == {"payload": 7}

    def test_run_failure_is_recorded(self, machine):
        def perform(ctx):
            ctx.report_progress(0.25)
            raise RuntimeError("mover exploded")

        record = machine.run(CREATE, perform)
        assert record.state == OperationState.FAILED
        assert record.progress == 0.25
        assert record.error.kind == "external_action"
        assert "mover exploded" in record.error.message

    def test_start_resolves_future(self, machine):
        future = machine.start(CREATE, lambda ctx: 42)
        record = future.result(timeout=5)
        assert record.state == OperationState.SUCCEEDED
        assert record.result == 42

    def test_start_conflict_is_synchronous(self, machine):
        gate = threading.Event()
        future = machine.start(CREATE, lambda ctx: gate.wait(5))
        with pytest.raises(ConflictError):
            machine.start(CREATE, lambda ctx: None)
        gate.set()
        assert future.result(timeout=5).state == OperationState.SUCCEEDED

    def test_cancel_cooperative_action(self, machine):
        started = threading.Event()
        stopped = threading.Event()

        def perform(ctx):
            started.set()
            while True:
                if ctx.cancelled:
                    stopped.set()
                ctx.checkpoint()
                threading.Event().wait(0.01)

        future = machine.start(CREATE, perform)
        assert started.wait(5)
        cancelled = machine.cancel(CREATE)
        record = future.result(timeout=5)

        assert stopped.is_set()
        assert record.state == OperationState.CANCELLED
        assert record.id == cancelled.id

    def test_completion_after_cancel_is_ignored(self, machine):
        proceed = threading.Event()

        def perform(ctx):
            proceed.wait(5)
            return "finished anyway"

        future = machine.start(CREATE, perform)
        machine.cancel(CREATE)
        proceed.set()
        record = future.result(timeout=5)

        assert record.state == OperationState.CANCELLED
        assert record.result is None

    def test_cancelled_action_holds_slot_until_it_returns(self, machine):
        entered = threading.Event()
        release = threading.Event()

        def blocked(ctx):
            entered.set()
            release.wait(5)
            return "ignored"

        future = machine.start(CREATE, blocked)
        assert entered.wait(5)
        cancelled = machine.cancel(CREATE)

        with pytest.raises(ConflictError):
            machine.request(CREATE, supersede=True)
        with pytest.raises(ConflictError):
            machine.start(CREATE, lambda ctx: None, supersede=True)
        assert machine.current_record(CREATE).id == cancelled.id

        release.set()
        assert future.result(timeout=5).state == OperationState.CANCELLED
        second = machine.request(CREATE, supersede=True)
        assert second.id != cancelled.id

    def test_manual_request_does_not_hold_slot(self, machine):
        machine.request(CREATE)
        machine.begin(CREATE)
        machine.cancel(CREATE)
        assert machine.request(CREATE, supersede=True).state == OperationState.REQUESTED

    def test_end_to_end_then_conflict(self, machine):
        gate = threading.Event()

        def perform(ctx):
            ctx.report_progress(0.5)
            gate.wait(5)
            return {"name": "nightly"}

        future = machine.start(CREATE, perform)
        with pytest.raises(ConflictError):
            machine.request(CREATE)
        gate.set()

        record = future.result(timeout=5)
        assert record.state == OperationState.SUCCEEDED
        assert record.progress == 1.0
        with pytest.raises(ConflictError):
            machine.request(CREATE)


# ── Impact and events ───────────────────────────────────────────────


class TestImpactAndEvents:
    def test_impact_attached_with_metrics_provider(self):
        snapshots = iter([
            MetricSnapshot(boot_time_seconds=10, memory_usage_pct=40),
            MetricSnapshot(boot_time_seconds=12, memory_usage_pct=43),
        ])
        machine = OperationStateMachine(metrics_provider=lambda: next(snapshots))
        record = machine.run(INSTALL, lambda ctx: None)
        assert record.impact is not None
        assert record.impact.impact_score == pytest.approx(5.0)
        assert record.impact.change_id == record.id

    def test_no_impact_without_provider(self, machine):
        assert machine.run(INSTALL, lambda ctx: None).impact is None

    def test_failing_metrics_provider_is_tolerated(self):
        def broken():
            raise OSError("no /proc")

        machine = OperationStateMachine(metrics_provider=broken)
        record = machine.run(INSTALL, lambda ctx: "ok")
        assert record.state == OperationState.SUCCEEDED
        assert record.impact is None

    def test_lifecycle_events(self):
        bus = EventBus()
        machine = OperationStateMachine(bus=bus)
        machine.run(CREATE, lambda ctx: ctx.report_progress(0.5))
        types = [e["type"] for e in bus.events_since(0)]
        assert types == ["op:requested", "op:running", "op:progress", "op:succeeded"]
        assert bus.latest("backupCreate")["data"]["state"] == "succeeded"


class TestErrorFrom:
    def test_typed_error_keeps_kind(self):
        err = error_from(TooLateError("late"))
        assert (err.kind, err.message) == ("too_late", "late")

    def test_foreign_exception_is_external(self):
        err = error_from(KeyError("x"))
        assert err.kind == "external_action"
        assert err.message.startswith("KeyError")

    def test_string(self):
        assert error_from("boom").message == "boom"
