"""
Operation engine — drives long-running operations through a closed
state machine, one operation per kind at a time.

States:
    IDLE       → No record for the kind (initial, and after clear).
    REQUESTED  → Record created, work not started.
    RUNNING    → Work in progress; progress updates allowed.
    SUCCEEDED  → Terminal. Result stored.
    FAILED     → Terminal. Error stored, partial progress kept.
    CANCELLED  → Terminal. Cancellation was requested while running.

Transitions:
    IDLE → REQUESTED:        request   (ConflictError if the slot is occupied)
    REQUESTED → RUNNING:     begin
    RUNNING → SUCCEEDED:     complete
    RUNNING → FAILED:        fail
    RUNNING → CANCELLED:     cancel    (TooLateError once terminal)
    terminal → IDLE:         clear     (TooLateError while non-terminal)

Mutual exclusion is per kind: every kind owns a slot with its own lock,
and ``request`` is a compare-and-set on that slot. Operations of
different kinds never contend. Records are frozen and replaced whole,
so ``current_record`` reads the slot reference without locking.

Cancellation is cooperative. ``cancel`` settles the record as
CANCELLED and sets the operation's signal; the driven action observes
it at its next ``checkpoint()`` and stops. Until that action has
returned the slot still counts as occupied, so no second action of the
same kind can start beside it. Nothing is killed, nothing is rolled
back, and nothing is retried.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any

from initium.core.errors import (
    ConflictError,
    ExternalActionError,
    InitiumError,
    InvalidTransitionError,
    OperationCancelled,
    TooLateError,
)
from initium.core.models.metrics import MetricSnapshot
from initium.core.models.operation import (
    OperationError,
    OperationKind,
    OperationRecord,
    OperationState,
)
from initium.core.services.event_bus import EventBus, publish_safe
from initium.core.services.evolution import EvolutionScorer

logger = logging.getLogger(__name__)

_HISTORY_MAX = 200  # keep last N cleared records

MetricsProvider = Callable[[], MetricSnapshot]


def _now() -> datetime:
    return datetime.now(UTC)


def error_from(exc: BaseException | str) -> OperationError:
    """Normalize a failure into the record's error shape."""
    if isinstance(exc, str):
        return OperationError(kind=ExternalActionError.kind, message=exc)
    if isinstance(exc, InitiumError):
        return OperationError(kind=exc.kind, message=str(exc))
    return OperationError(
        kind=ExternalActionError.kind,
        message=f"{type(exc).__name__}: {exc}",
    )


class _Slot:
    """Per-kind state: the current record and its cancellation signal."""

    __slots__ = ("lock", "record", "cancel_event", "before", "driving")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.record: OperationRecord | None = None
        self.cancel_event = threading.Event()
        self.before: MetricSnapshot | None = None
        # Id of the operation whose action has not returned yet
        self.driving: uuid.UUID | None = None


class OperationContext:
    """What an opaque action sees of the operation driving it."""

    def __init__(
        self,
        machine: OperationStateMachine,
        record: OperationRecord,
        cancel_event: threading.Event,
    ) -> None:
        self._machine = machine
        self._cancel_event = cancel_event
        self.operation_id = record.id
        self.kind = record.kind
        self.payload = record.payload

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def checkpoint(self) -> None:
        """Stop here if cancellation was requested."""
        if self._cancel_event.is_set():
            raise OperationCancelled(f"{self.kind.value} cancelled")

    def report_progress(self, fraction: float) -> None:
        """Publish progress in [0, 1]. Doubles as a checkpoint."""
        self.checkpoint()
        self._machine.report_progress(self.kind, fraction, operation_id=self.operation_id)

    def __repr__(self) -> str:
        return f"<OperationContext kind={self.kind.value} id={self.operation_id}>"


PerformFn = Callable[[OperationContext], Any]


class OperationStateMachine:
    """Generic engine for backup and service operations.

    Args:
        executor: Runs action bodies for :meth:`start`
            (default: a private thread pool created on first use).
        metrics_provider: Optional snapshot source. When set, a snapshot is
            taken at ``begin`` and at successful completion, and the impact
            score is attached to the record.
        scorer: Impact scorer (default: :class:`EvolutionScorer`).
        bus: Optional event bus for ``op:*`` lifecycle events.
        log: Logging sink (default: this module's logger).
    """

    def __init__(
        self,
        *,
        executor: Executor | None = None,
        metrics_provider: MetricsProvider | None = None,
        scorer: EvolutionScorer | None = None,
        bus: EventBus | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._slots: dict[OperationKind, _Slot] = {kind: _Slot() for kind in OperationKind}
        self._executor = executor
        self._owns_executor = executor is None
        self._executor_lock = threading.Lock()
        self._metrics_provider = metrics_provider
        self._scorer = scorer or EvolutionScorer()
        self._bus = bus
        self._log = log or logger
        self._history: deque[OperationRecord] = deque(maxlen=_HISTORY_MAX)

    # ── Queries (never block on the operation itself) ──────────

    def current_record(self, kind: OperationKind) -> OperationRecord | None:
        """Latest snapshot for ``kind``, or None when idle."""
        return self._slots[OperationKind(kind)].record

    def state(self, kind: OperationKind) -> OperationState:
        record = self.current_record(kind)
        return record.state if record is not None else OperationState.IDLE

    def records(self) -> dict[OperationKind, OperationRecord]:
        """Every non-idle slot."""
        return {
            kind: slot.record
            for kind, slot in self._slots.items()
            if slot.record is not None
        }

    def is_busy(self, kind: OperationKind) -> bool:
        record = self.current_record(kind)
        return record is not None and not record.terminal

    def history(self, kind: OperationKind | None = None) -> list[OperationRecord]:
        """Cleared records, newest first."""
        entries = list(self._history)
        entries.reverse()
        if kind is None:
            return entries
        return [r for r in entries if r.kind == kind]

    # ── Transitions ─────────────────────────────────────────────

    def request(
        self,
        kind: OperationKind,
        payload: Any = None,
        *,
        supersede: bool = False,
    ) -> OperationRecord:
        """IDLE → REQUESTED.

        Args:
            supersede: Clear a terminal record left in the slot first.
                A non-terminal record always conflicts, and so does a
                cancelled one whose action has not returned yet.

        Raises:
            ConflictError: The slot for ``kind`` is occupied.
        """
        return self._request(kind, payload, supersede=supersede, driven=False)

    def _request(
        self,
        kind: OperationKind,
        payload: Any,
        *,
        supersede: bool,
        driven: bool,
    ) -> OperationRecord:
        kind = OperationKind(kind)
        slot = self._slots[kind]
        with slot.lock:
            if slot.driving is not None:
                raise ConflictError(
                    f"The previous {kind.value} action (id={slot.driving}) is still returning"
                )
            current = slot.record
            if current is not None:
                if not current.terminal:
                    raise ConflictError(
                        f"A {kind.value} operation is already {current.state.value} "
                        f"(id={current.id})"
                    )
                if not supersede:
                    raise ConflictError(
                        f"The previous {kind.value} operation ({current.state.value}) "
                        "has not been cleared"
                    )
                self._history.append(current)

            record = OperationRecord(kind=kind, payload=payload)
            slot.record = record
            slot.cancel_event = threading.Event()
            slot.before = None
            slot.driving = record.id if driven else None

        self._log.info("Operation requested: %s (id=%s)", kind.value, record.id)
        self._publish("op:requested", record)
        return record

    def begin(
        self,
        kind: OperationKind,
        *,
        operation_id: uuid.UUID | None = None,
    ) -> OperationRecord:
        """REQUESTED → RUNNING. Marks ``started_at``."""
        kind = OperationKind(kind)
        slot = self._slots[kind]
        before = self._snapshot()
        with slot.lock:
            current = self._expect(slot, kind, OperationState.REQUESTED, "begin", operation_id)
            record = current.evolve(
                state=OperationState.RUNNING,
                started_at=_now(),
                progress=0.0,
            )
            slot.record = record
            slot.before = before

        self._log.info("Operation running: %s (id=%s)", kind.value, record.id)
        self._publish("op:running", record)
        return record

    def report_progress(
        self,
        kind: OperationKind,
        fraction: float,
        *,
        operation_id: uuid.UUID | None = None,
    ) -> OperationRecord:
        """Update progress while RUNNING."""
        kind = OperationKind(kind)
        fraction = float(fraction)
        if not 0.0 <= fraction <= 1.0:
            raise ValueError(f"Progress must be within [0, 1], got {fraction}")

        slot = self._slots[kind]
        with slot.lock:
            current = self._expect(slot, kind, OperationState.RUNNING, "progress", operation_id)
            record = current.evolve(progress=fraction)
            slot.record = record

        self._publish("op:progress", record)
        return record

    def complete(
        self,
        kind: OperationKind,
        result: Any = None,
        *,
        operation_id: uuid.UUID | None = None,
    ) -> OperationRecord:
        """RUNNING → SUCCEEDED. Stores ``result`` and, if configured, the impact."""
        kind = OperationKind(kind)
        slot = self._slots[kind]
        after = self._snapshot() if slot.before is not None else None
        with slot.lock:
            current = self._expect(slot, kind, OperationState.RUNNING, "complete", operation_id)
            impact = None
            if slot.before is not None and after is not None:
                impact = self._scorer.impact(slot.before, after, change_id=current.id)
            record = current.evolve(
                state=OperationState.SUCCEEDED,
                finished_at=_now(),
                progress=1.0,
                result=result,
                impact=impact,
            )
            slot.record = record

        self._log.info(
            "Operation succeeded: %s (id=%s, %.2fs)",
            kind.value, record.id, record.duration_s or 0.0,
        )
        self._publish("op:succeeded", record)
        return record

    def fail(
        self,
        kind: OperationKind,
        error: BaseException | str,
        *,
        operation_id: uuid.UUID | None = None,
    ) -> OperationRecord:
        """RUNNING → FAILED. Partial progress is kept for diagnostics."""
        kind = OperationKind(kind)
        slot = self._slots[kind]
        with slot.lock:
            current = self._expect(slot, kind, OperationState.RUNNING, "fail", operation_id)
            record = current.evolve(
                state=OperationState.FAILED,
                finished_at=_now(),
                error=error_from(error),
            )
            slot.record = record

        assert record.error is not None
        self._log.warning(
            "Operation failed: %s (id=%s): [%s] %s",
            kind.value, record.id, record.error.kind, record.error.message,
        )
        self._publish("op:failed", record)
        return record

    def cancel(self, kind: OperationKind) -> OperationRecord:
        """RUNNING → CANCELLED and signal the running action.

        Raises:
            TooLateError: No running operation for ``kind``; state unchanged.
        """
        kind = OperationKind(kind)
        slot = self._slots[kind]
        with slot.lock:
            current = slot.record
            if current is None or current.state != OperationState.RUNNING:
                state = current.state.value if current is not None else OperationState.IDLE.value
                raise TooLateError(f"Cannot cancel {kind.value}: operation is {state}")
            slot.cancel_event.set()
            record = current.evolve(
                state=OperationState.CANCELLED,
                finished_at=_now(),
            )
            slot.record = record

        self._log.info("Operation cancelled: %s (id=%s)", kind.value, record.id)
        self._publish("op:cancelled", record)
        return record

    def clear(self, kind: OperationKind) -> OperationRecord:
        """terminal → IDLE. Returns the cleared record.

        Raises:
            TooLateError: Nothing to clear, or the operation is still in flight.
        """
        kind = OperationKind(kind)
        slot = self._slots[kind]
        with slot.lock:
            current = slot.record
            if current is None:
                raise TooLateError(f"Cannot clear {kind.value}: nothing to clear")
            if not current.terminal:
                raise TooLateError(
                    f"Cannot clear {kind.value}: operation is still {current.state.value}"
                )
            slot.record = None
            slot.before = None
            self._history.append(current)

        self._log.debug("Operation cleared: %s (id=%s)", kind.value, current.id)
        self._publish("op:cleared", current)
        return current

    # ── Driving opaque actions ──────────────────────────────────

    def start(
        self,
        kind: OperationKind,
        perform: PerformFn,
        payload: Any = None,
        *,
        supersede: bool = False,
    ) -> Future[OperationRecord]:
        """Request, begin, and run ``perform(ctx)`` in the background.

        ``perform`` returns a result, raises to fail, or stops at a
        checkpoint after cancellation. The returned future resolves to
        the terminal record. Conflicts are raised here, synchronously.

        The slot stays occupied until ``perform`` has returned, even after
        a cancel has already settled the record.
        """
        ctx = self._prepare(kind, payload, supersede)
        try:
            return self._get_executor().submit(self._drive, ctx, perform)
        except BaseException:
            self._release(ctx)
            raise

    def run(
        self,
        kind: OperationKind,
        perform: PerformFn,
        payload: Any = None,
        *,
        supersede: bool = False,
    ) -> OperationRecord:
        """Like :meth:`start`, but run in the calling thread and return the terminal record."""
        return self._drive(self._prepare(kind, payload, supersede), perform)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the private thread pool, if one was created."""
        with self._executor_lock:
            if self._owns_executor and self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None

    def _prepare(self, kind: OperationKind, payload: Any, supersede: bool) -> OperationContext:
        """Request and begin an operation whose action the engine will drive."""
        record = self._request(kind, payload, supersede=supersede, driven=True)
        slot = self._slots[record.kind]
        ctx = OperationContext(self, record, slot.cancel_event)
        try:
            self.begin(record.kind, operation_id=record.id)
        except BaseException:
            self._release(ctx)
            raise
        return ctx

    def _release(self, ctx: OperationContext) -> None:
        """Free the slot for new requests once the action has returned."""
        slot = self._slots[ctx.kind]
        with slot.lock:
            if slot.driving == ctx.operation_id:
                slot.driving = None

    def _drive(self, ctx: OperationContext, perform: PerformFn) -> OperationRecord:
        try:
            try:
                result = perform(ctx)
            except OperationCancelled:
                return self._settle_cancelled(ctx)
            except Exception as exc:
                if ctx.cancelled:
                    return self._settle_cancelled(ctx)
                return self._settle(
                    ctx, lambda: self.fail(ctx.kind, exc, operation_id=ctx.operation_id)
                )

            if ctx.cancelled:
                return self._settle_cancelled(ctx)
            return self._settle(
                ctx, lambda: self.complete(ctx.kind, result, operation_id=ctx.operation_id)
            )
        finally:
            self._release(ctx)

    def _settle(
        self,
        ctx: OperationContext,
        transition: Callable[[], OperationRecord],
    ) -> OperationRecord:
        try:
            return transition()
        except InvalidTransitionError:
            # Cancelled between the action returning and the transition
            return self._current_for(ctx)

    def _settle_cancelled(self, ctx: OperationContext) -> OperationRecord:
        """Record an action that stopped on its own cancellation signal."""
        slot = self._slots[ctx.kind]
        with slot.lock:
            current = slot.record
            if (
                current is not None
                and current.id == ctx.operation_id
                and current.state == OperationState.RUNNING
            ):
                slot.record = current.evolve(
                    state=OperationState.CANCELLED,
                    finished_at=_now(),
                )
                self._log.info("Operation stopped itself: %s (id=%s)", ctx.kind.value, current.id)
                self._publish("op:cancelled", slot.record)
        return self._current_for(ctx)

    def _current_for(self, ctx: OperationContext) -> OperationRecord:
        record = self.current_record(ctx.kind)
        if record is not None and record.id == ctx.operation_id:
            return record
        # Cleared (and possibly re-requested) meanwhile: report from history
        for entry in reversed(self._history):
            if entry.id == ctx.operation_id:
                return entry
        raise InvalidTransitionError(f"Operation {ctx.operation_id} is no longer tracked")

    # ── Internal helpers ────────────────────────────────────────

    def _expect(
        self,
        slot: _Slot,
        kind: OperationKind,
        state: OperationState,
        action: str,
        operation_id: uuid.UUID | None,
    ) -> OperationRecord:
        """Return the slot's record if it is in ``state`` (caller holds the lock)."""
        current = slot.record
        if current is None:
            raise InvalidTransitionError(f"Cannot {action} {kind.value}: no operation requested")
        if operation_id is not None and current.id != operation_id:
            raise InvalidTransitionError(
                f"Cannot {action} {kind.value}: operation {operation_id} is no longer current"
            )
        if current.state != state:
            raise InvalidTransitionError(
                f"Cannot {action} {kind.value}: operation is {current.state.value}"
            )
        return current

    def _snapshot(self) -> MetricSnapshot | None:
        if self._metrics_provider is None:
            return None
        try:
            return self._metrics_provider()
        except Exception as e:
            self._log.warning("Metrics snapshot failed: %s", e)
            return None

    def _get_executor(self) -> Executor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=len(OperationKind),
                    thread_name_prefix="operation",
                )
            return self._executor

    def _publish(self, event_type: str, record: OperationRecord) -> None:
        publish_safe(
            self._bus,
            event_type,
            key=record.kind.value,
            data={
                "id": str(record.id),
                "state": record.state.value,
                "progress": record.progress,
                "error": record.error.model_dump() if record.error else None,
            },
        )
