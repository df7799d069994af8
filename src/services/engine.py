# services/engine.py
"""
Single-writer reconciliation engine.

Events are applied one at a time. Each event gets its own ReconciliationStep; the
reconciler mutates entities inside the step, the InvariantGuard checks the step,
and the whole changeset is committed at once. An event that is skipped, rejected
or fails leaves every entity untouched.
"""

import logging
from collections import Counter
from typing import Dict, Iterable, Optional, Tuple

from services.dispatch import EventDispatcher
from services.entities import OUT_OF_ORDER
from services.errors import RecordCollisionError
from services.events import ProtocolEvent
from services.reconcilers.base import Outcome, ReconciliationStep
from services.store.base import Changeset, EntityStore
from services.validators.invariant_guard import InvariantGuard


class ReconciliationEngine:
    def __init__(
        self,
        store: EntityStore,
        logger: logging.Logger,
        dispatcher: Optional[EventDispatcher] = None,
        guard: Optional[InvariantGuard] = None,
    ):
        self.store = store
        self.logger = logger
        self.dispatcher = dispatcher or EventDispatcher(logger)
        self.guard = guard or InvariantGuard(logger)

    def process(self, event: ProtocolEvent) -> Outcome:
        """
        Apply one event and commit its changeset.

        Replays of an applied event are detected through its primary record id and
        skipped, so counters are never incremented twice. Any error raised while
        reading or writing the store is reported as a failed outcome.
        """
        event_id = event.event_id
        step: Optional[ReconciliationStep] = None
        position: Optional[Tuple[int, int]] = None

        try:
            if self.store.has_record(event_id):
                self.logger.info(f"{event.EVENT_TYPE} {event_id} already applied, skipping replay")
                return Outcome.skipped(f"duplicate event {event_id}")

            reconciler = self.dispatcher.reconciler_for(event)
            if reconciler is None:
                self.logger.warning(f"No reconciler for event type {event.EVENT_TYPE} ({event_id}), dropping")
                return Outcome.skipped(f"unsupported event type {event.EVENT_TYPE}")

            step = ReconciliationStep(self.store, event, self.logger)
            position = self._next_position(step)

            outcome = reconciler.apply(step, event)
            if outcome.is_applied:
                self.guard.check(step)
                changeset = step.changeset()
                changeset.position = position
                self.store.commit(changeset)
                return outcome
        except RecordCollisionError as exc:
            outcome = Outcome.rejected(str(exc))
        except Exception as exc:
            self.logger.error(
                f"Failed to reconcile {event.EVENT_TYPE} {event_id}: {type(exc).__name__}: {exc}"
            )
            outcome = Outcome.failed(f"{type(exc).__name__}: {exc}")

        self.logger.info(f"{event.EVENT_TYPE} {event_id} {outcome.status}: {outcome.reason}")
        if step is not None and position is not None:
            self._advance(step, position)
        return outcome

    def process_many(self, events: Iterable[ProtocolEvent]) -> Dict[str, int]:
        """Apply events in order and count outcomes by status."""
        statuses = Counter()
        for event in events:
            statuses[self.process(event).status] += 1
        return dict(statuses)

    def mark_position(self, position: Tuple[int, int]) -> None:
        """Move the committed stream position past rows that never became events."""
        last = self.store.last_position()
        if last is None or position > last:
            self.store.commit(Changeset([], [], [], position))

    def _next_position(self, step: ReconciliationStep) -> Tuple[int, int]:
        event = step.event
        last = self.store.last_position()
        if last is None:
            return event.position
        if event.position <= last:
            step.note_anomaly(
                OUT_OF_ORDER,
                f"position {event.position} does not follow last committed position {last}",
            )
            return last
        return event.position

    def _advance(self, step: ReconciliationStep, position: Tuple[int, int]) -> None:
        # Entities are discarded; only anomalies and the stream position are kept
        try:
            self.store.commit(Changeset([], [], list(step.anomalies), position))
        except Exception as exc:
            self.logger.error(
                f"Failed to record position {position} for {step.event_id}: {exc}"
            )
