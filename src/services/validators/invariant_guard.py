# services/validators/invariant_guard.py

import logging
from typing import Set

from services.entities import (
    DANGLING_FOREIGN_KEY,
    NEGATIVE_COUNTER,
    RECORD_FOREIGN_KEYS,
    SHARE_EVENT,
    Entity,
)
from services.errors import RecordCollisionError
from services.reconcilers.base import ReconciliationStep


class InvariantGuard:
    """
    Cross-entity checks run on a step after its reconciler and before commit.

    - Counter fields never persist below zero: they are clamped to 0 and an
      anomaly is recorded.
    - Record foreign keys must point at entities loaded or created in the step:
      a dangling key is detached (kept in the record data) and recorded.
    - Record ids are unique: a collision raises RecordCollisionError and the
      engine rejects the event.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def check(self, step: ReconciliationStep) -> None:
        """
        Enforce every invariant on the step in place.

        Raises:
            RecordCollisionError: If a derived record id repeats or already exists
        """
        self._check_record_ids(step)
        self._clamp_counters(step)
        self._check_foreign_keys(step)

    def _check_record_ids(self, step: ReconciliationStep) -> None:
        seen: Set[str] = set()
        for record in step.records:
            if record.id in seen or step.store.has_record(record.id):
                self.logger.critical(
                    f"Record id collision for {record.id} ({record.record_type}) "
                    f"at event {step.event_id}"
                )
                raise RecordCollisionError(record.id, step.event_id)
            seen.add(record.id)

    def _clamp_counters(self, step: ReconciliationStep) -> None:
        for entity in step.resolver.tracked_entities():
            for field_name in entity.COUNTER_FIELDS:
                value = getattr(entity, field_name)
                if value >= 0:
                    continue

                step.note_anomaly(
                    NEGATIVE_COUNTER,
                    f"{field_name} would be {value}, clamped to 0",
                    entity=entity,
                    field_name=field_name,
                    severity="ERROR",
                )
                setattr(entity, field_name, 0)
                if field_name == "total_shares":
                    self._restate_share_record(step, entity, value)

    def _restate_share_record(self, step: ReconciliationStep, entity: Entity, value: int) -> None:
        """
        Rewrite the step's share record so it matches the clamped total.

        The delta becomes the change that was actually stored; the reported
        figures are kept under clamped_from and unclamped_shares_delta.
        """
        column = next(c for c, kind in RECORD_FOREIGN_KEYS.items() if kind == entity.KIND)
        for record in reversed(step.records):
            if record.record_type != SHARE_EVENT or getattr(record, column) != entity.id:
                continue
            record.data["clamped_from"] = record.data["new_total_shares"]
            record.data["unclamped_shares_delta"] = record.data["shares_delta"]
            record.data["new_total_shares"] = 0
            record.data["shares_delta"] = record.data["shares_delta"] - value
            return

    def _check_foreign_keys(self, step: ReconciliationStep) -> None:
        for record in step.records:
            for column, entity_id in record.foreign_keys().items():
                kind = RECORD_FOREIGN_KEYS[column]
                if step.resolver.is_tracked(kind, entity_id):
                    continue

                step.note_anomaly(
                    DANGLING_FOREIGN_KEY,
                    f"record {record.id} {column} -> {kind} {entity_id} was not loaded "
                    f"in this step, detaching",
                    field_name=column,
                    severity="ERROR",
                )
                record.data[f"unresolved_{column}"] = entity_id
                setattr(record, column, None)
