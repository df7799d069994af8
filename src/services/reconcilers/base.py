# services/reconcilers/base.py

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from services.entities import Anomaly, Entity, EventRecord
from services.errors import MissingParentError
from services.events import ProtocolEvent
from services.identity import IdentityResolver, record_id
from services.store.base import Changeset, EntityStore

APPLIED = "applied"
SKIPPED = "skipped"
REJECTED = "rejected"
FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    status: str
    reason: Optional[str] = None

    @classmethod
    def applied(cls) -> "Outcome":
        return cls(APPLIED)

    @classmethod
    def skipped(cls, reason: str) -> "Outcome":
        return cls(SKIPPED, reason)

    @classmethod
    def rejected(cls, reason: str) -> "Outcome":
        return cls(REJECTED, reason)

    @classmethod
    def failed(cls, reason: str) -> "Outcome":
        return cls(FAILED, reason)

    @property
    def is_applied(self) -> bool:
        return self.status == APPLIED


class ReconciliationStep:
    """
    Working set for a single event.

    Reconcilers read and mutate entities only through the step. Nothing reaches the
    store until the engine commits the step's changeset, so a skipped or failed
    event leaves stored state untouched.
    """

    def __init__(self, store: EntityStore, event: ProtocolEvent, logger: logging.Logger):
        self.store = store
        self.event = event
        self.logger = logger
        self.resolver = IdentityResolver(store, logger)
        self.records: List[EventRecord] = []
        self.anomalies: List[Anomaly] = []

    @property
    def timestamp(self) -> int:
        return self.event.block_timestamp

    @property
    def event_id(self) -> str:
        return self.event.event_id

    def id_for(self, kind: str, *key_parts: Any) -> str:
        return self.resolver.resolve(kind, *key_parts)

    def load(self, kind: str, *key_parts: Any) -> Optional[Entity]:
        return self.resolver.load(kind, *key_parts)

    def get_or_create(self, kind: str, *key_parts: Any, **fields: Any) -> Entity:
        return self.resolver.get_or_create(kind, key_parts, self.timestamp, **fields)

    def find(self, kind: str, **filters: Any) -> List[Entity]:
        return self.resolver.find(kind, **filters)

    def require(self, kind: str, *key_parts: Any, critical: bool = False) -> Entity:
        """
        Load an entity that an earlier event must have created.

        Raises:
            MissingParentError: when it is absent; the event is then skipped
        """
        entity = self.resolver.load(kind, *key_parts)
        if entity is None:
            entity_id = self.resolver.resolve(kind, *key_parts)
            message = (
                f"{self.event.EVENT_TYPE} {self.event_id}: required {kind} "
                f"{entity_id} not found, skipping event"
            )
            if critical:
                self.logger.error(f"Critical: {message}")
            else:
                self.logger.warning(message)
            raise MissingParentError(kind, entity_id, self.event_id)
        return entity

    def touch(self, *entities: Optional[Entity]) -> None:
        """Stamp activity fields with the event's block timestamp."""
        for entity in entities:
            if entity is None:
                continue
            if hasattr(entity, "last_activity_at"):
                entity.last_activity_at = self.timestamp
            if hasattr(entity, "updated_at"):
                entity.updated_at = self.timestamp

    def add_record(
        self,
        record_type: str,
        record_key: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        **foreign_keys: Optional[str],
    ) -> EventRecord:
        """
        Append a derived record for this event.

        The primary record of an event takes the event id; record_key only exists
        for secondary rows and is appended to the event id.
        """
        event = self.event
        new_id = record_id(event.transaction_hash, event.log_index)
        if record_key is not None:
            new_id = f"{new_id}-{record_key}"

        record = EventRecord(
            id=new_id,
            record_type=record_type,
            event_type=event.EVENT_TYPE,
            block_number=event.block_number,
            log_index=event.log_index,
            block_timestamp=event.block_timestamp,
            transaction_hash=event.transaction_hash,
            contract_address=event.contract_address,
            data=dict(data or {}),
            **foreign_keys,
        )
        self.records.append(record)
        return record

    def note_anomaly(
        self,
        category: str,
        detail: str,
        entity: Optional[Entity] = None,
        field_name: Optional[str] = None,
        severity: str = "WARNING",
    ) -> Anomaly:
        anomaly = Anomaly(
            event_id=self.event_id,
            category=category,
            detail=detail,
            entity_kind=entity.KIND if entity is not None else None,
            entity_id=entity.id if entity is not None else None,
            field_name=field_name,
            severity=severity,
        )
        self.anomalies.append(anomaly)

        target = f" [{anomaly.entity_kind} {anomaly.entity_id}]" if entity else ""
        message = f"{category} at event {self.event_id}{target}: {detail}"
        if severity == "ERROR":
            self.logger.error(message)
        else:
            self.logger.warning(message)
        return anomaly

    def changeset(self) -> Changeset:
        return Changeset(
            entities=self.resolver.tracked_entities(),
            records=list(self.records),
            anomalies=list(self.anomalies),
            position=self.event.position,
        )


Handler = Callable[[ReconciliationStep, Any], Optional[Outcome]]


class BaseReconciler(ABC):
    """
    One reconciler per protocol subsystem. Each maps the event variants it owns to
    a handler that mutates the step's entities and appends records.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    @abstractmethod
    def handlers(self) -> Dict[Type[ProtocolEvent], Handler]:
        """
        Map each owned event variant to its handler.

        Handlers return None when the event applied, or an Outcome to skip it.
        """
        pass

    def apply(self, step: ReconciliationStep, event: ProtocolEvent) -> Outcome:
        handler = self.handlers().get(type(event))
        if handler is None:
            return Outcome.skipped(f"{type(self).__name__} has no handler for {event.EVENT_TYPE}")

        try:
            outcome = handler(step, event)
        except MissingParentError as exc:
            return Outcome.skipped(f"missing required parent: {exc}")

        return outcome or Outcome.applied()
