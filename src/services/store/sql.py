# services/store/sql.py

import logging
from contextlib import contextmanager
from dataclasses import asdict, fields
from typing import Any, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from db.models import (
    ENTITY_MODELS,
    Base,
    EventRecordRow,
    InvariantAnomalyRow,
    PipelineCheckpoint,
)
from db.models.base import utc_now
from services.entities import ENTITY_CLASSES, Anomaly, Entity, EventRecord
from services.store.base import Changeset, EntityStore


def _row_to_entity(kind: str, row) -> Entity:
    cls = ENTITY_CLASSES[kind]
    return cls(**{f.name: getattr(row, f.name) for f in fields(cls)})


def _row_to_record(row: EventRecordRow) -> EventRecord:
    values = {f.name: getattr(row, f.name) for f in fields(EventRecord)}
    values["data"] = dict(values["data"] or {})
    return EventRecord(**values)


def _row_to_anomaly(row: InvariantAnomalyRow) -> Anomaly:
    return Anomaly(**{f.name: getattr(row, f.name) for f in fields(Anomaly)})


class SqlEntityStore(EntityStore):
    """
    Entity store on the analytics database.

    Each commit runs in one transaction, so an event's entities, records,
    anomalies and the checkpoint position land together or not at all.
    """

    def __init__(
        self,
        engine: Engine,
        logger: Optional[logging.Logger] = None,
        checkpoint_key: str = "protocol_state_v1",
    ):
        self.engine = engine
        self.logger = logger or logging.getLogger(__name__)
        self.checkpoint_key = checkpoint_key
        self._SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session_scope(self):
        """Context manager for one store transaction"""
        session: Session = self._SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def load(self, kind: str, entity_id: str) -> Optional[Entity]:
        with self.session_scope() as session:
            row = session.get(ENTITY_MODELS[kind], entity_id)
            return _row_to_entity(kind, row) if row is not None else None

    def find(self, kind: str, **filters: Any) -> List[Entity]:
        model = ENTITY_MODELS[kind]
        with self.session_scope() as session:
            rows = session.scalars(
                select(model).filter_by(**filters).order_by(model.id)
            ).all()
            return [_row_to_entity(kind, row) for row in rows]

    def has_record(self, record_id: str) -> bool:
        with self.session_scope() as session:
            return session.get(EventRecordRow, record_id) is not None

    def load_record(self, record_id: str) -> Optional[EventRecord]:
        with self.session_scope() as session:
            row = session.get(EventRecordRow, record_id)
            return _row_to_record(row) if row is not None else None

    def find_records(
        self, record_type: Optional[str] = None, **filters: Any
    ) -> List[EventRecord]:
        query = select(EventRecordRow).filter_by(**filters)
        if record_type is not None:
            query = query.where(EventRecordRow.record_type == record_type)
        query = query.order_by(
            EventRecordRow.block_number, EventRecordRow.log_index, EventRecordRow.id
        )
        with self.session_scope() as session:
            return [_row_to_record(row) for row in session.scalars(query).all()]

    def anomalies(self) -> List[Anomaly]:
        with self.session_scope() as session:
            rows = session.scalars(
                select(InvariantAnomalyRow).order_by(InvariantAnomalyRow.id)
            ).all()
            return [_row_to_anomaly(row) for row in rows]

    def last_position(self) -> Optional[Tuple[int, int]]:
        with self.session_scope() as session:
            checkpoint = session.get(PipelineCheckpoint, self.checkpoint_key)
            if checkpoint is None or checkpoint.last_processed_block is None:
                return None
            return (checkpoint.last_processed_block, checkpoint.last_processed_log_index or 0)

    def commit(self, changeset: Changeset) -> None:
        with self.session_scope() as session:
            for entity in changeset.entities:
                session.merge(ENTITY_MODELS[entity.KIND](**asdict(entity)))

            for record in changeset.records:
                session.add(EventRecordRow(**asdict(record)))

            for anomaly in changeset.anomalies:
                session.add(InvariantAnomalyRow(**asdict(anomaly)))

            if changeset.position is not None:
                self._save_checkpoint(session, changeset)

        self.logger.debug(
            f"Committed {len(changeset.entities)} entities, {len(changeset.records)} records, "
            f"{len(changeset.anomalies)} anomalies at {changeset.position}"
        )

    def _save_checkpoint(self, session: Session, changeset: Changeset) -> None:
        block_number, log_index = changeset.position
        checkpoint = session.get(PipelineCheckpoint, self.checkpoint_key)
        if checkpoint is None:
            checkpoint = PipelineCheckpoint(
                pipeline_name=self.checkpoint_key, total_events_processed=0
            )
            session.add(checkpoint)

        checkpoint.last_processed_at = utc_now()
        checkpoint.last_processed_block = block_number
        checkpoint.last_processed_log_index = log_index
        if changeset.records:
            checkpoint.total_events_processed = (checkpoint.total_events_processed or 0) + 1

    def record_run(self, duration_seconds: float, run_metadata: dict) -> None:
        """Attach the latest run's duration and summary to the checkpoint row."""
        with self.session_scope() as session:
            checkpoint = session.get(PipelineCheckpoint, self.checkpoint_key)
            if checkpoint is None:
                self.logger.info(f"No checkpoint {self.checkpoint_key} yet, run not recorded")
                return
            checkpoint.run_duration_seconds = int(duration_seconds)
            checkpoint.run_metadata = run_metadata
