# services/store/memory.py

import copy
from typing import Any, Dict, List, Optional, Tuple

from services.entities import Anomaly, Entity, EventRecord
from services.store.base import Changeset, EntityStore


class InMemoryEntityStore(EntityStore):
    """Dictionary-backed store used for tests, backfills and local replays."""

    def __init__(self):
        self._entities: Dict[str, Dict[str, Entity]] = {}
        self._records: Dict[str, EventRecord] = {}
        self._anomalies: List[Anomaly] = []
        self._position: Optional[Tuple[int, int]] = None

    def load(self, kind: str, entity_id: str) -> Optional[Entity]:
        entity = self._entities.get(kind, {}).get(entity_id)
        return copy.deepcopy(entity) if entity is not None else None

    def find(self, kind: str, **filters: Any) -> List[Entity]:
        matches = [
            copy.deepcopy(entity)
            for entity in self._entities.get(kind, {}).values()
            if all(getattr(entity, name) == value for name, value in filters.items())
        ]
        return sorted(matches, key=lambda entity: entity.id)

    def has_record(self, record_id: str) -> bool:
        return record_id in self._records

    def load_record(self, record_id: str) -> Optional[EventRecord]:
        record = self._records.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    def find_records(
        self, record_type: Optional[str] = None, **filters: Any
    ) -> List[EventRecord]:
        matches = [
            copy.deepcopy(record)
            for record in self._records.values()
            if (record_type is None or record.record_type == record_type)
            and all(getattr(record, name) == value for name, value in filters.items())
        ]
        return sorted(
            matches, key=lambda record: (record.block_number, record.log_index, record.id)
        )

    def anomalies(self) -> List[Anomaly]:
        return copy.deepcopy(self._anomalies)

    def last_position(self) -> Optional[Tuple[int, int]]:
        return self._position

    def commit(self, changeset: Changeset) -> None:
        # Copy first so a failure cannot leave a half-applied changeset behind
        entities = [copy.deepcopy(entity) for entity in changeset.entities]
        records = [copy.deepcopy(record) for record in changeset.records]

        for entity in entities:
            self._entities.setdefault(entity.KIND, {})[entity.id] = entity
        for record in records:
            self._records[record.id] = record
        self._anomalies.extend(copy.deepcopy(changeset.anomalies))

        if changeset.position is not None:
            self._position = changeset.position

    def count(self, kind: str) -> int:
        return len(self._entities.get(kind, {}))
