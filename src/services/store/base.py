# services/store/base.py

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple

from services.entities import Anomaly, Entity, EventRecord


class Changeset:
    """
    Everything one event produced, flushed to the store in a single commit.
    """

    def __init__(
        self,
        entities: List[Entity],
        records: List[EventRecord],
        anomalies: List[Anomaly],
        position: Optional[Tuple[int, int]] = None,
    ):
        self.entities = entities
        self.records = records
        self.anomalies = anomalies
        self.position = position

    def is_empty(self) -> bool:
        return not (self.entities or self.records or self.anomalies)


class EntityStore(ABC):
    """
    Load/save-by-key persistence for entities and derived records.

    Implementations must return detached copies from every read, so a caller can
    mutate what it loaded and still discard it, and must apply a Changeset
    atomically.
    """

    @abstractmethod
    def load(self, kind: str, entity_id: str) -> Optional[Entity]:
        """
        Load one entity by kind and id.

        Returns:
            A copy of the stored entity, or None when absent
        """
        pass

    @abstractmethod
    def find(self, kind: str, **filters: Any) -> List[Entity]:
        """
        Load all entities of a kind whose fields equal the given filters.

        Args:
            kind: Entity kind (e.g., 'operator_set_membership')
            **filters: field_name=value equality filters

        Returns:
            Copies of matching entities ordered by id
        """
        pass

    @abstractmethod
    def has_record(self, record_id: str) -> bool:
        pass

    @abstractmethod
    def load_record(self, record_id: str) -> Optional[EventRecord]:
        pass

    @abstractmethod
    def find_records(
        self, record_type: Optional[str] = None, **filters: Any
    ) -> List[EventRecord]:
        """
        Load derived records, optionally filtered by type and column equality.

        Returns:
            Records ordered by (block_number, log_index)
        """
        pass

    @abstractmethod
    def anomalies(self) -> List[Anomaly]:
        pass

    @abstractmethod
    def last_position(self) -> Optional[Tuple[int, int]]:
        """(block_number, log_index) of the last committed event, if any."""
        pass

    @abstractmethod
    def commit(self, changeset: Changeset) -> None:
        """Persist every entity, record and anomaly of one event atomically."""
        pass
