"""
SQLAlchemy tables backing the SQL entity store.
"""

from .base import Base, JSONType, TimestampMixin, Uint256
from .entities import ENTITY_MODELS
from .records import EventRecordRow, InvariantAnomalyRow, PipelineCheckpoint

__all__ = [
    "Base",
    "JSONType",
    "TimestampMixin",
    "Uint256",
    "ENTITY_MODELS",
    "EventRecordRow",
    "InvariantAnomalyRow",
    "PipelineCheckpoint",
]
