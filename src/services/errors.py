# services/errors.py
"""
Exception types raised by the reconciliation engine.
"""


class IndexerError(Exception):
    """Base class for all engine errors."""


class MissingParentError(IndexerError):
    """A required entity was not found in the store for the current event."""

    def __init__(self, kind: str, entity_id: str, event_id: str):
        self.kind = kind
        self.entity_id = entity_id
        self.event_id = event_id
        super().__init__(f"{kind} {entity_id} not found (event {event_id})")


class RecordCollisionError(IndexerError):
    """A derived record id was produced twice."""

    def __init__(self, record_id: str, event_id: str):
        self.record_id = record_id
        self.event_id = event_id
        super().__init__(f"Record id {record_id} already exists (event {event_id})")


class PayloadValidationError(IndexerError, ValueError):
    """Raw event params could not be normalized."""


class UnsupportedEventError(IndexerError):
    """No decoder or reconciler is registered for an event type."""
