# /indexer/defs/resources.py
"""
Dagster Resources for the event source, the entity store and indexer settings
"""
import os
from typing import Dict

from dagster import ConfigurableResource
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

EVENTS = "events"
ANALYTICS = "analytics"


class DatabaseResource(ConfigurableResource):
    """
    Engines for the two databases the indexer touches.

    The events database is read-only from here; the analytics database holds the
    materialized entities, derived records, anomalies and the checkpoint.
    """

    events_db_url: str = os.getenv("EVENTS_DB_URL")
    analytics_db_url: str = os.getenv("ANALYTICS_DB_URL")

    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30

    def __init__(self, **data):
        super().__init__(**data)
        self._engines: Dict[str, Engine] = {}

    def _engine(self, name: str) -> Engine:
        if name not in self._engines:
            url = self.events_db_url if name == EVENTS else self.analytics_db_url
            if not url:
                raise ValueError(f"No database URL configured for the {name} database")
            self._engines[name] = create_engine(
                url,
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_timeout=self.pool_timeout,
                pool_pre_ping=True,
                echo=False,
            )
        return self._engines[name]

    @property
    def events_engine(self) -> Engine:
        """Lazily created engine for the raw protocol events"""
        return self._engine(EVENTS)

    @property
    def analytics_engine(self) -> Engine:
        """Lazily created engine for the entity store"""
        return self._engine(ANALYTICS)

    def dispose(self) -> None:
        for engine in self._engines.values():
            engine.dispose()
        self._engines.clear()


class ConfigResource(ConfigurableResource):
    """Indexer settings"""

    # Row in pipeline_checkpoints holding the last committed stream position
    checkpoint_key: str = "protocol_state_v1"

    events_table: str = "protocol_events"

    # Upper bound on events reconciled per asset materialization
    max_events_per_run: int = 5000

    log_batch_progress_every: int = 500  # Log every N events
