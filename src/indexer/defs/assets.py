# indexer/defs/assets.py
"""
Protocol State Asset - Reconcile new protocol events into the entity store
"""

from dagster import asset, OpExecutionContext
from typing import Any, Dict

from indexer.database.event_loader import EventLoader
from services.decoding.event_decoder import EventDecoder
from services.engine import ReconciliationEngine
from services.processors.process_events import process_events
from services.store.sql import SqlEntityStore

from .resources import DatabaseResource, ConfigResource


@asset(
    description="Applies protocol events since the last checkpoint to the materialized entity state",
    compute_kind="sql",
)
def protocol_state_asset(
    context: OpExecutionContext,
    db: DatabaseResource,
    config: ConfigResource,
) -> Dict[str, Any]:
    store = SqlEntityStore(db.analytics_engine, context.log, config.checkpoint_key)
    store.create_tables()

    position = store.last_position()
    if position is None:
        context.log.info("First indexer run - replaying from genesis")
    else:
        context.log.info(f"Last processed position: block {position[0]} log {position[1]}")

    loader = EventLoader(db.events_engine, config.events_table, context.log)
    rows = loader.load_after(position, config.max_events_per_run)

    engine = ReconciliationEngine(store, context.log)
    unhandled = engine.dispatcher.unhandled_event_types()
    if unhandled:
        context.log.warning(f"Event types without a reconciler: {', '.join(unhandled)}")

    summary = process_events(
        context, rows, engine, EventDecoder(), "Reconciling events", config
    )

    if rows:
        run_metadata = dict(summary)
        if summary["last_position"] is not None:
            run_metadata["last_position"] = list(summary["last_position"])
        store.record_run(summary["duration_seconds"], run_metadata)

    return summary
