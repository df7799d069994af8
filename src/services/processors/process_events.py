from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping

from services.decoding.event_decoder import EventDecoder
from services.engine import ReconciliationEngine
from services.errors import PayloadValidationError, UnsupportedEventError
from services.reconcilers.base import APPLIED, FAILED, REJECTED, SKIPPED


def _mark_dropped(context, engine: ReconciliationEngine, row: Mapping[str, Any]) -> None:
    """Advance the checkpoint past a dropped row so it is not fetched again."""
    try:
        position = (int(row["block_number"]), int(row["log_index"]))
    except (KeyError, TypeError, ValueError):
        context.log.warning(f"Dropped row has no usable position: {dict(row)}")
        return
    engine.mark_position(position)


def process_events(
    context,
    rows: Iterable[Mapping[str, Any]],
    engine: ReconciliationEngine,
    decoder: EventDecoder,
    log_prefix: str,
    config,
) -> Dict[str, Any]:
    """
    Decode and reconcile a batch of event-source rows in order.

    Rows that fail to decode are logged and dropped; reconciliation outcomes are
    counted. Nothing in one row stops the batch.
    """
    rows = list(rows)
    summary: Dict[str, Any] = {
        "fetched": len(rows),
        "invalid": 0,
        "unsupported": 0,
        APPLIED: 0,
        SKIPPED: 0,
        REJECTED: 0,
        FAILED: 0,
        "last_position": None,
    }

    if not rows:
        context.log.info(f"No events to process for {log_prefix}")
        summary["duration_seconds"] = 0.0
        return summary

    start_time = datetime.now(timezone.utc)

    for idx, row in enumerate(rows, 1):
        if idx % config.log_batch_progress_every == 0:
            context.log.info(
                f"{log_prefix} {idx}/{len(rows)}: block {row.get('block_number')} "
                f"log {row.get('log_index')}"
            )

        try:
            event = decoder.decode(row)
        except UnsupportedEventError as exc:
            context.log.warning(f"{log_prefix}: dropping row: {exc}")
            summary["unsupported"] += 1
            _mark_dropped(context, engine, row)
            continue
        except PayloadValidationError as exc:
            context.log.error(f"{log_prefix}: invalid payload, dropping row: {exc}")
            summary["invalid"] += 1
            _mark_dropped(context, engine, row)
            continue

        outcome = engine.process(event)
        summary[outcome.status] += 1
        summary["last_position"] = event.position

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    summary["duration_seconds"] = round(duration, 3)
    context.log.info(
        f"{log_prefix}: Processed {len(rows)} events, "
        f"applied: {summary[APPLIED]}, skipped: {summary[SKIPPED]}, "
        f"rejected: {summary[REJECTED]}, failed: {summary[FAILED]}, "
        f"dropped: {summary['invalid'] + summary['unsupported']}, "
        f"duration: {duration:.2f}s"
    )

    return summary
