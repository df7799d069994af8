"""
Loads decoded-but-untyped event rows from the events database in replay order.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Engine

EVENT_COLUMNS = (
    "event_type",
    "block_number",
    "log_index",
    "block_timestamp",
    "transaction_hash",
    "contract_address",
    "params",
)


class EventLoader:
    def __init__(self, engine: Engine, events_table: str, logger: logging.Logger):
        self.engine = engine
        self.events_table = events_table
        self.logger = logger

    def build_query(self, position: Optional[Tuple[int, int]]) -> str:
        where = ""
        if position is not None:
            where = """
            WHERE block_number > :block_number
               OR (block_number = :block_number AND log_index > :log_index)"""
        return f"""
            SELECT {', '.join(EVENT_COLUMNS)}
            FROM {self.events_table}{where}
            ORDER BY block_number, log_index
            LIMIT :limit
        """

    def load_after(
        self, position: Optional[Tuple[int, int]], limit: int
    ) -> List[Dict[str, Any]]:
        """
        Fetch up to `limit` events strictly after `position`, oldest first.

        Args:
            position: (block_number, log_index) of the last processed event, or None
            limit: Maximum number of rows to return

        Returns:
            Rows as dicts with `params` parsed into a dict
        """
        params = {"limit": limit}
        if position is not None:
            params["block_number"], params["log_index"] = position

        with self.engine.connect() as conn:
            result = conn.execute(text(self.build_query(position)), params)
            rows = [dict(row._mapping) for row in result]

        for row in rows:
            row["params"] = self._parse_params(row)

        self.logger.info(
            f"Loaded {len(rows)} events from {self.events_table} after {position or 'genesis'}"
        )
        return rows

    def _parse_params(self, row: Dict[str, Any]) -> Dict[str, Any]:
        raw = row.get("params")
        if raw is None:
            return {}
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode()
        if isinstance(raw, str):
            try:
                return json.loads(raw)
            except json.JSONDecodeError:
                self.logger.warning(
                    f"Unparseable params for {row.get('event_type')} at block "
                    f"{row.get('block_number')} log {row.get('log_index')}"
                )
                return {}
        return dict(raw)
