import json

import pytest
from dagster import materialize
from sqlalchemy import create_engine, text

from factories import CONTRACT, OPERATOR, STAKER
from indexer.defs.assets import protocol_state_asset
from indexer.defs.resources import ConfigResource, DatabaseResource
from services.entities import OPERATOR as OPERATOR_KIND, STAKER as STAKER_KIND
from services.store.sql import SqlEntityStore


def insert_events(engine, events):
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE IF NOT EXISTS protocol_events ("
                "event_type TEXT, block_number INTEGER, log_index INTEGER, "
                "block_timestamp INTEGER, transaction_hash TEXT, contract_address TEXT, "
                "params TEXT)"
            )
        )
        conn.execute(
            text(
                "INSERT INTO protocol_events VALUES (:event_type, :block_number, :log_index, "
                ":block_timestamp, :transaction_hash, :contract_address, :params)"
            ),
            [
                {
                    "event_type": event_type,
                    "block_number": block,
                    "log_index": 0,
                    "block_timestamp": 1_700_000_000 + block,
                    "transaction_hash": "0x" + f"{block:064x}",
                    "contract_address": CONTRACT,
                    "params": json.dumps(params),
                }
                for block, event_type, params in events
            ],
        )


@pytest.fixture
def urls(tmp_path):
    return f"sqlite:///{tmp_path / 'events.db'}", f"sqlite:///{tmp_path / 'analytics.db'}"


def run(urls, max_events_per_run=100):
    events_url, analytics_url = urls
    result = materialize(
        [protocol_state_asset],
        resources={
            "db": DatabaseResource(events_db_url=events_url, analytics_db_url=analytics_url),
            "config": ConfigResource(max_events_per_run=max_events_per_run),
        },
    )
    assert result.success
    return result.output_for_node("protocol_state_asset")


class TestProtocolStateAsset:
    def test_runs_resume_from_checkpoint(self, urls):
        events_engine = create_engine(urls[0])
        insert_events(
            events_engine,
            [
                (1, "OperatorRegistered", {"operator": OPERATOR, "delegationApprover": OPERATOR}),
                (2, "StakerDelegated", {"staker": STAKER, "operator": OPERATOR}),
                (3, "StakerUndelegated", {"staker": STAKER, "operator": OPERATOR}),
            ],
        )

        first = run(urls, max_events_per_run=2)
        assert first["fetched"] == 2
        assert first["applied"] == 2

        second = run(urls)
        assert second["fetched"] == 1
        assert second["applied"] == 1

        third = run(urls)
        assert third["fetched"] == 0

        store = SqlEntityStore(create_engine(urls[1]))
        assert store.last_position() == (3, 0)
        assert store.load(OPERATOR_KIND, OPERATOR).delegator_count == 0
        assert store.load(STAKER_KIND, STAKER).delegation_change_count == 2
        events_engine.dispose()
        store.engine.dispose()
