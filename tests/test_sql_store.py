import logging

import pytest
from sqlalchemy import create_engine

from db.models import PipelineCheckpoint
from factories import AVS, OPERATOR, OPERATOR_B, POD, STAKER, STRATEGY, EventFactory, busy_stream, snapshot
from services.engine import ReconciliationEngine
from services.entities import (
    DELEGATION,
    EIGEN_POD,
    MEMBERSHIP,
    OPERATOR as OPERATOR_KIND,
    SHARE_EVENT,
    STRATEGY as STRATEGY_KIND,
)
from services.events import Deposit, OperatorSharesIncreased
from services.reconcilers.base import APPLIED
from services.store.memory import InMemoryEntityStore
from services.store.sql import SqlEntityStore

LOGGER = logging.getLogger("tests.sql_store")


@pytest.fixture
def sql_store(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'state.db'}")
    store = SqlEntityStore(engine, LOGGER, checkpoint_key="test_state")
    store.create_tables()
    yield store
    engine.dispose()


class TestSqlEntityStore:
    def test_matches_in_memory_store(self, sql_store):
        events = busy_stream(EventFactory())
        memory_store = InMemoryEntityStore()

        ReconciliationEngine(memory_store, LOGGER).process_many(events)
        ReconciliationEngine(sql_store, LOGGER).process_many(events)

        assert snapshot(sql_store) == snapshot(memory_store)
        assert sql_store.last_position() == memory_store.last_position() == events[-1].position

    def test_open_membership_lookup(self, sql_store):
        ReconciliationEngine(sql_store, LOGGER).process_many(busy_stream(EventFactory()))

        open_rows = sql_store.find(MEMBERSHIP, operator_set_id=f"{AVS}-1", left_at=None)
        assert [row.operator_id for row in open_rows] == [OPERATOR]

    def test_delegation_history(self, sql_store):
        ReconciliationEngine(sql_store, LOGGER).process_many(busy_stream(EventFactory()))

        assert len(sql_store.find(DELEGATION, staker_id=STAKER)) == 5
        forced = sql_store.find(DELEGATION, delegation_type="FORCE_UNDELEGATED")
        assert [row.operator_id for row in forced] == [OPERATOR_B]

    def test_large_and_signed_share_totals(self, sql_store):
        make = EventFactory()
        engine = ReconciliationEngine(sql_store, LOGGER)
        huge = 2**255 + 1
        engine.process(make(Deposit, staker=STAKER, strategy=STRATEGY, shares=huge))
        assert sql_store.load(STRATEGY_KIND, STRATEGY).total_shares == huge

        engine.process_many(busy_stream(make))
        assert sql_store.load(EIGEN_POD, POD).total_shares == -(10**9)

    def test_replay_is_idempotent(self, sql_store):
        events = busy_stream(EventFactory())
        ReconciliationEngine(sql_store, LOGGER).process_many(events)
        before = snapshot(sql_store)

        ReconciliationEngine(sql_store, LOGGER).process_many(events)
        assert snapshot(sql_store) == before

    def test_checkpoint_counts_applied_events(self, sql_store):
        make = EventFactory()
        engine = ReconciliationEngine(sql_store, LOGGER)
        engine.process(make(OperatorSharesIncreased, operator=OPERATOR, staker=STAKER, strategy=STRATEGY, shares=1))
        assert engine.process(make(Deposit, staker=STAKER, strategy=STRATEGY, shares=5)).status == APPLIED

        sql_store.record_run(1.5, {"applied": 1})
        with sql_store.session_scope() as session:
            checkpoint = session.get(PipelineCheckpoint, "test_state")
            assert checkpoint.total_events_processed == 1
            assert checkpoint.run_metadata == {"applied": 1}
            assert checkpoint.run_duration_seconds == 1

    def test_reads_are_detached(self, sql_store):
        ReconciliationEngine(sql_store, LOGGER).process_many(busy_stream(EventFactory()))

        operator = sql_store.load(OPERATOR_KIND, OPERATOR)
        operator.delegator_count = 1234
        assert sql_store.load(OPERATOR_KIND, OPERATOR).delegator_count != 1234

        (record,) = sql_store.find_records(SHARE_EVENT, staker_id=STAKER)
        assert record.pod_id == POD
