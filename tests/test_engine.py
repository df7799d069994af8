import logging

from factories import (
    AVS,
    OPERATOR,
    OPERATOR_B,
    POD,
    STAKER,
    STRATEGY,
    EventFactory,
    busy_stream,
    snapshot,
)
from services.dispatch import EventDispatcher
from services.engine import ReconciliationEngine
from services.entities import (
    DELEGATION_EVENT,
    EIGEN_POD,
    ENTITY_CLASSES,
    MEMBERSHIP,
    OPERATOR as OPERATOR_KIND,
    OPERATOR_SET,
    OUT_OF_ORDER,
    PROTOCOL_CONFIG_EVENT,
    SHARE_EVENT,
    STAKER as STAKER_KIND,
    STRATEGY as STRATEGY_KIND,
)
from services.events import (
    ActivationDelaySet,
    DefaultOperatorSplitBipsSet,
    Deposit,
    NewTotalShares,
    OperatorAddedToOperatorSet,
    OperatorRegistered,
    OperatorRemovedFromOperatorSet,
    OperatorSetCreated,
    OperatorSlashed,
    PodDeployed,
    PodSharesUpdated,
    SlashingWithdrawalQueued,
    StakerDelegated,
    StakerForceUndelegated,
    StakerUndelegated,
)
from services.reconcilers.base import APPLIED, FAILED, REJECTED, SKIPPED, BaseReconciler
from services.reconcilers.operator import OperatorReconciler
from services.store.memory import InMemoryEntityStore

LOGGER = logging.getLogger("tests.engine")


class ExplodingReconciler(BaseReconciler):
    """Mutates state and then fails, to prove nothing leaks out of a failed step."""

    def handlers(self):
        return {ActivationDelaySet: self.explode}

    def explode(self, step, event):
        operator = step.get_or_create(OPERATOR_KIND, OPERATOR)
        operator.delegator_count = 99
        step.add_record(PROTOCOL_CONFIG_EVENT)
        raise RuntimeError("boom")


class CollidingReconciler(BaseReconciler):
    def handlers(self):
        return {DefaultOperatorSplitBipsSet: self.collide}

    def collide(self, step, event):
        step.get_or_create(OPERATOR_KIND, OPERATOR_B)
        step.add_record(PROTOCOL_CONFIG_EVENT, record_key="dup")
        step.add_record(PROTOCOL_CONFIG_EVENT, record_key="dup")


class FlakyStore(InMemoryEntityStore):
    """Store whose record lookups fail until the connection comes back."""

    def __init__(self, failures):
        super().__init__()
        self.failures = failures

    def has_record(self, record_id):
        if self.failures:
            self.failures -= 1
            raise OSError("connection reset")
        return super().has_record(record_id)


def engine_with(store, *reconcilers):
    dispatcher = EventDispatcher(LOGGER, reconcilers=list(reconcilers))
    return ReconciliationEngine(store, LOGGER, dispatcher=dispatcher)


class TestIdempotence:
    def test_replaying_an_event_is_skipped(self, engine, store, make, registered_operator):
        event = make(StakerDelegated, staker=STAKER, operator=OPERATOR)
        assert engine.process(event).status == APPLIED
        before = snapshot(store)

        assert engine.process(event).status == SKIPPED
        assert snapshot(store) == before
        assert store.load(OPERATOR_KIND, OPERATOR).delegator_count == 1

    def test_replaying_a_whole_stream(self):
        events = busy_stream(EventFactory())
        store = InMemoryEntityStore()
        ReconciliationEngine(store, LOGGER).process_many(events)
        before = snapshot(store)

        counts = ReconciliationEngine(store, LOGGER).process_many(events)

        assert counts == {SKIPPED: len(events)}
        assert snapshot(store) == before


class TestInvariantsOverAStream:
    def test_staker_and_strategy_counters_are_maintained(self, engine, store, make, registered_operator):
        engine.process_many(
            [
                make(Deposit, staker=STAKER, strategy=STRATEGY, shares=100),
                make(StakerDelegated, staker=STAKER, operator=OPERATOR),
                make(
                    SlashingWithdrawalQueued,
                    withdrawal_root="0x" + "ab" * 32,
                    staker=STAKER,
                    delegated_to=OPERATOR,
                    withdrawer=STAKER,
                    nonce=0,
                    start_block=1,
                    strategies=[STRATEGY],
                    scaled_shares=[10],
                    shares_to_withdraw=[10],
                ),
            ]
        )

        for kind, entity_id in ((STAKER_KIND, STAKER), (STRATEGY_KIND, STRATEGY)):
            entity = store.load(kind, entity_id)
            for field_name in ENTITY_CLASSES[kind].COUNTER_FIELDS:
                assert getattr(entity, field_name) > 0, (kind, field_name)

    def test_counters_never_negative(self):
        store = InMemoryEntityStore()
        ReconciliationEngine(store, LOGGER).process_many(busy_stream(EventFactory()))

        for kind, entity_class in ENTITY_CLASSES.items():
            for entity in store.find(kind):
                for field_name in entity_class.COUNTER_FIELDS:
                    assert getattr(entity, field_name) >= 0, (kind, entity.id, field_name)

    def test_member_count_matches_active_memberships(self):
        store = InMemoryEntityStore()
        ReconciliationEngine(store, LOGGER).process_many(busy_stream(EventFactory()))

        for operator_set in store.find(OPERATOR_SET):
            active = store.find(MEMBERSHIP, operator_set_id=operator_set.id, left_at=None)
            operators = [membership.operator_id for membership in active]
            assert len(operators) == len(set(operators))
            assert operator_set.member_count == len(active)

    def test_pod_total_stays_signed(self):
        store = InMemoryEntityStore()
        ReconciliationEngine(store, LOGGER).process_many(busy_stream(EventFactory()))
        assert store.load(EIGEN_POD, POD).total_shares == -(10**9)


class TestShareShapes:
    def test_absolute_total_matches_equivalent_delta(self):
        results = []
        for final_event in (
            lambda make: make(NewTotalShares, pod_owner=STAKER, new_total_shares=25),
            lambda make: make(PodSharesUpdated, pod_owner=STAKER, shares_delta=-15),
        ):
            make = EventFactory()
            store = InMemoryEntityStore()
            engine = ReconciliationEngine(store, LOGGER)
            engine.process(make(PodDeployed, eigen_pod=POD, pod_owner=STAKER))
            engine.process(make(PodSharesUpdated, pod_owner=STAKER, shares_delta=40))
            engine.process(final_event(make))

            last = store.find_records(SHARE_EVENT)[-1]
            results.append(
                (store.load(EIGEN_POD, POD).total_shares, last.data["shares_delta"], last.data["new_total_shares"])
            )

        assert results[0] == results[1] == (25, -15, 25)


class TestScenarios:
    def test_operator_joins_and_leaves_a_set(self, engine, store, make):
        engine.process(make(OperatorRegistered, operator=OPERATOR, delegation_approver=OPERATOR))
        engine.process(make(OperatorSetCreated, avs=AVS, operator_set_index=1))
        engine.process(make(OperatorAddedToOperatorSet, operator=OPERATOR, avs=AVS, operator_set_index=1))

        assert store.load(OPERATOR_SET, f"{AVS}-1").member_count == 1
        assert store.load(OPERATOR_KIND, OPERATOR).operator_set_count == 1

        engine.process(make(OperatorRemovedFromOperatorSet, operator=OPERATOR, avs=AVS, operator_set_index=1))

        assert store.load(OPERATOR_SET, f"{AVS}-1").member_count == 0
        assert store.load(OPERATOR_KIND, OPERATOR).operator_set_count == 0
        (membership,) = store.find(MEMBERSHIP)
        assert membership.left_at is not None

    def test_staker_delegates_then_is_force_undelegated(self, engine, store, make, registered_operator):
        engine.process(make(StakerDelegated, staker=STAKER, operator=OPERATOR))
        assert store.load(OPERATOR_KIND, OPERATOR).delegator_count == 1

        engine.process(make(StakerForceUndelegated, staker=STAKER, operator=OPERATOR))
        assert store.load(OPERATOR_KIND, OPERATOR).delegator_count == 0
        assert store.load(STAKER_KIND, STAKER).delegated_operator is None

        tags = [r.data["delegation_type"] for r in store.find_records(DELEGATION_EVENT)]
        assert tags == ["DELEGATED", "FORCE_UNDELEGATED"]

    def test_slashing_unknown_parents_changes_nothing(self, engine, store, make):
        before = snapshot(store)
        event = make(
            OperatorSlashed,
            operator=OPERATOR,
            avs=AVS,
            operator_set_index=1,
            strategies=[STRATEGY],
            wad_slashed=[1],
            description="",
        )
        assert engine.process(event).status == SKIPPED
        assert snapshot(store) == before


class TestFailureIsolation:
    def test_failed_event_leaves_state_untouched(self, store, make):
        engine = engine_with(store, ExplodingReconciler(LOGGER), OperatorReconciler(LOGGER))

        failing = make(ActivationDelaySet, old_activation_delay=0, new_activation_delay=1)
        outcome = engine.process(failing)
        assert outcome.status == FAILED
        assert "boom" in outcome.reason
        assert store.load(OPERATOR_KIND, OPERATOR) is None
        assert not store.has_record(failing.event_id)
        assert store.last_position() == failing.position

        nxt = make(OperatorRegistered, operator=OPERATOR, delegation_approver=OPERATOR)
        assert engine.process(nxt).status == APPLIED
        assert store.load(OPERATOR_KIND, OPERATOR).delegator_count == 0

    def test_record_collision_rejects_event(self, store, make):
        engine = engine_with(store, CollidingReconciler(LOGGER))
        event = make(DefaultOperatorSplitBipsSet, old_default_split_bips=1, new_default_split_bips=2)

        assert engine.process(event).status == REJECTED
        assert store.load(OPERATOR_KIND, OPERATOR_B) is None
        assert store.find_records() == []
        assert store.last_position() == event.position

    def test_unsupported_event_is_dropped(self, store, make):
        engine = engine_with(store, OperatorReconciler(LOGGER))
        event = make(ActivationDelaySet, old_activation_delay=0, new_activation_delay=1)
        assert engine.process(event).status == SKIPPED
        assert store.find_records() == []

    def test_store_error_before_reconciling_fails_the_event(self, make):
        store = FlakyStore(failures=1)
        engine = ReconciliationEngine(store, LOGGER)
        first = make(OperatorRegistered, operator=OPERATOR, delegation_approver=OPERATOR)

        outcome = engine.process(first)
        assert outcome.status == FAILED
        assert "connection reset" in outcome.reason
        assert store.last_position() is None

        assert engine.process(first).status == APPLIED
        second = make(OperatorRegistered, operator=OPERATOR_B, delegation_approver=OPERATOR_B)
        assert engine.process(second).status == APPLIED
        assert store.last_position() == second.position


class TestPositions:
    def test_position_advances_on_every_outcome(self, engine, store, make):
        skipped = make(StakerUndelegated, staker=STAKER, operator=OPERATOR)
        engine.process(skipped)
        assert store.last_position() == skipped.position

        applied = make(Deposit, staker=STAKER, strategy=STRATEGY, shares=1)
        engine.process(applied)
        assert store.last_position() == applied.position

    def test_out_of_order_event_is_applied_with_anomaly(self, engine, store, make):
        late = make.at(Deposit, 10, 0, staker=STAKER, strategy=STRATEGY, shares=1)
        current = make(Deposit, staker=STAKER, strategy=STRATEGY, shares=1)
        engine.process(current)

        assert engine.process(late).status == APPLIED
        assert store.last_position() == current.position
        assert [a.category for a in store.anomalies()] == [OUT_OF_ORDER]

    def test_mark_position_only_moves_forward(self, engine, store):
        engine.mark_position((50, 2))
        engine.mark_position((40, 0))
        assert store.last_position() == (50, 2)
