from factories import OPERATOR, OPERATOR_B, STAKER, STRATEGY, STRATEGY_B, ZERO, address
from services.entities import (
    DELEGATION,
    DELEGATION_EVENT,
    DELEGATION_STATE,
    DEPOSIT_SCALING_FACTOR_UPDATE,
    OPERATOR as OPERATOR_KIND,
    STAKER as STAKER_KIND,
    WITHDRAWAL_EVENT,
)
from services.events import (
    DepositScalingFactorUpdated,
    OperatorRegistered,
    SlashingWithdrawalCompleted,
    SlashingWithdrawalQueued,
    StakerDelegated,
    StakerForceUndelegated,
    StakerUndelegated,
)
from services.reconcilers.base import APPLIED, SKIPPED
from services.reconcilers.delegation import DELEGATED, FORCE_UNDELEGATED, UNDELEGATED

ROOT = "0x" + "ab" * 32


def delegate(make, staker=STAKER, operator=OPERATOR):
    return make(StakerDelegated, staker=staker, operator=operator)


def queued(make, delegated_to):
    return make(
        SlashingWithdrawalQueued,
        withdrawal_root=ROOT,
        staker=STAKER,
        delegated_to=delegated_to,
        withdrawer=STAKER,
        nonce=0,
        start_block=10,
        strategies=[STRATEGY, STRATEGY_B],
        scaled_shares=[10**18, 5],
        shares_to_withdraw=[2 * 10**18, 5],
    )


class TestDelegation:
    def test_delegate_and_undelegate(self, engine, store, make, registered_operator):
        event = delegate(make)
        assert engine.process(event).status == APPLIED

        staker = store.load(STAKER_KIND, STAKER)
        assert staker.delegated_operator == OPERATOR
        assert staker.delegated_at == event.block_timestamp
        assert store.load(OPERATOR_KIND, OPERATOR).delegator_count == 1

        engine.process(make(StakerUndelegated, staker=STAKER, operator=OPERATOR))
        staker = store.load(STAKER_KIND, STAKER)
        assert staker.delegated_operator is None
        assert staker.delegation_change_count == 2
        assert store.load(OPERATOR_KIND, OPERATOR).delegator_count == 0

    def test_every_transition_is_tagged(self, engine, store, make, registered_operator):
        engine.process(delegate(make))
        engine.process(make(StakerUndelegated, staker=STAKER, operator=OPERATOR))
        engine.process(delegate(make))
        engine.process(make(StakerForceUndelegated, staker=STAKER, operator=OPERATOR))

        records = store.find_records(DELEGATION_EVENT, staker_id=STAKER)
        assert [r.data["delegation_type"] for r in records] == [
            DELEGATED,
            UNDELEGATED,
            DELEGATED,
            FORCE_UNDELEGATED,
        ]
        assert records[0].data["relationship_id"] == (
            f"{STAKER}-{OPERATOR}-{records[0].block_timestamp}"
        )
        assert store.load(OPERATOR_KIND, OPERATOR).delegator_count == 0
        assert store.load(STAKER_KIND, STAKER).delegation_change_count == 4

    def test_transitions_are_kept_as_rows(self, engine, store, make, registered_operator):
        events = [
            delegate(make),
            make(StakerUndelegated, staker=STAKER, operator=OPERATOR),
            delegate(make),
        ]
        for event in events:
            engine.process(event)

        rows = sorted(store.find(DELEGATION, staker_id=STAKER), key=lambda row: row.block_number)
        assert [row.delegation_type for row in rows] == [DELEGATED, UNDELEGATED, DELEGATED]
        assert [row.id for row in rows] == [
            f"{STAKER}-{OPERATOR}-{event.block_timestamp}" for event in events
        ]
        assert rows[1].transaction_hash == events[1].transaction_hash
        assert rows[1].log_index == events[1].log_index

        records = store.find_records(DELEGATION_EVENT, staker_id=STAKER)
        assert [r.data["relationship_id"] for r in records] == [row.id for row in rows]

    def test_same_timestamp_transitions_keep_separate_rows(
        self, engine, store, make, registered_operator
    ):
        delegated = make.at(StakerDelegated, 2000, 0, staker=STAKER, operator=OPERATOR)
        undelegated = make.at(StakerUndelegated, 2000, 1, staker=STAKER, operator=OPERATOR)
        engine.process(delegated)
        engine.process(undelegated)

        base = f"{STAKER}-{OPERATOR}-{delegated.block_timestamp}"
        assert store.load(DELEGATION, base).delegation_type == DELEGATED
        assert store.load(DELEGATION, f"{base}-1").delegation_type == UNDELEGATED
        assert store.load_record(undelegated.event_id).data["relationship_id"] == f"{base}-1"

    def test_delegate_to_unknown_operator_is_skipped(self, engine, store, make):
        assert engine.process(delegate(make)).status == SKIPPED
        assert store.load(STAKER_KIND, STAKER) is None
        assert store.find(DELEGATION) == []

    def test_redelegation_moves_the_count(self, engine, store, make, registered_operator):
        engine.process(make(OperatorRegistered, operator=OPERATOR_B, delegation_approver=ZERO))
        engine.process(delegate(make))
        engine.process(delegate(make, operator=OPERATOR_B))

        assert store.load(OPERATOR_KIND, OPERATOR).delegator_count == 0
        assert store.load(OPERATOR_KIND, OPERATOR_B).delegator_count == 1
        assert store.load(STAKER_KIND, STAKER).delegated_operator == OPERATOR_B
        assert [a.category for a in store.anomalies()] == [DELEGATION_STATE]

    def test_repeated_delegation_counts_once(self, engine, store, make, registered_operator):
        engine.process(delegate(make))
        engine.process(delegate(make))
        assert store.load(OPERATOR_KIND, OPERATOR).delegator_count == 1

    def test_undelegate_from_other_operator(self, engine, store, make, registered_operator):
        engine.process(make(OperatorRegistered, operator=OPERATOR_B, delegation_approver=ZERO))
        engine.process(delegate(make))
        engine.process(make(StakerUndelegated, staker=STAKER, operator=OPERATOR_B))

        assert store.load(OPERATOR_KIND, OPERATOR).delegator_count == 1
        assert store.load(OPERATOR_KIND, OPERATOR_B).delegator_count == 0
        assert store.load(STAKER_KIND, STAKER).delegated_operator == OPERATOR
        assert DELEGATION_STATE in [a.category for a in store.anomalies()]

    def test_undelegate_unknown_staker_is_skipped(self, engine, make, registered_operator):
        event = make(StakerUndelegated, staker=STAKER, operator=OPERATOR)
        assert engine.process(event).status == SKIPPED


class TestWithdrawals:
    def test_queued_withdrawal(self, engine, store, make, registered_operator):
        event = queued(make, delegated_to=OPERATOR)
        assert engine.process(event).status == APPLIED

        assert store.load(STAKER_KIND, STAKER).withdrawal_count == 1
        record = store.load_record(event.event_id)
        assert record.record_type == WITHDRAWAL_EVENT
        assert record.operator_id == OPERATOR
        assert record.data["withdrawal_type"] == "QUEUED"
        assert record.data["strategies"] == [STRATEGY, STRATEGY_B]
        assert record.data["shares"] == [str(2 * 10**18), "5"]

    def test_queued_withdrawal_while_undelegated(self, engine, store, make):
        event = queued(make, delegated_to=ZERO)
        engine.process(event)
        record = store.load_record(event.event_id)
        assert record.operator_id is None
        assert record.data["delegated_to"] == ZERO

    def test_completed_withdrawal_only_records(self, engine, store, make):
        event = make(SlashingWithdrawalCompleted, withdrawal_root=ROOT)
        assert engine.process(event).status == APPLIED
        assert store.load_record(event.event_id).data == {
            "withdrawal_type": "COMPLETED",
            "withdrawal_root": ROOT,
        }

    def test_deposit_scaling_factor(self, engine, store, make):
        event = make(
            DepositScalingFactorUpdated,
            staker=STAKER,
            strategy=address(0x31),
            new_deposit_scaling_factor=10**18,
        )
        engine.process(event)
        record = store.load_record(event.event_id)
        assert record.record_type == DEPOSIT_SCALING_FACTOR_UPDATE
        assert record.strategy_id == address(0x31)
        assert record.data["new_deposit_scaling_factor"] == str(10**18)
