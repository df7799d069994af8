# services/reconcilers/delegation.py

from typing import Dict, Type

from services.entities import (
    DELEGATION,
    DELEGATION_EVENT,
    DELEGATION_STATE,
    DEPOSIT_SCALING_FACTOR_UPDATE,
    OPERATOR,
    STAKER,
    STRATEGY,
    WITHDRAWAL_EVENT,
    ZERO_ADDRESS,
    Entity,
)
from services.events import (
    DepositScalingFactorUpdated,
    ProtocolEvent,
    SlashingWithdrawalCompleted,
    SlashingWithdrawalQueued,
    StakerDelegated,
    StakerForceUndelegated,
    StakerUndelegated,
)
from services.identity import address_id
from .base import BaseReconciler, Handler, ReconciliationStep

DELEGATED = "DELEGATED"
UNDELEGATED = "UNDELEGATED"
FORCE_UNDELEGATED = "FORCE_UNDELEGATED"


def record_delegation(
    step: ReconciliationStep,
    event: ProtocolEvent,
    staker: Entity,
    operator: Entity,
    delegation_type: str,
) -> Entity:
    """Persist one StakerDelegation row for a delegation transition."""
    key = (staker.id, operator.id, event.block_timestamp)
    if step.load(DELEGATION, *key) is not None:
        key = key + (event.log_index,)
    return step.get_or_create(
        DELEGATION,
        *key,
        delegation_type=delegation_type,
        block_number=event.block_number,
        transaction_hash=event.transaction_hash,
        log_index=event.log_index,
    )


class DelegationReconciler(BaseReconciler):
    """
    Staker delegation state and withdrawal queue.

    A staker is delegated to at most one operator. Operator.delegator_count follows
    the transitions of Staker.delegated_operator, so it is only decremented for the
    operator the staker is actually leaving.
    """

    def handlers(self) -> Dict[Type[ProtocolEvent], Handler]:
        return {
            StakerDelegated: self.staker_delegated,
            StakerUndelegated: self.staker_undelegated,
            StakerForceUndelegated: self.staker_force_undelegated,
            SlashingWithdrawalQueued: self.withdrawal_queued,
            SlashingWithdrawalCompleted: self.withdrawal_completed,
            DepositScalingFactorUpdated: self.deposit_scaling_factor_updated,
        }

    def staker_delegated(self, step: ReconciliationStep, event: StakerDelegated):
        operator = step.require(OPERATOR, event.operator)
        staker = step.get_or_create(STAKER, event.staker)

        previous = staker.delegated_operator
        if previous == operator.id:
            step.note_anomaly(
                DELEGATION_STATE,
                f"staker {staker.id} already delegated to {operator.id}, delegator count unchanged",
                entity=staker,
            )
        else:
            if previous is not None:
                step.note_anomaly(
                    DELEGATION_STATE,
                    f"staker {staker.id} delegated to {operator.id} while still delegated "
                    f"to {previous}, closing the previous delegation",
                    entity=staker,
                )
                old_operator = step.load(OPERATOR, previous)
                if old_operator is not None:
                    old_operator.delegator_count -= 1
                    step.touch(old_operator)
            operator.delegator_count += 1

        staker.delegated_operator = operator.id
        staker.delegated_at = event.block_timestamp
        staker.delegation_change_count += 1
        step.touch(operator, staker)
        delegation = record_delegation(step, event, staker, operator, DELEGATED)

        step.add_record(
            DELEGATION_EVENT,
            staker_id=staker.id,
            operator_id=operator.id,
            data={
                "delegation_type": DELEGATED,
                "relationship_id": delegation.id,
                "previous_operator": previous,
            },
        )
        self.logger.info(
            f"Staker {staker.id} delegated to operator {operator.id} at {step.event_id}"
        )

    def _undelegate(self, step: ReconciliationStep, event: ProtocolEvent, delegation_type: str):
        staker = step.require(STAKER, event.staker)
        operator = step.require(OPERATOR, event.operator)

        if staker.delegated_operator == operator.id:
            operator.delegator_count -= 1
        else:
            step.note_anomaly(
                DELEGATION_STATE,
                f"{delegation_type} from {operator.id} but staker {staker.id} is delegated "
                f"to {staker.delegated_operator}, delegator count unchanged",
                entity=staker,
            )

        if staker.delegated_operator in (None, operator.id):
            staker.delegated_operator = None
            staker.delegated_at = None
        staker.delegation_change_count += 1
        step.touch(operator, staker)
        delegation = record_delegation(step, event, staker, operator, delegation_type)

        step.add_record(
            DELEGATION_EVENT,
            staker_id=staker.id,
            operator_id=operator.id,
            data={
                "delegation_type": delegation_type,
                "relationship_id": delegation.id,
            },
        )
        self.logger.info(
            f"Staker {staker.id} {delegation_type.lower()} from operator {operator.id} at {step.event_id}"
        )

    def staker_undelegated(self, step: ReconciliationStep, event: StakerUndelegated):
        self._undelegate(step, event, UNDELEGATED)

    def staker_force_undelegated(self, step: ReconciliationStep, event: StakerForceUndelegated):
        self._undelegate(step, event, FORCE_UNDELEGATED)

    def withdrawal_queued(self, step: ReconciliationStep, event: SlashingWithdrawalQueued):
        staker = step.get_or_create(STAKER, event.staker)
        staker.withdrawal_count += 1
        step.touch(staker)

        # delegated_to is the zero address for undelegated stakers
        operator = None
        if address_id(event.delegated_to) != ZERO_ADDRESS:
            operator = step.load(OPERATOR, event.delegated_to)
            step.touch(operator)

        step.add_record(
            WITHDRAWAL_EVENT,
            staker_id=staker.id,
            operator_id=operator.id if operator is not None else None,
            data={
                "withdrawal_type": "QUEUED",
                "withdrawal_root": event.withdrawal_root,
                "delegated_to": address_id(event.delegated_to),
                "withdrawer": address_id(event.withdrawer),
                "nonce": event.nonce,
                "start_block": event.start_block,
                "strategies": [address_id(strategy) for strategy in event.strategies],
                "scaled_shares": [str(shares) for shares in event.scaled_shares],
                "shares": [str(shares) for shares in event.shares_to_withdraw],
            },
        )
        self.logger.info(
            f"Withdrawal {event.withdrawal_root} queued for staker {staker.id} "
            f"({len(event.strategies)} strategies)"
        )

    def withdrawal_completed(self, step: ReconciliationStep, event: SlashingWithdrawalCompleted):
        # Only the root is emitted; the staker is reachable through the QUEUED record
        step.add_record(
            WITHDRAWAL_EVENT,
            data={"withdrawal_type": "COMPLETED", "withdrawal_root": event.withdrawal_root},
        )
        self.logger.info(f"Withdrawal {event.withdrawal_root} completed at {step.event_id}")

    def deposit_scaling_factor_updated(
        self, step: ReconciliationStep, event: DepositScalingFactorUpdated
    ):
        staker = step.get_or_create(STAKER, event.staker)
        strategy = step.get_or_create(STRATEGY, event.strategy)
        step.touch(staker, strategy)

        step.add_record(
            DEPOSIT_SCALING_FACTOR_UPDATE,
            staker_id=staker.id,
            strategy_id=strategy.id,
            data={"new_deposit_scaling_factor": str(event.new_deposit_scaling_factor)},
        )
