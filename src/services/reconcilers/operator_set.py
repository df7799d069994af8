# services/reconcilers/operator_set.py

from typing import Dict, Optional, Type

from services.entities import (
    AVS_KIND,
    MEMBERSHIP,
    MEMBERSHIP_STATE,
    OPERATOR,
    OPERATOR_SET,
    OPERATOR_SET_CREATED,
    OPERATOR_SET_MEMBERSHIP_EVENT,
    REDISTRIBUTION_ADDRESS_SET,
    STRATEGY,
    STRATEGY_OPERATOR_SET_EVENT,
    OperatorSetMembership,
)
from services.events import (
    OperatorAddedToOperatorSet,
    OperatorRemovedFromOperatorSet,
    OperatorSetCreated,
    ProtocolEvent,
    RedistributionAddressSet,
    StrategyAddedToOperatorSet,
    StrategyRemovedFromOperatorSet,
    operator_set_key,
)
from .base import BaseReconciler, Handler, ReconciliationStep


class OperatorSetReconciler(BaseReconciler):
    """
    Operator set lifecycle under an AVS.

    Membership rows are opened on add and closed on remove (left_at / left_at_block),
    never deleted. At most one open row exists per (operator, set) pair, and
    Operator.operator_set_count / OperatorSet.member_count only move when a row is
    actually opened or closed.
    """

    def handlers(self) -> Dict[Type[ProtocolEvent], Handler]:
        return {
            OperatorSetCreated: self.operator_set_created,
            OperatorAddedToOperatorSet: self.operator_added,
            OperatorRemovedFromOperatorSet: self.operator_removed,
            StrategyAddedToOperatorSet: self.strategy_added,
            StrategyRemovedFromOperatorSet: self.strategy_removed,
            RedistributionAddressSet: self.redistribution_address_set,
        }

    def operator_set_created(self, step: ReconciliationStep, event: OperatorSetCreated):
        avs = step.get_or_create(AVS_KIND, event.avs)
        operator_set = step.get_or_create(OPERATOR_SET, *operator_set_key(event))

        if step.resolver.was_created(OPERATOR_SET, operator_set.id):
            avs.operator_set_count += 1
        else:
            self.logger.warning(
                f"OperatorSet {operator_set.id} already exists, creation at {step.event_id} "
                f"leaves AVS {avs.id} counters unchanged"
            )

        operator_set.last_activity_at = event.block_timestamp
        step.touch(avs)

        step.add_record(
            OPERATOR_SET_CREATED,
            avs_id=avs.id,
            operator_set_id=operator_set.id,
            data={"operator_set_index": event.operator_set_index},
        )
        self.logger.info(f"OperatorSet {operator_set.id} created for AVS {avs.id}")

    def _open_membership(
        self, step: ReconciliationStep, operator_id: str, set_id: str
    ) -> Optional[OperatorSetMembership]:
        open_rows = step.find(
            MEMBERSHIP, operator_id=operator_id, operator_set_id=set_id, left_at=None
        )
        if len(open_rows) > 1:
            step.note_anomaly(
                MEMBERSHIP_STATE,
                f"{len(open_rows)} open memberships for operator {operator_id} in {set_id}",
                severity="ERROR",
            )
        return open_rows[-1] if open_rows else None

    def operator_added(self, step: ReconciliationStep, event: OperatorAddedToOperatorSet):
        operator = step.require(OPERATOR, event.operator)
        operator_set = step.require(OPERATOR_SET, *operator_set_key(event))

        record = step.add_record(
            OPERATOR_SET_MEMBERSHIP_EVENT,
            operator_id=operator.id,
            operator_set_id=operator_set.id,
            data={"membership_event": "ADDED"},
        )

        existing = self._open_membership(step, operator.id, operator_set.id)
        if existing is not None:
            step.note_anomaly(
                MEMBERSHIP_STATE,
                f"operator {operator.id} already active in {operator_set.id} "
                f"since {existing.joined_at}, counters unchanged",
                entity=existing,
            )
            step.touch(operator)
            operator_set.last_activity_at = event.block_timestamp
            return None

        key = (operator.id, operator_set.id, event.block_timestamp)
        if step.load(MEMBERSHIP, *key) is not None:
            # The membership that closed at this timestamp keeps its own row
            key = key + (event.log_index,)
        membership = step.get_or_create(
            MEMBERSHIP,
            *key,
            joined_at_block=event.block_number,
            join_record_id=record.id,
        )

        operator.operator_set_count += 1
        operator_set.member_count += 1
        operator_set.last_activity_at = event.block_timestamp
        step.touch(operator)

        self.logger.info(
            f"Operator {operator.id} added to {operator_set.id} (membership {membership.id})"
        )

    def operator_removed(
        self, step: ReconciliationStep, event: OperatorRemovedFromOperatorSet
    ):
        operator = step.require(OPERATOR, event.operator)
        operator_set = step.require(OPERATOR_SET, *operator_set_key(event))

        record = step.add_record(
            OPERATOR_SET_MEMBERSHIP_EVENT,
            operator_id=operator.id,
            operator_set_id=operator_set.id,
            data={"membership_event": "REMOVED"},
        )
        step.touch(operator)
        operator_set.last_activity_at = event.block_timestamp

        membership = self._open_membership(step, operator.id, operator_set.id)
        if membership is None:
            step.note_anomaly(
                MEMBERSHIP_STATE,
                f"no open membership for operator {operator.id} in {operator_set.id}, "
                f"counters unchanged",
                entity=operator_set,
            )
            return None

        membership.left_at = event.block_timestamp
        membership.left_at_block = event.block_number
        membership.leave_record_id = record.id
        record.data["membership_id"] = membership.id

        operator.operator_set_count -= 1
        operator_set.member_count -= 1

        self.logger.info(
            f"Operator {operator.id} removed from {operator_set.id} (membership {membership.id} closed)"
        )

    def _strategy_membership(
        self, step: ReconciliationStep, event: ProtocolEvent, change: str, delta: int
    ):
        operator_set = step.require(OPERATOR_SET, *operator_set_key(event))
        strategy = step.get_or_create(STRATEGY, event.strategy)

        operator_set.strategy_count += delta
        operator_set.last_activity_at = event.block_timestamp
        step.touch(strategy)

        step.add_record(
            STRATEGY_OPERATOR_SET_EVENT,
            operator_set_id=operator_set.id,
            strategy_id=strategy.id,
            data={"change": change},
        )
        self.logger.info(f"Strategy {strategy.id} {change.lower()} for {operator_set.id}")

    def strategy_added(self, step: ReconciliationStep, event: StrategyAddedToOperatorSet):
        self._strategy_membership(step, event, "ADDED", 1)

    def strategy_removed(
        self, step: ReconciliationStep, event: StrategyRemovedFromOperatorSet
    ):
        self._strategy_membership(step, event, "REMOVED", -1)

    def redistribution_address_set(
        self, step: ReconciliationStep, event: RedistributionAddressSet
    ):
        operator_set = step.require(OPERATOR_SET, *operator_set_key(event))
        operator_set.redistribution_recipient = event.redistribution_recipient
        operator_set.last_activity_at = event.block_timestamp

        step.add_record(
            REDISTRIBUTION_ADDRESS_SET,
            operator_set_id=operator_set.id,
            data={"redistribution_recipient": event.redistribution_recipient},
        )
