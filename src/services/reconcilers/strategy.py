# services/reconcilers/strategy.py

from typing import Dict, Type

from services.entities import (
    DEPOSIT,
    OPERATOR,
    SHARE_EVENT,
    STAKER,
    STRATEGY,
    WHITELIST_EVENT,
)
from services.events import (
    Deposit,
    OperatorSharesDecreased,
    OperatorSharesIncreased,
    OperatorSharesSlashed,
    ProtocolEvent,
    StrategyAddedToDepositWhitelist,
    StrategyRemovedFromDepositWhitelist,
)
from .base import BaseReconciler, Handler, ReconciliationStep

STRATEGY_SHARES = "STRATEGY"


class StrategyReconciler(BaseReconciler):
    """
    Deposits, deposit whitelist and operator share accounting per strategy.

    Every share movement appends a SHARE_EVENT carrying the signed delta and the
    strategy total after applying it.
    """

    def handlers(self) -> Dict[Type[ProtocolEvent], Handler]:
        return {
            Deposit: self.deposit,
            StrategyAddedToDepositWhitelist: self.whitelist_added,
            StrategyRemovedFromDepositWhitelist: self.whitelist_removed,
            OperatorSharesIncreased: self.operator_shares_increased,
            OperatorSharesDecreased: self.operator_shares_decreased,
            OperatorSharesSlashed: self.operator_shares_slashed,
        }

    def deposit(self, step: ReconciliationStep, event: Deposit):
        staker = step.get_or_create(STAKER, event.staker)
        strategy = step.get_or_create(STRATEGY, event.strategy)

        strategy.total_deposits += 1
        strategy.total_shares += event.shares
        if strategy.first_deposit_at is None:
            strategy.first_deposit_at = event.block_timestamp
        step.touch(staker, strategy)

        step.add_record(
            DEPOSIT,
            staker_id=staker.id,
            strategy_id=strategy.id,
            data={"shares": str(event.shares)},
        )
        self.logger.info(
            f"Deposit of {event.shares} shares by staker {staker.id} into strategy {strategy.id}"
        )

    def whitelist_added(self, step: ReconciliationStep, event: StrategyAddedToDepositWhitelist):
        strategy = step.get_or_create(STRATEGY, event.strategy)
        strategy.is_whitelisted = True
        strategy.whitelisted_at = event.block_timestamp
        step.touch(strategy)

        step.add_record(WHITELIST_EVENT, strategy_id=strategy.id, data={"change": "ADDED"})

    def whitelist_removed(
        self, step: ReconciliationStep, event: StrategyRemovedFromDepositWhitelist
    ):
        strategy = step.load(STRATEGY, event.strategy)
        if strategy is None:
            self.logger.warning(
                f"Strategy {step.id_for(STRATEGY, event.strategy)} not found for whitelist "
                f"removal at {step.event_id}, creating it to track the removal"
            )
            strategy = step.get_or_create(STRATEGY, event.strategy)

        strategy.is_whitelisted = False
        strategy.whitelisted_at = None
        step.touch(strategy)

        step.add_record(WHITELIST_EVENT, strategy_id=strategy.id, data={"change": "REMOVED"})

    def _apply_share_delta(
        self, step: ReconciliationStep, event: ProtocolEvent, shares_delta: int, slashed: bool = False
    ):
        operator = step.require(OPERATOR, event.operator)
        staker = None if slashed else step.get_or_create(STAKER, event.staker)
        strategy = step.get_or_create(STRATEGY, event.strategy)

        strategy.total_shares += shares_delta
        step.touch(operator, staker, strategy)

        if shares_delta < 0:
            self.logger.warning(
                f"POTENTIAL SLASHING: operator {operator.id} strategy {strategy.id} "
                f"shares delta {shares_delta} at {step.event_id}"
            )

        step.add_record(
            SHARE_EVENT,
            operator_id=operator.id,
            staker_id=staker.id if staker is not None else None,
            strategy_id=strategy.id,
            data={
                "share_kind": STRATEGY_SHARES,
                "event_type": event.EVENT_TYPE,
                "shares_delta": shares_delta,
                "new_total_shares": strategy.total_shares,
                "slashed": slashed,
            },
        )

    def operator_shares_increased(self, step: ReconciliationStep, event: OperatorSharesIncreased):
        self._apply_share_delta(step, event, event.shares)

    def operator_shares_decreased(self, step: ReconciliationStep, event: OperatorSharesDecreased):
        self._apply_share_delta(step, event, -event.shares)

    def operator_shares_slashed(self, step: ReconciliationStep, event: OperatorSharesSlashed):
        # slashing_event_count is owned by OperatorSlashed; this only moves shares
        self._apply_share_delta(step, event, -event.total_slashed_shares, slashed=True)
