# services/reconcilers/slashing.py

from typing import Dict, Type

from services.entities import (
    AVS_KIND,
    BEACON_CHAIN_SLASHING,
    BURN_SHARES_EVENT,
    OPERATOR,
    OPERATOR_SET,
    SLASHING_EVENT,
    STAKER,
    STRATEGY,
)
from services.events import (
    BeaconChainSlashingFactorDecreased,
    BurnableETHSharesIncreased,
    BurnableSharesDecreased,
    BurnOrRedistributableSharesDecreased,
    BurnOrRedistributableSharesIncreased,
    OperatorSlashed,
    ProtocolEvent,
    operator_set_key,
)
from .base import BaseReconciler, Handler, ReconciliationStep


class SlashingReconciler(BaseReconciler):
    """
    Slashing signals and the post-slashing burn/redistribution flow.

    OperatorSlashed needs its operator, operator set and AVS to exist already; a
    missing parent is logged as a critical error and the event is skipped.
    """

    def handlers(self) -> Dict[Type[ProtocolEvent], Handler]:
        return {
            OperatorSlashed: self.operator_slashed,
            BeaconChainSlashingFactorDecreased: self.beacon_chain_slashing,
            BurnOrRedistributableSharesIncreased: self.burn_or_redistributable_increased,
            BurnOrRedistributableSharesDecreased: self.burn_or_redistributable_decreased,
            BurnableSharesDecreased: self.burnable_shares_decreased,
            BurnableETHSharesIncreased: self.burnable_eth_shares_increased,
        }

    def operator_slashed(self, step: ReconciliationStep, event: OperatorSlashed):
        self.logger.info(
            f"SLASHING EVENT: operator {event.operator} in set "
            f"{event.avs}-{event.operator_set_index} at {step.event_id}"
        )

        operator = step.require(OPERATOR, event.operator, critical=True)
        operator_set = step.require(OPERATOR_SET, *operator_set_key(event), critical=True)
        avs = step.require(AVS_KIND, event.avs, critical=True)

        strategies = [step.get_or_create(STRATEGY, strategy) for strategy in event.strategies]

        operator.slashing_event_count += 1
        operator_set.slashing_event_count += 1
        avs.slashing_event_count += 1

        operator_set.last_activity_at = event.block_timestamp
        step.touch(operator, avs, *strategies)

        step.add_record(
            SLASHING_EVENT,
            operator_id=operator.id,
            operator_set_id=operator_set.id,
            avs_id=avs.id,
            data={
                "strategies": [strategy.id for strategy in strategies],
                "wad_slashed": [str(wad) for wad in event.wad_slashed],
                "description": event.description,
            },
        )
        self.logger.warning(
            f"SLASHING PROCESSED: operator {operator.id} slashed by AVS {avs.id} in "
            f"{operator_set.id} across {len(strategies)} strategies"
        )

    def beacon_chain_slashing(
        self, step: ReconciliationStep, event: BeaconChainSlashingFactorDecreased
    ):
        staker = step.get_or_create(STAKER, event.staker)
        step.touch(staker)

        step.add_record(
            BEACON_CHAIN_SLASHING,
            staker_id=staker.id,
            data={
                "prev_beacon_chain_slashing_factor": str(event.prev_beacon_chain_slashing_factor),
                "new_beacon_chain_slashing_factor": str(event.new_beacon_chain_slashing_factor),
            },
        )
        self.logger.critical(
            f"BEACON CHAIN SLASHING: staker {staker.id} factor "
            f"{event.prev_beacon_chain_slashing_factor} -> "
            f"{event.new_beacon_chain_slashing_factor} at {step.event_id}"
        )

    def _burn_or_redistribute(self, step: ReconciliationStep, event: ProtocolEvent, direction: str):
        strategy = step.get_or_create(STRATEGY, event.strategy)
        step.touch(strategy)

        # The operator set may predate the indexed range; keep the composite id either way
        operator_set = step.load(OPERATOR_SET, *operator_set_key(event))
        if operator_set is not None:
            operator_set.last_activity_at = event.block_timestamp

        step.add_record(
            BURN_SHARES_EVENT,
            strategy_id=strategy.id,
            operator_set_id=operator_set.id if operator_set is not None else None,
            data={
                "burn_type": f"BURN_OR_REDISTRIBUTABLE_{direction}",
                "operator_set": step.id_for(OPERATOR_SET, *operator_set_key(event)),
                "slash_id": event.slash_id,
                "shares": str(event.shares),
            },
        )

    def burn_or_redistributable_increased(
        self, step: ReconciliationStep, event: BurnOrRedistributableSharesIncreased
    ):
        self._burn_or_redistribute(step, event, "INCREASED")

    def burn_or_redistributable_decreased(
        self, step: ReconciliationStep, event: BurnOrRedistributableSharesDecreased
    ):
        self._burn_or_redistribute(step, event, "DECREASED")

    def burnable_shares_decreased(self, step: ReconciliationStep, event: BurnableSharesDecreased):
        strategy = step.get_or_create(STRATEGY, event.strategy)
        step.touch(strategy)

        step.add_record(
            BURN_SHARES_EVENT,
            strategy_id=strategy.id,
            data={"burn_type": "BURNABLE_DECREASED", "shares": str(event.shares)},
        )

    def burnable_eth_shares_increased(
        self, step: ReconciliationStep, event: BurnableETHSharesIncreased
    ):
        step.add_record(
            BURN_SHARES_EVENT,
            data={"burn_type": "BURNABLE_ETH_INCREASED", "shares": str(event.shares)},
        )
        self.logger.info(f"{event.shares} beacon chain ETH shares marked for burning")
