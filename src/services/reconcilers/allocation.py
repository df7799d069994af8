# services/reconcilers/allocation.py

from typing import Dict, Type

from services.entities import (
    ALLOCATION_DELAY_SET,
    ALLOCATION_EVENT,
    MAGNITUDE_UPDATE,
    OPERATOR,
    OPERATOR_SET,
    STRATEGY,
)
from services.events import (
    AllocationDelaySet,
    AllocationUpdated,
    EncumberedMagnitudeUpdated,
    MaxMagnitudeUpdated,
    ProtocolEvent,
    operator_set_key,
)
from .base import BaseReconciler, Handler, ReconciliationStep


class AllocationReconciler(BaseReconciler):
    """Operator magnitude allocations to operator sets. Effect blocks are recorded, not enforced."""

    def handlers(self) -> Dict[Type[ProtocolEvent], Handler]:
        return {
            AllocationUpdated: self.allocation_updated,
            AllocationDelaySet: self.allocation_delay_set,
            EncumberedMagnitudeUpdated: self.encumbered_magnitude_updated,
            MaxMagnitudeUpdated: self.max_magnitude_updated,
        }

    def allocation_updated(self, step: ReconciliationStep, event: AllocationUpdated):
        operator = step.require(OPERATOR, event.operator)
        operator_set = step.require(OPERATOR_SET, *operator_set_key(event))
        strategy = step.get_or_create(STRATEGY, event.strategy)

        operator_set.allocation_count += 1
        operator_set.last_activity_at = event.block_timestamp
        step.touch(operator, strategy)

        step.add_record(
            ALLOCATION_EVENT,
            operator_id=operator.id,
            operator_set_id=operator_set.id,
            strategy_id=strategy.id,
            data={"magnitude": str(event.magnitude), "effect_block": event.effect_block},
        )
        self.logger.info(
            f"Allocation of operator {operator.id} to {operator_set.id} for strategy "
            f"{strategy.id} set to {event.magnitude} (effective block {event.effect_block})"
        )

    def allocation_delay_set(self, step: ReconciliationStep, event: AllocationDelaySet):
        operator = step.load(OPERATOR, event.operator)
        step.touch(operator)

        step.add_record(
            ALLOCATION_DELAY_SET,
            operator_id=operator.id if operator is not None else None,
            data={
                "operator_address": step.id_for(OPERATOR, event.operator),
                "delay": event.delay,
                "effect_block": event.effect_block,
            },
        )

    def _magnitude_update(
        self, step: ReconciliationStep, event: ProtocolEvent, magnitude_type: str, magnitude: int
    ):
        operator = step.load(OPERATOR, event.operator)
        strategy = step.get_or_create(STRATEGY, event.strategy)
        step.touch(operator, strategy)

        step.add_record(
            MAGNITUDE_UPDATE,
            operator_id=operator.id if operator is not None else None,
            strategy_id=strategy.id,
            data={
                "magnitude_type": magnitude_type,
                "operator_address": step.id_for(OPERATOR, event.operator),
                "magnitude": str(magnitude),
            },
        )

    def encumbered_magnitude_updated(
        self, step: ReconciliationStep, event: EncumberedMagnitudeUpdated
    ):
        self._magnitude_update(step, event, "ENCUMBERED", event.encumbered_magnitude)

    def max_magnitude_updated(self, step: ReconciliationStep, event: MaxMagnitudeUpdated):
        self._magnitude_update(step, event, "MAX", event.max_magnitude)
