# services/dispatch.py

import logging
from typing import Dict, List, Optional, Type

from services.events import EVENT_CLASSES, ProtocolEvent
from services.reconcilers.allocation import AllocationReconciler
from services.reconcilers.base import BaseReconciler
from services.reconcilers.delegation import DelegationReconciler
from services.reconcilers.eigenpod import EigenPodReconciler
from services.reconcilers.operator import OperatorReconciler
from services.reconcilers.operator_set import OperatorSetReconciler
from services.reconcilers.rewards import RewardsReconciler
from services.reconcilers.slashing import SlashingReconciler
from services.reconcilers.strategy import StrategyReconciler

RECONCILER_CLASSES: List[Type[BaseReconciler]] = [
    OperatorReconciler,
    OperatorSetReconciler,
    DelegationReconciler,
    SlashingReconciler,
    AllocationReconciler,
    StrategyReconciler,
    EigenPodReconciler,
    RewardsReconciler,
]


class EventDispatcher:
    """
    Static event-type -> reconciler table.

    Built once at construction; every event variant is owned by exactly one
    reconciler. The table holds no per-event state.
    """

    def __init__(self, logger: logging.Logger, reconcilers: Optional[List[BaseReconciler]] = None):
        self.logger = logger
        self.reconcilers = reconcilers or [cls(logger) for cls in RECONCILER_CLASSES]
        self._table: Dict[str, BaseReconciler] = {}

        for reconciler in self.reconcilers:
            for event_class in reconciler.handlers():
                owner = self._table.get(event_class.EVENT_TYPE)
                if owner is not None:
                    raise ValueError(
                        f"{event_class.EVENT_TYPE} handled by both {type(owner).__name__} "
                        f"and {type(reconciler).__name__}"
                    )
                self._table[event_class.EVENT_TYPE] = reconciler

    def reconciler_for(self, event: ProtocolEvent) -> Optional[BaseReconciler]:
        return self._table.get(event.EVENT_TYPE)

    @property
    def event_types(self) -> List[str]:
        return sorted(self._table)

    def unhandled_event_types(self) -> List[str]:
        return sorted(set(EVENT_CLASSES) - set(self._table))
