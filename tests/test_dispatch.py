import logging

import pytest

from services.dispatch import RECONCILER_CLASSES, EventDispatcher
from services.events import EVENT_CLASSES, OperatorSlashed, PodDeployed
from services.reconcilers.eigenpod import EigenPodReconciler
from services.reconcilers.slashing import SlashingReconciler

LOGGER = logging.getLogger("tests.dispatch")


class TestEventDispatcher:
    def test_every_event_type_has_exactly_one_reconciler(self):
        dispatcher = EventDispatcher(LOGGER)
        assert dispatcher.unhandled_event_types() == []
        assert dispatcher.event_types == sorted(EVENT_CLASSES)

    def test_routes_by_event_type(self):
        dispatcher = EventDispatcher(LOGGER)
        by_class = {type(r): r for r in dispatcher.reconcilers}
        assert set(by_class) == set(RECONCILER_CLASSES)

        slashing = OperatorSlashed(1, 0, 1, "0x01", "0x02", "0x03", "0x04", 1, [], [], "")
        pod = PodDeployed(1, 1, 1, "0x01", "0x02", "0x05", "0x06")
        assert dispatcher.reconciler_for(slashing) is by_class[SlashingReconciler]
        assert dispatcher.reconciler_for(pod) is by_class[EigenPodReconciler]

    def test_partial_table_reports_unhandled(self):
        dispatcher = EventDispatcher(LOGGER, reconcilers=[SlashingReconciler(LOGGER)])
        assert "PodDeployed" in dispatcher.unhandled_event_types()
        assert "OperatorSlashed" not in dispatcher.unhandled_event_types()

    def test_duplicate_owner_is_refused(self):
        with pytest.raises(ValueError):
            EventDispatcher(LOGGER, reconcilers=[SlashingReconciler(LOGGER), SlashingReconciler(LOGGER)])
