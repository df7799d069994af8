import logging

import pytest

from factories import AVS, OPERATOR, EventFactory
from services.engine import ReconciliationEngine
from services.events import OperatorRegistered, OperatorSetCreated
from services.store.memory import InMemoryEntityStore


@pytest.fixture
def logger():
    return logging.getLogger("tests.indexer")


@pytest.fixture
def store():
    return InMemoryEntityStore()


@pytest.fixture
def engine(store, logger):
    return ReconciliationEngine(store, logger)


@pytest.fixture
def make():
    return EventFactory()


@pytest.fixture
def registered_operator(engine, make):
    """An operator registered through its creation event."""
    engine.process(make(OperatorRegistered, operator=OPERATOR, delegation_approver=OPERATOR))
    return OPERATOR


@pytest.fixture
def operator_set(engine, make):
    """Operator set 1 of the test AVS."""
    engine.process(make(OperatorSetCreated, avs=AVS, operator_set_index=1))
    return f"{AVS}-1"
