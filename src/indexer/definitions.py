"""
Dagster Definitions for the protocol state indexer
"""

from dagster import Definitions

from indexer.defs import (
    protocol_state_asset,
    protocol_state_job,
    protocol_state_schedule,
    resources,
)


defs = Definitions(
    assets=[protocol_state_asset],
    jobs=[protocol_state_job],
    schedules=[protocol_state_schedule],
    resources=resources,
)
