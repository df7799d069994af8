"""
Dagster Job and Schedule for the protocol state indexer
"""

from dagster import AssetSelection, ScheduleDefinition, define_asset_job

from .assets import protocol_state_asset


protocol_state_job = define_asset_job(
    name="protocol_state_update",
    selection=AssetSelection.assets(protocol_state_asset),
    description="Reconcile new protocol events into operator, AVS and staker state",
)

protocol_state_schedule = ScheduleDefinition(
    job=protocol_state_job,
    cron_schedule="*/15 * * * *",
    description="Run protocol state reconciliation every 15 minutes",
)
