from .assets import protocol_state_asset
from .jobs import protocol_state_job, protocol_state_schedule
from .resources import DatabaseResource, ConfigResource


resources = {
    "db": DatabaseResource(),
    "config": ConfigResource(),
}
