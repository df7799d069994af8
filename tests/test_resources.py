import pytest

from indexer.defs.resources import ConfigResource, DatabaseResource


class TestDatabaseResource:
    def test_engines_are_created_once(self, tmp_path):
        db = DatabaseResource(
            events_db_url=f"sqlite:///{tmp_path / 'events.db'}",
            analytics_db_url=f"sqlite:///{tmp_path / 'analytics.db'}",
        )

        assert db.events_engine is db.events_engine
        assert db.events_engine is not db.analytics_engine
        assert db.analytics_engine.url.database.endswith("analytics.db")
        db.dispose()

    def test_missing_url(self, tmp_path):
        db = DatabaseResource(events_db_url=f"sqlite:///{tmp_path / 'events.db'}", analytics_db_url="")
        with pytest.raises(ValueError, match="analytics"):
            db.analytics_engine


def test_config_defaults():
    config = ConfigResource()
    assert config.checkpoint_key == "protocol_state_v1"
    assert config.events_table == "protocol_events"
    assert config.max_events_per_run > config.log_batch_progress_every > 0
