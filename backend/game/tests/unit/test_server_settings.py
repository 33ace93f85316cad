import pytest
from pydantic import ValidationError

from game.server.settings import SyncServerSettings
from game.session.settings import GameClientSettings


class TestSyncServerSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SYNC_SNAPSHOT_PATH", raising=False)
        settings = SyncServerSettings()
        assert settings.cors_origins == ["http://localhost:5173"]
        assert settings.snapshot_path is None
        assert settings.session_ttl_seconds == 3600
        assert settings.max_decode_errors == 5

    def test_cors_origins_json_array(self, monkeypatch):
        monkeypatch.setenv("SYNC_CORS_ORIGINS", '["http://a.com","http://b.com"]')
        settings = SyncServerSettings()
        assert settings.cors_origins == ["http://a.com", "http://b.com"]

    def test_cors_origins_csv(self, monkeypatch):
        monkeypatch.setenv("SYNC_CORS_ORIGINS", "http://a.com,http://b.com")
        settings = SyncServerSettings()
        assert settings.cors_origins == ["http://a.com", "http://b.com"]

    def test_cors_origins_blank_disables_cors(self, monkeypatch):
        monkeypatch.setenv("SYNC_CORS_ORIGINS", "")
        settings = SyncServerSettings()
        assert settings.cors_origins == []

    def test_snapshot_path_from_env(self, monkeypatch):
        monkeypatch.setenv("SYNC_SNAPSHOT_PATH", "backend/storage/sync.json.gz")
        settings = SyncServerSettings()
        assert settings.snapshot_path == "backend/storage/sync.json.gz"

    def test_log_dir_empty_rejected(self):
        with pytest.raises(ValidationError, match="log_dir"):
            SyncServerSettings(log_dir="")

    def test_short_session_ttl_rejected(self):
        with pytest.raises(ValidationError, match="session_ttl_seconds"):
            SyncServerSettings(session_ttl_seconds=10)

    def test_terminated_ttl_cannot_exceed_session_ttl(self):
        with pytest.raises(ValidationError, match="must not exceed"):
            SyncServerSettings(session_ttl_seconds=600, terminated_ttl_seconds=1200)

    def test_reaper_interval_must_be_positive(self):
        with pytest.raises(ValidationError, match="reaper_interval_seconds"):
            SyncServerSettings(reaper_interval_seconds=0)

    def test_max_decode_errors_zero_rejected(self):
        with pytest.raises(ValidationError, match="max_decode_errors"):
            SyncServerSettings(max_decode_errors=0)


class TestGameClientSettings:
    def test_defaults(self):
        settings = GameClientSettings()
        assert settings.heartbeat_interval_seconds == 10
        assert settings.staleness_check_interval_seconds == 15
        assert settings.stale_after_seconds == 30
        assert settings.online_window_seconds == 15
        assert settings.away_window_seconds == 60

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("GAME_HEARTBEAT_INTERVAL_SECONDS", "2.5")
        assert GameClientSettings().heartbeat_interval_seconds == 2.5

    def test_non_positive_interval_rejected(self):
        with pytest.raises(ValidationError, match="stale_after_seconds"):
            GameClientSettings(stale_after_seconds=0)

    def test_key_attempts_at_least_one(self):
        with pytest.raises(ValidationError, match="session_key_attempts"):
            GameClientSettings(session_key_attempts=0)
