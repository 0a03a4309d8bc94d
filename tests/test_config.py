"""Tests for settings."""

from src.server.config import Settings


class TestStoreEndpoints:
    """Test endpoint parsing from the environment."""
    
    def test_comma_separated(self, monkeypatch):
        monkeypatch.setenv("STORE_ENDPOINTS", "redis://a:6379, redis://b:6379")
        assert Settings().store_endpoints == ["redis://a:6379", "redis://b:6379"]
    
    def test_single_endpoint(self, monkeypatch):
        monkeypatch.setenv("STORE_ENDPOINTS", "cache:6379")
        assert Settings().store_endpoints == ["cache:6379"]
    
    def test_json_list(self, monkeypatch):
        monkeypatch.setenv("STORE_ENDPOINTS", '["redis://a:6379", "memory://"]')
        assert Settings().store_endpoints == ["redis://a:6379", "memory://"]
    
    def test_list_argument(self):
        assert Settings(store_endpoints=["memory://"]).store_endpoints == ["memory://"]
    
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("STORE_ENDPOINTS", raising=False)
        settings = Settings()
        assert settings.store_endpoints == ["redis://localhost:6379/0"]
        assert settings.keyspace_events == "K$gxe"
        assert settings.dial_timeout_seconds == 5.0
