"""Tests for key namespaces."""

from src.coordination.keys import (
    CONFIG_KEY_PREFIX,
    REGISTERED_KEY_PREFIX,
    config_key,
    logical_registration_key,
    registration_key,
)


class TestKeyNamespaces:
    """Test logical to physical key mapping."""
    
    def test_registration_key(self):
        assert registration_key("svc-a") == "/registered/svc-a"
    
    def test_config_key(self):
        assert config_key("db.url") == "/config/db.url"
    
    def test_namespaces_are_disjoint(self):
        """The same logical key maps to different physical keys."""
        assert registration_key("shared") != config_key("shared")
        assert not REGISTERED_KEY_PREFIX.startswith(CONFIG_KEY_PREFIX)
        assert not CONFIG_KEY_PREFIX.startswith(REGISTERED_KEY_PREFIX)
    
    def test_strip_registration_prefix(self):
        assert logical_registration_key(registration_key("svc-a")) == "svc-a"
    
    def test_empty_key(self):
        """Keys are not validated."""
        assert registration_key("") == REGISTERED_KEY_PREFIX
        assert logical_registration_key(REGISTERED_KEY_PREFIX) == ""
