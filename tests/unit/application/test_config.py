"""Unit tests for OrchestratorConfig and profile loading."""

from pathlib import Path

import pytest

from agentrun.application.config import OrchestratorConfig, load_profile
from agentrun.core.errors import ConfigurationError

CONFIG_DIR = Path(__file__).resolve().parents[3] / "configs"


class TestOrchestratorConfig:
    """Tests for defaults and validation."""

    def test_defaults(self):
        config = OrchestratorConfig()
        assert config.default_planner == "auto"
        assert config.default_max_iterations == 10
        assert config.persistor.type == "memory"
        assert config.strategy.concurrency_limit == 4
        assert config.bus.max_retries == 3
        assert config.bus.retry_base_delay_ms == 100

    def test_unknown_field_rejected(self):
        with pytest.raises(ConfigurationError, match="Invalid orchestrator configuration"):
            OrchestratorConfig.from_mapping({"tenant": "acme"})

    def test_invalid_planner_rejected(self):
        with pytest.raises(ConfigurationError):
            OrchestratorConfig.from_mapping({"default_planner": "magic"})

    def test_non_positive_limits_rejected(self):
        with pytest.raises(ConfigurationError):
            OrchestratorConfig.from_mapping({"strategy": {"max_tool_calls": 0}})

    def test_bus_jitter_is_a_ratio(self):
        with pytest.raises(ConfigurationError):
            OrchestratorConfig.from_mapping({"bus": {"retry_jitter": 1.5}})

    def test_network_persistor_requires_connection_string(self):
        with pytest.raises(ConfigurationError, match="connection_string"):
            OrchestratorConfig.from_mapping({"persistor": {"type": "mongodb"}})


class TestContextStoreConfig:
    """Tests for merging persistor defaults with per-collection overrides."""

    def test_persistor_settings_flow_through(self):
        config = OrchestratorConfig.from_mapping(
            {"persistor": {"ttl_ms": 5000, "max_snapshots": 50, "enable_compression": True}}
        )
        store = config.context_store_config("session")
        assert store.type == "memory"
        assert store.ttl_ms == 5000
        assert store.max_items == 50
        assert store.enable_compression is True

    def test_override_switches_backend(self):
        """Test storage.memory can move memory to Redis while sessions stay on MongoDB."""
        config = OrchestratorConfig.from_mapping(
            {
                "persistor": {"type": "mongodb", "connection_string": "mongodb://db"},
                "storage": {
                    "memory": {
                        "type": "redis",
                        "connection_string": "redis://cache",
                        "collection": "agent_memory",
                    }
                },
            }
        )

        session = config.context_store_config("session")
        memory = config.context_store_config("memory")

        assert (session.type, session.connection_string) == ("mongodb", "mongodb://db")
        assert (memory.type, memory.connection_string) == ("redis", "redis://cache")
        assert memory.collections.memory == "agent_memory"

    def test_override_without_connection_string(self):
        config = OrchestratorConfig.from_mapping({"storage": {"snapshot": {"type": "redis"}}})
        with pytest.raises(ConfigurationError, match="snapshot"):
            config.context_store_config("snapshot")


class TestLoadProfile:
    """Tests for YAML profiles."""

    def test_dev_profile(self):
        config = load_profile("dev", config_dir=CONFIG_DIR)
        assert config.persistor.type == "memory"
        assert config.log_level == "DEBUG"

    def test_prod_profile(self):
        config = load_profile("prod", config_dir=CONFIG_DIR)
        assert config.persistor.type == "mongodb"
        assert config.context_store_config("memory").type == "redis"
        assert config.log_format == "json"

    def test_missing_profile(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Profile not found"):
            load_profile("staging", config_dir=tmp_path)

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "broken.yaml").write_text("persistor: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="not valid YAML"):
            load_profile("broken", config_dir=tmp_path)

    def test_empty_profile_uses_defaults(self, tmp_path):
        (tmp_path / "empty.yaml").write_text("", encoding="utf-8")
        assert load_profile("empty", config_dir=tmp_path) == OrchestratorConfig()
