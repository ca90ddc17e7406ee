"""Tests for configuration loading."""

import pytest

from messagepipe.broker.memory import BrokerConfig
from messagepipe.utils.config import Config, get_config, reset_config


class TestConfig:
    """Test Config."""

    def test_defaults_loaded(self):
        """Test packaged defaults are present."""
        config = Config()

        assert config.get("broker.topic") == "messages"
        assert config.get("broker.num_partitions") == 3
        assert config.get("broker.acks") == "all"
        assert config.get("consumer.group_id") == "message-consumer-group"
        assert config.get("store.backend") == "memory"

    def test_missing_key_default(self):
        """Test unknown keys fall back to the default."""
        assert Config().get("nope.nothing", 7) == 7

    def test_file_merged_over_defaults(self, tmp_path):
        """Test a user file overrides only what it names."""
        path = tmp_path / "custom.yaml"
        path.write_text("broker:\n  num_partitions: 6\nstore:\n  backend: redis\n")

        config = Config(str(path))

        assert config.get("broker.num_partitions") == 6
        assert config.get("broker.topic") == "messages"
        assert config.get("store.backend") == "redis"

    def test_empty_file(self, tmp_path):
        """Test an empty file changes nothing."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert Config(str(path)).get("broker.topic") == "messages"

    def test_env_overrides(self, monkeypatch):
        """Test environment variables win over files."""
        monkeypatch.setenv("MESSAGEPIPE_TOPIC", "events")
        monkeypatch.setenv("MESSAGEPIPE_GROUP_ID", "g2")
        monkeypatch.setenv("MESSAGEPIPE_PARTITIONS", "8")
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        config = Config()

        assert config.get("broker.topic") == "events"
        assert config.get("consumer.group_id") == "g2"
        assert config.get("broker.num_partitions") == 8
        assert config.get("store.redis_url") == "redis://cache:6379/1"
        assert config.get("logging.level") == "DEBUG"

    def test_set_creates_sections(self):
        """Test dot-notation set builds nested sections."""
        config = Config()
        config.set("extra.nested.value", 1)

        assert config.get("extra.nested.value") == 1

    def test_section_is_a_copy(self):
        """Test mutating a section does not touch the config."""
        config = Config()
        section = config.section("broker")
        section["topic"] = "changed"

        assert config.get("broker.topic") == "messages"

    def test_broker_config_from_config(self):
        """Test the broker dataclass reads its section."""
        config = Config()
        config.set("broker.max_poll_records", 10)

        broker_config = BrokerConfig.from_config(config)

        assert broker_config.max_poll_records == 10
        assert broker_config.num_partitions == 3

    def test_global_config(self):
        """Test the process-wide instance is cached until reset."""
        first = get_config()

        assert get_config() is first

        reset_config()

        assert get_config() is not first

    def test_missing_file(self, tmp_path):
        """Test a missing file is an error."""
        with pytest.raises(FileNotFoundError):
            Config(str(tmp_path / "missing.yaml"))
