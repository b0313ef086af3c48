"""
Tests for configuration loading and saving.
"""

import json
from pathlib import Path

from hassbridge.config import (
    DEFAULT_HOST,
    Config,
    MatterConfig,
    get_config,
    reset_config,
    set_config,
)


class TestConfig:
    """Tests for Config."""

    def test_defaults(self):
        """Test default values."""
        config = Config()
        assert config.host == DEFAULT_HOST
        assert config.token is None
        assert config.refresh_debounce == 5.0
        assert config.wait_for_running is True
        assert config.white_list == []
        assert config.matter.port == 5580

    def test_session_config(self):
        """Test session timers are handed to the session."""
        config = Config(ping_interval=10, ping_timeout=12, reconnect_timeout=0, reject_unauthorized=False)
        session = config.session_config()
        assert session.ping_interval == 10
        assert session.ping_timeout == 12
        assert session.reconnect_timeout == 0
        assert session.reject_unauthorized is False

    def test_to_dict_from_dict(self):
        """Test a config survives a dict round trip."""
        config = Config(
            host="wss://ha.example.com",
            token="abc",
            black_list=["Garden Pump"],
            device_entity_black_list={"Robot": ["sensor.robot_battery"]},
            matter=MatterConfig(port=5581, auto_start=True),
        )
        restored = Config.from_dict(config.to_dict())
        assert restored.host == "wss://ha.example.com"
        assert restored.black_list == ["Garden Pump"]
        assert restored.device_entity_black_list == {"Robot": ["sensor.robot_battery"]}
        assert restored.matter.port == 5581
        assert restored.matter.auto_start is True

    def test_unknown_keys_ignored(self):
        """Test unknown keys do not break loading."""
        config = Config.from_dict({"token": "abc", "legacy_option": 1, "matter": {"port": 1, "old": True}})
        assert config.token == "abc"
        assert config.matter.port == 1

    def test_save_and_load(self, tmp_path: Path):
        """Test saving to and loading from the data directory."""
        config = Config(token="abc", filter_by_area="Kitchen", data_dir=tmp_path)
        config.save()

        assert Config.exists(tmp_path)
        data = json.loads((tmp_path / "config.json").read_text())
        assert data["filter_by_area"] == "Kitchen"
        assert "data_dir" not in data

        loaded = Config.load(tmp_path)
        assert loaded.token == "abc"
        assert loaded.filter_by_area == "Kitchen"
        assert loaded.data_dir == tmp_path

    def test_load_missing(self, tmp_path: Path):
        """Test loading without a file gives defaults."""
        assert not Config.exists(tmp_path)
        config = Config.load(tmp_path)
        assert config.token is None
        assert config.snapshot_path == tmp_path / "homeassistant.json"

    def test_global_config(self, tmp_path: Path):
        """Test the global instance helpers."""
        reset_config()
        try:
            config = Config(token="global", data_dir=tmp_path)
            set_config(config)
            assert get_config() is config
            reset_config()
            assert get_config(tmp_path) is not config
        finally:
            reset_config()


class TestMatterConfig:
    """Tests for MatterConfig."""

    def test_bridge_config(self, tmp_path: Path):
        """Test the runtime settings derived from the config."""
        bridge = MatterConfig(host="matter.local", port=5581).bridge_config(tmp_path)
        assert bridge.url == "ws://matter.local:5581/rpc"
        assert bridge.storage_path == tmp_path / "matter"
        assert bridge.bridge_path is None

    def test_bridge_path(self, tmp_path: Path):
        """Test explicit paths are kept."""
        matter = MatterConfig(bridge_path="/opt/bridge/index.js", storage_path=str(tmp_path / "fabric"))
        bridge = matter.bridge_config(tmp_path)
        assert bridge.bridge_path == Path("/opt/bridge/index.js")
        assert bridge.storage_path == tmp_path / "fabric"
