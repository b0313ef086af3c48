"""
Configuration management for hassbridge.

Handles:
- Home Assistant connection and session timers
- Entity and device filters
- Matter bridge settings
"""

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from .hub.session import SessionConfig
from .matter.bridge import BridgeConfig

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_DATA_DIR = Path.home() / ".hassbridge"

DEFAULT_HOST = "ws://homeassistant.local:8123"
DEFAULT_MATTER_PORT = 5580


@dataclass
class MatterConfig:
    """Configuration for the matter.js sidecar."""
    host: str = "localhost"
    port: int = DEFAULT_MATTER_PORT
    bridge_path: Optional[str] = None
    storage_path: Optional[str] = None
    auto_start: bool = False
    connect_timeout: float = 10.0
    command_timeout: float = 30.0
    auto_reconnect: bool = True

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "bridge_path": self.bridge_path,
            "storage_path": self.storage_path,
            "auto_start": self.auto_start,
            "connect_timeout": self.connect_timeout,
            "command_timeout": self.command_timeout,
            "auto_reconnect": self.auto_reconnect,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MatterConfig":
        # Filter to only known fields to handle config evolution
        known_fields = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known_fields})

    def bridge_config(self, data_dir: Path) -> BridgeConfig:
        return BridgeConfig(
            host=self.host,
            port=self.port,
            bridge_path=Path(self.bridge_path) if self.bridge_path else None,
            storage_path=Path(self.storage_path) if self.storage_path else data_dir / "matter",
            auto_start=self.auto_start,
            connect_timeout_seconds=self.connect_timeout,
            command_timeout_seconds=self.command_timeout,
            auto_reconnect=self.auto_reconnect,
        )


@dataclass
class Config:
    """
    Main hassbridge configuration.

    Stored at ~/.hassbridge/config.json
    """
    # Home Assistant connection
    host: str = DEFAULT_HOST
    token: Optional[str] = None
    certificate_path: Optional[str] = None
    reject_unauthorized: bool = True

    # Session timers (seconds)
    reconnect_timeout: float = 60.0
    reconnect_retries: int = 10
    ping_interval: float = 30.0
    ping_timeout: float = 35.0
    response_timeout: float = 5.0
    refresh_debounce: float = 5.0
    wait_for_running: bool = True

    # Filters
    filter_by_area: Optional[str] = None
    filter_by_label: Optional[str] = None
    apply_filters_to_device_entities: bool = False
    white_list: List[str] = field(default_factory=list)
    black_list: List[str] = field(default_factory=list)
    entity_black_list: List[str] = field(default_factory=list)
    device_entity_black_list: Dict[str, List[str]] = field(default_factory=dict)
    split_entities: List[str] = field(default_factory=list)

    # Naming
    name_postfix: str = ""
    postfix: str = ""

    # Classification
    air_quality_regex: Optional[str] = None
    enable_server_rvc: bool = True

    # Lifecycle
    unregister_on_shutdown: bool = False
    snapshot: bool = True

    # Components
    matter: MatterConfig = field(default_factory=MatterConfig)

    # Paths
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    @property
    def snapshot_path(self) -> Path:
        return self.data_dir / "homeassistant.json"

    def ensure_data_dir(self) -> None:
        """Create data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def session_config(self) -> SessionConfig:
        return SessionConfig(
            ping_interval=self.ping_interval,
            ping_timeout=self.ping_timeout,
            reconnect_timeout=self.reconnect_timeout,
            reconnect_retries=self.reconnect_retries,
            response_timeout=self.response_timeout,
            certificate_path=self.certificate_path,
            reject_unauthorized=self.reject_unauthorized,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name not in ("matter", "data_dir")}
        data["matter"] = self.matter.to_dict()
        return data

    def save(self) -> None:
        """Save configuration to disk."""
        self.ensure_data_dir()

        with open(self.config_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.debug(f"Configuration saved to {self.config_path}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any], data_dir: Optional[Path] = None) -> "Config":
        known_fields = {f.name for f in fields(cls)} - {"matter", "data_dir"}
        unknown = set(data) - known_fields - {"matter"}
        if unknown:
            logger.debug(f"Ignoring unknown config keys: {sorted(unknown)}")

        config = cls(
            data_dir=data_dir or DEFAULT_DATA_DIR,
            **{k: v for k, v in data.items() if k in known_fields},
        )
        if "matter" in data:
            config.matter = MatterConfig.from_dict(data["matter"] or {})
        return config

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "Config":
        """Load configuration from disk."""
        data_dir = data_dir or DEFAULT_DATA_DIR
        config_path = data_dir / "config.json"

        if not config_path.exists():
            return cls(data_dir=data_dir)

        with open(config_path, 'r') as f:
            data = json.load(f)

        return cls.from_dict(data, data_dir)

    @classmethod
    def exists(cls, data_dir: Optional[Path] = None) -> bool:
        """Check if configuration exists."""
        data_dir = data_dir or DEFAULT_DATA_DIR
        return (data_dir / "config.json").exists()


# Global config instance
_config: Optional[Config] = None


def get_config(data_dir: Optional[Path] = None) -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load(data_dir)
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
