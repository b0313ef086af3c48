"""
Home Assistant WebSocket client.

- session: one authenticated connection with keepalive and reconnection
- client: registries, push event fan-out and refresh debounce
- models: pydantic models of registry entries and states
"""

from .client import HomeAssistant
from .models import HubArea, HubCoreConfig, HubDevice, HubEntity, HubLabel, HubState
from .session import HubSession, SessionConfig, SessionState

__all__ = [
    "HomeAssistant",
    "HubSession",
    "SessionConfig",
    "SessionState",
    "HubDevice",
    "HubEntity",
    "HubState",
    "HubArea",
    "HubLabel",
    "HubCoreConfig",
]
