"""
Matter side of the bridge.

Classification turns Home Assistant devices into DeviceShapes, the device
runtime materializes them, and the command router sends controller
commands back to Home Assistant.
"""

from .bridge import BridgeConfig, BridgeState, JsonRpcError, MatterBridge
from .classification import ClassifierOptions, DeviceClassifier
from .commands import CommandRouter
from .models import ClusterType, MatterDeviceType
from .runtime import DeviceHandle, DeviceRuntime, InMemoryRuntime, VirtualDevice
from .shape import DeviceShape, FrozenDeviceShape

__all__ = [
    "BridgeConfig",
    "BridgeState",
    "JsonRpcError",
    "MatterBridge",
    "ClassifierOptions",
    "DeviceClassifier",
    "CommandRouter",
    "ClusterType",
    "MatterDeviceType",
    "DeviceHandle",
    "DeviceRuntime",
    "InMemoryRuntime",
    "VirtualDevice",
    "DeviceShape",
    "FrozenDeviceShape",
]
