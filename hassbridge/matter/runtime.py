"""
Device runtime interfaces.

The device runtime owns the Matter side of a bridged device: endpoint
lifecycle, attribute storage and low-level command dispatch. hassbridge only
calls the primitives declared here. Two implementations exist:

- InMemoryRuntime: virtual devices for dry runs and tests
- MatterBridge (bridge.py): matter.js sidecar over JSON-RPC

Every handle keeps a local attribute mirror seeded from the shape's cluster
defaults, so reads never leave the process.
"""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..errors import MaterializationError
from .models import ClusterType, SwitchEvent, cluster_name
from .shape import MAIN_ENDPOINT, FrozenDeviceShape

logger = logging.getLogger(__name__)

# Cluster each handled command belongs to
COMMAND_CLUSTERS: Dict[str, ClusterType] = {
    "on": ClusterType.ON_OFF,
    "off": ClusterType.ON_OFF,
    "toggle": ClusterType.ON_OFF,
    "moveToLevel": ClusterType.LEVEL_CONTROL,
    "moveToLevelWithOnOff": ClusterType.LEVEL_CONTROL,
    "moveToColorTemperature": ClusterType.COLOR_CONTROL,
    "moveToColor": ClusterType.COLOR_CONTROL,
    "moveToHue": ClusterType.COLOR_CONTROL,
    "moveToSaturation": ClusterType.COLOR_CONTROL,
    "moveToHueAndSaturation": ClusterType.COLOR_CONTROL,
    "lockDoor": ClusterType.DOOR_LOCK,
    "unlockDoor": ClusterType.DOOR_LOCK,
    "upOrOpen": ClusterType.WINDOW_COVERING,
    "downOrClose": ClusterType.WINDOW_COVERING,
    "stopMotion": ClusterType.WINDOW_COVERING,
    "goToLiftPercentage": ClusterType.WINDOW_COVERING,
    "open": ClusterType.VALVE_CONFIGURATION_AND_CONTROL,
    "close": ClusterType.VALVE_CONFIGURATION_AND_CONTROL,
    "changeToMode": ClusterType.RVC_RUN_MODE,
    "pause": ClusterType.RVC_OPERATIONAL_STATE,
    "resume": ClusterType.RVC_OPERATIONAL_STATE,
    "goHome": ClusterType.RVC_OPERATIONAL_STATE,
}


@dataclass
class CommandContext:
    """What a command handler receives."""
    device: "DeviceHandle"
    endpoint: str
    command: str
    cluster: Optional[ClusterType] = None
    request: Dict[str, Any] = field(default_factory=dict)
    # Snapshot of the command's cluster attributes when it arrived
    attributes: Dict[str, Any] = field(default_factory=dict)


CommandHandler = Callable[[CommandContext], Awaitable[None]]
SubscribeHandler = Callable[[Any, Any, Dict[str, Any]], Any]


class DeviceHandle(ABC):
    """A materialized device as seen by the platform and command routing."""

    def __init__(self, shape: FrozenDeviceShape):
        self.shape = shape
        self.registered = False
        self._attributes: Dict[str, Dict[ClusterType, Dict[str, Any]]] = {}
        for endpoint in shape.endpoints:
            clusters = {cluster: {} for cluster in endpoint.cluster_ids}
            for cluster, defaults in endpoint.cluster_defaults.items():
                clusters.setdefault(cluster, {}).update(copy.deepcopy(defaults))
            self._attributes[endpoint.name] = clusters
        self._command_handlers: Dict[Tuple[str, str], List[CommandHandler]] = {}
        self._subscribe_handlers: Dict[Tuple[str, ClusterType, str], List[SubscribeHandler]] = {}

    @property
    def id(self) -> str:
        return self.shape.unique_id

    @property
    def name(self) -> str:
        return self.shape.name

    def has_endpoint(self, endpoint: str) -> bool:
        return endpoint in self._attributes

    def has_cluster(self, endpoint: str, cluster: ClusterType) -> bool:
        return cluster in self._attributes.get(endpoint, {})

    def has_attribute(self, endpoint: str, cluster: ClusterType, attribute: str) -> bool:
        return attribute in self._attributes.get(endpoint, {}).get(cluster, {})

    def get_attribute(self, endpoint: str, cluster: ClusterType, attribute: str, default: Any = None) -> Any:
        return self._attributes.get(endpoint, {}).get(cluster, {}).get(attribute, default)

    def cluster_attributes(self, endpoint: str, cluster: Optional[ClusterType]) -> Dict[str, Any]:
        if cluster is None:
            return {}
        return copy.deepcopy(self._attributes.get(endpoint, {}).get(cluster, {}))

    def _store(self, endpoint: str, cluster: ClusterType, attribute: str, value: Any) -> bool:
        """Update the local mirror; returns False when the value is unchanged."""
        values = self._attributes[endpoint][cluster]
        if attribute in values and values[attribute] == value:
            return False
        values[attribute] = copy.deepcopy(value)
        return True

    async def set_attribute(self, endpoint: str, cluster: ClusterType, attribute: str, value: Any) -> bool:
        """
        Push a new attribute value to the device.

        Returns:
            True when the value changed, False when it was unchanged or the
            endpoint does not carry the cluster
        """
        if not self.has_cluster(endpoint, cluster):
            logger.debug(f"Device {self.name} endpoint '{endpoint}' has no cluster {cluster_name(cluster)}")
            return False
        if not self._store(endpoint, cluster, attribute, value):
            return False
        logger.debug(f"Device {self.name} set '{endpoint}' {cluster_name(cluster)}.{attribute} = {value}")
        await self._push_attribute(endpoint, cluster, attribute, value)
        return True

    async def set_reachable(self, reachable: bool) -> bool:
        return await self.set_attribute(
            MAIN_ENDPOINT, ClusterType.BRIDGED_DEVICE_BASIC_INFORMATION, "reachable", reachable,
        )

    async def trigger_switch_event(self, endpoint: str, event: SwitchEvent) -> bool:
        if not self.has_cluster(endpoint, ClusterType.SWITCH):
            logger.warning(f"Device {self.name} endpoint '{endpoint}' has no Switch cluster")
            return False
        logger.debug(f"Device {self.name} endpoint '{endpoint}' switch event {event.value}")
        await self._push_switch_event(endpoint, event)
        return True

    def add_command_handler(self, endpoint: str, command: str, handler: CommandHandler) -> None:
        self._command_handlers.setdefault((endpoint, command), []).append(handler)

    def add_subscribe_handler(self, endpoint: str, cluster: ClusterType, attribute: str,
                              handler: SubscribeHandler) -> None:
        self._subscribe_handlers.setdefault((endpoint, cluster, attribute), []).append(handler)

    def command_handlers(self, endpoint: str, command: str) -> List[CommandHandler]:
        return list(self._command_handlers.get((endpoint, command), []))

    async def dispatch_command(
        self,
        endpoint: str,
        command: str,
        request: Optional[Dict[str, Any]] = None,
        cluster: Optional[ClusterType] = None,
    ) -> bool:
        """Run the handlers bound to an incoming command."""
        handlers = self.command_handlers(endpoint, command)
        if not handlers:
            logger.warning(f"Device {self.name} endpoint '{endpoint}' has no handler for command {command}")
            return False
        cluster = cluster if cluster is not None else COMMAND_CLUSTERS.get(command)
        context = CommandContext(
            device=self,
            endpoint=endpoint,
            command=command,
            cluster=cluster,
            request=dict(request or {}),
            attributes=self.cluster_attributes(endpoint, cluster),
        )
        for handler in handlers:
            await handler(context)
        return True

    async def dispatch_write(
        self,
        endpoint: str,
        cluster: ClusterType,
        attribute: str,
        value: Any,
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Apply a controller's attribute write and notify subscribers."""
        if not self.has_cluster(endpoint, cluster):
            logger.warning(f"Device {self.name} endpoint '{endpoint}' has no cluster {cluster_name(cluster)}")
            return False
        old_value = self.get_attribute(endpoint, cluster, attribute)
        self._store(endpoint, cluster, attribute, value)
        for handler in list(self._subscribe_handlers.get((endpoint, cluster, attribute), [])):
            result = handler(value, old_value, context or {})
            if hasattr(result, "__await__"):
                await result
        return True

    @abstractmethod
    async def _push_attribute(self, endpoint: str, cluster: ClusterType, attribute: str, value: Any) -> None:
        """Propagate an attribute change to the Matter side."""

    @abstractmethod
    async def _push_switch_event(self, endpoint: str, event: SwitchEvent) -> None:
        """Emit a generic switch event on the Matter side."""


class DeviceRuntime(ABC):
    """Factory and registry for materialized devices."""

    @abstractmethod
    async def create_device(self, shape: FrozenDeviceShape) -> DeviceHandle:
        ...

    @abstractmethod
    async def register_device(self, device: DeviceHandle) -> None:
        ...

    @abstractmethod
    async def unregister_all(self) -> None:
        ...

    async def start(self) -> bool:
        return True

    async def stop(self) -> None:
        return None


# =============================================================================
# IN-MEMORY RUNTIME
# =============================================================================

class VirtualDevice(DeviceHandle):
    """
    A device that lives only in memory.

    ``execute_command`` and ``write_attribute`` play the part of a Matter
    controller; every pushed change is recorded in ``history``.
    """

    def __init__(self, shape: FrozenDeviceShape):
        super().__init__(shape)
        self.history: List[Tuple[str, ClusterType, str, Any]] = []
        self.switch_events: List[Tuple[str, SwitchEvent]] = []

    async def _push_attribute(self, endpoint: str, cluster: ClusterType, attribute: str, value: Any) -> None:
        self.history.append((endpoint, cluster, attribute, copy.deepcopy(value)))

    async def _push_switch_event(self, endpoint: str, event: SwitchEvent) -> None:
        self.switch_events.append((endpoint, event))

    def updates(self, cluster: ClusterType, attribute: str, endpoint: Optional[str] = None) -> List[Any]:
        """Values pushed for one attribute, in order."""
        return [
            value for ep, cl, attr, value in self.history
            if cl == cluster and attr == attribute and (endpoint is None or ep == endpoint)
        ]

    async def execute_command(self, endpoint: str, command: str, request: Optional[Dict[str, Any]] = None) -> bool:
        """Deliver a command, then apply its local effect as a Matter server would."""
        request = request or {}
        handled = await self.dispatch_command(endpoint, command, request)
        self._apply_local_effect(endpoint, command, request)
        return handled

    async def write_attribute(
        self,
        endpoint: str,
        cluster: ClusterType,
        attribute: str,
        value: Any,
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        return await self.dispatch_write(endpoint, cluster, attribute, value, context)

    def _execute_if_off(self, endpoint: str, cluster: ClusterType) -> bool:
        options = self.get_attribute(endpoint, cluster, "options") or {}
        return bool(options.get("executeIfOff"))

    def _apply_local_effect(self, endpoint: str, command: str, request: Dict[str, Any]) -> None:
        if not self.has_endpoint(endpoint):
            return
        on = self.get_attribute(endpoint, ClusterType.ON_OFF, "onOff", True)

        def store(cluster: ClusterType, attribute: str, value: Any) -> None:
            if self.has_cluster(endpoint, cluster):
                self._store(endpoint, cluster, attribute, value)

        if command == "on":
            store(ClusterType.ON_OFF, "onOff", True)
        elif command == "off":
            store(ClusterType.ON_OFF, "onOff", False)
        elif command == "toggle":
            store(ClusterType.ON_OFF, "onOff", not on)
        elif command == "moveToLevelWithOnOff" and "level" in request:
            store(ClusterType.LEVEL_CONTROL, "currentLevel", request["level"])
            minimum = self.get_attribute(endpoint, ClusterType.LEVEL_CONTROL, "minLevel", 1)
            store(ClusterType.ON_OFF, "onOff", request["level"] > minimum)
        elif command == "moveToLevel" and "level" in request:
            if on or self._execute_if_off(endpoint, ClusterType.LEVEL_CONTROL):
                store(ClusterType.LEVEL_CONTROL, "currentLevel", request["level"])
        elif command in ("moveToColorTemperature", "moveToColor", "moveToHue", "moveToSaturation",
                         "moveToHueAndSaturation"):
            if not on and not self._execute_if_off(endpoint, ClusterType.COLOR_CONTROL):
                return
            if "colorTemperatureMireds" in request:
                store(ClusterType.COLOR_CONTROL, "colorTemperatureMireds", request["colorTemperatureMireds"])
                store(ClusterType.COLOR_CONTROL, "colorMode", 2)
            if "colorX" in request and "colorY" in request:
                store(ClusterType.COLOR_CONTROL, "currentX", request["colorX"])
                store(ClusterType.COLOR_CONTROL, "currentY", request["colorY"])
                store(ClusterType.COLOR_CONTROL, "colorMode", 1)
            if "hue" in request:
                store(ClusterType.COLOR_CONTROL, "currentHue", request["hue"])
                store(ClusterType.COLOR_CONTROL, "colorMode", 0)
            if "saturation" in request:
                store(ClusterType.COLOR_CONTROL, "currentSaturation", request["saturation"])
                store(ClusterType.COLOR_CONTROL, "colorMode", 0)


class InMemoryRuntime(DeviceRuntime):
    """Runtime keeping VirtualDevices keyed by unique id."""

    def __init__(self):
        self.devices: Dict[str, VirtualDevice] = {}
        self.running = False

    async def create_device(self, shape: FrozenDeviceShape) -> VirtualDevice:
        return VirtualDevice(shape)

    async def register_device(self, device: DeviceHandle) -> None:
        if device.id in self.devices:
            raise MaterializationError(f"Device {device.name} unique id {device.id} already registered")
        if not isinstance(device, VirtualDevice):
            raise MaterializationError(f"Device {device.name} was not created by this runtime")
        device.registered = True
        self.devices[device.id] = device
        logger.info(f"Registered device {device.name} with {len(device.shape.endpoints)} endpoint(s)")

    async def unregister_all(self) -> None:
        for device in self.devices.values():
            device.registered = False
        logger.info(f"Unregistered {len(self.devices)} device(s)")
        self.devices.clear()

    async def start(self) -> bool:
        self.running = True
        return True

    async def stop(self) -> None:
        self.running = False

    def by_name(self, name: str) -> Optional[VirtualDevice]:
        for device in self.devices.values():
            if device.name == name:
                return device
        return None
