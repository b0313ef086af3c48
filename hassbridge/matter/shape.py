"""
Device shape builder.

A DeviceShape accumulates, per named sub-endpoint, the Matter device types,
cluster ids and default attribute values chosen by classification. It is
owned by one classification pass and consumed exactly once by ``freeze()``,
which normalizes it and returns an immutable FrozenDeviceShape for the
device runtime.

Endpoint names are the Home Assistant entity ids that produced them, a
shared override name (``PowerEnergy``, ``AirQuality``), or ``""`` for the
main endpoint carrying the bridged node.
"""

import copy
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from ..errors import MaterializationError
from .models import (
    BatChargeLevel,
    ClusterType,
    ColorMode,
    ControlSequence,
    FanMode,
    FanModeSequence,
    AirflowDirection,
    MatterDeviceType,
    PowerSourceStatus,
    SystemMode,
    AlarmState,
)

logger = logging.getLogger(__name__)

MAIN_ENDPOINT = ""

DEFAULT_VENDOR_ID = 0xFFF1
DEFAULT_VENDOR_NAME = "HomeAssistant"
DEFAULT_PRODUCT_ID = 0x8000

# (subset, superset): the subset is dropped when both are present
SUPERSET_DEVICE_TYPES: List[Tuple[MatterDeviceType, MatterDeviceType]] = [
    (MatterDeviceType.ON_OFF_SWITCH, MatterDeviceType.DIMMER_SWITCH),
    (MatterDeviceType.ON_OFF_SWITCH, MatterDeviceType.COLOR_DIMMER_SWITCH),
    (MatterDeviceType.DIMMER_SWITCH, MatterDeviceType.COLOR_DIMMER_SWITCH),
    (MatterDeviceType.ON_OFF_PLUG, MatterDeviceType.DIMMABLE_PLUG),
    (MatterDeviceType.ON_OFF_LIGHT, MatterDeviceType.DIMMABLE_LIGHT),
    (MatterDeviceType.ON_OFF_LIGHT, MatterDeviceType.COLOR_TEMP_LIGHT),
    (MatterDeviceType.ON_OFF_LIGHT, MatterDeviceType.EXTENDED_COLOR_LIGHT),
    (MatterDeviceType.DIMMABLE_LIGHT, MatterDeviceType.COLOR_TEMP_LIGHT),
    (MatterDeviceType.DIMMABLE_LIGHT, MatterDeviceType.EXTENDED_COLOR_LIGHT),
    (MatterDeviceType.COLOR_TEMP_LIGHT, MatterDeviceType.EXTENDED_COLOR_LIGHT),
]


@dataclass(frozen=True)
class CommandBinding:
    """A Matter command on an endpoint routed to one Home Assistant entity."""
    command: str
    entity_id: str


@dataclass(frozen=True)
class SubscriptionBinding:
    """A writable Matter attribute on an endpoint routed to one entity."""
    cluster: ClusterType
    attribute: str
    entity_id: str


@dataclass
class EndpointShape:
    """One sub-endpoint of a device shape."""
    name: str
    friendly_name: Optional[str] = None
    device_types: List[MatterDeviceType] = field(default_factory=list)
    cluster_ids: List[ClusterType] = field(default_factory=list)
    cluster_defaults: Dict[ClusterType, Dict[str, Any]] = field(default_factory=dict)
    commands: List[CommandBinding] = field(default_factory=list)
    subscriptions: List[SubscriptionBinding] = field(default_factory=list)
    friendly_name_assignments: List[str] = field(default_factory=list)

    def all_cluster_ids(self) -> List[ClusterType]:
        clusters = list(self.cluster_ids)
        for cluster in self.cluster_defaults:
            if cluster not in clusters:
                clusters.append(cluster)
        return clusters

    def normalize(self) -> None:
        """Drop duplicate and superset device types and duplicate clusters."""
        types = list(dict.fromkeys(self.device_types))
        for subset, superset in SUPERSET_DEVICE_TYPES:
            if subset in types and superset in types:
                types.remove(subset)
        self.device_types = types
        self.cluster_ids = list(dict.fromkeys(self.all_cluster_ids()))
        self.commands = list(dict.fromkeys(self.commands))
        self.subscriptions = list(dict.fromkeys(self.subscriptions))

    def absorb(self, other: "EndpointShape") -> None:
        self.device_types.extend(other.device_types)
        self.cluster_ids.extend(other.all_cluster_ids())
        for cluster, defaults in other.cluster_defaults.items():
            merged = self.cluster_defaults.setdefault(cluster, {})
            for key, value in defaults.items():
                merged.setdefault(key, value)
        self.commands.extend(other.commands)
        self.subscriptions.extend(other.subscriptions)
        self.normalize()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "friendly_name": self.friendly_name,
            "device_types": [int(t) for t in self.device_types],
            "clusters": [int(c) for c in self.all_cluster_ids()],
            "cluster_defaults": {
                str(int(cluster)): copy.deepcopy(defaults)
                for cluster, defaults in sorted(self.cluster_defaults.items())
            },
            "commands": [[c.command, c.entity_id] for c in self.commands],
            "subscriptions": [[int(s.cluster), s.attribute, s.entity_id] for s in self.subscriptions],
        }


@dataclass(frozen=True)
class FrozenEndpoint:
    name: str
    friendly_name: Optional[str]
    device_types: Tuple[MatterDeviceType, ...]
    cluster_ids: Tuple[ClusterType, ...]
    cluster_defaults: Dict[ClusterType, Dict[str, Any]]
    commands: Tuple[CommandBinding, ...]
    subscriptions: Tuple[SubscriptionBinding, ...]

    @property
    def is_main(self) -> bool:
        return self.name == MAIN_ENDPOINT

    def has_cluster(self, cluster: ClusterType) -> bool:
        return cluster in self.cluster_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "friendly_name": self.friendly_name,
            "device_types": [int(t) for t in self.device_types],
            "clusters": [int(c) for c in self.cluster_ids],
            "cluster_defaults": {
                str(int(cluster)): copy.deepcopy(defaults)
                for cluster, defaults in sorted(self.cluster_defaults.items())
            },
            "commands": [[c.command, c.entity_id] for c in self.commands],
            "subscriptions": [[int(s.cluster), s.attribute, s.entity_id] for s in self.subscriptions],
        }


@dataclass(frozen=True)
class FrozenDeviceShape:
    """Immutable, normalized device shape handed to the device runtime."""
    name: str
    serial_number: str
    unique_id: str
    vendor_id: int
    vendor_name: str
    product_id: int
    product_name: str
    composed_type: Optional[str]
    configuration_url: Optional[str]
    mode: Optional[str]
    endpoints: Tuple[FrozenEndpoint, ...]
    entity_endpoints: Tuple[Tuple[str, str], ...]
    remapped_endpoints: Tuple[str, ...]

    @property
    def main(self) -> FrozenEndpoint:
        return self.endpoints[0]

    def endpoint(self, name: str) -> Optional[FrozenEndpoint]:
        for endpoint in self.endpoints:
            if endpoint.name == name:
                return endpoint
        return None

    def endpoint_for(self, entity_id: str) -> Optional[str]:
        for entity, endpoint in self.entity_endpoints:
            if entity == entity_id:
                return endpoint
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "serial_number": self.serial_number,
            "unique_id": self.unique_id,
            "vendor_id": self.vendor_id,
            "vendor_name": self.vendor_name,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "composed_type": self.composed_type,
            "configuration_url": self.configuration_url,
            "mode": self.mode,
            "endpoints": [e.to_dict() for e in self.endpoints],
            "entity_endpoints": {entity: endpoint for entity, endpoint in self.entity_endpoints},
        }


class DeviceShape:
    """
    Build-time accumulator for one bridged device.

    Usage:
        shape = DeviceShape("Kitchen Light", "01J0ABCDEF")
        shape.add_device_types("", MatterDeviceType.BRIDGED_NODE)
        shape.add_device_types("light.kitchen", MatterDeviceType.DIMMABLE_LIGHT)
        frozen = shape.freeze()
    """

    def __init__(
        self,
        name: str,
        serial_number: str,
        vendor_id: int = DEFAULT_VENDOR_ID,
        vendor_name: str = DEFAULT_VENDOR_NAME,
        product_id: int = DEFAULT_PRODUCT_ID,
        product_name: str = "",
    ):
        self.name = name
        self.serial_number = serial_number
        self.vendor_id = vendor_id
        self.vendor_name = vendor_name
        self.product_id = product_id
        self.product_name = product_name
        self.composed_type: Optional[str] = None
        self.configuration_url: Optional[str] = None
        self.mode: Optional[str] = None
        self.endpoints: Dict[str, EndpointShape] = {MAIN_ENDPOINT: EndpointShape(MAIN_ENDPOINT)}
        self.entity_endpoints: Dict[str, str] = {}
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    @property
    def main(self) -> EndpointShape:
        return self.endpoints[MAIN_ENDPOINT]

    def size(self) -> int:
        return len(self.endpoints)

    def has(self, endpoint: str) -> bool:
        return endpoint in self.endpoints

    def has_content(self) -> bool:
        """True when the shape exposes more than the bridged node."""
        return len(self.main.device_types) > 1 or self.size() > 1

    def has_device_type(self, device_type: MatterDeviceType, endpoint: str = MAIN_ENDPOINT) -> bool:
        return endpoint in self.endpoints and device_type in self.endpoints[endpoint].device_types

    def endpoint(self, name: str) -> EndpointShape:
        if self._consumed:
            raise MaterializationError(f"Device shape {self.name} already frozen")
        if name not in self.endpoints:
            self.endpoints[name] = EndpointShape(name)
        return self.endpoints[name]

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def add_device_types(self, endpoint: str, *device_types: MatterDeviceType) -> "DeviceShape":
        self.endpoint(endpoint).device_types.extend(device_types)
        return self

    def add_cluster_ids(self, endpoint: str, *cluster_ids: ClusterType) -> "DeviceShape":
        self.endpoint(endpoint).cluster_ids.extend(cluster_ids)
        return self

    def set_cluster_defaults(self, endpoint: str, cluster: ClusterType, defaults: Dict[str, Any]) -> "DeviceShape":
        """Record default attribute values; the first value set for an attribute wins."""
        merged = self.endpoint(endpoint).cluster_defaults.setdefault(cluster, {})
        for key, value in defaults.items():
            merged.setdefault(key, value)
        return self

    def set_friendly_name(self, endpoint: str, friendly_name: str) -> "DeviceShape":
        shape = self.endpoint(endpoint)
        shape.friendly_name = friendly_name
        shape.friendly_name_assignments.append(friendly_name)
        return self

    def add_command(self, endpoint: str, command: str, entity_id: str) -> "DeviceShape":
        self.endpoint(endpoint).commands.append(CommandBinding(command, entity_id))
        return self

    def add_subscription(self, endpoint: str, cluster: ClusterType, attribute: str, entity_id: str) -> "DeviceShape":
        self.endpoint(endpoint).subscriptions.append(SubscriptionBinding(cluster, attribute, entity_id))
        return self

    def map_entity(self, entity_id: str, endpoint: str) -> "DeviceShape":
        self.entity_endpoints[entity_id] = endpoint
        return self

    def set_composed_type(self, composed_type: str) -> "DeviceShape":
        self.composed_type = composed_type
        return self

    def set_configuration_url(self, url: str) -> "DeviceShape":
        self.configuration_url = url
        return self

    def set_mode(self, mode: str) -> "DeviceShape":
        self.mode = mode
        return self

    # ------------------------------------------------------------------
    # Cluster default sets
    # ------------------------------------------------------------------

    def add_battery_power_source(self, endpoint: str, charge_level: BatChargeLevel = BatChargeLevel.OK,
                                 percent_remaining: Optional[int] = 200) -> "DeviceShape":
        return self.set_cluster_defaults(endpoint, ClusterType.POWER_SOURCE, {
            "status": int(PowerSourceStatus.ACTIVE),
            "order": 0,
            "description": "Primary battery",
            "batReplacementNeeded": False,
            "batVoltage": None,
            "batPercentRemaining": percent_remaining,
            "batChargeLevel": int(charge_level),
        })

    def add_boolean_state(self, endpoint: str, state_value: bool) -> "DeviceShape":
        return self.set_cluster_defaults(endpoint, ClusterType.BOOLEAN_STATE, {"stateValue": state_value})

    def add_smoke_alarm(self, endpoint: str, smoke_state: AlarmState) -> "DeviceShape":
        return self.set_cluster_defaults(endpoint, ClusterType.SMOKE_CO_ALARM, {
            "feature": "SmokeAlarm",
            "smokeState": int(smoke_state),
            "expressedState": 0,
            "batteryAlert": int(AlarmState.NORMAL),
            "testInProgress": False,
            "hardwareFaultAlert": False,
        })

    def add_co_alarm(self, endpoint: str, co_state: AlarmState) -> "DeviceShape":
        return self.set_cluster_defaults(endpoint, ClusterType.SMOKE_CO_ALARM, {
            "feature": "CoAlarm",
            "coState": int(co_state),
            "expressedState": 0,
            "batteryAlert": int(AlarmState.NORMAL),
            "testInProgress": False,
            "hardwareFaultAlert": False,
        })

    def add_color_temperature_color_control(self, endpoint: str, mireds: int, min_mireds: int,
                                            max_mireds: int) -> "DeviceShape":
        return self.set_cluster_defaults(endpoint, ClusterType.COLOR_CONTROL, {
            "colorMode": int(ColorMode.COLOR_TEMPERATURE_MIREDS),
            "colorCapabilities": {"xy": False, "hueSaturation": False, "colorTemperature": True},
            "options": {"executeIfOff": False},
            "colorTemperatureMireds": mireds,
            "colorTempPhysicalMinMireds": min_mireds,
            "colorTempPhysicalMaxMireds": max_mireds,
            "coupleColorTempToLevelMinMireds": min_mireds,
        })

    def add_color_control(self, endpoint: str, mireds: int, min_mireds: int, max_mireds: int) -> "DeviceShape":
        return self.set_cluster_defaults(endpoint, ClusterType.COLOR_CONTROL, {
            "colorMode": int(ColorMode.CURRENT_HUE_AND_SATURATION),
            "colorCapabilities": {"xy": True, "hueSaturation": True, "colorTemperature": True},
            "options": {"executeIfOff": False},
            "currentX": 0,
            "currentY": 0,
            "currentHue": 0,
            "currentSaturation": 0,
            "colorTemperatureMireds": mireds,
            "colorTempPhysicalMinMireds": min_mireds,
            "colorTempPhysicalMaxMireds": max_mireds,
            "coupleColorTempToLevelMinMireds": min_mireds,
        })

    def _thermostat(self, endpoint: str, defaults: Dict[str, Any], heating: bool, cooling: bool,
                    min_limit: float, max_limit: float) -> "DeviceShape":
        if heating:
            defaults.update({
                "minHeatSetpointLimit": round(min_limit * 100),
                "absMinHeatSetpointLimit": round(min_limit * 100),
                "maxHeatSetpointLimit": round(max_limit * 100),
                "absMaxHeatSetpointLimit": round(max_limit * 100),
            })
        if cooling:
            defaults.update({
                "minCoolSetpointLimit": round(min_limit * 100),
                "absMinCoolSetpointLimit": round(min_limit * 100),
                "maxCoolSetpointLimit": round(max_limit * 100),
                "absMaxCoolSetpointLimit": round(max_limit * 100),
            })
        return self.set_cluster_defaults(endpoint, ClusterType.THERMOSTAT, defaults)

    def add_auto_mode_thermostat(self, endpoint: str, local: float, heating: float, cooling: float,
                                 min_limit: float, max_limit: float) -> "DeviceShape":
        return self._thermostat(endpoint, {
            "feature": ["AutoMode", "Heating", "Cooling"],
            "localTemperature": round(local * 100),
            "systemMode": int(SystemMode.AUTO),
            "controlSequenceOfOperation": int(ControlSequence.COOLING_AND_HEATING),
            "occupiedHeatingSetpoint": round(heating * 100),
            "occupiedCoolingSetpoint": round(cooling * 100),
            "minSetpointDeadBand": 100,
            "thermostatRunningMode": int(SystemMode.OFF),
        }, True, True, min_limit, max_limit)

    def add_heating_thermostat(self, endpoint: str, local: float, heating: float, min_limit: float,
                               max_limit: float) -> "DeviceShape":
        return self._thermostat(endpoint, {
            "feature": ["Heating"],
            "localTemperature": round(local * 100),
            "systemMode": int(SystemMode.HEAT),
            "controlSequenceOfOperation": int(ControlSequence.HEATING_ONLY),
            "occupiedHeatingSetpoint": round(heating * 100),
        }, True, False, min_limit, max_limit)

    def add_cooling_thermostat(self, endpoint: str, local: float, cooling: float, min_limit: float,
                               max_limit: float) -> "DeviceShape":
        return self._thermostat(endpoint, {
            "feature": ["Cooling"],
            "localTemperature": round(local * 100),
            "systemMode": int(SystemMode.COOL),
            "controlSequenceOfOperation": int(ControlSequence.COOLING_ONLY),
            "occupiedCoolingSetpoint": round(cooling * 100),
        }, False, True, min_limit, max_limit)

    def add_complete_fan_control(self, endpoint: str) -> "DeviceShape":
        return self.set_cluster_defaults(endpoint, ClusterType.FAN_CONTROL, {
            "feature": ["Auto", "Step", "Rocking", "AirflowDirection"],
            "fanMode": int(FanMode.OFF),
            "fanModeSequence": int(FanModeSequence.OFF_LOW_MED_HIGH_AUTO),
            "percentSetting": 0,
            "percentCurrent": 0,
            "rockSupport": {"rockLeftRight": False, "rockUpDown": False, "rockRound": True},
            "rockSetting": {"rockLeftRight": False, "rockUpDown": False, "rockRound": True},
            "airflowDirection": int(AirflowDirection.FORWARD),
        })

    # ------------------------------------------------------------------
    # Freeze
    # ------------------------------------------------------------------

    @property
    def unique_id(self) -> str:
        seed = f"{self.name}{self.serial_number}{self.vendor_name}{self.product_name}"
        return hashlib.md5(seed.encode("utf-8")).hexdigest()

    def _conflicts(self, name: str) -> bool:
        """True when a child shares a device type or cluster with any other endpoint."""
        child = self.endpoints[name]
        child_clusters = set(child.all_cluster_ids())
        for other_name, other in self.endpoints.items():
            if other_name == name:
                continue
            if any(t in other.device_types for t in child.device_types):
                return True
            if child_clusters.intersection(other.all_cluster_ids()):
                return True
        return False

    def freeze(self, remap: bool = True) -> FrozenDeviceShape:
        """
        Normalize and commit the shape.

        Superset device types and duplicate clusters are removed on every
        endpoint; with ``remap`` a child endpoint that shares no device type
        and no cluster with any other endpoint is folded into the main one.

        Raises:
            MaterializationError: The shape was already frozen
        """
        if self._consumed:
            raise MaterializationError(f"Device shape {self.name} already frozen")
        self._consumed = True

        for endpoint in self.endpoints.values():
            endpoint.normalize()

        remapped: Set[str] = set()
        if remap:
            for name in [n for n in self.endpoints if n != MAIN_ENDPOINT]:
                if self._conflicts(name):
                    continue
                logger.debug(f"Device {self.name} remapping endpoint {name} to the main endpoint")
                self.main.absorb(self.endpoints.pop(name))
                remapped.add(name)

        entity_endpoints = {
            entity: MAIN_ENDPOINT if endpoint in remapped else endpoint
            for entity, endpoint in self.entity_endpoints.items()
        }

        unique_id = self.unique_id
        main = self.main
        main.cluster_defaults.setdefault(ClusterType.BRIDGED_DEVICE_BASIC_INFORMATION, {}).update({
            "vendorId": self.vendor_id,
            "vendorName": self.vendor_name[:32],
            "productName": self.product_name[:32],
            "productLabel": self.name[:64],
            "nodeLabel": self.name[:32],
            "serialNumber": self.serial_number[:32],
            "uniqueId": unique_id,
            "reachable": True,
        })
        main.normalize()

        endpoints = tuple(
            FrozenEndpoint(
                name=e.name,
                friendly_name=self.name if e.name == MAIN_ENDPOINT else e.friendly_name,
                device_types=tuple(e.device_types),
                cluster_ids=tuple(e.cluster_ids),
                cluster_defaults=copy.deepcopy(e.cluster_defaults),
                commands=tuple(e.commands),
                subscriptions=tuple(e.subscriptions),
            )
            for e in self.endpoints.values()
        )

        return FrozenDeviceShape(
            name=self.name,
            serial_number=self.serial_number,
            unique_id=unique_id,
            vendor_id=self.vendor_id,
            vendor_name=self.vendor_name,
            product_id=self.product_id,
            product_name=self.product_name,
            composed_type=self.composed_type,
            configuration_url=self.configuration_url,
            mode=self.mode,
            endpoints=endpoints,
            entity_endpoints=tuple(entity_endpoints.items()),
            remapped_endpoints=tuple(sorted(remapped)),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Deterministic plain-data view of the unfrozen shape."""
        return {
            "name": self.name,
            "serial_number": self.serial_number,
            "vendor_id": self.vendor_id,
            "vendor_name": self.vendor_name,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "composed_type": self.composed_type,
            "configuration_url": self.configuration_url,
            "mode": self.mode,
            "endpoints": [e.to_dict() for e in self.endpoints.values()],
            "entity_endpoints": dict(self.entity_endpoints),
        }
