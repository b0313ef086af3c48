"""
Domain classification.

Decides which Matter device types, clusters and default attribute values a
Home Assistant device or standalone entity maps to. Classification is pure:
it reads the snapshots it is given and returns a DeviceShape (or raises
ClassificationSkip), never touching the hub or the device runtime.

Control domains are evaluated before passive ones so that a secondary
sensor row cannot shadow the primary mapping of an entity.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

from ..errors import ClassificationSkip
from ..hub.models import HubDevice, HubEntity, HubState
from . import converters as cv
from .mapping import (
    AIR_QUALITY_ENDPOINT,
    CONTROL_DOMAINS,
    COLOR_MODE_RULES,
    INDIVIDUAL_COMPOSED_TYPES,
    INDIVIDUAL_DOMAINS,
    LIGHT_TYPE_RANK,
    PASSIVE_DOMAINS,
    binary_sensor_rules,
    command_rules,
    domain_rules,
    event_rule,
    sensor_rules,
    subscribe_rules,
)
from .models import (
    AlarmState,
    AirflowDirection,
    ClusterType,
    FanMode,
    FanModeSequence,
    MatterDeviceType,
    RvcOperationalState,
    RvcRunMode,
)
from .shape import MAIN_ENDPOINT, DeviceShape

logger = logging.getLogger(__name__)

SERIAL_MAX_LENGTH = 32

# Color modes that need the full ColorControl feature set
FULL_COLOR_MODES = ("xy", "hs", "rgb", "rgbw", "rgbww")


@dataclass
class ClassifierOptions:
    """Classification settings derived from the bridge configuration."""
    air_quality_regex: Optional[str] = None
    enable_server_rvc: bool = True
    name_postfix: str = ""
    postfix: str = ""
    http_url: str = "http://homeassistant.local:8123"
    split_entities: List[str] = field(default_factory=list)


class DeviceClassifier:
    """
    Build device shapes from Home Assistant snapshots.

    Usage:
        classifier = DeviceClassifier(ClassifierOptions(http_url=ha.http_url))
        shape = classifier.classify_device(device, entities, ha.states)
        frozen = shape.freeze()
    """

    def __init__(self, options: Optional[ClassifierOptions] = None):
        self.options = options or ClassifierOptions()
        self.air_quality_pattern: Optional[Pattern[str]] = None
        if self.options.air_quality_regex:
            try:
                self.air_quality_pattern = re.compile(self.options.air_quality_regex)
            except re.error as e:
                logger.warning(f"Invalid air quality regex {self.options.air_quality_regex}: {e}")

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def device_name(self, name: str) -> str:
        postfix = self.options.name_postfix
        if postfix and 1 <= len(postfix) <= 3:
            return f"{name} {postfix}"
        return name

    def serial_number(self, source_id: str) -> str:
        postfix = self.options.postfix
        if postfix and 1 <= len(postfix) <= 3:
            return source_id[:SERIAL_MAX_LENGTH - len(postfix)] + postfix
        return source_id[:SERIAL_MAX_LENGTH]

    def is_air_quality(self, entity_id: str) -> bool:
        return self.air_quality_pattern is not None and self.air_quality_pattern.search(entity_id) is not None

    @staticmethod
    def detect_battery(entities: Iterable[HubEntity], states: Dict[str, HubState]) -> Tuple[bool, List[str]]:
        """
        Whether a device is battery powered, and its battery voltage entities.

        Voltage measurements of a battery powered device report the battery
        voltage rather than a mains reading.
        """
        entity_states = [states.get(e.entity_id) for e in entities]
        battery = any(s is not None and s.device_class == "battery" for s in entity_states)
        if not battery:
            return False, []
        voltage = [
            s.entity_id for s in entity_states
            if s is not None and s.state_class == "measurement" and s.device_class == "voltage"
        ]
        return True, voltage

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def classify_entity(self, entity: HubEntity, state: Optional[HubState]) -> DeviceShape:
        """
        Classify a standalone entity (no device) or a split entity.

        Raises:
            ClassificationSkip: Nothing to expose for this entity
        """
        domain = entity.domain
        if domain not in INDIVIDUAL_DOMAINS and domain not in CONTROL_DOMAINS and domain not in PASSIVE_DOMAINS:
            raise ClassificationSkip(f"unsupported domain {domain}", entity.entity_id)
        if state is None:
            raise ClassificationSkip(f"state not found (disabled by {entity.disabled_by})", entity.entity_id)
        name = entity.display_name
        if not name:
            raise ClassificationSkip("no valid name", entity.entity_id)

        shape = DeviceShape(
            self.device_name(name),
            self.serial_number(entity.id or entity.entity_id),
            product_name=domain,
        )
        shape.add_device_types(MAIN_ENDPOINT, MatterDeviceType.BRIDGED_NODE)

        endpoint: Optional[str] = None
        if domain in INDIVIDUAL_DOMAINS:
            endpoint = self._add_individual(shape, entity, state)
        if domain == "vacuum" and self.options.enable_server_rvc:
            shape.set_mode("server")
        if domain in CONTROL_DOMAINS:
            endpoint = self._add_control(shape, entity, state)
        elif domain == "sensor":
            endpoint = self._add_sensor(shape, entity, state, "battery" in entity.object_id)
        elif domain == "binary_sensor":
            endpoint = self._add_binary_sensor(shape, entity, state)
        elif domain == "event":
            endpoint = self._add_event(shape, entity, state)

        if shape.has_device_type(MatterDeviceType.POWER_SOURCE):
            shape.add_battery_power_source(MAIN_ENDPOINT)

        if entity.platform == "template":
            shape.set_composed_type("Hass Template")
            shape.set_configuration_url(f"{self.options.http_url}/config/helpers")

        if endpoint is None or not shape.has_content():
            raise ClassificationSkip(f"no supported {domain} mapping", entity.entity_id)

        shape.map_entity(entity.entity_id, endpoint)
        return shape

    def classify_device(
        self,
        device: HubDevice,
        entities: List[HubEntity],
        states: Dict[str, HubState],
    ) -> DeviceShape:
        """
        Classify a device and the entities it owns.

        ``entities`` are the device's entities that passed the bridge's
        filters; each is checked for a supported domain and a state.

        Raises:
            ClassificationSkip: The device has no name, is a service or
                contributes no endpoint
        """
        name = device.display_name
        if not name:
            raise ClassificationSkip("no valid name", device.id)
        if device.is_service:
            raise ClassificationSkip("service device", device.id)
        if not entities:
            raise ClassificationSkip("no entities", device.id)

        battery, _ = self.detect_battery(entities, states)

        shape = DeviceShape(
            self.device_name(name),
            self.serial_number(device.id),
            product_name=device.model or "Unknown",
        )
        shape.add_device_types(MAIN_ENDPOINT, MatterDeviceType.BRIDGED_NODE)
        if battery:
            logger.debug(f"Device {name} is battery powered")
            shape.add_device_types(MAIN_ENDPOINT, MatterDeviceType.POWER_SOURCE)
            shape.add_battery_power_source(MAIN_ENDPOINT)
        shape.set_composed_type("Hass Device")
        shape.set_configuration_url(f"{self.options.http_url}/config/devices/device/{device.id}")

        for entity in entities:
            domain = entity.domain
            if domain not in CONTROL_DOMAINS and domain not in PASSIVE_DOMAINS:
                logger.debug(f"Device {name} entity {entity.entity_id} has unsupported domain {domain}. Skipping...")
                continue
            state = states.get(entity.entity_id)
            if state is None:
                logger.debug(f"Device {name} entity {entity.entity_id} disabled by {entity.disabled_by}: state not found. Skipping...")
                continue
            if entity.entity_id in self.options.split_entities:
                logger.debug(f"Device {name} entity {entity.entity_id} is a split entity. Skipping...")
                continue

            if domain == "vacuum" and self.options.enable_server_rvc:
                shape.set_mode("server")
                if not battery:
                    shape.add_device_types(MAIN_ENDPOINT, MatterDeviceType.POWER_SOURCE)

            endpoint = None
            if domain in CONTROL_DOMAINS:
                endpoint = self._add_control(shape, entity, state)
            elif domain == "sensor":
                endpoint = self._add_sensor(shape, entity, state, battery)
            elif domain == "binary_sensor":
                endpoint = self._add_binary_sensor(shape, entity, state)
            elif domain == "event":
                endpoint = self._add_event(shape, entity, state)

            if endpoint is None:
                logger.debug(f"Device {name} entity {entity.entity_id} has no supported mapping. Skipping...")
                continue
            shape.map_entity(entity.entity_id, endpoint)

        if shape.has_device_type(MatterDeviceType.POWER_SOURCE):
            shape.add_battery_power_source(MAIN_ENDPOINT)

        if shape.size() <= 1:
            raise ClassificationSkip("no supported entities", device.id)
        return shape

    # ------------------------------------------------------------------
    # Individual domains
    # ------------------------------------------------------------------

    def _add_individual(self, shape: DeviceShape, entity: HubEntity, state: HubState) -> str:
        composed_type, page = INDIVIDUAL_COMPOSED_TYPES[entity.domain]
        shape.set_composed_type(composed_type)
        shape.set_configuration_url(f"{self.options.http_url}{page}")
        shape.add_device_types(MAIN_ENDPOINT, MatterDeviceType.ON_OFF_PLUG)
        shape.add_cluster_ids(MAIN_ENDPOINT, ClusterType.ON_OFF)
        shape.set_cluster_defaults(MAIN_ENDPOINT, ClusterType.ON_OFF, {"onOff": state.state == "on"})
        shape.add_command(MAIN_ENDPOINT, "on", entity.entity_id)
        shape.add_command(MAIN_ENDPOINT, "off", entity.entity_id)
        return MAIN_ENDPOINT

    # ------------------------------------------------------------------
    # Control domains
    # ------------------------------------------------------------------

    def _add_control(self, shape: DeviceShape, entity: HubEntity, state: HubState) -> Optional[str]:
        domain = entity.domain
        rules = domain_rules(domain)
        if not rules:
            return None

        endpoint = entity.entity_id
        for rule in rules:
            logger.debug(f"+ {domain} device {rule.device_type.name} cluster {rule.cluster.name}")
            shape.add_device_types(endpoint, rule.device_type)
            shape.add_cluster_ids(endpoint, rule.cluster, *rule.extra_clusters)
            if state.friendly_name:
                shape.set_friendly_name(endpoint, state.friendly_name)

        if domain == "light" and state.supported_color_modes:
            for mode in state.supported_color_modes:
                for color_rule in COLOR_MODE_RULES:
                    if color_rule.color_mode == mode:
                        shape.add_device_types(endpoint, color_rule.device_type)
                        shape.add_cluster_ids(endpoint, *color_rule.clusters)
        else:
            for key in state.attributes:
                for rule in domain_rules(domain, key):
                    logger.debug(f"+ attribute {key} device {rule.device_type.name} cluster {rule.cluster.name}")
                    shape.add_device_types(endpoint, rule.device_type)
                    shape.add_cluster_ids(endpoint, rule.cluster, *rule.extra_clusters)

        if ClusterType.ON_OFF in shape.endpoint(endpoint).all_cluster_ids():
            shape.set_cluster_defaults(endpoint, ClusterType.ON_OFF, {"onOff": state.state == "on"})

        if domain == "light":
            self._configure_light(shape, endpoint, state)
        elif domain == "climate":
            self._configure_climate(shape, endpoint, state)
        elif domain == "fan":
            self._configure_fan(shape, endpoint, state)
        elif domain == "vacuum":
            self._configure_vacuum(shape, endpoint)

        for command in command_rules(domain):
            shape.add_command(endpoint, command.command, entity.entity_id)
        for subscription in subscribe_rules(domain):
            shape.add_subscription(endpoint, subscription.cluster, subscription.attribute, entity.entity_id)
        return endpoint

    def _configure_light(self, shape: DeviceShape, endpoint: str, state: HubState) -> None:
        light = shape.endpoint(endpoint)
        present = [t for t in LIGHT_TYPE_RANK if t in light.device_types]
        richest = present[-1]
        light.device_types = [t for t in light.device_types if t not in LIGHT_TYPE_RANK or t == richest]

        if ClusterType.LEVEL_CONTROL in light.all_cluster_ids():
            level = cv.brightness_to_level(state.attributes.get("brightness"))
            shape.set_cluster_defaults(endpoint, ClusterType.LEVEL_CONTROL, {
                "currentLevel": level if level is not None else 254,
                "minLevel": 1,
                "maxLevel": 254,
                "options": {"executeIfOff": False},
            })

        if richest not in (MatterDeviceType.COLOR_TEMP_LIGHT, MatterDeviceType.EXTENDED_COLOR_LIGHT):
            return

        min_mireds, max_mireds = cv.mired_bounds(state.attributes)
        mireds = cv.DEFAULT_COLOR_TEMP_MIREDS
        kelvin = state.attributes.get("color_temp_kelvin")
        if cv.is_number(kelvin) and kelvin > 0:
            mireds = cv.clamp(cv.kelvin_to_mireds(kelvin), min_mireds, max_mireds)
        elif cv.is_number(state.attributes.get("color_temp")):
            mireds = int(state.attributes["color_temp"])

        modes = state.supported_color_modes
        logger.debug(f"= colorControl device {endpoint} supported_color_modes: {modes} mireds: {min_mireds}-{max_mireds}")
        if "color_temp" in modes and not any(m in modes for m in FULL_COLOR_MODES):
            shape.add_color_temperature_color_control(endpoint, mireds, min_mireds, max_mireds)
        else:
            shape.add_color_control(endpoint, mireds, min_mireds, max_mireds)

    def _configure_climate(self, shape: DeviceShape, endpoint: str, state: HubState) -> None:
        modes = state.hvac_modes
        local = state.attr("current_temperature", 23)
        min_limit = state.attr("min_temp", 0)
        max_limit = state.attr("max_temp", 50)
        logger.debug(f"= thermostat device {endpoint} hvac_modes {modes}")
        if "heat_cool" in modes:
            shape.add_auto_mode_thermostat(
                endpoint, local, state.attr("target_temp_low", 21), state.attr("target_temp_high", 25),
                min_limit, max_limit,
            )
        elif "heat" in modes and "cool" not in modes:
            shape.add_heating_thermostat(endpoint, local, state.attr("temperature", 21), min_limit, max_limit)
        elif "cool" in modes and "heat" not in modes:
            shape.add_cooling_thermostat(endpoint, local, state.attr("temperature", 21), min_limit, max_limit)

    def _configure_fan(self, shape: DeviceShape, endpoint: str, state: HubState) -> None:
        if state.attributes.get("direction") or state.attributes.get("oscillating"):
            shape.add_complete_fan_control(endpoint)
        shape.set_cluster_defaults(endpoint, ClusterType.FAN_CONTROL, {
            "fanMode": int(FanMode.OFF),
            "fanModeSequence": int(FanModeSequence.OFF_LOW_MED_HIGH_AUTO),
            "percentSetting": 0,
            "percentCurrent": 0,
            "airflowDirection": int(AirflowDirection.FORWARD),
        })

    def _configure_vacuum(self, shape: DeviceShape, endpoint: str) -> None:
        shape.set_cluster_defaults(endpoint, ClusterType.RVC_RUN_MODE, {
            "supportedModes": [
                {"label": "Idle", "mode": int(RvcRunMode.IDLE), "modeTags": [{"value": 16384}]},
                {"label": "Cleaning", "mode": int(RvcRunMode.CLEANING), "modeTags": [{"value": 16385}]},
            ],
            "currentMode": int(RvcRunMode.IDLE),
        })
        shape.set_cluster_defaults(endpoint, ClusterType.RVC_OPERATIONAL_STATE, {
            "operationalStateList": [{"operationalStateId": int(s)} for s in RvcOperationalState],
            "operationalState": int(RvcOperationalState.DOCKED),
        })

    # ------------------------------------------------------------------
    # Passive domains
    # ------------------------------------------------------------------

    def _add_sensor(self, shape: DeviceShape, entity: HubEntity, state: HubState, battery: bool) -> Optional[str]:
        if self.is_air_quality(entity.entity_id):
            logger.debug(f"+ air_quality entity {entity.entity_id} found for device {shape.name}")
            shape.add_device_types(AIR_QUALITY_ENDPOINT, MatterDeviceType.AIR_QUALITY_SENSOR)
            shape.add_cluster_ids(AIR_QUALITY_ENDPOINT, ClusterType.AIR_QUALITY)
            if state.friendly_name:
                shape.set_friendly_name(AIR_QUALITY_ENDPOINT, state.friendly_name)
            return AIR_QUALITY_ENDPOINT

        endpoint: Optional[str] = None
        for rule in sensor_rules(state.state_class, state.device_class, entity.domain):
            if rule.device_class == "voltage":
                if rule.device_type == MatterDeviceType.POWER_SOURCE and not battery:
                    continue
                if rule.device_type == MatterDeviceType.ELECTRICAL_SENSOR and battery:
                    continue
            endpoint = rule.endpoint if rule.endpoint is not None else entity.entity_id
            logger.debug(f"+ sensor device {rule.device_type.name} cluster {rule.cluster.name} endpoint '{endpoint}'")
            shape.add_device_types(endpoint, rule.device_type)
            shape.add_cluster_ids(endpoint, rule.cluster)
            if state.friendly_name:
                shape.set_friendly_name(endpoint, state.friendly_name)
        return endpoint

    def _add_binary_sensor(self, shape: DeviceShape, entity: HubEntity, state: HubState) -> Optional[str]:
        endpoint: Optional[str] = None
        for rule in binary_sensor_rules(state.device_class, entity.domain):
            endpoint = rule.endpoint if rule.endpoint is not None else entity.entity_id
            logger.debug(f"+ binary_sensor device {rule.device_type.name} cluster {rule.cluster.name}")
            shape.add_device_types(endpoint, rule.device_type)
            shape.add_cluster_ids(endpoint, rule.cluster)
            if state.friendly_name:
                shape.set_friendly_name(endpoint, state.friendly_name)

            on = state.state == "on"
            if rule.device_type == MatterDeviceType.CONTACT_SENSOR:
                shape.add_boolean_state(endpoint, not on)
            elif rule.device_type in (MatterDeviceType.WATER_LEAK_DETECTOR, MatterDeviceType.WATER_FREEZE_DETECTOR):
                shape.add_boolean_state(endpoint, on)
            elif rule.device_type == MatterDeviceType.SMOKE_CO_ALARM:
                alarm = AlarmState.CRITICAL if on else AlarmState.NORMAL
                if state.device_class == "smoke":
                    shape.add_smoke_alarm(endpoint, alarm)
                else:
                    shape.add_co_alarm(endpoint, alarm)
        return endpoint

    def _add_event(self, shape: DeviceShape, entity: HubEntity, state: HubState) -> Optional[str]:
        event_types = state.attributes.get("event_types") or []
        supported = [t for t in event_types if event_rule(t) is not None]
        if not supported:
            return None

        endpoint = entity.entity_id
        logger.debug(f"+ domain event supported {supported} device {MatterDeviceType.GENERIC_SWITCH.name}")
        shape.add_device_types(endpoint, MatterDeviceType.GENERIC_SWITCH)
        shape.add_cluster_ids(endpoint, ClusterType.SWITCH)
        shape.set_cluster_defaults(endpoint, ClusterType.SWITCH, {
            "feature": ["MomentarySwitch", "MomentarySwitchRelease", "MomentarySwitchLongPress",
                        "MomentarySwitchMultiPress"],
            "numberOfPositions": 2,
            "currentPosition": 0,
            "multiPressMax": 2,
        })
        if state.friendly_name:
            shape.set_friendly_name(endpoint, state.friendly_name)
        return endpoint
