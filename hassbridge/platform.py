"""
Home Assistant to Matter platform.

Owns one HomeAssistant client and one device runtime:

1. start():   connect, fetch registries, subscribe, sync, configure
2. sync():    classify individual entities, devices and split entities,
              apply the configured filters and materialize the shapes
3. update_handler(): mirror every state change onto the Matter attributes
4. shutdown(): close the hub, optionally unregister everything

Devices are keyed by Home Assistant device id, or by entity id for
individual and split entities.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from .config import Config
from .errors import ClassificationSkip, HassBridgeError, MaterializationError, TransportError
from .hub.client import HomeAssistant
from .hub.models import HubDevice, HubEntity, HubLabel, HubState
from .matter.classification import ClassifierOptions, DeviceClassifier
from .matter.commands import CommandRouter
from .matter.mapping import (
    STATELESS_DOMAINS,
    binary_sensor_rules,
    event_rule,
    sensor_rules,
    update_attribute_rules,
    update_state_rules,
)
from .matter.models import ClusterType, MatterDeviceType
from .matter.runtime import DeviceHandle, DeviceRuntime
from .matter.shape import MAIN_ENDPOINT, DeviceShape

logger = logging.getLogger(__name__)

UNAVAILABLE = "unavailable"


class HassPlatform:
    """
    Bridges Home Assistant entities to Matter devices.

    Usage:
        platform = HassPlatform(config, InMemoryRuntime())
        await platform.start()
        ...
        await platform.shutdown()
    """

    def __init__(
        self,
        config: Config,
        runtime: DeviceRuntime,
        hub: Optional[HomeAssistant] = None,
        revert_delay: float = 0.5,
    ):
        self.config = config
        self.runtime = runtime
        self.hub = hub or HomeAssistant(
            config.host,
            config.token or "",
            config.session_config(),
            refresh_debounce=config.refresh_debounce,
        )
        self.classifier = DeviceClassifier(ClassifierOptions(
            air_quality_regex=config.air_quality_regex,
            enable_server_rvc=config.enable_server_rvc,
            name_postfix=config.name_postfix,
            postfix=config.postfix,
            http_url=self.hub.http_url,
            split_entities=list(config.split_entities),
        ))
        self.router = CommandRouter(self.hub, revert_delay=revert_delay)

        self.devices: Dict[str, DeviceHandle] = {}
        self.endpoint_names: Dict[str, str] = {}
        self.battery_voltage_entities: Set[str] = set()
        self.label_id: Optional[str] = config.filter_by_label
        self._names: Set[str] = set()
        self._subscribed = False

        self.hub.on("entity_changed", self.update_handler)
        self.hub.on("connected", self._on_connected)
        self.hub.on("labels", self._on_labels)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Connect to Home Assistant and publish the bridged devices.

        Raises:
            HubConnectionError: Home Assistant could not be reached
            MaterializationError: The device runtime failed to start
        """
        if self.config.wait_for_running:
            if not await self.hub.wait_for_running():
                logger.warning("Home Assistant did not report RUNNING, connecting anyway")

        version = await self.hub.connect()
        logger.info(f"Connected to Home Assistant {version}")
        await self.hub.fetch_data()
        await self.hub.subscribe()
        self._subscribed = True

        if self.config.snapshot:
            self.save_snapshot()

        if not await self.runtime.start():
            raise MaterializationError("Device runtime failed to start")

        await self.sync()
        await self.configure()

    async def shutdown(self) -> None:
        logger.info("Shutting down hassbridge platform...")
        self._subscribed = False
        self.hub.off("entity_changed", self.update_handler)
        self.hub.off("connected", self._on_connected)
        self.hub.off("labels", self._on_labels)
        await self.router.close()
        try:
            await self.hub.close()
        except TransportError as e:
            logger.error(f"Error closing Home Assistant connection: {e}")

        if self.config.unregister_on_shutdown:
            try:
                await self.runtime.unregister_all()
            except (MaterializationError, TransportError) as e:
                logger.error(f"Failed to unregister devices: {e}")
        await self.runtime.stop()

        self.devices.clear()
        self.endpoint_names.clear()
        self.battery_voltage_entities.clear()
        self._names.clear()
        logger.info("hassbridge platform stopped")

    def _on_connected(self, version: str):
        # The first connect is driven by start()
        if not self._subscribed:
            return None
        return self._resubscribe()

    async def _resubscribe(self) -> None:
        """Refresh the registries and subscribe again on a reconnected socket."""
        logger.info("Reconnected to Home Assistant, refreshing data and subscribing to events...")
        try:
            await self.hub.fetch_data()
            await self.hub.subscribe()
        except HassBridgeError as e:
            logger.error(f"Failed to resubscribe to Home Assistant events: {e}")

    def save_snapshot(self) -> None:
        """Write the fetched registries to homeassistant.json for diagnostics."""
        self.config.ensure_data_dir()
        path = self.config.snapshot_path
        try:
            with open(path, "w") as f:
                json.dump(self.hub.snapshot(), f, indent=2)
            logger.debug(f"Payload saved to {path}")
        except OSError as e:
            logger.error(f"Error saving payload to {path}: {e}")

    # =========================================================================
    # Filters
    # =========================================================================

    def resolve_label_filter(self) -> None:
        """Accept either a label id or a label name for ``filter_by_label``."""
        label = self.config.filter_by_label
        if not label:
            self.label_id = None
            return
        if label in self.hub.labels:
            self.label_id = label
            return
        for candidate in self.hub.labels.values():
            if candidate.name == label:
                logger.info(f"Filtering by label {label} ({candidate.label_id})")
                self.label_id = candidate.label_id
                return
        logger.warning(f"Label {label} not found in Home Assistant: label filter disabled")
        self.label_id = None

    def _on_labels(self, labels: List[HubLabel]) -> None:
        self.resolve_label_filter()

    def validate(self, *candidates: Optional[str]) -> bool:
        """White list must contain one candidate and black list none of them."""
        values = [c for c in candidates if c]
        if self.config.white_list and not any(v in self.config.white_list for v in values):
            return False
        if any(v in self.config.black_list for v in values):
            return False
        return True

    def is_area_and_label_allowed(self, area_id: Optional[str], labels: Iterable[str]) -> bool:
        if self.config.filter_by_area:
            area = self.hub.areas.get(area_id) if area_id else None
            if area is None or area.name != self.config.filter_by_area:
                return False
        if self.label_id and self.label_id not in labels:
            return False
        return True

    def _claim_name(self, name: str, source_id: str) -> bool:
        if name in self._names:
            logger.warning(f"{source_id}: name {name} already in use. Skipping...")
            return False
        self._names.add(name)
        return True

    # =========================================================================
    # Sync
    # =========================================================================

    async def sync(self) -> int:
        """
        Classify and materialize everything that passes the filters.

        Returns:
            Number of devices registered
        """
        registered = 0
        for entity in list(self.hub.entities.values()):
            if entity.device_id is None and await self._sync_entity(entity):
                registered += 1

        for device in list(self.hub.devices.values()):
            if await self._sync_device(device):
                registered += 1

        for entity in list(self.hub.entities.values()):
            if entity.device_id is not None and entity.entity_id in self.config.split_entities:
                if await self._sync_entity(entity):
                    registered += 1

        logger.info(f"Registered {registered} device(s)")
        return registered

    async def _sync_entity(self, entity: HubEntity) -> bool:
        name = entity.display_name
        if not name:
            logger.debug(f"Entity {entity.entity_id} has no valid name. Skipping...")
            return False
        if not self.validate(name, entity.entity_id, entity.id):
            return False
        if not self.is_area_and_label_allowed(entity.area_id, entity.labels):
            return False

        try:
            shape = self.classifier.classify_entity(entity, self.hub.states.get(entity.entity_id))
        except ClassificationSkip as e:
            logger.debug(f"Entity {entity.entity_id} skipped: {e.reason}")
            return False

        if not self._claim_name(shape.name, entity.entity_id):
            return False
        if await self._materialize(entity.entity_id, shape) is None:
            self._names.discard(shape.name)
            return False
        return True

    def _device_entities(self, device: HubDevice, name: str) -> List[HubEntity]:
        black_list = self.config.device_entity_black_list.get(name, [])
        entities = []
        for entity in self.hub.entities_of(device.id):
            if entity.entity_id in self.config.entity_black_list or entity.entity_id in black_list:
                logger.debug(f"Device {name} entity {entity.entity_id} is blacklisted. Skipping...")
                continue
            if self.config.apply_filters_to_device_entities and not self.is_area_and_label_allowed(
                entity.area_id or device.area_id, entity.labels,
            ):
                continue
            entities.append(entity)
        return entities

    async def _sync_device(self, device: HubDevice) -> bool:
        name = device.display_name
        if not name:
            logger.debug(f"Device {device.id} has no valid name. Skipping...")
            return False
        if device.is_service:
            logger.debug(f"Device {name} is a service. Skipping...")
            return False
        if not self.hub.entities_of(device.id):
            logger.debug(f"Device {name} has no entities. Skipping...")
            return False
        if not self.validate(name, device.id):
            return False
        if not self.is_area_and_label_allowed(device.area_id, device.labels):
            return False

        entities = self._device_entities(device, name)
        _, voltage_entities = self.classifier.detect_battery(entities, self.hub.states)
        try:
            shape = self.classifier.classify_device(device, entities, self.hub.states)
        except ClassificationSkip as e:
            logger.debug(f"Device {name} skipped: {e.reason}")
            return False

        if not self._claim_name(shape.name, device.id):
            return False
        if await self._materialize(device.id, shape) is None:
            self._names.discard(shape.name)
            return False
        self.battery_voltage_entities.update(voltage_entities)
        return True

    async def _materialize(self, key: str, shape: DeviceShape) -> Optional[DeviceHandle]:
        try:
            frozen = shape.freeze()
            device = await self.runtime.create_device(frozen)
            self.router.bind(device, frozen)
            await self.runtime.register_device(device)
        except (MaterializationError, TransportError) as e:
            logger.error(f"Failed to register device {shape.name}: {e}")
            return None

        self.devices[key] = device
        for entity_id, endpoint in frozen.entity_endpoints:
            self.endpoint_names[entity_id] = endpoint
        logger.debug(f"Device {shape.name} registered as {key}")
        return device

    async def configure(self) -> None:
        """Replay the current state of every mapped entity."""
        for entity_id in list(self.endpoint_names):
            state = self.hub.states.get(entity_id)
            entity = self.hub.entities.get(entity_id)
            if state is None or entity is None:
                continue
            await self.update_handler(entity.device_id, entity_id, state, state)

    # =========================================================================
    # Updates
    # =========================================================================

    def find_device(self, device_id: Optional[str], entity_id: str) -> Optional[DeviceHandle]:
        return self.devices.get(entity_id) or (self.devices.get(device_id) if device_id else None)

    def _endpoint(self, device: DeviceHandle, name: Optional[str], fallback: str) -> str:
        """Resolve an endpoint name, falling back when it was folded into the main endpoint."""
        if name is None:
            return fallback
        return name if device.has_endpoint(name) else MAIN_ENDPOINT

    async def update_handler(
        self,
        device_id: Optional[str],
        entity_id: str,
        old_state: HubState,
        new_state: HubState,
    ) -> None:
        device = self.find_device(device_id, entity_id)
        if device is None:
            return
        mapped = self.endpoint_names.get(entity_id)
        if mapped is None:
            return
        endpoint = entity_id if device.has_endpoint(entity_id) else mapped
        if not device.has_endpoint(endpoint):
            logger.debug(f"Update for {entity_id}: endpoint '{endpoint}' not found on {device.name}")
            return

        logger.debug(f"Update for {device.name} {entity_id}: {old_state.state} -> {new_state.state}")
        try:
            await self._apply_update(device, endpoint, entity_id, old_state, new_state)
        except HassBridgeError as e:
            logger.error(f"Failed to update {device.name} from {entity_id}: {e}")

    async def _apply_update(
        self,
        device: DeviceHandle,
        endpoint: str,
        entity_id: str,
        old_state: HubState,
        new_state: HubState,
    ) -> None:
        if new_state.state == UNAVAILABLE:
            await device.set_reachable(False)
            return
        if old_state.state == UNAVAILABLE:
            await device.set_reachable(True)

        domain = new_state.domain
        if domain in STATELESS_DOMAINS:
            return

        if domain == "sensor":
            await self._update_sensor(device, endpoint, entity_id, new_state)
        elif domain == "binary_sensor":
            for rule in binary_sensor_rules(new_state.device_class, domain):
                value = rule.converter(new_state.state)
                if value is not None:
                    await device.set_attribute(self._endpoint(device, rule.endpoint, endpoint),
                                               rule.cluster, rule.attribute, value)
        elif domain == "event":
            if old_state is new_state or old_state.state == new_state.state:
                return
            rule = event_rule(new_state.attributes.get("event_type"))
            if rule is None:
                logger.debug(f"Event {new_state.attributes.get('event_type')} of {entity_id} not supported")
                return
            await device.trigger_switch_event(endpoint, rule.switch_event)
        else:
            await self._update_control(device, endpoint, entity_id, domain, new_state)

    async def _update_sensor(self, device: DeviceHandle, endpoint: str, entity_id: str, state: HubState) -> None:
        state_class, device_class = state.state_class, state.device_class
        if self.classifier.is_air_quality(entity_id):
            state_class, device_class = "measurement", "aqi"

        if state.state == "unknown":
            logger.debug(f"Update for {entity_id}: state unknown")
            return

        value = state.numeric_state
        for rule in sensor_rules(state_class, device_class, state.domain):
            if rule.device_class == "voltage":
                battery_voltage = entity_id in self.battery_voltage_entities
                if rule.device_type == MatterDeviceType.POWER_SOURCE and not battery_voltage:
                    continue
                if rule.device_type == MatterDeviceType.ELECTRICAL_SENSOR and battery_voltage:
                    continue
            converted = rule.converter(value, state.unit_of_measurement)
            if converted is None:
                logger.warning(f"Update {rule.attribute} for {entity_id}: value {state.state!r} not convertible")
                continue
            await device.set_attribute(self._endpoint(device, rule.endpoint, endpoint),
                                       rule.cluster, rule.attribute, converted)

    async def _update_control(
        self,
        device: DeviceHandle,
        endpoint: str,
        entity_id: str,
        domain: str,
        state: HubState,
    ) -> None:
        rules = update_state_rules(domain, state.state)
        if not rules:
            logger.warning(f"Update state {domain}:{state.state} not supported for entity {entity_id}")
        for rule in rules:
            await device.set_attribute(endpoint, rule.cluster, rule.attribute, rule.value)

        if domain in ("light", "fan") and state.state == "off":
            return

        for rule in update_attribute_rules(domain):
            value = state.attributes.get(rule.with_attribute)
            if value is None or not rule.applies(state):
                continue
            converted = rule.converter(value, state)
            if converted is None:
                logger.warning(f"Update {rule.attribute} for {entity_id}: value {value!r} not convertible")
                continue
            await device.set_attribute(endpoint, rule.cluster, rule.attribute, converted)

    def get_device(self, key: str) -> Optional[DeviceHandle]:
        return self.devices.get(key)

    def summary(self) -> List[Dict[str, Any]]:
        """One row per registered device, for status output."""
        return [
            {
                "key": key,
                "name": device.name,
                "endpoints": [e.name or "main" for e in device.shape.endpoints],
                "device_types": sorted({t.name for e in device.shape.endpoints for t in e.device_types}),
                "clusters": sorted({
                    ClusterType(c).name for e in device.shape.endpoints for c in e.cluster_ids
                }),
            }
            for key, device in self.devices.items()
        ]
