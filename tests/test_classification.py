"""
Tests for domain classification.
"""

from typing import Dict, List

import pytest

from hassbridge.errors import ClassificationSkip
from hassbridge.hub.models import HubDevice, HubEntity, HubState
from hassbridge.matter.classification import ClassifierOptions, DeviceClassifier
from hassbridge.matter.mapping import POWER_ENERGY_ENDPOINT
from hassbridge.matter.models import ClusterType, MatterDeviceType
from hassbridge.matter.shape import MAIN_ENDPOINT


def entity(entity_id: str, name: str = "Thing", device_id: str = None, **fields) -> HubEntity:
    return HubEntity(entity_id=entity_id, id=f"id_{entity_id}", name=name, device_id=device_id, **fields)


def state(entity_id: str, value: str = "on", **attributes) -> HubState:
    return HubState(entity_id=entity_id, state=value, attributes=attributes)


def states_of(*items: HubState) -> Dict[str, HubState]:
    return {s.entity_id: s for s in items}


class TestIndividualEntities:
    """Tests for standalone entity classification."""

    def test_switch_plug(self):
        """Test a switch becomes a single on/off plug endpoint."""
        classifier = DeviceClassifier()
        shape = classifier.classify_entity(
            entity("switch.plug", name="Plug"), state("switch.plug", friendly_name="Plug"),
        )
        assert shape.main.device_types == [MatterDeviceType.BRIDGED_NODE]
        endpoint = shape.endpoints["switch.plug"]
        assert endpoint.device_types == [MatterDeviceType.ON_OFF_PLUG]
        assert endpoint.cluster_ids == [ClusterType.ON_OFF]
        assert endpoint.friendly_name_assignments == ["Plug"]
        assert endpoint.cluster_defaults[ClusterType.ON_OFF] == {"onOff": True}
        assert [c.command for c in endpoint.commands] == ["on", "off", "toggle"]
        assert shape.entity_endpoints == {"switch.plug": "switch.plug"}

    def test_classification_is_idempotent(self):
        """Test classifying the same inputs twice gives equal shapes."""
        classifier = DeviceClassifier()
        ent = entity("light.desk", name="Desk")
        st = state("light.desk", supported_color_modes=["hs", "color_temp"], color_mode="hs",
                   hs_color=[30, 40], brightness=200)
        assert classifier.classify_entity(ent, st).to_dict() == classifier.classify_entity(ent, st).to_dict()

    def test_automation(self):
        """Test automations are momentary plugs on the main endpoint."""
        classifier = DeviceClassifier(ClassifierOptions(http_url="http://ha.local:8123"))
        shape = classifier.classify_entity(entity("automation.wake", name="Wake"), state("automation.wake"))
        assert MatterDeviceType.ON_OFF_PLUG in shape.main.device_types
        assert shape.composed_type == "Hass Automation"
        assert shape.configuration_url == "http://ha.local:8123/config/automation/dashboard"
        assert shape.entity_endpoints == {"automation.wake": MAIN_ENDPOINT}

    def test_template_entity(self):
        """Test template entities link to the helpers page."""
        shape = DeviceClassifier().classify_entity(
            entity("switch.tpl", platform="template"), state("switch.tpl"),
        )
        assert shape.composed_type == "Hass Template"

    def test_unsupported_domain(self):
        """Test unsupported domains are skipped."""
        with pytest.raises(ClassificationSkip):
            DeviceClassifier().classify_entity(entity("weather.home"), state("weather.home", "sunny"))

    def test_missing_state(self):
        """Test entities without a state are skipped."""
        with pytest.raises(ClassificationSkip) as exc_info:
            DeviceClassifier().classify_entity(entity("switch.gone"), None)
        assert exc_info.value.source_id == "switch.gone"

    def test_missing_name(self):
        """Test entities without a name are skipped."""
        ent = HubEntity(entity_id="switch.anon", id="x")
        with pytest.raises(ClassificationSkip):
            DeviceClassifier().classify_entity(ent, state("switch.anon"))

    def test_sensor_without_mapping(self):
        """Test a sensor with no device class is skipped."""
        with pytest.raises(ClassificationSkip):
            DeviceClassifier().classify_entity(entity("sensor.misc"), state("sensor.misc", "12"))

    def test_name_postfix(self):
        """Test the name and serial postfixes."""
        classifier = DeviceClassifier(ClassifierOptions(name_postfix="HB", postfix="X"))
        shape = classifier.classify_entity(entity("switch.plug", name="Plug"), state("switch.plug"))
        assert shape.name == "Plug HB"
        assert shape.serial_number == "id_switch.plugX"

    def test_long_postfix_ignored(self):
        """Test postfixes longer than three characters are ignored."""
        classifier = DeviceClassifier(ClassifierOptions(name_postfix="LONG"))
        assert classifier.device_name("Plug") == "Plug"


class TestLights:
    """Tests for light classification."""

    def test_dimmable(self):
        """Test brightness-only lights are dimmable."""
        shape = DeviceClassifier().classify_entity(
            entity("light.desk"), state("light.desk", supported_color_modes=["brightness"], brightness=255),
        )
        endpoint = shape.endpoints["light.desk"]
        assert endpoint.device_types == [MatterDeviceType.DIMMABLE_LIGHT]
        assert ClusterType.COLOR_CONTROL not in endpoint.all_cluster_ids()
        assert endpoint.cluster_defaults[ClusterType.LEVEL_CONTROL]["currentLevel"] == 254

    def test_color_temperature_default_bounds(self):
        """Test color temperature lights without bounds use 147/500."""
        shape = DeviceClassifier().classify_entity(
            entity("light.desk"), state("light.desk", "off", supported_color_modes=["color_temp"]),
        )
        endpoint = shape.endpoints["light.desk"]
        assert endpoint.device_types == [MatterDeviceType.COLOR_TEMP_LIGHT]
        color = endpoint.cluster_defaults[ClusterType.COLOR_CONTROL]
        assert color["colorTempPhysicalMinMireds"] == 147
        assert color["colorTempPhysicalMaxMireds"] == 500
        assert color["colorMode"] == 2
        assert color["options"] == {"executeIfOff": False}
        assert color["colorCapabilities"]["hueSaturation"] is False

    def test_color_temperature_from_kelvin(self):
        """Test the current color temperature seeds the default."""
        shape = DeviceClassifier().classify_entity(
            entity("light.desk"),
            state("light.desk", supported_color_modes=["color_temp"], color_mode="color_temp",
                  color_temp_kelvin=4000, min_color_temp_kelvin=2000, max_color_temp_kelvin=6500),
        )
        color = shape.endpoints["light.desk"].cluster_defaults[ClusterType.COLOR_CONTROL]
        assert color["colorTemperatureMireds"] == 250
        assert color["colorTempPhysicalMinMireds"] == 153
        assert color["colorTempPhysicalMaxMireds"] == 500

    def test_richest_mode_wins(self):
        """Test a light supporting hs and color_temp is an extended color light."""
        shape = DeviceClassifier().classify_entity(
            entity("light.desk"), state("light.desk", supported_color_modes=["color_temp", "hs"]),
        )
        endpoint = shape.endpoints["light.desk"]
        assert endpoint.device_types == [MatterDeviceType.EXTENDED_COLOR_LIGHT]
        assert endpoint.cluster_defaults[ClusterType.COLOR_CONTROL]["colorCapabilities"]["hueSaturation"] is True

    def test_attribute_fallback(self):
        """Test lights without supported_color_modes use their attributes."""
        shape = DeviceClassifier().classify_entity(entity("light.old"), state("light.old", brightness=100))
        assert shape.endpoints["light.old"].device_types == [MatterDeviceType.DIMMABLE_LIGHT]


class TestControls:
    """Tests for the other control domains."""

    def test_climate_heat_cool(self):
        """Test heat_cool thermostats use auto mode defaults."""
        shape = DeviceClassifier().classify_entity(
            entity("climate.living"),
            state("climate.living", "heat_cool", hvac_modes=["off", "heat", "cool", "heat_cool"]),
        )
        thermostat = shape.endpoints["climate.living"].cluster_defaults[ClusterType.THERMOSTAT]
        assert thermostat["localTemperature"] == 2300
        assert thermostat["occupiedHeatingSetpoint"] == 2100
        assert thermostat["occupiedCoolingSetpoint"] == 2500
        assert thermostat["minHeatSetpointLimit"] == 0
        assert thermostat["maxHeatSetpointLimit"] == 5000
        assert thermostat["absMinCoolSetpointLimit"] == 0
        assert thermostat["absMaxCoolSetpointLimit"] == 5000
        assert thermostat["systemMode"] == 1

    def test_climate_heat_only(self):
        """Test heat-only thermostats get heating limits only."""
        shape = DeviceClassifier().classify_entity(
            entity("climate.rad"),
            state("climate.rad", "heat", hvac_modes=["off", "heat"], temperature=19.5, current_temperature=18,
                  min_temp=7, max_temp=30),
        )
        thermostat = shape.endpoints["climate.rad"].cluster_defaults[ClusterType.THERMOSTAT]
        assert thermostat["occupiedHeatingSetpoint"] == 1950
        assert thermostat["localTemperature"] == 1800
        assert thermostat["minHeatSetpointLimit"] == 700
        assert "minCoolSetpointLimit" not in thermostat

    def test_climate_subscriptions(self):
        """Test thermostat writes are subscribed."""
        shape = DeviceClassifier().classify_entity(
            entity("climate.living"), state("climate.living", "heat_cool", hvac_modes=["heat_cool"]),
        )
        attributes = [s.attribute for s in shape.endpoints["climate.living"].subscriptions]
        assert attributes == ["systemMode", "occupiedHeatingSetpoint", "occupiedCoolingSetpoint"]

    def test_fan_complete(self):
        """Test fans with direction get the complete feature set."""
        shape = DeviceClassifier().classify_entity(
            entity("fan.ceiling"), state("fan.ceiling", direction="forward", percentage=50),
        )
        fan = shape.endpoints["fan.ceiling"].cluster_defaults[ClusterType.FAN_CONTROL]
        assert "Rocking" in fan["feature"]
        assert fan["percentSetting"] == 0

    def test_vacuum(self):
        """Test vacuums are robot vacuums with run mode and operational state."""
        shape = DeviceClassifier().classify_entity(entity("vacuum.robot"), state("vacuum.robot", "docked"))
        endpoint = shape.endpoints["vacuum.robot"]
        assert endpoint.device_types == [MatterDeviceType.ROBOT_VACUUM]
        assert ClusterType.RVC_OPERATIONAL_STATE in endpoint.all_cluster_ids()
        assert endpoint.cluster_defaults[ClusterType.RVC_RUN_MODE]["currentMode"] == 1
        assert shape.mode == "server"

    def test_vacuum_without_server_mode(self):
        """Test server mode can be disabled."""
        classifier = DeviceClassifier(ClassifierOptions(enable_server_rvc=False))
        shape = classifier.classify_entity(entity("vacuum.robot"), state("vacuum.robot", "docked"))
        assert shape.mode is None


class TestPassive:
    """Tests for sensors, binary sensors and events."""

    def test_temperature_sensor(self):
        """Test a temperature measurement."""
        shape = DeviceClassifier().classify_entity(
            entity("sensor.temp"),
            state("sensor.temp", "21.4", device_class="temperature", state_class="measurement"),
        )
        endpoint = shape.endpoints["sensor.temp"]
        assert endpoint.device_types == [MatterDeviceType.TEMPERATURE_SENSOR]
        assert endpoint.cluster_ids == [ClusterType.TEMPERATURE_MEASUREMENT]

    def test_contact_sensor(self):
        """Test doors are contact sensors, closed when off."""
        shape = DeviceClassifier().classify_entity(
            entity("binary_sensor.door"), state("binary_sensor.door", "off", device_class="door"),
        )
        endpoint = shape.endpoints["binary_sensor.door"]
        assert endpoint.device_types == [MatterDeviceType.CONTACT_SENSOR]
        assert endpoint.cluster_defaults[ClusterType.BOOLEAN_STATE] == {"stateValue": True}

    def test_smoke_alarm(self):
        """Test smoke detectors are smoke alarms."""
        shape = DeviceClassifier().classify_entity(
            entity("binary_sensor.smoke"), state("binary_sensor.smoke", "on", device_class="smoke"),
        )
        alarm = shape.endpoints["binary_sensor.smoke"].cluster_defaults[ClusterType.SMOKE_CO_ALARM]
        assert alarm["feature"] == "SmokeAlarm"
        assert alarm["smokeState"] == 2

    def test_event(self):
        """Test events with press types are generic switches."""
        shape = DeviceClassifier().classify_entity(
            entity("event.button"), state("event.button", "unknown", event_types=["single", "double", "long"]),
        )
        endpoint = shape.endpoints["event.button"]
        assert endpoint.device_types == [MatterDeviceType.GENERIC_SWITCH]
        assert ClusterType.SWITCH in endpoint.all_cluster_ids()

    def test_event_unsupported_types(self):
        """Test events without press types are skipped."""
        with pytest.raises(ClassificationSkip):
            DeviceClassifier().classify_entity(
                entity("event.doorbell"), state("event.doorbell", "unknown", event_types=["ring"]),
            )

    def test_air_quality_regex(self):
        """Test entities matching the air quality pattern share one endpoint."""
        classifier = DeviceClassifier(ClassifierOptions(air_quality_regex=r"^sensor\..*_aqi$"))
        shape = classifier.classify_entity(entity("sensor.living_aqi"), state("sensor.living_aqi", "good"))
        assert shape.entity_endpoints == {"sensor.living_aqi": "AirQuality"}
        assert classifier.is_air_quality("sensor.living_aqi")
        assert not classifier.is_air_quality("sensor.living_temperature")

    def test_invalid_air_quality_regex(self):
        """Test a bad pattern disables air quality detection."""
        classifier = DeviceClassifier(ClassifierOptions(air_quality_regex="(["))
        assert classifier.air_quality_pattern is None


class TestDevices:
    """Tests for device classification."""

    def _sensor_device(self, with_battery: bool) -> tuple:
        device = HubDevice(id="dev1", name="Multi Sensor", model="MS1")
        entities: List[HubEntity] = [
            entity("sensor.ms_temp", device_id="dev1"),
            entity("sensor.ms_voltage", device_id="dev1"),
        ]
        states = [
            state("sensor.ms_temp", "20", device_class="temperature", state_class="measurement"),
            state("sensor.ms_voltage", "3.0", device_class="voltage", state_class="measurement",
                  unit_of_measurement="V"),
        ]
        if with_battery:
            entities.append(entity("sensor.ms_battery", device_id="dev1"))
            states.append(state("sensor.ms_battery", "80", device_class="battery", state_class="measurement"))
        return device, entities, states_of(*states)

    def test_battery_detection(self):
        """Test battery devices report their voltage entities."""
        device, entities, states = self._sensor_device(with_battery=True)
        battery, voltage = DeviceClassifier.detect_battery(entities, states)
        assert battery is True
        assert voltage == ["sensor.ms_voltage"]
        assert DeviceClassifier.detect_battery(entities[:2], states) == (False, [])

    def test_battery_voltage_on_power_source(self):
        """Test a battery device maps voltage to the power source."""
        device, entities, states = self._sensor_device(with_battery=True)
        shape = DeviceClassifier().classify_device(device, entities, states)
        assert MatterDeviceType.POWER_SOURCE in shape.main.device_types
        assert shape.entity_endpoints["sensor.ms_voltage"] == MAIN_ENDPOINT
        assert not shape.has(POWER_ENERGY_ENDPOINT)

    def test_mains_voltage_on_electrical_sensor(self):
        """Test a mains device maps voltage to the electrical sensor."""
        device, entities, states = self._sensor_device(with_battery=False)
        shape = DeviceClassifier().classify_device(device, entities, states)
        assert shape.entity_endpoints["sensor.ms_voltage"] == POWER_ENERGY_ENDPOINT
        assert shape.has_device_type(MatterDeviceType.ELECTRICAL_SENSOR, POWER_ENERGY_ENDPOINT)
        assert MatterDeviceType.POWER_SOURCE not in shape.main.device_types

    def test_device_metadata(self):
        """Test composed type and configuration URL."""
        device, entities, states = self._sensor_device(with_battery=False)
        classifier = DeviceClassifier(ClassifierOptions(http_url="http://ha.local:8123"))
        shape = classifier.classify_device(device, entities, states)
        assert shape.composed_type == "Hass Device"
        assert shape.configuration_url == "http://ha.local:8123/config/devices/device/dev1"
        assert shape.product_name == "MS1"

    def test_split_entities_skipped(self):
        """Test split entities are left out of the device."""
        device, entities, states = self._sensor_device(with_battery=False)
        classifier = DeviceClassifier(ClassifierOptions(split_entities=["sensor.ms_temp"]))
        shape = classifier.classify_device(device, entities, states)
        assert "sensor.ms_temp" not in shape.entity_endpoints

    def test_no_entities(self):
        """Test devices without entities are skipped."""
        with pytest.raises(ClassificationSkip):
            DeviceClassifier().classify_device(HubDevice(id="d", name="Empty"), [], {})

    def test_service_device(self):
        """Test service devices are skipped."""
        device = HubDevice(id="d", name="Sun", entry_type="service")
        with pytest.raises(ClassificationSkip):
            DeviceClassifier().classify_device(device, [entity("sensor.sun", device_id="d")], {})

    def test_nothing_supported(self):
        """Test devices contributing no endpoint are skipped."""
        device = HubDevice(id="d", name="Updater")
        ents = [entity("update.firmware", device_id="d")]
        with pytest.raises(ClassificationSkip):
            DeviceClassifier().classify_device(device, ents, states_of(state("update.firmware", "off")))
