"""
Home Assistant entity → Matter device mapping.

Ordered rule tables consulted by classification, by the platform's update
handler and by command routing. Tables are evaluated top to bottom and the
order is significant: where several passive rows match the same
(domain, state_class, device_class) tuple they all apply, in table order.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import converters as cv
from .models import (
    ClusterType,
    FanMode,
    LockState,
    MatterDeviceType,
    MovementStatus,
    RvcOperationalState,
    RvcRunMode,
    SwitchEvent,
    SystemMode,
    ValveState,
)

logger = logging.getLogger(__name__)

# Domains exposed as a single on/off outlet on the main endpoint
INDIVIDUAL_DOMAINS: Tuple[str, ...] = ("automation", "scene", "script", "input_boolean", "input_button")

CONTROL_DOMAINS: Tuple[str, ...] = ("switch", "light", "lock", "fan", "cover", "climate", "valve", "vacuum")

PASSIVE_DOMAINS: Tuple[str, ...] = ("sensor", "binary_sensor", "event")

# Composed type and configuration page per individual domain
INDIVIDUAL_COMPOSED_TYPES: Dict[str, Tuple[str, str]] = {
    "automation": ("Hass Automation", "/config/automation/dashboard"),
    "scene": ("Hass Scene", "/config/scene/dashboard"),
    "script": ("Hass Script", "/config/script/dashboard"),
    "input_boolean": ("Hass Boolean", "/config/helpers"),
    "input_button": ("Hass Button", "/config/helpers"),
}

# Domains whose state is not mirrored back after the initial on/off pulse
STATELESS_DOMAINS: Tuple[str, ...] = ("automation", "scene", "script", "input_button")

POWER_ENERGY_ENDPOINT = "PowerEnergy"
AIR_QUALITY_ENDPOINT = "AirQuality"


@dataclass(frozen=True)
class DomainRule:
    """A control domain row; rows with ``with_attribute`` apply when the attribute is present."""
    domain: str
    device_type: MatterDeviceType
    cluster: ClusterType
    with_attribute: Optional[str] = None
    extra_clusters: Tuple[ClusterType, ...] = ()


@dataclass(frozen=True)
class ColorModeRule:
    color_mode: str
    device_type: MatterDeviceType
    clusters: Tuple[ClusterType, ...]


@dataclass(frozen=True)
class SensorRule:
    domain: str
    state_class: Optional[str]
    device_class: Optional[str]
    device_type: MatterDeviceType
    cluster: ClusterType
    attribute: str
    converter: Callable[[Any, Optional[str]], Any]
    endpoint: Optional[str] = None


@dataclass(frozen=True)
class BinarySensorRule:
    domain: str
    device_class: Optional[str]
    device_type: MatterDeviceType
    cluster: ClusterType
    attribute: str
    converter: Callable[[Any], Any]
    endpoint: Optional[str] = None


@dataclass(frozen=True)
class EventRule:
    event_type: str
    switch_event: SwitchEvent


@dataclass(frozen=True)
class UpdateStateRule:
    domain: str
    state: str
    cluster: ClusterType
    attribute: str
    value: Any


@dataclass(frozen=True)
class UpdateAttributeRule:
    domain: str
    with_attribute: str
    cluster: ClusterType
    attribute: str
    converter: Callable[[Any, Any], Any]
    when: Optional[Callable[[Any], bool]] = None

    def applies(self, state: Any) -> bool:
        return self.when is None or self.when(state)


@dataclass(frozen=True)
class CommandRule:
    """
    A Matter command handled for a domain.

    ``selector`` picks the service from the request when it varies; a
    selector returning None rejects the request.
    """
    domain: str
    command: str
    service: str
    converter: Optional[Callable[[Dict[str, Any], Optional[Dict[str, Any]]], Optional[Dict[str, Any]]]] = None
    selector: Optional[Callable[[Dict[str, Any]], Optional[str]]] = None


@dataclass(frozen=True)
class SubscribeRule:
    """A writable Matter attribute mirrored to a service call."""
    domain: str
    cluster: ClusterType
    attribute: str
    service: str
    with_key: str
    converter: Optional[Callable[[Any], Any]] = None
    # Service data key used instead of ``with_key`` while in heat_cool mode
    range_key: Optional[str] = None


@dataclass
class ServiceCall:
    domain: str
    service: str
    data: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# CLASSIFICATION TABLES
# =============================================================================

DOMAIN_RULES: List[DomainRule] = [
    DomainRule("switch", MatterDeviceType.ON_OFF_PLUG, ClusterType.ON_OFF),
    DomainRule("light", MatterDeviceType.ON_OFF_LIGHT, ClusterType.ON_OFF),
    DomainRule("lock", MatterDeviceType.DOOR_LOCK, ClusterType.DOOR_LOCK),
    DomainRule("fan", MatterDeviceType.FAN, ClusterType.FAN_CONTROL),
    DomainRule("cover", MatterDeviceType.WINDOW_COVERING, ClusterType.WINDOW_COVERING),
    DomainRule("climate", MatterDeviceType.THERMOSTAT, ClusterType.THERMOSTAT),
    DomainRule("valve", MatterDeviceType.WATER_VALVE, ClusterType.VALVE_CONFIGURATION_AND_CONTROL),
    DomainRule("vacuum", MatterDeviceType.ROBOT_VACUUM, ClusterType.RVC_RUN_MODE,
               extra_clusters=(ClusterType.RVC_OPERATIONAL_STATE,)),
    # Attribute rows; lights only use these without supported_color_modes
    DomainRule("light", MatterDeviceType.DIMMABLE_LIGHT, ClusterType.LEVEL_CONTROL, with_attribute="brightness"),
    DomainRule("light", MatterDeviceType.COLOR_TEMP_LIGHT, ClusterType.COLOR_CONTROL,
               with_attribute="color_temp_kelvin", extra_clusters=(ClusterType.LEVEL_CONTROL,)),
    DomainRule("light", MatterDeviceType.EXTENDED_COLOR_LIGHT, ClusterType.COLOR_CONTROL,
               with_attribute="hs_color", extra_clusters=(ClusterType.LEVEL_CONTROL,)),
    DomainRule("light", MatterDeviceType.EXTENDED_COLOR_LIGHT, ClusterType.COLOR_CONTROL,
               with_attribute="xy_color", extra_clusters=(ClusterType.LEVEL_CONTROL,)),
]

_COLOR_CLUSTERS = (ClusterType.ON_OFF, ClusterType.LEVEL_CONTROL, ClusterType.COLOR_CONTROL)

COLOR_MODE_RULES: List[ColorModeRule] = [
    ColorModeRule("onoff", MatterDeviceType.ON_OFF_LIGHT, (ClusterType.ON_OFF,)),
    ColorModeRule("brightness", MatterDeviceType.DIMMABLE_LIGHT, (ClusterType.ON_OFF, ClusterType.LEVEL_CONTROL)),
    ColorModeRule("white", MatterDeviceType.DIMMABLE_LIGHT, (ClusterType.ON_OFF, ClusterType.LEVEL_CONTROL)),
    ColorModeRule("color_temp", MatterDeviceType.COLOR_TEMP_LIGHT, _COLOR_CLUSTERS),
    ColorModeRule("hs", MatterDeviceType.EXTENDED_COLOR_LIGHT, _COLOR_CLUSTERS),
    ColorModeRule("xy", MatterDeviceType.EXTENDED_COLOR_LIGHT, _COLOR_CLUSTERS),
    ColorModeRule("rgb", MatterDeviceType.EXTENDED_COLOR_LIGHT, _COLOR_CLUSTERS),
    ColorModeRule("rgbw", MatterDeviceType.EXTENDED_COLOR_LIGHT, _COLOR_CLUSTERS),
    ColorModeRule("rgbww", MatterDeviceType.EXTENDED_COLOR_LIGHT, _COLOR_CLUSTERS),
]

# Poorest to richest
LIGHT_TYPE_RANK: List[MatterDeviceType] = [
    MatterDeviceType.ON_OFF_LIGHT,
    MatterDeviceType.DIMMABLE_LIGHT,
    MatterDeviceType.COLOR_TEMP_LIGHT,
    MatterDeviceType.EXTENDED_COLOR_LIGHT,
]

_AQ = AIR_QUALITY_ENDPOINT
_PE = POWER_ENERGY_ENDPOINT
_AQS = MatterDeviceType.AIR_QUALITY_SENSOR
_ES = MatterDeviceType.ELECTRICAL_SENSOR

SENSOR_RULES: List[SensorRule] = [
    SensorRule("sensor", "measurement", "temperature", MatterDeviceType.TEMPERATURE_SENSOR,
               ClusterType.TEMPERATURE_MEASUREMENT, "measuredValue", cv.temperature_measurement),
    SensorRule("sensor", "measurement", "humidity", MatterDeviceType.HUMIDITY_SENSOR,
               ClusterType.RELATIVE_HUMIDITY_MEASUREMENT, "measuredValue", cv.humidity_measurement),
    SensorRule("sensor", "measurement", "pressure", MatterDeviceType.PRESSURE_SENSOR,
               ClusterType.PRESSURE_MEASUREMENT, "measuredValue", cv.pressure_measurement),
    SensorRule("sensor", "measurement", "atmospheric_pressure", MatterDeviceType.PRESSURE_SENSOR,
               ClusterType.PRESSURE_MEASUREMENT, "measuredValue", cv.pressure_measurement),
    SensorRule("sensor", "measurement", "illuminance", MatterDeviceType.LIGHT_SENSOR,
               ClusterType.ILLUMINANCE_MEASUREMENT, "measuredValue", cv.illuminance_measurement),
    SensorRule("sensor", "measurement", "battery", MatterDeviceType.POWER_SOURCE,
               ClusterType.POWER_SOURCE, "batPercentRemaining", cv.battery_percent_remaining, endpoint=""),
    SensorRule("sensor", "measurement", "battery", MatterDeviceType.POWER_SOURCE,
               ClusterType.POWER_SOURCE, "batChargeLevel", cv.battery_charge_from_percent, endpoint=""),
    SensorRule("sensor", "measurement", "voltage", MatterDeviceType.POWER_SOURCE,
               ClusterType.POWER_SOURCE, "batVoltage", cv.battery_voltage, endpoint=""),
    SensorRule("sensor", "measurement", "voltage", _ES,
               ClusterType.ELECTRICAL_POWER_MEASUREMENT, "voltage", cv.electrical_voltage, endpoint=_PE),
    SensorRule("sensor", "measurement", "current", _ES,
               ClusterType.ELECTRICAL_POWER_MEASUREMENT, "activeCurrent", cv.electrical_current, endpoint=_PE),
    SensorRule("sensor", "measurement", "power", _ES,
               ClusterType.ELECTRICAL_POWER_MEASUREMENT, "activePower", cv.electrical_power, endpoint=_PE),
    SensorRule("sensor", "total_increasing", "energy", _ES,
               ClusterType.ELECTRICAL_ENERGY_MEASUREMENT, "cumulativeEnergyImported", cv.electrical_energy, endpoint=_PE),
    SensorRule("sensor", "measurement", "aqi", _AQS,
               ClusterType.AIR_QUALITY, "airQuality", cv.air_quality, endpoint=_AQ),
    SensorRule("sensor", "measurement", "carbon_monoxide", _AQS,
               ClusterType.CARBON_MONOXIDE_CONCENTRATION, "measuredValue", cv.concentration, endpoint=_AQ),
    SensorRule("sensor", "measurement", "carbon_dioxide", _AQS,
               ClusterType.CARBON_DIOXIDE_CONCENTRATION, "measuredValue", cv.concentration, endpoint=_AQ),
    SensorRule("sensor", "measurement", "nitrogen_dioxide", _AQS,
               ClusterType.NITROGEN_DIOXIDE_CONCENTRATION, "measuredValue", cv.concentration, endpoint=_AQ),
    SensorRule("sensor", "measurement", "ozone", _AQS,
               ClusterType.OZONE_CONCENTRATION, "measuredValue", cv.concentration, endpoint=_AQ),
    SensorRule("sensor", "measurement", "formaldehyde", _AQS,
               ClusterType.FORMALDEHYDE_CONCENTRATION, "measuredValue", cv.concentration, endpoint=_AQ),
    SensorRule("sensor", "measurement", "pm1", _AQS,
               ClusterType.PM1_CONCENTRATION, "measuredValue", cv.concentration, endpoint=_AQ),
    SensorRule("sensor", "measurement", "pm25", _AQS,
               ClusterType.PM25_CONCENTRATION, "measuredValue", cv.concentration, endpoint=_AQ),
    SensorRule("sensor", "measurement", "pm10", _AQS,
               ClusterType.PM10_CONCENTRATION, "measuredValue", cv.concentration, endpoint=_AQ),
    SensorRule("sensor", "measurement", "volatile_organic_compounds", _AQS,
               ClusterType.TVOC_CONCENTRATION, "measuredValue", cv.concentration, endpoint=_AQ),
    SensorRule("sensor", "measurement", "volatile_organic_compounds_parts", _AQS,
               ClusterType.TVOC_CONCENTRATION, "measuredValue", cv.concentration, endpoint=_AQ),
    SensorRule("sensor", "measurement", "radon", _AQS,
               ClusterType.RADON_CONCENTRATION, "measuredValue", cv.concentration, endpoint=_AQ),
]

BINARY_SENSOR_RULES: List[BinarySensorRule] = [
    BinarySensorRule("binary_sensor", "door", MatterDeviceType.CONTACT_SENSOR,
                     ClusterType.BOOLEAN_STATE, "stateValue", cv.contact_state),
    BinarySensorRule("binary_sensor", "window", MatterDeviceType.CONTACT_SENSOR,
                     ClusterType.BOOLEAN_STATE, "stateValue", cv.contact_state),
    BinarySensorRule("binary_sensor", "garage_door", MatterDeviceType.CONTACT_SENSOR,
                     ClusterType.BOOLEAN_STATE, "stateValue", cv.contact_state),
    BinarySensorRule("binary_sensor", "vibration", MatterDeviceType.CONTACT_SENSOR,
                     ClusterType.BOOLEAN_STATE, "stateValue", cv.contact_state),
    BinarySensorRule("binary_sensor", "motion", MatterDeviceType.OCCUPANCY_SENSOR,
                     ClusterType.OCCUPANCY_SENSING, "occupancy", cv.occupancy_state),
    BinarySensorRule("binary_sensor", "occupancy", MatterDeviceType.OCCUPANCY_SENSOR,
                     ClusterType.OCCUPANCY_SENSING, "occupancy", cv.occupancy_state),
    BinarySensorRule("binary_sensor", "presence", MatterDeviceType.OCCUPANCY_SENSOR,
                     ClusterType.OCCUPANCY_SENSING, "occupancy", cv.occupancy_state),
    BinarySensorRule("binary_sensor", "moisture", MatterDeviceType.WATER_LEAK_DETECTOR,
                     ClusterType.BOOLEAN_STATE, "stateValue", cv.boolean_state),
    BinarySensorRule("binary_sensor", "cold", MatterDeviceType.WATER_FREEZE_DETECTOR,
                     ClusterType.BOOLEAN_STATE, "stateValue", cv.boolean_state),
    BinarySensorRule("binary_sensor", "smoke", MatterDeviceType.SMOKE_CO_ALARM,
                     ClusterType.SMOKE_CO_ALARM, "smokeState", cv.alarm_state),
    BinarySensorRule("binary_sensor", "carbon_monoxide", MatterDeviceType.SMOKE_CO_ALARM,
                     ClusterType.SMOKE_CO_ALARM, "coState", cv.alarm_state),
    BinarySensorRule("binary_sensor", "battery", MatterDeviceType.POWER_SOURCE,
                     ClusterType.POWER_SOURCE, "batChargeLevel", cv.battery_low_state, endpoint=""),
]

EVENT_RULES: List[EventRule] = [
    EventRule("single", SwitchEvent.SINGLE),
    EventRule("press", SwitchEvent.SINGLE),
    EventRule("double", SwitchEvent.DOUBLE),
    EventRule("double_press", SwitchEvent.DOUBLE),
    EventRule("long", SwitchEvent.LONG),
    EventRule("long_press", SwitchEvent.LONG),
    EventRule("hold", SwitchEvent.LONG),
]


# =============================================================================
# UPDATE TABLES (Home Assistant state → Matter attributes)
# =============================================================================

def _cover_status(movement: MovementStatus) -> Dict[str, int]:
    return {"global": int(movement), "lift": int(movement), "tilt": 0}


def _on_off(domain: str) -> List[UpdateStateRule]:
    return [
        UpdateStateRule(domain, "on", ClusterType.ON_OFF, "onOff", True),
        UpdateStateRule(domain, "off", ClusterType.ON_OFF, "onOff", False),
    ]


def _vacuum(state: str, run_mode: int, operational_state: int) -> List[UpdateStateRule]:
    return [
        UpdateStateRule("vacuum", state, ClusterType.RVC_RUN_MODE, "currentMode", run_mode),
        UpdateStateRule("vacuum", state, ClusterType.RVC_OPERATIONAL_STATE, "operationalState", operational_state),
    ]


UPDATE_STATE_RULES: List[UpdateStateRule] = [
    *_on_off("switch"),
    *_on_off("light"),
    *_on_off("input_boolean"),
    UpdateStateRule("fan", "on", ClusterType.FAN_CONTROL, "fanMode", int(FanMode.ON)),
    UpdateStateRule("fan", "off", ClusterType.FAN_CONTROL, "fanMode", int(FanMode.OFF)),
    UpdateStateRule("fan", "off", ClusterType.FAN_CONTROL, "percentCurrent", 0),
    UpdateStateRule("lock", "locked", ClusterType.DOOR_LOCK, "lockState", int(LockState.LOCKED)),
    UpdateStateRule("lock", "locking", ClusterType.DOOR_LOCK, "lockState", int(LockState.NOT_FULLY_LOCKED)),
    UpdateStateRule("lock", "unlocking", ClusterType.DOOR_LOCK, "lockState", int(LockState.NOT_FULLY_LOCKED)),
    UpdateStateRule("lock", "jammed", ClusterType.DOOR_LOCK, "lockState", int(LockState.NOT_FULLY_LOCKED)),
    UpdateStateRule("lock", "unlocked", ClusterType.DOOR_LOCK, "lockState", int(LockState.UNLOCKED)),
    UpdateStateRule("lock", "open", ClusterType.DOOR_LOCK, "lockState", int(LockState.UNLATCHED)),
    UpdateStateRule("cover", "open", ClusterType.WINDOW_COVERING, "operationalStatus", _cover_status(MovementStatus.STOPPED)),
    UpdateStateRule("cover", "open", ClusterType.WINDOW_COVERING, "targetPositionLiftPercent100ths", 0),
    UpdateStateRule("cover", "open", ClusterType.WINDOW_COVERING, "currentPositionLiftPercent100ths", 0),
    UpdateStateRule("cover", "closed", ClusterType.WINDOW_COVERING, "operationalStatus", _cover_status(MovementStatus.STOPPED)),
    UpdateStateRule("cover", "closed", ClusterType.WINDOW_COVERING, "targetPositionLiftPercent100ths", 10000),
    UpdateStateRule("cover", "closed", ClusterType.WINDOW_COVERING, "currentPositionLiftPercent100ths", 10000),
    UpdateStateRule("cover", "opening", ClusterType.WINDOW_COVERING, "operationalStatus", _cover_status(MovementStatus.OPENING)),
    UpdateStateRule("cover", "closing", ClusterType.WINDOW_COVERING, "operationalStatus", _cover_status(MovementStatus.CLOSING)),
    UpdateStateRule("climate", "off", ClusterType.THERMOSTAT, "systemMode", int(SystemMode.OFF)),
    UpdateStateRule("climate", "heat", ClusterType.THERMOSTAT, "systemMode", int(SystemMode.HEAT)),
    UpdateStateRule("climate", "cool", ClusterType.THERMOSTAT, "systemMode", int(SystemMode.COOL)),
    UpdateStateRule("climate", "heat_cool", ClusterType.THERMOSTAT, "systemMode", int(SystemMode.AUTO)),
    UpdateStateRule("climate", "auto", ClusterType.THERMOSTAT, "systemMode", int(SystemMode.AUTO)),
    UpdateStateRule("climate", "dry", ClusterType.THERMOSTAT, "systemMode", int(SystemMode.DRY)),
    UpdateStateRule("climate", "fan_only", ClusterType.THERMOSTAT, "systemMode", int(SystemMode.FAN_ONLY)),
    UpdateStateRule("valve", "open", ClusterType.VALVE_CONFIGURATION_AND_CONTROL, "currentState", int(ValveState.OPEN)),
    UpdateStateRule("valve", "open", ClusterType.VALVE_CONFIGURATION_AND_CONTROL, "targetState", int(ValveState.OPEN)),
    UpdateStateRule("valve", "closed", ClusterType.VALVE_CONFIGURATION_AND_CONTROL, "currentState", int(ValveState.CLOSED)),
    UpdateStateRule("valve", "closed", ClusterType.VALVE_CONFIGURATION_AND_CONTROL, "targetState", int(ValveState.CLOSED)),
    UpdateStateRule("valve", "opening", ClusterType.VALVE_CONFIGURATION_AND_CONTROL, "currentState", int(ValveState.TRANSITIONING)),
    UpdateStateRule("valve", "closing", ClusterType.VALVE_CONFIGURATION_AND_CONTROL, "currentState", int(ValveState.TRANSITIONING)),
    *_vacuum("cleaning", int(RvcRunMode.CLEANING), int(RvcOperationalState.RUNNING)),
    *_vacuum("paused", int(RvcRunMode.CLEANING), int(RvcOperationalState.PAUSED)),
    *_vacuum("docked", int(RvcRunMode.IDLE), int(RvcOperationalState.DOCKED)),
    *_vacuum("returning", int(RvcRunMode.IDLE), int(RvcOperationalState.SEEKING_CHARGER)),
    *_vacuum("idle", int(RvcRunMode.IDLE), int(RvcOperationalState.STOPPED)),
    *_vacuum("error", int(RvcRunMode.IDLE), int(RvcOperationalState.ERROR)),
]

UPDATE_ATTRIBUTE_RULES: List[UpdateAttributeRule] = [
    UpdateAttributeRule("light", "brightness", ClusterType.LEVEL_CONTROL, "currentLevel", cv.brightness_to_level),
    UpdateAttributeRule("light", "color_mode", ClusterType.COLOR_CONTROL, "colorMode", cv.color_mode_to_matter,
                        when=cv.color_mode_in(*cv.COLOR_COLOR_MODES, "color_temp")),
    UpdateAttributeRule("light", "color_temp_kelvin", ClusterType.COLOR_CONTROL, "colorTemperatureMireds",
                        cv.color_temp_kelvin_to_mireds, when=cv.color_mode_in(None, "color_temp")),
    UpdateAttributeRule("light", "hs_color", ClusterType.COLOR_CONTROL, "currentHue", cv.hs_to_hue,
                        when=cv.color_mode_in(*cv.HS_COLOR_MODES)),
    UpdateAttributeRule("light", "hs_color", ClusterType.COLOR_CONTROL, "currentSaturation", cv.hs_to_saturation,
                        when=cv.color_mode_in(*cv.HS_COLOR_MODES)),
    UpdateAttributeRule("light", "xy_color", ClusterType.COLOR_CONTROL, "currentX", cv.xy_to_current_x,
                        when=cv.color_mode_in("xy")),
    UpdateAttributeRule("light", "xy_color", ClusterType.COLOR_CONTROL, "currentY", cv.xy_to_current_y,
                        when=cv.color_mode_in("xy")),
    UpdateAttributeRule("fan", "percentage", ClusterType.FAN_CONTROL, "percentSetting", cv.fan_percentage),
    UpdateAttributeRule("fan", "percentage", ClusterType.FAN_CONTROL, "percentCurrent", cv.fan_percentage),
    UpdateAttributeRule("fan", "preset_mode", ClusterType.FAN_CONTROL, "fanMode", cv.fan_preset_to_mode),
    UpdateAttributeRule("fan", "direction", ClusterType.FAN_CONTROL, "airflowDirection", cv.fan_direction),
    UpdateAttributeRule("fan", "oscillating", ClusterType.FAN_CONTROL, "rockSetting", cv.fan_oscillating),
    UpdateAttributeRule("cover", "current_position", ClusterType.WINDOW_COVERING,
                        "currentPositionLiftPercent100ths", cv.cover_position),
    UpdateAttributeRule("cover", "current_position", ClusterType.WINDOW_COVERING,
                        "targetPositionLiftPercent100ths", cv.cover_position),
    UpdateAttributeRule("climate", "current_temperature", ClusterType.THERMOSTAT, "localTemperature",
                        cv.local_temperature),
    UpdateAttributeRule("climate", "temperature", ClusterType.THERMOSTAT, "occupiedHeatingSetpoint",
                        cv.heating_setpoint, when=cv.hvac_mode_is("heat")),
    UpdateAttributeRule("climate", "temperature", ClusterType.THERMOSTAT, "occupiedCoolingSetpoint",
                        cv.cooling_setpoint, when=cv.hvac_mode_is("cool")),
    UpdateAttributeRule("climate", "target_temp_low", ClusterType.THERMOSTAT, "occupiedHeatingSetpoint",
                        cv.range_heating_setpoint, when=cv.hvac_mode_is("heat_cool")),
    UpdateAttributeRule("climate", "target_temp_high", ClusterType.THERMOSTAT, "occupiedCoolingSetpoint",
                        cv.range_cooling_setpoint, when=cv.hvac_mode_is("heat_cool")),
    UpdateAttributeRule("valve", "current_position", ClusterType.VALVE_CONFIGURATION_AND_CONTROL,
                        "currentLevel", cv.valve_level),
    UpdateAttributeRule("valve", "current_position", ClusterType.VALVE_CONFIGURATION_AND_CONTROL,
                        "targetLevel", cv.valve_level),
]


# =============================================================================
# REVERSE TABLES (Matter → Home Assistant services)
# =============================================================================

COMMAND_RULES: List[CommandRule] = [
    CommandRule("switch", "on", "turn_on"),
    CommandRule("switch", "off", "turn_off"),
    CommandRule("switch", "toggle", "toggle"),
    CommandRule("light", "on", "turn_on"),
    CommandRule("light", "off", "turn_off"),
    CommandRule("light", "toggle", "toggle"),
    CommandRule("light", "moveToLevel", "turn_on", cv.level_to_brightness),
    CommandRule("light", "moveToLevelWithOnOff", "turn_on", cv.level_to_brightness),
    CommandRule("light", "moveToColorTemperature", "turn_on", cv.mireds_to_color_temp),
    CommandRule("light", "moveToColor", "turn_on", cv.xy_to_ha),
    CommandRule("light", "moveToHue", "turn_on", cv.hue_to_hs),
    CommandRule("light", "moveToSaturation", "turn_on", cv.saturation_to_hs),
    CommandRule("light", "moveToHueAndSaturation", "turn_on", cv.hue_saturation_to_hs),
    CommandRule("lock", "lockDoor", "lock"),
    CommandRule("lock", "unlockDoor", "unlock"),
    CommandRule("cover", "upOrOpen", "open_cover"),
    CommandRule("cover", "downOrClose", "close_cover"),
    CommandRule("cover", "stopMotion", "stop_cover"),
    CommandRule("cover", "goToLiftPercentage", "set_cover_position", cv.lift_percentage_to_position,
                selector=cv.lift_percentage_service),
    CommandRule("valve", "open", "open_valve"),
    CommandRule("valve", "close", "close_valve"),
    CommandRule("vacuum", "changeToMode", "start", selector=cv.run_mode_service),
    CommandRule("vacuum", "pause", "pause"),
    CommandRule("vacuum", "resume", "start"),
    CommandRule("vacuum", "goHome", "return_to_base"),
]

SUBSCRIBE_RULES: List[SubscribeRule] = [
    SubscribeRule("fan", ClusterType.FAN_CONTROL, "fanMode", "set_preset_mode", "preset_mode",
                  cv.fan_mode_to_preset),
    SubscribeRule("fan", ClusterType.FAN_CONTROL, "percentSetting", "set_percentage", "percentage",
                  cv.percent_setting_to_percentage),
    SubscribeRule("fan", ClusterType.FAN_CONTROL, "airflowDirection", "set_direction", "direction",
                  cv.airflow_to_direction),
    SubscribeRule("fan", ClusterType.FAN_CONTROL, "rockSetting", "oscillate", "oscillating",
                  cv.rock_setting_to_oscillating),
    SubscribeRule("climate", ClusterType.THERMOSTAT, "systemMode", "set_hvac_mode", "hvac_mode",
                  cv.system_mode_to_hvac),
    SubscribeRule("climate", ClusterType.THERMOSTAT, "occupiedHeatingSetpoint", "set_temperature", "temperature",
                  cv.setpoint_to_temperature, range_key="target_temp_low"),
    SubscribeRule("climate", ClusterType.THERMOSTAT, "occupiedCoolingSetpoint", "set_temperature", "temperature",
                  cv.setpoint_to_temperature, range_key="target_temp_high"),
]

_RANGE_PARTNER = {"target_temp_low": "target_temp_high", "target_temp_high": "target_temp_low"}


# =============================================================================
# LOOKUPS
# =============================================================================

def domain_rules(domain: str, with_attribute: Optional[str] = None) -> List[DomainRule]:
    return [r for r in DOMAIN_RULES if r.domain == domain and r.with_attribute == with_attribute]


def sensor_rules(state_class: Optional[str], device_class: Optional[str], domain: str = "sensor") -> List[SensorRule]:
    return [
        r for r in SENSOR_RULES
        if r.domain == domain and r.state_class == state_class and r.device_class == device_class
    ]


def binary_sensor_rules(device_class: Optional[str], domain: str = "binary_sensor") -> List[BinarySensorRule]:
    return [r for r in BINARY_SENSOR_RULES if r.domain == domain and r.device_class == device_class]


def event_rule(event_type: Optional[str]) -> Optional[EventRule]:
    for rule in EVENT_RULES:
        if rule.event_type == event_type:
            return rule
    return None


def update_state_rules(domain: str, state: str) -> List[UpdateStateRule]:
    return [r for r in UPDATE_STATE_RULES if r.domain == domain and r.state == state]


def update_attribute_rules(domain: str) -> List[UpdateAttributeRule]:
    return [r for r in UPDATE_ATTRIBUTE_RULES if r.domain == domain]


def command_rules(domain: str) -> List[CommandRule]:
    return [r for r in COMMAND_RULES if r.domain == domain]


def command_rule(domain: str, command: str) -> Optional[CommandRule]:
    for rule in COMMAND_RULES:
        if rule.domain == domain and rule.command == command:
            return rule
    return None


def subscribe_rules(domain: str) -> List[SubscribeRule]:
    return [r for r in SUBSCRIBE_RULES if r.domain == domain]


# =============================================================================
# REVERSE RESOLUTION
# =============================================================================

def resolve_command(
    domain: str,
    command: str,
    request: Optional[Dict[str, Any]] = None,
    attributes: Optional[Dict[str, Any]] = None,
    state: Any = None,
) -> Optional[ServiceCall]:
    """
    Translate a Matter command into a Home Assistant service call.

    Args:
        domain: Entity domain
        command: Matter command name
        request: Command request fields
        attributes: Current attributes of the command's cluster
        state: Current HubState of the entity, when known

    Returns:
        The service call, or None when the command is unknown for the
        domain or its request cannot be translated
    """
    request = request or {}
    rule = command_rule(domain, command)
    if rule is None:
        return None

    service = rule.selector(request) if rule.selector else rule.service
    if service is None:
        logger.warning(f"Command {command} for domain {domain} has unsupported request {request}")
        return None

    data: Dict[str, Any] = {}
    if rule.converter and service == rule.service:
        converted = rule.converter(request, attributes)
        if converted is None:
            logger.warning(f"Command {command} for domain {domain} has invalid request {request}")
            return None
        data.update(converted)

    transition = cv.transition_seconds(request.get("transitionTime"))
    if transition is not None:
        data["transition"] = transition
    return ServiceCall(domain, service, data)


def resolve_write(rule: SubscribeRule, value: Any, state: Any = None) -> Optional[ServiceCall]:
    """
    Translate a Matter attribute write into a Home Assistant service call.

    Returns:
        The service call, or None when the value is not representable
    """
    converted = rule.converter(value) if rule.converter else value
    if converted is cv.TURN_OFF:
        return ServiceCall(rule.domain, "turn_off", {})
    if converted is None:
        return None

    if rule.range_key and getattr(state, "state", None) == "heat_cool":
        partner = _RANGE_PARTNER[rule.range_key]
        data = {rule.range_key: converted}
        partner_value = state.attributes.get(partner)
        if partner_value is not None:
            data[partner] = partner_value
        return ServiceCall(rule.domain, rule.service, data)

    return ServiceCall(rule.domain, rule.service, {rule.with_key: converted})
