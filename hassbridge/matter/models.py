"""
Matter device models and data structures.

Device type, cluster and cluster enum identifiers used when composing
bridged devices for the matter.js runtime.
"""

from enum import Enum, IntEnum
from typing import Dict


class MatterDeviceType(IntEnum):
    """
    Matter device type IDs from the Matter specification.

    See: Matter Device Library Specification
    """
    # Utility
    AGGREGATOR = 0x000E
    BRIDGED_NODE = 0x0013
    POWER_SOURCE = 0x0011
    ELECTRICAL_SENSOR = 0x0510

    # Lighting
    ON_OFF_LIGHT = 0x0100
    DIMMABLE_LIGHT = 0x0101
    COLOR_TEMP_LIGHT = 0x010C
    EXTENDED_COLOR_LIGHT = 0x010D

    # Plugs & Outlets
    ON_OFF_PLUG = 0x010A
    DIMMABLE_PLUG = 0x010B

    # Switches
    ON_OFF_SWITCH = 0x0103
    DIMMER_SWITCH = 0x0104
    COLOR_DIMMER_SWITCH = 0x0105
    GENERIC_SWITCH = 0x000F

    # Sensors
    CONTACT_SENSOR = 0x0015
    OCCUPANCY_SENSOR = 0x0107
    LIGHT_SENSOR = 0x0106
    TEMPERATURE_SENSOR = 0x0302
    HUMIDITY_SENSOR = 0x0307
    PRESSURE_SENSOR = 0x0305
    FLOW_SENSOR = 0x0306
    AIR_QUALITY_SENSOR = 0x002C
    WATER_FREEZE_DETECTOR = 0x0041
    WATER_LEAK_DETECTOR = 0x0043
    RAIN_SENSOR = 0x0044
    SMOKE_CO_ALARM = 0x0076

    # Security
    DOOR_LOCK = 0x000A

    # HVAC
    THERMOSTAT = 0x0301
    FAN = 0x002B

    # Covers & Valves
    WINDOW_COVERING = 0x0202
    WATER_VALVE = 0x0042

    # Appliances
    ROBOT_VACUUM = 0x0074


class ClusterType(IntEnum):
    """Matter cluster IDs."""
    # General
    IDENTIFY = 0x0003
    GROUPS = 0x0004
    BRIDGED_DEVICE_BASIC_INFORMATION = 0x0039
    SWITCH = 0x003B
    POWER_SOURCE = 0x002F
    BOOLEAN_STATE = 0x0045

    # On/Off & Level
    ON_OFF = 0x0006
    LEVEL_CONTROL = 0x0008

    # Color
    COLOR_CONTROL = 0x0300

    # Locks
    DOOR_LOCK = 0x0101

    # HVAC
    THERMOSTAT = 0x0201
    FAN_CONTROL = 0x0202

    # Covers & Valves
    WINDOW_COVERING = 0x0102
    VALVE_CONFIGURATION_AND_CONTROL = 0x0081

    # Robotic vacuum
    RVC_RUN_MODE = 0x0054
    RVC_OPERATIONAL_STATE = 0x0061

    # Measurement
    ILLUMINANCE_MEASUREMENT = 0x0400
    TEMPERATURE_MEASUREMENT = 0x0402
    PRESSURE_MEASUREMENT = 0x0403
    FLOW_MEASUREMENT = 0x0404
    RELATIVE_HUMIDITY_MEASUREMENT = 0x0405
    OCCUPANCY_SENSING = 0x0406

    # Air quality
    AIR_QUALITY = 0x005B
    SMOKE_CO_ALARM = 0x005C
    CARBON_MONOXIDE_CONCENTRATION = 0x040C
    CARBON_DIOXIDE_CONCENTRATION = 0x040D
    NITROGEN_DIOXIDE_CONCENTRATION = 0x0413
    OZONE_CONCENTRATION = 0x0415
    PM25_CONCENTRATION = 0x042A
    FORMALDEHYDE_CONCENTRATION = 0x042B
    PM1_CONCENTRATION = 0x042C
    PM10_CONCENTRATION = 0x042D
    TVOC_CONCENTRATION = 0x042E
    RADON_CONCENTRATION = 0x042F

    # Energy
    ELECTRICAL_POWER_MEASUREMENT = 0x0090
    ELECTRICAL_ENERGY_MEASUREMENT = 0x0091


# Cluster names as matter.js spells them on the wire
CLUSTER_NAMES: Dict[ClusterType, str] = {
    ClusterType.IDENTIFY: "Identify",
    ClusterType.GROUPS: "Groups",
    ClusterType.BRIDGED_DEVICE_BASIC_INFORMATION: "BridgedDeviceBasicInformation",
    ClusterType.SWITCH: "Switch",
    ClusterType.POWER_SOURCE: "PowerSource",
    ClusterType.BOOLEAN_STATE: "BooleanState",
    ClusterType.ON_OFF: "OnOff",
    ClusterType.LEVEL_CONTROL: "LevelControl",
    ClusterType.COLOR_CONTROL: "ColorControl",
    ClusterType.DOOR_LOCK: "DoorLock",
    ClusterType.THERMOSTAT: "Thermostat",
    ClusterType.FAN_CONTROL: "FanControl",
    ClusterType.WINDOW_COVERING: "WindowCovering",
    ClusterType.VALVE_CONFIGURATION_AND_CONTROL: "ValveConfigurationAndControl",
    ClusterType.RVC_RUN_MODE: "RvcRunMode",
    ClusterType.RVC_OPERATIONAL_STATE: "RvcOperationalState",
    ClusterType.ILLUMINANCE_MEASUREMENT: "IlluminanceMeasurement",
    ClusterType.TEMPERATURE_MEASUREMENT: "TemperatureMeasurement",
    ClusterType.PRESSURE_MEASUREMENT: "PressureMeasurement",
    ClusterType.FLOW_MEASUREMENT: "FlowMeasurement",
    ClusterType.RELATIVE_HUMIDITY_MEASUREMENT: "RelativeHumidityMeasurement",
    ClusterType.OCCUPANCY_SENSING: "OccupancySensing",
    ClusterType.AIR_QUALITY: "AirQuality",
    ClusterType.SMOKE_CO_ALARM: "SmokeCoAlarm",
    ClusterType.CARBON_MONOXIDE_CONCENTRATION: "CarbonMonoxideConcentrationMeasurement",
    ClusterType.CARBON_DIOXIDE_CONCENTRATION: "CarbonDioxideConcentrationMeasurement",
    ClusterType.NITROGEN_DIOXIDE_CONCENTRATION: "NitrogenDioxideConcentrationMeasurement",
    ClusterType.OZONE_CONCENTRATION: "OzoneConcentrationMeasurement",
    ClusterType.PM25_CONCENTRATION: "Pm25ConcentrationMeasurement",
    ClusterType.FORMALDEHYDE_CONCENTRATION: "FormaldehydeConcentrationMeasurement",
    ClusterType.PM1_CONCENTRATION: "Pm1ConcentrationMeasurement",
    ClusterType.PM10_CONCENTRATION: "Pm10ConcentrationMeasurement",
    ClusterType.TVOC_CONCENTRATION: "TotalVolatileOrganicCompoundsConcentrationMeasurement",
    ClusterType.RADON_CONCENTRATION: "RadonConcentrationMeasurement",
    ClusterType.ELECTRICAL_POWER_MEASUREMENT: "ElectricalPowerMeasurement",
    ClusterType.ELECTRICAL_ENERGY_MEASUREMENT: "ElectricalEnergyMeasurement",
}

CLUSTERS_BY_NAME: Dict[str, ClusterType] = {name: cluster for cluster, name in CLUSTER_NAMES.items()}


def cluster_name(cluster: ClusterType) -> str:
    return CLUSTER_NAMES.get(cluster, f"0x{int(cluster):04x}")


# =============================================================================
# CLUSTER ENUMS
# =============================================================================

class ColorMode(IntEnum):
    CURRENT_HUE_AND_SATURATION = 0
    CURRENT_X_AND_Y = 1
    COLOR_TEMPERATURE_MIREDS = 2


class LockState(IntEnum):
    NOT_FULLY_LOCKED = 0
    LOCKED = 1
    UNLOCKED = 2
    UNLATCHED = 3


class MovementStatus(IntEnum):
    """WindowCovering operationalStatus values."""
    STOPPED = 0
    OPENING = 1
    CLOSING = 2


class SystemMode(IntEnum):
    OFF = 0
    AUTO = 1
    COOL = 3
    HEAT = 4
    EMERGENCY_HEAT = 5
    PRECOOLING = 6
    FAN_ONLY = 7
    DRY = 8
    SLEEP = 9


class ControlSequence(IntEnum):
    """Thermostat controlSequenceOfOperation."""
    COOLING_ONLY = 0
    HEATING_ONLY = 2
    COOLING_AND_HEATING = 4


class FanMode(IntEnum):
    OFF = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    ON = 4
    AUTO = 5
    SMART = 6


class FanModeSequence(IntEnum):
    OFF_LOW_MED_HIGH = 0
    OFF_LOW_HIGH = 1
    OFF_LOW_MED_HIGH_AUTO = 2
    OFF_LOW_HIGH_AUTO = 3
    OFF_HIGH_AUTO = 4
    OFF_HIGH = 5


class AirflowDirection(IntEnum):
    FORWARD = 0
    REVERSE = 1


class ValveState(IntEnum):
    CLOSED = 0
    OPEN = 1
    TRANSITIONING = 2


class RvcRunMode(IntEnum):
    IDLE = 1
    CLEANING = 2
    MAPPING = 3


class RvcOperationalState(IntEnum):
    STOPPED = 0
    RUNNING = 1
    PAUSED = 2
    ERROR = 3
    SEEKING_CHARGER = 64
    CHARGING = 65
    DOCKED = 66


class AirQualityLevel(IntEnum):
    UNKNOWN = 0
    GOOD = 1
    FAIR = 2
    MODERATE = 3
    POOR = 4
    VERY_POOR = 5
    EXTREMELY_POOR = 6


class AlarmState(IntEnum):
    """SmokeCoAlarm smokeState / coState."""
    NORMAL = 0
    WARNING = 1
    CRITICAL = 2


class BatChargeLevel(IntEnum):
    OK = 0
    WARNING = 1
    CRITICAL = 2


class PowerSourceStatus(IntEnum):
    UNSPECIFIED = 0
    ACTIVE = 1
    STANDBY = 2
    UNAVAILABLE = 3


class SwitchEvent(str, Enum):
    """Generic switch press kinds accepted by triggerSwitchEvent."""
    SINGLE = "Single"
    DOUBLE = "Double"
    LONG = "Long"
