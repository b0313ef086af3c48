"""
Attribute translation between Home Assistant and Matter encodings.

Pure functions only. Forward converters take a Home Assistant value (plus
the unit of measurement or the full state) and return the Matter attribute
value, or None when the input cannot be represented; a None result leaves
the Matter attribute untouched. Reverse converters take a Matter command
request or attribute value and return Home Assistant service data.

Rounding follows JavaScript ``Math.round`` (half up) so values match what
matter.js controllers compute on their side.
"""

import math
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .models import (
    AirflowDirection,
    AirQualityLevel,
    AlarmState,
    BatChargeLevel,
    ColorMode,
    FanMode,
    RvcRunMode,
    SystemMode,
)

Number = Union[int, float]

DEFAULT_MIN_MIREDS = 147
DEFAULT_MAX_MIREDS = 500
DEFAULT_COLOR_TEMP_MIREDS = 250

# Matter chromaticity is x * 65536, capped at 0xFEFF
MATTER_XY_MAX = 65279

# Light color modes that Matter reports as hue/saturation
HS_COLOR_MODES = ("hs", "rgb", "rgbw", "rgbww")
COLOR_COLOR_MODES = HS_COLOR_MODES + ("xy",)


class TurnOff:
    """Sentinel returned by reverse converters meaning "call turn_off instead"."""

    def __repr__(self) -> str:
        return "TURN_OFF"


TURN_OFF = TurnOff()


# =============================================================================
# HELPERS
# =============================================================================

def is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def clamp(value: Number, minimum: Number, maximum: Number) -> Number:
    return min(max(value, minimum), maximum)


def round_half_up(value: Number) -> int:
    return int(math.floor(value + 0.5))


def _apply_rounding(value: float, rounding: str) -> int:
    if rounding == "floor":
        return int(math.floor(value))
    if rounding == "ceil":
        return int(math.ceil(value))
    return round_half_up(value)


def temp(value: Number, unit: Optional[str] = None) -> float:
    """Temperature in Celsius; Fahrenheit input is converted."""
    if unit == "°F":
        return (value - 32) * 5 / 9
    return value


def kelvin_to_mireds(kelvin: Number, rounding: str = "floor") -> int:
    return _apply_rounding(1_000_000 / kelvin, rounding)


def mireds_to_kelvin(mireds: Number, rounding: str = "floor") -> int:
    return _apply_rounding(1_000_000 / mireds, rounding)


def convert_matter_xy_to_ha(x: Number, y: Number) -> List[float]:
    """Matter currentX/currentY to a Home Assistant xy_color pair."""
    return [
        round(clamp(x, 0, MATTER_XY_MAX) / 65536, 4),
        round(clamp(y, 0, MATTER_XY_MAX) / 65536, 4),
    ]


def convert_ha_xy_to_matter(xy: Sequence[Number]) -> Dict[str, int]:
    """Home Assistant xy_color pair to Matter currentX/currentY."""
    return {
        "currentX": clamp(round_half_up(xy[0] * 65536), 0, MATTER_XY_MAX),
        "currentY": clamp(round_half_up(xy[1] * 65536), 0, MATTER_XY_MAX),
    }


def battery_charge_level(low: Optional[bool] = None, percent: Optional[Number] = None) -> BatChargeLevel:
    """
    Charge level from a low-battery flag and/or a percentage.

    The flag wins when given; otherwise 10% and 20% are the critical and
    warning thresholds.
    """
    if low is True:
        return BatChargeLevel.CRITICAL
    if low is False or not is_number(percent):
        return BatChargeLevel.OK
    if percent <= 10:
        return BatChargeLevel.CRITICAL
    if percent <= 20:
        return BatChargeLevel.WARNING
    return BatChargeLevel.OK


def mired_bounds(attributes: Dict[str, Any]) -> List[int]:
    """Declared color temperature bounds in mireds, or the 147/500 fallback."""
    minimum = attributes.get("min_mireds")
    maximum = attributes.get("max_mireds")
    if not is_number(minimum):
        max_kelvin = attributes.get("max_color_temp_kelvin")
        minimum = kelvin_to_mireds(max_kelvin) if is_number(max_kelvin) and max_kelvin > 0 else DEFAULT_MIN_MIREDS
    if not is_number(maximum):
        min_kelvin = attributes.get("min_color_temp_kelvin")
        maximum = kelvin_to_mireds(min_kelvin) if is_number(min_kelvin) and min_kelvin > 0 else DEFAULT_MAX_MIREDS
    return [int(minimum), int(maximum)]


def _attributes(state: Any) -> Dict[str, Any]:
    attributes = getattr(state, "attributes", None)
    return attributes if isinstance(attributes, dict) else {}


def _state_value(state: Any) -> Optional[str]:
    return getattr(state, "state", None)


def color_mode_in(*modes: Optional[str]) -> Callable[[Any], bool]:
    """Predicate on the light's current ``color_mode`` attribute."""
    return lambda state: _attributes(state).get("color_mode") in modes


def hvac_mode_is(mode: str) -> Callable[[Any], bool]:
    return lambda state: _state_value(state) == mode


# =============================================================================
# FORWARD: SENSOR VALUES (value, unit)
# =============================================================================

def temperature_measurement(value: Any, unit: Optional[str] = None) -> Optional[int]:
    if not is_number(value):
        return None
    measured = round_half_up(temp(value, unit) * 100)
    if measured < -10000 or measured > 10000:
        return None
    return measured


def humidity_measurement(value: Any, unit: Optional[str] = None) -> Optional[int]:
    if not is_number(value) or value < 0 or value > 100:
        return None
    return round_half_up(value * 100)


def pressure_measurement(value: Any, unit: Optional[str] = None) -> Optional[int]:
    if not is_number(value) or value <= 0:
        return None
    if unit == "hPa":
        return round_half_up(value)
    if unit == "kPa":
        return round_half_up(value * 10)
    if unit == "inHg":
        return round_half_up(value * 33.8639)
    return None


def illuminance_measurement(value: Any, unit: Optional[str] = None) -> Optional[int]:
    if not is_number(value) or value < 0:
        return None
    if value < 1:
        return 0
    return min(round_half_up(10000 * math.log10(value) + 1), 0xFFFE)


def battery_percent_remaining(value: Any, unit: Optional[str] = None) -> Optional[int]:
    if not is_number(value):
        return None
    return clamp(round_half_up(value * 2), 0, 200)


def battery_charge_from_percent(value: Any, unit: Optional[str] = None) -> Optional[BatChargeLevel]:
    if not is_number(value):
        return None
    return battery_charge_level(percent=value)


def battery_voltage(value: Any, unit: Optional[str] = None) -> Optional[int]:
    if not is_number(value) or value < 0:
        return None
    if unit == "mV":
        return round_half_up(value)
    if unit == "V":
        return round_half_up(value * 1000)
    return None


def _milli(expected_unit: str):
    def convert(value: Any, unit: Optional[str] = None) -> Optional[int]:
        if not is_number(value) or unit != expected_unit:
            return None
        return round_half_up(value * 1000)
    convert.__name__ = f"milli_{expected_unit}"
    return convert


electrical_voltage = _milli("V")
electrical_power = _milli("W")
electrical_current = _milli("A")


def electrical_energy(value: Any, unit: Optional[str] = None) -> Optional[Dict[str, int]]:
    if not is_number(value) or unit != "kWh":
        return None
    return {"energy": round_half_up(value * 1_000_000)}


AQI_TEXT_LEVELS: Dict[str, AirQualityLevel] = {
    "excellent": AirQualityLevel.GOOD,
    "healthy": AirQualityLevel.GOOD,
    "fine": AirQualityLevel.GOOD,
    "good": AirQualityLevel.GOOD,
    "fair": AirQualityLevel.FAIR,
    "moderate": AirQualityLevel.MODERATE,
    "poor": AirQualityLevel.POOR,
    "unhealthy_for_sensitive_groups": AirQualityLevel.POOR,
    "unhealthy": AirQualityLevel.VERY_POOR,
    "very_poor": AirQualityLevel.VERY_POOR,
    "very_unhealthy": AirQualityLevel.EXTREMELY_POOR,
    "hazardous": AirQualityLevel.EXTREMELY_POOR,
    "extremely_poor": AirQualityLevel.EXTREMELY_POOR,
}


def air_quality(value: Any, unit: Optional[str] = None) -> Optional[AirQualityLevel]:
    """US AQI number (0-500) or a textual rating to the AirQuality enum."""
    if isinstance(value, str):
        return AQI_TEXT_LEVELS.get(value.lower())
    if not is_number(value) or value < 0 or value > 500:
        return None
    if value <= 50:
        return AirQualityLevel.GOOD
    if value <= 100:
        return AirQualityLevel.FAIR
    if value <= 200:
        return AirQualityLevel.MODERATE
    if value <= 300:
        return AirQualityLevel.POOR
    if value <= 400:
        return AirQualityLevel.VERY_POOR
    return AirQualityLevel.EXTREMELY_POOR


def concentration(value: Any, unit: Optional[str] = None) -> Optional[Number]:
    return value if is_number(value) else None


# =============================================================================
# FORWARD: BINARY SENSOR STATES
# =============================================================================

def _binary(state: Any) -> Optional[bool]:
    if state == "on":
        return True
    if state == "off":
        return False
    return None


def contact_state(state: Any) -> Optional[bool]:
    """BooleanState for contact sensors is True when closed."""
    value = _binary(state)
    return None if value is None else not value


def boolean_state(state: Any) -> Optional[bool]:
    return _binary(state)


def occupancy_state(state: Any) -> Optional[Dict[str, bool]]:
    value = _binary(state)
    return None if value is None else {"occupied": value}


def alarm_state(state: Any) -> Optional[AlarmState]:
    value = _binary(state)
    if value is None:
        return None
    return AlarmState.CRITICAL if value else AlarmState.NORMAL


def battery_low_state(state: Any) -> Optional[BatChargeLevel]:
    value = _binary(state)
    return None if value is None else battery_charge_level(low=value)


# =============================================================================
# FORWARD: ENTITY ATTRIBUTES (value, state)
# =============================================================================

def brightness_to_level(value: Any, state: Any = None) -> Optional[int]:
    if not is_number(value) or value < 1 or value > 255:
        return None
    return max(1, round_half_up(value / 255 * 254))


def color_mode_to_matter(value: Any, state: Any = None) -> Optional[ColorMode]:
    if value in HS_COLOR_MODES:
        return ColorMode.CURRENT_HUE_AND_SATURATION
    if value == "xy":
        return ColorMode.CURRENT_X_AND_Y
    if value == "color_temp":
        return ColorMode.COLOR_TEMPERATURE_MIREDS
    return None


def color_temp_kelvin_to_mireds(value: Any, state: Any = None) -> Optional[int]:
    attributes = _attributes(state)
    if not is_number(value) or value <= 0:
        return None
    if attributes.get("color_mode") not in (None, "color_temp"):
        return None
    minimum, maximum = mired_bounds(attributes)
    return clamp(kelvin_to_mireds(value), minimum, maximum)


def _pair(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and len(value) == 2 and all(is_number(v) for v in value)


def hs_to_hue(value: Any, state: Any = None) -> Optional[int]:
    if not _pair(value) or _attributes(state).get("color_mode") not in HS_COLOR_MODES:
        return None
    return clamp(round_half_up(value[0] / 360 * 254), 0, 254)


def hs_to_saturation(value: Any, state: Any = None) -> Optional[int]:
    if not _pair(value) or _attributes(state).get("color_mode") not in HS_COLOR_MODES:
        return None
    return clamp(round_half_up(value[1] / 100 * 254), 0, 254)


def xy_to_current_x(value: Any, state: Any = None) -> Optional[int]:
    if not _pair(value) or _attributes(state).get("color_mode") != "xy":
        return None
    return convert_ha_xy_to_matter(value)["currentX"]


def xy_to_current_y(value: Any, state: Any = None) -> Optional[int]:
    if not _pair(value) or _attributes(state).get("color_mode") != "xy":
        return None
    return convert_ha_xy_to_matter(value)["currentY"]


def fan_percentage(value: Any, state: Any = None) -> Optional[int]:
    if not is_number(value) or value < 0 or value > 100:
        return None
    return round_half_up(value)


FAN_PRESETS: Dict[str, FanMode] = {
    "low": FanMode.LOW,
    "medium": FanMode.MEDIUM,
    "high": FanMode.HIGH,
    "auto": FanMode.AUTO,
    "smart": FanMode.AUTO,
}


def fan_preset_to_mode(value: Any, state: Any = None) -> Optional[FanMode]:
    if not isinstance(value, str):
        return None
    return FAN_PRESETS.get(value.lower())


def fan_direction(value: Any, state: Any = None) -> Optional[AirflowDirection]:
    if value == "forward":
        return AirflowDirection.FORWARD
    if value == "reverse":
        return AirflowDirection.REVERSE
    return None


def fan_oscillating(value: Any, state: Any = None) -> Optional[Dict[str, bool]]:
    if not isinstance(value, bool):
        return None
    return {"rockLeftRight": False, "rockUpDown": False, "rockRound": value}


def cover_position(value: Any, state: Any = None) -> Optional[int]:
    """Home Assistant 100 = open; Matter 0 = open, in hundredths of a percent."""
    if not is_number(value) or value < 0 or value > 100:
        return None
    return round_half_up((100 - value) * 100)


def _setpoint(value: Any) -> Optional[int]:
    if not is_number(value):
        return None
    return round_half_up(value * 100)


def heating_setpoint(value: Any, state: Any = None) -> Optional[int]:
    return _setpoint(value) if _state_value(state) == "heat" else None


def cooling_setpoint(value: Any, state: Any = None) -> Optional[int]:
    return _setpoint(value) if _state_value(state) == "cool" else None


def range_heating_setpoint(value: Any, state: Any = None) -> Optional[int]:
    return _setpoint(value) if _state_value(state) == "heat_cool" else None


def range_cooling_setpoint(value: Any, state: Any = None) -> Optional[int]:
    return _setpoint(value) if _state_value(state) == "heat_cool" else None


def local_temperature(value: Any, state: Any = None) -> Optional[int]:
    return _setpoint(value)


def valve_level(value: Any, state: Any = None) -> Optional[int]:
    if not is_number(value) or value < 0 or value > 100:
        return None
    return round_half_up(value)


# =============================================================================
# REVERSE: COMMAND REQUESTS (request, attributes) -> service data
# =============================================================================

def _get(mapping: Optional[Dict[str, Any]], key: str) -> Any:
    return (mapping or {}).get(key)


def level_to_brightness(request: Dict[str, Any], attributes: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    level = _get(request, "level")
    if not is_number(level):
        return None
    return {"brightness": round_half_up(level / 254 * 255)}


def mireds_to_color_temp(request: Dict[str, Any], attributes: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    mireds = _get(request, "colorTemperatureMireds")
    if not is_number(mireds) or mireds <= 0:
        return None
    return {"color_temp_kelvin": mireds_to_kelvin(mireds)}


def xy_to_ha(request: Dict[str, Any], attributes: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    x, y = _get(request, "colorX"), _get(request, "colorY")
    if not is_number(x) or not is_number(y):
        return None
    return {"xy_color": convert_matter_xy_to_ha(x, y)}


def _hs_color(hue: Any, saturation: Any) -> Optional[Dict[str, Any]]:
    if not is_number(hue) or not is_number(saturation):
        return None
    return {"hs_color": [round_half_up(hue / 254 * 360), round_half_up(saturation / 254 * 100)]}


def hue_to_hs(request: Dict[str, Any], attributes: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    return _hs_color(_get(request, "hue"), _get(attributes, "currentSaturation"))


def saturation_to_hs(request: Dict[str, Any], attributes: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    return _hs_color(_get(attributes, "currentHue"), _get(request, "saturation"))


def hue_saturation_to_hs(request: Dict[str, Any], attributes: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    return _hs_color(_get(request, "hue"), _get(request, "saturation"))


def lift_percentage_to_position(request: Dict[str, Any], attributes: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    lift = _get(request, "liftPercent100thsValue")
    if not is_number(lift) or lift < 0 or lift > 10000:
        return None
    return {"position": round_half_up(100 - lift / 100)}


def target_level_to_position(request: Dict[str, Any], attributes: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    level = _get(request, "targetLevel")
    if not is_number(level) or level < 0 or level > 100:
        return None
    return {"position": round_half_up(level)}


def lift_percentage_service(request: Dict[str, Any]) -> Optional[str]:
    """Fully closed or open lift maps to the plain services covers always support."""
    lift = _get(request, "liftPercent100thsValue")
    if lift == 10000:
        return "close_cover"
    if lift == 0:
        return "open_cover"
    return "set_cover_position"


def run_mode_service(request: Dict[str, Any]) -> Optional[str]:
    mode = _get(request, "newMode")
    if mode == RvcRunMode.CLEANING:
        return "start"
    if mode == RvcRunMode.IDLE:
        return "stop"
    return None


def transition_seconds(transition_time: Any) -> Optional[int]:
    """Matter transitionTime is in tenths of a second."""
    if not is_number(transition_time) or transition_time < 1:
        return None
    return round_half_up(transition_time / 10)


# =============================================================================
# REVERSE: ATTRIBUTE WRITES value -> service value
# =============================================================================

PRESETS_BY_FAN_MODE: Dict[int, str] = {
    FanMode.LOW: "low",
    FanMode.MEDIUM: "medium",
    FanMode.HIGH: "high",
    FanMode.ON: "auto",
    FanMode.AUTO: "auto",
    FanMode.SMART: "auto",
}


def fan_mode_to_preset(value: Any) -> Union[str, TurnOff, None]:
    if value == FanMode.OFF:
        return TURN_OFF
    if not is_number(value):
        return None
    return PRESETS_BY_FAN_MODE.get(int(value))


def percent_setting_to_percentage(value: Any) -> Union[int, TurnOff, None]:
    if not is_number(value) or value < 0 or value > 100:
        return None
    if value == 0:
        return TURN_OFF
    return round_half_up(value)


def airflow_to_direction(value: Any) -> Optional[str]:
    if value == AirflowDirection.FORWARD:
        return "forward"
    if value == AirflowDirection.REVERSE:
        return "reverse"
    return None


def rock_setting_to_oscillating(value: Any) -> Optional[bool]:
    if not isinstance(value, dict):
        return None
    return bool(value.get("rockRound"))


HVAC_MODES_BY_SYSTEM_MODE: Dict[int, str] = {
    SystemMode.AUTO: "heat_cool",
    SystemMode.COOL: "cool",
    SystemMode.HEAT: "heat",
    SystemMode.OFF: "off",
}


def system_mode_to_hvac(value: Any) -> Optional[str]:
    if not is_number(value):
        return None
    return HVAC_MODES_BY_SYSTEM_MODE.get(int(value))


def setpoint_to_temperature(value: Any) -> Optional[float]:
    if not is_number(value):
        return None
    return value / 100
