"""
Tests for Home Assistant <-> Matter attribute converters.
"""

from hassbridge.hub.models import HubState
from hassbridge.matter import converters as cv
from hassbridge.matter.models import (
    AirQualityLevel,
    AlarmState,
    BatChargeLevel,
    ColorMode,
    FanMode,
    RvcRunMode,
    SystemMode,
)


def light(**attributes) -> HubState:
    return HubState(entity_id="light.desk", state="on", attributes=attributes)


def climate(state: str) -> HubState:
    return HubState(entity_id="climate.hall", state=state)


class TestHelpers:
    """Tests for rounding and unit helpers."""

    def test_round_half_up(self):
        """Test halves round up like Math.round."""
        assert cv.round_half_up(0.5) == 1
        assert cv.round_half_up(1.5) == 2
        assert cv.round_half_up(2.5) == 3
        assert cv.round_half_up(-0.5) == 0

    def test_is_number(self):
        """Test booleans and NaN are not numbers."""
        assert cv.is_number(3)
        assert cv.is_number(2.5)
        assert not cv.is_number(True)
        assert not cv.is_number(float("nan"))
        assert not cv.is_number("3")

    def test_fahrenheit(self):
        """Test Fahrenheit temperatures are converted."""
        assert cv.temp(212, "°F") == 100
        assert cv.temp(21, "°C") == 21


class TestColorTemperature:
    """Tests for Kelvin and mired conversion."""

    def test_kelvin_to_mireds_floors(self):
        """Test the default rounding is floor."""
        assert cv.kelvin_to_mireds(4000) == 250
        assert cv.kelvin_to_mireds(6500) == 153
        assert cv.kelvin_to_mireds(6500, "round") == 154
        assert cv.kelvin_to_mireds(6500, "ceil") == 154

    def test_round_trip_within_one_mired(self):
        """Test kelvin -> mireds -> kelvin stays within one mired."""
        for kelvin in (2000, 2700, 3000, 4000, 5000, 6500):
            mireds = cv.kelvin_to_mireds(kelvin)
            back = cv.kelvin_to_mireds(cv.mireds_to_kelvin(mireds))
            assert abs(back - mireds) <= 1

    def test_mired_bounds_fallback(self):
        """Test missing bounds fall back to 147/500."""
        assert cv.mired_bounds({}) == [147, 500]

    def test_mired_bounds_from_kelvin(self):
        """Test bounds derived from the Kelvin range."""
        assert cv.mired_bounds({"min_color_temp_kelvin": 2000, "max_color_temp_kelvin": 6500}) == [153, 500]

    def test_color_temp_requires_color_temp_mode(self):
        """Test color_temp_kelvin is ignored in a color mode."""
        assert cv.color_temp_kelvin_to_mireds(4000, light(color_mode="color_temp")) == 250
        assert cv.color_temp_kelvin_to_mireds(4000, light()) == 250
        assert cv.color_temp_kelvin_to_mireds(4000, light(color_mode="hs")) is None

    def test_color_temp_clamped(self):
        """Test mireds are clamped to the light's bounds."""
        state = light(color_mode="color_temp", min_mireds=200, max_mireds=400)
        assert cv.color_temp_kelvin_to_mireds(6500, state) == 200
        assert cv.color_temp_kelvin_to_mireds(2000, state) == 400


class TestLightAttributes:
    """Tests for light attribute converters."""

    def test_brightness_to_level(self):
        """Test brightness maps to 1-254."""
        assert cv.brightness_to_level(255) == 254
        assert cv.brightness_to_level(1) == 1
        assert cv.brightness_to_level(128) == 127
        assert cv.brightness_to_level(0) is None
        assert cv.brightness_to_level(None) is None

    def test_color_mode(self):
        """Test color modes map to ColorControl modes."""
        assert cv.color_mode_to_matter("hs") == ColorMode.CURRENT_HUE_AND_SATURATION
        assert cv.color_mode_to_matter("rgbww") == ColorMode.CURRENT_HUE_AND_SATURATION
        assert cv.color_mode_to_matter("xy") == ColorMode.CURRENT_X_AND_Y
        assert cv.color_mode_to_matter("color_temp") == ColorMode.COLOR_TEMPERATURE_MIREDS
        assert cv.color_mode_to_matter("brightness") is None

    def test_hs(self):
        """Test hs_color maps to hue and saturation in hs mode only."""
        state = light(color_mode="hs")
        assert cv.hs_to_hue([180, 50], state) == 127
        assert cv.hs_to_saturation([180, 50], state) == 127
        assert cv.hs_to_hue([180, 50], light(color_mode="xy")) is None

    def test_xy(self):
        """Test xy_color maps to Matter chromaticity."""
        state = light(color_mode="xy")
        assert cv.xy_to_current_x([0.5, 0.25], state) == 32768
        assert cv.xy_to_current_y([0.5, 0.25], state) == 16384
        assert cv.convert_ha_xy_to_matter([1.0, 1.0]) == {"currentX": 65279, "currentY": 65279}

    def test_matter_xy_to_ha(self):
        """Test Matter chromaticity maps back to four decimals."""
        assert cv.convert_matter_xy_to_ha(32768, 16384) == [0.5, 0.25]


class TestSensors:
    """Tests for sensor converters."""

    def test_temperature(self):
        """Test temperatures are in hundredths of a degree."""
        assert cv.temperature_measurement(21.4, "°C") == 2140
        assert cv.temperature_measurement(70, "°F") == 2111
        assert cv.temperature_measurement("warm") is None

    def test_humidity(self):
        """Test humidity is in hundredths of a percent."""
        assert cv.humidity_measurement(48) == 4800
        assert cv.humidity_measurement(101) is None

    def test_pressure(self):
        """Test pressure units."""
        assert cv.pressure_measurement(1013, "hPa") == 1013
        assert cv.pressure_measurement(101.3, "kPa") == 1013
        assert cv.pressure_measurement(30, "inHg") == 1016
        assert cv.pressure_measurement(1013, "bar") is None

    def test_illuminance(self):
        """Test illuminance is logarithmic."""
        assert cv.illuminance_measurement(0.5) == 0
        assert cv.illuminance_measurement(1) == 1
        assert cv.illuminance_measurement(1000) == 30001

    def test_battery(self):
        """Test battery percentage and charge level."""
        assert cv.battery_percent_remaining(87) == 174
        assert cv.battery_percent_remaining(150) == 200
        assert cv.battery_charge_from_percent(50) == BatChargeLevel.OK
        assert cv.battery_charge_from_percent(15) == BatChargeLevel.WARNING
        assert cv.battery_charge_from_percent(5) == BatChargeLevel.CRITICAL

    def test_battery_voltage(self):
        """Test battery voltage is in millivolts."""
        assert cv.battery_voltage(3.1, "V") == 3100
        assert cv.battery_voltage(3100, "mV") == 3100
        assert cv.battery_voltage(3.1, "kV") is None

    def test_electrical(self):
        """Test electrical measurements require the expected unit."""
        assert cv.electrical_voltage(230, "V") == 230000
        assert cv.electrical_power(12.5, "W") == 12500
        assert cv.electrical_current(0.5, "A") == 500
        assert cv.electrical_power(12.5, "kW") is None
        assert cv.electrical_energy(1.5, "kWh") == {"energy": 1500000}

    def test_air_quality(self):
        """Test AQI numbers and ratings."""
        assert cv.air_quality(42) == AirQualityLevel.GOOD
        assert cv.air_quality(150) == AirQualityLevel.MODERATE
        assert cv.air_quality(450) == AirQualityLevel.EXTREMELY_POOR
        assert cv.air_quality("Poor") == AirQualityLevel.POOR
        assert cv.air_quality(600) is None


class TestBinarySensors:
    """Tests for binary sensor converters."""

    def test_contact_inverts(self):
        """Test a closed contact (off) is stateValue True."""
        assert cv.contact_state("off") is True
        assert cv.contact_state("on") is False
        assert cv.contact_state("unknown") is None

    def test_occupancy(self):
        """Test occupancy is a bitmap."""
        assert cv.occupancy_state("on") == {"occupied": True}
        assert cv.occupancy_state("off") == {"occupied": False}

    def test_alarm(self):
        """Test smoke and CO alarm states."""
        assert cv.alarm_state("on") == AlarmState.CRITICAL
        assert cv.alarm_state("off") == AlarmState.NORMAL

    def test_battery_low(self):
        """Test a low-battery flag is critical."""
        assert cv.battery_low_state("on") == BatChargeLevel.CRITICAL
        assert cv.battery_low_state("off") == BatChargeLevel.OK


class TestControlAttributes:
    """Tests for cover, fan and climate converters."""

    def test_cover_position_inverts(self):
        """Test Home Assistant 100 (open) is Matter 0."""
        assert cv.cover_position(100) == 0
        assert cv.cover_position(0) == 10000
        assert cv.cover_position(25) == 7500

    def test_setpoints_follow_hvac_mode(self):
        """Test each setpoint applies in its own mode."""
        assert cv.heating_setpoint(20.5, climate("heat")) == 2050
        assert cv.heating_setpoint(20.5, climate("cool")) is None
        assert cv.cooling_setpoint(24, climate("cool")) == 2400
        assert cv.range_heating_setpoint(19, climate("heat_cool")) == 1900
        assert cv.range_cooling_setpoint(25, climate("heat")) is None
        assert cv.local_temperature(21.5) == 2150

    def test_fan(self):
        """Test fan attributes."""
        assert cv.fan_percentage(33) == 33
        assert cv.fan_preset_to_mode("High") == FanMode.HIGH
        assert cv.fan_preset_to_mode("turbo") is None
        assert cv.fan_oscillating(True) == {"rockLeftRight": False, "rockUpDown": False, "rockRound": True}


class TestReverse:
    """Tests for Matter -> Home Assistant converters."""

    def test_level_to_brightness(self):
        """Test level maps back to 0-255."""
        assert cv.level_to_brightness({"level": 254}) == {"brightness": 255}
        assert cv.level_to_brightness({"level": 127}) == {"brightness": 128}
        assert cv.level_to_brightness({}) is None

    def test_mireds_to_color_temp(self):
        """Test mireds map to color_temp_kelvin."""
        assert cv.mireds_to_color_temp({"colorTemperatureMireds": 250}) == {"color_temp_kelvin": 4000}
        assert cv.mireds_to_color_temp({"colorTemperatureMireds": 0}) is None

    def test_hue_saturation(self):
        """Test hue and saturation map to hs_color."""
        assert cv.hue_saturation_to_hs({"hue": 127, "saturation": 254}) == {"hs_color": [180, 100]}
        assert cv.hue_to_hs({"hue": 127}, {"currentSaturation": 127}) == {"hs_color": [180, 50]}
        assert cv.saturation_to_hs({"saturation": 127}, {}) is None

    def test_transition(self):
        """Test transitionTime is in tenths of a second."""
        assert cv.transition_seconds(20) == 2
        assert cv.transition_seconds(0) is None
        assert cv.transition_seconds(None) is None

    def test_lift_percentage(self):
        """Test fully open and closed use the plain cover services."""
        assert cv.lift_percentage_service({"liftPercent100thsValue": 10000}) == "close_cover"
        assert cv.lift_percentage_service({"liftPercent100thsValue": 0}) == "open_cover"
        assert cv.lift_percentage_service({"liftPercent100thsValue": 2500}) == "set_cover_position"
        assert cv.lift_percentage_to_position({"liftPercent100thsValue": 2500}) == {"position": 75}

    def test_run_mode(self):
        """Test RVC run modes map to vacuum services."""
        assert cv.run_mode_service({"newMode": int(RvcRunMode.CLEANING)}) == "start"
        assert cv.run_mode_service({"newMode": int(RvcRunMode.IDLE)}) == "stop"
        assert cv.run_mode_service({"newMode": int(RvcRunMode.MAPPING)}) is None

    def test_fan_writes(self):
        """Test fan writes, with off meaning turn_off."""
        assert cv.fan_mode_to_preset(int(FanMode.OFF)) is cv.TURN_OFF
        assert cv.fan_mode_to_preset(int(FanMode.MEDIUM)) == "medium"
        assert cv.percent_setting_to_percentage(0) is cv.TURN_OFF
        assert cv.percent_setting_to_percentage(66) == 66
        assert cv.airflow_to_direction(1) == "reverse"
        assert cv.rock_setting_to_oscillating({"rockRound": False}) is False

    def test_thermostat_writes(self):
        """Test system mode and setpoint writes."""
        assert cv.system_mode_to_hvac(int(SystemMode.AUTO)) == "heat_cool"
        assert cv.system_mode_to_hvac(int(SystemMode.HEAT)) == "heat"
        assert cv.system_mode_to_hvac(int(SystemMode.DRY)) is None
        assert cv.setpoint_to_temperature(2150) == 21.5
