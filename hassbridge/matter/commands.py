"""
Command routing from Matter controllers back to Home Assistant.

``CommandRouter.bind`` installs one handler per (endpoint, command, entity)
and one listener per writable attribute of a materialized device. Handlers
translate the Matter request into a Home Assistant service call:

- lights resolve ``on``/``toggle``/``moveToLevelWithOnOff`` issued while off
  from the device's own level and color attributes
- individual helpers (automation, scene, script, input_boolean,
  input_button) behave as momentary buttons
- everything else goes through the command and subscribe rule tables

Service call failures are logged and never retried; the Matter attribute
keeps whatever the controller set until Home Assistant reports back.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from ..errors import HassBridgeError
from . import converters as cv
from .mapping import INDIVIDUAL_DOMAINS, ServiceCall, SubscribeRule, resolve_command, resolve_write, subscribe_rules
from .models import ClusterType, ColorMode
from .runtime import CommandContext, DeviceHandle
from .shape import FrozenDeviceShape

logger = logging.getLogger(__name__)

DEFAULT_REVERT_DELAY = 0.5

# Light commands that Matter only executes while on unless executeIfOff is set
MOVE_TO_COMMANDS = (
    "moveToLevel",
    "moveToColorTemperature",
    "moveToColor",
    "moveToHue",
    "moveToSaturation",
    "moveToHueAndSaturation",
)

# Individual domains whose onOff reflects a real state and is not reverted
LATCHING_DOMAINS = ("input_boolean", "switch")


def _domain(entity_id: str) -> str:
    return entity_id.split(".", 1)[0]


class CommandRouter:
    """Routes Matter commands and attribute writes to Home Assistant services."""

    def __init__(self, hub: Any, revert_delay: float = DEFAULT_REVERT_DELAY):
        self.hub = hub
        self.revert_delay = revert_delay
        self._revert_tasks: Set[asyncio.Task] = set()

    def bind(self, device: DeviceHandle, shape: Optional[FrozenDeviceShape] = None) -> int:
        """
        Install command and subscribe handlers for every binding of the shape.

        Returns:
            Number of handlers installed
        """
        shape = shape or device.shape
        count = 0
        for endpoint in shape.endpoints:
            for binding in endpoint.commands:
                device.add_command_handler(endpoint.name, binding.command, self._command_handler(binding.entity_id))
                count += 1
            for binding in endpoint.subscriptions:
                rule = self._subscribe_rule(binding.entity_id, binding.cluster, binding.attribute)
                if rule is None:
                    logger.warning(f"No write rule for {binding.entity_id} attribute {binding.attribute}")
                    continue
                device.add_subscribe_handler(
                    endpoint.name, binding.cluster, binding.attribute,
                    self._subscribe_handler(device, binding.entity_id, rule),
                )
                count += 1
        logger.debug(f"Bound {count} handler(s) for device {device.name}")
        return count

    async def close(self) -> None:
        for task in list(self._revert_tasks):
            task.cancel()
        self._revert_tasks.clear()

    @staticmethod
    def _subscribe_rule(entity_id: str, cluster: ClusterType, attribute: str) -> Optional[SubscribeRule]:
        for rule in subscribe_rules(_domain(entity_id)):
            if rule.cluster == cluster and rule.attribute == attribute:
                return rule
        return None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _command_handler(self, entity_id: str):
        async def handler(context: CommandContext) -> None:
            await self.handle_command(entity_id, context)
        return handler

    async def handle_command(self, entity_id: str, context: CommandContext) -> None:
        domain = _domain(entity_id)
        logger.info(
            f"Command {context.command} called for {context.device.name} "
            f"endpoint '{context.endpoint}' ({entity_id}) request {context.request}"
        )

        if domain in INDIVIDUAL_DOMAINS:
            await self._handle_individual(domain, entity_id, context)
            return

        if domain == "light":
            call = self._resolve_light(entity_id, context)
            if call is not None:
                await self._call(call, entity_id)
                return
            if context.command in MOVE_TO_COMMANDS and self._is_off(context):
                return

        state = self.hub.states.get(entity_id) if hasattr(self.hub, "states") else None
        call = resolve_command(domain, context.command, context.request, context.attributes, state)
        if call is None:
            logger.warning(f"Command {context.command} not supported for {entity_id}")
            return
        await self._call(call, entity_id)

    @staticmethod
    def _is_off(context: CommandContext) -> bool:
        return context.device.get_attribute(context.endpoint, ClusterType.ON_OFF, "onOff") is False

    def _resolve_light(self, entity_id: str, context: CommandContext) -> Optional[ServiceCall]:
        """Light commands that depend on the current on/off state."""
        device, endpoint, command, request = context.device, context.endpoint, context.command, context.request
        off = self._is_off(context)

        if command in MOVE_TO_COMMANDS and off:
            options = context.attributes.get("options") or {}
            if options.get("executeIfOff"):
                logger.debug(f"Command {command} for {entity_id} deferred until the light turns on")
            else:
                logger.debug(f"Command {command} for {entity_id} dropped while the light is off")
            return None

        if command == "moveToLevelWithOnOff":
            level = request.get("level")
            min_level = device.get_attribute(endpoint, ClusterType.LEVEL_CONTROL, "minLevel", 1)
            if cv.is_number(level) and level <= min_level:
                return ServiceCall("light", "turn_off", {})

        if command not in ("on", "toggle", "moveToLevelWithOnOff") or not off:
            return None

        data: Dict[str, Any] = {}
        level = request.get("level") if command == "moveToLevelWithOnOff" else None
        if level is None:
            level = device.get_attribute(endpoint, ClusterType.LEVEL_CONTROL, "currentLevel")
        if cv.is_number(level):
            brightness = cv.round_half_up(level / 254 * 255)
            if 1 <= brightness <= 255:
                data["brightness"] = brightness

        def color(name: str) -> Any:
            return device.get_attribute(endpoint, ClusterType.COLOR_CONTROL, name)

        color_mode = color("colorMode")
        if color_mode == ColorMode.COLOR_TEMPERATURE_MIREDS:
            mireds = color("colorTemperatureMireds")
            if cv.is_number(mireds) and mireds > 0:
                data["color_temp_kelvin"] = cv.mireds_to_kelvin(mireds)
        elif color_mode == ColorMode.CURRENT_HUE_AND_SATURATION:
            hue, saturation = color("currentHue"), color("currentSaturation")
            if cv.is_number(hue) and cv.is_number(saturation):
                data["hs_color"] = [cv.round_half_up(hue / 254 * 360), cv.round_half_up(saturation / 254 * 100)]
        elif color_mode == ColorMode.CURRENT_X_AND_Y:
            x, y = color("currentX"), color("currentY")
            if cv.is_number(x) and cv.is_number(y):
                data["xy_color"] = cv.convert_matter_xy_to_ha(x, y)

        transition = cv.transition_seconds(request.get("transitionTime"))
        if transition is not None:
            data["transition"] = transition
        return ServiceCall("light", "turn_on", data)

    async def _handle_individual(self, domain: str, entity_id: str, context: CommandContext) -> None:
        if context.command == "on":
            if domain == "automation":
                service = "trigger"
            elif domain == "input_button":
                service = "press"
            else:
                service = "turn_on"
            await self._call(ServiceCall(domain, service, {}), entity_id)
            if domain not in LATCHING_DOMAINS:
                self._schedule_revert(context.device, context.endpoint)
        elif context.command == "off":
            if domain == "input_boolean":
                await self._call(ServiceCall(domain, "turn_off", {}), entity_id)
        else:
            logger.warning(f"Command {context.command} not supported for {entity_id}")

    def _schedule_revert(self, device: DeviceHandle, endpoint: str) -> None:
        """Momentary entities flip back to off shortly after being switched on."""
        async def revert() -> None:
            await asyncio.sleep(self.revert_delay)
            try:
                await device.set_attribute(endpoint, ClusterType.ON_OFF, "onOff", False)
            except HassBridgeError as e:
                logger.error(f"Failed to reset {device.name} endpoint '{endpoint}': {e}")

        task = asyncio.create_task(revert())
        self._revert_tasks.add(task)
        task.add_done_callback(self._revert_tasks.discard)

    # ------------------------------------------------------------------
    # Attribute writes
    # ------------------------------------------------------------------

    def _subscribe_handler(self, device: DeviceHandle, entity_id: str, rule: SubscribeRule):
        async def handler(new_value: Any, old_value: Any, context: Dict[str, Any]) -> None:
            await self.handle_write(device, entity_id, rule, new_value, old_value, context)
        return handler

    async def handle_write(
        self,
        device: DeviceHandle,
        entity_id: str,
        rule: SubscribeRule,
        new_value: Any,
        old_value: Any,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        if (context or {}).get("offline") is True:
            logger.debug(f"Subscribe handler: offline write of {rule.attribute} for {entity_id} ignored")
            return
        if new_value == old_value:
            logger.debug(f"Subscribe handler: {rule.attribute} for {entity_id} unchanged")
            return

        logger.info(
            f"Subscribe handler: {device.name} {rule.attribute} changed from {old_value} to {new_value} "
            f"({entity_id})"
        )
        state = self.hub.states.get(entity_id) if hasattr(self.hub, "states") else None
        call = resolve_write(rule, new_value, state)
        if call is None:
            logger.warning(f"Subscribe handler: {rule.attribute} value {new_value} not supported for {entity_id}")
            return
        await self._call(call, entity_id)

    # ------------------------------------------------------------------

    async def _call(self, call: ServiceCall, entity_id: str) -> None:
        logger.debug(f"Calling {call.domain}.{call.service} for {entity_id} with {call.data}")
        try:
            await self.hub.call_service(call.domain, call.service, entity_id, call.data)
        except HassBridgeError as e:
            logger.error(f"Service {call.domain}.{call.service} for {entity_id} failed: {e}")
