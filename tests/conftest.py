"""
Shared fixtures: in-process fakes of Home Assistant and the matter.js sidecar.

Both fakes are aiohttp applications served by ``aiohttp.test_utils.TestServer``
and are started with ``async with``.
"""

import asyncio
import copy
import json
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from hassbridge.hub.client import (
    AREA_REGISTRY,
    DEVICE_REGISTRY,
    ENTITY_REGISTRY,
    GET_CONFIG,
    GET_SERVICES,
    GET_STATES,
    LABEL_REGISTRY,
)

HA_VERSION = "2024.10.1"
TOKEN = "secret-token"


async def wait_until(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> None:
    """Poll ``predicate`` until it holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


def sample_home() -> Dict[str, Any]:
    """Registry snapshot of a small home."""
    return {
        GET_CONFIG: {
            "location_name": "Home",
            "version": HA_VERSION,
            "state": "RUNNING",
            "time_zone": "Europe/Rome",
            "unit_system": {"temperature": "°C"},
        },
        GET_SERVICES: {"light": {"turn_on": {}, "turn_off": {}}, "vacuum": {"start": {}}},
        AREA_REGISTRY: [
            {"area_id": "kitchen", "name": "Kitchen"},
            {"area_id": "bedroom", "name": "Bedroom"},
        ],
        LABEL_REGISTRY: [{"label_id": "matter", "name": "Matter"}],
        DEVICE_REGISTRY: [
            {"id": "dev_lamp", "name": "Kitchen Lamp", "model": "Hue White", "area_id": "kitchen",
             "labels": ["matter"]},
            {"id": "dev_robot", "name": "Robot", "model": "S7", "area_id": "bedroom"},
            {"id": "dev_thermostat", "name": "Hallway Thermostat", "model": "T6"},
            {"id": "dev_sensor", "name": "Bedroom Sensor", "model": "WSDCGQ11LM", "area_id": "bedroom"},
            {"id": "dev_sun", "name": "Sun", "entry_type": "service"},
        ],
        ENTITY_REGISTRY: [
            {"entity_id": "light.kitchen_lamp", "id": "ent_lamp", "device_id": "dev_lamp"},
            {"entity_id": "vacuum.robot", "id": "ent_robot", "device_id": "dev_robot"},
            {"entity_id": "climate.hallway", "id": "ent_hallway", "device_id": "dev_thermostat"},
            {"entity_id": "sensor.bedroom_temperature", "id": "ent_temp", "device_id": "dev_sensor"},
            {"entity_id": "sensor.bedroom_humidity", "id": "ent_hum", "device_id": "dev_sensor"},
            {"entity_id": "sensor.bedroom_battery", "id": "ent_batt", "device_id": "dev_sensor"},
            {"entity_id": "sensor.sun_elevation", "id": "ent_sun", "device_id": "dev_sun"},
            {"entity_id": "switch.garden_pump", "id": "ent_pump", "name": "Garden Pump"},
            {"entity_id": "automation.night_mode", "id": "ent_night", "name": "Night Mode"},
            {"entity_id": "binary_sensor.front_door", "id": "ent_door", "original_name": "Front Door"},
        ],
        GET_STATES: [
            {"entity_id": "light.kitchen_lamp", "state": "on", "attributes": {
                "friendly_name": "Kitchen Lamp",
                "supported_color_modes": ["color_temp"],
                "color_mode": "color_temp",
                "brightness": 128,
                "color_temp_kelvin": 4000,
                "min_color_temp_kelvin": 2000,
                "max_color_temp_kelvin": 6500,
            }},
            {"entity_id": "vacuum.robot", "state": "docked", "attributes": {"friendly_name": "Robot"}},
            {"entity_id": "climate.hallway", "state": "heat_cool", "attributes": {
                "friendly_name": "Hallway",
                "hvac_modes": ["off", "heat", "cool", "heat_cool"],
                "current_temperature": 21.5,
                "target_temp_low": 20,
                "target_temp_high": 24,
                "min_temp": 7,
                "max_temp": 35,
            }},
            {"entity_id": "sensor.bedroom_temperature", "state": "21.4", "attributes": {
                "device_class": "temperature", "state_class": "measurement", "unit_of_measurement": "°C",
            }},
            {"entity_id": "sensor.bedroom_humidity", "state": "48", "attributes": {
                "device_class": "humidity", "state_class": "measurement", "unit_of_measurement": "%",
            }},
            {"entity_id": "sensor.bedroom_battery", "state": "87", "attributes": {
                "device_class": "battery", "state_class": "measurement", "unit_of_measurement": "%",
            }},
            {"entity_id": "sensor.sun_elevation", "state": "12.3", "attributes": {}},
            {"entity_id": "switch.garden_pump", "state": "off", "attributes": {"friendly_name": "Garden Pump"}},
            {"entity_id": "automation.night_mode", "state": "on", "attributes": {"friendly_name": "Night Mode"}},
            {"entity_id": "binary_sensor.front_door", "state": "off", "attributes": {
                "friendly_name": "Front Door", "device_class": "door",
            }},
        ],
    }


def state_changed(entity_id: str, old_state: Dict[str, Any], new_state: Dict[str, Any]) -> Dict[str, Any]:
    """A ``state_changed`` push event."""
    return {
        "event_type": "state_changed",
        "data": {"entity_id": entity_id, "old_state": old_state, "new_state": new_state},
    }


class FakeHomeAssistant:
    """
    Home Assistant WebSocket API stand-in.

    Every request is answered from its own task so that ``delays`` can
    reorder responses. Connections listed in ``ignore_ping_connections``
    (1-based) answer neither ping frames nor ping messages.
    """

    def __init__(self, token: str = TOKEN, version: str = HA_VERSION):
        self.token = token
        self.version = version
        self.data: Dict[str, Any] = sample_home()
        self.delays: Dict[str, float] = {}
        self.fail_services: Set[str] = set()
        self.ignore_ping_connections: Set[int] = set()
        self.core_state = "RUNNING"

        self.connections = 0
        self.auth_attempts = 0
        self.received: List[Dict[str, Any]] = []
        self.service_calls: List[Dict[str, Any]] = []
        self.close_codes: List[Optional[int]] = []
        self.sockets: List[web.WebSocketResponse] = []
        self.subscriptions: List[int] = []
        self.subscribers: List[Tuple[web.WebSocketResponse, int]] = []
        self._tasks: Set[asyncio.Task] = set()
        self._server: Optional[TestServer] = None

    async def __aenter__(self) -> "FakeHomeAssistant":
        app = web.Application()
        app.router.add_get("/api/websocket", self._websocket)
        app.router.add_get("/api/core/state", self._core_state)
        self._server = TestServer(app)
        await self._server.start_server()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.drop_connections()
        for task in list(self._tasks):
            task.cancel()
        await self._server.close()

    @property
    def url(self) -> str:
        return f"ws://{self._server.host}:{self._server.port}"

    def states(self) -> List[Dict[str, Any]]:
        return self.data[GET_STATES]

    def state(self, entity_id: str) -> Dict[str, Any]:
        for state in self.data[GET_STATES]:
            if state["entity_id"] == entity_id:
                return copy.deepcopy(state)
        raise KeyError(entity_id)

    def requests(self, request_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.received if m.get("type") == request_type]

    async def push_event(self, event: Dict[str, Any]) -> None:
        """Send ``event`` to every socket that subscribed to events."""
        for ws, subscription_id in list(self.subscribers):
            if not ws.closed:
                await ws.send_json({"id": subscription_id, "type": "event", "event": event})

    async def push_state(self, entity_id: str, state: str, **attributes: Any) -> None:
        """Push a state_changed event moving ``entity_id`` to ``state``."""
        old = self.state(entity_id)
        new = copy.deepcopy(old)
        new["state"] = state
        new["attributes"].update(attributes)
        for index, item in enumerate(self.data[GET_STATES]):
            if item["entity_id"] == entity_id:
                self.data[GET_STATES][index] = new
        await self.push_event(state_changed(entity_id, old, new))

    async def drop_connections(self) -> None:
        for ws in list(self.sockets):
            if not ws.closed:
                await ws.close()

    async def _core_state(self, request: web.Request) -> web.Response:
        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return web.json_response({"message": "Unauthorized"}, status=401)
        return web.json_response({"state": self.core_state})

    async def _websocket(self, request: web.Request) -> web.WebSocketResponse:
        self.connections += 1
        index = self.connections
        answer_pings = index not in self.ignore_ping_connections

        ws = web.WebSocketResponse(autoping=answer_pings)
        await ws.prepare(request)
        self.sockets.append(ws)
        await ws.send_json({"type": "auth_required", "ha_version": self.version})

        async for msg in ws:
            if msg.type != aiohttp.WSMsgType.TEXT:
                continue
            message = json.loads(msg.data)
            if message.get("type") == "auth":
                self.auth_attempts += 1
                if message.get("access_token") == self.token:
                    await ws.send_json({"type": "auth_ok", "ha_version": self.version})
                    continue
                await ws.send_json({"type": "auth_invalid", "message": "Invalid access token or password"})
                await ws.close()
                break

            self.received.append(message)
            if message.get("type") == "ping" and not answer_pings:
                continue
            task = asyncio.ensure_future(self._respond(ws, message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        self.close_codes.append(ws.close_code)
        return ws

    async def _respond(self, ws: web.WebSocketResponse, message: Dict[str, Any]) -> None:
        delay = self.delays.get(message.get("type"), 0)
        if delay:
            await asyncio.sleep(delay)
        if ws.closed:
            return
        try:
            await ws.send_json(self._reply(ws, message))
        except (ConnectionError, RuntimeError):
            pass

    def _reply(self, ws: web.WebSocketResponse, message: Dict[str, Any]) -> Dict[str, Any]:
        request_id = message.get("id")
        request_type = message.get("type")

        if request_type == "ping":
            return {"id": request_id, "type": "pong"}

        if request_type == "subscribe_events":
            self.subscriptions.append(request_id)
            self.subscribers.append((ws, request_id))
            return {"id": request_id, "type": "result", "success": True, "result": None}

        if request_type == "call_service":
            call = {
                "domain": message.get("domain"),
                "service": message.get("service"),
                "service_data": message.get("service_data"),
                "target": message.get("target"),
            }
            self.service_calls.append(call)
            if f"{call['domain']}.{call['service']}" in self.fail_services:
                return {"id": request_id, "type": "result", "success": False,
                        "error": {"code": "service_validation_error", "message": "Service call failed"}}
            return {"id": request_id, "type": "result", "success": True, "result": {"context": {}}}

        if request_type in self.data:
            return {"id": request_id, "type": "result", "success": True,
                    "result": copy.deepcopy(self.data[request_type])}

        return {"id": request_id, "type": "result", "success": False,
                "error": {"code": "unknown_command", "message": "Unknown command."}}


class FakeMatterSidecar:
    """matter.js sidecar stand-in answering JSON-RPC on ``/rpc``."""

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.fail_methods: Set[str] = set()
        self.connections = 0
        self.sockets: List[web.WebSocketResponse] = []
        self._server: Optional[TestServer] = None

    async def __aenter__(self) -> "FakeMatterSidecar":
        app = web.Application()
        app.router.add_get("/rpc", self._rpc)
        self._server = TestServer(app)
        await self._server.start_server()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.drop_connections()
        await self._server.close()

    @property
    def host(self) -> str:
        return self._server.host

    @property
    def port(self) -> int:
        return self._server.port

    def methods(self) -> List[str]:
        return [r["method"] for r in self.requests]

    def params(self, method: str) -> List[Dict[str, Any]]:
        return [r["params"] for r in self.requests if r["method"] == method]

    async def notify(self, method: str, params: Dict[str, Any]) -> None:
        for ws in self.sockets:
            if not ws.closed:
                await ws.send_json({"jsonrpc": "2.0", "method": method, "params": params})

    async def drop_connections(self) -> None:
        for ws in list(self.sockets):
            if not ws.closed:
                await ws.close()

    async def _rpc(self, request: web.Request) -> web.WebSocketResponse:
        self.connections += 1
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.sockets.append(ws)

        async for msg in ws:
            if msg.type != aiohttp.WSMsgType.TEXT:
                continue
            message = json.loads(msg.data)
            self.requests.append(message)
            method = message.get("method")
            if method in self.fail_methods:
                await ws.send_json({
                    "jsonrpc": "2.0",
                    "id": message.get("id"),
                    "error": {"code": -32000, "message": f"{method} failed"},
                })
                continue
            result = "pong" if method == "ping" else {"ok": True}
            await ws.send_json({"jsonrpc": "2.0", "id": message.get("id"), "result": result})
        return ws


@pytest.fixture
def hass():
    """An unstarted fake Home Assistant loaded with the sample home."""
    return FakeHomeAssistant()


@pytest.fixture
def sidecar():
    """An unstarted fake matter.js sidecar."""
    return FakeMatterSidecar()


@pytest.fixture
def until():
    return wait_until
