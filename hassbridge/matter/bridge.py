"""
Matter Bridge Runtime.

Provides communication between Python and matter.js via WebSocket/JSON-RPC.

Architecture:
    hassbridge (Python) <--WebSocket/JSON-RPC--> matter.js (Node.js)

The matter.js sidecar runs as a separate process and handles:
- Matter protocol implementation and commissioning of the aggregator
- Endpoint creation for each bridged device
- Forwarding controller commands and attribute writes back to Python

Requests (Python -> matter.js):
    createDevice, registerDevice, setAttribute, triggerSwitchEvent,
    unregisterAll, ping

Notifications (matter.js -> Python):
    command         {uniqueId, endpoint, command, request}
    attributeChanged {uniqueId, endpoint, cluster, attribute, value, context}
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Set

import aiohttp

from ..errors import MaterializationError, RequestTimeoutError, TransportError
from .models import ClusterType, SwitchEvent
from .runtime import DeviceHandle, DeviceRuntime
from .shape import FrozenDeviceShape

logger = logging.getLogger(__name__)


class BridgeState(str, Enum):
    """State of the matter.js bridge."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class BridgeConfig:
    """Configuration for the Matter bridge."""

    # WebSocket endpoint of the sidecar
    host: str = "localhost"
    port: int = 5580

    # Path to matter.js bridge script
    bridge_path: Optional[Path] = None

    # Storage path for Matter fabric data
    storage_path: Path = Path.home() / ".hassbridge" / "matter"

    # Spawn the sidecar subprocess
    auto_start: bool = False

    # Connection timeout
    connect_timeout_seconds: float = 10.0

    # Request timeout
    command_timeout_seconds: float = 30.0

    # Reconnection settings
    auto_reconnect: bool = True
    reconnect_interval_seconds: float = 5.0
    max_reconnect_attempts: int = 5

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}/rpc"


class JsonRpcError(MaterializationError):
    """JSON-RPC error from the bridge."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"[{code}] {message}")


class BridgedDevice(DeviceHandle):
    """Device handle whose attribute changes are forwarded to matter.js."""

    def __init__(self, bridge: "MatterBridge", shape: FrozenDeviceShape):
        super().__init__(shape)
        self._bridge = bridge

    async def _push_attribute(self, endpoint: str, cluster: ClusterType, attribute: str, value: Any) -> None:
        await self._bridge._send_request("setAttribute", {
            "uniqueId": self.id,
            "endpoint": endpoint,
            "cluster": int(cluster),
            "attribute": attribute,
            "value": value,
        })

    async def _push_switch_event(self, endpoint: str, event: SwitchEvent) -> None:
        await self._bridge._send_request("triggerSwitchEvent", {
            "uniqueId": self.id,
            "endpoint": endpoint,
            "event": event.value,
        })


class MatterBridge(DeviceRuntime):
    """
    Device runtime backed by the matter.js sidecar.

    Manages the sidecar process, the WebSocket connection and the JSON-RPC
    protocol. Registered devices are re-created on the sidecar after a
    reconnect.
    """

    def __init__(self, config: Optional[BridgeConfig] = None):
        self.config = config or BridgeConfig()
        self._state = BridgeState.STOPPED
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._request_id = 0
        self._pending: Dict[int, asyncio.Future] = {}
        self._reader_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._dispatch_tasks: Set[asyncio.Task] = set()
        self._reconnect_attempts = 0
        self.devices: Dict[str, BridgedDevice] = {}

    @property
    def state(self) -> BridgeState:
        """Get current bridge state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if connected to bridge."""
        return self._state == BridgeState.RUNNING and self._ws is not None and not self._ws.closed

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> bool:
        """
        Start the sidecar (when configured) and connect to it.

        Returns:
            True if the bridge is connected
        """
        if self._state in (BridgeState.RUNNING, BridgeState.STARTING):
            return True

        self._state = BridgeState.STARTING
        logger.info(f"Starting Matter bridge on {self.config.url}...")

        try:
            if self.config.auto_start:
                await self._spawn_process()
            await self._connect_with_deadline()
            self._state = BridgeState.RUNNING
            self._reconnect_attempts = 0
            logger.info("Matter bridge started")
            return True

        except (OSError, aiohttp.ClientError, asyncio.TimeoutError, MaterializationError) as e:
            self._state = BridgeState.ERROR
            logger.error(f"Failed to start Matter bridge: {e}")
            await self._close_connection()
            await self._stop_process()
            return False

    async def stop(self) -> None:
        """Stop the matter.js bridge."""
        if self._state == BridgeState.STOPPED:
            return

        self._state = BridgeState.STOPPING
        logger.info("Stopping Matter bridge...")

        for task in (self._reconnect_task, self._reader_task):
            if task and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reconnect_task = None
        self._reader_task = None

        for task in list(self._dispatch_tasks):
            task.cancel()
        self._dispatch_tasks.clear()

        await self._close_connection()
        await self._stop_process()

        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()

        self._state = BridgeState.STOPPED
        logger.info("Matter bridge stopped")

    async def _spawn_process(self) -> None:
        if not self.config.bridge_path:
            raise MaterializationError("auto_start requires bridge_path")
        bridge_path = Path(self.config.bridge_path).expanduser()
        if not bridge_path.exists():
            raise MaterializationError(f"Bridge script not found: {bridge_path}")

        storage_path = Path(self.config.storage_path).expanduser()
        storage_path.mkdir(parents=True, exist_ok=True)
        env = dict(os.environ)
        env["MATTER_PORT"] = str(self.config.port)
        env["MATTER_STORAGE"] = str(storage_path)

        self._process = await asyncio.create_subprocess_exec(
            "node", str(bridge_path),
            env=env,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        logger.info(f"Spawned matter.js bridge (pid {self._process.pid})")

    async def _stop_process(self) -> None:
        if not self._process:
            return
        if self._process.returncode is None:
            self._process.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=5)
            except asyncio.TimeoutError:
                self._process.kill()
                await self._process.wait()
        self._process = None

    async def _connect_with_deadline(self) -> None:
        """Retry the WebSocket connect until it succeeds or the connect timeout passes."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.connect_timeout_seconds
        while True:
            try:
                await self._connect_websocket()
                return
            except (OSError, aiohttp.ClientError):
                if loop.time() >= deadline:
                    raise
                await asyncio.sleep(0.25)

    async def _connect_websocket(self) -> None:
        """Connect to the bridge WebSocket server."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        self._ws = await asyncio.wait_for(
            self._session.ws_connect(self.config.url),
            timeout=self.config.connect_timeout_seconds,
        )
        self._reader_task = asyncio.create_task(self._read_messages())
        logger.debug(f"Connected to matter.js bridge at {self.config.url}")

    async def _close_connection(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _read_messages(self) -> None:
        """Background task to read WebSocket messages."""
        ws = self._ws
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        message = json.loads(msg.data)
                    except ValueError:
                        logger.warning(f"Discarding malformed bridge message: {msg.data[:200]}")
                        continue
                    await self._handle_message(message)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {ws.exception()}")
                    break
        finally:
            if self._ws is ws:
                self._on_connection_lost()

    def _on_connection_lost(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportError("Matter bridge connection lost"))
        self._pending.clear()

        if self._state != BridgeState.RUNNING:
            return

        logger.warning("Matter bridge connection lost")
        self._state = BridgeState.ERROR
        if self.config.auto_reconnect:
            self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        """Reconnect and restore registered devices."""
        while self._reconnect_attempts < self.config.max_reconnect_attempts:
            self._reconnect_attempts += 1
            await asyncio.sleep(self.config.reconnect_interval_seconds)
            logger.info(
                f"Reconnecting to Matter bridge "
                f"(attempt {self._reconnect_attempts}/{self.config.max_reconnect_attempts})"
            )
            try:
                await self._close_connection()
                await self._connect_websocket()
            except (OSError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"Reconnect failed: {e}")
                continue

            self._state = BridgeState.RUNNING
            self._reconnect_attempts = 0
            await self._restore_devices()
            logger.info("Reconnected to Matter bridge")
            return

        logger.critical(
            f"Could not reconnect to the Matter bridge after {self.config.max_reconnect_attempts} attempts"
        )

    async def _restore_devices(self) -> None:
        for device in list(self.devices.values()):
            try:
                await self._send_request("createDevice", {"device": device.shape.to_dict()})
                await self._send_request("registerDevice", {"uniqueId": device.id})
            except (MaterializationError, TransportError) as e:
                logger.error(f"Failed to restore device {device.name}: {e}")

    # =========================================================================
    # JSON-RPC
    # =========================================================================

    async def _handle_message(self, message: Dict[str, Any]) -> None:
        """Handle an incoming JSON-RPC message."""
        # Response to a request
        if "id" in message and message["id"] in self._pending:
            future = self._pending.pop(message["id"])
            if future.done():
                return

            if message.get("error"):
                error = message["error"]
                future.set_exception(JsonRpcError(
                    code=error.get("code", -1),
                    message=error.get("message", "Unknown error"),
                    data=error.get("data"),
                ))
            else:
                future.set_result(message.get("result"))

        # Notification
        elif "method" in message:
            task = asyncio.create_task(self._handle_notification(message["method"], message.get("params") or {}))
            self._dispatch_tasks.add(task)
            task.add_done_callback(self._dispatch_tasks.discard)

        else:
            logger.debug(f"Ignoring unmatched bridge message: {message}")

    async def _handle_notification(self, method: str, params: Dict[str, Any]) -> None:
        device = self.devices.get(params.get("uniqueId"))
        if device is None:
            logger.warning(f"Bridge notification {method} for unknown device {params.get('uniqueId')}")
            return

        endpoint = params.get("endpoint", "")
        try:
            if method == "command":
                await device.dispatch_command(endpoint, params["command"], params.get("request") or {})
            elif method == "attributeChanged":
                await device.dispatch_write(
                    endpoint,
                    ClusterType(params["cluster"]),
                    params["attribute"],
                    params.get("value"),
                    params.get("context") or {},
                )
            else:
                logger.debug(f"Ignoring bridge notification {method}")
        except (KeyError, ValueError) as e:
            logger.warning(f"Malformed bridge notification {method}: {e}")

    async def _send_request(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Send a JSON-RPC request to the bridge.

        Args:
            method: RPC method name
            params: Method parameters
            timeout: Request timeout

        Returns:
            Result from the bridge

        Raises:
            JsonRpcError: If bridge returns an error
            RequestTimeoutError: If request times out
            TransportError: If the bridge is not connected
        """
        if self._ws is None or self._ws.closed:
            raise TransportError(f"Matter bridge not connected, cannot send {method}")

        timeout = timeout or self.config.command_timeout_seconds
        self._request_id += 1
        request_id = self._request_id

        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        logger.debug(f"Bridge request {request_id}: {method}({params})")
        try:
            await self._ws.send_json({
                "jsonrpc": "2.0",
                "id": request_id,
                "method": method,
                "params": params or {},
            })
        except (ConnectionError, RuntimeError) as e:
            self._pending.pop(request_id, None)
            raise TransportError(f"Failed to send {method}: {e}") from e

        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(request_id, method, timeout)
        finally:
            self._pending.pop(request_id, None)

    async def ping(self) -> bool:
        """Check if bridge is responsive."""
        try:
            result = await self._send_request("ping", timeout=5.0)
            return result == "pong"
        except (TransportError, MaterializationError):
            return False

    # =========================================================================
    # DeviceRuntime
    # =========================================================================

    async def create_device(self, shape: FrozenDeviceShape) -> BridgedDevice:
        await self._send_request("createDevice", {"device": shape.to_dict()})
        return BridgedDevice(self, shape)

    async def register_device(self, device: DeviceHandle) -> None:
        if device.id in self.devices:
            raise MaterializationError(f"Device {device.name} unique id {device.id} already registered")
        if not isinstance(device, BridgedDevice):
            raise MaterializationError(f"Device {device.name} was not created by this runtime")
        await self._send_request("registerDevice", {"uniqueId": device.id})
        device.registered = True
        self.devices[device.id] = device
        logger.info(f"Registered device {device.name} with {len(device.shape.endpoints)} endpoint(s)")

    async def unregister_all(self) -> None:
        await self._send_request("unregisterAll")
        for device in self.devices.values():
            device.registered = False
        logger.info(f"Unregistered {len(self.devices)} device(s)")
        self.devices.clear()
