"""
Home Assistant WebSocket session.

Keeps one authenticated connection to the Home Assistant WebSocket API:

    hassbridge (Python) <--WebSocket/JSON--> Home Assistant /api/websocket

The session handles:
- The auth_required / auth / auth_ok handshake
- Request/response correlation by numeric id
- Keepalive with websocket ping frames plus numbered ping messages
- Bounded-retry reconnection after an unexpected close

Individual requests are never retried. Push events are handed to listeners
of ``message_event`` in receipt order.
"""

import asyncio
import json
import logging
import ssl
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

import aiohttp

from ..errors import (
    AuthError,
    HubConnectionError,
    RequestError,
    RequestTimeoutError,
    TransportError,
)
from ..events import EventEmitter

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """State of the hub session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass
class SessionConfig:
    """Timers and TLS settings for the hub session. Times in seconds."""

    # Keepalive
    ping_interval: float = 30.0
    ping_timeout: float = 35.0

    # Reconnection, a zero timeout disables it
    reconnect_timeout: float = 60.0
    reconnect_retries: int = 10

    # Request and close timeout
    response_timeout: float = 5.0

    # Socket open plus auth handshake
    connect_timeout: float = 10.0

    # TLS for wss:// URLs
    certificate_path: Optional[str] = None
    reject_unauthorized: bool = True


class HubSession(EventEmitter):
    """
    One persistent connection to Home Assistant.

    Usage:
        session = HubSession("ws://homeassistant.local:8123", token)
        version = await session.connect()
        states = await session.fetch("get_states")
        await session.close()
    """

    def __init__(
        self,
        url: str,
        access_token: str,
        config: Optional[SessionConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__()
        self.url = url.rstrip("/")
        self.access_token = access_token
        self.config = config or SessionConfig()
        self.ha_version: Optional[str] = None

        self._state = SessionState.DISCONNECTED
        self._http: Optional[aiohttp.ClientSession] = session
        self._owns_http = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._request_id = 1
        self._pending: Dict[int, asyncio.Future] = {}
        self._reader_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None
        self._ping_timeout_handle: Optional[asyncio.TimerHandle] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._background: set = set()
        self._reconnect_retry = 1
        self._closing = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == SessionState.CONNECTED

    @property
    def socket_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def reconnect_retry(self) -> int:
        return self._reconnect_retry

    @property
    def websocket_url(self) -> str:
        return f"{self.url}/api/websocket"

    def _next_id(self) -> int:
        request_id = self._request_id
        self._request_id += 1
        return request_id

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> str:
        """
        Open the socket and authenticate.

        Returns:
            The Home Assistant version reported by auth_ok

        Raises:
            HubConnectionError: Already connected or connecting, bad URL or socket failure
            AuthError: Home Assistant rejected the token
        """
        if self.connected:
            raise HubConnectionError("Already connected to Home Assistant")
        if self._state == SessionState.CONNECTING:
            raise HubConnectionError("Connection to Home Assistant already in progress")

        ssl_option = self._ssl_option()
        self._state = SessionState.CONNECTING
        logger.info(f"Connecting to Home Assistant on {self.url}...")

        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
            self._owns_http = True

        try:
            self._ws = await self._http.ws_connect(
                self.websocket_url,
                ssl=ssl_option,
                autoping=False,
            )
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            self._state = SessionState.DISCONNECTED
            self.emit("error", f"WebSocket error: {e}")
            raise HubConnectionError(f"WebSocket error connecting to Home Assistant: {e}") from e

        logger.debug("WebSocket connection established")
        self.emit("socket_opened")

        try:
            version = await asyncio.wait_for(self._authenticate(), self.config.connect_timeout)
        except asyncio.TimeoutError:
            await self._discard_socket()
            raise HubConnectionError(
                f"Authentication did not complete within {self.config.connect_timeout}s"
            )
        except (HubConnectionError, TransportError):
            await self._discard_socket()
            raise

        self.ha_version = version
        self._state = SessionState.CONNECTED
        self._reconnect_retry = 1
        self._reader_task = asyncio.create_task(self._read_messages())
        self._start_ping()
        logger.info(f"Authenticated successfully with Home Assistant v. {version}")
        self.emit("connected", version)
        return version

    def _ssl_option(self) -> Union[ssl.SSLContext, bool]:
        if self.url.startswith("ws://"):
            return True
        if not self.url.startswith("wss://"):
            raise HubConnectionError(
                f"Invalid WebSocket URL: {self.url}. It must start with ws:// or wss://"
            )
        if not self.config.reject_unauthorized:
            return False
        context = ssl.create_default_context()
        if self.config.certificate_path:
            logger.debug(f"Loading CA certificate from {self.config.certificate_path}...")
            context.load_verify_locations(cafile=self.config.certificate_path)
        return context

    async def _authenticate(self) -> str:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                message = json.loads(msg.data)
                message_type = message.get("type")
                if message_type == "auth_required":
                    logger.debug("Authentication required. Sending auth message...")
                    await self._ws.send_json({"type": "auth", "access_token": self.access_token})
                elif message_type == "auth_ok":
                    return message.get("ha_version", "")
                elif message_type == "auth_invalid":
                    raise AuthError(f"Authentication failed: {message.get('message', 'auth_invalid')}")
            elif msg.type == aiohttp.WSMsgType.PING:
                await self._ws.pong(msg.data)
            elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                raise HubConnectionError("Connection closed during authentication")
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise TransportError(f"WebSocket error during authentication: {self._ws.exception()}")

    async def _discard_socket(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        self._state = SessionState.DISCONNECTED

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def _read_messages(self) -> None:
        """Background task reading the socket until it closes."""
        ws = self._ws
        close_code = None
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        message = json.loads(msg.data)
                    except ValueError as e:
                        logger.error(f"Error parsing WebSocket message: {e}")
                        continue
                    self._handle_message(message)
                elif msg.type == aiohttp.WSMsgType.PING:
                    logger.debug("WebSocket ping received")
                    self._clear_ping_timeout()
                    await ws.pong(msg.data)
                elif msg.type == aiohttp.WSMsgType.PONG:
                    logger.debug("WebSocket pong received")
                    self._clear_ping_timeout()
                    self.emit("pong")
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {ws.exception()}")
                    self.emit("error", f"WebSocket error: {ws.exception()}")
                    break
            close_code = ws.close_code
        finally:
            if not self._closing and self._ws is ws:
                await self._on_socket_closed(close_code)

    def _handle_message(self, message: Dict[str, Any]) -> None:
        message_type = message.get("type")

        if message_type == "result":
            request_id = message.get("id")
            future = self._pending.get(request_id)
            if future is None or future.done():
                logger.debug(f"Result for unknown request id {request_id}")
                return
            if message.get("success"):
                future.set_result(message.get("result"))
            else:
                error = message.get("error") or {}
                future.set_exception(RequestError(
                    code=error.get("code"),
                    message=error.get("message", "Unknown error"),
                    request_id=request_id,
                ))

        elif message_type == "pong":
            logger.debug(f"Home Assistant pong received with id {message.get('id')}")
            self._clear_ping_timeout()
            self.emit("pong")

        elif message_type == "event":
            event = message.get("event")
            if not event:
                error = f"WebSocket event response missing event data for id {message.get('id')}"
                logger.error(error)
                self.emit("error", error)
                return
            self.emit("message_event", event, message.get("id"))

        else:
            logger.debug(f"Unknown message type {message_type} received id {message.get('id')}")

    async def _on_socket_closed(self, code: Optional[int]) -> None:
        logger.debug(f"WebSocket connection closed. Code: {code}")
        self._ws = None
        self._state = SessionState.DISCONNECTED
        self._stop_ping()
        self._fail_pending(TransportError("Connection to Home Assistant lost"))
        self.emit("socket_closed", code, "")
        self.emit("disconnected", f"Code: {code}")
        self._start_reconnect()

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    # ------------------------------------------------------------------
    # Keepalive
    # ------------------------------------------------------------------

    def _start_ping(self) -> None:
        if self._ping_task is not None:
            logger.debug("Ping interval already started")
            return
        self._ping_task = asyncio.create_task(self._ping_loop())

    def _stop_ping(self) -> None:
        task = self._ping_task
        self._ping_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self._clear_ping_timeout()

    def _clear_ping_timeout(self) -> None:
        if self._ping_timeout_handle is not None:
            self._ping_timeout_handle.cancel()
            self._ping_timeout_handle = None

    async def _ping_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.ping_interval)
            await self._ping_tick()

    async def _ping_tick(self) -> None:
        if not self.socket_open:
            logger.error("WebSocket not open sending ping. Closing connection...")
            self._spawn(self._force_close_and_reconnect())
            return

        try:
            await self._ws.ping()
            await self._ws.send_json({"id": self._next_id(), "type": "ping"})
        except (ConnectionError, aiohttp.ClientError, RuntimeError) as e:
            logger.error(f"Error sending ping: {e}")
            self._spawn(self._force_close_and_reconnect())
            return

        if self._ping_timeout_handle is None:
            loop = asyncio.get_running_loop()
            self._ping_timeout_handle = loop.call_later(self.config.ping_timeout, self._on_ping_timeout)

    def _on_ping_timeout(self) -> None:
        self._ping_timeout_handle = None
        logger.error("Ping timeout. Closing connection...")
        self.emit("error", "Ping timeout")
        self._spawn(self._force_close_and_reconnect())

    async def _force_close_and_reconnect(self) -> None:
        try:
            await self.close(code=4000, reason="Keepalive failure")
        except TransportError as e:
            logger.debug(f"Forced close: {e}")
        self._start_reconnect()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------

    def _start_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            logger.debug("Reconnecting already in progress.")
            return
        if self.config.reconnect_timeout and self._reconnect_retry <= self.config.reconnect_retries:
            logger.info(f"Reconnecting in {self.config.reconnect_timeout} seconds...")
            self._state = SessionState.RECONNECTING
            self._reconnect_task = asyncio.create_task(self._reconnect())
        else:
            self._state = SessionState.DISCONNECTED
            logger.critical("Reconnection attempts exhausted. Restart the bridge to reconnect.")

    async def _reconnect(self) -> None:
        await asyncio.sleep(self.config.reconnect_timeout)
        attempt = self._reconnect_retry
        logger.info(f"Reconnecting attempt {attempt} of {self.config.reconnect_retries}...")
        self._reconnect_retry += 1
        self._reconnect_task = None
        self.emit("reconnecting", attempt)
        try:
            await self.connect()
        except (HubConnectionError, TransportError) as e:
            logger.error(f"Reconnection attempt {attempt} failed: {e}")
            self._start_reconnect()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def send(
        self,
        request_type: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Send a request and wait for the result with the same id.

        Raises:
            HubConnectionError: Not connected
            RequestError: Home Assistant answered success: false
            RequestTimeoutError: No result in time
            TransportError: The socket failed while writing or waiting
        """
        if not self.connected or not self.socket_open:
            raise HubConnectionError("Not connected to Home Assistant")

        timeout = timeout or self.config.response_timeout
        request_id = self._next_id()
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        message = {"id": request_id, "type": request_type}
        if payload:
            message.update(payload)

        logger.debug(f"Sending {request_type} request id {request_id}")
        try:
            await self._ws.send_json(message)
        except (ConnectionError, aiohttp.ClientError, RuntimeError) as e:
            self._pending.pop(request_id, None)
            raise TransportError(f"Error sending {request_type} request: {e}") from e

        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(request_id, request_type, timeout)
        finally:
            self._pending.pop(request_id, None)

    async def fetch(self, request_type: str) -> Any:
        """Fetch a resource such as ``get_states`` or ``config/device_registry/list``."""
        return await self.send(request_type)

    async def subscribe(self, event_type: Optional[str] = None) -> int:
        """Subscribe to push events, all of them when ``event_type`` is None."""
        payload = {"event_type": event_type} if event_type else None
        request_id = self._request_id
        await self.send("subscribe_events", payload)
        logger.debug(f"Subscribed to {event_type or 'all events'} with id {request_id}")
        return request_id

    async def unsubscribe(self, subscription_id: int) -> None:
        await self.send("unsubscribe_events", {"subscription": subscription_id})

    async def call_service(
        self,
        domain: str,
        service: str,
        entity_id: Optional[str] = None,
        service_data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        payload: Dict[str, Any] = {
            "domain": domain,
            "service": service,
            "service_data": service_data or {},
        }
        if entity_id:
            payload["target"] = {"entity_id": entity_id}
        return await self.send("call_service", payload)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self, code: int = 1000, reason: str = "Normal closure") -> None:
        """
        Close the connection and release every timer and pending request.

        Raises:
            TransportError: The close handshake did not finish in time
        """
        logger.info("Closing Home Assistant connection...")
        self._closing = True
        self._stop_ping()
        if self._reconnect_task is not None and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        ws = self._ws
        try:
            if ws is not None and not ws.closed:
                try:
                    await asyncio.wait_for(
                        ws.close(code=code, message=reason.encode()),
                        self.config.response_timeout,
                    )
                except asyncio.TimeoutError:
                    raise TransportError(
                        f"Close did not complete before the timeout of {self.config.response_timeout}s"
                    )
                self.emit("socket_closed", code, reason)
        finally:
            reader = self._reader_task
            self._reader_task = None
            if reader is not None and reader is not asyncio.current_task():
                reader.cancel()
                try:
                    await reader
                except asyncio.CancelledError:
                    pass
            self._ws = None
            self._state = SessionState.CLOSED
            self._fail_pending(HubConnectionError("Connection to Home Assistant closed"))
            self._closing = False
            self.emit("disconnected", "WebSocket connection closed")
            logger.info("Home Assistant connection closed")

    async def aclose(self) -> None:
        """Close the connection and the owned HTTP session."""
        await self.close()
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None
