"""
Tests for the Home Assistant WebSocket session.
"""

import asyncio

import pytest

from hassbridge.errors import (
    AuthError,
    HubConnectionError,
    RequestError,
    RequestTimeoutError,
)
from hassbridge.hub.client import GET_CONFIG, GET_STATES
from hassbridge.hub.session import HubSession, SessionConfig, SessionState

from conftest import HA_VERSION, TOKEN


def fast_config(**overrides) -> SessionConfig:
    values = dict(
        ping_interval=30.0,
        ping_timeout=35.0,
        reconnect_timeout=0.1,
        reconnect_retries=3,
        response_timeout=2.0,
        connect_timeout=2.0,
    )
    values.update(overrides)
    return SessionConfig(**values)


class TestSessionConfig:
    """Tests for SessionConfig defaults."""

    def test_defaults(self):
        """Test default timers."""
        config = SessionConfig()
        assert config.ping_interval == 30.0
        assert config.ping_timeout == 35.0
        assert config.reconnect_timeout == 60.0
        assert config.reconnect_retries == 10
        assert config.response_timeout == 5.0
        assert config.reject_unauthorized is True


class TestConnect:
    """Tests for the auth handshake."""

    @pytest.mark.asyncio
    async def test_connect_returns_version(self, hass):
        """Test auth_ok yields the Home Assistant version."""
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config())
            try:
                version = await session.connect()
                assert version == HA_VERSION
                assert session.ha_version == HA_VERSION
                assert session.state == SessionState.CONNECTED
                assert hass.auth_attempts == 1
            finally:
                await session.aclose()
            assert session.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_bad_token(self, hass):
        """Test auth_invalid raises AuthError."""
        async with hass:
            session = HubSession(hass.url, "wrong", fast_config())
            try:
                with pytest.raises(AuthError):
                    await session.connect()
                assert session.state == SessionState.DISCONNECTED
                assert not session.socket_open
            finally:
                await session.aclose()

    @pytest.mark.asyncio
    async def test_invalid_scheme(self):
        """Test URLs that are not ws:// or wss:// are rejected."""
        session = HubSession("http://homeassistant.local:8123", TOKEN)
        with pytest.raises(HubConnectionError):
            await session.connect()

    @pytest.mark.asyncio
    async def test_connect_while_connected(self, hass):
        """Test a second connect is refused."""
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config())
            try:
                await session.connect()
                with pytest.raises(HubConnectionError):
                    await session.connect()
                assert hass.connections == 1
            finally:
                await session.aclose()

    @pytest.mark.asyncio
    async def test_connect_while_connecting(self, hass):
        """Test a connect during the handshake is refused without opening a socket."""
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config())
            try:
                first = asyncio.ensure_future(session.connect())
                await asyncio.sleep(0)
                assert session.state == SessionState.CONNECTING
                with pytest.raises(HubConnectionError):
                    await session.connect()
                assert await first == HA_VERSION
                assert session.state == SessionState.CONNECTED
                assert hass.connections == 1
            finally:
                await session.aclose()

    @pytest.mark.asyncio
    async def test_connected_event(self, hass):
        """Test listeners of 'connected' receive the version."""
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config())
            versions = []
            session.on("connected", versions.append)
            try:
                await session.connect()
            finally:
                await session.aclose()
            assert versions == [HA_VERSION]


class TestRequests:
    """Tests for request/response correlation."""

    @pytest.mark.asyncio
    async def test_fetch(self, hass):
        """Test a fetch returns the result payload."""
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config())
            try:
                await session.connect()
                config = await session.fetch(GET_CONFIG)
                assert config["location_name"] == "Home"
            finally:
                await session.aclose()

    @pytest.mark.asyncio
    async def test_out_of_order_responses(self, hass):
        """Test responses are matched by id, not by arrival order."""
        hass.delays["get_states"] = 0.3
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config())
            order = []

            async def fetch(kind):
                result = await session.fetch(kind)
                order.append(kind)
                return result

            try:
                await session.connect()
                states, config = await asyncio.gather(fetch(GET_STATES), fetch(GET_CONFIG))
            finally:
                await session.aclose()

            assert order == [GET_CONFIG, GET_STATES]
            assert states == hass.data[GET_STATES]
            assert config == hass.data[GET_CONFIG]

    @pytest.mark.asyncio
    async def test_request_ids_increase(self, hass):
        """Test every request carries a fresh id."""
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config())
            try:
                await session.connect()
                await session.fetch(GET_CONFIG)
                await session.fetch(GET_STATES)
            finally:
                await session.aclose()
            ids = [m["id"] for m in hass.received]
            assert len(ids) == len(set(ids))
            assert ids == sorted(ids)

    @pytest.mark.asyncio
    async def test_error_result(self, hass):
        """Test success: false raises RequestError with the code."""
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config())
            try:
                await session.connect()
                with pytest.raises(RequestError) as exc_info:
                    await session.send("no/such/command")
                assert exc_info.value.code == "unknown_command"
            finally:
                await session.aclose()

    @pytest.mark.asyncio
    async def test_timeout(self, hass):
        """Test a missing response raises RequestTimeoutError."""
        hass.delays["get_states"] = 1.0
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config(response_timeout=0.2))
            try:
                await session.connect()
                with pytest.raises(RequestTimeoutError) as exc_info:
                    await session.fetch(GET_STATES)
                assert exc_info.value.request_type == GET_STATES
                assert session.pending_count == 0
            finally:
                await session.aclose()

    @pytest.mark.asyncio
    async def test_pending_fail_on_close(self, hass):
        """Test close rejects requests still waiting for a result."""
        hass.delays["get_states"] = 1.0
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config())
            await session.connect()
            task = asyncio.create_task(session.fetch(GET_STATES))
            await asyncio.sleep(0.05)
            await session.aclose()
            with pytest.raises(HubConnectionError):
                await task
            assert session.pending_count == 0

    @pytest.mark.asyncio
    async def test_send_when_disconnected(self):
        """Test requests without a connection fail fast."""
        session = HubSession("ws://localhost:1", TOKEN)
        with pytest.raises(HubConnectionError):
            await session.send(GET_STATES)

    @pytest.mark.asyncio
    async def test_call_service_payload(self, hass):
        """Test call_service sends domain, service, data and target."""
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config())
            try:
                await session.connect()
                await session.call_service("light", "turn_on", "light.kitchen_lamp", {"brightness": 255})
            finally:
                await session.aclose()
            assert hass.service_calls == [{
                "domain": "light",
                "service": "turn_on",
                "service_data": {"brightness": 255},
                "target": {"entity_id": "light.kitchen_lamp"},
            }]


class TestEvents:
    """Tests for push events."""

    @pytest.mark.asyncio
    async def test_events_in_order(self, hass, until):
        """Test events reach listeners in receipt order."""
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config())
            received = []
            session.on("message_event", lambda event, sub_id: received.append(event["event_type"]))
            try:
                await session.connect()
                await session.subscribe()
                for name in ("first", "second", "third"):
                    await hass.push_event({"event_type": name, "data": {}})
                await until(lambda: len(received) == 3)
            finally:
                await session.aclose()
            assert received == ["first", "second", "third"]


class TestKeepalive:
    """Tests for ping/pong keepalive and reconnection."""

    @pytest.mark.asyncio
    async def test_ping_answered(self, hass, until):
        """Test an answered ping keeps the connection."""
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config(ping_interval=0.05, ping_timeout=0.5))
            pongs = []
            session.on("pong", lambda: pongs.append(True))
            try:
                await session.connect()
                await until(lambda: len(pongs) >= 2)
                assert session.connected
                assert hass.connections == 1
            finally:
                await session.aclose()

    @pytest.mark.asyncio
    async def test_ping_timeout_reconnects_once(self, hass, until):
        """Test a missed pong closes with 4000 and reconnects exactly once."""
        hass.ignore_ping_connections = {1}
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config(ping_interval=0.1, ping_timeout=0.2))
            reconnecting = []
            closes = []
            session.on("reconnecting", reconnecting.append)
            session.on("socket_closed", lambda code, reason: closes.append(code))
            try:
                await session.connect()
                await until(lambda: hass.connections == 2 and session.connected)
                # Connection 2 answers pings, so nothing else should happen
                await asyncio.sleep(0.5)
                assert hass.connections == 2
                assert session.connected
                assert reconnecting == [1]
                assert closes.count(4000) == 1
                assert 4000 in hass.close_codes
            finally:
                await session.aclose()

    @pytest.mark.asyncio
    async def test_reconnect_after_server_close(self, hass, until):
        """Test an unexpected close triggers reconnection."""
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config())
            try:
                await session.connect()
                await hass.drop_connections()
                await until(lambda: hass.connections == 2 and session.connected)
                assert session.reconnect_retry == 1
            finally:
                await session.aclose()

    @pytest.mark.asyncio
    async def test_reconnect_disabled(self, hass, until):
        """Test a zero reconnect timeout leaves the session disconnected."""
        async with hass:
            session = HubSession(hass.url, TOKEN, fast_config(reconnect_timeout=0))
            try:
                await session.connect()
                await hass.drop_connections()
                await until(lambda: session.state == SessionState.DISCONNECTED)
                await asyncio.sleep(0.2)
                assert hass.connections == 1
            finally:
                await session.aclose()
