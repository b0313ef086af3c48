"""
Home Assistant client: registries, event fan-out and refresh debounce.

Wraps one HubSession and owns the in-memory copies of the Home Assistant
registries. Push events are routed to typed signals:

    entity_changed(device_id, entity_id, old_state, new_state)
    call_service()
    config / services / devices / entities / states / areas / labels

Registry-changed pushes are coalesced: every push (re)arms one shared timer
and, when it fires, each queued resource kind is fetched exactly once.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

import aiohttp

from ..errors import HassBridgeError
from ..events import EventEmitter
from .models import HubArea, HubCoreConfig, HubDevice, HubEntity, HubLabel, HubState
from .session import HubSession, SessionConfig

logger = logging.getLogger(__name__)

GET_CONFIG = "get_config"
GET_SERVICES = "get_services"
GET_STATES = "get_states"
DEVICE_REGISTRY = "config/device_registry/list"
ENTITY_REGISTRY = "config/entity_registry/list"
AREA_REGISTRY = "config/area_registry/list"
LABEL_REGISTRY = "config/label_registry/list"

# Push event type -> resource kind to re-fetch
REGISTRY_EVENTS: Dict[str, str] = {
    "core_config_updated": GET_CONFIG,
    "device_registry_updated": DEVICE_REGISTRY,
    "entity_registry_updated": ENTITY_REGISTRY,
    "area_registry_updated": AREA_REGISTRY,
    "label_registry_updated": LABEL_REGISTRY,
}

DEFAULT_REFRESH_DEBOUNCE = 5.0


class HomeAssistant(EventEmitter):
    """
    High-level Home Assistant API.

    Usage:
        ha = HomeAssistant("ws://homeassistant.local:8123", token)
        ha.on("entity_changed", handler)
        await ha.connect()
        await ha.fetch_data()
        await ha.subscribe()
    """

    def __init__(
        self,
        url: str,
        access_token: str,
        config: Optional[SessionConfig] = None,
        refresh_debounce: float = DEFAULT_REFRESH_DEBOUNCE,
        session: Optional[HubSession] = None,
    ):
        super().__init__()
        self.url = url.rstrip("/")
        self.access_token = access_token
        self.session = session or HubSession(url, access_token, config)
        self.refresh_debounce = refresh_debounce

        self.devices: Dict[str, HubDevice] = {}
        self.entities: Dict[str, HubEntity] = {}
        self.states: Dict[str, HubState] = {}
        self.areas: Dict[str, HubArea] = {}
        self.labels: Dict[str, HubLabel] = {}
        self.core_config: Optional[HubCoreConfig] = None
        self.services: Dict[str, Any] = {}

        self._refresh_queue: List[str] = []
        self._refresh_handle: Optional[asyncio.TimerHandle] = None
        self._refresh_task: Optional[asyncio.Task] = None

        self.session.on("message_event", self._on_event)
        for name in ("connected", "disconnected", "socket_closed", "error"):
            self.session.on(name, self._relay(name))

    def _relay(self, name: str) -> Callable:
        def relay(*args: Any) -> None:
            self.emit(name, *args)
        return relay

    @property
    def connected(self) -> bool:
        return self.session.connected

    @property
    def refresh_pending(self) -> Set[str]:
        return set(self._refresh_queue)

    # ------------------------------------------------------------------
    # Session delegation
    # ------------------------------------------------------------------

    async def connect(self) -> str:
        return await self.session.connect()

    async def fetch(self, request_type: str) -> Any:
        return await self.session.fetch(request_type)

    async def subscribe(self, event_type: Optional[str] = None) -> int:
        return await self.session.subscribe(event_type)

    async def unsubscribe(self, subscription_id: int) -> None:
        await self.session.unsubscribe(subscription_id)

    async def call_service(
        self,
        domain: str,
        service: str,
        entity_id: Optional[str] = None,
        service_data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        logger.debug(f"Calling service {domain}.{service} for {entity_id} with {service_data or {}}")
        return await self.session.call_service(domain, service, entity_id, service_data)

    async def close(self) -> None:
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
            self._refresh_handle = None
        self._refresh_queue.clear()
        await self.session.aclose()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def fetch_data(self) -> None:
        """Fetch config, services, registries and states, in that order."""
        logger.debug("Fetching initial data from Home Assistant...")
        for kind in (GET_CONFIG, GET_SERVICES, DEVICE_REGISTRY, ENTITY_REGISTRY,
                     GET_STATES, AREA_REGISTRY, LABEL_REGISTRY):
            data = await self.fetch(kind)
            self._merge(kind, data)
        logger.debug("Initial data fetched successfully.")

    def _merge(self, kind: str, data: Any) -> None:
        """Merge one fetched resource into the registries and signal it."""
        if kind == GET_CONFIG:
            self.core_config = HubCoreConfig.model_validate(data or {})
            logger.debug("Received config.")
            self.emit("config", self.core_config)
        elif kind == GET_SERVICES:
            self.services = data or {}
            logger.debug("Received services.")
            self.emit("services", self.services)
        elif kind == DEVICE_REGISTRY:
            devices = [HubDevice.model_validate(item) for item in data or []]
            for device in devices:
                self.devices[device.id] = device
            logger.debug(f"Received {len(devices)} devices.")
            self.emit("devices", devices)
        elif kind == ENTITY_REGISTRY:
            entities = [HubEntity.model_validate(item) for item in data or []]
            for entity in entities:
                self.entities[entity.entity_id] = entity
            logger.debug(f"Received {len(entities)} entities.")
            self.emit("entities", entities)
        elif kind == GET_STATES:
            states = [HubState.model_validate(item) for item in data or []]
            for state in states:
                self.states[state.entity_id] = state
            logger.debug(f"Received {len(states)} states.")
            self.emit("states", states)
        elif kind == AREA_REGISTRY:
            areas = [HubArea.model_validate(item) for item in data or []]
            for area in areas:
                self.areas[area.area_id] = area
            logger.debug(f"Received {len(areas)} areas.")
            self.emit("areas", areas)
        elif kind == LABEL_REGISTRY:
            labels = [HubLabel.model_validate(item) for item in data or []]
            for label in labels:
                self.labels[label.label_id] = label
            logger.debug(f"Received {len(labels)} labels.")
            self.emit("labels", labels)
        else:
            logger.warning(f"Unknown resource kind {kind}")

    def entities_of(self, device_id: str) -> List[HubEntity]:
        return [e for e in self.entities.values() if e.device_id == device_id]

    def snapshot(self) -> Dict[str, Any]:
        """Registries as plain JSON-able data, for the diagnostic file."""
        return {
            "devices": [d.to_dict() for d in self.devices.values()],
            "entities": [e.to_dict() for e in self.entities.values()],
            "areas": [a.to_dict() for a in self.areas.values()],
            "labels": [label.to_dict() for label in self.labels.values()],
            "states": [s.to_dict() for s in self.states.values()],
            "config": self.core_config.to_dict() if self.core_config else None,
            "services": self.services,
        }

    # ------------------------------------------------------------------
    # Push events
    # ------------------------------------------------------------------

    def _on_event(self, event: Dict[str, Any], subscription_id: Optional[int] = None) -> None:
        event_type = event.get("event_type")

        if event_type == "state_changed":
            self._on_state_changed(event.get("data") or {})

        elif event_type == "call_service":
            logger.debug(f"Event {event_type} received id {subscription_id}")
            self.emit("call_service")

        elif event_type in REGISTRY_EVENTS:
            logger.debug(f"Event {event_type} received id {subscription_id}")
            self.queue_refresh(REGISTRY_EVENTS[event_type])

        else:
            logger.debug(f"Unknown event type {event_type} received id {subscription_id}")

    def _on_state_changed(self, data: Dict[str, Any]) -> None:
        entity_id = data.get("entity_id")
        entity = self.entities.get(entity_id)
        if entity is None:
            logger.debug(f"Entity id {entity_id} not found processing event")
            return

        old_state = data.get("old_state")
        new_state = data.get("new_state")
        if not old_state or not new_state:
            return

        old = HubState.model_validate(old_state)
        new = HubState.model_validate(new_state)
        self.states[new.entity_id] = new
        self.emit("entity_changed", entity.device_id, entity.entity_id, old, new)

    def queue_refresh(self, kind: str) -> None:
        """Queue a re-fetch of ``kind`` and re-arm the shared debounce timer."""
        if kind not in self._refresh_queue:
            self._refresh_queue.append(kind)
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
        loop = asyncio.get_running_loop()
        self._refresh_handle = loop.call_later(self.refresh_debounce, self._on_refresh_timer)

    def _on_refresh_timer(self) -> None:
        self._refresh_handle = None
        self._refresh_task = asyncio.create_task(self._process_refresh_queue())

    async def _process_refresh_queue(self) -> None:
        logger.debug(f"Fetch timeout reached, processing fetch queue of {len(self._refresh_queue)} fetch id(s)...")
        for kind in list(self._refresh_queue):
            try:
                data = await self.fetch(kind)
                self._merge(kind, data)
            except HassBridgeError as e:
                logger.error(f"Error fetching {kind}: {e}")
            if kind in self._refresh_queue:
                self._refresh_queue.remove(kind)

    # ------------------------------------------------------------------
    # Core state
    # ------------------------------------------------------------------

    @property
    def http_url(self) -> str:
        return self.url.replace("ws://", "http://", 1).replace("wss://", "https://", 1)

    async def wait_for_running(self, timeout: float = 110.0, interval: float = 1.0) -> bool:
        """
        Poll ``/api/core/state`` until Home Assistant reports RUNNING.

        Returns:
            True once RUNNING, False on timeout
        """
        url = f"{self.http_url}/api/core/state"
        headers = {"Authorization": f"Bearer {self.access_token}"}
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        ssl_option = False if not self.session.config.reject_unauthorized else True

        logger.debug(f"Fetching {url}...")
        async with aiohttp.ClientSession() as http:
            while loop.time() < deadline:
                try:
                    async with http.get(url, headers=headers, ssl=ssl_option) as response:
                        if response.status == 200:
                            core_state = await response.json(content_type=None)
                            logger.debug(f"Core state is: {core_state}")
                            if core_state.get("state") == "RUNNING":
                                logger.info("Home Assistant core is RUNNING")
                                return True
                except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                    logger.debug(f"Home Assistant core is not RUNNING: {e}")
                await asyncio.sleep(interval)
        return False
