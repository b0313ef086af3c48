"""
mDNS/DNS-SD discovery of Home Assistant instances.

Home Assistant advertises ``_home-assistant._tcp.local.`` with its URLs,
version and location name in the TXT record.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from zeroconf import ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_home-assistant._tcp.local."


@dataclass
class DiscoveredInstance:
    """A Home Assistant instance found on the local network."""
    name: str
    host: str
    port: int
    base_url: Optional[str] = None
    internal_url: Optional[str] = None
    version: Optional[str] = None
    location_name: Optional[str] = None
    uuid: Optional[str] = None

    @property
    def url(self) -> str:
        return self.internal_url or self.base_url or f"http://{self.host}:{self.port}"

    @property
    def ws_url(self) -> str:
        url = self.url.rstrip("/")
        if url.startswith("https://"):
            return "wss://" + url[len("https://"):]
        if url.startswith("http://"):
            return "ws://" + url[len("http://"):]
        return url

    @classmethod
    def from_properties(cls, name: str, host: str, port: int, properties: Dict[bytes, Optional[bytes]]) -> "DiscoveredInstance":
        def prop(key: str) -> Optional[str]:
            value = properties.get(key.encode())
            return value.decode() if value else None

        return cls(
            name=name.replace(f".{SERVICE_TYPE}", ""),
            host=host,
            port=port,
            base_url=prop("base_url"),
            internal_url=prop("internal_url"),
            version=prop("version"),
            location_name=prop("location_name"),
            uuid=prop("uuid"),
        )


class HassDiscovery:
    """
    Browses the local network for Home Assistant.

    Usage:
        discovery = HassDiscovery()
        discovery.on_instance_found = lambda i: print(i.ws_url)
        await discovery.start()
        ...
        await discovery.stop()
    """

    def __init__(self):
        self._zeroconf: Optional[AsyncZeroconf] = None
        self._browser: Optional[AsyncServiceBrowser] = None
        self._instances: Dict[str, DiscoveredInstance] = {}
        self._tasks: set = set()

        # Callbacks
        self.on_instance_found: Optional[Callable[[DiscoveredInstance], None]] = None
        self.on_instance_lost: Optional[Callable[[str], None]] = None

    async def start(self) -> bool:
        """
        Start browsing.

        Returns:
            True if started successfully
        """
        try:
            self._zeroconf = AsyncZeroconf()
            self._browser = AsyncServiceBrowser(
                self._zeroconf.zeroconf,
                SERVICE_TYPE,
                handlers=[self._on_service_state_change],
            )
            logger.info("Home Assistant discovery started")
            return True
        except OSError as e:
            logger.error(f"Failed to start mDNS discovery: {e}")
            return False

    async def stop(self) -> None:
        """Stop browsing."""
        if self._browser:
            await self._browser.async_cancel()
            self._browser = None

        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

        if self._zeroconf:
            await self._zeroconf.async_close()
            self._zeroconf = None

        logger.info("Home Assistant discovery stopped")

    async def discover(self, timeout: float = 3.0) -> List[DiscoveredInstance]:
        """Browse for ``timeout`` seconds and return what was found."""
        if not await self.start():
            return []
        try:
            await asyncio.sleep(timeout)
        finally:
            await self.stop()
        return self.instances

    def _on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        """Handle service state changes."""
        if state_change in (ServiceStateChange.Added, ServiceStateChange.Updated):
            task = asyncio.ensure_future(self._handle_service_added(zeroconf, service_type, name))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        elif state_change == ServiceStateChange.Removed:
            self._handle_service_removed(name)

    async def _handle_service_added(self, zeroconf: Zeroconf, service_type: str, name: str) -> None:
        """Resolve a newly discovered service."""
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(zeroconf, 3000):
            return

        addresses = info.parsed_addresses()
        host = addresses[0] if addresses else (info.server or "").rstrip(".")
        instance = DiscoveredInstance.from_properties(name, host, info.port or 8123, info.properties or {})

        self._instances[name] = instance
        logger.info(f"Discovered Home Assistant {instance.location_name or instance.name} at {instance.url}")

        if self.on_instance_found:
            self.on_instance_found(instance)

    def _handle_service_removed(self, name: str) -> None:
        instance = self._instances.pop(name, None)
        if instance is None:
            return
        logger.info(f"Home Assistant instance left: {instance.name}")
        if self.on_instance_lost:
            self.on_instance_lost(name)

    @property
    def instances(self) -> List[DiscoveredInstance]:
        """Get list of discovered instances."""
        return list(self._instances.values())
