"""
Home Assistant registry and state models.

Registry snapshots arrive as loosely typed JSON. Each model validates the
fields the bridge relies on, keeps everything else (``extra="allow"``) and
offers typed accessors for the long tail of optional attributes.
"""

import re
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

NUMERIC_STATE = re.compile(r"^-?\d+(\.\d+)?$")


class HubModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class HubDevice(HubModel):
    """A device from ``config/device_registry/list``."""
    id: str
    name: Optional[str] = None
    name_by_user: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    via_device_id: Optional[str] = None
    area_id: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    disabled_by: Optional[str] = None
    entry_type: Optional[str] = None

    @property
    def display_name(self) -> Optional[str]:
        return self.name_by_user or self.name

    @property
    def is_service(self) -> bool:
        return self.entry_type == "service"


class HubEntity(HubModel):
    """An entity from ``config/entity_registry/list``."""
    entity_id: str
    id: str = ""
    device_id: Optional[str] = None
    name: Optional[str] = None
    original_name: Optional[str] = None
    platform: Optional[str] = None
    area_id: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    disabled_by: Optional[str] = None

    @property
    def domain(self) -> str:
        return self.entity_id.split(".", 1)[0]

    @property
    def object_id(self) -> str:
        parts = self.entity_id.split(".", 1)
        return parts[1] if len(parts) > 1 else ""

    @property
    def display_name(self) -> Optional[str]:
        return self.name or self.original_name


class HubState(HubModel):
    """
    Current state of one entity.

    Replaced wholesale on every push or refresh, never patched.
    """
    entity_id: str
    state: str = ""
    attributes: Dict[str, Any] = Field(default_factory=dict)
    last_changed: Optional[str] = None
    last_updated: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    def attr(self, key: str, default: Any = None) -> Any:
        value = self.attributes.get(key)
        return default if value is None else value

    @property
    def domain(self) -> str:
        return self.entity_id.split(".", 1)[0]

    @property
    def friendly_name(self) -> Optional[str]:
        value = self.attributes.get("friendly_name")
        return value if isinstance(value, str) and value else None

    @property
    def device_class(self) -> Optional[str]:
        return self.attributes.get("device_class")

    @property
    def state_class(self) -> Optional[str]:
        return self.attributes.get("state_class")

    @property
    def unit_of_measurement(self) -> Optional[str]:
        return self.attributes.get("unit_of_measurement")

    @property
    def color_mode(self) -> Optional[str]:
        return self.attributes.get("color_mode")

    @property
    def supported_color_modes(self) -> List[str]:
        modes = self.attributes.get("supported_color_modes")
        return list(modes) if isinstance(modes, (list, tuple)) else []

    @property
    def hvac_modes(self) -> List[str]:
        modes = self.attributes.get("hvac_modes")
        return list(modes) if isinstance(modes, (list, tuple)) else []

    @property
    def numeric_state(self) -> Union[float, str]:
        """The state as a float when it looks like a number ("23.5", "-1")."""
        if NUMERIC_STATE.match(self.state):
            return float(self.state)
        return self.state

    def with_attributes(self, **attributes: Any) -> "HubState":
        """A copy of this state with some attributes overridden."""
        merged = dict(self.attributes)
        merged.update(attributes)
        return self.model_copy(update={"attributes": merged})


class HubArea(HubModel):
    area_id: str
    name: str = ""


class HubLabel(HubModel):
    label_id: str
    name: str = ""


class HubCoreConfig(HubModel):
    """Result of ``get_config``."""
    version: Optional[str] = None
    location_name: Optional[str] = None
    unit_system: Dict[str, Any] = Field(default_factory=dict)
    time_zone: Optional[str] = None
    state: Optional[str] = None
