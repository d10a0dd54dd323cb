from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .discovered_device import DiscoveredDevice


@dataclass(frozen=True)
class PresenceSnapshot:
    """Point-in-time copy of everything the tracker knows.

    ``adapter_enabled`` is ``None`` until the first adapter event arrives.
    """
    adapter_enabled: Optional[bool] = None
    connection_status_by_address: Mapping[str, bool] = field(
        default_factory=lambda: MappingProxyType({})
    )
    discovered_devices: Tuple[DiscoveredDevice, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "adapter_enabled": self.adapter_enabled,
            "connection_status_by_address": dict(self.connection_status_by_address),
            "discovered_devices": [device.to_dict() for device in self.discovered_devices],
        }
