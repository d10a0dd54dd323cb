from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class DiscoveredDevice:
    """A remote device seen advertising.

    ``first_seen_at`` holds the time of the most recent discovery event for
    the address; rediscovery replaces the record.
    """
    address: str
    first_seen_at: datetime
    display_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "display_name": self.display_name,
            "first_seen_at": self.first_seen_at.isoformat(),
        }
