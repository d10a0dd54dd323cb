from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict


@dataclass(frozen=True)
class ConnectionRecord:
    """Represents a single link connection or disconnection."""
    address: str
    timestamp: datetime
    status: str  # 'connected' | 'disconnected'

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status,
        }
