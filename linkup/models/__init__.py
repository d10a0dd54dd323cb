"""State records kept and published by the presence tracker."""
from .discovered_device import DiscoveredDevice
from .presence_snapshot import PresenceSnapshot
from .connection_record import ConnectionRecord
from .connection_history import ConnectionHistory
from .notification_system import NotificationSystem

__all__ = [
    "DiscoveredDevice",
    "PresenceSnapshot",
    "ConnectionRecord",
    "ConnectionHistory",
    "NotificationSystem",
]
