from __future__ import annotations
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class NotificationSystem:
    """Announces presence changes observed by the tracker.

    Every notice goes through :mod:`logging`; subclass and override the
    ``notify_*`` hooks to route them to a UI or an external alert channel.
    """

    def notify_discovered(self, address: str, name: Optional[str] = None) -> None:
        logger.info("[*] Device Found: %s (%s)", name or "Unknown", address)

    def notify_presence(self, address: str) -> None:
        """Notify that a link to the device is up."""
        logger.info("[+] Device Connected: %s", address)

    def notify_disconnection(self, address: str) -> None:
        """Notify that the link to the device was lost."""
        logger.info("[-] Device Disconnected: %s", address)

    def notify_adapter(self, enabled: bool) -> None:
        logger.info("[~] Adapter %s", "enabled" if enabled else "disabled")

    def notify_failure(self, message: str) -> None:
        """Notify a recovered failure (unregister, host request, etc.)."""
        logger.warning("NOTIFY FAILURE: %s", message)
