"""Device presence tracker.

Mirrors adapter power, link state and discovery events into three
observable containers:

* ``adapter_state``: ``None`` until the first adapter event, then a bool.
* ``connection_state``: address -> connected flag, one entry per address
  that has seen a link event.
* ``discovery_state``: address -> :class:`DiscoveredDevice`, refreshed on
  every rediscovery.

``presence_state`` carries a :class:`PresenceSnapshot` of all three and is
republished after each of their mutations.

Mutations are serialized by a per-tracker lock, so sources may deliver from
any thread.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from linkup.events import (
    AdapterStateChanged,
    DeviceFound,
    LinkConnected,
    LinkDisconnected,
    as_utc,
    event_kind,
    event_to_dict,
)
from linkup.host import AdapterHost
from linkup.metrics import MetricsLogger
from linkup.models import (
    ConnectionHistory,
    ConnectionRecord,
    DiscoveredDevice,
    NotificationSystem,
    PresenceSnapshot,
)
from linkup.observable import ObservableState
from linkup.sources import EventSource

logger = logging.getLogger(__name__)


class DevicePresenceTracker:
    """Maintain adapter, link and discovery state from platform events."""

    def __init__(
        self,
        source: EventSource,
        *,
        host: Optional[AdapterHost] = None,
        adapter_enabled: Optional[bool] = None,
        metrics: Optional[MetricsLogger] = None,
        notifier: Optional[NotificationSystem] = None,
        history_limit: Optional[int] = 500,
    ) -> None:
        self.source = source
        self.host = host
        self.metrics = metrics
        self.notifier = notifier or NotificationSystem()
        self.history = ConnectionHistory(history_limit)

        self.adapter_state: ObservableState[Optional[bool]] = ObservableState(
            adapter_enabled, name="adapter_enabled"
        )
        self.connection_state: ObservableState[Mapping[str, bool]] = ObservableState(
            MappingProxyType({}), name="connection_status"
        )
        self.discovery_state: ObservableState[Mapping[str, DiscoveredDevice]] = ObservableState(
            MappingProxyType({}), name="discovered_devices"
        )
        # Combined view, republished after every mutation of the three above.
        self.presence_state: ObservableState[PresenceSnapshot] = ObservableState(
            PresenceSnapshot(adapter_enabled=adapter_enabled), name="presence"
        )

        self._connections: Dict[str, bool] = {}
        self._discovered: Dict[str, DiscoveredDevice] = {}
        self._lock = threading.RLock()
        self._lifecycle = threading.Lock()
        self._started = False

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------
    @property
    def started(self) -> bool:
        return self._started

    @property
    def adapter_enabled(self) -> Optional[bool]:
        return self.adapter_state.value

    @property
    def connection_status_by_address(self) -> Mapping[str, bool]:
        return self.connection_state.value

    @property
    def discovered_devices(self) -> List[DiscoveredDevice]:
        return list(self.discovery_state.value.values())

    def snapshot(self) -> PresenceSnapshot:
        with self._lock:
            return PresenceSnapshot(
                adapter_enabled=self.adapter_enabled,
                connection_status_by_address=self.connection_status_by_address,
                discovered_devices=tuple(self.discovered_devices),
            )

    def _publish(self) -> None:
        self.presence_state.set(self.snapshot())

    def connection_history(self, address: Optional[str] = None) -> List[ConnectionRecord]:
        with self._lock:
            if address is None:
                return list(self.history.history)
            return self.history.for_address(address)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        with self._lifecycle:
            if self._started:
                return
            try:
                self.source.subscribe(self.on_event)
            except Exception as exc:
                logger.warning("Could not subscribe to event source: %s", exc)
                self.notifier.notify_failure(f"subscribe failed: {exc}")
                self._log("tracker_start", status="error", message=str(exc))
                return
            self._started = True
        logger.debug("presence tracker started")
        self._log("tracker_start", status="ok")

    def stop(self) -> None:
        with self._lifecycle:
            was_started = self._started
            self._started = False
            try:
                self.source.unsubscribe(self.on_event)
            except Exception as exc:
                logger.warning("Ignoring unsubscribe failure: %s", exc)
            finally:
                self._release_host()
        if was_started:
            logger.debug("presence tracker stopped")
            self._log("tracker_stop", status="ok")

    def _release_host(self) -> None:
        if self.host is None:
            return
        try:
            self.host.release()
        except Exception as exc:
            logger.warning("Adapter host release failed: %s", exc)

    def reset(self) -> None:
        """Forget every discovered device."""
        with self._lock:
            self._discovered.clear()
            self.discovery_state.set(MappingProxyType({}))
            self._publish()
        self._log("tracker_reset", status="ok")

    def forget_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> List[str]:
        """Drop discoveries last seen more than ``max_age`` ago.

        Returns the evicted addresses. Nothing calls this implicitly. A naive
        ``now`` is read as UTC, like event timestamps.
        """
        cutoff = as_utc(now or datetime.now(timezone.utc)) - max_age
        with self._lock:
            stale = [
                address
                for address, device in self._discovered.items()
                if device.first_seen_at < cutoff
            ]
            if not stale:
                return []
            for address in stale:
                del self._discovered[address]
            self.discovery_state.set(MappingProxyType(dict(self._discovered)))
            self._publish()
        self._log("discovery_evicted", value=float(len(stale)), extra={"addresses": stale})
        return stale

    # ------------------------------------------------------------------
    # Event dispatch
    # ------------------------------------------------------------------
    def on_event(self, event: Any) -> None:
        with self._lock:
            if isinstance(event, AdapterStateChanged):
                self._apply_adapter(event)
            elif isinstance(event, DeviceFound):
                self._apply_found(event)
            elif isinstance(event, LinkConnected):
                self._apply_link(event, True)
            elif isinstance(event, LinkDisconnected):
                self._apply_link(event, False)
            else:
                logger.debug("ignoring %s event", event_kind(event))
                return
            self._publish()

    def _apply_adapter(self, event: AdapterStateChanged) -> None:
        enabled = bool(event.is_on)
        if self.adapter_state.set(enabled):
            self.notifier.notify_adapter(enabled)
        self._log("adapter_state", status="on" if enabled else "off", extra=event_to_dict(event))

    def _apply_found(self, event: DeviceFound) -> None:
        known = event.address in self._discovered
        self._discovered[event.address] = DiscoveredDevice(
            address=event.address,
            first_seen_at=event.timestamp,
            display_name=event.name,
        )
        self.discovery_state.set(MappingProxyType(dict(self._discovered)))
        if not known:
            self.notifier.notify_discovered(event.address, event.name)
        self._log(
            "device_found",
            address=event.address,
            status="refreshed" if known else "new",
            extra=event_to_dict(event),
        )

    def _apply_link(self, event: Any, connected: bool) -> None:
        address, timestamp = event.address, event.timestamp
        previous = self._connections.get(address)
        self._connections[address] = connected
        self.connection_state.set(MappingProxyType(dict(self._connections)))
        if previous != connected:
            if connected:
                self.history.log_connection(address, timestamp)
                self.notifier.notify_presence(address)
            else:
                self.history.log_disconnection(address, timestamp)
                self.notifier.notify_disconnection(address)
        self._log(
            "link_state",
            address=address,
            status="connected" if connected else "disconnected",
            extra=event_to_dict(event),
        )

    # ------------------------------------------------------------------
    # Host requests
    # ------------------------------------------------------------------
    def request_adapter_enable(self) -> None:
        """Ask the host to prompt for the adapter; the outcome arrives later."""
        if self.host is None:
            logger.warning("No adapter host configured; cannot request enable")
            self._log("adapter_enable_request", status="unavailable")
            return
        try:
            self.host.request_enable(self._on_enable_result)
        except Exception as exc:
            logger.warning("Adapter enable request failed: %s", exc)
            self.notifier.notify_failure(f"adapter enable request failed: {exc}")
            self._log("adapter_enable_request", status="error", message=str(exc))
            return
        self._log("adapter_enable_request", status="sent")

    def _on_enable_result(self, accepted: bool) -> None:
        self._log("adapter_enable_result", status="accepted" if accepted else "declined")
        if not accepted or self.host is None:
            return
        # The prompt can hide adapter broadcasts, so read the state back directly.
        try:
            enabled = self.host.is_enabled()
        except Exception as exc:
            logger.warning("Could not read adapter state after enable: %s", exc)
            return
        self.on_event(AdapterStateChanged(enabled))

    # ------------------------------------------------------------------
    # Metrics helper
    # ------------------------------------------------------------------
    def _log(self, event: str, **kwargs: Any) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.log(event, **kwargs)
        except Exception:  # pragma: no cover - logging must not break tracking
            logger.debug("Metrics logging failed for %s", event, exc_info=True)


__all__ = ["DevicePresenceTracker"]
