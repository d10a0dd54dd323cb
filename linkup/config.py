"""Runtime settings and start-up wiring for the presence tracker."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional, Sequence

from linkup.host import AdapterHost, BluetoothctlAdapterHost
from linkup.metrics import MetricsLogger
from linkup.sources import BleakEventSource, EventSource, SourceConfig
from linkup.tracker import DevicePresenceTracker


def _split(raw: Optional[str]) -> Optional[tuple[str, ...]]:
    if not raw:
        return None
    items = tuple(part.strip() for part in raw.split(",") if part.strip())
    return items or None


@dataclass(slots=True)
class TrackerSettings:
    """Configuration bundle consumed by :func:`build_tracker`."""

    adapter: Optional[str] = None
    metrics_log: Optional[Path] = None
    history_limit: Optional[int] = 500
    stale_after: Optional[float] = None
    service_uuids: Sequence[str] | None = None
    addresses: Sequence[str] | None = None
    names: Sequence[str] | None = None
    scanning_mode: Optional[str] = None
    initial_adapter_enabled: Optional[bool] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.history_limit is not None and self.history_limit <= 0:
            raise ValueError("history_limit must be positive when provided")
        if self.stale_after is not None and self.stale_after <= 0:
            raise ValueError("stale_after must be positive when provided")
        if self.metrics_log is not None:
            self.metrics_log = Path(self.metrics_log)

    @property
    def stale_after_delta(self) -> Optional[timedelta]:
        if self.stale_after is None:
            return None
        return timedelta(seconds=self.stale_after)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "TrackerSettings":
        env = os.environ if environ is None else environ
        history = env.get("LINKUP_HISTORY_LIMIT")
        stale = env.get("LINKUP_STALE_AFTER")
        metrics_log = env.get("LINKUP_METRICS_LOG")
        return cls(
            adapter=env.get("LINKUP_SCAN_ADAPTER") or None,
            metrics_log=Path(metrics_log) if metrics_log else None,
            history_limit=int(history) if history else 500,
            stale_after=float(stale) if stale else None,
            service_uuids=_split(env.get("LINKUP_SERVICE_UUIDS")),
            addresses=_split(env.get("LINKUP_ADDRESSES")),
            names=_split(env.get("LINKUP_NAMES")),
            scanning_mode=env.get("LINKUP_SCANNING_MODE") or None,
        )

    def source_config(self) -> SourceConfig:
        return SourceConfig(
            service_uuids=self.service_uuids,
            address_allowlist=self.addresses,
            name_allowlist=self.names,
            adapter=self.adapter,
            scanning_mode=self.scanning_mode,
        )


def build_tracker(
    settings: TrackerSettings | None = None,
    *,
    source: EventSource | None = None,
    host: AdapterHost | None = None,
) -> DevicePresenceTracker:
    """Construct the process-wide tracker once, at start-up."""
    settings = settings or TrackerSettings()
    metrics = None
    if settings.metrics_log is not None:
        metrics = MetricsLogger(settings.metrics_log, static_extra=settings.metadata)
    return DevicePresenceTracker(
        source if source is not None else BleakEventSource(settings.source_config()),
        host=host if host is not None else BluetoothctlAdapterHost(),
        adapter_enabled=settings.initial_adapter_enabled,
        metrics=metrics,
        history_limit=settings.history_limit,
    )


__all__ = ["TrackerSettings", "build_tracker"]
