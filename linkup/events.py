"""Platform events consumed by the presence tracker."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union


def _utc_now() -> datetime:
	return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
	"""Return ``dt`` in UTC; naive values are taken to be UTC already."""
	if dt.tzinfo is None:
		return dt.replace(tzinfo=timezone.utc)
	return dt.astimezone(timezone.utc)


def _normalize_timestamp(event: Any) -> None:
	object.__setattr__(event, "timestamp", as_utc(event.timestamp))


@dataclass(frozen=True, slots=True)
class AdapterStateChanged:
	"""The local radio was switched on or off."""

	is_on: bool
	timestamp: datetime = field(default_factory=_utc_now)

	def __post_init__(self) -> None:
		_normalize_timestamp(self)


@dataclass(frozen=True, slots=True)
class DeviceFound:
	"""A remote device advertised its presence."""

	address: str
	name: Optional[str] = None
	timestamp: datetime = field(default_factory=_utc_now)

	def __post_init__(self) -> None:
		_normalize_timestamp(self)


@dataclass(frozen=True, slots=True)
class LinkConnected:
	address: str
	timestamp: datetime = field(default_factory=_utc_now)

	def __post_init__(self) -> None:
		_normalize_timestamp(self)


@dataclass(frozen=True, slots=True)
class LinkDisconnected:
	address: str
	timestamp: datetime = field(default_factory=_utc_now)

	def __post_init__(self) -> None:
		_normalize_timestamp(self)


@dataclass(frozen=True, slots=True)
class AdapterConnectionStateChanged:
	"""Adapter-level connection state notice.

	Sources may forward it, but the tracker keeps no state for it.
	"""

	state: int
	timestamp: datetime = field(default_factory=_utc_now)

	def __post_init__(self) -> None:
		_normalize_timestamp(self)


PresenceEvent = Union[AdapterStateChanged, DeviceFound, LinkConnected, LinkDisconnected]

_KINDS = {
	AdapterStateChanged: "adapter_state_changed",
	DeviceFound: "device_found",
	LinkConnected: "link_connected",
	LinkDisconnected: "link_disconnected",
	AdapterConnectionStateChanged: "adapter_connection_state_changed",
}


def event_kind(event: Any) -> str:
	return _KINDS.get(type(event), "unknown")


def event_to_dict(event: Any) -> Dict[str, Any]:
	payload: Dict[str, Any] = {"kind": event_kind(event)}
	for name in ("is_on", "address", "name", "state"):
		if hasattr(event, name):
			payload[name] = getattr(event, name)
	timestamp = getattr(event, "timestamp", None)
	if isinstance(timestamp, datetime):
		payload["timestamp"] = timestamp.isoformat()
	return payload


__all__ = [
	"as_utc",
	"AdapterStateChanged",
	"DeviceFound",
	"LinkConnected",
	"LinkDisconnected",
	"AdapterConnectionStateChanged",
	"PresenceEvent",
	"event_kind",
	"event_to_dict",
]
