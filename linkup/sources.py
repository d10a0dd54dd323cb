"""Event sources feeding the presence tracker."""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, TYPE_CHECKING, TypeAlias

from bleak import BleakScanner
from bleak.exc import BleakError

from linkup.errors import SourceNotSubscribedError
from linkup.events import AdapterStateChanged, DeviceFound

logger = logging.getLogger(__name__)

if TYPE_CHECKING:  # pragma: no cover - typing helper only
	from bleak.backends.device import BLEDevice as _BLEDevice
	from bleak.backends.scanner import AdvertisementData as _AdvertisementData
else:
	_BLEDevice = Any
	_AdvertisementData = Any

BLEDevice: TypeAlias = _BLEDevice
AdvertisementData: TypeAlias = _AdvertisementData
EventSink = Callable[[Any], None]


class EventSource(Protocol):
	"""Anything the tracker can attach a sink to."""

	def subscribe(self, sink: EventSink) -> None: ...

	def unsubscribe(self, sink: EventSink) -> None: ...


class QueueEventSource:
	"""In-process source that fans events out to subscribed sinks in order."""

	def __init__(self) -> None:
		self._sinks: List[EventSink] = []
		self._lock = threading.RLock()

	@property
	def subscribed(self) -> bool:
		return bool(self._sinks)

	def subscribe(self, sink: EventSink) -> None:
		with self._lock:
			if sink in self._sinks:
				return
			self._sinks.append(sink)
			first = len(self._sinks) == 1
		if first:
			try:
				self._on_first_subscriber()
			except Exception:
				with self._lock:
					self._sinks.remove(sink)
				raise

	def unsubscribe(self, sink: EventSink) -> None:
		with self._lock:
			if sink not in self._sinks:
				raise SourceNotSubscribedError(sink)
			self._sinks.remove(sink)
			last = not self._sinks
		if last:
			self._on_last_unsubscribed()

	def emit(self, event: Any) -> None:
		with self._lock:
			sinks = list(self._sinks)
			for sink in sinks:
				try:
					sink(event)
				except Exception:
					logger.exception("event sink raised for %r", event)

	def _on_first_subscriber(self) -> None:
		pass

	def _on_last_unsubscribed(self) -> None:
		pass


@dataclass(slots=True)
class SourceConfig:
	"""Filters and scanner options used by :class:`BleakEventSource`."""

	service_uuids: Sequence[str] | None = None
	address_allowlist: Sequence[str] | None = None
	name_allowlist: Sequence[str] | None = None
	adapter: Optional[str] = None
	scanning_mode: Optional[str] = None
	report_adapter: bool = True
	detection_kwargs: Dict[str, Any] = field(default_factory=dict)
	_address_index: Optional[frozenset[str]] = field(init=False, repr=False, default=None)
	_name_index: Optional[tuple[str, ...]] = field(init=False, repr=False, default=None)
	_service_index: Optional[frozenset[str]] = field(init=False, repr=False, default=None)

	def __post_init__(self) -> None:
		if self.scanning_mode not in (None, "active", "passive"):
			raise ValueError("scanning_mode must be 'active' or 'passive'")
		if self.address_allowlist:
			self._address_index = frozenset(addr.lower() for addr in self.address_allowlist)
		if self.name_allowlist:
			self._name_index = tuple(self.name_allowlist)
		if self.service_uuids:
			self._service_index = frozenset(uuid.lower() for uuid in self.service_uuids)

	def allows(self, device: BLEDevice, advertisement: AdvertisementData | None) -> bool:
		if self._address_index and device.address.lower() not in self._address_index:
			return False

		if self._name_index and observed_name(device, advertisement) not in self._name_index:
			return False

		if self._service_index:
			observed: set[str] = set()
			if advertisement is not None and advertisement.service_uuids:
				observed.update(uuid.lower() for uuid in advertisement.service_uuids)
			if not observed.issuperset(self._service_index):
				return False

		return True

	def bleak_kwargs(self) -> Dict[str, Any]:
		kwargs = dict(self.detection_kwargs)
		if self.service_uuids and "service_uuids" not in kwargs:
			kwargs["service_uuids"] = list(self.service_uuids)
		if self.adapter and "adapter" not in kwargs:
			kwargs["adapter"] = self.adapter
		if self.scanning_mode and "scanning_mode" not in kwargs:
			kwargs["scanning_mode"] = self.scanning_mode
		return kwargs


def observed_name(device: BLEDevice, advertisement: AdvertisementData | None) -> Optional[str]:
	if advertisement is not None and getattr(advertisement, "local_name", None):
		return advertisement.local_name
	return getattr(device, "name", None) or None


class BleakEventSource(QueueEventSource):
	"""Scans with :class:`bleak.BleakScanner` while at least one sink is attached.

	Scanning runs as a task on the event loop that was running when the first
	sink subscribed, so ``subscribe`` must be called from inside that loop.
	``unsubscribe`` may come from any thread. A scan started right after a
	stop waits for the previous scanner to shut down first.
	"""

	def __init__(self, config: SourceConfig | None = None) -> None:
		super().__init__()
		self.config = config or SourceConfig()
		self._task: Optional[asyncio.Task[None]] = None
		self._stop_event: Optional[asyncio.Event] = None
		self._loop: Optional[asyncio.AbstractEventLoop] = None

	@property
	def scanning(self) -> bool:
		return self._task is not None and not self._task.done()

	def _on_first_subscriber(self) -> None:
		loop = asyncio.get_running_loop()
		previous = self._task
		if previous is not None and (previous.done() or previous.get_loop() is not loop):
			previous = None
		self._loop = loop
		self._stop_event = asyncio.Event()
		self._task = loop.create_task(self._run(self._stop_event, previous))

	def _on_last_unsubscribed(self) -> None:
		stop_event, loop = self._stop_event, self._loop
		if stop_event is None or loop is None or loop.is_closed():
			return
		try:
			running: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
		except RuntimeError:
			running = None
		if running is loop:
			stop_event.set()
		else:
			loop.call_soon_threadsafe(stop_event.set)

	async def wait_closed(self) -> None:
		if self._task is not None:
			await self._task

	async def _run(self, stop_event: asyncio.Event, previous: Optional[asyncio.Task[None]] = None) -> None:
		if previous is not None:
			await asyncio.wait({previous})
		if stop_event.is_set():
			return
		scanner = BleakScanner(detection_callback=self._on_detection, **self.config.bleak_kwargs())
		try:
			async with scanner:
				if self.config.report_adapter:
					self.emit(AdapterStateChanged(True))
				await stop_event.wait()
		except BleakError as exc:
			if not is_powered_off_error(exc):
				logger.warning("BLE scan could not run: %s", exc)
				return
			logger.warning("BLE adapter is off: %s", exc)
			if self.config.report_adapter:
				self.emit(AdapterStateChanged(False))
		except Exception:
			logger.exception("BLE scan failed")

	def _on_detection(self, device: BLEDevice, advertisement: AdvertisementData | None) -> None:
		if not self.config.allows(device, advertisement):
			return
		self.emit(DeviceFound(device.address, observed_name(device, advertisement)))


_POWERED_OFF_MARKERS = ("turned off", "powered off", "not powered", "notready", "not ready")


def is_powered_off_error(exc: BaseException) -> bool:
	"""Whether a bleak failure means the radio itself is off.

	Busy adapters, permission problems and missing backends say nothing about
	adapter power and return ``False``.
	"""
	reason = getattr(exc, "reason", None)
	if reason is not None and "POWERED_OFF" in str(getattr(reason, "name", reason)).upper():
		return True
	message = str(exc).lower()
	return any(marker in message for marker in _POWERED_OFF_MARKERS)


__all__ = [
	"EventSink",
	"EventSource",
	"QueueEventSource",
	"SourceConfig",
	"BleakEventSource",
	"is_powered_off_error",
	"observed_name",
]
