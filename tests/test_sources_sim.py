"""Simulation tests for event sources."""
from __future__ import annotations

import asyncio
import threading
from types import SimpleNamespace
from typing import Any, List, Optional, Tuple
from unittest import IsolatedAsyncioTestCase, TestCase
from unittest.mock import patch

from bleak.exc import BleakError

from linkup.errors import SourceNotSubscribedError
from linkup.events import AdapterStateChanged, DeviceFound
from linkup.sources import BleakEventSource, QueueEventSource, SourceConfig, is_powered_off_error
from linkup.tracker import DevicePresenceTracker


def _adv(**overrides: Any) -> SimpleNamespace:
	payload = dict(local_name=None, service_uuids=[], rssi=-60)
	payload.update(overrides)
	return SimpleNamespace(**payload)


class FakeBleakScanner:
	"""Async context manager that replays predetermined advertisements."""

	events: List[Tuple[Any, Any]] = []
	fail_with: Optional[Exception] = None
	instances: List["FakeBleakScanner"] = []
	exit_delay = 0.0
	running_now = 0
	peak_running = 0

	def __init__(self, detection_callback=None, **kwargs: Any) -> None:
		self._callback = detection_callback
		self.kwargs = kwargs
		self.running = False
		self._task: Optional[asyncio.Task[None]] = None
		FakeBleakScanner.instances.append(self)

	async def __aenter__(self):
		if self.fail_with is not None:
			raise self.fail_with
		self.running = True
		FakeBleakScanner.running_now += 1
		FakeBleakScanner.peak_running = max(FakeBleakScanner.peak_running, FakeBleakScanner.running_now)
		self._task = asyncio.create_task(self._emit())
		return self

	async def __aexit__(self, exc_type, exc, tb):
		if self._task:
			await self._task
		await asyncio.sleep(self.exit_delay)
		FakeBleakScanner.running_now -= 1
		self.running = False
		return False

	async def _emit(self) -> None:
		await asyncio.sleep(0)
		for device, advertisement in list(self.events):
			self._callback(device, advertisement)


class QueueEventSourceTest(TestCase):
	def test_emit_reaches_all_sinks_in_order(self) -> None:
		source = QueueEventSource()
		seen: List[Tuple[str, Any]] = []
		first = lambda event: seen.append(("first", event))
		second = lambda event: seen.append(("second", event))
		source.subscribe(first)
		source.subscribe(second)
		source.emit("x")
		self.assertEqual(seen, [("first", "x"), ("second", "x")])

	def test_unsubscribe_unknown_sink_raises(self) -> None:
		source = QueueEventSource()
		with self.assertRaises(SourceNotSubscribedError):
			source.unsubscribe(print)

	def test_failing_sink_does_not_block_others(self) -> None:
		source = QueueEventSource()
		seen: List[Any] = []

		def _boom(_: Any) -> None:
			raise ValueError("bad sink")

		source.subscribe(_boom)
		source.subscribe(seen.append)
		with self.assertLogs("linkup.sources", level="ERROR"):
			source.emit(1)
		self.assertEqual(seen, [1])


class SourceConfigTest(TestCase):
	def test_address_allowlist_is_case_insensitive(self) -> None:
		config = SourceConfig(address_allowlist=["aa:bb"])
		self.assertTrue(config.allows(SimpleNamespace(address="AA:BB", name=None), None))
		self.assertFalse(config.allows(SimpleNamespace(address="CC:DD", name=None), None))

	def test_name_allowlist_prefers_local_name(self) -> None:
		config = SourceConfig(name_allowlist=["Phone1"])
		device = SimpleNamespace(address="AA:BB", name="Other")
		self.assertTrue(config.allows(device, _adv(local_name="Phone1")))
		self.assertFalse(config.allows(device, _adv()))

	def test_service_filter_requires_all_uuids(self) -> None:
		config = SourceConfig(service_uuids=["ABCD", "1234"])
		device = SimpleNamespace(address="AA:BB", name=None)
		self.assertTrue(config.allows(device, _adv(service_uuids=["abcd", "1234", "ffff"])))
		self.assertFalse(config.allows(device, _adv(service_uuids=["abcd"])))

	def test_bleak_kwargs(self) -> None:
		config = SourceConfig(service_uuids=["abcd"], adapter="hci1", scanning_mode="passive")
		self.assertEqual(
			config.bleak_kwargs(),
			{"service_uuids": ["abcd"], "adapter": "hci1", "scanning_mode": "passive"},
		)

	def test_rejects_unknown_scanning_mode(self) -> None:
		with self.assertRaises(ValueError):
			SourceConfig(scanning_mode="loud")


class BleakEventSourceSimulationTest(IsolatedAsyncioTestCase):
	def setUp(self) -> None:
		FakeBleakScanner.events = []
		FakeBleakScanner.fail_with = None
		FakeBleakScanner.instances = []
		FakeBleakScanner.exit_delay = 0.0
		FakeBleakScanner.running_now = 0
		FakeBleakScanner.peak_running = 0

	async def test_advertisements_become_device_found_events(self) -> None:
		FakeBleakScanner.events = [
			(SimpleNamespace(address="AA:BB", name="Phone1"), _adv()),
			(SimpleNamespace(address="CC:DD", name=None), _adv(local_name="Badge")),
			(SimpleNamespace(address="AA:BB", name="Phone1"), _adv()),
		]
		seen: List[Any] = []
		source = BleakEventSource()

		with patch("linkup.sources.BleakScanner", FakeBleakScanner):
			source.subscribe(seen.append)
			await asyncio.sleep(0.01)
			self.assertTrue(source.scanning)
			source.unsubscribe(seen.append)
			await asyncio.wait_for(source.wait_closed(), timeout=1.0)

		self.assertFalse(source.scanning)
		self.assertIsInstance(seen[0], AdapterStateChanged)
		found = [event for event in seen if isinstance(event, DeviceFound)]
		self.assertEqual([(e.address, e.name) for e in found], [("AA:BB", "Phone1"), ("CC:DD", "Badge"), ("AA:BB", "Phone1")])
		self.assertFalse(FakeBleakScanner.instances[0].running)

	async def test_scan_failure_reports_adapter_off(self) -> None:
		FakeBleakScanner.fail_with = BleakError("Bluetooth device is turned off")
		source = BleakEventSource()
		tracker = DevicePresenceTracker(source, adapter_enabled=True)

		with patch("linkup.sources.BleakScanner", FakeBleakScanner):
			with self.assertLogs("linkup.sources", level="WARNING"):
				tracker.start()
				await asyncio.wait_for(source.wait_closed(), timeout=1.0)

		self.assertIs(tracker.adapter_enabled, False)
		tracker.stop()

	async def test_busy_adapter_leaves_adapter_state_alone(self) -> None:
		FakeBleakScanner.fail_with = BleakError("org.bluez.Error.InProgress: Operation already in progress")
		source = BleakEventSource()
		tracker = DevicePresenceTracker(source, adapter_enabled=True)

		with patch("linkup.sources.BleakScanner", FakeBleakScanner):
			with self.assertLogs("linkup.sources", level="WARNING") as captured:
				tracker.start()
				await asyncio.wait_for(source.wait_closed(), timeout=1.0)

		self.assertIs(tracker.adapter_enabled, True)
		self.assertTrue(any("could not run" in line for line in captured.output))
		tracker.stop()

	async def test_quick_restart_waits_for_previous_scanner(self) -> None:
		FakeBleakScanner.exit_delay = 0.02
		seen: List[Any] = []
		source = BleakEventSource()

		with patch("linkup.sources.BleakScanner", FakeBleakScanner):
			source.subscribe(seen.append)
			await asyncio.sleep(0.01)
			source.unsubscribe(seen.append)
			source.subscribe(seen.append)
			await asyncio.sleep(0.1)
			self.assertTrue(source.scanning)
			self.assertEqual(len(FakeBleakScanner.instances), 2)
			source.unsubscribe(seen.append)
			await asyncio.wait_for(source.wait_closed(), timeout=1.0)

		self.assertEqual(FakeBleakScanner.peak_running, 1)
		self.assertEqual(FakeBleakScanner.running_now, 0)
		self.assertEqual(sum(isinstance(event, AdapterStateChanged) for event in seen), 2)

	async def test_stop_from_worker_thread_ends_scan(self) -> None:
		source = BleakEventSource()
		tracker = DevicePresenceTracker(source)

		with patch("linkup.sources.BleakScanner", FakeBleakScanner):
			tracker.start()
			await asyncio.sleep(0.01)
			self.assertTrue(source.scanning)
			worker = threading.Thread(target=tracker.stop)
			worker.start()
			await asyncio.to_thread(worker.join, 1.0)
			await asyncio.wait_for(source.wait_closed(), timeout=1.0)

		self.assertFalse(source.scanning)
		self.assertFalse(FakeBleakScanner.instances[0].running)

	async def test_tracker_end_to_end_with_filters(self) -> None:
		FakeBleakScanner.events = [
			(SimpleNamespace(address="AA:BB", name="Phone1"), _adv()),
			(SimpleNamespace(address="EE:FF", name="Speaker"), _adv()),
		]
		source = BleakEventSource(SourceConfig(address_allowlist=["AA:BB"], adapter="hci0"))
		tracker = DevicePresenceTracker(source)

		with patch("linkup.sources.BleakScanner", FakeBleakScanner):
			tracker.start()
			await asyncio.sleep(0.01)
			tracker.stop()
			await asyncio.wait_for(source.wait_closed(), timeout=1.0)

		self.assertEqual(FakeBleakScanner.instances[0].kwargs, {"adapter": "hci0"})
		self.assertIs(tracker.adapter_enabled, True)
		self.assertEqual([d.address for d in tracker.discovered_devices], ["AA:BB"])


class PoweredOffErrorTest(TestCase):
	def test_power_messages_match(self) -> None:
		self.assertTrue(is_powered_off_error(BleakError("Bluetooth device is turned off")))
		self.assertTrue(is_powered_off_error(BleakError("org.bluez.Error.NotReady: Resource Not Ready")))
		self.assertTrue(is_powered_off_error(BleakError("Bluetooth adapter is not powered")))

	def test_other_failures_do_not_match(self) -> None:
		self.assertFalse(is_powered_off_error(BleakError("org.bluez.Error.InProgress: Operation already in progress")))
		self.assertFalse(is_powered_off_error(BleakError("org.freedesktop.DBus.Error.AccessDenied: Rejected")))
		self.assertFalse(is_powered_off_error(BleakError("No Bluetooth adapters found.")))

	def test_reason_attribute_matches(self) -> None:
		exc = BleakError("Bluetooth is not available")
		exc.reason = SimpleNamespace(name="POWERED_OFF")
		self.assertTrue(is_powered_off_error(exc))
		exc.reason = SimpleNamespace(name="DENIED_BY_USER")
		self.assertFalse(is_powered_off_error(exc))


class SubscribeOutsideLoopTest(TestCase):
	def test_tracker_start_without_loop_stays_stopped(self) -> None:
		tracker = DevicePresenceTracker(BleakEventSource())
		with self.assertLogs("linkup.tracker", level="WARNING"):
			tracker.start()
		self.assertFalse(tracker.started)
