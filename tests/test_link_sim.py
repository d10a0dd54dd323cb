"""Simulation tests for the link watcher."""
from __future__ import annotations

import asyncio
import unittest
from typing import Any, List

from linkup.events import LinkConnected, LinkDisconnected
from linkup.link import LinkWatcher
from linkup.sources import QueueEventSource
from linkup.tracker import DevicePresenceTracker


class _FakeClient:
    def __init__(self, address: str, *, disconnected_callback=None, timeout: float = 10.0, **kwargs: Any) -> None:
        self.address = address
        self.kwargs = kwargs
        self.timeout = timeout
        self._disconnected_callback = disconnected_callback
        self.is_connected = False
        self.fail = False

    async def connect(self) -> bool:
        await asyncio.sleep(0)
        if self.fail:
            raise OSError("peer unreachable")
        self.is_connected = True
        return True

    async def disconnect(self) -> bool:
        await asyncio.sleep(0)
        self.drop()
        return True

    def drop(self) -> None:
        if self.is_connected:
            self.is_connected = False
            if self._disconnected_callback:
                self._disconnected_callback(self)


class _Factory:
    def __init__(self, fail: bool = False) -> None:
        self.clients: List[_FakeClient] = []
        self.fail = fail

    def __call__(self, address: str, **kwargs: Any) -> _FakeClient:
        client = _FakeClient(address, **kwargs)
        client.fail = self.fail
        self.clients.append(client)
        return client


class LinkWatcherSimulationTest(unittest.IsolatedAsyncioTestCase):
    async def test_connect_and_disconnect_emit_once_each(self) -> None:
        events: List[Any] = []
        factory = _Factory()
        watcher = LinkWatcher("AA:BB", events.append, adapter="hci0", timeout=3.0, client_factory=factory)

        async with watcher:
            self.assertTrue(watcher.connected)
            self.assertTrue(await watcher.connect())

        self.assertEqual([type(e) for e in events], [LinkConnected, LinkDisconnected])
        self.assertEqual(len(factory.clients), 1)
        self.assertEqual(factory.clients[0].kwargs, {"adapter": "hci0"})
        self.assertEqual(factory.clients[0].timeout, 3.0)

    async def test_peer_drop_updates_tracker(self) -> None:
        source = QueueEventSource()
        tracker = DevicePresenceTracker(source)
        tracker.start()
        factory = _Factory()
        watcher = LinkWatcher("AA:BB", source.emit, client_factory=factory)

        await watcher.connect()
        self.assertIs(tracker.connection_status_by_address["AA:BB"], True)

        factory.clients[0].drop()
        self.assertFalse(watcher.connected)
        self.assertIs(tracker.connection_status_by_address["AA:BB"], False)

        await watcher.disconnect()
        self.assertEqual([r.status for r in tracker.connection_history("AA:BB")], ["connected", "disconnected"])

        await watcher.connect()
        self.assertIs(tracker.connection_status_by_address["AA:BB"], True)

    async def test_failed_connect_raises_without_events(self) -> None:
        events: List[Any] = []
        watcher = LinkWatcher("AA:BB", events.append, client_factory=_Factory(fail=True))
        with self.assertLogs("linkup.link", level="ERROR"):
            with self.assertRaises(OSError):
                await watcher.connect()
        self.assertEqual(events, [])
        await watcher.disconnect()
        self.assertEqual(events, [])


if __name__ == "__main__":
    unittest.main()
