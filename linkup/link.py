"""Link supervision built on top of bleak."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, TYPE_CHECKING, TypeAlias

from bleak import BleakClient

from linkup.events import LinkConnected, LinkDisconnected

logger = logging.getLogger(__name__)

if TYPE_CHECKING:  # pragma: no cover - typing hints
	from bleak import BleakClient as _BleakClientType
else:
	_BleakClientType = Any

BleakClientType: TypeAlias = _BleakClientType
Emit = Callable[[Any], None]


class LinkWatcher:
	"""Connects to one device and reports its link transitions.

	``LinkConnected`` is emitted after a successful connect and
	``LinkDisconnected`` once per drop, whether the peer went away or
	:meth:`disconnect` was called.
	"""

	def __init__(
		self,
		address: str,
		emit: Emit,
		*,
		adapter: Optional[str] = None,
		timeout: float = 10.0,
		client_factory: Optional[Callable[..., BleakClientType]] = None,
	) -> None:
		self.address = address
		self.adapter = adapter
		self.timeout = max(1.0, timeout)
		self._emit = emit
		self._client_factory = client_factory or BleakClient
		self._client: Optional[BleakClientType] = None
		self._connected = False
		self._lock = asyncio.Lock()

	@property
	def connected(self) -> bool:
		return self._connected

	async def connect(self) -> bool:
		async with self._lock:
			if self._client is not None and self._connected:
				return True

			kwargs: dict[str, Any] = {
				"disconnected_callback": self._on_disconnected,
				"timeout": self.timeout,
			}
			if self.adapter:
				kwargs["adapter"] = self.adapter
			client = self._client_factory(self.address, **kwargs)
			self._client = client

			try:
				await client.connect()
			except Exception:
				logger.exception("Connection attempt failed for %s", self.address)
				self._client = None
				raise

			if not getattr(client, "is_connected", False):
				self._client = None
				return False

			self._mark(True)
			return True

	async def disconnect(self) -> None:
		async with self._lock:
			client = self._client
			if client is None:
				return
			try:
				await client.disconnect()
			except Exception as exc:
				logger.warning("Disconnect encountered error for %s: %s", self.address, exc)
			finally:
				self._client = None
				self._mark(False)

	async def __aenter__(self) -> "LinkWatcher":
		await self.connect()
		return self

	async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
		await self.disconnect()

	def _on_disconnected(self, _client: Any) -> None:
		logger.debug("bleak reported disconnect for %s", self.address)
		self._mark(False)

	def _mark(self, connected: bool) -> None:
		if connected == self._connected:
			return
		self._connected = connected
		event = LinkConnected(self.address) if connected else LinkDisconnected(self.address)
		try:
			self._emit(event)
		except Exception:
			logger.exception("link event delivery failed for %s", self.address)


__all__ = ["LinkWatcher"]
