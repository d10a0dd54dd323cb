"""LinkUp command-line interface."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from linkup.config import TrackerSettings, build_tracker
from linkup.link import LinkWatcher
from linkup.models import PresenceSnapshot
from linkup.sources import BleakEventSource, QueueEventSource

logger = logging.getLogger("linkup.cli")


def _parse_metadata(raw: Optional[str]) -> Dict[str, Any]:
	if not raw:
		return {}
	try:
		value = json.loads(raw)
	except json.JSONDecodeError as exc:
		raise ValueError(f"invalid metadata JSON: {exc}") from exc
	if not isinstance(value, dict):
		raise ValueError("metadata must be a JSON object")
	return value


def _settings(args: argparse.Namespace) -> TrackerSettings:
	settings = TrackerSettings.from_env()
	if getattr(args, "adapter", None):
		settings.adapter = args.adapter
	if getattr(args, "log", None):
		settings.metrics_log = Path(args.log)
	if getattr(args, "service_uuid", None):
		settings.service_uuids = tuple(args.service_uuid)
	if getattr(args, "address", None):
		settings.addresses = tuple(args.address)
	if getattr(args, "name", None):
		settings.names = tuple(args.name)
	settings.metadata = _parse_metadata(getattr(args, "metadata", None))
	return settings


def _render(snapshot: PresenceSnapshot, as_json: bool) -> None:
	data = snapshot.to_dict()
	if as_json:
		json.dump(data, sys.stdout, indent=2)
		sys.stdout.write("\n")
		return
	console = Console()
	adapter = data["adapter_enabled"]
	console.print(f"Adapter: {'unknown' if adapter is None else ('on' if adapter else 'off')}")
	table = Table(title="LinkUp Nearby Devices", show_lines=False)
	for column in ("address", "name", "last seen", "link"):
		table.add_column(column.upper())
	links = data["connection_status_by_address"]
	for entry in data["discovered_devices"]:
		link = links.get(entry["address"])
		table.add_row(
			entry["address"],
			entry["display_name"] or "",
			entry["first_seen_at"],
			"" if link is None else ("connected" if link else "disconnected"),
		)
	console.print(table)


async def _cmd_watch(args: argparse.Namespace) -> int:
	settings = _settings(args)
	source = BleakEventSource(settings.source_config())
	tracker = build_tracker(settings, source=source)
	tracker.start()
	if not tracker.started:
		return 1

	watchers: List[LinkWatcher] = []
	for address in args.link or ():
		watcher = LinkWatcher(address, source.emit, adapter=settings.adapter, timeout=args.connect_timeout)
		try:
			await watcher.connect()
		except Exception as exc:
			logger.warning("Could not link to %s: %s", address, exc)
			continue
		watchers.append(watcher)

	stop_event = asyncio.Event()
	loop = asyncio.get_running_loop()
	for sig in (signal.SIGINT, signal.SIGTERM):
		with contextlib.suppress(NotImplementedError):
			loop.add_signal_handler(sig, stop_event.set)

	try:
		with contextlib.suppress(asyncio.TimeoutError):
			await asyncio.wait_for(stop_event.wait(), timeout=args.duration)
	finally:
		for watcher in watchers:
			await watcher.disconnect()
		tracker.stop()
		await source.wait_closed()

	_render(tracker.snapshot(), args.json)
	return 0


async def _cmd_enable_adapter(args: argparse.Namespace) -> int:
	tracker = build_tracker(_settings(args), source=QueueEventSource())
	tracker.start()
	enabled = asyncio.Event()
	loop = asyncio.get_running_loop()

	def _on_adapter(value: Optional[bool]) -> None:
		if value:
			loop.call_soon_threadsafe(enabled.set)

	unsubscribe = tracker.adapter_state.subscribe(_on_adapter)
	try:
		tracker.request_adapter_enable()
		with contextlib.suppress(asyncio.TimeoutError):
			await asyncio.wait_for(enabled.wait(), timeout=args.timeout)
	finally:
		unsubscribe()
		tracker.stop()
	sys.stdout.write(f"adapter: {'on' if enabled.is_set() else 'unchanged'}\n")
	return 0 if enabled.is_set() else 1


def _cmd_serve(args: argparse.Namespace) -> int:
	import uvicorn

	from linkup.api import create_app

	settings = _settings(args)
	uvicorn.run(create_app(build_tracker(settings), settings), host=args.host, port=args.port)
	return 0


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="LinkUp nearby-device presence tracker")
	parser.add_argument("--log-level", default="WARNING", help="Python logging level")
	sub = parser.add_subparsers(dest="command", required=True)

	def _common(cmd: argparse.ArgumentParser) -> None:
		cmd.add_argument("--adapter", help="BLE adapter identifier")
		cmd.add_argument("--log", help="Path to metrics CSV")
		cmd.add_argument("--metadata", help="JSON object to embed in metrics")

	watch = sub.add_parser("watch", help="Track nearby devices for a while and print what was seen")
	_common(watch)
	watch.add_argument("--duration", type=float, default=10.0, help="Watch duration in seconds")
	watch.add_argument("--service-uuid", action="append", help="Filter by service UUID", dest="service_uuid")
	watch.add_argument("--address", action="append", help="Filter by device address")
	watch.add_argument("--name", action="append", help="Filter by device name")
	watch.add_argument("--link", action="append", help="Also hold a link to this address")
	watch.add_argument("--connect-timeout", type=float, default=10.0, help="Link connect timeout seconds")
	watch.add_argument("--json", action="store_true", help="Output JSON")
	watch.set_defaults(handler=_cmd_watch)

	enable = sub.add_parser("enable-adapter", help="Ask the host to power the adapter on")
	_common(enable)
	enable.add_argument("--timeout", type=float, default=15.0, help="Seconds to wait for the adapter")
	enable.set_defaults(handler=_cmd_enable_adapter)

	serve = sub.add_parser("serve", help="Run the HTTP API")
	_common(serve)
	serve.add_argument("--host", default="127.0.0.1")
	serve.add_argument("--port", type=int, default=8000)
	serve.set_defaults(handler=_cmd_serve)

	return parser


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
	try:
		outcome = args.handler(args)
		if asyncio.iscoroutine(outcome):
			return asyncio.run(outcome)
		return outcome
	except ValueError as exc:
		parser.error(str(exc))


if __name__ == "__main__":
	sys.exit(main())
