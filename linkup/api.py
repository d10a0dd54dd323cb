from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect

from linkup.config import TrackerSettings, build_tracker
from linkup.tracker import DevicePresenceTracker

logger = logging.getLogger(__name__)


def _tracker(request: Request) -> DevicePresenceTracker:
    return request.app.state.tracker


def create_app(
    tracker: DevicePresenceTracker,
    settings: Optional[TrackerSettings] = None,
) -> FastAPI:
    """Build the HTTP surface around an already constructed tracker."""
    app = FastAPI(title="LinkUp Presence API", version="0.1.0")
    app.state.tracker = tracker
    app.state.settings = settings or TrackerSettings()

    def _current(request: Request) -> dict[str, Any]:
        tracker = _tracker(request)
        max_age = request.app.state.settings.stale_after_delta
        if max_age is not None:
            tracker.forget_stale(max_age)
        return tracker.snapshot().to_dict()

    @app.get("/health")
    async def health(request: Request):
        return {"status": "ok", "time": time.time(), "tracking": _tracker(request).started}

    @app.get("/presence")
    async def presence(request: Request):
        return _current(request)

    @app.get("/history")
    async def history(request: Request, address: Optional[str] = Query(None, description="Filter by device address")):
        records = _tracker(request).connection_history(address)
        return [record.to_dict() for record in records]

    @app.post("/tracker/start")
    async def start(request: Request):
        tracker = _tracker(request)
        if tracker.started:
            return {"status": "already-running"}
        tracker.start()
        if not tracker.started:
            raise HTTPException(status_code=503, detail="event source unavailable")
        return {"status": "started"}

    @app.post("/tracker/stop")
    async def stop(request: Request):
        tracker = _tracker(request)
        if not tracker.started:
            return {"status": "idle"}
        tracker.stop()
        return {"status": "stopped"}

    @app.post("/tracker/reset")
    async def reset(request: Request):
        _tracker(request).reset()
        return {"status": "reset"}

    @app.post("/adapter/enable")
    async def enable_adapter(request: Request):
        tracker = _tracker(request)
        tracker.request_adapter_enable()
        return {"status": "requested", "adapter_enabled": tracker.adapter_enabled}

    @app.websocket("/events")
    async def events(ws: WebSocket):
        tracker: DevicePresenceTracker = ws.app.state.tracker
        await ws.accept()
        snapshots = tracker.presence_state.updates()

        async def _until_closed() -> None:
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    return

        reader = asyncio.create_task(_until_closed())
        waiter: Optional[asyncio.Future] = None
        try:
            while True:
                waiter = asyncio.ensure_future(snapshots.__anext__())
                done, _ = await asyncio.wait({reader, waiter}, return_when=asyncio.FIRST_COMPLETED)
                if waiter not in done:
                    break
                await ws.send_json(waiter.result().to_dict())
        except WebSocketDisconnect:
            pass
        finally:
            reader.cancel()
            if waiter is not None and not waiter.done():
                waiter.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await waiter
            await snapshots.aclose()

    return app


def create_default_app() -> FastAPI:
    """Factory for ``uvicorn --factory``: settings come from ``LINKUP_*`` variables."""
    settings = TrackerSettings.from_env()
    return create_app(build_tracker(settings), settings)


__all__ = ["create_app", "create_default_app"]
