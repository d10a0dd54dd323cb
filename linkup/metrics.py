"""CSV log of presence mutations and tracker lifecycle steps."""
from __future__ import annotations

import csv
import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from linkup.events import as_utc


DEFAULT_FIELDS: Sequence[str] = (
    "timestamp",
    "event",
    "address",
    "status",
    "value",
    "message",
    "extra",
)


def _encode_extra(extra: Mapping[str, Any]) -> str:
    if not extra:
        return ""
    try:
        return json.dumps(extra, separators=(",", ":"), ensure_ascii=True, sort_keys=True)
    except (TypeError, ValueError):
        return repr(extra)


class MetricsLogger:
    """Append-only CSV logger for presence events.

    Rows are written and flushed one at a time so that a tailing reader sees
    each mutation as soon as the tracker applies it. ``static_extra`` is
    merged into the ``extra`` column of every row.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        fields: Sequence[str] | None = None,
        static_extra: Mapping[str, Any] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path)
        self.fields: Sequence[str] = tuple(fields) if fields is not None else DEFAULT_FIELDS
        if not self.fields:
            raise ValueError("fields must contain at least one column")
        self.static_extra: Dict[str, Any] = dict(static_extra or {})
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists() or self.path.stat().st_size == 0:
            self._append(None)

    def log(
        self,
        event: str,
        *,
        address: Optional[str] = None,
        status: Optional[str] = None,
        value: Optional[float] = None,
        message: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._append(
            {
                "timestamp": as_utc(self._clock()).isoformat(timespec="milliseconds"),
                "event": event,
                "address": address or "",
                "status": status or "",
                "value": "" if value is None else value,
                "message": message or "",
                "extra": _encode_extra({**self.static_extra, **(extra or {})}),
            }
        )

    def read_rows(self) -> List[Dict[str, str]]:
        with self._lock:
            with self.path.open("r", newline="", encoding="utf-8") as handle:
                return list(csv.DictReader(handle))

    def _append(self, row: Optional[Dict[str, Any]]) -> None:
        """Write one row, or the header when ``row`` is ``None``."""
        with self._lock:
            with self.path.open("a", newline="", encoding="utf-8") as handle:
                writer = csv.DictWriter(handle, fieldnames=self.fields, extrasaction="ignore")
                if row is None:
                    writer.writeheader()
                else:
                    writer.writerow(row)
                handle.flush()


__all__ = [
    "MetricsLogger",
    "DEFAULT_FIELDS",
]
