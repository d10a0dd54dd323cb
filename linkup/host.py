"""Host channel used to ask the user to power the adapter on."""
from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from typing import Callable, List, Optional, Protocol

from linkup.errors import AdapterUnavailableError

logger = logging.getLogger(__name__)

EnableResult = Callable[[bool], None]


class AdapterHost(Protocol):
    def request_enable(self, on_result: EnableResult) -> None:
        """Start an enable prompt; ``on_result(accepted)`` fires later, if ever."""

    def is_enabled(self) -> bool: ...

    def release(self) -> None: ...


class CallbackAdapterHost:
    """Host backed by injected callables.

    ``prompt`` receives the result callback and decides when (or whether) to
    call it. Requests are counted so callers can observe forwarding. A new
    request after ``release`` re-arms the host; results still owed to requests
    made before the release are dropped.
    """

    def __init__(
        self,
        prompt: Optional[Callable[[EnableResult], None]] = None,
        is_enabled: Optional[Callable[[], bool]] = None,
    ) -> None:
        self._prompt = prompt
        self._is_enabled = is_enabled
        self.requests = 0
        self.released = False
        self._generation = 0

    def request_enable(self, on_result: EnableResult) -> None:
        self.released = False
        self.requests += 1
        generation = self._generation

        def _deliver(accepted: bool) -> None:
            if generation != self._generation:
                return
            on_result(accepted)

        if self._prompt is not None:
            self._prompt(_deliver)

    def is_enabled(self) -> bool:
        if self._is_enabled is None:
            raise AdapterUnavailableError("adapter state is not observable")
        return bool(self._is_enabled())

    def release(self) -> None:
        self.released = True
        self._generation += 1


class BluetoothctlAdapterHost:
    """Powers the adapter through BlueZ ``bluetoothctl``.

    The command runs on a worker thread; a zero exit status counts as the
    user accepting the request.
    """

    def __init__(self, executable: str = "bluetoothctl", *, timeout: float = 10.0) -> None:
        self.executable = executable
        self.timeout = timeout
        self._threads: List[threading.Thread] = []
        self._generation = 0

    def _command(self, *args: str) -> List[str]:
        path = shutil.which(self.executable)
        if path is None:
            raise AdapterUnavailableError(f"{self.executable} not found on PATH")
        return [path, *args]

    def request_enable(self, on_result: EnableResult) -> None:
        cmd = self._command("power", "on")
        worker = threading.Thread(
            target=self._power_on, args=(cmd, on_result, self._generation), daemon=True
        )
        self._threads.append(worker)
        worker.start()

    def _power_on(self, cmd: List[str], on_result: EnableResult, generation: int) -> None:
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout, check=False)
            accepted = proc.returncode == 0
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning("bluetoothctl power on failed: %s", exc)
            accepted = False
        if generation != self._generation:
            return
        on_result(accepted)

    def is_enabled(self) -> bool:
        proc = subprocess.run(
            self._command("show"), capture_output=True, text=True, timeout=self.timeout, check=False
        )
        if proc.returncode != 0:
            raise AdapterUnavailableError(proc.stderr.strip() or "bluetoothctl show failed")
        return parse_powered(proc.stdout)

    def release(self) -> None:
        self._generation += 1
        self._threads = [t for t in self._threads if t.is_alive()]


def parse_powered(show_output: str) -> bool:
    for line in show_output.splitlines():
        key, _, value = line.strip().partition(":")
        if key == "Powered":
            return value.strip().lower() == "yes"
    return False


__all__ = [
    "AdapterHost",
    "EnableResult",
    "CallbackAdapterHost",
    "BluetoothctlAdapterHost",
    "parse_powered",
]
