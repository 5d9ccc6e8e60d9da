"""RAM monitor for peak RSS."""
from __future__ import annotations

import threading

import psutil


class RamMonitor:
    def __init__(self, interval_ms: int) -> None:
        self._interval = interval_ms / 1000.0
        self._peak = 0
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._stopped.clear()
        self._sample()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> float:
        self._stopped.set()
        if self._thread:
            self._thread.join(timeout=1.0)
        self._sample()
        return self._peak / (1024 * 1024)

    def _sample(self) -> None:
        rss = psutil.Process().memory_info().rss
        if rss > self._peak:
            self._peak = rss

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            self._sample()
