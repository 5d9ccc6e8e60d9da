"""Test doubles for the transfer and engine runtime seams."""
from __future__ import annotations

import threading
from pathlib import Path

from airchat.engines.base import DeviceSpec, GenerationOutput
from airchat.errors import TransferError


class FakeTransfer:
    def __init__(self, payload: bytes = b"weights", fail: bool = False) -> None:
        self.payload = payload
        self.fail = fail
        self.calls: list[str] = []

    def fetch(self, url: str, dest: Path) -> None:
        self.calls.append(url)
        if self.fail:
            raise TransferError(f"Failed to fetch {url}: connection reset", locator=url)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.payload)


class FakeContext:
    def __init__(self, runtime: "FakeRuntime") -> None:
        self._runtime = runtime
        self.closed = False
        self.messages: list[list[dict]] = []

    def generate(self, messages: list[dict], gen) -> object:
        self.messages.append(messages)
        if self._runtime.gate is not None:
            self._runtime.started.set()
            self._runtime.gate.wait(timeout=5)
        if self._runtime.replies:
            reply = self._runtime.replies.pop(0)
        else:
            reply = "ok"
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return GenerationOutput(text=reply, prompt_tokens=10, generated_tokens=3, decode_time_s=0.5)
        return reply

    def close(self) -> None:
        self.closed = True
        self._runtime.events.append("session.close")


class FakeRuntime:
    """Records lifecycle calls into ``events`` (shared across instances if given)."""

    def __init__(self, events: list[str] | None = None, load_error: Exception | None = None) -> None:
        self.events = events if events is not None else []
        self.load_error = load_error
        self.replies: list[object] = []
        self.gate: threading.Event | None = None
        self.started = threading.Event()
        self.contexts: list[FakeContext] = []
        self.loaded = False

    def load(self, model_path, backend, gpu_index, compression, layer_cache_dir, max_tokens) -> DeviceSpec:
        self.events.append("engine.load")
        self.max_tokens = max_tokens
        if self.load_error is not None:
            raise self.load_error
        self.loaded = True
        return DeviceSpec(kind="cpu", gpu_index=None)

    def unload(self) -> None:
        self.loaded = False
        self.events.append("engine.unload")

    def open_context(self) -> FakeContext:
        context = FakeContext(self)
        self.contexts.append(context)
        return context
