"""Instrumentation wrapper for generate() calls."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from .ram_monitor import RamMonitor
from ..engines.base import GenerationOutput

T = TypeVar("T")


@dataclass
class Measured(Generic[T]):
    result: T
    elapsed_s: float
    ram_peak_mb: float


class Instrumentation:
    def __init__(self, sampling_interval_ms: int) -> None:
        self._interval = sampling_interval_ms

    async def measure(self, fn: Callable[[], Awaitable[T]]) -> Measured[T]:
        ram = RamMonitor(self._interval)
        ram.start()
        start = time.perf_counter()
        try:
            result = await fn()
        finally:
            ram_peak = ram.stop()
        return Measured(result=result, elapsed_s=time.perf_counter() - start, ram_peak_mb=ram_peak)


def turn_metrics(output: GenerationOutput | None, measured: Measured[Any]) -> dict[str, Any]:
    metrics: dict[str, Any] = {
        "ram_peak_mb": measured.ram_peak_mb,
        "elapsed_s": measured.elapsed_s,
    }
    if output is not None:
        tokens_per_s = 0.0
        if output.decode_time_s > 0:
            tokens_per_s = output.generated_tokens / output.decode_time_s
        metrics.update(
            {
                "tokens_per_s": tokens_per_s,
                "prompt_tokens": output.prompt_tokens,
                "generated_tokens": output.generated_tokens,
                "decode_time_s": output.decode_time_s,
            }
        )
    return metrics
