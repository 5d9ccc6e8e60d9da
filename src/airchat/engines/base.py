"""Engine runtime protocol and dataclasses."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol

Backend = Literal["cpu", "gpu", "auto"]
BACKENDS: tuple[str, ...] = ("cpu", "gpu", "auto")


@dataclass
class DeviceSpec:
    kind: Literal["cuda", "cpu"]
    gpu_index: int | None


@dataclass
class GenerationSpec:
    max_new_tokens: int
    temperature: float
    top_p: float
    do_sample: bool
    max_context: int


@dataclass
class GenerationOutput:
    text: str
    prompt_tokens: int
    generated_tokens: int
    decode_time_s: float


class GenerationContext(Protocol):
    """Engine state bound to one conversation."""

    def generate(self, messages: list[dict], gen: GenerationSpec) -> object:
        ...

    def close(self) -> None:
        ...


class LLMRuntime(Protocol):
    def load(
        self,
        model_path: str,
        backend: Backend,
        gpu_index: int | None,
        compression: str | None,
        layer_cache_dir: str,
        max_tokens: int,
    ) -> DeviceSpec:
        ...

    def unload(self) -> None:
        ...

    def open_context(self) -> GenerationContext:
        ...
