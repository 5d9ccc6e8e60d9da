"""AirLLM runtime implementation."""
from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable

import torch
from safetensors import safe_open

from .base import Backend, DeviceSpec, GenerationOutput, GenerationSpec
from ..errors import EngineInitError, GenerationError, InvalidEngineState
from ..prompts import _render_prompt, fit_messages

logger = logging.getLogger(__name__)


def _ensure_safetensors_index(model_path: str) -> None:
    index_path = Path(model_path) / "model.safetensors.index.json"
    if index_path.exists():
        return
    st_path = Path(model_path) / "model.safetensors"
    if not st_path.exists():
        return
    weight_map: dict[str, str] = {}
    with safe_open(str(st_path), framework="pt") as f:
        for key in f.keys():
            weight_map[key] = st_path.name
    data = {
        "metadata": {"total_size": os.path.getsize(st_path)},
        "weight_map": weight_map,
    }
    with open(index_path, "w", encoding="utf-8") as handle:
        json.dump(data, handle)


def _resolve_cache_dir(base_dir: str, model_key: str) -> str:
    if not base_dir:
        return base_dir
    if "{model_key}" in base_dir:
        return base_dir.replace("{model_key}", model_key)
    base = os.path.basename(base_dir.rstrip("/\\"))
    if base != model_key:
        return os.path.join(base_dir, model_key)
    return base_dir


def _from_pretrained(model_path: str, **kwargs: Any) -> Any:
    from airllm import AutoModel

    return AutoModel.from_pretrained(model_path, **kwargs)


def resolve_device(backend: Backend, gpu_index: int | None) -> DeviceSpec:
    """Map a backend preference onto a device, falling back to CPU silently."""
    if backend in ("gpu", "auto") and torch.cuda.is_available():
        return DeviceSpec(kind="cuda", gpu_index=gpu_index if gpu_index is not None else 0)
    if backend == "gpu":
        logger.info("No CUDA device available, falling back to CPU")
    return DeviceSpec(kind="cpu", gpu_index=None)


class AirLLMContext:
    def __init__(self, model: Any, tokenizer: Any, device: torch.device) -> None:
        self._model = model
        self._tokenizer = tokenizer
        self._device = device

    def generate(self, messages: list[dict], gen: GenerationSpec) -> GenerationOutput:
        if self._model is None or self._tokenizer is None:
            raise GenerationError("Generation context is closed")

        budget = gen.max_context - gen.max_new_tokens
        if budget <= 0:
            raise GenerationError(
                f"max_tokens={gen.max_context} leaves no room for {gen.max_new_tokens} new tokens"
            )

        fitted = fit_messages(self._tokenizer, messages, budget)
        if not fitted:
            raise GenerationError(f"Latest message does not fit in the {budget}-token prompt budget")
        if len(fitted) < len(messages):
            logger.info("Dropped %d oldest messages to fit the prompt budget", len(messages) - len(fitted))
        prompt = _render_prompt(self._tokenizer, fitted)
        inputs = self._tokenizer(prompt, return_tensors="pt")
        input_ids = inputs["input_ids"].to(self._device)
        attention_mask = inputs.get("attention_mask")
        if attention_mask is not None:
            attention_mask = attention_mask.to(self._device)

        if self._device.type == "cuda":
            torch.cuda.synchronize(self._device)
        start = time.perf_counter()
        output_ids = self._model.generate(
            input_ids=input_ids,
            attention_mask=attention_mask,
            max_new_tokens=gen.max_new_tokens,
            temperature=gen.temperature,
            top_p=gen.top_p,
            do_sample=gen.do_sample,
            use_cache=False,
        )
        if self._device.type == "cuda":
            torch.cuda.synchronize(self._device)
        end = time.perf_counter()

        if isinstance(output_ids, (list, tuple)):
            if len(output_ids) == 0:
                raise GenerationError("Empty output from model")
            output_ids = output_ids[0]
        if not isinstance(output_ids, torch.Tensor):
            # hand unknown reply shapes back untouched
            return output_ids
        if output_ids.ndim == 1:
            output_ids = output_ids.unsqueeze(0)

        prompt_tokens = int(input_ids.shape[-1])
        total_tokens = int(output_ids.shape[-1])
        generated_tokens = max(0, total_tokens - prompt_tokens)
        text = self._tokenizer.decode(output_ids[0][prompt_tokens:], skip_special_tokens=True)

        return GenerationOutput(
            text=text,
            prompt_tokens=prompt_tokens,
            generated_tokens=generated_tokens,
            decode_time_s=end - start,
        )

    def close(self) -> None:
        self._model = None
        self._tokenizer = None


class AirLLMEngine:
    def __init__(self, loader: Callable[..., Any] = _from_pretrained) -> None:
        self._loader = loader
        self._model: Any | None = None
        self._tokenizer: Any | None = None
        self._device: torch.device | None = None

    def load(
        self,
        model_path: str,
        backend: Backend,
        gpu_index: int | None,
        compression: str | None,
        layer_cache_dir: str,
        max_tokens: int,
    ) -> DeviceSpec:
        device = resolve_device(backend, gpu_index)
        if device.kind == "cuda":
            self._device = torch.device(f"cuda:{device.gpu_index}")
        else:
            self._device = torch.device("cpu")

        # a provisioned artifact is a weights file inside its model folder
        if os.path.isfile(model_path):
            model_path = os.path.dirname(model_path)
        if not os.path.isdir(model_path):
            raise EngineInitError(f"Model path not found: {model_path}")
        _ensure_safetensors_index(model_path)

        layer_cache_dir = _resolve_cache_dir(layer_cache_dir, os.path.basename(model_path.rstrip("/\\")))
        if layer_cache_dir:
            os.makedirs(layer_cache_dir, exist_ok=True)

        logger.info("Loading %s on %s", model_path, self._device)
        self._model = self._loader(
            model_path,
            device=str(self._device),
            max_seq_len=max_tokens,
            layer_shards_saving_path=layer_cache_dir or None,
            compression=compression,
        )

        self._tokenizer = getattr(self._model, "tokenizer", None)
        if self._tokenizer is None:
            raise EngineInitError("Model tokenizer not available")
        return device

    def unload(self) -> None:
        self._model = None
        self._tokenizer = None
        self._device = None
        if torch.cuda.is_available():
            torch.cuda.empty_cache()

    def open_context(self) -> AirLLMContext:
        if self._model is None or self._tokenizer is None or self._device is None:
            raise InvalidEngineState("Engine not loaded")
        return AirLLMContext(self._model, self._tokenizer, self._device)
