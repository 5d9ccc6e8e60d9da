"""Configuration loading and dataclasses."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

import yaml

from .engines.base import BACKENDS
from .errors import ConfigError
from .platforms import SUPPORTED_PLATFORMS


@dataclass
class AppConfig:
    title: str = "AirChat"
    host: str = "127.0.0.1"
    port: int = 7860
    storage_dir: str = "./models"
    supported_platforms: list[str] = field(default_factory=lambda: list(SUPPORTED_PLATFORMS))
    offline_mode: bool = True
    log_level: str = "INFO"
    sampling_interval_ms: int = 50
    default_model: str | None = None


@dataclass
class EngineConfig:
    max_tokens: int = 512
    backend: str = "auto"
    gpu_index: int | None = 0
    max_new_tokens: int = 128
    temperature: float = 0.0
    top_p: float = 1.0
    do_sample: bool = False
    compression: str | None = None
    layer_cache_dir: str = ""
    system_prompt: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.max_tokens, int) or self.max_tokens <= 0:
            raise ConfigError(f"max_tokens must be a positive integer, got {self.max_tokens!r}")
        if self.backend not in BACKENDS:
            raise ConfigError(f"backend must be one of {', '.join(BACKENDS)}, got {self.backend!r}")
        if self.max_new_tokens <= 0:
            raise ConfigError(f"max_new_tokens must be positive, got {self.max_new_tokens!r}")
        if self.max_new_tokens >= self.max_tokens:
            raise ConfigError(
                f"max_new_tokens ({self.max_new_tokens}) must be smaller than max_tokens ({self.max_tokens})"
            )


@dataclass
class ModelSpec:
    key: str
    display_name: str
    locator: str
    storage_key: str | None = None
    companions: list[str] = field(default_factory=list)


@dataclass
class RootConfig:
    app: AppConfig
    engine: EngineConfig
    models: list[ModelSpec]


def _get(data: dict[str, Any], key: str, default: Any) -> Any:
    return data.get(key, default) if isinstance(data, dict) else default


def default_config() -> RootConfig:
    return RootConfig(app=AppConfig(), engine=EngineConfig(), models=[])


def load_config(path: str) -> RootConfig:
    if not os.path.exists(path):
        return default_config()
    with open(path, "r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    app_raw = _get(raw, "app", {})
    engine_raw = _get(raw, "engine", {})
    models_raw = _get(raw, "models", [])

    app = AppConfig(
        title=_get(app_raw, "title", AppConfig.title),
        host=_get(app_raw, "host", AppConfig.host),
        port=int(_get(app_raw, "port", AppConfig.port)),
        storage_dir=_get(app_raw, "storage_dir", AppConfig.storage_dir),
        supported_platforms=list(_get(app_raw, "supported_platforms", SUPPORTED_PLATFORMS)),
        offline_mode=bool(_get(app_raw, "offline_mode", AppConfig.offline_mode)),
        log_level=str(_get(app_raw, "log_level", AppConfig.log_level)).upper(),
        sampling_interval_ms=int(_get(app_raw, "sampling_interval_ms", AppConfig.sampling_interval_ms)),
        default_model=_get(app_raw, "default_model", None),
    )

    try:
        engine = EngineConfig(
            max_tokens=int(_get(engine_raw, "max_tokens", EngineConfig.max_tokens)),
            backend=str(_get(engine_raw, "backend", EngineConfig.backend)).lower(),
            gpu_index=_get(engine_raw, "gpu_index", EngineConfig.gpu_index),
            max_new_tokens=int(_get(engine_raw, "max_new_tokens", EngineConfig.max_new_tokens)),
            temperature=float(_get(engine_raw, "temperature", EngineConfig.temperature)),
            top_p=float(_get(engine_raw, "top_p", EngineConfig.top_p)),
            do_sample=bool(_get(engine_raw, "do_sample", EngineConfig.do_sample)),
            compression=_get(engine_raw, "compression", None),
            layer_cache_dir=_get(engine_raw, "layer_cache_dir", EngineConfig.layer_cache_dir),
            system_prompt=_get(engine_raw, "system_prompt", None),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid engine config in {path}: {exc}", cause=exc) from exc

    models: list[ModelSpec] = []
    if isinstance(models_raw, list):
        for item in models_raw:
            models.append(
                ModelSpec(
                    key=_get(item, "key", ""),
                    display_name=_get(item, "display_name", "") or _get(item, "key", ""),
                    locator=_get(item, "locator", ""),
                    storage_key=_get(item, "storage_key", None),
                    companions=list(_get(item, "companions", []) or []),
                )
            )

    return RootConfig(app=app, engine=engine, models=models)
