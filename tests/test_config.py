"""Tests for configuration defaults and YAML loading."""
from __future__ import annotations

import pytest

from airchat.config import EngineConfig, load_config
from airchat.errors import ConfigError
from airchat.registry import ModelRegistry


def test_missing_file_gives_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "absent.yaml"))
    assert cfg.app.title == "AirChat"
    assert cfg.engine.max_tokens == 512
    assert cfg.engine.backend == "auto"
    assert cfg.models == []


def test_load_yaml(tmp_path):
    path = tmp_path / "airchat.yaml"
    path.write_text(
        """
app:
  port: 9000
  storage_dir: /tmp/models
  supported_platforms: [linux]
engine:
  max_tokens: 1024
  backend: GPU
  max_new_tokens: 64
models:
  - key: tiny
    display_name: Tiny
    locator: https://host/tiny/resolve/main/model.safetensors
    companions: [config.json]
""",
        encoding="utf-8",
    )

    cfg = load_config(str(path))

    assert cfg.app.port == 9000
    assert cfg.app.supported_platforms == ["linux"]
    assert cfg.engine.max_tokens == 1024
    assert cfg.engine.backend == "gpu"
    artifact = ModelRegistry(cfg.models).artifact()
    assert artifact.storage_key == "model"
    assert artifact.companions == ("config.json",)


@pytest.mark.parametrize("max_tokens", [0, -5])
def test_max_tokens_must_be_positive(max_tokens):
    with pytest.raises(ConfigError):
        EngineConfig(max_tokens=max_tokens)


def test_unknown_backend_rejected(tmp_path):
    path = tmp_path / "airchat.yaml"
    path.write_text("engine:\n  backend: tpu\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="backend"):
        load_config(str(path))


def test_registry_lookup():
    registry = ModelRegistry([])
    with pytest.raises(KeyError):
        registry.default()
    with pytest.raises(KeyError):
        registry.get("missing")


@pytest.mark.parametrize("max_tokens", [64, 128])
def test_max_new_tokens_must_leave_prompt_room(max_tokens):
    with pytest.raises(ConfigError, match="max_new_tokens"):
        EngineConfig(max_tokens=max_tokens, max_new_tokens=128)
