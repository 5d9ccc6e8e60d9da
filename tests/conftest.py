from __future__ import annotations

import pytest

from airchat.config import EngineConfig
from airchat.controller import SessionController
from airchat.engines.handle import EngineHandle
from airchat.metrics.instrumentation import Instrumentation
from airchat.provisioning import ArtifactProvisioner, ModelArtifact

from .fakes import FakeRuntime, FakeTransfer

LOCATOR = "https://example.com/models/resolve/main/tiny-chat.safetensors"


@pytest.fixture
def artifact() -> ModelArtifact:
    return ModelArtifact.from_locator(LOCATOR)


@pytest.fixture
def transfer() -> FakeTransfer:
    return FakeTransfer()


@pytest.fixture
def provisioner(tmp_path, transfer) -> ArtifactProvisioner:
    return ArtifactProvisioner(tmp_path / "models", transfer=transfer, platform_name="linux")


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(max_tokens=256, backend="cpu", max_new_tokens=32)


@pytest.fixture
def controller(provisioner, runtime, artifact, engine_config) -> SessionController:
    return SessionController(
        provisioner,
        EngineHandle(lambda: runtime),
        artifact,
        engine_config,
        Instrumentation(5),
    )
