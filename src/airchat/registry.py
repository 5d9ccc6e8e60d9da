"""Model registry helpers."""
from __future__ import annotations

from .config import ModelSpec
from .provisioning import ModelArtifact


class ModelRegistry:
    def __init__(self, models: list[ModelSpec]):
        self._models = models

    def list(self) -> list[ModelSpec]:
        return list(self._models)

    def get(self, key: str) -> ModelSpec:
        for model in self._models:
            if model.key == key:
                return model
        raise KeyError(f"Model not found: {key}")

    def default(self, key: str | None = None) -> ModelSpec:
        if key:
            return self.get(key)
        if not self._models:
            raise KeyError("No models configured")
        return self._models[0]

    def artifact(self, key: str | None = None) -> ModelArtifact:
        model = self.default(key)
        return ModelArtifact.from_locator(model.locator, model.storage_key, model.companions)
