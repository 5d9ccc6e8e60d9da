"""Engine ownership: load, open a chat session, release."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable

from .base import DeviceSpec, GenerationSpec, LLMRuntime
from ..config import EngineConfig
from ..errors import EngineInitError, InvalidEngineState
from ..session import ChatSession

logger = logging.getLogger(__name__)


class EngineInstance:
    """A loaded runtime bound to one artifact and a fixed token budget."""

    def __init__(self, runtime: LLMRuntime, artifact_path: Path, config: EngineConfig, device: DeviceSpec) -> None:
        self.runtime = runtime
        self.artifact_path = artifact_path
        self.config = config
        self.device = device
        self.session: ChatSession | None = None
        self.released = False

    def __repr__(self) -> str:
        state = "released" if self.released else "live"
        return f"EngineInstance({self.artifact_path.name}, {self.device.kind}, {state})"


class EngineHandle:
    def __init__(self, runtime_factory: Callable[[], LLMRuntime]) -> None:
        self._runtime_factory = runtime_factory

    async def load(self, artifact_path: str | Path, config: EngineConfig) -> EngineInstance:
        """Load a runtime from ``artifact_path``.

        Any failure unloads the runtime and raises :class:`EngineInitError`;
        no instance is produced.
        """
        artifact_path = Path(artifact_path)
        runtime = self._runtime_factory()
        try:
            device = await asyncio.to_thread(
                runtime.load,
                str(artifact_path),
                config.backend,
                config.gpu_index,
                config.compression,
                config.layer_cache_dir,
                config.max_tokens,
            )
        except EngineInitError:
            self._unload_quietly(runtime)
            raise
        except Exception as exc:  # noqa: BLE001
            self._unload_quietly(runtime)
            raise EngineInitError(f"Failed to load engine from {artifact_path}: {exc}", cause=exc) from exc

        instance = EngineInstance(runtime, artifact_path, config, device)
        logger.info("Engine loaded: %r (max_tokens=%d)", instance, config.max_tokens)
        return instance

    def open_session(self, instance: EngineInstance, system_prompt: str | None = None) -> ChatSession:
        if instance.released:
            raise InvalidEngineState("Cannot open a session on a released engine instance")
        if instance.session is not None:
            raise InvalidEngineState("A chat session is already open on this engine instance")

        try:
            context = instance.runtime.open_context()
        except InvalidEngineState:
            raise
        except Exception as exc:  # noqa: BLE001
            raise InvalidEngineState(f"Failed to open generation context: {exc}", cause=exc) from exc

        gen = GenerationSpec(
            max_new_tokens=instance.config.max_new_tokens,
            temperature=instance.config.temperature,
            top_p=instance.config.top_p,
            do_sample=instance.config.do_sample,
            max_context=instance.config.max_tokens,
        )

        def _detach(session: ChatSession) -> None:
            if instance.session is session:
                instance.session = None

        kwargs = {} if system_prompt is None else {"system_prompt": system_prompt}
        session = ChatSession(context, gen, on_release=_detach, **kwargs)
        instance.session = session
        return session

    def release(self, instance: EngineInstance | None) -> None:
        if instance is None or instance.released:
            return
        if instance.session is not None and not instance.session.released:
            raise InvalidEngineState("Release the chat session before its engine instance")
        instance.released = True
        instance.runtime.unload()
        logger.info("Engine released: %r", instance)

    @staticmethod
    def _unload_quietly(runtime: LLMRuntime) -> None:
        try:
            runtime.unload()
        except Exception:  # noqa: BLE001
            logger.exception("Error unloading runtime after failed load")
