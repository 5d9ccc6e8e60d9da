"""Error taxonomy."""
from __future__ import annotations


class AirChatError(Exception):
    """Base error. ``stage`` names the lifecycle step that raised it."""

    stage = "session"

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause

    def describe(self) -> str:
        text = f"[{self.stage}] {self}"
        if self.cause is not None and str(self.cause) and str(self.cause) not in text:
            text += f" (caused by {type(self.cause).__name__}: {self.cause})"
        return text


class ConfigError(AirChatError):
    stage = "config"


class UnsupportedPlatform(AirChatError):
    stage = "platform"


class TransferError(AirChatError):
    stage = "transfer"

    def __init__(self, message: str, *, locator: str, cause: BaseException | None = None) -> None:
        super().__init__(message, cause=cause)
        self.locator = locator


class EngineInitError(AirChatError):
    stage = "engine_load"


class InvalidEngineState(AirChatError):
    stage = "engine"


class ConcurrentGenerationError(AirChatError):
    stage = "generate"


class GenerationError(AirChatError):
    stage = "generate"


class InvalidSessionState(AirChatError):
    stage = "session"
