"""Chat session: ordered turns plus one generation context."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union

from .engines.base import GenerationContext, GenerationOutput, GenerationSpec
from .errors import AirChatError, ConcurrentGenerationError, GenerationError, InvalidSessionState
from .prompts import DEFAULT_SYSTEM, build_chat_messages

logger = logging.getLogger(__name__)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatTurn:
    role: Role
    content: str


@dataclass(frozen=True)
class TextResponse:
    text: str


@dataclass(frozen=True)
class UnsupportedResponse:
    kind: str


Response = Union[TextResponse, UnsupportedResponse]


class ChatSession:
    def __init__(
        self,
        context: GenerationContext,
        gen: GenerationSpec,
        system_prompt: str | None = DEFAULT_SYSTEM,
        on_release: Callable[["ChatSession"], None] | None = None,
    ) -> None:
        self._context = context
        self._gen = gen
        self._system_prompt = system_prompt
        self._on_release = on_release
        self._turns: list[ChatTurn] = []
        self._generating = False
        self._released = False
        self.last_output: GenerationOutput | None = None

    @property
    def turns(self) -> tuple[ChatTurn, ...]:
        return tuple(self._turns)

    @property
    def released(self) -> bool:
        return self._released

    @property
    def generating(self) -> bool:
        return self._generating

    @property
    def pending_turn(self) -> ChatTurn | None:
        """The trailing user turn that has no assistant reply yet, if any."""
        if self._turns and self._turns[-1].role is Role.USER:
            return self._turns[-1]
        return None

    def discard_pending(self) -> ChatTurn | None:
        if self._generating:
            raise ConcurrentGenerationError("Cannot drop a turn while a generation is in progress")
        pending = self.pending_turn
        if pending is not None:
            self._turns.pop()
        return pending

    def append_turn(self, role: Role | str, content: str) -> ChatTurn:
        if self._released:
            raise InvalidSessionState("Chat session has been released")
        if not content:
            raise ValueError("Turn content must not be empty")
        turn = ChatTurn(role=Role(role), content=content)
        self._turns.append(turn)
        return turn

    async def generate(self) -> Response:
        """Run one generation over the current turns.

        A text reply is appended as an assistant turn. Reply shapes the
        session cannot render come back as :class:`UnsupportedResponse` and
        leave the history as it was. On :class:`GenerationError` nothing is
        appended, so the pending user turn can be retried.
        """
        if self._generating:
            raise ConcurrentGenerationError("A generation is already in progress for this session")
        if self._released:
            raise InvalidSessionState("Chat session has been released")

        self._generating = True
        try:
            messages = build_chat_messages(self._turns, self._system_prompt)
            try:
                raw = await asyncio.to_thread(self._context.generate, messages, self._gen)
            except GenerationError:
                raise
            except AirChatError as exc:
                raise GenerationError(str(exc), cause=exc) from exc
            except Exception as exc:  # noqa: BLE001
                raise GenerationError(f"Engine failed to generate: {exc}", cause=exc) from exc
        finally:
            self._generating = False

        if isinstance(raw, GenerationOutput):
            self.last_output = raw
            self._turns.append(ChatTurn(role=Role.ASSISTANT, content=raw.text))
            return TextResponse(text=raw.text)
        logger.warning("Unsupported response type from engine: %s", type(raw).__name__)
        return UnsupportedResponse(kind=type(raw).__name__)

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            self._context.close()
        finally:
            if self._on_release is not None:
                self._on_release(self)
