"""Tests for chat session turn handling and generation."""
from __future__ import annotations

import asyncio
import threading

import pytest

from airchat.engines.base import GenerationSpec
from airchat.errors import ConcurrentGenerationError, GenerationError, InvalidSessionState
from airchat.session import ChatSession, ChatTurn, Role, TextResponse, UnsupportedResponse

from .fakes import FakeRuntime


def _session(runtime: FakeRuntime) -> ChatSession:
    gen = GenerationSpec(max_new_tokens=16, temperature=0.0, top_p=1.0, do_sample=False, max_context=128)
    return ChatSession(runtime.open_context(), gen)


def test_turns_keep_call_order():
    session = _session(FakeRuntime())
    contents = ["one", "two", "three", "four"]
    for idx, content in enumerate(contents):
        session.append_turn(Role.USER if idx % 2 == 0 else Role.ASSISTANT, content)

    assert [t.content for t in session.turns] == contents
    assert session.turns[1] == ChatTurn(role=Role.ASSISTANT, content="two")


def test_append_turn_rejects_empty_content():
    session = _session(FakeRuntime())
    with pytest.raises(ValueError):
        session.append_turn(Role.USER, "")
    assert session.turns == ()


def test_append_turn_does_not_touch_engine():
    runtime = FakeRuntime()
    session = _session(runtime)
    session.append_turn(Role.USER, "hello")
    assert runtime.contexts[0].messages == []


@pytest.mark.asyncio
async def test_generate_appends_assistant_turn():
    runtime = FakeRuntime()
    runtime.replies = ["Hi there"]
    session = _session(runtime)
    session.append_turn(Role.USER, "Hello")

    response = await session.generate()

    assert response == TextResponse(text="Hi there")
    assert session.turns[-1] == ChatTurn(role=Role.ASSISTANT, content="Hi there")
    assert session.last_output.generated_tokens == 3
    sent = runtime.contexts[0].messages[0]
    assert sent[-1] == {"role": "user", "content": "Hello"}


@pytest.mark.asyncio
async def test_generate_failure_keeps_user_turn_only():
    runtime = FakeRuntime()
    runtime.replies = [RuntimeError("engine crashed")]
    session = _session(runtime)
    session.append_turn(Role.USER, "Hello")

    with pytest.raises(GenerationError, match="engine crashed"):
        await session.generate()

    assert session.turns == (ChatTurn(role=Role.USER, content="Hello"),)
    assert not session.generating


@pytest.mark.asyncio
async def test_unknown_reply_shape_is_unsupported():
    runtime = FakeRuntime()
    runtime.replies = [{"function_call": "lookup"}]
    session = _session(runtime)
    session.append_turn(Role.USER, "Hello")

    response = await session.generate()

    assert response == UnsupportedResponse(kind="dict")
    assert len(session.turns) == 1


@pytest.mark.asyncio
async def test_generate_is_not_reentrant():
    runtime = FakeRuntime()
    runtime.gate = threading.Event()
    runtime.replies = ["first"]
    session = _session(runtime)
    session.append_turn(Role.USER, "Hello")

    pending = asyncio.create_task(session.generate())
    await asyncio.to_thread(runtime.started.wait, 5)

    with pytest.raises(ConcurrentGenerationError):
        await session.generate()

    with pytest.raises(ConcurrentGenerationError):
        session.discard_pending()

    runtime.gate.set()
    assert await pending == TextResponse(text="first")
    assert [t.content for t in session.turns] == ["Hello", "first"]


def test_release_is_idempotent_without_generation():
    runtime = FakeRuntime()
    session = _session(runtime)

    session.release()
    session.release()

    assert session.released
    assert runtime.events == ["session.close"]


@pytest.mark.asyncio
async def test_released_session_rejects_use():
    session = _session(FakeRuntime())
    session.release()

    with pytest.raises(InvalidSessionState):
        session.append_turn(Role.USER, "hi")
    with pytest.raises(InvalidSessionState):
        await session.generate()


def test_discard_pending_drops_only_unanswered_user_turn():
    session = _session(FakeRuntime())
    assert session.discard_pending() is None

    session.append_turn(Role.USER, "Hello")
    session.append_turn(Role.ASSISTANT, "Hi")
    assert session.pending_turn is None
    assert session.discard_pending() is None

    session.append_turn(Role.USER, "Lost")
    assert session.pending_turn == ChatTurn(role=Role.USER, content="Lost")
    assert session.discard_pending() == ChatTurn(role=Role.USER, content="Lost")
    assert [t.content for t in session.turns] == ["Hello", "Hi"]
