"""Tests for the UI view state and prompt rendering."""
from __future__ import annotations

import pytest

from airchat.controller import SessionState
from airchat.prompts import _render_prompt, build_chat_messages
from airchat.session import ChatTurn, Role
from airchat.ui.state import AppState


@pytest.mark.asyncio
async def test_app_state_follows_controller(controller, runtime):
    runtime.replies = ["Hi there"]
    state = AppState()
    state.bind(controller)

    await controller.initialize()
    await controller.submit("Hello")

    assert state.snapshot.state is SessionState.READY
    assert state.chat_messages() == [
        {"role": "user", "content": "Hello"},
        {"role": "assistant", "content": "Hi there"},
    ]
    assert "tokens/s" in state.metrics_markdown()
    assert "Ready" in state.status_markdown()


def test_failed_status_includes_error():
    from airchat.controller import SessionSnapshot

    state = AppState(snapshot=SessionSnapshot(state=SessionState.FAILED, error="[engine_load] oom"))
    assert "oom" in state.status_markdown()
    assert state.metrics_markdown() == "No metrics yet."


def test_build_chat_messages_order():
    turns = [ChatTurn(Role.USER, "a"), ChatTurn(Role.ASSISTANT, "b")]
    messages = build_chat_messages(turns, "sys")
    assert messages == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "a"},
        {"role": "assistant", "content": "b"},
    ]


def test_render_prompt_without_chat_template():
    prompt = _render_prompt(object(), [{"role": "user", "content": "hi"}])
    assert prompt == "User: hi\nAssistant:"
