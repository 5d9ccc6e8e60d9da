"""Prompt builders."""
from __future__ import annotations

from typing import Any, Iterable

DEFAULT_SYSTEM = "You are a helpful assistant."


def build_chat_messages(turns: Iterable[Any], system_prompt: str | None = DEFAULT_SYSTEM) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for turn in turns:
        messages.append({"role": str(turn.role.value), "content": turn.content})
    return messages


def _render_prompt(tokenizer: Any, messages: list[dict[str, str]]) -> str:
    if hasattr(tokenizer, "apply_chat_template"):
        return tokenizer.apply_chat_template(messages, tokenize=False, add_generation_prompt=True)
    lines = []
    for msg in messages:
        role = msg.get("role", "user").capitalize()
        lines.append(f"{role}: {msg.get('content','')}")
    lines.append("Assistant:")
    return "\n".join(lines)


def count_prompt_tokens(tokenizer: Any, messages: list[dict[str, str]]) -> int:
    prompt = _render_prompt(tokenizer, messages)
    return len(tokenizer(prompt)["input_ids"])


def fit_messages(tokenizer: Any, messages: list[dict[str, str]], budget: int) -> list[dict[str, str]]:
    """Drop the oldest turns until the rendered prompt fits in ``budget`` tokens.

    The system message always stays, and the kept history starts with a user
    turn. Returns an empty list when even the latest turn alone is too long.
    """
    system = [m for m in messages[:1] if m.get("role") == "system"]
    history = messages[len(system):]
    while history:
        if count_prompt_tokens(tokenizer, system + history) <= budget:
            return system + history
        history = history[1:]
        while history and history[0].get("role") != "user":
            history = history[1:]
    return []
