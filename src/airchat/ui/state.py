"""UI view state derived from controller snapshots."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..controller import SessionController, SessionSnapshot, SessionState

STATUS_TEXT = {
    SessionState.UNINITIALIZED: "Waiting to load the model...",
    SessionState.LOADING: "Loading model... This may take a while on first run.",
    SessionState.READY: "Ready.",
    SessionState.GENERATING: "Generating...",
    SessionState.FAILED: "Failed to load model.",
    SessionState.DISPOSED: "Session closed.",
}


@dataclass
class AppState:
    snapshot: SessionSnapshot = field(default_factory=SessionSnapshot)
    # event loop serving UI callbacks, captured on first use
    loop: asyncio.AbstractEventLoop | None = None

    def bind(self, controller: SessionController):
        return controller.subscribe(self._on_snapshot)

    def _on_snapshot(self, snapshot: SessionSnapshot) -> None:
        self.snapshot = snapshot

    def chat_messages(self) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        for entry in self.snapshot.log:
            if entry.kind == "user":
                messages.append({"role": "user", "content": entry.text})
            else:
                messages.append({"role": "assistant", "content": entry.text})
        return messages

    def status_markdown(self) -> str:
        text = f"**status:** {STATUS_TEXT[self.snapshot.state]}"
        if self.snapshot.error:
            text += f"\n\n**error:** {self.snapshot.error}"
        return text

    def metrics_markdown(self) -> str:
        return _metrics_markdown(self.snapshot.metrics)


def _metrics_markdown(metrics: Mapping[str, Any] | None) -> str:
    if not metrics:
        return "No metrics yet."
    lines = []
    if "tokens_per_s" in metrics:
        lines.append(f"**tokens/s:** {metrics['tokens_per_s']:.2f}")
        lines.append(f"**prompt_tokens:** {metrics['prompt_tokens']}")
        lines.append(f"**generated_tokens:** {metrics['generated_tokens']}")
    lines.append(f"**ram_peak_mb:** {metrics.get('ram_peak_mb', 0):.2f}")
    lines.append(f"**elapsed_s:** {metrics.get('elapsed_s', 0):.4f}")
    return "\n".join(lines)
