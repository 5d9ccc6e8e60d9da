"""AirChat UI entrypoint."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import time
from dataclasses import replace

import gradio as gr

from .config import AppConfig, RootConfig, load_config
from .controller import SessionController, SessionState
from .engines.airllm_engine import AirLLMEngine
from .engines.handle import EngineHandle
from .errors import AirChatError
from .metrics.instrumentation import Instrumentation
from .provisioning import ArtifactProvisioner
from .registry import ModelRegistry
from .ui.state import AppState

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="AirChat UI")
    parser.add_argument("--config", default="configs/airchat.yaml")
    parser.add_argument("--host")
    parser.add_argument("--port", type=int)
    parser.add_argument("--title")
    parser.add_argument("--model", help="model key from the config")
    parser.add_argument("--backend", choices=["cpu", "gpu", "auto"])
    parser.add_argument("--max-tokens", type=int)
    parser.add_argument("--storage-dir")
    parser.add_argument("--log-level")
    parser.add_argument("--offline", action="store_true")
    parser.add_argument("--share", action="store_true")
    return parser.parse_args()


def apply_overrides(cfg: RootConfig, args: argparse.Namespace) -> RootConfig:
    if args.title:
        cfg.app.title = args.title
    if args.host:
        cfg.app.host = args.host
    if args.port is not None:
        cfg.app.port = args.port
    if args.model:
        cfg.app.default_model = args.model
    if args.storage_dir:
        cfg.app.storage_dir = args.storage_dir
    if args.log_level:
        cfg.app.log_level = args.log_level.upper()
    if args.offline:
        cfg.app.offline_mode = True
    if args.backend:
        cfg.engine = replace(cfg.engine, backend=args.backend)
    if args.max_tokens is not None:
        cfg.engine = replace(cfg.engine, max_tokens=args.max_tokens)
    return cfg


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def ensure_offline(cfg: AppConfig) -> None:
    # artifacts are provisioned explicitly; the engine must never reach the hub
    if cfg.offline_mode:
        os.environ.setdefault("HF_HUB_OFFLINE", "1")
        os.environ.setdefault("TRANSFORMERS_OFFLINE", "1")


def build_controller(cfg: RootConfig) -> SessionController:
    registry = ModelRegistry(cfg.models)
    artifact = registry.artifact(cfg.app.default_model)
    provisioner = ArtifactProvisioner(
        cfg.app.storage_dir,
        supported_platforms=cfg.app.supported_platforms,
    )
    return SessionController(
        provisioner,
        EngineHandle(AirLLMEngine),
        artifact,
        cfg.engine,
        Instrumentation(cfg.app.sampling_interval_ms),
    )


def build_app(cfg: RootConfig, controller: SessionController, state: AppState | None = None) -> gr.Blocks:
    state = state if state is not None else AppState()
    state.bind(controller)

    def _view():
        return state.chat_messages(), state.status_markdown(), state.metrics_markdown()

    with gr.Blocks(title=cfg.app.title) as demo:
        gr.Markdown(f"# {cfg.app.title}")
        status_md = gr.Markdown(state.status_markdown())
        chatbot = gr.Chatbot(label="Chat")
        user_input = gr.Textbox(label="Message", placeholder="Type your message")
        send_btn = gr.Button("Send")
        metrics_md = gr.Markdown("No metrics yet.")

        async def _initialize():
            state.loop = asyncio.get_running_loop()
            if controller.state not in (SessionState.UNINITIALIZED, SessionState.FAILED):
                return _view()
            try:
                await controller.initialize()
            except AirChatError as exc:
                gr.Warning(f"Failed to load model: {exc}")
            return _view()

        async def _handle_chat(message: str):
            state.loop = asyncio.get_running_loop()
            result = await controller.submit(message)
            if not result.accepted:
                # keep the text so it can be sent once the model is ready
                return (*_view(), message)
            return (*_view(), "")

        demo.load(_initialize, outputs=[chatbot, status_md, metrics_md])
        send_btn.click(_handle_chat, inputs=[user_input], outputs=[chatbot, status_md, metrics_md, user_input])
        user_input.submit(_handle_chat, inputs=[user_input], outputs=[chatbot, status_md, metrics_md, user_input])

    return demo


def shutdown(controller: SessionController, loop: asyncio.AbstractEventLoop | None, timeout: float = 30.0) -> None:
    """Dispose the controller on the loop that served its requests.

    Falls back to a fresh loop when the serving loop never started or has
    already stopped.
    """
    if controller.state is SessionState.DISPOSED:
        return
    if loop is not None and loop.is_running():
        asyncio.run_coroutine_threadsafe(controller.dispose(), loop).result(timeout)
    else:
        asyncio.run(controller.dispose())


def main() -> None:
    args = parse_args()
    cfg = apply_overrides(load_config(args.config), args)
    configure_logging(cfg.app.log_level)
    ensure_offline(cfg.app)

    controller = build_controller(cfg)
    state = AppState()
    app = build_app(cfg, controller, state)
    app.queue(default_concurrency_limit=1)
    logger.info("Serving %s on %s:%d", cfg.app.title, cfg.app.host, cfg.app.port)
    try:
        app.launch(server_name=cfg.app.host, server_port=cfg.app.port, share=args.share, prevent_thread_lock=True)
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Keyboard interruption, shutting down")
    finally:
        shutdown(controller, state.loop)
        app.close()


if __name__ == "__main__":
    main()
