"""Session controller: the lifecycle state machine behind the chat UI.

The controller owns the provisioner, the engine instance and the chat session,
and is the only component with UI-facing state. Every transition publishes an
immutable :class:`SessionSnapshot` to subscribers.

    Uninitialized -> Loading -> Ready <-> Generating
                         \\-> Failed
    (any) -> Disposed

Lifecycle-affecting calls (initialize, submit, retry, dispose) are serialized with
one lock. A submit while another generation runs is rejected, not queued.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, NoReturn

from .config import EngineConfig
from .engines.handle import EngineHandle, EngineInstance
from .errors import AirChatError, GenerationError, InvalidSessionState
from .metrics.instrumentation import Instrumentation, turn_metrics
from .provisioning import ArtifactProvisioner, ModelArtifact
from .session import ChatSession, Response, Role, TextResponse, UnsupportedResponse

logger = logging.getLogger(__name__)

UNSUPPORTED_PLACEHOLDER = "[Unsupported response type]"


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    GENERATING = "generating"
    FAILED = "failed"
    DISPOSED = "disposed"


@dataclass(frozen=True)
class LogEntry:
    """One line of the visible conversation log.

    ``kind`` is ``user`` or ``assistant`` for conversation turns, ``error``
    for failed generations and ``placeholder`` for replies that cannot be
    rendered.
    """

    kind: str
    text: str


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState = SessionState.UNINITIALIZED
    log: tuple[LogEntry, ...] = ()
    error: str | None = None
    metrics: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class SubmitResult:
    accepted: bool
    reason: str | None = None
    response: Response | None = None
    error: str | None = None


Subscriber = Callable[[SessionSnapshot], None]


def _assert_never(value: NoReturn) -> NoReturn:
    raise TypeError(f"Unhandled response kind: {type(value).__name__}")


class SessionController:
    def __init__(
        self,
        provisioner: ArtifactProvisioner,
        engine_handle: EngineHandle,
        artifact: ModelArtifact,
        engine_config: EngineConfig,
        instrumentation: Instrumentation | None = None,
    ) -> None:
        self._provisioner = provisioner
        self._engine_handle = engine_handle
        self._artifact = artifact
        self._engine_config = engine_config
        self._instrumentation = instrumentation or Instrumentation(50)
        self._snapshot = SessionSnapshot()
        self._subscribers: list[Subscriber] = []
        self._lock = asyncio.Lock()
        self._closing = False
        self.engine: EngineInstance | None = None
        self.session: ChatSession | None = None

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def state(self) -> SessionState:
        return self._snapshot.state

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for every published snapshot.

        The current snapshot is delivered immediately. Returns a function that
        removes the subscription.
        """
        self._check_open("subscribe")
        self._subscribers.append(callback)
        callback(self._snapshot)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _publish(self, **changes: Any) -> None:
        previous = self._snapshot.state
        self._snapshot = replace(self._snapshot, **changes)
        if self._snapshot.state is not previous:
            logger.info("Session state %s -> %s", previous.value, self._snapshot.state.value)
        for callback in list(self._subscribers):
            try:
                callback(self._snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Snapshot subscriber failed")

    def _check_open(self, operation: str) -> None:
        if self._closing or self._snapshot.state is SessionState.DISPOSED:
            raise InvalidSessionState(f"Cannot {operation}: session controller is disposed")

    async def initialize(self) -> None:
        """Provision the artifact, load the engine and open the chat session.

        Steps run one after another. The first failure moves the controller
        to ``Failed``, releases anything already acquired and re-raises the
        originating error. Calling again from ``Failed`` retries.
        """
        self._check_open("initialize")
        if self.state not in (SessionState.UNINITIALIZED, SessionState.FAILED):
            raise InvalidSessionState(f"Cannot initialize from state {self.state.value}")

        async with self._lock:
            self._check_open("initialize")
            self._publish(state=SessionState.LOADING, error=None)
            try:
                path = await self._provisioner.ensure(self._artifact)
                self.engine = await self._engine_handle.load(path, self._engine_config)
                self.session = self._engine_handle.open_session(self.engine, self._engine_config.system_prompt)
            except Exception as exc:
                self._release_resources()
                message = exc.describe() if isinstance(exc, AirChatError) else f"[initialize] {exc}"
                logger.error("Model initialization error: %s", message)
                self._publish(state=SessionState.FAILED, error=message)
                raise
            self._publish(state=SessionState.READY)

    async def submit(self, text: str) -> SubmitResult:
        """Send one user message and wait for the reply.

        Empty text, or a controller that is not ``Ready``, yields a rejected
        result and leaves state and log untouched. Generation failures are
        turned into an ``error`` log entry and the controller returns to
        ``Ready``. A user turn left unanswered by an earlier failure is
        replaced by the new message so the engine always sees alternating
        roles.
        """
        self._check_open("submit")
        message = (text or "").strip()
        if not message:
            return SubmitResult(accepted=False, reason="empty message")
        if self.state is not SessionState.READY or self.session is None:
            return SubmitResult(accepted=False, reason=f"controller is {self.state.value}")

        async with self._lock:
            session = self.session
            dropped = session.discard_pending()
            if dropped is not None:
                logger.info("Replacing unanswered user turn")
            session.append_turn(Role.USER, message)
            self._publish(
                state=SessionState.GENERATING,
                log=self._snapshot.log + (LogEntry(Role.USER.value, message),),
                error=None,
            )
            return await self._generate(session)

    async def retry(self) -> SubmitResult:
        """Generate again over the unanswered user turn, appending nothing."""
        self._check_open("retry")
        if self.state is not SessionState.READY or self.session is None:
            return SubmitResult(accepted=False, reason=f"controller is {self.state.value}")
        if self.session.pending_turn is None:
            return SubmitResult(accepted=False, reason="nothing to retry")

        async with self._lock:
            self._publish(state=SessionState.GENERATING, error=None)
            return await self._generate(self.session)

    async def _generate(self, session: ChatSession) -> SubmitResult:
        try:
            measured = await self._instrumentation.measure(session.generate)
        except GenerationError as exc:
            logger.warning("Generation failed: %s", exc.describe())
            self._publish(
                state=SessionState.READY,
                log=self._snapshot.log + (LogEntry("error", f"Error: {exc}"),),
                metrics=None,
            )
            return SubmitResult(accepted=True, error=exc.describe())

        response = measured.result
        if isinstance(response, TextResponse):
            entry = LogEntry(Role.ASSISTANT.value, response.text)
            metrics = turn_metrics(session.last_output, measured)
        elif isinstance(response, UnsupportedResponse):
            entry = LogEntry("placeholder", UNSUPPORTED_PLACEHOLDER)
            metrics = turn_metrics(None, measured)
        else:
            _assert_never(response)
        self._publish(
            state=SessionState.READY,
            log=self._snapshot.log + (entry,),
            metrics=MappingProxyType(metrics),
        )
        return SubmitResult(accepted=True, response=response)

    async def dispose(self) -> None:
        """Release the chat session, then the engine, and enter ``Disposed``.

        Waits for an in-flight operation to finish first. Cleanup errors are
        logged and never raised.
        """
        self._check_open("dispose")
        self._closing = True
        async with self._lock:
            self._release_resources()
            self._publish(state=SessionState.DISPOSED)

    def _release_resources(self) -> None:
        session, self.session = self.session, None
        engine, self.engine = self.engine, None
        if session is not None:
            try:
                session.release()
            except Exception:  # noqa: BLE001
                logger.exception("Error closing chat session")
        if engine is not None:
            try:
                self._engine_handle.release(engine)
            except Exception:  # noqa: BLE001
                logger.exception("Error releasing engine")

    async def __aenter__(self) -> "SessionController":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if not self._closing and self.state is not SessionState.DISPOSED:
            await self.dispose()
