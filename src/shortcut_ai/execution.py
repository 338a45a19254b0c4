from __future__ import annotations

import logging
import queue
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Protocol

import requests

from shortcut_ai.actions_store import ActionRegistry
from shortcut_ai.config import AppConfig
from shortcut_ai.errors import (
    ActionNotFound,
    CaptureFailed,
    FailureReason,
    InvalidResponse,
    MissingCredential,
    NetworkError,
    PluginError,
)
from shortcut_ai.execution_log import ExecutionLogStore
from shortcut_ai.models import Action
from shortcut_ai.plugins import PluginProcessor
from shortcut_ai.providers import ProviderKind, ProviderRequest, adapter_for
from shortcut_ai.secret_store import SecretStore

LOGGER = logging.getLogger(__name__)

WEB_SEARCH_SYSTEM_PROMPT = "Search the web and answer concisely. Cite your sources."


class SessionState(str, Enum):
    IDLE = "Idle"
    CAPTURING = "Capturing"
    REQUESTING = "Requesting"
    STREAMING = "Streaming"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED}


class EventKind(str, Enum):
    DELTA = "delta"
    FINAL = "final"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ExecutionEvent:
    """One message on the result stream.

    ``text`` holds the chunk for ``delta``, the full result for ``final`` and
    whatever was produced before the failure for ``error``.
    """

    session_id: str
    action_id: str
    kind: EventKind
    text: str = ""
    reason: FailureReason | None = None
    message: str = ""
    action_type: str = ""


@dataclass
class ExecutionSession:
    action_id: str
    action_name: str
    action_type: str = ""
    prompt: str = ""
    input_text: str = ""
    provider: str | None = None
    model: str | None = None
    state: SessionState = SessionState.IDLE
    failure_reason: FailureReason | None = None
    error_message: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    chunks: list[str] = field(default_factory=list)

    _cancel: threading.Event = field(default_factory=threading.Event, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _response: Any = field(default=None, repr=False)
    _started_monotonic: float = field(default_factory=time.monotonic, repr=False)

    @property
    def buffer(self) -> str:
        return "".join(self.chunks)

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self._started_monotonic) * 1000.0


class ResultSink(Protocol):
    def deliver(self, event: ExecutionEvent) -> None: ...


class EventBus:
    """Fan-out of execution events to queue subscribers and sinks.

    Sinks run on the session's worker thread and own their own thread affinity.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._queues: list[queue.Queue[ExecutionEvent]] = []
        self._sinks: list[ResultSink | Callable[[ExecutionEvent], None]] = []

    def subscribe(self) -> queue.Queue[ExecutionEvent]:
        q: queue.Queue[ExecutionEvent] = queue.Queue()
        with self._lock:
            self._queues.append(q)
        return q

    def unsubscribe(self, q: queue.Queue[ExecutionEvent]) -> None:
        with self._lock:
            if q in self._queues:
                self._queues.remove(q)

    def add_sink(self, sink: ResultSink | Callable[[ExecutionEvent], None]) -> None:
        with self._lock:
            self._sinks.append(sink)

    def publish(self, event: ExecutionEvent) -> None:
        with self._lock:
            queues = list(self._queues)
            sinks = list(self._sinks)

        for q in queues:
            q.put_nowait(event)
        for sink in sinks:
            try:
                deliver = getattr(sink, "deliver", sink)
                deliver(event)
            except Exception:
                LOGGER.exception("Result sink failed for session %s", event.session_id)


class Transport(Protocol):
    def send(self, request: ProviderRequest, timeout: float) -> Any: ...


class RequestsTransport:
    def __init__(self, session: requests.Session | None = None) -> None:
        self.session = session or requests.Session()

    def send(self, request: ProviderRequest, timeout: float) -> requests.Response:
        return self.session.post(
            request.url,
            json=request.body,
            headers=request.headers,
            timeout=timeout,
            stream=request.stream,
        )


class TextCapture(Protocol):
    def capture(self) -> str: ...


def _spawn_thread(target: Callable[[], None], name: str) -> None:
    threading.Thread(target=target, name=name, daemon=True).start()


class ExecutionCoordinator:
    """Runs action sessions, one in flight per action id.

    ``trigger`` returns the new session id, or None when a session for the same
    action is still running. Each session runs on its own worker thread and
    publishes ``delta``/``final``/``error``/``cancelled`` events on the bus.
    """

    def __init__(
        self,
        registry: ActionRegistry,
        secrets: SecretStore,
        capture: TextCapture,
        config: AppConfig | None = None,
        transport: Transport | None = None,
        plugins: PluginProcessor | None = None,
        bus: EventBus | None = None,
        execution_log: ExecutionLogStore | None = None,
        spawn: Callable[[Callable[[], None], str], None] | None = None,
    ) -> None:
        self.registry = registry
        self.secrets = secrets
        self.capture = capture
        self.config = config or AppConfig()
        self.transport = transport or RequestsTransport()
        self.plugins = plugins or PluginProcessor()
        self.bus = bus or EventBus()
        self.execution_log = execution_log
        self._spawn = spawn or _spawn_thread

        self._slots_lock = threading.Lock()
        self._slots: dict[str, ExecutionSession] = {}

    def trigger(self, action_id: str, input_text: str | None = None) -> str | None:
        action = self.registry.get(action_id)
        if action is None:
            raise ActionNotFound(action_id)

        with self._slots_lock:
            running = self._slots.get(action_id)
            if running is not None:
                LOGGER.info("Ignoring trigger for %s; session %s still %s", action.name, running.id, running.state.value)
                return None
            session = ExecutionSession(
                action_id=action.id,
                action_name=action.name,
                action_type=action.action_type.value,
                prompt=action.prompt,
            )
            self._slots[action_id] = session

        LOGGER.info("Starting session %s for action %s", session.id, action.name)
        self._spawn(lambda: self._run(session, action, input_text), f"execution-{session.id[:8]}")
        return session.id

    def cancel(self, session_id: str) -> bool:
        """Request cancellation; returns False when the session is unknown or already finished."""
        session = self.session(session_id)
        if session is None:
            return False

        with session._lock:
            if session.state.is_terminal or session.cancel_requested:
                return False
            session._cancel.set()
            response = session._response

        LOGGER.info("Cancelling session %s", session_id)
        _close_quietly(response)
        self._finish(session, SessionState.CANCELLED)
        return True

    def session(self, session_id: str) -> ExecutionSession | None:
        with self._slots_lock:
            return next((s for s in self._slots.values() if s.id == session_id), None)

    def active_session(self, action_id: str) -> ExecutionSession | None:
        with self._slots_lock:
            return self._slots.get(action_id)

    def active_sessions(self) -> list[ExecutionSession]:
        with self._slots_lock:
            return list(self._slots.values())

    def is_running(self, action_id: str) -> bool:
        return self.active_session(action_id) is not None

    # Worker
    def _run(self, session: ExecutionSession, action: Action, input_text: str | None) -> None:
        try:
            text = self._capture_input(session, action, input_text)
            if text is None:
                return

            if action.is_plugin:
                self._run_plugin(session, action, text)
            else:
                self._run_provider(session, action, text)
        except CaptureFailed as exc:
            self._fail(session, FailureReason.NO_SELECTION, str(exc))
        except MissingCredential as exc:
            self._fail(session, FailureReason.MISSING_CREDENTIAL, str(exc))
        except NetworkError as exc:
            self._fail(session, FailureReason.NETWORK_ERROR, str(exc))
        except requests.RequestException as exc:
            self._fail(session, FailureReason.NETWORK_ERROR, f"Network error: {exc}")
        except InvalidResponse as exc:
            self._fail(session, FailureReason.INVALID_RESPONSE, str(exc))
        except PluginError as exc:
            self._fail(session, FailureReason.PLUGIN_ERROR, str(exc))
        except Exception as exc:
            LOGGER.exception("Session %s failed unexpectedly", session.id)
            self._fail(session, FailureReason.INTERNAL_ERROR, str(exc) or exc.__class__.__name__)
        finally:
            with session._lock:
                response = session._response
                session._response = None
            _close_quietly(response)
            if not session.state.is_terminal:
                # Worker returned without a terminal transition, only possible after cancel.
                self._finish(session, SessionState.CANCELLED)

    def _capture_input(self, session: ExecutionSession, action: Action, input_text: str | None) -> str | None:
        if not self._advance(session, SessionState.CAPTURING):
            return None

        if input_text is not None:
            text = input_text
        elif action.requires_input:
            text = self.capture.capture()
        else:
            text = ""

        if action.requires_input and not text.strip():
            raise CaptureFailed()

        with session._lock:
            session.input_text = text
        return text

    def _run_plugin(self, session: ExecutionSession, action: Action, text: str) -> None:
        if action.plugin_kind is None:
            raise PluginError(f"Action {action.name} has no plugin configured")
        if not self._advance(session, SessionState.STREAMING):
            return
        result = self.plugins.process(action.plugin_kind, text)
        if self._append(session, result):
            self._finish(session, SessionState.COMPLETED)

    def _run_provider(self, session: ExecutionSession, action: Action, text: str) -> None:
        provider, model = self._resolve_provider(action)
        with session._lock:
            session.provider = provider
            session.model = model
        if not self._advance(session, SessionState.REQUESTING):
            return

        api_key = self.secrets.get_api_key(provider)
        if not api_key:
            raise MissingCredential(provider)

        adapter = adapter_for(provider)
        system_prompt = action.prompt
        if action.is_web_search and not system_prompt.strip():
            system_prompt = WEB_SEARCH_SYSTEM_PROMPT
        request = adapter.build_request(
            system_prompt,
            text,
            model,
            api_key,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
        )
        LOGGER.info(
            "Requesting %s (model=%s, stream=%s, chars=%d)",
            provider,
            request.body.get("model"),
            request.stream,
            len(text),
        )

        response = self.transport.send(request, self.config.request_timeout_ms / 1000.0)
        with session._lock:
            session._response = response
            if session.cancel_requested:
                return

        status = int(getattr(response, "status_code", 200))
        if not 200 <= status < 300:
            body = getattr(response, "content", b"") or b""
            raise NetworkError(adapter.parse_error(body) or f"HTTP {status}")

        if not self._advance(session, SessionState.STREAMING):
            return

        if request.stream:
            self._consume_stream(session, adapter, response.iter_lines())
            final_text = session.buffer.strip()
        else:
            final_text = adapter.parse_final(response.content)
            if final_text and not self._append(session, final_text):
                return

        if not final_text:
            raise InvalidResponse("Provider returned no content")
        with session._lock:
            if session.cancel_requested:
                return
            session.chunks = [final_text]
        self._finish(session, SessionState.COMPLETED)

    def _consume_stream(self, session: ExecutionSession, adapter, lines: Iterable[bytes]) -> None:  # type: ignore[no-untyped-def]
        for raw in lines:
            if session.cancel_requested:
                return
            if not raw:
                continue
            if adapter.is_stream_end(raw):
                return
            delta = adapter.parse_chunk(raw)
            if delta and not self._append(session, delta):
                return

    def _resolve_provider(self, action: Action) -> tuple[str, str | None]:
        if action.is_web_search:
            return ProviderKind.PERPLEXITY.value, action.model
        provider = action.provider or self.config.selected_provider
        model = action.model
        if model is None and provider == self.config.selected_provider:
            model = self.config.selected_model
        return provider, model

    # State transitions
    def _advance(self, session: ExecutionSession, state: SessionState) -> bool:
        with session._lock:
            if session.cancel_requested or session.state.is_terminal:
                return False
            session.state = state
        return True

    def _append(self, session: ExecutionSession, text: str) -> bool:
        """Buffer one chunk and publish it; False once the session was cancelled."""
        with session._lock:
            if session.cancel_requested or session.state.is_terminal:
                return False
            session.chunks.append(text)
            self.bus.publish(
                ExecutionEvent(session.id, session.action_id, EventKind.DELTA, text=text, action_type=session.action_type)
            )
        return True

    def _fail(self, session: ExecutionSession, reason: FailureReason, message: str) -> None:
        if session.cancel_requested:
            return
        LOGGER.warning("Session %s failed (%s): %s", session.id, reason.value, message)
        self._finish(session, SessionState.FAILED, reason, message)

    def _finish(
        self,
        session: ExecutionSession,
        state: SessionState,
        reason: FailureReason | None = None,
        message: str = "",
    ) -> None:
        with session._lock:
            if session.state.is_terminal:
                return
            if session.cancel_requested:
                state = SessionState.CANCELLED
                reason = None
                message = ""
            session.state = state
            session.failure_reason = reason
            session.error_message = message

            if state is SessionState.COMPLETED:
                event = ExecutionEvent(
                    session.id, session.action_id, EventKind.FINAL, text=session.buffer, action_type=session.action_type
                )
            elif state is SessionState.FAILED:
                event = ExecutionEvent(
                    session.id,
                    session.action_id,
                    EventKind.ERROR,
                    text=session.buffer,
                    reason=reason,
                    message=message,
                    action_type=session.action_type,
                )
            else:
                event = ExecutionEvent(session.id, session.action_id, EventKind.CANCELLED)

        with self._slots_lock:
            if self._slots.get(session.action_id) is session:
                del self._slots[session.action_id]

        LOGGER.info("Session %s %s after %.0fms", session.id, state.value.lower(), session.elapsed_ms())
        self.bus.publish(event)
        if state is not SessionState.CANCELLED:
            self._record(session)

    def _record(self, session: ExecutionSession) -> None:
        if self.execution_log is None:
            return
        try:
            self.execution_log.record(
                action_id=session.action_id,
                action_name=session.action_name,
                prompt=session.prompt,
                provider=session.provider,
                model_id=session.model,
                duration_ms=session.elapsed_ms(),
                input_length=len(session.input_text),
                output_length=len(session.buffer),
                success=session.state is SessionState.COMPLETED,
                error_message=session.error_message or None,
            )
        except Exception:
            LOGGER.exception("Failed to record execution for session %s", session.id)


def _close_quietly(response: Any) -> None:
    if response is None:
        return
    try:
        response.close()
    except Exception:
        LOGGER.debug("Closing response failed", exc_info=True)


__all__ = [
    "EventBus",
    "EventKind",
    "ExecutionCoordinator",
    "ExecutionEvent",
    "ExecutionSession",
    "RequestsTransport",
    "ResultSink",
    "SessionState",
]
