import json
import threading
from pathlib import Path

import pytest

from shortcut_ai.actions_store import ActionRegistry
from shortcut_ai.app import MAIN, ShortcutAIApp
from shortcut_ai.config import AppConfig, ConfigStore
from shortcut_ai.errors import ActionNotFound, CapacityExceeded, ShortcutConflict
from shortcut_ai.execution import EventKind
from shortcut_ai.execution_log import ExecutionLogStore
from shortcut_ai.hotkey import KeyEvent, KeyEventKind
from shortcut_ai.models import Action, Modifier, Shortcut
from shortcut_ai.shortcuts import MAIN_WINDOW_NAME


class FakeSecrets:
    def get_api_key(self, provider: str) -> str | None:
        return "sk-test" if provider == "openai" else None


class FakeCapture:
    def capture(self) -> str:
        return "teh text"


class FakeResponse:
    status_code = 200
    content = b""

    def iter_lines(self):  # type: ignore[no-untyped-def]
        for part in ("The ", "text"):
            yield f"data: {json.dumps({'choices': [{'delta': {'content': part}}]})}".encode("utf-8")
        yield b"data: [DONE]"

    def close(self) -> None:
        pass


class FakeTransport:
    def __init__(self) -> None:
        self.requests = []

    def send(self, request, timeout):  # type: ignore[no-untyped-def]
        self.requests.append(request)
        return FakeResponse()


class FakeSink:
    def __init__(self) -> None:
        self.events = []
        self.done = threading.Event()

    def deliver(self, event) -> None:  # type: ignore[no-untyped-def]
        self.events.append(event)
        if event.kind is EventKind.FINAL:
            self.done.set()


@pytest.fixture
def app(tmp_path: Path) -> ShortcutAIApp:
    opened = []
    snapshots = []
    instance = ShortcutAIApp(
        config_store=ConfigStore(path=tmp_path / "config.json"),
        secrets=FakeSecrets(),
        registry=ActionRegistry(path=tmp_path / "actions.json"),
        capture=FakeCapture(),
        transport=FakeTransport(),
        execution_log=ExecutionLogStore(db_path=tmp_path / "log.sqlite3"),
        paste_sink=FakeSink(),
        on_open_main=lambda: opened.append(True),
        on_recording_change=snapshots.append,
    )
    instance.opened = opened
    instance.snapshots = snapshots
    return instance


def _fix_grammar(app: ShortcutAIApp) -> Action:
    return next(a for a in app.registry.list() if a.name == "Fix Grammar")


def _key(key: str, *modifiers: Modifier) -> KeyEvent:
    return KeyEvent(KeyEventKind.KEY_DOWN, frozenset(modifiers), key, -1)


def test_trigger_by_token_runs_action_and_delivers_result(app: ShortcutAIApp) -> None:
    events = app.subscribe()

    session_id = app.trigger("command+shift+G")

    assert session_id is not None
    assert app.paste_sink.done.wait(5)
    kinds = []
    while True:
        event = events.get(timeout=5)
        kinds.append(event.kind)
        if event.kind is EventKind.FINAL:
            break
    assert kinds == [EventKind.DELTA, EventKind.DELTA, EventKind.FINAL]
    assert event.text == "The text"
    assert event.action_id == _fix_grammar(app).id
    assert app.paste_sink.events[-1].text == "The text"
    request = app.coordinator.transport.requests[0]
    assert request.body["messages"][1]["content"] == "teh text"


def test_main_shortcut_opens_main_window(app: ShortcutAIApp) -> None:
    assert app.trigger(Shortcut.of([Modifier.COMMAND, Modifier.SHIFT], "T")) is None
    assert app.opened == [True]


def test_unbound_shortcut_does_nothing(app: ShortcutAIApp) -> None:
    assert app.trigger("command+option+Z") is None
    assert app.opened == []
    assert app.coordinator.active_sessions() == []


def test_on_shortcut_reports_whether_event_was_handled(app: ShortcutAIApp) -> None:
    assert app._on_shortcut(Shortcut.parse("command+option+Z")) is False
    assert app._on_shortcut(Shortcut.parse("command+shift+T")) is True
    assert app.opened == [True]


def test_open_main_callback_failure_is_logged(tmp_path: Path) -> None:
    def boom() -> None:
        raise RuntimeError("window gone")

    app = ShortcutAIApp(
        config_store=ConfigStore(path=tmp_path / "config.json"),
        secrets=FakeSecrets(),
        registry=ActionRegistry(path=tmp_path / "actions.json"),
        execution_log=ExecutionLogStore(db_path=tmp_path / "log.sqlite3"),
        paste_sink=FakeSink(),
        on_open_main=boom,
    )

    assert app.trigger("command+shift+T") is None


def test_recording_conflict_then_retry(app: ShortcutAIApp) -> None:
    rephrase = next(a for a in app.registry.list() if a.name == "Rephrase Text")
    app.start_recording(rephrase.id)

    assert app.commit_or_retry(_key("G", Modifier.COMMAND, Modifier.SHIFT)) is True
    assert app.snapshots[-1].conflict_name == "Fix Grammar"
    assert app.recorder.is_recording

    assert app.commit_or_retry(_key("T", Modifier.COMMAND, Modifier.SHIFT)) is True
    assert app.snapshots[-1].conflict_name == MAIN_WINDOW_NAME

    assert app.commit_or_retry(_key("K", Modifier.COMMAND, Modifier.OPTION)) is True
    assert app.snapshots[-1].committed is True
    assert app.registry.get(rephrase.id).binding == Shortcut.parse("command+option+K")
    app.cancel_recording()
    assert app.recorder.is_recording is False


def test_recording_main_shortcut(app: ShortcutAIApp) -> None:
    app.start_recording(MAIN)

    app.commit_or_retry(_key("M", Modifier.OPTION))

    assert app.registry.main_shortcut == Shortcut.parse("option+M")
    app.stop()


def test_start_recording_unknown_action(app: ShortcutAIApp) -> None:
    with pytest.raises(ActionNotFound):
        app.start_recording("missing")


def test_set_pro_lifts_action_cap(app: ShortcutAIApp, tmp_path: Path) -> None:
    while app.registry.count() < 10:
        app.registry.add(Action(name=f"Extra {app.registry.count()}"))
    with pytest.raises(CapacityExceeded):
        app.registry.add(Action(name="One too many"))

    app.set_pro(True)

    app.registry.add(Action(name="One too many"))
    assert app.registry.count() == 11
    assert ConfigStore(path=tmp_path / "config.json").load().is_pro is True


def test_set_selected_provider_reverts_invalid(app: ShortcutAIApp, tmp_path: Path) -> None:
    app.set_selected_provider("groq", "llama-3.1-8b-instant")
    assert ConfigStore(path=tmp_path / "config.json").load().selected_provider == "groq"

    with pytest.raises(ValueError):
        app.set_selected_provider("mistral")

    assert app.config.selected_provider == "groq"
    assert app.config.selected_model == "llama-3.1-8b-instant"


def test_pro_config_starts_uncapped(tmp_path: Path) -> None:
    store = ConfigStore(path=tmp_path / "config.json")
    store.save(AppConfig(is_pro=True))

    app = ShortcutAIApp(
        config_store=store,
        secrets=FakeSecrets(),
        registry=ActionRegistry(path=tmp_path / "actions.json"),
        execution_log=ExecutionLogStore(db_path=tmp_path / "log.sqlite3"),
        paste_sink=FakeSink(),
    )

    assert app.registry.can_create_action()
    assert app.registry.action_limit is None


def test_action_insights(app: ShortcutAIApp) -> None:
    action = _fix_grammar(app)
    for _ in range(5):
        app.execution_log.record(
            action_id=action.id,
            action_name=action.name,
            prompt=action.prompt,
            provider="openai",
            model_id="gpt-4o-mini",
            duration_ms=500,
            input_length=8,
            output_length=8,
            success=False,
            error_message="Network error: reset",
        )

    stats, suggestion = app.action_insights(action.id)

    assert stats.total_runs == 5
    assert suggestion is not None
    assert suggestion.suggested_prompt.startswith(action.prompt)
    with pytest.raises(ActionNotFound):
        app.action_insights("missing")


def test_editor_cannot_create_second_owner_of_binding(app: ShortcutAIApp) -> None:
    with pytest.raises(ShortcutConflict) as exc_info:
        app.add_action(Action(name="Rephrase", shortcut="G"))

    assert exc_info.value.owner_name == "Fix Grammar"
    shorten = next(a for a in app.registry.list() if a.name == "Shorten Text")
    with pytest.raises(ShortcutConflict, match="Fix Grammar"):
        app.update_action(Action(name="Shorten", shortcut="G", id=shorten.id))

    owners = [a.name for a in app.registry.list() if a.binding == Shortcut.parse("command+shift+G")]
    assert owners == ["Fix Grammar"]


def test_editor_add_and_remove_action(app: ShortcutAIApp) -> None:
    added = app.add_action(Action(name="Summarize", prompt="Summarize:", shortcut="U"))

    assert app.trigger("command+shift+U") is not None
    assert app.remove_action(added.id) is True
    assert app.registry.get(added.id) is None
