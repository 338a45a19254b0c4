from __future__ import annotations

import logging
import queue
from typing import Callable, Union

from shortcut_ai.actions_store import ActionRegistry
from shortcut_ai.capture import SelectionCapture
from shortcut_ai.config import AppConfig, ConfigStore
from shortcut_ai.errors import ActionNotFound
from shortcut_ai.execution import EventBus, ExecutionCoordinator, ExecutionEvent, Transport
from shortcut_ai.execution_log import ActionExecutionStats, ExecutionLogStore, PromptAutoSuggestion
from shortcut_ai.hotkey import HotkeyCallbacks, HotkeyListener, KeyEvent, RecordingSnapshot, ShortcutRecorder
from shortcut_ai.insert import PasteSink
from shortcut_ai.models import Action, Shortcut
from shortcut_ai.secret_store import SecretStore
from shortcut_ai.shortcuts import MAIN_WINDOW_TRIGGER, MainWindowTrigger, ShortcutTable

LOGGER = logging.getLogger(__name__)

MAIN = MAIN_WINDOW_TRIGGER
RecordingTarget = Union[str, MainWindowTrigger]


class ShortcutAIApp:
    """Owns the stores and wires hotkeys, recording and execution together."""

    def __init__(
        self,
        config_store: ConfigStore | None = None,
        secrets: SecretStore | None = None,
        registry: ActionRegistry | None = None,
        capture: SelectionCapture | None = None,
        transport: Transport | None = None,
        execution_log: ExecutionLogStore | None = None,
        paste_sink: PasteSink | None = None,
        on_open_main: Callable[[], None] | None = None,
        on_recording_change: Callable[[RecordingSnapshot], None] | None = None,
    ) -> None:
        self.config_store = config_store or ConfigStore()
        self.config = self.config_store.load()
        self.secrets = secrets or SecretStore()
        self.registry = registry or ActionRegistry(action_limit=self._action_limit(self.config))
        self.registry.set_action_limit(self._action_limit(self.config))
        self.shortcuts = ShortcutTable(self.registry)
        self.execution_log = execution_log or ExecutionLogStore(max_entries=self.config.execution_log_max_entries)
        self.on_open_main = on_open_main

        self.bus = EventBus()
        self.paste_sink = paste_sink or PasteSink(paste_result=self.config.paste_result)
        self.bus.add_sink(self.paste_sink)

        self.coordinator = ExecutionCoordinator(
            registry=self.registry,
            secrets=self.secrets,
            capture=capture
            or SelectionCapture(
                delay_ms=self.config.capture_delay_ms,
                restore_clipboard=self.config.restore_clipboard_after_capture,
            ),
            config=self.config,
            transport=transport,
            bus=self.bus,
            execution_log=self.execution_log,
        )
        self.recorder = ShortcutRecorder(
            commit=self._commit_binding,
            on_change=on_recording_change,
            conflict_display_seconds=self.config.conflict_display_seconds,
            confirm_delay_seconds=self.config.commit_confirm_delay_seconds,
        )
        self.hotkeys = HotkeyListener(HotkeyCallbacks(on_shortcut=self._on_shortcut), recorder=self.recorder)

    @staticmethod
    def _action_limit(config: AppConfig) -> int | None:
        return None if config.is_pro else config.free_action_limit

    # Lifecycle
    def start(self) -> None:
        self.hotkeys.start()

    def stop(self) -> None:
        self.recorder.cancel()
        self.hotkeys.stop()
        for session in self.coordinator.active_sessions():
            self.coordinator.cancel(session.id)

    # Commands
    def trigger(self, token: str | Shortcut) -> str | None:
        """Dispatch a shortcut; returns the session id when an action started."""
        shortcut = Shortcut.parse(token) if isinstance(token, str) else token
        target = self.shortcuts.resolve(shortcut)
        if target is None:
            return None
        if target is MAIN_WINDOW_TRIGGER:
            self._open_main()
            return None
        return self.coordinator.trigger(target)

    def start_recording(self, target: RecordingTarget) -> None:
        if target is not MAIN_WINDOW_TRIGGER and self.registry.get(target) is None:
            raise ActionNotFound(str(target))
        self.recorder.start(target)

    def commit_or_retry(self, event: KeyEvent) -> bool:
        return self.recorder.handle(event)

    def cancel_recording(self) -> None:
        self.recorder.cancel()

    def cancel(self, session_id: str) -> bool:
        return self.coordinator.cancel(session_id)

    def subscribe(self) -> queue.Queue[ExecutionEvent]:
        return self.bus.subscribe()

    # Action editor
    def add_action(self, action: Action) -> Action:
        return self.shortcuts.add_action(action)

    def update_action(self, action: Action) -> Action:
        return self.shortcuts.update_action(action)

    def remove_action(self, action_id: str) -> bool:
        running = self.coordinator.active_session(action_id)
        if running is not None:
            self.coordinator.cancel(running.id)
        return self.registry.remove(action_id)

    # Settings
    def set_pro(self, is_pro: bool) -> None:
        self.config.is_pro = bool(is_pro)
        self.config_store.save(self.config)
        self.registry.set_action_limit(self._action_limit(self.config))
        LOGGER.info("Plan updated (pro=%s)", self.config.is_pro)

    def set_selected_provider(self, provider: str, model: str | None = None) -> None:
        previous = (self.config.selected_provider, self.config.selected_model)
        self.config.selected_provider = provider  # type: ignore[assignment]
        self.config.selected_model = model
        try:
            self.config_store.save(self.config)
        except ValueError:
            self.config.selected_provider, self.config.selected_model = previous
            raise

    def action_insights(self, action_id: str) -> tuple[ActionExecutionStats | None, PromptAutoSuggestion | None]:
        action = self.registry.get(action_id)
        if action is None:
            raise ActionNotFound(action_id)
        return (
            self.execution_log.stats(action_id),
            self.execution_log.auto_suggestion(action_id, action.prompt),
        )

    # Internals
    def _on_shortcut(self, shortcut: Shortcut) -> bool:
        if self.shortcuts.resolve(shortcut) is None:
            return False
        self.trigger(shortcut)
        return True

    def _commit_binding(self, target: RecordingTarget, shortcut: Shortcut) -> None:
        if target is MAIN_WINDOW_TRIGGER:
            self.shortcuts.assign_main(shortcut)
        else:
            self.shortcuts.assign(target, shortcut)

    def _open_main(self) -> None:
        LOGGER.info("Main shortcut pressed")
        if self.on_open_main is None:
            return
        try:
            self.on_open_main()
        except Exception:
            LOGGER.exception("Open main window callback failed")


__all__ = ["MAIN", "ShortcutAIApp"]
