from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from shortcut_ai.errors import ShortcutConflict
from shortcut_ai.models import COMPLETING_MODIFIERS, Modifier, Shortcut, ordered_modifiers

LOGGER = logging.getLogger(__name__)

CMD_MASK = 1 << 20
OPTION_MASK = 1 << 19
CONTROL_MASK = 1 << 18
SHIFT_MASK = 1 << 17
MODIFIER_MASKS = {
    Modifier.CONTROL: CONTROL_MASK,
    Modifier.OPTION: OPTION_MASK,
    Modifier.SHIFT: SHIFT_MASK,
    Modifier.COMMAND: CMD_MASK,
}

EVENT_KEY_DOWN = 10
EVENT_KEY_UP = 11
EVENT_FLAGS_CHANGED = 12
EVENT_TAP_DISABLED_BY_TIMEOUT = 0xFFFFFFFE
EVENT_TAP_DISABLED_BY_USER_INPUT = 0xFFFFFFFF
KEYCODE_FIELD = 9
ESCAPE_KEYCODE = 53

# ANSI virtual keycodes for the keys an action shortcut may use.
KEYCODE_CHARS = {
    0: "A", 11: "B", 8: "C", 2: "D", 14: "E", 3: "F", 5: "G", 4: "H", 34: "I",
    38: "J", 40: "K", 37: "L", 46: "M", 45: "N", 31: "O", 35: "P", 12: "Q",
    15: "R", 1: "S", 17: "T", 32: "U", 9: "V", 13: "W", 7: "X", 16: "Y", 6: "Z",
    29: "0", 18: "1", 19: "2", 20: "3", 21: "4", 23: "5", 22: "6", 26: "7",
    28: "8", 25: "9",
    24: "=", 27: "-", 30: "]", 33: "[", 39: "'", 41: ";", 42: "\\", 43: ",",
    44: "/", 47: ".", 50: "`",
}


def _quartz():  # type: ignore[no-untyped-def]
    import Quartz

    return Quartz


class KeyEventKind(str, Enum):
    KEY_DOWN = "key_down"
    KEY_UP = "key_up"
    FLAGS_CHANGED = "flags_changed"


@dataclass(frozen=True)
class KeyEvent:
    """A keyboard event normalized away from the platform's flag masks and keycodes."""

    kind: KeyEventKind
    modifiers: frozenset[Modifier]
    key: str = ""
    keycode: int = -1

    @property
    def is_escape(self) -> bool:
        return self.kind is KeyEventKind.KEY_DOWN and self.keycode == ESCAPE_KEYCODE

    def shortcut(self) -> Shortcut | None:
        if self.kind is not KeyEventKind.KEY_DOWN or len(self.key) != 1:
            return None
        return Shortcut.of(self.modifiers, self.key)


def modifiers_from_flags(flags: int) -> frozenset[Modifier]:
    return frozenset(m for m, mask in MODIFIER_MASKS.items() if flags & mask)


def normalize_event(event_type: int, flags: int, keycode: int) -> KeyEvent | None:
    modifiers = modifiers_from_flags(flags)
    if event_type == EVENT_FLAGS_CHANGED:
        return KeyEvent(KeyEventKind.FLAGS_CHANGED, modifiers, keycode=keycode)
    if event_type == EVENT_KEY_DOWN:
        return KeyEvent(KeyEventKind.KEY_DOWN, modifiers, KEYCODE_CHARS.get(keycode, ""), keycode)
    if event_type == EVENT_KEY_UP:
        return KeyEvent(KeyEventKind.KEY_UP, modifiers, KEYCODE_CHARS.get(keycode, ""), keycode)
    return None


class RecorderState(str, Enum):
    IDLE = "Idle"
    RECORDING = "Recording"


@dataclass(frozen=True)
class RecordingSnapshot:
    state: RecorderState
    target: Any = None
    live_keys: tuple[str, ...] = ()
    conflict_name: str | None = None
    committed: bool = False


class ShortcutRecorder:
    """Captures a new binding while normal shortcut dispatch is suspended.

    ``commit`` receives the target and the candidate binding and raises
    ``ShortcutConflict`` when another owner holds it. The conflict stays visible
    for ``conflict_display_seconds`` with recording left open; a successful
    commit closes recording after ``confirm_delay_seconds``.
    """

    def __init__(
        self,
        commit: Callable[[Any, Shortcut], Any],
        on_change: Callable[[RecordingSnapshot], None] | None = None,
        conflict_display_seconds: float = 2.0,
        confirm_delay_seconds: float = 0.5,
        schedule: Callable[[float, Callable[[], None]], Any] | None = None,
    ) -> None:
        self._commit = commit
        self._on_change = on_change
        self.conflict_display_seconds = conflict_display_seconds
        self.confirm_delay_seconds = confirm_delay_seconds
        self._schedule = schedule or _start_timer
        self._lock = threading.RLock()

        self._state = RecorderState.IDLE
        self._target: Any = None
        self._live_modifiers: tuple[Modifier, ...] = ()
        self._live_key = ""
        self._conflict: str | None = None
        self._committed = False
        self._generation = 0

    @property
    def is_recording(self) -> bool:
        return self._state is RecorderState.RECORDING

    def snapshot(self) -> RecordingSnapshot:
        with self._lock:
            keys = [m.value for m in self._live_modifiers]
            if self._live_key:
                keys.append(self._live_key)
            return RecordingSnapshot(
                state=self._state,
                target=self._target,
                live_keys=tuple(keys),
                conflict_name=self._conflict,
                committed=self._committed,
            )

    def start(self, target: Any) -> None:
        with self._lock:
            self._generation += 1
            self._state = RecorderState.RECORDING
            self._target = target
            self._reset_candidate()
            self._committed = False
        LOGGER.info("Shortcut recording started for %s", target)
        self._notify()

    def cancel(self) -> None:
        with self._lock:
            if not self.is_recording:
                return
            self._close()
        LOGGER.info("Shortcut recording cancelled")
        self._notify()

    def handle(self, event: KeyEvent) -> bool:
        """Feed one event; returns True when the event was consumed."""
        with self._lock:
            if not self.is_recording or self._committed:
                return False

            if event.is_escape:
                self._close()
                consumed = True
            elif event.kind is KeyEventKind.FLAGS_CHANGED:
                self._conflict = None
                self._live_modifiers = ordered_modifiers(event.modifiers)
                self._live_key = ""
                consumed = False
            elif event.kind is KeyEventKind.KEY_DOWN:
                consumed = self._try_commit(event)
            else:
                return False
        self._notify()
        return consumed

    def _try_commit(self, event: KeyEvent) -> bool:
        candidate = event.shortcut()
        if candidate is None or not (candidate.modifiers & COMPLETING_MODIFIERS):
            # Not complete yet; let the key through.
            return False

        self._live_modifiers = ordered_modifiers(candidate.modifiers)
        self._live_key = candidate.key
        try:
            self._commit(self._target, candidate)
        except ShortcutConflict as exc:
            self._conflict = exc.owner_name
            generation = self._generation
            self._schedule(self.conflict_display_seconds, lambda: self._expire_conflict(generation))
            return True

        self._conflict = None
        self._committed = True
        generation = self._generation
        self._schedule(self.confirm_delay_seconds, lambda: self._finish(generation))
        return True

    def _expire_conflict(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._conflict is None:
                return
            self._reset_candidate()
        self._notify()

    def _finish(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or not self.is_recording:
                return
            self._close()
        self._notify()

    def _close(self) -> None:
        self._generation += 1
        self._state = RecorderState.IDLE
        self._target = None
        self._committed = False
        self._reset_candidate()

    def _reset_candidate(self) -> None:
        self._live_modifiers = ()
        self._live_key = ""
        self._conflict = None

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.snapshot())
        except Exception:
            LOGGER.exception("Recording change callback failed")


def _start_timer(delay: float, fn: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    timer.start()
    return timer


@dataclass
class HotkeyCallbacks:
    on_shortcut: Callable[[Shortcut], bool]


class HotkeyListener:
    """Global keyboard event tap feeding either shortcut dispatch or the recorder."""

    def __init__(self, callbacks: HotkeyCallbacks, recorder: ShortcutRecorder | None = None) -> None:
        self.callbacks = callbacks
        self.recorder = recorder

        self._thread: threading.Thread | None = None
        self._running = threading.Event()

        self._event_tap = None
        self._source = None
        self._run_loop = None

        self._active = False
        self._last_error = ""

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return

        self._running.set()
        self._thread = threading.Thread(target=self._run, name="hotkey-listener", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._running.clear()

        if self._run_loop is not None:
            _quartz().CFRunLoopStop(self._run_loop)

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)

        self._thread = None
        self._event_tap = None
        self._source = None
        self._run_loop = None
        self._active = False

    def _run(self) -> None:
        Quartz = _quartz()
        mask = (
            Quartz.CGEventMaskBit(EVENT_FLAGS_CHANGED)
            | Quartz.CGEventMaskBit(EVENT_KEY_DOWN)
            | Quartz.CGEventMaskBit(EVENT_KEY_UP)
        )

        self._event_tap = Quartz.CGEventTapCreate(
            Quartz.kCGSessionEventTap,
            Quartz.kCGHeadInsertEventTap,
            Quartz.kCGEventTapOptionDefault,
            mask,
            self._event_callback,
            None,
        )

        if not self._event_tap:
            self._active = False
            self._last_error = "Global shortcuts unavailable. Grant Accessibility permission."
            LOGGER.error("Unable to create global keyboard event tap. Check Accessibility permissions.")
            return

        self._last_error = ""
        self._source = Quartz.CFMachPortCreateRunLoopSource(None, self._event_tap, 0)
        self._run_loop = Quartz.CFRunLoopGetCurrent()

        Quartz.CFRunLoopAddSource(self._run_loop, self._source, Quartz.kCFRunLoopCommonModes)
        Quartz.CGEventTapEnable(self._event_tap, True)
        self._active = True
        LOGGER.info("Global hotkey listener active")
        Quartz.CFRunLoopRun()
        self._active = False

    def _event_callback(self, proxy, event_type, event, refcon):  # type: ignore[no-untyped-def]
        Quartz = _quartz()
        if event_type in {EVENT_TAP_DISABLED_BY_TIMEOUT, EVENT_TAP_DISABLED_BY_USER_INPUT}:
            LOGGER.warning("Event tap disabled (type=%s), re-enabling", event_type)
            if self._event_tap is not None:
                Quartz.CGEventTapEnable(self._event_tap, True)
            return event

        if not self._running.is_set():
            return event

        normalized = normalize_event(
            event_type,
            Quartz.CGEventGetFlags(event),
            Quartz.CGEventGetIntegerValueField(event, KEYCODE_FIELD),
        )
        if normalized is None:
            return event
        return None if self.handle_event(normalized) else event

    def handle_event(self, event: KeyEvent) -> bool:
        """Route one event; returns True when it must not reach the focused app."""
        if self.recorder is not None and self.recorder.is_recording:
            try:
                return self.recorder.handle(event)
            except Exception:
                LOGGER.exception("Shortcut recorder failed to handle key event")
                return False

        shortcut = event.shortcut()
        if shortcut is None or not shortcut.is_complete:
            return False
        try:
            return bool(self.callbacks.on_shortcut(shortcut))
        except Exception:
            LOGGER.exception("Shortcut dispatch callback failed")
            return False

    def is_active(self) -> bool:
        return self._active

    def last_error(self) -> str:
        return self._last_error


__all__ = [
    "HotkeyCallbacks",
    "HotkeyListener",
    "KeyEvent",
    "KeyEventKind",
    "RecorderState",
    "RecordingSnapshot",
    "ShortcutRecorder",
    "modifiers_from_flags",
    "normalize_event",
]
