from __future__ import annotations

import logging
import subprocess
import time

from shortcut_ai.clipboard import get_clipboard_text, set_clipboard_text
from shortcut_ai.execution import EventKind, ExecutionEvent
from shortcut_ai.models import ActionType

LOGGER = logging.getLogger(__name__)

V_KEYCODE = 9


class PasteFailed(RuntimeError):
    pass


class TextInserter:
    """Pastes text into the focused app through the clipboard."""

    def __init__(self, paste_retry: int = 1, keep_result_on_failure: bool = True) -> None:
        self.paste_retry = max(0, paste_retry)
        self.keep_result_on_failure = keep_result_on_failure

    def insert_text(self, text: str, restore_clipboard: bool = True) -> None:
        if not text:
            return

        original_clipboard = self._get_clipboard_text()
        pasted = False
        try:
            self._set_clipboard_text(text)
            # Let the pasteboard settle before the keystroke.
            time.sleep(0.05)
            self._paste_with_retry()
            pasted = True
        except (PasteFailed, OSError, subprocess.SubprocessError) as exc:
            if self.keep_result_on_failure:
                raise PasteFailed(f"{exc} Clipboard now contains the result for manual paste.") from exc
            if restore_clipboard:
                self._restore(original_clipboard)
            raise
        finally:
            if pasted and restore_clipboard:
                # The target app reads the clipboard asynchronously after Cmd+V.
                time.sleep(0.20)
                self._restore(original_clipboard)

    def copy_text(self, text: str) -> None:
        self._set_clipboard_text(text)

    def _get_clipboard_text(self) -> str:
        return get_clipboard_text()

    def _set_clipboard_text(self, text: str) -> None:
        set_clipboard_text(text)

    def _restore(self, text: str) -> None:
        try:
            self._set_clipboard_text(text)
        except (OSError, subprocess.SubprocessError):
            LOGGER.warning("Failed to restore clipboard after paste", exc_info=True)

    def _paste_with_retry(self) -> None:
        attempts = self.paste_retry + 1
        last_errors: list[str] = []
        for attempt in range(attempts):
            if self._paste_with_system_events():
                time.sleep(0.06)
                return
            last_errors.append("System Events keystroke failed")

            if self._paste_with_quartz():
                time.sleep(0.06)
                return
            last_errors.append("Quartz keyboard event failed")

            if attempt < attempts - 1:
                time.sleep(0.08)

        detail = "; ".join(last_errors[-2:]) if last_errors else "Unknown paste failure"
        raise PasteFailed(f"Failed to paste result into focused app. Check Accessibility permission. ({detail})")

    def _paste_with_system_events(self) -> bool:
        result = subprocess.run(
            ["osascript", "-e", 'tell application "System Events" to keystroke "v" using command down'],
            check=False,
            capture_output=True,
            text=True,
            timeout=10,
        )
        if result.returncode == 0:
            return True

        LOGGER.debug("System Events paste failed: %s", result.stderr.strip())
        return False

    def _paste_with_quartz(self) -> bool:
        try:
            import Quartz

            down = Quartz.CGEventCreateKeyboardEvent(None, V_KEYCODE, True)
            up = Quartz.CGEventCreateKeyboardEvent(None, V_KEYCODE, False)
            if down is None or up is None:
                return False

            Quartz.CGEventSetFlags(down, Quartz.kCGEventFlagMaskCommand)
            Quartz.CGEventSetFlags(up, Quartz.kCGEventFlagMaskCommand)
            Quartz.CGEventPost(Quartz.kCGHIDEventTap, down)
            Quartz.CGEventPost(Quartz.kCGHIDEventTap, up)
            return True
        except Exception:
            LOGGER.debug("Quartz paste fallback failed", exc_info=True)
            return False


class PasteSink:
    """Result sink that writes results back to the user.

    AI results replace the selection; web search and plugin output goes to the
    clipboard only, as does the partial text of a failed run.
    """

    def __init__(self, inserter: TextInserter | None = None, paste_result: bool = True) -> None:
        self.inserter = inserter or TextInserter()
        self.paste_result = paste_result

    def deliver(self, event: ExecutionEvent) -> None:
        if not event.text or event.kind not in (EventKind.FINAL, EventKind.ERROR):
            return

        try:
            if event.kind is EventKind.ERROR:
                # Partial output of a failed run is never pasted, only kept on the clipboard.
                self.inserter.copy_text(event.text)
                LOGGER.warning(
                    "Session %s failed (%s); copied partial result (chars=%d)",
                    event.session_id,
                    event.reason.value if event.reason else "unknown",
                    len(event.text),
                )
            elif self.paste_result and event.action_type == ActionType.AI.value:
                self.inserter.insert_text(event.text)
                LOGGER.info("Pasted result for session %s (chars=%d)", event.session_id, len(event.text))
            else:
                self.inserter.copy_text(event.text)
                LOGGER.info("Copied result for session %s (chars=%d)", event.session_id, len(event.text))
        except (PasteFailed, OSError, subprocess.SubprocessError):
            LOGGER.exception("Unable to deliver result for session %s", event.session_id)


__all__ = ["PasteFailed", "PasteSink", "TextInserter"]
