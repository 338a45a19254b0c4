from __future__ import annotations

import logging
import subprocess
import time

from shortcut_ai.clipboard import get_clipboard_text, set_clipboard_text
from shortcut_ai.errors import CaptureFailed

LOGGER = logging.getLogger(__name__)

C_KEYCODE = 8


class SelectionCapture:
    """Reads the frontmost app's selection by posting Cmd+C and reading the clipboard.

    The user's clipboard is saved before and restored after the copy.
    """

    def __init__(self, delay_ms: int = 100, restore_clipboard: bool = True) -> None:
        self.delay = max(delay_ms, 20) / 1000.0
        self.restore_clipboard = restore_clipboard

    def capture(self) -> str:
        try:
            original_clipboard = self._get_clipboard_text()
        except (OSError, subprocess.SubprocessError) as exc:
            raise CaptureFailed(f"Clipboard unavailable: {exc}") from exc

        try:
            # Clear first so a stale clipboard is never mistaken for the selection.
            self._set_clipboard_text("")
            if not self._post_copy():
                raise CaptureFailed("Unable to send copy command. Check Accessibility permission.")
            time.sleep(self.delay)
            captured = self._get_clipboard_text()
        except (OSError, subprocess.SubprocessError) as exc:
            raise CaptureFailed(f"Clipboard unavailable: {exc}") from exc
        finally:
            if self.restore_clipboard:
                try:
                    self._set_clipboard_text(original_clipboard)
                except (OSError, subprocess.SubprocessError):
                    LOGGER.warning("Failed to restore clipboard after capture", exc_info=True)

        if not captured.strip():
            raise CaptureFailed("No text selected")
        LOGGER.info("Captured selection (chars=%d)", len(captured))
        return captured

    def _get_clipboard_text(self) -> str:
        return get_clipboard_text()

    def _set_clipboard_text(self, text: str) -> None:
        set_clipboard_text(text)

    def _post_copy(self) -> bool:
        try:
            import Quartz

            source = Quartz.CGEventSourceCreate(Quartz.kCGEventSourceStateCombinedSessionState)
            down = Quartz.CGEventCreateKeyboardEvent(source, C_KEYCODE, True)
            up = Quartz.CGEventCreateKeyboardEvent(source, C_KEYCODE, False)
            if down is None or up is None:
                return False

            Quartz.CGEventSetFlags(down, Quartz.kCGEventFlagMaskCommand)
            Quartz.CGEventSetFlags(up, Quartz.kCGEventFlagMaskCommand)
            Quartz.CGEventPost(Quartz.kCGSessionEventTap, down)
            Quartz.CGEventPost(Quartz.kCGSessionEventTap, up)
            return True
        except Exception:
            LOGGER.debug("Quartz copy event failed", exc_info=True)
            return False
