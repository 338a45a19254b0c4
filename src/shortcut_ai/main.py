from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from shortcut_ai.app import ShortcutAIApp
from shortcut_ai.single_instance import acquire_single_instance_lock, release_single_instance_lock

LOGGER = logging.getLogger(__name__)

LOG_DIR = Path.home() / "Library" / "Logs" / "ShortcutAI"
LOG_FILE = LOG_DIR / "shortcut_ai.log"
BUNDLE_ID = "com.shortcutai.desktop"


def _appkit():  # type: ignore[no-untyped-def]
    import AppKit

    return AppKit


def configure_logging() -> None:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        handlers=[
            logging.FileHandler(LOG_FILE, encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )


def run() -> None:
    if not _enforce_single_instance():
        return
    configure_logging()

    AppKit = _appkit()
    ns_app = AppKit.NSApplication.sharedApplication()
    ns_app.setActivationPolicy_(AppKit.NSApplicationActivationPolicyAccessory)

    app = ShortcutAIApp(on_open_main=_activate_self)
    app.start()
    LOGGER.info("ShortcutAI started with %d actions", app.registry.count())
    try:
        ns_app.run()
    finally:
        app.stop()
        release_single_instance_lock()


def _activate_self() -> None:
    AppKit = _appkit()
    AppKit.NSRunningApplication.currentApplication().activateWithOptions_(AppKit.NSApplicationActivateIgnoringOtherApps)


def _enforce_single_instance() -> bool:
    """Prevent duplicate app processes and activate existing instance."""
    if acquire_single_instance_lock():
        return True

    subprocess.run(
        ["osascript", "-e", f'tell application id "{BUNDLE_ID}" to activate'],
        check=False,
        capture_output=True,
        text=True,
    )
    return False


if __name__ == "__main__":
    run()
