from __future__ import annotations

import subprocess

CLIPBOARD_TIMEOUT_SECONDS = 10


def get_clipboard_text() -> str:
    result = subprocess.run(
        ["pbpaste"],
        check=False,
        capture_output=True,
        text=True,
        timeout=CLIPBOARD_TIMEOUT_SECONDS,
    )
    if result.returncode != 0:
        return ""
    return result.stdout


def set_clipboard_text(text: str) -> None:
    subprocess.run(["pbcopy"], input=text, text=True, check=True, timeout=CLIPBOARD_TIMEOUT_SECONDS)


__all__ = ["get_clipboard_text", "set_clipboard_text"]
