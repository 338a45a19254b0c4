from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from shortcut_ai.config import APP_DIR
from shortcut_ai.errors import ActionNotFound, CapacityExceeded
from shortcut_ai.models import Action, ActionType, Modifier, Shortcut, ordered_modifiers
from shortcut_ai.templates import PromptTemplate

LOGGER = logging.getLogger(__name__)

ACTIONS_PATH = APP_DIR / "actions.json"
DEFAULT_MAIN_SHORTCUT = Shortcut.of((Modifier.COMMAND, Modifier.SHIFT), "T")


def default_actions() -> list[Action]:
    return [
        Action(
            name="Fix Grammar",
            icon="pencil",
            prompt=(
                "Fix the grammar and spelling errors in the following text. "
                "Return only the corrected text without explanations:"
            ),
            shortcut="G",
        ),
        Action(
            name="Rephrase Text",
            icon="arrow.triangle.2.circlepath",
            prompt=(
                "Rephrase the following text to make it clearer and more engaging "
                "while preserving the original meaning. Return only the rephrased text:"
            ),
            shortcut="R",
        ),
        Action(
            name="Shorten Text",
            icon="arrow.down.left.and.arrow.up.right",
            prompt=(
                "Shorten the following text while keeping the key points and meaning. "
                "Return only the shortened text:"
            ),
            shortcut="S",
        ),
        Action(
            name="Formalize Tone",
            icon="doc.text",
            prompt=(
                "Rewrite the following text in a more formal and professional tone. "
                "Return only the rewritten text:"
            ),
            shortcut="F",
        ),
        Action(
            name="Translate to English",
            icon="globe",
            prompt="Translate the following text to English. Return only the translation:",
            shortcut="E",
        ),
    ]


class ActionRegistry:
    """Durable action catalog.

    Every mutation is serialized through one lock and written to disk before the
    call returns, so a crash loses at most the mutation that was in flight.
    The free-plan cap is enforced on ``add`` only.
    """

    def __init__(self, path: Path = ACTIONS_PATH, action_limit: int | None = 10) -> None:
        self.path = path
        self.action_limit = action_limit
        self._lock = threading.RLock()
        self._actions: dict[str, Action] = {}
        self._main_shortcut = DEFAULT_MAIN_SHORTCUT
        self._load()

    # Reads
    def list(self) -> list[Action]:
        with self._lock:
            return list(self._actions.values())

    def get(self, action_id: str) -> Action | None:
        with self._lock:
            return self._actions.get(action_id)

    def count(self) -> int:
        with self._lock:
            return len(self._actions)

    def can_create_action(self) -> bool:
        with self._lock:
            return self.action_limit is None or len(self._actions) < self.action_limit

    @contextmanager
    def locked(self):
        with self._lock:
            yield self

    @property
    def main_shortcut(self) -> Shortcut:
        with self._lock:
            return self._main_shortcut

    # Writes
    def set_action_limit(self, limit: int | None) -> None:
        with self._lock:
            self.action_limit = limit

    def add(self, action: Action) -> Action:
        with self._lock:
            if not self.can_create_action():
                LOGGER.info("Action creation blocked at free plan limit (%s)", self.action_limit)
                raise CapacityExceeded(int(self.action_limit or 0))
            self._actions[action.id] = action
            self._save()
        LOGGER.info("Added action '%s' (%s)", action.name, action.id)
        return action

    def add_from_template(self, template: PromptTemplate) -> Action:
        return self.add(
            Action(
                name=template.name,
                icon=template.icon,
                prompt=template.prompt,
                shortcut="",
                action_type=ActionType.AI,
            )
        )

    def update(self, action: Action) -> None:
        with self._lock:
            if action.id not in self._actions:
                raise ActionNotFound(action.id)
            self._actions[action.id] = action
            self._save()

    def remove(self, action_id: str) -> bool:
        with self._lock:
            removed = self._actions.pop(action_id, None)
            if removed is None:
                return False
            self._save()
        LOGGER.info("Removed action '%s' (%s)", removed.name, action_id)
        return True

    def set_main_shortcut(self, shortcut: Shortcut) -> None:
        with self._lock:
            self._main_shortcut = shortcut
            self._save()

    # Persistence
    def _load(self) -> None:
        try:
            raw_text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            LOGGER.info("No action catalog at %s; seeding defaults", self.path)
            for action in default_actions():
                self._actions[action.id] = action
            self._save()
            return

        try:
            payload = json.loads(raw_text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Action catalog corrupt, using defaults: %s", exc)
            for action in default_actions():
                self._actions[action.id] = action
            return

        if isinstance(payload, list):
            payload = {"actions": payload}
        if not isinstance(payload, dict):
            LOGGER.warning("Action catalog has unexpected shape (%s), using defaults", type(payload).__name__)
            for action in default_actions():
                self._actions[action.id] = action
            return
        self._actions = self._decode_actions(payload.get("actions", {}))
        main = payload.get("mainShortcut")
        if isinstance(main, dict) and main.get("key"):
            try:
                self._main_shortcut = Shortcut.of(
                    ordered_modifiers(main.get("modifiers") or []), str(main["key"])
                )
            except ValueError:
                LOGGER.warning("Ignoring invalid main shortcut: %s", main)

    def _decode_actions(self, raw: Any) -> dict[str, Action]:
        # Older catalogs stored a plain list of records.
        records = raw.values() if isinstance(raw, dict) else raw
        decoded: dict[str, Action] = {}
        for record in records or []:
            try:
                action = Action.from_record(record)
            except (TypeError, ValueError, KeyError, AttributeError) as exc:
                LOGGER.warning("Skipping unreadable action record: %s", exc)
                continue
            decoded[action.id] = action
        return decoded

    def _save(self) -> None:
        payload = {
            "actions": {action_id: action.to_record() for action_id, action in self._actions.items()},
            "mainShortcut": {
                "key": self._main_shortcut.key,
                "modifiers": [m.value for m in ordered_modifiers(self._main_shortcut.modifiers)],
            },
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(str(tmp_path), str(self.path))


__all__ = ["ACTIONS_PATH", "ActionRegistry", "DEFAULT_MAIN_SHORTCUT", "default_actions"]
