from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum

from shortcut_ai.actions_store import ActionRegistry
from shortcut_ai.errors import ActionNotFound, ShortcutConflict
from shortcut_ai.models import Action, Shortcut

LOGGER = logging.getLogger(__name__)

MAIN_WINDOW_NAME = "Open ShortcutAI"


class MainWindowTrigger(Enum):
    OPEN = "open_main_window"


MAIN_WINDOW_TRIGGER = MainWindowTrigger.OPEN


class IncompleteShortcut(ValueError):
    """Raised when a binding lacks Command/Option or a single key."""


class ShortcutTable:
    """Resolves bindings to actions and guards the one-owner-per-binding rule.

    Bindings are derived from the registry on every lookup, so there is no
    cached table to invalidate when actions change.
    """

    def __init__(self, registry: ActionRegistry) -> None:
        self.registry = registry

    def resolve(self, shortcut: Shortcut) -> str | MainWindowTrigger | None:
        if shortcut == self.registry.main_shortcut:
            return MAIN_WINDOW_TRIGGER
        for action in self.registry.list():
            if action.binding == shortcut:
                return action.id
        return None

    def check_conflict(
        self,
        shortcut: Shortcut,
        excluding_action_id: str | None = None,
        include_main: bool = True,
    ) -> str | None:
        if include_main and shortcut == self.registry.main_shortcut:
            return MAIN_WINDOW_NAME
        for action in self.registry.list():
            if action.id == excluding_action_id:
                continue
            if action.binding == shortcut:
                return action.name
        return None

    def assign(self, action_id: str, shortcut: Shortcut) -> Action:
        if not shortcut.is_complete:
            raise IncompleteShortcut(f"Shortcut {shortcut.display()} needs Command or Option")

        # Check and commit under the registry lock so two editors cannot both claim a binding.
        with self.registry.locked():
            action = self.registry.get(action_id)
            if action is None:
                raise ActionNotFound(action_id)
            owner = self.check_conflict(shortcut, excluding_action_id=action_id)
            if owner is not None:
                LOGGER.info("Shortcut %s rejected for '%s': used by '%s'", shortcut, action.name, owner)
                raise ShortcutConflict(owner)
            updated = replace(
                action,
                shortcut=shortcut.key,
                shortcut_modifiers=tuple(shortcut.modifiers),
            )
            self.registry.update(updated)
        LOGGER.info("Bound %s to '%s'", shortcut.display(), updated.name)
        return updated

    def add_action(self, action: Action) -> Action:
        """Create an action from the editor; its binding must be free."""
        with self.registry.locked():
            self._check_binding(action)
            return self.registry.add(action)

    def update_action(self, action: Action) -> Action:
        with self.registry.locked():
            if self.registry.get(action.id) is None:
                raise ActionNotFound(action.id)
            self._check_binding(action)
            self.registry.update(action)
        return action

    def _check_binding(self, action: Action) -> None:
        binding = action.binding
        if binding is None:
            return
        if not binding.is_complete:
            raise IncompleteShortcut(f"Shortcut {binding.display()} needs Command or Option")
        owner = self.check_conflict(binding, excluding_action_id=action.id)
        if owner is not None:
            LOGGER.info("Shortcut %s rejected for '%s': used by '%s'", binding, action.name, owner)
            raise ShortcutConflict(owner)

    def assign_main(self, shortcut: Shortcut) -> None:
        if not shortcut.is_complete:
            raise IncompleteShortcut(f"Shortcut {shortcut.display()} needs Command or Option")
        with self.registry.locked():
            owner = self.check_conflict(shortcut, include_main=False)
            if owner is not None:
                raise ShortcutConflict(owner)
            self.registry.set_main_shortcut(shortcut)
        LOGGER.info("Main window shortcut set to %s", shortcut.display())

    def clear(self, action_id: str) -> None:
        with self.registry.locked():
            action = self.registry.get(action_id)
            if action is None:
                raise ActionNotFound(action_id)
            self.registry.update(replace(action, shortcut=""))


__all__ = [
    "IncompleteShortcut",
    "MAIN_WINDOW_NAME",
    "MAIN_WINDOW_TRIGGER",
    "MainWindowTrigger",
    "ShortcutTable",
]
