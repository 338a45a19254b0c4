from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Modifier(str, Enum):
    CONTROL = "control"
    OPTION = "option"
    SHIFT = "shift"
    COMMAND = "command"


class ActionType(str, Enum):
    AI = "ai"
    WEB_SEARCH = "web_search"
    PLUGIN = "plugin"


class PluginKind(str, Enum):
    JSON_FORMATTER = "json_formatter"
    BASE64_ENCODE = "base64_encode"
    BASE64_DECODE = "base64_decode"
    COLOR_CONVERTER = "color_converter"
    UUID_GENERATOR = "uuid_generator"
    HASH_GENERATOR = "hash_generator"
    URL_ENCODE = "url_encode"
    URL_DECODE = "url_decode"
    WORD_COUNT = "word_count"

    @property
    def requires_input(self) -> bool:
        return self is not PluginKind.UUID_GENERATOR


# Display order used by macOS menus.
MODIFIER_ORDER = (Modifier.CONTROL, Modifier.OPTION, Modifier.SHIFT, Modifier.COMMAND)
MODIFIER_SYMBOLS = {
    Modifier.CONTROL: "^",
    Modifier.OPTION: "⌥",
    Modifier.SHIFT: "⇧",
    Modifier.COMMAND: "⌘",
}
MODIFIER_ALIASES = {
    "control": Modifier.CONTROL,
    "ctrl": Modifier.CONTROL,
    "^": Modifier.CONTROL,
    "option": Modifier.OPTION,
    "alt": Modifier.OPTION,
    "opt": Modifier.OPTION,
    "⌥": Modifier.OPTION,
    "shift": Modifier.SHIFT,
    "⇧": Modifier.SHIFT,
    "command": Modifier.COMMAND,
    "cmd": Modifier.COMMAND,
    "⌘": Modifier.COMMAND,
}
COMPLETING_MODIFIERS = frozenset({Modifier.COMMAND, Modifier.OPTION})
DEFAULT_MODIFIERS = (Modifier.SHIFT, Modifier.COMMAND)


def parse_modifier(value: str) -> Modifier:
    try:
        return MODIFIER_ALIASES[value.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown modifier: {value!r}") from None


def ordered_modifiers(modifiers) -> tuple[Modifier, ...]:  # type: ignore[no-untyped-def]
    present = {m if isinstance(m, Modifier) else parse_modifier(m) for m in modifiers}
    return tuple(m for m in MODIFIER_ORDER if m in present)


@dataclass(frozen=True)
class Shortcut:
    """A binding: an unordered modifier set plus one key character."""

    modifiers: frozenset[Modifier]
    key: str

    @classmethod
    def of(cls, modifiers, key: str) -> "Shortcut":  # type: ignore[no-untyped-def]
        return cls(frozenset(ordered_modifiers(modifiers)), key.strip().upper())

    @classmethod
    def parse(cls, token: str) -> "Shortcut":
        parts = [part for part in token.split("+") if part.strip()]
        if not parts:
            raise ValueError("Shortcut token cannot be empty")
        *mods, key = parts
        if len(key.strip()) != 1:
            raise ValueError(f"Shortcut key must be a single character: {token!r}")
        return cls.of([parse_modifier(m) for m in mods], key)

    @property
    def is_complete(self) -> bool:
        return len(self.key) == 1 and bool(self.modifiers & COMPLETING_MODIFIERS)

    @property
    def token(self) -> str:
        names = [m.value for m in ordered_modifiers(self.modifiers)]
        return "+".join([*names, self.key])

    def display(self) -> str:
        return "".join(MODIFIER_SYMBOLS[m] for m in ordered_modifiers(self.modifiers)) + self.key

    def __str__(self) -> str:
        return self.token


@dataclass
class Action:
    name: str
    prompt: str = ""
    icon: str = "sparkles"
    shortcut: str = ""
    shortcut_modifiers: tuple[Modifier, ...] = DEFAULT_MODIFIERS
    action_type: ActionType = ActionType.AI
    plugin_kind: PluginKind | None = None
    provider: str | None = None
    model: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        self.shortcut = self.shortcut.strip().upper()
        self.shortcut_modifiers = ordered_modifiers(self.shortcut_modifiers)
        self.action_type = ActionType(self.action_type)
        if self.plugin_kind is not None:
            self.plugin_kind = PluginKind(self.plugin_kind)

    @property
    def binding(self) -> Shortcut | None:
        if not self.shortcut:
            return None
        return Shortcut.of(self.shortcut_modifiers, self.shortcut)

    @property
    def is_plugin(self) -> bool:
        return self.action_type is ActionType.PLUGIN

    @property
    def is_web_search(self) -> bool:
        return self.action_type is ActionType.WEB_SEARCH

    @property
    def requires_input(self) -> bool:
        if self.is_plugin and self.plugin_kind is not None:
            return self.plugin_kind.requires_input
        return True

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "icon": self.icon,
            "prompt": self.prompt,
            "shortcut": self.shortcut,
            "shortcutModifiers": [m.value for m in self.shortcut_modifiers],
            "actionType": self.action_type.value,
            "pluginType": self.plugin_kind.value if self.plugin_kind else None,
            "provider": self.provider,
            "modelId": self.model,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Action":
        if "id" not in record or "name" not in record:
            raise ValueError("Action record requires id and name")

        # Records written before action types existed only carry this flag, and it wins.
        if record.get("isWebSearch") is True:
            action_type = ActionType.WEB_SEARCH
        else:
            raw_type = record.get("actionType") or ActionType.AI.value
            if raw_type == "webSearch":
                raw_type = ActionType.WEB_SEARCH.value
            action_type = ActionType(raw_type)

        raw_modifiers = record.get("shortcutModifiers")
        if raw_modifiers is None:
            modifiers = DEFAULT_MODIFIERS
        else:
            modifiers = ordered_modifiers(raw_modifiers)

        plugin_raw = record.get("pluginType")
        return cls(
            id=str(record["id"]),
            name=str(record["name"]),
            icon=str(record.get("icon") or "sparkles"),
            prompt=str(record.get("prompt") or ""),
            shortcut=str(record.get("shortcut") or ""),
            shortcut_modifiers=modifiers,
            action_type=action_type,
            plugin_kind=PluginKind(plugin_raw) if plugin_raw else None,
            provider=record.get("provider") or None,
            model=record.get("modelId") or None,
        )


__all__ = [
    "Action",
    "ActionType",
    "COMPLETING_MODIFIERS",
    "DEFAULT_MODIFIERS",
    "MODIFIER_SYMBOLS",
    "Modifier",
    "PluginKind",
    "Shortcut",
    "ordered_modifiers",
    "parse_modifier",
]
