from __future__ import annotations

from enum import Enum


class FailureReason(str, Enum):
    NO_SELECTION = "no_selection"
    MISSING_CREDENTIAL = "missing_credential"
    NETWORK_ERROR = "network_error"
    INVALID_RESPONSE = "invalid_response"
    PLUGIN_ERROR = "plugin_error"
    INTERNAL_ERROR = "internal_error"


class ShortcutAIError(Exception):
    """Base class for errors raised by the action core."""


class CaptureFailed(ShortcutAIError):
    def __init__(self, message: str = "No text selected") -> None:
        super().__init__(message)


class MissingCredential(ShortcutAIError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"API key for {provider} is not configured")
        self.provider = provider


class ShortcutConflict(ShortcutAIError):
    def __init__(self, owner_name: str) -> None:
        super().__init__(f"Shortcut already used by {owner_name}")
        self.owner_name = owner_name


class NetworkError(ShortcutAIError):
    pass


class InvalidResponse(ShortcutAIError):
    pass


class PluginError(ShortcutAIError):
    pass


class CapacityExceeded(ShortcutAIError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"Free plan is limited to {limit} actions")
        self.limit = limit


class ActionNotFound(ShortcutAIError):
    def __init__(self, action_id: str) -> None:
        super().__init__(f"Unknown action: {action_id}")
        self.action_id = action_id
