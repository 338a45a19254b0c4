from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Literal

ProviderName = Literal["openai", "anthropic", "openrouter", "perplexity", "groq"]
PROVIDER_NAMES = {"openai", "anthropic", "openrouter", "perplexity", "groq"}

LOGGER = logging.getLogger(__name__)

APP_DIR = Path.home() / "Library" / "Application Support" / "ShortcutAI"
CONFIG_PATH = APP_DIR / "config.json"


@dataclass
class AppConfig:
    selected_provider: ProviderName = "openai"
    selected_model: str | None = None
    is_pro: bool = False
    free_action_limit: int = 10
    request_timeout_ms: int = 60000
    max_tokens: int = 2000
    temperature: float = 0.7
    capture_delay_ms: int = 100
    restore_clipboard_after_capture: bool = True
    paste_result: bool = True
    conflict_display_seconds: float = 2.0
    commit_confirm_delay_seconds: float = 0.5
    execution_log_max_entries: int = 2000

    def validate(self) -> None:
        if self.selected_provider not in PROVIDER_NAMES:
            raise ValueError(f"Unsupported selected_provider: {self.selected_provider}")
        if self.selected_model is not None and not str(self.selected_model).strip():
            raise ValueError("selected_model cannot be blank; use null for the provider default")
        if self.free_action_limit < 1:
            raise ValueError("free_action_limit must be >= 1")
        if self.request_timeout_ms < 1000:
            raise ValueError("request_timeout_ms must be >= 1000")
        if self.max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")
        if not isinstance(self.temperature, (int, float)) or not 0 <= self.temperature <= 2:
            raise ValueError("temperature must be between 0 and 2")
        if self.capture_delay_ms < 20 or self.capture_delay_ms > 2000:
            raise ValueError("capture_delay_ms must be between 20 and 2000")
        if self.conflict_display_seconds <= 0:
            raise ValueError("conflict_display_seconds must be > 0")
        if self.commit_confirm_delay_seconds < 0:
            raise ValueError("commit_confirm_delay_seconds must be >= 0")
        if self.execution_log_max_entries < 1:
            raise ValueError("execution_log_max_entries must be >= 1")


class ConfigStore:
    def __init__(self, path: Path = CONFIG_PATH) -> None:
        self.path = path

    def ensure_dir(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> AppConfig:
        self.ensure_dir()
        try:
            raw_text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            cfg = AppConfig()
            self.save(cfg)
            return cfg

        try:
            raw = json.loads(raw_text)
            known_keys = {f.name for f in fields(AppConfig)}
            cfg = AppConfig(**{k: v for k, v in raw.items() if k in known_keys})
            cfg.validate()
            return cfg
        except (json.JSONDecodeError, TypeError, ValueError, AttributeError) as exc:
            LOGGER.warning("Config file corrupt or invalid, using defaults: %s", exc)
            return AppConfig()

    def save(self, config: AppConfig) -> None:
        config.validate()
        self.ensure_dir()
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(
            json.dumps(asdict(config), indent=2, sort_keys=True),
            encoding="utf-8",
        )
        os.replace(str(tmp_path), str(self.path))
