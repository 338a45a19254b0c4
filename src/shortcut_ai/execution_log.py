from __future__ import annotations

import sqlite3
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from shortcut_ai.config import APP_DIR

EXECUTION_LOG_DB_PATH = APP_DIR / "execution_log.sqlite3"
MIN_RUNS_FOR_SUGGESTION = 5
LOW_SUCCESS_RATE = 0.7
SLOW_AVERAGE_MS = 10_000


@dataclass
class ExecutionLogEntry:
    id: int
    created_at: str
    action_id: str
    action_name: str
    prompt: str
    provider: str | None
    model_id: str | None
    duration_ms: float
    input_length: int
    output_length: int
    success: bool
    error_message: str | None


@dataclass
class ActionExecutionStats:
    total_runs: int
    successful_runs: int
    failed_runs: int
    success_rate: float
    average_duration_ms: float
    top_failure_reasons: list[str]


@dataclass
class PromptAutoSuggestion:
    summary: str
    suggested_prompt: str | None


def normalize_failure_reason(message: str | None) -> str:
    raw = (message or "Unknown failure").lower()
    if "no text selected" in raw:
        return "No input text was selected."
    if "api key" in raw:
        return "API key was missing or invalid."
    if "timeout" in raw or "timed out" in raw:
        return "The request timed out."
    if "network" in raw:
        return "Network issue during request."
    return message or "Unknown failure."


def build_reliable_prompt(prompt: str, failure_reasons: list[str]) -> str:
    reasons = ""
    if failure_reasons:
        reasons = "\nKnown failure patterns to avoid:\n- " + "\n- ".join(failure_reasons)
    return (
        f"{prompt}\n\n"
        "Requirements:\n"
        "- Return only the transformed text.\n"
        "- Do not include explanations, markdown, or quotes.\n"
        "- If input is ambiguous, still return a best-effort transformed result.\n"
        f"- Preserve original intent and key facts.{reasons}"
    )


def build_fast_prompt(prompt: str) -> str:
    return (
        f"{prompt}\n\n"
        "Requirements:\n"
        "- Be concise and direct.\n"
        "- Prefer one clear output with minimal verbosity.\n"
        "- Avoid extra analysis unless explicitly requested."
    )


class ExecutionLogStore:
    def __init__(self, db_path: Path = EXECUTION_LOG_DB_PATH, max_entries: int = 2000) -> None:
        self.db_path = db_path
        self.max_entries = max(1, max_entries)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout = 5000")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS executions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at TEXT NOT NULL,
                    action_id TEXT NOT NULL,
                    action_name TEXT NOT NULL,
                    prompt TEXT NOT NULL,
                    provider TEXT,
                    model_id TEXT,
                    duration_ms REAL NOT NULL,
                    input_length INTEGER NOT NULL,
                    output_length INTEGER NOT NULL,
                    success INTEGER NOT NULL,
                    error_message TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_executions_action_id
                ON executions (action_id)
                """
            )

    def record(
        self,
        action_id: str,
        action_name: str,
        prompt: str,
        provider: str | None,
        model_id: str | None,
        duration_ms: float,
        input_length: int,
        output_length: int,
        success: bool,
        error_message: str | None,
    ) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO executions (
                    created_at,
                    action_id,
                    action_name,
                    prompt,
                    provider,
                    model_id,
                    duration_ms,
                    input_length,
                    output_length,
                    success,
                    error_message
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    now,
                    action_id,
                    action_name,
                    prompt,
                    provider,
                    model_id,
                    max(0.0, float(duration_ms)),
                    input_length,
                    output_length,
                    1 if success else 0,
                    error_message,
                ),
            )
            conn.execute(
                """
                DELETE FROM executions
                WHERE id NOT IN (SELECT id FROM executions ORDER BY id DESC LIMIT ?)
                """,
                (self.max_entries,),
            )

    def entries(self, action_id: str | None = None, limit: int = 200) -> list[ExecutionLogEntry]:
        with self._connect() as conn:
            if action_id:
                rows = conn.execute(
                    """
                    SELECT id, created_at, action_id, action_name, prompt, provider, model_id,
                           duration_ms, input_length, output_length, success, error_message
                    FROM executions
                    WHERE action_id = ?
                    ORDER BY id DESC
                    LIMIT ?
                    """,
                    (action_id, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT id, created_at, action_id, action_name, prompt, provider, model_id,
                           duration_ms, input_length, output_length, success, error_message
                    FROM executions
                    ORDER BY id DESC
                    LIMIT ?
                    """,
                    (limit,),
                ).fetchall()

        return [
            ExecutionLogEntry(
                id=int(row[0]),
                created_at=row[1],
                action_id=row[2],
                action_name=row[3],
                prompt=row[4],
                provider=row[5],
                model_id=row[6],
                duration_ms=float(row[7]),
                input_length=int(row[8]),
                output_length=int(row[9]),
                success=bool(row[10]),
                error_message=row[11],
            )
            for row in rows
        ]

    def total_count(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM executions").fetchone()
        return int(row[0] if row else 0)

    def stats(self, action_id: str) -> ActionExecutionStats | None:
        entries = self.entries(action_id=action_id, limit=self.max_entries)
        if not entries:
            return None

        successful = sum(1 for entry in entries if entry.success)
        failures = Counter(normalize_failure_reason(e.error_message) for e in entries if not e.success)
        return ActionExecutionStats(
            total_runs=len(entries),
            successful_runs=successful,
            failed_runs=len(entries) - successful,
            success_rate=successful / len(entries),
            average_duration_ms=sum(e.duration_ms for e in entries) / len(entries),
            top_failure_reasons=[reason for reason, _count in failures.most_common(3)],
        )

    def auto_suggestion(self, action_id: str, prompt: str) -> PromptAutoSuggestion | None:
        stats = self.stats(action_id)
        if stats is None or stats.total_runs < MIN_RUNS_FOR_SUGGESTION:
            return None

        if stats.success_rate < LOW_SUCCESS_RATE:
            percent = round(stats.success_rate * 100)
            return PromptAutoSuggestion(
                summary=(
                    f"Success rate is {percent}% across {stats.total_runs} runs. "
                    "Clarify output constraints and fallback behavior."
                ),
                suggested_prompt=build_reliable_prompt(prompt, stats.top_failure_reasons),
            )

        if stats.average_duration_ms > SLOW_AVERAGE_MS:
            return PromptAutoSuggestion(
                summary=(
                    f"Average response time is {round(stats.average_duration_ms)}ms. "
                    "Tighten scope for faster responses."
                ),
                suggested_prompt=build_fast_prompt(prompt),
            )
        return None


__all__ = [
    "ActionExecutionStats",
    "EXECUTION_LOG_DB_PATH",
    "ExecutionLogEntry",
    "ExecutionLogStore",
    "PromptAutoSuggestion",
    "normalize_failure_reason",
]
