import logging
from pathlib import Path

import shortcut_ai.main as main


class _FakeRegistry:
    def count(self) -> int:
        return 2


class _FakeApp:
    instances = []

    def __init__(self, on_open_main=None) -> None:  # type: ignore[no-untyped-def]
        self.on_open_main = on_open_main
        self.registry = _FakeRegistry()
        self.calls = []
        _FakeApp.instances.append(self)

    def start(self) -> None:
        self.calls.append("start")

    def stop(self) -> None:
        self.calls.append("stop")


def _fake_appkit(calls):  # type: ignore[no-untyped-def]
    class FakeSharedApp:
        def setActivationPolicy_(self, policy) -> None:  # type: ignore[no-untyped-def]
            calls.append(("policy", policy))

        def run(self) -> None:
            calls.append("ns_run")

    shared = FakeSharedApp()

    class FakeNSApplication:
        @staticmethod
        def sharedApplication():  # type: ignore[no-untyped-def]
            return shared

    class FakeAppKit:
        NSApplication = FakeNSApplication
        NSApplicationActivationPolicyAccessory = 1

    return FakeAppKit


def test_configure_logging_creates_log_dir_and_configures_handlers(monkeypatch, tmp_path: Path) -> None:
    log_dir = tmp_path / "logs"
    log_file = log_dir / "shortcut_ai.log"

    monkeypatch.setattr(main, "LOG_DIR", log_dir)
    monkeypatch.setattr(main, "LOG_FILE", log_file)

    captured = {}

    def fake_basic_config(**kwargs):
        captured.update(kwargs)

    monkeypatch.setattr(main.logging, "basicConfig", fake_basic_config)

    main.configure_logging()

    assert log_dir.exists()
    assert captured["level"] == logging.INFO
    assert "%(asctime)s %(levelname)s" in captured["format"]
    assert len(captured["handlers"]) == 2
    for handler in captured["handlers"]:
        handler.close()


def test_run_configures_logging_then_starts_app(monkeypatch) -> None:
    calls = []
    released = []
    _FakeApp.instances.clear()

    monkeypatch.setattr(main, "_enforce_single_instance", lambda: True)
    monkeypatch.setattr(main, "configure_logging", lambda: calls.append("logging"))
    monkeypatch.setattr(main, "_appkit", lambda: _fake_appkit(calls))
    monkeypatch.setattr(main, "ShortcutAIApp", _FakeApp)
    monkeypatch.setattr(main, "release_single_instance_lock", lambda: released.append(True))

    main.run()

    assert calls == ["logging", ("policy", 1), "ns_run"]
    app = _FakeApp.instances[0]
    assert app.calls == ["start", "stop"]
    assert app.on_open_main is main._activate_self
    assert released == [True]


def test_run_exits_early_if_duplicate_instance(monkeypatch) -> None:
    calls = []

    monkeypatch.setattr(main, "_enforce_single_instance", lambda: False)
    monkeypatch.setattr(main, "configure_logging", lambda: calls.append("logging"))
    monkeypatch.setattr(main, "ShortcutAIApp", lambda **_kwargs: calls.append("app"))

    main.run()

    assert calls == []


def test_enforce_single_instance_activates_existing_app(monkeypatch) -> None:
    monkeypatch.setattr(main, "acquire_single_instance_lock", lambda: False)
    called = []

    def fake_run(cmd, check=False, capture_output=False, text=False):  # noqa: ARG001
        called.append(cmd)

        class Result:
            returncode = 0

        return Result()

    monkeypatch.setattr(main.subprocess, "run", fake_run)

    assert main._enforce_single_instance() is False
    assert called[0][0] == "osascript"
    assert main.BUNDLE_ID in called[0][2]


def test_enforce_single_instance_returns_true_when_lock_acquired(monkeypatch) -> None:
    monkeypatch.setattr(main, "acquire_single_instance_lock", lambda: True)

    assert main._enforce_single_instance() is True
