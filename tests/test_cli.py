from __future__ import annotations

import logging
import threading
from pathlib import Path

import pytest

from panepilot import cli
from panepilot.agent.session import CancelScope, Session
from panepilot.config import AppConfig


def _session(tmp_path: Path) -> Session:
    return Session(config=AppConfig(api_key="k", config_dir=str(tmp_path)))


def test_parser_defaults() -> None:
    args = cli.build_parser().parse_args([])

    assert args.task == []
    assert args.task_file is None
    assert args.config_file is None
    assert args.debug is False


def test_parser_accepts_task_and_options() -> None:
    args = cli.build_parser().parse_args(["--model", "gpt-4o", "-f", "task.md", "fix", "the", "build"])

    assert args.model == "gpt-4o"
    assert args.task_file == "task.md"
    assert args.task == ["fix", "the", "build"]


def test_format_prompt_reflects_state(tmp_path: Path) -> None:
    session = _session(tmp_path)
    assert cli.format_prompt(session) == "PanePilot » "

    session.set_status("running")
    assert cli.format_prompt(session) == "PanePilot [▶] » "

    session.set_status("waiting")
    assert cli.format_prompt(session) == "PanePilot [?] » "

    session.watch_mode = True
    assert cli.format_prompt(session) == "PanePilot [∞] » "


def test_main_requires_api_key(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PANEPILOT_API_KEY", raising=False)
    monkeypatch.delenv("PANEPILOT_CONFIG_FILE", raising=False)
    monkeypatch.setenv("PANEPILOT_CONFIG_DIR", str(tmp_path))
    monkeypatch.setattr(cli, "configure_logging", lambda config: Path(config.log_dir) / "panepilot.log")

    assert cli.main([]) == 1
    assert "An API key is required" in capsys.readouterr().out


def test_main_reports_unreadable_task_file(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PANEPILOT_API_KEY", "k")
    monkeypatch.setenv("PANEPILOT_CONFIG_DIR", str(tmp_path))
    monkeypatch.setattr(cli, "configure_logging", lambda config: Path(config.log_dir) / "panepilot.log")

    assert cli.main(["-f", str(tmp_path / "missing.md")]) == 1
    assert "Error reading task file" in capsys.readouterr().out


def test_configure_logging_writes_to_log_dir(tmp_path: Path) -> None:
    config = AppConfig(api_key="k", config_dir=str(tmp_path), log_dir=str(tmp_path / "logs"))

    log_file = cli.configure_logging(config)

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    assert log_file == tmp_path / "logs" / "panepilot.log"
    assert log_file.exists()


class FakeCommands:
    def __init__(self) -> None:
        self.lines: list[str] = []

    def handle(self, line: str) -> bool:
        self.lines.append(line)
        return line.strip() != "/exit"


class FakeAgent:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.messages: list[str] = []
        self.active_scope: CancelScope | None = None

    def run_message(self, scope: CancelScope, message: str) -> bool:
        self.session.set_status("running")
        self.messages.append(message)
        return True


def test_repl_routes_messages_and_commands(tmp_path: Path) -> None:
    session = _session(tmp_path)
    inputs = iter(["", "  ", "list files", "/help", "/exit"])
    repl = cli.ChatREPL(session, input_func=lambda _prompt: next(inputs))
    repl.agent = FakeAgent(session)  # type: ignore[assignment]
    repl.commands = FakeCommands()  # type: ignore[assignment]

    assert repl.run("initial task") == 0

    assert repl.agent.messages == ["initial task", "list files"]
    assert repl.commands.lines == ["/help", "/exit"]
    assert session.status == ""


def test_repl_exits_on_eof(tmp_path: Path) -> None:
    def raise_eof(_prompt: str) -> str:
        raise EOFError

    assert cli.ChatREPL(_session(tmp_path), input_func=raise_eof).run() == 0


def test_run_task_keeps_waiting_status(tmp_path: Path) -> None:
    session = _session(tmp_path)
    repl = cli.ChatREPL(session)

    repl.run_task(lambda _scope: session.set_status("waiting"))

    assert session.status == "waiting"


def test_run_task_reports_failures(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    repl = cli.ChatREPL(_session(tmp_path))

    def explode(_scope: CancelScope) -> None:
        raise RuntimeError("kaboom")

    repl.run_task(explode)

    assert "Error: kaboom" in capsys.readouterr().out


def test_run_task_runs_off_the_main_thread(tmp_path: Path) -> None:
    repl = cli.ChatREPL(_session(tmp_path))
    names: list[str] = []

    repl.run_task(lambda _scope: names.append(threading.current_thread().name))

    assert names == ["panepilot-task"]


def test_process_input_requires_wiring(tmp_path: Path) -> None:
    repl = cli.ChatREPL(_session(tmp_path))

    with pytest.raises(RuntimeError, match="commands must be set"):
        repl.process_input("/help")
    with pytest.raises(RuntimeError, match="agent must be set"):
        repl.process_input("list files")


def test_run_task_interrupt_cancels_and_joins(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    class InterruptOnceThread(threading.Thread):
        interrupts = 1

        def join(self, timeout: float | None = None) -> None:
            if InterruptOnceThread.interrupts:
                InterruptOnceThread.interrupts -= 1
                raise KeyboardInterrupt
            super().join(timeout)

    monkeypatch.setattr(cli.threading, "Thread", InterruptOnceThread)
    session = _session(tmp_path)
    session.set_status("running")
    agent = FakeAgent(session)
    agent.active_scope = CancelScope()
    repl = cli.ChatREPL(session)
    repl.agent = agent  # type: ignore[assignment]
    seen: list[bool] = []

    def task(scope: CancelScope) -> None:
        seen.append(scope.wait(5))

    repl.run_task(task)

    assert seen == [True]
    assert agent.active_scope.cancelled is True
    assert session.status == ""
    out = capsys.readouterr().out
    assert "Received interrupt signal, canceling operation..." in out
    assert out.rstrip().endswith("Operation canceled.")
