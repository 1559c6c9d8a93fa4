"""Command-line interface for panepilot."""

from __future__ import annotations

import argparse
import logging
import os
import shlex
import sys
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import cast

from .agent.exec_pane import ExecPane
from .agent.loop import AgentLoop
from .agent.session import CancelScope, Session
from .commands import SubcommandHandler, is_subcommand
from .config import AppConfig
from .llm.client import LLMClient
from .terminal.confirm import ConfirmationEditor
from .tmux import PaneCollaborator, PaneError, create_pane_collaborator

LOGGER = logging.getLogger(__name__)

APP_NAME = "PanePilot"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
TMUX_SHELL_STARTUP_SECONDS = 1.0
WORKER_JOIN_SECONDS = 0.1
STATE_SYMBOLS = {"running": "▶", "waiting": "?"}


class CLIArgs(argparse.Namespace):
    task: list[str]
    task_file: str | None
    config_file: str | None
    model: str | None
    debug: bool


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="panepilot",
        description="AI pair programmer that works inside your tmux window",
    )
    parser.add_argument("--config", dest="config_file", help="Path to a JSON config file")
    parser.add_argument("-f", "--file", dest="task_file", help="Read the initial request from a file")
    parser.add_argument("--model", help="Model to use for this session")
    parser.add_argument("--debug", action="store_true", help="Write debug logs and model exchanges")
    parser.add_argument("task", nargs="*", help="Initial request to process before the prompt opens")
    return parser


def format_prompt(session: Session) -> str:
    symbol = "∞" if session.watch_mode else STATE_SYMBOLS.get(session.status, "")
    if symbol:
        return f"{APP_NAME} [{symbol}] » "
    return f"{APP_NAME} » "


def configure_logging(config: AppConfig) -> Path:
    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "panepilot.log"
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=[logging.FileHandler(log_file, encoding="utf-8")],
        force=True,
    )
    return log_file


def relaunch_in_tmux(panes: PaneCollaborator, argv: list[str]) -> int:
    """Start a tmux session, rerun this command inside it and attach."""
    pane_id = panes.create_session()
    command = shlex.join([sys.executable, os.path.abspath(sys.argv[0]), *argv])
    panes.send_text(pane_id, command, auto_enter=True)
    time.sleep(TMUX_SHELL_STARTUP_SECONDS)
    panes.attach_session(pane_id)
    return 0


def main(argv: list[str] | None = None) -> int:
    raw_argv = list(sys.argv[1:] if argv is None else argv)
    args = cast(CLIArgs, build_parser().parse_args(raw_argv))
    config = AppConfig.from_env(args.config_file)
    if args.debug:
        config.debug = True
    if args.model:
        config.model = args.model

    try:
        log_file = configure_logging(config)
    except OSError as exc:
        print(f"Cannot write logs to {config.log_dir}: {exc}")
        return 1
    LOGGER.info("panepilot_started", extra={"log_file": str(log_file), "provider": config.provider})

    if not config.api_key:
        print("An API key is required. Set PANEPILOT_API_KEY or api_key in the config file.")
        return 1

    initial_task = " ".join(args.task).strip()
    if args.task_file:
        try:
            initial_task = Path(args.task_file).read_text(encoding="utf-8").strip()
        except OSError as exc:
            print(f"Error reading task file: {exc}")
            return 1

    panes = create_pane_collaborator()
    try:
        if not os.environ.get("TMUX_PANE"):
            return relaunch_in_tmux(panes, raw_argv)
        chat_pane_id = panes.current_pane_id()
    except PaneError as exc:
        print(f"tmux error: {exc}")
        return 1

    session = Session(config=config)
    client = LLMClient(
        api_key=config.api_key,
        model=config.model,
        provider=config.provider,
        base_url=config.base_url,
        azure_api_version=config.azure_api_version,
        azure_deployment=config.azure_deployment,
        timeout=config.request_timeout,
    )
    repl = ChatREPL(session)
    exec_pane = ExecPane(panes, chat_pane_id=chat_pane_id)
    agent = AgentLoop(
        session=session,
        client=client,
        panes=panes,
        exec_pane=exec_pane,
        confirmer=ConfirmationEditor(
            whitelist_patterns=config.whitelist_patterns,
            blacklist_patterns=config.blacklist_patterns,
            println=repl.println,
        ),
        println=repl.println,
    )
    try:
        exec_pane.init()
    except PaneError as exc:
        print(f"tmux error: {exc}")
        return 1
    agent.reflections.load()

    repl.agent = agent
    repl.commands = SubcommandHandler(
        agent,
        chat_pane_id=chat_pane_id,
        run_task=repl.run_task,
        println=repl.println,
    )
    return repl.run(initial_task)


class ChatREPL:
    """Interactive prompt loop; each message runs on a cancellable worker thread."""

    def __init__(self, session: Session, *, input_func: Callable[[str], str] | None = None) -> None:
        self.session = session
        self.input_func = input_func or input
        self.agent: AgentLoop | None = None
        self.commands: SubcommandHandler | None = None

    def println(self, message: str) -> None:
        print(format_prompt(self.session) + message)

    def run(self, initial_task: str = "") -> int:
        print()
        print("Type '/help' for a list of commands, '/exit' to quit")
        print()
        if initial_task:
            print(format_prompt(self.session) + initial_task)
            if not self.process_input(initial_task):
                return 0

        while True:
            try:
                line = self.input_func(format_prompt(self.session))
            except EOFError:
                print()
                return 0
            except KeyboardInterrupt:
                print()
                continue

            trimmed = line.strip()
            if trimmed in {"exit", "quit"}:
                return 0
            if not trimmed:
                continue
            if not self.process_input(line):
                return 0

    def process_input(self, line: str) -> bool:
        """Handle one input line; return false to leave the loop."""
        if is_subcommand(line):
            if self.commands is None:
                raise RuntimeError("ChatREPL.commands must be set before handling input")
            return self.commands.handle(line)

        agent = self.agent
        if agent is None:
            raise RuntimeError("ChatREPL.agent must be set before handling input")
        self.run_task(lambda scope: agent.run_message(scope, line))
        return True

    def run_task(self, task: Callable[[CancelScope], object]) -> None:
        """Run ``task`` on a worker thread until it finishes or Ctrl+C cancels it."""
        scope = CancelScope()
        failure: list[BaseException] = []

        def target() -> None:
            try:
                task(scope)
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("task_failed")
                failure.append(exc)

        worker = threading.Thread(target=target, name="panepilot-task", daemon=True)
        worker.start()
        interrupted = False
        while worker.is_alive():
            try:
                worker.join(WORKER_JOIN_SECONDS)
            except KeyboardInterrupt:
                if not interrupted:
                    print("\nReceived interrupt signal, canceling operation...")
                interrupted = True
                scope.cancel()
                if self.agent is not None and self.agent.active_scope is not None:
                    self.agent.active_scope.cancel()

        if interrupted:
            self.session.clear_status()
            print("Operation canceled.")
        elif self.session.status == "running":
            self.session.clear_status()
        if failure:
            print(f"Error: {failure[0]}")


if __name__ == "__main__":
    raise SystemExit(main())
