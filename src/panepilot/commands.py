"""Slash commands available at the chat prompt."""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable

from panepilot.agent.exec_pane import SUPPORTED_PREPARE_SHELLS, parse_command_history
from panepilot.agent.loop import AgentLoop
from panepilot.agent.manifest import ManifestError, list_tools
from panepilot.agent.session import CancelScope
from panepilot.config import ALLOWED_OVERRIDE_KEYS
from panepilot.tmux import PaneError

LOGGER = logging.getLogger(__name__)

HELP_MESSAGE = """Available commands:
- /help: Show this message
- /info: Display session information
- /clear: Clear the chat history
- /reset: Reset the chat history and status
- /prepare [bash|zsh|fish]: Prepare the exec pane for precise command tracking
- /watch <goal>: Start watch mode (alias /w)
- /squash: Summarize the chat history
- /config: Show the configuration
- /config set <key> <value>: Override a setting for this session
- /model [name]: Show the model, or switch it for this session
- /tools: Show the tools manifest
- /exit: Exit the application"""

COMMAND_NAMES = (
    "/help",
    "/info",
    "/prepare",
    "/clear",
    "/reset",
    "/exit",
    "/squash",
    "/watch",
    "/config",
    "/model",
    "/tools",
)
PREPARE_SETTLE_SECONDS = 0.5
_SECRET_FIELDS = {"api_key"}

Printer = Callable[[str], None]
TaskRunner = Callable[[Callable[[CancelScope], None]], None]


def is_subcommand(text: str) -> bool:
    return text.strip().startswith("/")


def resolve_command(prefix: str) -> str | None:
    """Return the first command ``prefix`` abbreviates, e.g. ``/he`` for ``/help``."""
    if prefix == "/w":
        return "/watch"
    for name in COMMAND_NAMES:
        if name.startswith(prefix):
            return name
    return None


class SubcommandHandler:
    """Executes slash commands against a running agent."""

    def __init__(
        self,
        agent: AgentLoop,
        *,
        chat_pane_id: str,
        run_task: TaskRunner,
        println: Printer | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.agent = agent
        self.session = agent.session
        self.chat_pane_id = chat_pane_id
        self.run_task = run_task
        self.println = println or print
        self.sleep = sleep or time.sleep

    def handle(self, line: str) -> bool:
        """Run one command; return false when the application should exit."""
        parts = line.strip().split()
        if not parts:
            self.println("Empty command")
            return True

        LOGGER.info("subcommand_received", extra={"command": line.strip()})
        name = resolve_command(parts[0].lower())
        args = parts[1:]
        if name is None:
            self.println(f"Unknown command: {line.strip()}. Type '/help' to see available commands.")
            return True
        if name == "/exit":
            return False

        handler = getattr(self, f"_cmd_{name[1:]}")
        try:
            handler(args)
        except PaneError as exc:
            LOGGER.error("subcommand_failed", extra={"command": name, "error": str(exc)})
            self.println(f"Error: {exc}")
        return True

    def _cmd_help(self, args: list[str]) -> None:
        self.println(HELP_MESSAGE)

    def _cmd_info(self, args: list[str]) -> None:
        context = self.agent.context
        tokens = context.context_tokens()
        max_size = self.session.max_context_size
        usage = tokens / max_size * 100 if max_size > 0 else 0.0
        lines = [
            "General",
            f"  {'Provider':<18}{self.session.config.provider}",
            f"  {'Model':<18}{self.session.model}",
            f"  {'Max Capture Lines':<18}{self.session.max_capture_lines}",
            f"  {'Wait Interval':<18}{self.session.wait_interval}",
            "Context",
            f"  {'Messages':<18}{len(self.session.history)}",
            f"  {'Context Size~':<18}{tokens} tokens ({usage:.1f}%)",
            f"  {'Max Size':<18}{max_size} tokens",
            f"  {'Reflections':<18}{len(self.session.reflection_log)}",
            "Tmux Window Panes",
        ]
        panes = self.agent.panes
        for pane in panes.list_panes(panes.current_window_target()):
            if pane.id == self.agent.exec_pane.id:
                pane = self.agent.exec_pane.details
            marker = " (chat)" if pane.id == self.chat_pane_id else ""
            lines.append(f"  {pane.id}{marker}")
            lines.extend(f"    {detail}" for detail in pane.describe().splitlines()[1:])
        self.println("\n".join(lines))

    def _cmd_prepare(self, args: list[str]) -> None:
        exec_pane = self.agent.exec_pane
        details = exec_pane.init()
        shell = args[0].lower() if args else None
        if shell is not None and shell not in SUPPORTED_PREPARE_SHELLS:
            supported = ", ".join(SUPPORTED_PREPARE_SHELLS)
            self.println(f"Shell '{shell}' is not supported. Supported shells are: {supported}")
            return
        if shell is None and details.is_subshell:
            self.println("Shell detection is not supported on subshells.")
            self.println("Please specify the shell manually: /prepare bash, /prepare zsh, or /prepare fish")
            return
        try:
            exec_pane.prepare(shell)
        except ValueError as exc:
            self.println(str(exc))
            return

        self.sleep(PREPARE_SETTLE_SECONDS)
        details = exec_pane.refresh(self.session.max_capture_lines)
        self.session.history.clear()
        self.session.exec_history = parse_command_history(details.content)
        LOGGER.debug("exec_history_parsed", extra={"entries": len(self.session.exec_history)})
        self.println(details.describe())

    def _cmd_clear(self, args: list[str]) -> None:
        self.session.history.clear()
        self.agent.panes.clear_pane(self.chat_pane_id)

    def _cmd_reset(self, args: list[str]) -> None:
        self.session.reset()
        self.agent.panes.clear_pane(self.chat_pane_id)
        if self.agent.exec_pane.id:
            self.agent.panes.clear_pane(self.agent.exec_pane.id)

    def _cmd_squash(self, args: list[str]) -> None:
        if self.agent.context.compress():
            self.println("Chat history squashed.")
        else:
            self.println("Nothing to squash.")

    def _cmd_watch(self, args: list[str]) -> None:
        if not args:
            self.println("Usage: /watch <description>")
            return
        goal = " ".join(args)
        self.println(f"Watching panes for: {goal}")
        self.run_task(lambda scope: self.agent.watch(goal, scope))

    def _cmd_config(self, args: list[str]) -> None:
        if len(args) >= 2 and args[0].lower() == "set":
            key = args[1].lower()
            try:
                value = self.session.set_override(key, " ".join(args[2:]))
            except KeyError as exc:
                self.println(str(exc.args[0]))
                return
            self.println(f"Set {key} = {value}")
            return
        self.println(self._format_config())

    def _cmd_model(self, args: list[str]) -> None:
        if not args:
            self.println(f"Current model: {self.session.model}")
            return
        value = self.session.set_override("model", " ".join(args))
        LOGGER.info("model_switched", extra={"model": value})
        self.println(f"Switched to model: {value}")

    def _cmd_tools(self, args: list[str]) -> None:
        path = self.session.tools_manifest_path
        if not path:
            self.println("Tools manifest path is not configured.")
            return
        try:
            self.println(list_tools(path).rstrip("\n"))
        except ManifestError as exc:
            self.println(str(exc))

    def _format_config(self) -> str:
        lines = []
        for item in dataclasses.fields(self.session.config):
            value = getattr(self.session.config, item.name)
            if item.name in _SECRET_FIELDS and value:
                value = "********"
            suffix = ""
            if item.name in self.session.overrides:
                value = self.session.overrides[item.name]
                suffix = " (session override)"
            lines.append(f"{item.name}: {value}{suffix}")
        lines.append(f"overridable keys: {', '.join(ALLOWED_OVERRIDE_KEYS)}")
        return "\n".join(lines)
