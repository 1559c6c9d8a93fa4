"""Exec pane discovery, prompt instrumentation and pane snapshots."""

from __future__ import annotations

import logging
import platform
import re
from html import escape

from panepilot.agent.models import CommandExecHistory
from panepilot.agent.session import CancelScope
from panepilot.tmux import PaneCollaborator, PaneDetails
from panepilot.tmux.base import SHELL_COMMANDS

LOGGER = logging.getLogger(__name__)

SUPPORTED_PREPARE_SHELLS = ("bash", "zsh", "fish")
PROMPT_MARKER = "» "
POLL_INTERVAL_SECONDS = 0.5

# Each prepared prompt ends with ``[HH:MM][<exit code>]» ``.
PROMPT_PATTERN = re.compile(r"\[(?P<time>\d{2}:\d{2})\]\[(?P<code>\d+)\]» ?(?P<command>.*)$")

PREPARE_COMMANDS = {
    "bash": "export PS1='\\u@\\h:\\w[\\A][$?]» '",
    "zsh": "export PROMPT='%n@%m:%~[%T][%?]» '",
    "fish": (
        "function fish_prompt; set -l last $status;"
        " printf '%s@%s:%s[%s][%d]» ' $USER $hostname (prompt_pwd) (date +%H:%M) $last; end"
    ),
}


def parse_command_history(content: str) -> list[CommandExecHistory]:
    """Extract finished commands from prepared-pane text.

    A command is the text after one prompt marker; its output runs until the
    next marker, whose bracketed code is the command's exit status.
    """
    lines = content.splitlines()
    prompts = [
        (index, match) for index, line in enumerate(lines) if (match := PROMPT_PATTERN.search(line))
    ]
    history: list[CommandExecHistory] = []
    for (start, opening), (end, closing) in zip(prompts, prompts[1:]):
        command = opening.group("command").strip()
        if not command:
            continue
        output = "\n".join(lines[start + 1 : end]).strip("\n")
        history.append(
            CommandExecHistory(
                command=command,
                output=output,
                exit_code=int(closing.group("code")),
            )
        )
    return history


def is_prompt_idle(content: str) -> bool:
    """Return true when the last line is a prepared prompt with nothing typed."""
    lines = content.rstrip().splitlines()
    if not lines:
        return False
    match = PROMPT_PATTERN.search(lines[-1])
    return bool(match) and not match.group("command").strip()


def _count_prompts(content: str) -> int:
    return sum(1 for line in content.splitlines() if PROMPT_PATTERN.search(line))


def _rejoin_wrapped(entry: CommandExecHistory, command: str) -> CommandExecHistory:
    """Move a command's wrapped tail back from the output into the command."""
    text = entry.command
    lines = entry.output.splitlines()
    while text != command and lines:
        for joined in (text + lines[0], f"{text} {lines[0]}"):
            if command.startswith(joined):
                text = joined
                lines.pop(0)
                break
        else:
            break
    if text != command:
        return entry
    return CommandExecHistory(command=command, output="\n".join(lines), exit_code=entry.exit_code)


class ExecPane:
    """The pane the agent types into, plus helpers around it."""

    def __init__(self, panes: PaneCollaborator, *, chat_pane_id: str) -> None:
        self.panes = panes
        self.chat_pane_id = chat_pane_id
        self.details = PaneDetails(id="")

    @property
    def id(self) -> str:
        return self.details.id

    @property
    def is_prepared(self) -> bool:
        return self.details.is_prepared

    def init(self) -> PaneDetails:
        """Find, or create, the first non-chat pane of the current window."""
        target = self.panes.current_window_target()
        candidates = [pane for pane in self.panes.list_panes(target) if pane.id != self.chat_pane_id]
        if candidates:
            pane = candidates[0]
        else:
            new_id = self.panes.create_pane(target)
            LOGGER.info("exec_pane_created", extra={"pane_id": new_id})
            pane = next(
                (item for item in self.panes.list_panes(target) if item.id == new_id),
                PaneDetails(id=new_id),
            )
        pane.is_prepared = self.details.is_prepared and pane.id == self.details.id
        self.details = pane
        self._fill_environment(self.details)
        return self.details

    def refresh(self, max_lines: int) -> PaneDetails:
        """Re-read the exec pane's metadata and content."""
        if not self.details.id:
            return self.init()
        target = self.panes.current_window_target()
        current = next((pane for pane in self.panes.list_panes(target) if pane.id == self.details.id), None)
        if current is None:
            LOGGER.info("exec_pane_missing", extra={"pane_id": self.details.id})
            self.init()
        else:
            self.details.is_active = current.is_active
            self.details.pid = current.pid
            self.details.current_command = current.current_command
            self.details.history_size = current.history_size
            self.details.history_limit = current.history_limit
            self.details.is_subshell = current.is_subshell
            self._fill_environment(self.details)
        content = self.panes.capture(self.details.id, max_lines)
        self.details.content = content
        if any(PROMPT_PATTERN.search(line) for line in content.splitlines()):
            self.details.is_prepared = True
        return self.details

    def prepare(self, shell: str | None = None) -> str:
        """Instrument the pane prompt so command boundaries are observable."""
        if not self.details.id:
            self.init()
        selected = (shell or self.details.shell or "").strip().lower()
        if selected not in SUPPORTED_PREPARE_SHELLS:
            supported = ", ".join(SUPPORTED_PREPARE_SHELLS)
            msg = f"Shell '{selected or 'unknown'}' is not supported. Supported shells are: {supported}"
            raise ValueError(msg)
        self.panes.send_text(self.details.id, PREPARE_COMMANDS[selected], auto_enter=True)
        self.details.shell = selected
        self.details.is_prepared = True
        LOGGER.info("exec_pane_prepared", extra={"pane_id": self.details.id, "shell": selected})
        return selected

    def exec_wait_capture(
        self,
        command: str,
        *,
        max_lines: int,
        cancel: CancelScope | None = None,
    ) -> CommandExecHistory | None:
        """Run ``command`` in a prepared pane and wait for its prompt to return.

        The command counts as finished once an idle prompt shows up after a
        new prompt line appeared or the pane was seen busy. Returns ``None``
        if the wait was cancelled before completion.
        """
        before = _count_prompts(self.panes.capture(self.details.id, max_lines))
        self.panes.send_text(self.details.id, command, auto_enter=True)
        first_line = command.strip().splitlines()[0].strip() if command.strip() else ""
        scope = cancel or CancelScope()
        seen_busy = False
        while not scope.wait(POLL_INTERVAL_SECONDS):
            content = self.panes.capture(self.details.id, max_lines)
            self.details.content = content
            if not is_prompt_idle(content):
                seen_busy = True
                continue
            history = parse_command_history(content)
            if not history:
                continue
            last = _rejoin_wrapped(history[-1], first_line)
            if seen_busy or _count_prompts(content) > before or last.command == first_line:
                LOGGER.debug(
                    "exec_pane_command_finished",
                    extra={"command": first_line, "exit_code": last.exit_code},
                )
                return last
        LOGGER.info("exec_pane_wait_canceled", extra={"command": first_line})
        return None

    def environment_note(self) -> str:
        if self.details.is_subshell:
            return ""
        return (
            f"Keep in mind, you are working within the shell: {self.details.shell or 'unknown'}"
            f" and OS: {self.details.os or 'unknown'}"
        )

    def _fill_environment(self, pane: PaneDetails) -> None:
        command = pane.current_command.strip().lstrip("-").lower()
        if command in SHELL_COMMANDS:
            pane.shell = command
        pane.os = f"{platform.system()} {platform.release()}".strip()


def panes_snapshot_xml(
    panes: PaneCollaborator,
    *,
    target: str,
    chat_pane_id: str,
    exec_pane_id: str,
    max_lines: int,
) -> str:
    """Render every pane of the window except the chat pane as XML."""
    parts = ["<current_tmux_window_state>"]
    for pane in panes.list_panes(target):
        if pane.id == chat_pane_id:
            continue
        content = panes.capture(pane.id, max_lines)
        pane_type = "exec" if pane.id == exec_pane_id else "read-only"
        parts.append(
            f'<TmuxPane id="{escape(pane.id)}" type="{pane_type}"'
            f' current_command="{escape(pane.current_command)}">'
        )
        parts.append(content)
        parts.append("</TmuxPane>")
    parts.append("</current_tmux_window_state>")
    return "\n".join(parts)
