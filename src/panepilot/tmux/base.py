"""Pane collaborator primitives."""

from __future__ import annotations

import abc
from dataclasses import dataclass

# Foreground commands that mean the pane is talking to another shell or host.
SUBSHELL_COMMANDS = frozenset(
    {
        "ssh",
        "mosh",
        "mosh-client",
        "telnet",
        "docker",
        "podman",
        "kubectl",
        "su",
        "sudo",
        "doas",
        "tmux",
        "screen",
        "vagrant",
        "nsenter",
    }
)
SHELL_COMMANDS = frozenset({"bash", "zsh", "fish", "sh", "dash", "ksh"})


class PaneError(RuntimeError):
    """Raised when a multiplexer invocation fails."""


def is_subshell(current_command: str) -> bool:
    name = current_command.strip().lstrip("-").lower()
    return name in SUBSHELL_COMMANDS


@dataclass(slots=True)
class PaneDetails:
    """Metadata and latest captured content of one pane."""

    id: str
    is_active: bool = False
    pid: int = 0
    current_command: str = ""
    history_size: int = 0
    history_limit: int = 0
    is_subshell: bool = False
    is_prepared: bool = False
    shell: str = ""
    os: str = ""
    content: str = ""

    def describe(self) -> str:
        return (
            f"Id: {self.id}\n"
            f"Command: {self.current_command}\n"
            f"Shell: {self.shell or 'unknown'}\n"
            f"OS: {self.os or 'unknown'}\n"
            f"Prepared: {self.is_prepared}\n"
            f"Subshell: {self.is_subshell}\n"
            f"History: {self.history_size}/{self.history_limit}"
        )


class PaneCollaborator(abc.ABC):
    """Narrow capability set the agent needs from the terminal multiplexer."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Friendly multiplexer name."""

    @abc.abstractmethod
    def list_panes(self, target: str) -> list[PaneDetails]:
        """Return pane metadata for a window or a single pane target."""

    @abc.abstractmethod
    def capture(self, pane_id: str, max_lines: int) -> str:
        """Return the visible content plus up to ``max_lines`` of scrollback."""

    @abc.abstractmethod
    def send_text(self, pane_id: str, text: str, *, auto_enter: bool) -> None:
        """Type ``text`` into a pane, optionally pressing Enter after each line."""

    @abc.abstractmethod
    def create_pane(self, target: str) -> str:
        """Split ``target`` and return the new pane id."""

    @abc.abstractmethod
    def create_session(self) -> str:
        """Start a detached session and return its first pane id."""

    @abc.abstractmethod
    def attach_session(self, target: str) -> None:
        """Attach the current terminal to ``target``."""

    @abc.abstractmethod
    def clear_pane(self, pane_id: str) -> None:
        """Clear the scrollback of a pane."""

    @abc.abstractmethod
    def current_pane_id(self) -> str:
        """Return the pane the agent itself runs in."""

    @abc.abstractmethod
    def current_window_target(self) -> str:
        """Return the ``session:window`` target of the agent's pane."""

    @abc.abstractmethod
    def window_name(self) -> str:
        """Return the name of the agent's window."""
