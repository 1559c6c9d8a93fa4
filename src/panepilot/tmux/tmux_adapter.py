"""tmux implementation of the pane collaborator."""

from __future__ import annotations

import logging
import os
import subprocess

from .base import PaneCollaborator, PaneDetails, PaneError, is_subshell
from .keys import send_keys_arguments

LOGGER = logging.getLogger(__name__)

_PANE_FORMAT = (
    "#{pane_id},#{pane_active},#{pane_pid},#{pane_current_command},"
    "#{history_size},#{history_limit}"
)


class TmuxAdapter(PaneCollaborator):
    """Adapter that drives panes through the ``tmux`` command line."""

    def __init__(self, executable: str = "tmux", *, timeout: float = 5.0) -> None:
        self.executable = executable
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "tmux"

    def list_panes(self, target: str) -> list[PaneDetails]:
        output = self._run(["list-panes", "-t", target, "-F", _PANE_FORMAT]).strip()
        if not output:
            raise PaneError(f"no pane details found for target {target}")

        panes: list[PaneDetails] = []
        for line in output.splitlines():
            parts = line.strip().split(",", 5)
            if len(parts) < 6:
                LOGGER.warning("tmux_pane_line_invalid", extra={"line": line})
                continue
            pane_id = parts[0]
            if target.startswith("%") and pane_id != target:
                continue
            panes.append(
                PaneDetails(
                    id=pane_id,
                    is_active=parts[1] == "1",
                    pid=_to_int(parts[2]),
                    current_command=parts[3],
                    history_size=_to_int(parts[4]),
                    history_limit=_to_int(parts[5]),
                    is_subshell=is_subshell(parts[3]),
                )
            )
        return panes

    def capture(self, pane_id: str, max_lines: int) -> str:
        return self._run(["capture-pane", "-p", "-J", "-t", pane_id, "-S", f"-{max_lines}"]).strip()

    def send_text(self, pane_id: str, text: str, *, auto_enter: bool) -> None:
        lines = text.split("\n")
        for index, line in enumerate(lines):
            if line:
                self._run(send_keys_arguments(pane_id, line))
            is_last = index == len(lines) - 1
            if auto_enter and (not is_last or line):
                self._run(["send-keys", "-t", pane_id, "Enter"])

    def create_pane(self, target: str) -> str:
        return self._run(
            ["split-window", "-d", "-h", "-t", target, "-P", "-F", "#{pane_id}"]
        ).strip()

    def create_session(self) -> str:
        return self._run(["new-session", "-d", "-P", "-F", "#{pane_id}"]).strip()

    def attach_session(self, target: str) -> None:
        try:
            subprocess.run([self.executable, "attach-session", "-t", target], check=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            LOGGER.error("tmux_attach_failed", extra={"target": target, "error": str(exc)})
            raise PaneError(f"tmux attach-session failed: {exc}") from exc

    def clear_pane(self, pane_id: str) -> None:
        self._run(["send-keys", "-t", pane_id, "-R"])
        self._run(["clear-history", "-t", pane_id])

    def current_pane_id(self) -> str:
        pane_id = os.environ.get("TMUX_PANE", "").strip()
        if not pane_id:
            raise PaneError("TMUX_PANE environment variable not set")
        return pane_id

    def current_window_target(self) -> str:
        output = self._run(
            ["list-panes", "-t", self.current_pane_id(), "-F", "#{session_id}:#{window_index}"]
        ).strip()
        if not output:
            raise PaneError("empty window target returned")
        return output.splitlines()[0]

    def window_name(self) -> str:
        return self._run(["display-message", "-p", "#W"]).strip()

    def _run(self, args: list[str]) -> str:
        try:
            process = subprocess.run(
                [self.executable, *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            LOGGER.error("tmux_timeout", extra={"tmux_args": args, "timeout": self.timeout})
            raise PaneError(f"tmux {args[0]} timed out") from exc
        except OSError as exc:
            LOGGER.error("tmux_unavailable", extra={"error": str(exc)})
            raise PaneError(f"tmux could not be started: {exc}") from exc

        if process.returncode != 0:
            stderr = (process.stderr or "").strip()
            LOGGER.error(
                "tmux_command_failed",
                extra={"tmux_args": args, "returncode": process.returncode, "stderr": stderr},
            )
            raise PaneError(f"tmux {args[0]} failed: {stderr or process.returncode}")
        return process.stdout or ""


def _to_int(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return 0
