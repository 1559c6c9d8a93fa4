"""One-line countdown used while the exec pane is busy or in watch mode."""

from __future__ import annotations

import os
import sys
import termios
import time
import tty
from typing import TextIO

from panepilot.agent.session import CancelScope
from panepilot.terminal.raw_input import wait_for_input

TICK_SECONDS = 1.0


def countdown(
    seconds: int,
    *,
    cancel: CancelScope | None = None,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
) -> bool:
    """Count down ``seconds``; a keypress pauses or resumes on a terminal.

    Returns false when ``cancel`` fired before the countdown finished.
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    scope = cancel or CancelScope()
    if seconds <= 0:
        return not scope.cancelled

    if not stdin.isatty():
        deadline = time.monotonic() + seconds
        while (left := deadline - time.monotonic()) > 0:
            _render(stdout, int(left + 0.999), paused=False)
            if scope.wait(min(TICK_SECONDS, left)):
                _clear(stdout)
                return False
        _clear(stdout)
        return True

    fd = stdin.fileno()
    saved = termios.tcgetattr(fd)
    remaining = seconds
    paused = False
    try:
        tty.setcbreak(fd)
        while remaining > 0:
            if scope.cancelled:
                return False
            _render(stdout, remaining, paused=paused)
            if wait_for_input(fd, TICK_SECONDS):
                os.read(fd, 1)
                paused = not paused
                continue
            if not paused:
                remaining -= 1
        return not scope.cancelled
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)
        _clear(stdout)


def _render(stdout: TextIO, remaining: int, *, paused: bool) -> None:
    if paused:
        text = f"Paused at {remaining}s (press any key to resume)"
    else:
        text = f"Waiting {remaining}s (press any key to pause)"
    stdout.write(f"\r\x1b[K{text}")
    stdout.flush()


def _clear(stdout: TextIO) -> None:
    stdout.write("\r\x1b[K")
    stdout.flush()
