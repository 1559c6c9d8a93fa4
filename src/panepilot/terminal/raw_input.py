"""Raw-mode single line reader for confirmation prompts.

Only the editing keys a yes/no/edit answer needs are supported: cursor
movement, Home/End, Backspace and forward Delete. A lone ESC is told apart
from the start of an escape sequence by waiting briefly for a follow-up byte.
"""

from __future__ import annotations

import codecs
import os
import select
import sys
import termios
import tty
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TextIO

ESCAPE_TIMEOUT_SECONDS = 0.025
MAX_BUFFER_SIZE = 4096

ESC = 27
CTRL_C = 3
CTRL_D = 4
BACKSPACE_CODES = (8, 127)
CSI_FINAL_RANGE = range(0x40, 0x7F)

Callback = Callable[[], None]


@dataclass(slots=True)
class LineBuffer:
    """Editable text plus the cursor position inside it."""

    chars: list[str] = field(default_factory=list)
    cursor: int = 0

    @property
    def text(self) -> str:
        return "".join(self.chars)

    def insert(self, char: str) -> bool:
        if len(self.chars) >= MAX_BUFFER_SIZE:
            return False
        self.chars.insert(self.cursor, char)
        self.cursor += 1
        return True

    def backspace(self) -> bool:
        if self.cursor == 0:
            return False
        del self.chars[self.cursor - 1]
        self.cursor -= 1
        return True

    def delete_forward(self) -> bool:
        if self.cursor >= len(self.chars):
            return False
        del self.chars[self.cursor]
        return True


def wait_for_input(fd: int, timeout: float) -> bool:
    """Return true when ``fd`` has a byte ready within ``timeout`` seconds."""
    if timeout <= 0:
        timeout = 0.01
    try:
        ready, _, _ = select.select([fd], [], [], timeout)
    except InterruptedError:
        return False
    return bool(ready)


def read_escape_sequence(fd: int, timeout: float = ESCAPE_TIMEOUT_SECONDS) -> bytes:
    """Read the rest of an escape sequence whose ESC byte was already consumed.

    A result of length one means a standalone ESC keypress.
    """
    seq = bytearray([ESC])

    def read_next() -> bool:
        if not wait_for_input(fd, timeout):
            return False
        byte = os.read(fd, 1)
        if not byte:
            return False
        seq.extend(byte)
        return True

    if not read_next():
        return bytes(seq)

    introducer = seq[1]
    if introducer == ord("["):
        while len(seq) < 3 or seq[-1] not in CSI_FINAL_RANGE:
            if not read_next():
                break
    elif introducer == ord("O"):
        while len(seq) < 3:
            if not read_next():
                break
    return bytes(seq)


def handle_escape_sequence(seq: bytes, line: LineBuffer, redraw: Callback, beep: Callback) -> None:
    """Apply one complete escape sequence to ``line``."""
    if len(seq) < 3:
        if len(seq) == 2:
            beep()
        return

    kind, final = seq[1:2], seq[2:3]
    if kind == b"[":
        if final == b"D":
            _move(line, line.cursor - 1, redraw, beep)
        elif final == b"C":
            _move(line, line.cursor + 1, redraw, beep)
        elif final in (b"A", b"B"):
            beep()
        elif final == b"H":
            _jump(line, 0, redraw, beep)
        elif final == b"F":
            _jump(line, len(line.chars), redraw, beep)
        elif seq[2:] == b"3~":
            if line.delete_forward():
                redraw()
            else:
                beep()
        else:
            beep()
    elif kind == b"O":
        if final == b"H":
            _jump(line, 0, redraw, beep)
        elif final == b"F":
            _jump(line, len(line.chars), redraw, beep)
        else:
            beep()
    else:
        beep()


def _move(line: LineBuffer, target: int, redraw: Callback, beep: Callback) -> None:
    if 0 <= target <= len(line.chars):
        line.cursor = target
        redraw()
    else:
        beep()


def _jump(line: LineBuffer, target: int, redraw: Callback, beep: Callback) -> None:
    if line.cursor == target:
        beep()
        return
    line.cursor = target
    redraw()


def read_confirmation_input(
    prompt: str,
    *,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
) -> tuple[str, bool]:
    """Show ``prompt`` and read one answer line.

    Returns ``(text, cancelled)``. Ctrl+C, Ctrl+D on an empty line, or a
    lone ESC cancel.
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    if not stdin.isatty():
        stdout.write(prompt)
        stdout.flush()
        raw = stdin.readline()
        if not raw:
            return "", True
        return raw.rstrip("\r\n"), False

    fd = stdin.fileno()
    saved = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        return _read_raw_line(fd, prompt, stdout)
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


def _read_raw_line(fd: int, prompt: str, stdout: TextIO) -> tuple[str, bool]:
    line = LineBuffer()
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def write(text: str) -> None:
        stdout.write(text)
        stdout.flush()

    def redraw() -> None:
        write(f"\r{prompt}{line.text}\x1b[K\r{prompt}{''.join(line.chars[: line.cursor])}")

    def beep() -> None:
        write("\a")

    write(prompt)
    while True:
        byte = os.read(fd, 1)
        if not byte:
            write("\r\n")
            return line.text, False

        code = byte[0]
        if code in (10, 13):
            write("\r\n")
            return line.text, False
        if code == CTRL_C:
            write("\r\n")
            return "", True
        if code == CTRL_D:
            if not line.chars:
                write("\r\n")
                return "", True
            beep()
            continue
        if code in BACKSPACE_CODES:
            if line.backspace():
                redraw()
            else:
                beep()
            continue
        if code == ESC:
            seq = read_escape_sequence(fd)
            if len(seq) == 1:
                write("\r\n")
                return "", True
            handle_escape_sequence(seq, line, redraw, beep)
            continue

        char = decoder.decode(byte)
        if not char:
            continue
        if char.isprintable():
            if line.insert(char):
                redraw()
            else:
                beep()
        else:
            beep()
