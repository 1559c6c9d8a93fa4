"""Human confirmation before risky pane actions."""

from __future__ import annotations

import abc
import logging
import os
import re
import shlex
import shutil
import subprocess
import tempfile
from collections.abc import Callable, Sequence
from pathlib import Path

from panepilot.terminal.raw_input import read_confirmation_input

LOGGER = logging.getLogger(__name__)

APPROVE_ANSWERS = frozenset({"y", "yes", "ok", "sure"})
REJECT_ANSWERS = frozenset({"n", "no", "cancel"})
EDIT_ANSWERS = frozenset({"e", "edit"})
FALLBACK_EDITORS = ("vim", "vi", "nano", "emacs")

ReadInput = Callable[[str], tuple[str, bool]]
Printer = Callable[[str], None]


class Confirmer(abc.ABC):
    """Decides whether a proposed pane action may run."""

    @abc.abstractmethod
    def confirm(self, command: str, prompt: str, *, allow_edit: bool) -> tuple[bool, str]:
        """Return ``(approved, command)``; the command may have been edited."""


def matches_any(patterns: Sequence[str], command: str) -> bool:
    """Return true when any non-empty pattern matches; raises ``re.error`` on a bad pattern."""
    return any(re.search(pattern, command) for pattern in patterns if pattern)


def is_whitelisted(command: str, whitelist: Sequence[str], blacklist: Sequence[str]) -> bool:
    """Return true when ``command`` may skip confirmation.

    Hitting an invalid pattern blocks auto-approval, so the user is asked.
    """
    try:
        return matches_any(whitelist, command) and not matches_any(blacklist, command)
    except re.error as exc:
        LOGGER.warning("confirm_pattern_invalid", extra={"command": command, "error": str(exc)})
        return False


def find_editor() -> list[str] | None:
    for variable in ("EDITOR", "VISUAL"):
        value = os.environ.get(variable, "").strip()
        if value:
            return shlex.split(value)
    for candidate in FALLBACK_EDITORS:
        if shutil.which(candidate):
            return [candidate]
    return None


class ConfirmationEditor(Confirmer):
    """Prompt on the terminal with an optional external-editor round trip."""

    def __init__(
        self,
        *,
        whitelist_patterns: Sequence[str] = (),
        blacklist_patterns: Sequence[str] = (),
        read_input: ReadInput | None = None,
        println: Printer | None = None,
        run_editor: Callable[[list[str]], None] | None = None,
    ) -> None:
        self.whitelist_patterns = list(whitelist_patterns)
        self.blacklist_patterns = list(blacklist_patterns)
        self.read_input = read_input or read_confirmation_input
        self.println = println or print
        self.run_editor = run_editor or _run_editor

    def confirm(self, command: str, prompt: str, *, allow_edit: bool) -> tuple[bool, str]:
        if is_whitelisted(command, self.whitelist_patterns, self.blacklist_patterns):
            LOGGER.info("confirm_whitelisted", extra={"command": command})
            return True, command

        suffix = "[Y]es/No/Edit: " if allow_edit else "[Y]es/No: "
        while True:
            answer, cancelled = self.read_input(f"{prompt} {suffix}")
            if cancelled:
                LOGGER.info("confirm_cancelled", extra={"command": command})
                return False, ""

            answer = answer.strip().lower() or "y"
            if answer in APPROVE_ANSWERS:
                return True, command
            if answer in REJECT_ANSWERS:
                return False, ""
            if answer in EDIT_ANSWERS and allow_edit:
                return self.edit(command)

    def edit(self, command: str) -> tuple[bool, str]:
        """Open the user's editor on ``command``; an empty result rejects."""
        editor = find_editor()
        if editor is None:
            self.println("Error: No editor found. Please set the EDITOR environment variable.")
            return False, ""

        fd, name = tempfile.mkstemp(prefix="panepilot-edit-", suffix=".sh")
        path = Path(name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(command)
            self.run_editor([*editor, str(path)])
            edited = path.read_text(encoding="utf-8").strip()
        except (OSError, subprocess.CalledProcessError) as exc:
            LOGGER.error("confirm_editor_failed", extra={"editor": editor[0], "error": str(exc)})
            self.println(f"Error running editor: {exc}")
            return False, ""
        finally:
            path.unlink(missing_ok=True)

        if not edited:
            return False, ""
        return True, edited


def _run_editor(argv: list[str]) -> None:
    subprocess.run(argv, check=True)
