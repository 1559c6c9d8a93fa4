"""Translation of model-provided key text into ``tmux send-keys`` arguments."""

from __future__ import annotations

NAMED_KEYS = frozenset(
    {
        "Up",
        "Down",
        "Left",
        "Right",
        "BSpace",
        "BTab",
        "DC",
        "End",
        "Enter",
        "Escape",
        "Home",
        "IC",
        "NPage",
        "PageDown",
        "PgDn",
        "PPage",
        "PageUp",
        "PgUp",
        "Space",
        "Tab",
        *(f"F{number}" for number in range(1, 13)),
    }
)
MODIFIER_PREFIXES = ("C-", "M-")


def is_key_token(part: str) -> bool:
    return part.startswith(MODIFIER_PREFIXES) or part in NAMED_KEYS


def contains_special_key(line: str) -> bool:
    if any(prefix in line for prefix in MODIFIER_PREFIXES):
        return True
    return any(key in line for key in NAMED_KEYS)


def escape_literal(line: str) -> str:
    """Keep a trailing semicolon from being read as a tmux command separator."""
    if line.endswith(";"):
        return line[:-1] + "\\;"
    return line


def split_key_tokens(line: str) -> list[str]:
    """Split a line into literal text chunks and discrete key tokens.

    ``"vim C-c :q Enter"`` becomes ``["vim", "C-c", ":q", "Enter"]``; runs of
    plain words stay together.
    """
    result: list[str] = []
    current = ""
    for part in line.split(" "):
        if not part:
            if current:
                current += " "
            continue
        if is_key_token(part):
            if current:
                result.append(current)
                current = ""
            result.append(part)
            continue
        current = f"{current} {part}" if current else part
    if current:
        result.append(current)
    return result


def send_keys_arguments(pane_id: str, line: str) -> list[str]:
    """Build the ``tmux`` argv for one non-empty line of input."""
    if contains_special_key(line):
        return ["send-keys", "-t", pane_id, *split_key_tokens(line)]
    return ["send-keys", "-t", pane_id, "-l", escape_literal(line)]
