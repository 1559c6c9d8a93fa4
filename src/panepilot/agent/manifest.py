"""Editing helpers for the markdown tools manifest."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

LOGGER = logging.getLogger(__name__)

TOOL_BULLET_PREFIX = "- `"
SECTION_HEADER_PREFIX = "## "


class ManifestError(RuntimeError):
    """Raised when the manifest cannot be read or the arguments are invalid."""


@dataclass(slots=True)
class ToolChange:
    section: str
    name: str
    description: str = ""
    action: str = ""


def add_tool(path: str | Path, section: str, name: str, description: str = "") -> tuple[ToolChange, bool]:
    """Add or update ``name`` under ``section``; return the change and whether the file changed."""
    section, name, description = section.strip(), name.strip(), description.strip()
    if not section or not name:
        raise ManifestError("section and name are required")

    manifest = Path(path)
    lines = _split_lines(_read_manifest(manifest))
    header = SECTION_HEADER_PREFIX + section
    tool_line = format_tool_line(name, description)

    start, end = _find_section(lines, header)
    if start == -1:
        lines = _append_section(lines, header)
        start, end = _find_section(lines, header)

    for index in range(start + 1, end):
        line = lines[index].strip()
        if not line.startswith(TOOL_BULLET_PREFIX):
            continue
        if extract_tool_name(line).lower() != name.lower():
            continue
        if line == tool_line:
            return ToolChange(section, name, description, "unchanged"), False
        indent = lines[index][: len(lines[index]) - len(lines[index].lstrip(" \t"))]
        lines[index] = indent.replace("\t", " ") + tool_line
        _write_manifest(manifest, lines)
        return ToolChange(section, name, description, "updated"), True

    # New entries go right after the last non-blank line of the section.
    insert_at = end
    while insert_at > start + 1 and not lines[insert_at - 1].strip():
        insert_at -= 1
    if insert_at == start + 1:
        lines.insert(insert_at, "")
        insert_at += 1
    lines.insert(insert_at, tool_line)
    _write_manifest(manifest, lines)
    return ToolChange(section, name, description, "added"), True


def remove_tool(path: str | Path, section: str, name: str) -> tuple[ToolChange, bool]:
    section, name = section.strip(), name.strip()
    if not section or not name:
        raise ManifestError("section and name are required")

    manifest = Path(path)
    lines = _split_lines(_read_manifest(manifest))
    start, end = _find_section(lines, SECTION_HEADER_PREFIX + section)
    if start == -1:
        return ToolChange(section, name), False

    for index in range(start + 1, end):
        line = lines[index].strip()
        if line.startswith(TOOL_BULLET_PREFIX) and extract_tool_name(line).lower() == name.lower():
            del lines[index]
            lines = _collapse_blank_lines(lines, start)
            _write_manifest(manifest, lines)
            return ToolChange(section, name, action="removed"), True
    return ToolChange(section, name), False


def list_tools(path: str | Path) -> str:
    return _read_manifest(Path(path)).rstrip("\n") + "\n"


def format_tool_line(name: str, description: str) -> str:
    return f"- `{name}` – {description or '(no description)'}"


def extract_tool_name(line: str) -> str:
    text = line.strip()
    if not text.startswith(TOOL_BULLET_PREFIX):
        return ""
    text = text[len(TOOL_BULLET_PREFIX) :]
    name, _, _ = text.partition("`")
    return name.strip()


def _read_manifest(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ManifestError(f"tools manifest not found at {path}") from exc
    except OSError as exc:
        LOGGER.error("manifest_read_failed", extra={"path": str(path), "error": str(exc)})
        raise ManifestError(f"tools manifest could not be read: {exc}") from exc


def _write_manifest(path: Path, lines: list[str]) -> None:
    content = "\n".join(lines)
    if not content.endswith("\n"):
        content += "\n"
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        LOGGER.error("manifest_write_failed", extra={"path": str(path), "error": str(exc)})
        raise ManifestError(f"tools manifest could not be written: {exc}") from exc


def _split_lines(content: str) -> list[str]:
    return content.split("\n") if content else [""]


def _find_section(lines: list[str], header: str) -> tuple[int, int]:
    for start, line in enumerate(lines):
        if line.strip() != header:
            continue
        for end in range(start + 1, len(lines)):
            if lines[end].strip().startswith(SECTION_HEADER_PREFIX):
                return start, end
        return start, len(lines)
    return -1, len(lines)


def _append_section(lines: list[str], header: str) -> list[str]:
    lines = list(lines)
    while lines and not lines[-1].strip():
        lines.pop()
    if lines:
        lines.append("")
    return [*lines, header, ""]


def _collapse_blank_lines(lines: list[str], section_start: int) -> list[str]:
    """Drop repeated blank lines from ``section_start`` up to the next header."""
    result = lines[: section_start + 1]
    previous_blank = False
    for index in range(section_start + 1, len(lines)):
        line = lines[index]
        if line.strip().startswith(SECTION_HEADER_PREFIX):
            result.extend(lines[index:])
            return result
        blank = not line.strip()
        if blank and previous_blank:
            continue
        previous_blank = blank
        result.append(line)
    return result
