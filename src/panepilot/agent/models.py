"""Data models shared by the orchestration loop and its collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

SessionStatus = Literal["", "running", "waiting"]
ToolActionKind = Literal["add", "update", "remove", "skip"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class ChatMessage:
    """One entry of the conversation history."""

    content: str
    from_user: bool
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class AIResponse:
    """Structured view of a model answer.

    Only the raw text is kept in history; this object lives for one turn.
    """

    message: str = ""
    exec_command: list[str] = field(default_factory=list)
    send_keys: list[str] = field(default_factory=list)
    paste_multiline_content: str = ""
    request_accomplished: bool = False
    exec_pane_seems_busy: bool = False
    waiting_for_user_response: bool = False
    no_comment: bool = False

    def flag_count(self) -> int:
        return sum(
            (
                self.request_accomplished,
                self.exec_pane_seems_busy,
                self.waiting_for_user_response,
                self.no_comment,
            )
        )

    def category_count(self) -> int:
        return sum(
            (
                bool(self.exec_command),
                bool(self.send_keys),
                bool(self.paste_multiline_content),
            )
        )


@dataclass(slots=True)
class CommandExecHistory:
    """A command observed to finish in a prepared exec pane."""

    command: str
    output: str
    exit_code: int


@dataclass(slots=True)
class ReflectionTask:
    history: CommandExecHistory


@dataclass(slots=True)
class ToolAction:
    """A manifest edit suggested by a reflection."""

    action: str
    name: str
    section: str = ""
    description: str = ""
    reason: str = ""
    outcome: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "action": self.action,
            "name": self.name,
            "section": self.section,
            "description": self.description,
            "reason": self.reason,
            "outcome": self.outcome,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> ToolAction:
        return cls(
            action=_to_text(raw.get("action")).lower(),
            name=_to_text(raw.get("name")),
            section=_to_text(raw.get("section")),
            description=_to_text(raw.get("description")),
            reason=_to_text(raw.get("reason")),
            outcome=_to_text(raw.get("outcome")),
        )


@dataclass(slots=True)
class CommandReflection:
    """Post-hoc critique of one executed command."""

    command: str
    output: str
    exit_code: int
    lessons_learned: str = ""
    alternative: str = ""
    alternative_rationale: str = ""
    suggested_actions: list[ToolAction] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "command": self.command,
            "output": self.output,
            "exit_code": self.exit_code,
            "lessons_learned": self.lessons_learned,
            "alternative": self.alternative,
            "alternative_rationale": self.alternative_rationale,
            "suggested_actions": [action.to_dict() for action in self.suggested_actions],
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> CommandReflection:
        actions = raw.get("suggested_actions")
        exit_code = raw.get("exit_code", 0)
        return cls(
            command=_to_text(raw.get("command")),
            output=_to_text(raw.get("output")),
            exit_code=exit_code if isinstance(exit_code, int) and not isinstance(exit_code, bool) else 0,
            lessons_learned=_to_text(raw.get("lessons_learned")),
            alternative=_to_text(raw.get("alternative")),
            alternative_rationale=_to_text(raw.get("alternative_rationale")),
            suggested_actions=[
                ToolAction.from_dict(item) for item in actions if isinstance(item, dict)
            ]
            if isinstance(actions, list)
            else [],
            timestamp=_to_timestamp(raw.get("timestamp")),
        )


def _to_text(value: object) -> str:
    if isinstance(value, str):
        return value.strip()
    return ""


def _to_timestamp(value: object) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return utc_now()
