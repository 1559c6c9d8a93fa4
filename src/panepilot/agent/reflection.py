"""Post-execution reflection on finished commands and its durable log."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable
from pathlib import Path

from panepilot.agent.manifest import ManifestError, add_tool, remove_tool
from panepilot.agent.models import (
    ChatMessage,
    CommandExecHistory,
    CommandReflection,
    ReflectionTask,
    ToolAction,
)
from panepilot.agent.session import CancelScope, Session
from panepilot.llm.client import LLMClient, ModelRequestError, RequestCanceled

LOGGER = logging.getLogger(__name__)

REFLECTION_LOG_LIMIT = 500
REFLECTION_OUTPUT_LIMIT = 4000
TRUNCATION_MARKER = "\n[truncated]"

REFLECTION_SYSTEM_PROMPT = """You are an autonomous CLI specialist. Analyze the provided command execution, derive improvements, and respond with strict JSON matching this schema:
{
  "lessons": "string",
  "alternative": {
    "command": "string",
    "reason": "string"
  },
  "tools": [
    {
      "action": "add" | "remove" | "update" | "skip",
      "name": "string",
      "section": "string",
      "description": "string",
      "reason": "string"
    }
  ]
}
Return only JSON with no code fences."""

Printer = Callable[[str], None]


class ReflectionError(RuntimeError):
    """Raised when a reflection answer cannot be used."""


def truncate_for_reflection(content: str, limit: int = REFLECTION_OUTPUT_LIMIT) -> str:
    if len(content) <= limit:
        return content
    return content[:limit] + TRUNCATION_MARKER


def sanitize_json_response(text: str) -> str:
    """Strip a Markdown code fence the model may wrap around its JSON."""
    text = text.strip()
    if text.startswith("```"):
        text = text.removeprefix("```json").removeprefix("```")
        text = text.removesuffix("```")
    return text.strip()


def format_reflection_summary(reflection: CommandReflection) -> str:
    lines = [
        "Reflection Summary",
        f"Command: {reflection.command}",
        f"Exit Code: {reflection.exit_code}",
    ]
    if reflection.lessons_learned:
        lines.append(f"Lessons Learned: {reflection.lessons_learned}")
    if reflection.alternative:
        lines.append(f"Proposed Alternative: {reflection.alternative}")
        if reflection.alternative_rationale:
            lines.append(f"Rationale: {reflection.alternative_rationale}")
    if reflection.suggested_actions:
        lines.append("Tool Actions:")
        lines.extend(
            f"- {action.action.title()} {action.name} in section {action.section}"
            f" ({action.outcome}): {action.reason}"
            for action in reflection.suggested_actions
        )
    return "\n".join(lines)


class ReflectionPipeline:
    """Drains queued command executions through the model and applies manifest edits."""

    def __init__(
        self,
        session: Session,
        client: LLMClient,
        *,
        println: Printer | None = None,
        limit: int = REFLECTION_LOG_LIMIT,
    ) -> None:
        self.session = session
        self.client = client
        self.println = println or print
        self.limit = limit

    @property
    def log_path(self) -> Path:
        return Path(self.session.config.resolve_path(self.session.config.reflection_log_path))

    def enqueue(self, history: CommandExecHistory) -> bool:
        if not history.command.strip():
            return False
        self.session.pending_reflections.append(ReflectionTask(history=history))
        return True

    def drain(self, cancel: CancelScope | None = None) -> int:
        """Process queued tasks FIFO; return how many reflections were recorded."""
        recorded = 0
        pending = self.session.pending_reflections
        while pending:
            if cancel is not None and cancel.cancelled:
                LOGGER.info("reflection_drain_canceled", extra={"pending": len(pending)})
                return recorded
            task = pending.popleft()
            try:
                reflection = self.run_reflection(task, cancel=cancel)
            except RequestCanceled:
                LOGGER.info("reflection_canceled", extra={"command": task.history.command})
                return recorded
            except (ModelRequestError, ReflectionError) as exc:
                LOGGER.warning(
                    "reflection_failed",
                    extra={"command": task.history.command, "error": str(exc)},
                )
                continue

            reflection.suggested_actions = self.apply_tool_actions(reflection.suggested_actions)
            self.record(reflection)
            summary = format_reflection_summary(reflection)
            self.session.append_exchange(ChatMessage(content=summary, from_user=False))
            self.println(summary)
            recorded += 1
        return recorded

    def run_reflection(self, task: ReflectionTask, *, cancel: CancelScope | None = None) -> CommandReflection:
        history = task.history
        payload = {
            "command": history.command,
            "exit_code": history.exit_code,
            "output": truncate_for_reflection(history.output),
            "tools_manifest_path": self.session.tools_manifest_path,
        }
        messages = [
            {"role": "system", "content": REFLECTION_SYSTEM_PROMPT},
            {"role": "user", "content": json.dumps(payload)},
        ]
        raw = self.client.chat_completion(messages, cancel=cancel, model=self.session.model)

        try:
            parsed = json.loads(sanitize_json_response(raw))
        except json.JSONDecodeError as exc:
            raise ReflectionError(f"failed to parse reflection JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ReflectionError("failed to parse reflection JSON: expected an object")

        alternative = parsed.get("alternative")
        if not isinstance(alternative, dict):
            alternative = {}
        tools = parsed.get("tools")
        return CommandReflection(
            command=history.command,
            output=history.output,
            exit_code=history.exit_code,
            lessons_learned=_text(parsed.get("lessons")),
            alternative=_text(alternative.get("command")),
            alternative_rationale=_text(alternative.get("reason")),
            suggested_actions=[
                ToolAction.from_dict(item) for item in tools if isinstance(item, dict)
            ]
            if isinstance(tools, list)
            else [],
        )

    def apply_tool_actions(self, actions: list[ToolAction]) -> list[ToolAction]:
        """Apply actions in the order given and fill in each ``outcome``."""
        path = self.session.tools_manifest_path
        if not path:
            for action in actions:
                action.outcome = "skipped: manifest path not configured"
            return actions

        for action in actions:
            kind = action.action.lower()
            if kind not in {"add", "update", "remove"}:
                action.outcome = "skipped: no-op"
                continue
            if not action.section:
                action.outcome = "skipped: section required"
                continue
            try:
                if kind == "remove":
                    _, modified = remove_tool(path, action.section, action.name)
                    action.outcome = "removed" if modified else "not-found"
                else:
                    change, modified = add_tool(path, action.section, action.name, action.description)
                    action.outcome = change.action if modified else "unchanged"
            except ManifestError as exc:
                LOGGER.warning(
                    "reflection_tool_action_failed",
                    extra={"action": kind, "tool": action.name, "error": str(exc)},
                )
                action.outcome = f"error: {exc}"
        return actions

    def record(self, reflection: CommandReflection) -> int:
        """Append to the log, prune and persist; return how many entries were dropped."""
        self.session.reflection_log.append(reflection)
        dropped = self.prune()
        self.persist()
        return dropped

    def prune(self) -> int:
        log = self.session.reflection_log
        if self.limit <= 0 or len(log) <= self.limit:
            return 0
        dropped = len(log) - self.limit
        del log[:dropped]
        LOGGER.info("reflection_log_trimmed", extra={"dropped": dropped})
        return dropped

    def load(self) -> int:
        path = self.log_path
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return 0
        except OSError as exc:
            LOGGER.warning("reflection_log_read_failed", extra={"path": str(path), "error": str(exc)})
            return 0
        if not raw.strip():
            return 0
        try:
            entries = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.warning("reflection_log_parse_failed", extra={"path": str(path), "error": str(exc)})
            return 0
        if not isinstance(entries, list):
            LOGGER.warning("reflection_log_parse_failed", extra={"path": str(path), "error": "not a list"})
            return 0

        loaded = [CommandReflection.from_dict(item) for item in entries if isinstance(item, dict)]
        self.session.reflection_log.extend(loaded)
        self.prune()
        return len(loaded)

    def persist(self) -> None:
        """Rewrite the whole log through a temporary file and an atomic rename."""
        path = self.log_path
        data = json.dumps([item.to_dict() for item in self.session.reflection_log], indent=2)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".reflections-", suffix=".json", dir=path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(data)
                os.replace(tmp_name, path)
            except OSError:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            LOGGER.warning("reflection_log_write_failed", extra={"path": str(path), "error": str(exc)})


def _text(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""
