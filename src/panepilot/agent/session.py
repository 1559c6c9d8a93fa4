"""Mutable state shared by one interactive session."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field

from panepilot.agent.models import (
    ChatMessage,
    CommandExecHistory,
    CommandReflection,
    ReflectionTask,
    SessionStatus,
)
from panepilot.config import ALLOWED_OVERRIDE_KEYS, AppConfig, infer_override_value


class CancelScope:
    """Cooperative cancellation token passed down one orchestration task."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return true if cancelled meanwhile."""
        return self._event.wait(timeout)


@dataclass
class Session:
    """Conversation state owned by the orchestration loop.

    ``status`` is the only field also written from the interrupt path, so it
    sits behind a lock.
    """

    config: AppConfig
    watch_mode: bool = False
    history: list[ChatMessage] = field(default_factory=list)
    exec_history: list[CommandExecHistory] = field(default_factory=list)
    pending_reflections: deque[ReflectionTask] = field(default_factory=deque)
    reflection_log: list[CommandReflection] = field(default_factory=list)
    overrides: dict[str, object] = field(default_factory=dict)
    _status: SessionStatus = ""
    _status_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def status(self) -> SessionStatus:
        with self._status_lock:
            return self._status

    def set_status(self, status: SessionStatus) -> None:
        with self._status_lock:
            self._status = status

    def clear_status(self) -> None:
        self.set_status("")

    def set_status_unless_cleared(self, status: SessionStatus) -> bool:
        """Move to ``status`` only while a task is still considered active."""
        with self._status_lock:
            if not self._status:
                return False
            self._status = status
            return True

    def append_exchange(self, *messages: ChatMessage) -> None:
        self.history.extend(messages)

    def reset(self) -> None:
        self.history.clear()
        self.watch_mode = False
        self.clear_status()

    def set_override(self, key: str, raw_value: str) -> object:
        if key not in ALLOWED_OVERRIDE_KEYS:
            allowed = ", ".join(ALLOWED_OVERRIDE_KEYS)
            msg = f"Cannot set '{key}'. Only these keys are allowed: {allowed}"
            raise KeyError(msg)
        value = infer_override_value(self.config, key, raw_value)
        self.overrides[key] = value
        return value

    def setting(self, key: str) -> object:
        if key in self.overrides:
            return self.overrides[key]
        return getattr(self.config, key)

    @property
    def max_capture_lines(self) -> int:
        return self._int_setting("max_capture_lines")

    @property
    def max_context_size(self) -> int:
        return self._int_setting("max_context_size")

    @property
    def wait_interval(self) -> int:
        return self._int_setting("wait_interval")

    @property
    def exec_confirm(self) -> bool:
        return bool(self.setting("exec_confirm"))

    @property
    def send_keys_confirm(self) -> bool:
        return bool(self.setting("send_keys_confirm"))

    @property
    def paste_multiline_confirm(self) -> bool:
        return bool(self.setting("paste_multiline_confirm"))

    @property
    def model(self) -> str:
        return str(self.setting("model"))

    @property
    def tools_manifest_path(self) -> str:
        return self.config.resolve_path(str(self.setting("tools_manifest_path") or ""))

    def _int_setting(self, key: str) -> int:
        value = self.setting(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return int(getattr(self.config, key))
