"""Orchestration loop that turns model responses into pane actions."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from panepilot.agent.context import ContextWindowManager
from panepilot.agent.exec_pane import ExecPane, panes_snapshot_xml
from panepilot.agent.models import ChatMessage
from panepilot.agent.prompts import chat_assistant_prompt, watch_goal_message, watch_prompt
from panepilot.agent.reflection import ReflectionPipeline
from panepilot.agent.response import (
    ResponseParseError,
    ai_followed_guidelines,
    describe_response,
    parse_ai_response,
)
from panepilot.agent.session import CancelScope, Session
from panepilot.llm.client import LLMClient, ModelRequestError, RequestCanceled, chat_messages_to_roles
from panepilot.terminal.confirm import Confirmer
from panepilot.terminal.countdown import countdown as terminal_countdown
from panepilot.tmux import PaneCollaborator, PaneError

LOGGER = logging.getLogger(__name__)

BUSY_CONTINUATION_TEMPLATE = "waited for {seconds} more seconds, here is the current pane(s) content"
UPDATED_PANE_CONTINUATION = "sending updated pane(s) content"
SETTLE_DELAY_SECONDS = 1.0
KEYS_CONFIRM_SUBJECT = "keys shown above"

TurnKind = Literal["continue", "done", "stop"]
Printer = Callable[[str], None]
Countdown = Callable[..., bool]
Sleep = Callable[[float], None]


@dataclass(slots=True, frozen=True)
class TurnOutcome:
    """What the driver should do after one model round trip."""

    kind: TurnKind
    prompt: str = ""
    fresh_scope: bool = False
    guideline_violation: bool = False

    @classmethod
    def done(cls) -> TurnOutcome:
        return cls("done")

    @classmethod
    def stop(cls) -> TurnOutcome:
        return cls("stop")

    @classmethod
    def proceed(
        cls,
        prompt: str,
        *,
        fresh_scope: bool = False,
        guideline_violation: bool = False,
    ) -> TurnOutcome:
        return cls("continue", prompt, fresh_scope, guideline_violation)


class AgentLoop:
    """Drives model turns against the exec pane until a terminal state."""

    def __init__(
        self,
        *,
        session: Session,
        client: LLMClient,
        panes: PaneCollaborator,
        exec_pane: ExecPane,
        confirmer: Confirmer,
        context: ContextWindowManager | None = None,
        reflections: ReflectionPipeline | None = None,
        println: Printer | None = None,
        countdown: Countdown | None = None,
        sleep: Sleep | None = None,
        settle_delay: float = SETTLE_DELAY_SECONDS,
    ) -> None:
        self.session = session
        self.client = client
        self.panes = panes
        self.exec_pane = exec_pane
        self.confirmer = confirmer
        self.println = println or print
        self.context = context or ContextWindowManager(session, client)
        self.reflections = reflections or ReflectionPipeline(session, client, println=self.println)
        self.countdown = countdown or terminal_countdown
        self.sleep = sleep or time.sleep
        self.settle_delay = settle_delay
        self.active_scope: CancelScope | None = None

    def run_message(self, cancel: CancelScope, message: str) -> bool:
        """Handle one top-level user message, then drain queued reflections."""
        self.session.set_status("running")
        accomplished = self.process_user_message(cancel, message)
        if self.session.pending_reflections and not cancel.cancelled:
            self.reflections.drain(cancel)
        return accomplished

    def process_user_message(self, cancel: CancelScope, message: str) -> bool:
        """Run turns until the model finishes, yields to the user or an effect stops.

        Returns true only when the model reported the request accomplished.
        """
        config = self.session.config
        scope = cancel
        prompt = message
        retries = 0
        continuations = 0
        while True:
            self.active_scope = scope
            outcome = self._run_turn(scope, prompt)
            if outcome.kind == "done":
                return True
            if outcome.kind == "stop":
                return False

            if outcome.guideline_violation:
                if retries >= config.max_guardrail_retries:
                    self.session.clear_status()
                    LOGGER.warning("guideline_retries_exhausted", extra={"attempts": retries + 1})
                    self.println(f"AI didn't follow guidelines after {retries + 1} attempts.")
                    return False
                retries += 1
                self.println("AI didn't follow guidelines, trying again...")
            else:
                if continuations >= config.max_continuations:
                    self.session.clear_status()
                    LOGGER.warning("continuation_limit_reached", extra={"limit": config.max_continuations})
                    self.println(
                        f"Stopped after {config.max_continuations} automatic continuations."
                        " Send a message to continue."
                    )
                    return False
                continuations += 1

            if not self.session.status:
                return False
            if outcome.fresh_scope:
                scope = CancelScope()
            prompt = outcome.prompt

    def watch(self, goal: str, cancel: CancelScope) -> None:
        """Poll the panes every ``wait_interval`` seconds until stopped."""
        self.session.watch_mode = True
        self.session.set_status("running")
        message = watch_goal_message(goal)
        try:
            while self.session.status and self.session.watch_mode:
                if not self.countdown(self.session.wait_interval, cancel=cancel):
                    break
                if self.process_user_message(CancelScope(), message):
                    self.session.clear_status()
                    break
                message = ""
        finally:
            self.session.watch_mode = False

    def _run_turn(self, scope: CancelScope, message: str) -> TurnOutcome:
        if self.context.needs_compression():
            self.println("Exceeded context size, squashing history...")
            self.context.compress(scope)

        if scope.cancelled:
            return TurnOutcome.stop()

        try:
            snapshot = self._pane_snapshot()
        except PaneError as exc:
            LOGGER.error("pane_snapshot_failed", extra={"error": str(exc)})
            self.println(f"Failed to read tmux panes: {exc}")
            return TurnOutcome.stop()

        turn_input = ChatMessage(content=self._turn_input(snapshot, message), from_user=True)
        sending = [self._leading_prompt(), *self.session.history, turn_input]
        try:
            raw = self.client.complete(sending, cancel=scope, model=self.session.model)
        except RequestCanceled:
            LOGGER.info("turn_canceled")
            return TurnOutcome.stop()
        except ModelRequestError as exc:
            self._append_debug_log(sending, error=str(exc))
            self.println(f"Failed to get response from AI: {exc}")
            return TurnOutcome.stop()

        if not self.session.status:
            return TurnOutcome.stop()

        try:
            response = parse_ai_response(raw)
        except ResponseParseError as exc:
            self.session.clear_status()
            self._append_debug_log(sending, response=raw, error=f"parse error: {exc}")
            self.println(f"Failed to parse AI response: {exc}")
            return TurnOutcome.stop()

        self._append_debug_log(sending, response=raw)
        LOGGER.debug("ai_response_parsed", extra={"response": describe_response(response)})
        reply = ChatMessage(content=raw, from_user=False)

        violation, valid = ai_followed_guidelines(response, watch_mode=self.session.watch_mode)
        if not valid:
            self.session.append_exchange(turn_input, reply)
            return TurnOutcome.proceed(violation, guideline_violation=True)

        if not (response.exec_pane_seems_busy or response.no_comment):
            self.session.append_exchange(turn_input, reply)

        if response.message:
            self.println(response.message)

        for command in response.exec_command:
            if not self._exec_command(command, scope):
                return TurnOutcome.stop()
        if response.send_keys and not self._send_keys(response.send_keys):
            return TurnOutcome.stop()
        if response.paste_multiline_content and not self._paste(response.paste_multiline_content):
            return TurnOutcome.stop()

        if response.exec_pane_seems_busy:
            seconds = self.session.wait_interval
            self.countdown(seconds, cancel=scope)
            return TurnOutcome.proceed(
                BUSY_CONTINUATION_TEMPLATE.format(seconds=seconds),
                fresh_scope=True,
            )
        if response.request_accomplished:
            self.session.clear_status()
            return TurnOutcome.done()
        if response.waiting_for_user_response:
            self.session.set_status_unless_cleared("waiting")
            return TurnOutcome.stop()
        if response.no_comment or self.session.watch_mode:
            return TurnOutcome.stop()
        return TurnOutcome.proceed(UPDATED_PANE_CONTINUATION)

    def _exec_command(self, command: str, scope: CancelScope) -> bool:
        approved, final = True, command
        if self.session.exec_confirm:
            self.println(command)
            approved, final = self.confirmer.confirm(command, "Execute this command?", allow_edit=True)
        if not approved:
            self.session.clear_status()
            LOGGER.info("exec_rejected", extra={"command": command})
            return False

        self.println(f"Executing command: {final}")
        try:
            if self.exec_pane.is_prepared:
                history = self.exec_pane.exec_wait_capture(
                    final,
                    max_lines=self.session.max_capture_lines,
                    cancel=scope,
                )
                if history is None:
                    return False
                self.session.exec_history.append(history)
                self.reflections.enqueue(history)
            else:
                self.panes.send_text(self.exec_pane.id, final, auto_enter=True)
                self.sleep(self.settle_delay)
        except PaneError as exc:
            LOGGER.error("exec_command_failed", extra={"command": final, "error": str(exc)})
            self.println(f"Failed to execute command: {exc}")
            return False
        return True

    def _send_keys(self, keys: Sequence[str]) -> bool:
        self.println("Keys to send:\n" + "\n".join(keys))
        if self.session.send_keys_confirm:
            prompt = "Send this key?" if len(keys) == 1 else "Send all these keys?"
            approved, _ = self.confirmer.confirm(KEYS_CONFIRM_SUBJECT, prompt, allow_edit=False)
            if not approved:
                self.session.clear_status()
                LOGGER.info("send_keys_rejected", extra={"keys": list(keys)})
                return False

        try:
            for key in keys:
                self.println(f"Sending keys: {key}")
                self.panes.send_text(self.exec_pane.id, key, auto_enter=False)
                self.sleep(self.settle_delay)
        except PaneError as exc:
            LOGGER.error("send_keys_failed", extra={"error": str(exc)})
            self.println(f"Failed to send keys: {exc}")
            return False
        return True

    def _paste(self, content: str) -> bool:
        if self.session.paste_multiline_confirm:
            self.println(content)
            approved, _ = self.confirmer.confirm(content, "Paste multiline content?", allow_edit=False)
            if not approved:
                self.session.clear_status()
                LOGGER.info("paste_rejected")
                return False

        self.println("Pasting...")
        try:
            self.panes.send_text(self.exec_pane.id, content, auto_enter=True)
        except PaneError as exc:
            LOGGER.error("paste_failed", extra={"error": str(exc)})
            self.println(f"Failed to paste content: {exc}")
            return False
        self.sleep(self.settle_delay)
        return True

    def _pane_snapshot(self) -> str:
        max_lines = self.session.max_capture_lines
        details = self.exec_pane.refresh(max_lines)
        return panes_snapshot_xml(
            self.panes,
            target=self.panes.current_window_target(),
            chat_pane_id=self.exec_pane.chat_pane_id,
            exec_pane_id=details.id,
            max_lines=max_lines,
        )

    def _turn_input(self, snapshot: str, message: str) -> str:
        return f"{snapshot}\n\n{self.exec_pane.environment_note()}\n\n{message}"

    def _leading_prompt(self) -> ChatMessage:
        config = self.session.config
        if self.session.watch_mode:
            return watch_prompt(base_override=config.system_prompt, custom=config.watch_prompt)
        return chat_assistant_prompt(
            prepared=self.exec_pane.is_prepared,
            base_override=config.system_prompt,
            custom=config.chat_assistant_prompt,
        )

    def _append_debug_log(
        self,
        messages: Sequence[ChatMessage],
        *,
        response: str = "",
        error: str = "",
    ) -> None:
        config = self.session.config
        if not config.debug:
            return
        log_dir = Path(config.log_dir)
        entry = {
            "log_version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "model": self.session.model,
            "messages": chat_messages_to_roles(messages),
            "response": response,
            "error": error,
        }
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            day_file = log_dir / f"debug-{datetime.now(timezone.utc).date().isoformat()}.log"
            with day_file.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry) + "\n")
        except OSError as exc:
            LOGGER.warning("debug_log_write_failed", extra={"error": str(exc)})
