from __future__ import annotations

import json
from pathlib import Path

import pytest

from panepilot.agent import exec_pane as exec_pane_module
from panepilot.agent.exec_pane import ExecPane
from panepilot.agent.loop import AgentLoop, TurnOutcome
from panepilot.agent.models import ChatMessage
from panepilot.agent.response import GUIDELINE_TOO_MANY_FLAGS
from panepilot.agent.session import CancelScope, Session
from panepilot.config import AppConfig
from panepilot.llm.client import ModelRequestError
from panepilot.terminal.confirm import Confirmer
from panepilot.tmux import PaneCollaborator, PaneDetails

ACCOMPLISHED = "Done.\n<RequestAccomplished>1</RequestAccomplished>"


class FakePanes(PaneCollaborator):
    def __init__(self, content: str = "user@host:~$ ") -> None:
        self.content = content
        self.sent: list[tuple[str, str, bool]] = []
        self.cleared: list[str] = []
        self.on_send = None

    @property
    def name(self) -> str:
        return "fake"

    def list_panes(self, target: str) -> list[PaneDetails]:
        return [
            PaneDetails(id="%1", is_active=True, current_command="python3"),
            PaneDetails(id="%2", current_command="bash"),
        ]

    def capture(self, pane_id: str, max_lines: int) -> str:
        return self.content

    def send_text(self, pane_id: str, text: str, *, auto_enter: bool) -> None:
        self.sent.append((pane_id, text, auto_enter))
        if self.on_send is not None:
            self.on_send(text)

    def create_pane(self, target: str) -> str:
        return "%3"

    def create_session(self) -> str:
        return "%9"

    def attach_session(self, target: str) -> None:
        return None

    def clear_pane(self, pane_id: str) -> None:
        self.cleared.append(pane_id)

    def current_pane_id(self) -> str:
        return "%1"

    def current_window_target(self) -> str:
        return "main:0"

    def window_name(self) -> str:
        return "main"


class FakeClient:
    def __init__(self, responses: list[object], reflection: str = "{}") -> None:
        self.responses = list(responses)
        self.reflection = reflection
        self.calls: list[list[ChatMessage]] = []
        self.scopes: list[CancelScope | None] = []
        self.reflection_calls: list[list[dict[str, str]]] = []

    def complete(self, messages, *, cancel=None, model=None) -> str:
        self.calls.append(list(messages))
        self.scopes.append(cancel)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return str(item)

    def chat_completion(self, messages, *, cancel=None, model=None) -> str:
        self.reflection_calls.append(messages)
        return self.reflection


class FakeConfirmer(Confirmer):
    def __init__(self, answer: tuple[bool, str | None] = (True, None)) -> None:
        self.answer = answer
        self.prompts: list[tuple[str, str, bool]] = []

    def confirm(self, command: str, prompt: str, *, allow_edit: bool) -> tuple[bool, str]:
        self.prompts.append((command, prompt, allow_edit))
        approved, edited = self.answer
        return approved, edited if edited is not None else (command if approved else "")


def _build(
    tmp_path: Path,
    responses: list[object],
    *,
    confirmer: FakeConfirmer | None = None,
    panes: FakePanes | None = None,
    reflection: str = "{}",
    **config_values: object,
) -> tuple[AgentLoop, FakeClient, FakePanes, list[str], list[int]]:
    config = AppConfig(api_key="test-key", config_dir=str(tmp_path), **config_values)
    session = Session(config=config)
    session.set_status("running")
    client = FakeClient(responses, reflection=reflection)
    panes = panes or FakePanes()
    exec_pane = ExecPane(panes, chat_pane_id="%1")
    exec_pane.init()
    printed: list[str] = []
    countdowns: list[int] = []

    def fake_countdown(seconds: int, *, cancel: CancelScope | None = None) -> bool:
        countdowns.append(seconds)
        return True

    loop = AgentLoop(
        session=session,
        client=client,
        panes=panes,
        exec_pane=exec_pane,
        confirmer=confirmer or FakeConfirmer(),
        println=printed.append,
        countdown=fake_countdown,
        sleep=lambda _seconds: None,
    )
    return loop, client, panes, printed, countdowns


def test_exec_confirmation_denied_stops_without_sending(tmp_path: Path) -> None:
    confirmer = FakeConfirmer((False, ""))
    loop, client, panes, _printed, _ = _build(
        tmp_path, ["<ExecCommand>rm -rf /</ExecCommand>"], confirmer=confirmer
    )

    assert loop.process_user_message(CancelScope(), "clean up") is False
    assert loop.session.status == ""
    assert panes.sent == []
    assert confirmer.prompts == [("rm -rf /", "Execute this command?", True)]
    assert len(client.calls) == 1


def test_request_accomplished_is_terminal(tmp_path: Path) -> None:
    loop, client, _panes, printed, _ = _build(tmp_path, [ACCOMPLISHED])

    assert loop.process_user_message(CancelScope(), "say hi") is True
    assert loop.session.status == ""
    assert len(client.calls) == 1
    assert "Done." in printed
    assert [message.from_user for message in loop.session.history] == [True, False]


def test_busy_pane_waits_and_continues_once(tmp_path: Path) -> None:
    loop, client, _panes, _printed, countdowns = _build(
        tmp_path,
        ["Still compiling.\n<ExecPaneSeemsBusy>1</ExecPaneSeemsBusy>", ACCOMPLISHED],
        wait_interval=5,
    )

    assert loop.process_user_message(CancelScope(), "build it") is True
    assert countdowns == [5]
    assert len(client.calls) == 2
    continuation = client.calls[1][-1].content
    assert continuation.endswith("waited for 5 more seconds, here is the current pane(s) content")
    # busy exchanges are not kept in history
    assert len(loop.session.history) == 2
    assert "ExecPaneSeemsBusy" not in loop.session.history[1].content


def test_busy_continuation_uses_fresh_scope_after_cancelled_wait(tmp_path: Path) -> None:
    loop, client, _panes, _printed, _ = _build(
        tmp_path,
        ["Still compiling.\n<ExecPaneSeemsBusy>1</ExecPaneSeemsBusy>", ACCOMPLISHED],
    )

    def cancelling_countdown(seconds: int, *, cancel: CancelScope | None = None) -> bool:
        assert cancel is not None
        cancel.cancel()
        return False

    loop.countdown = cancelling_countdown
    original = CancelScope()

    assert loop.process_user_message(original, "build it") is True
    first, second = client.scopes
    assert first is original
    assert first.cancelled is True
    assert second is not original
    assert second is not None and second.cancelled is False
    assert loop.active_scope is second


def test_guideline_violation_is_fed_back(tmp_path: Path) -> None:
    invalid = "<RequestAccomplished>1</RequestAccomplished><WaitingForUserResponse>1</WaitingForUserResponse>"
    loop, client, _panes, printed, _ = _build(tmp_path, [invalid, ACCOMPLISHED])

    assert loop.process_user_message(CancelScope(), "do it") is True
    assert client.calls[1][-1].content.endswith(GUIDELINE_TOO_MANY_FLAGS)
    assert "AI didn't follow guidelines, trying again..." in printed
    assert loop.session.history[1].content == invalid
    assert len(loop.session.history) == 4


def test_guideline_retries_are_bounded(tmp_path: Path) -> None:
    loop, client, _panes, printed, _ = _build(
        tmp_path,
        ["no tags at all", "still nothing"],
        max_guardrail_retries=1,
    )

    assert loop.process_user_message(CancelScope(), "do it") is False
    assert len(client.calls) == 2
    assert loop.session.status == ""
    assert printed[-1] == "AI didn't follow guidelines after 2 attempts."


def test_exec_command_sends_and_requests_updated_content(tmp_path: Path) -> None:
    loop, client, panes, printed, _ = _build(
        tmp_path,
        ["<ExecCommand>ls</ExecCommand>", ACCOMPLISHED],
        exec_confirm=False,
    )

    assert loop.process_user_message(CancelScope(), "list files") is True
    assert panes.sent == [("%2", "ls", True)]
    assert "Executing command: ls" in printed
    assert client.calls[1][-1].content.endswith("sending updated pane(s) content")


def test_edited_command_is_executed(tmp_path: Path) -> None:
    confirmer = FakeConfirmer((True, "ls -la"))
    loop, _client, panes, _printed, _ = _build(
        tmp_path, ["<ExecCommand>ls</ExecCommand>", ACCOMPLISHED], confirmer=confirmer
    )

    loop.process_user_message(CancelScope(), "list files")

    assert panes.sent == [("%2", "ls -la", True)]


def test_send_keys_batch_is_confirmed_once(tmp_path: Path) -> None:
    confirmer = FakeConfirmer()
    loop, _client, panes, _printed, _ = _build(
        tmp_path,
        ["<TmuxSendKeys>:wq</TmuxSendKeys><TmuxSendKeys>Enter</TmuxSendKeys>", ACCOMPLISHED],
        confirmer=confirmer,
    )

    loop.process_user_message(CancelScope(), "save and quit")

    assert confirmer.prompts == [("keys shown above", "Send all these keys?", False)]
    assert panes.sent == [("%2", ":wq", False), ("%2", "Enter", False)]


def test_rejected_paste_clears_status(tmp_path: Path) -> None:
    confirmer = FakeConfirmer((False, ""))
    loop, _client, panes, _printed, _ = _build(
        tmp_path,
        ["<PasteMultilineContent>\nline one\nline two\n</PasteMultilineContent>"],
        confirmer=confirmer,
    )

    assert loop.process_user_message(CancelScope(), "type it") is False
    assert confirmer.prompts == [("line one\nline two", "Paste multiline content?", False)]
    assert panes.sent == []
    assert loop.session.status == ""


def test_waiting_for_user_response_yields(tmp_path: Path) -> None:
    loop, client, _panes, _printed, _ = _build(
        tmp_path, ["Which branch?\n<WaitingForUserResponse>1</WaitingForUserResponse>"]
    )

    assert loop.process_user_message(CancelScope(), "merge it") is False
    assert loop.session.status == "waiting"
    assert len(client.calls) == 1


def test_transport_error_is_reported(tmp_path: Path) -> None:
    loop, _client, _panes, printed, _ = _build(tmp_path, [ModelRequestError("boom")])

    assert loop.process_user_message(CancelScope(), "hi") is False
    assert printed == ["Failed to get response from AI: boom"]
    assert loop.session.history == []
    assert loop.session.status == "running"


def test_cancelled_scope_skips_model_call(tmp_path: Path) -> None:
    loop, client, _panes, _printed, _ = _build(tmp_path, [ACCOMPLISHED])
    scope = CancelScope()
    scope.cancel()

    assert loop.process_user_message(scope, "hi") is False
    assert client.calls == []


def test_cleared_status_discards_response(tmp_path: Path) -> None:
    loop, _client, _panes, _printed, _ = _build(tmp_path, [ACCOMPLISHED])
    loop.session.clear_status()

    assert loop.process_user_message(CancelScope(), "hi") is False
    assert loop.session.history == []


def test_parse_error_clears_status(tmp_path: Path) -> None:
    loop, _client, _panes, printed, _ = _build(tmp_path, ["<ExecCommand>ls"])

    assert loop.process_user_message(CancelScope(), "hi") is False
    assert loop.session.status == ""
    assert printed[0].startswith("Failed to parse AI response:")


def test_history_is_squashed_before_sending(tmp_path: Path) -> None:
    loop, client, _panes, printed, _ = _build(
        tmp_path,
        ["short summary", ACCOMPLISHED],
        max_context_size=100,
    )
    loop.session.history = [
        ChatMessage(content="baseline", from_user=False),
        ChatMessage(content="x" * 400, from_user=True),
        ChatMessage(content="y" * 400, from_user=False),
        ChatMessage(content="final question", from_user=True),
    ]

    assert loop.process_user_message(CancelScope(), "continue") is True
    assert "Exceeded context size, squashing history..." in printed
    summary_request = client.calls[0]
    assert len(summary_request) == 1
    assert "[User]: " + "x" * 400 in summary_request[0].content
    assert "final question" not in summary_request[0].content
    assert loop.session.history[0].content == "baseline"
    assert loop.session.history[1].content == "CHAT HISTORY SUMMARY:\nshort summary"


def test_turn_input_carries_snapshot_and_environment(tmp_path: Path) -> None:
    loop, client, _panes, _printed, _ = _build(tmp_path, [ACCOMPLISHED])

    loop.process_user_message(CancelScope(), "what is running?")

    sent = client.calls[0]
    assert not sent[0].from_user
    assert "<ExecPaneSeemsBusy>" in sent[0].content
    turn_input = sent[-1].content
    assert turn_input.startswith("<current_tmux_window_state>")
    assert '<TmuxPane id="%2" type="exec" current_command="bash">' in turn_input
    assert 'id="%1"' not in turn_input
    assert "Keep in mind, you are working within the shell: bash" in turn_input
    assert turn_input.endswith("\n\nwhat is running?")


def test_continuations_are_bounded(tmp_path: Path) -> None:
    responses = ["<TmuxSendKeys>j</TmuxSendKeys>"] * 3
    loop, client, _panes, printed, _ = _build(
        tmp_path,
        responses,
        send_keys_confirm=False,
        max_continuations=2,
    )

    assert loop.process_user_message(CancelScope(), "scroll") is False
    assert len(client.calls) == 3
    assert loop.session.status == ""
    assert printed[-1].startswith("Stopped after 2 automatic continuations.")


def test_watch_mode_runs_until_accomplished(tmp_path: Path) -> None:
    loop, client, _panes, _printed, countdowns = _build(
        tmp_path,
        ["<NoComment>1</NoComment>", "The build failed.\n<RequestAccomplished>1</RequestAccomplished>"],
        wait_interval=2,
    )

    loop.watch("build errors", CancelScope())

    assert countdowns == [2, 2]
    assert "<NoComment>1</NoComment>" in client.calls[0][0].content
    assert client.calls[0][-1].content.endswith("Watch for: build errors")
    assert "Watch for" not in client.calls[1][-1].content
    assert loop.session.watch_mode is False
    assert loop.session.status == ""


def test_prepared_exec_records_history_and_reflects(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(exec_pane_module, "POLL_INTERVAL_SECONDS", 0.01)
    panes = FakePanes(content="me@box:~[10:00][0]» ")

    def finish(command: str) -> None:
        panes.content = f"me@box:~[10:00][0]» {command}\nREADME.md\nme@box:~[10:01][0]» "

    panes.on_send = finish
    reflection = json.dumps(
        {
            "lessons": "ls works",
            "alternative": {"command": "ls -1", "reason": "one per line"},
            "tools": [{"action": "skip", "name": "ls", "reason": "builtin"}],
        }
    )
    loop, _client, _panes, printed, _ = _build(
        tmp_path,
        ["<ExecCommand>ls</ExecCommand>", ACCOMPLISHED],
        panes=panes,
        reflection=reflection,
        exec_confirm=False,
    )
    loop.exec_pane.details.is_prepared = True

    assert loop.run_message(CancelScope(), "list files") is True

    assert [entry.command for entry in loop.session.exec_history] == ["ls"]
    assert loop.session.exec_history[0].output == "README.md"
    assert len(loop.session.reflection_log) == 1
    assert printed[-1].startswith("Reflection Summary\nCommand: ls\nExit Code: 0")
    stored = json.loads((tmp_path / "lessons-learned.json").read_text(encoding="utf-8"))
    assert stored[0]["suggested_actions"][0]["outcome"] == "skipped: no-op"


def test_turn_outcome_constructors() -> None:
    assert TurnOutcome.done().kind == "done"
    assert TurnOutcome.stop().kind == "stop"
    outcome = TurnOutcome.proceed("next", fresh_scope=True)
    assert (outcome.kind, outcome.prompt, outcome.fresh_scope) == ("continue", "next", True)
