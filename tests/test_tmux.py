from __future__ import annotations

import subprocess
from types import SimpleNamespace

import pytest

from panepilot.tmux import PaneError, TmuxAdapter, create_pane_collaborator, is_subshell
from panepilot.tmux.keys import escape_literal, send_keys_arguments, split_key_tokens


def test_create_pane_collaborator() -> None:
    assert isinstance(create_pane_collaborator("TMUX"), TmuxAdapter)


def test_create_pane_collaborator_invalid() -> None:
    with pytest.raises(ValueError, match="Unsupported multiplexer"):
        create_pane_collaborator("screen")


@pytest.mark.parametrize(
    ("command", "expected"),
    [("ssh", True), ("-sudo", True), ("bash", False), ("vim", False)],
)
def test_is_subshell(command: str, expected: bool) -> None:
    assert is_subshell(command) is expected


def test_split_key_tokens_keeps_words_together() -> None:
    assert split_key_tokens("vim C-c :q Enter") == ["vim", "C-c", ":q", "Enter"]
    assert split_key_tokens("echo hello world Enter") == ["echo hello world", "Enter"]


def test_literal_line_uses_literal_flag() -> None:
    assert send_keys_arguments("%2", "echo hi;") == ["send-keys", "-t", "%2", "-l", "echo hi\\;"]
    assert escape_literal("no semicolon") == "no semicolon"


def test_special_key_line_is_tokenized() -> None:
    assert send_keys_arguments("%2", "M-x Escape") == ["send-keys", "-t", "%2", "M-x", "Escape"]


def _recording_run(monkeypatch: pytest.MonkeyPatch, stdout: str = "") -> list[list[str]]:
    calls: list[list[str]] = []

    def fake_run(*args: object, **kwargs: object) -> SimpleNamespace:
        calls.append(list(args[0]))  # type: ignore[call-overload]
        return SimpleNamespace(returncode=0, stdout=stdout, stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    return calls


def test_send_text_presses_enter_per_line(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _recording_run(monkeypatch)

    TmuxAdapter().send_text("%2", "cd /tmp\nls", auto_enter=True)

    assert calls == [
        ["tmux", "send-keys", "-t", "%2", "-l", "cd /tmp"],
        ["tmux", "send-keys", "-t", "%2", "Enter"],
        ["tmux", "send-keys", "-t", "%2", "-l", "ls"],
        ["tmux", "send-keys", "-t", "%2", "Enter"],
    ]


def test_send_text_without_enter(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _recording_run(monkeypatch)

    TmuxAdapter().send_text("%2", "C-c", auto_enter=False)

    assert calls == [["tmux", "send-keys", "-t", "%2", "C-c"]]


def test_list_panes_parses_format(monkeypatch: pytest.MonkeyPatch) -> None:
    _recording_run(monkeypatch, stdout="%1,1,100,python3,10,2000\n%2,0,101,ssh,0,2000\n")

    panes = TmuxAdapter().list_panes("main:0")

    assert [pane.id for pane in panes] == ["%1", "%2"]
    assert panes[0].is_active is True
    assert panes[1].current_command == "ssh"
    assert panes[1].is_subshell is True
    assert panes[0].history_limit == 2000


def test_list_panes_filters_single_pane_target(monkeypatch: pytest.MonkeyPatch) -> None:
    _recording_run(monkeypatch, stdout="%1,1,100,bash,0,0\n%2,0,101,bash,0,0\n")

    assert [pane.id for pane in TmuxAdapter().list_panes("%2")] == ["%2"]


def test_capture_requests_joined_scrollback(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _recording_run(monkeypatch, stdout="line\n\n")

    assert TmuxAdapter().capture("%2", 50) == "line"
    assert calls == [["tmux", "capture-pane", "-p", "-J", "-t", "%2", "-S", "-50"]]


def test_failed_command_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> SimpleNamespace:
        return SimpleNamespace(returncode=1, stdout="", stderr="can't find pane: %7")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(PaneError, match="can't find pane"):
        TmuxAdapter().capture("%7", 10)


def test_timeout_raises_pane_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> SimpleNamespace:
        raise subprocess.TimeoutExpired(cmd=args[0], timeout=1)

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(PaneError, match="timed out"):
        TmuxAdapter(timeout=1).window_name()


def test_current_pane_id_requires_tmux(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TMUX_PANE", raising=False)

    with pytest.raises(PaneError):
        TmuxAdapter().current_pane_id()
