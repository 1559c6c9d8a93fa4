"""Parsing and validation of tagged model responses."""

from __future__ import annotations

import html
import re

from panepilot.agent.models import AIResponse

LIST_TAGS = {
    "ExecCommand": "exec_command",
    "TmuxSendKeys": "send_keys",
}
TEXT_TAGS = {
    "PasteMultilineContent": "paste_multiline_content",
}
FLAG_TAGS = {
    "RequestAccomplished": "request_accomplished",
    "ExecPaneSeemsBusy": "exec_pane_seems_busy",
    "WaitingForUserResponse": "waiting_for_user_response",
    "NoComment": "no_comment",
}
_ALL_TAGS = (*LIST_TAGS, *TEXT_TAGS, *FLAG_TAGS)
_TAG_NAMES = "|".join(_ALL_TAGS)

_ELEMENT_PATTERN = re.compile(rf"<({_TAG_NAMES})\s*>(.*?)</\1\s*>", re.DOTALL)
_SELF_CLOSING_PATTERN = re.compile(rf"<({_TAG_NAMES})\s*/>")
_OPEN_PATTERN = re.compile(rf"<({_TAG_NAMES})\s*>")
_TRUTHY = {"1", "true", "yes"}

GUIDELINE_TOO_MANY_FLAGS = (
    "You didn't follow the guidelines. Only one boolean flag should be set to true"
    " in your response. Pay attention!"
)
GUIDELINE_TOO_MANY_TAG_TYPES = (
    "You didn't follow the guidelines. You can only use one type of XML tag in your"
    " response. Pay attention!"
)
GUIDELINE_NO_TAG = (
    "You didn't follow the guidelines. You must use at least one XML tag in your"
    " response. Pay attention!"
)


class ResponseParseError(ValueError):
    """Raised when model text cannot be turned into an ``AIResponse``."""


def parse_ai_response(text: str) -> AIResponse:
    """Extract tags and the free-text message from a raw model answer."""
    if not text or not text.strip():
        raise ResponseParseError("empty response from model")

    response = AIResponse()
    for match in _ELEMENT_PATTERN.finditer(text):
        tag, body = match.group(1), match.group(2)
        if tag in LIST_TAGS:
            value = html.unescape(body.strip())
            if value:
                getattr(response, LIST_TAGS[tag]).append(value)
        elif tag in TEXT_TAGS:
            value = _strip_one_newline(html.unescape(body))
            if value.strip():
                setattr(response, TEXT_TAGS[tag], value)
        elif body.strip().lower() in _TRUTHY:
            setattr(response, FLAG_TAGS[tag], True)

    for match in _SELF_CLOSING_PATTERN.finditer(text):
        tag = match.group(1)
        if tag in FLAG_TAGS:
            setattr(response, FLAG_TAGS[tag], True)

    remainder = _SELF_CLOSING_PATTERN.sub("", _ELEMENT_PATTERN.sub("", text))
    unterminated = _OPEN_PATTERN.search(remainder)
    if unterminated:
        raise ResponseParseError(f"unterminated <{unterminated.group(1)}> tag")

    response.message = _collapse_blank_lines(remainder).strip()
    return response


def ai_followed_guidelines(response: AIResponse, *, watch_mode: bool) -> tuple[str, bool]:
    """Check the structural rules for a response.

    Returns the violation text to send back to the model and a validity flag.
    """
    flags = response.flag_count()
    if flags > 1:
        return GUIDELINE_TOO_MANY_FLAGS, False

    categories = response.category_count()
    if categories > 1:
        return GUIDELINE_TOO_MANY_TAG_TYPES, False

    if not watch_mode and flags + categories == 0:
        return GUIDELINE_NO_TAG, False

    return "", True


def describe_response(response: AIResponse) -> str:
    return (
        f"message={response.message!r} exec_command={response.exec_command!r}"
        f" send_keys={response.send_keys!r}"
        f" paste_multiline_content={response.paste_multiline_content!r}"
        f" request_accomplished={response.request_accomplished}"
        f" exec_pane_seems_busy={response.exec_pane_seems_busy}"
        f" waiting_for_user_response={response.waiting_for_user_response}"
        f" no_comment={response.no_comment}"
    )


def _strip_one_newline(value: str) -> str:
    if value.startswith("\r\n"):
        value = value[2:]
    elif value.startswith("\n"):
        value = value[1:]
    if value.endswith("\r\n"):
        value = value[:-2]
    elif value.endswith("\n"):
        value = value[:-1]
    return value


def _collapse_blank_lines(value: str) -> str:
    return re.sub(r"\n\s*\n(\s*\n)+", "\n\n", value)
