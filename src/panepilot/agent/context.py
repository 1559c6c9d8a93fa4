"""Bounded conversation memory through model-assisted summarization."""

from __future__ import annotations

import logging

from panepilot.agent.models import ChatMessage
from panepilot.agent.session import CancelScope, Session
from panepilot.llm.client import LLMClient, ModelRequestError
from panepilot.llm.tokens import estimate_messages_tokens

LOGGER = logging.getLogger(__name__)

COMPRESSION_THRESHOLD = 0.8
SUMMARY_PREFIX = "CHAT HISTORY SUMMARY:\n"
SUMMARIZATION_PROMPT = (
    "Below is a chat history between a user and an assistant. Please provide a concise"
    " summary of the key points, decisions, and context from this conversation. Focus on"
    " the most important information that would be needed to continue the conversation"
    " effectively:\n\n{log}"
)


class ContextWindowManager:
    """Keeps ``session.history`` under the configured token budget."""

    def __init__(self, session: Session, client: LLMClient) -> None:
        self.session = session
        self.client = client

    def context_tokens(self) -> int:
        return estimate_messages_tokens(message.content for message in self.session.history)

    def threshold(self) -> int:
        return int(self.session.max_context_size * COMPRESSION_THRESHOLD)

    def needs_compression(self) -> bool:
        return self.context_tokens() > self.threshold()

    def compress(self, cancel: CancelScope | None = None) -> bool:
        """Summarize everything between the pinned prefix and the latest message.

        Returns true when history was replaced. A failed summary leaves history
        untouched.
        """
        history = self.session.history
        pinned: list[ChatMessage] = []
        if history and not history[0].from_user:
            pinned.append(history[0])
            if len(history) > 1 and not history[1].from_user:
                pinned.append(history[1])

        start = len(pinned)
        if start >= len(history) - 1:
            LOGGER.debug("context_compression_skipped", extra={"messages": len(history)})
            return False

        span = history[start:-1]
        try:
            summary = self.summarize(span, cancel=cancel)
        except ModelRequestError as exc:
            LOGGER.error("context_compression_failed", extra={"error": str(exc)})
            return False

        before = self.context_tokens()
        self.session.history = [*pinned, ChatMessage(content=summary, from_user=False)]
        LOGGER.info(
            "context_compressed",
            extra={
                "summarized_messages": len(span),
                "tokens_before": before,
                "tokens_after": self.context_tokens(),
            },
        )
        return True

    def summarize(self, messages: list[ChatMessage], *, cancel: CancelScope | None = None) -> str:
        log = "".join(
            f"[{'User' if message.from_user else 'Assistant'}]: {message.content}\n\n"
            for message in messages
        )
        request = ChatMessage(content=SUMMARIZATION_PROMPT.format(log=log), from_user=True)
        summary = self.client.complete([request], cancel=cancel, model=self.session.model)
        return SUMMARY_PREFIX + summary
