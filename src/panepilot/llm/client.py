"""Thin HTTP client for OpenAI-compatible chat providers."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Sequence
from urllib import parse, request
from urllib.error import HTTPError, URLError

from panepilot.agent.models import ChatMessage
from panepilot.agent.session import CancelScope

LOGGER = logging.getLogger(__name__)

APP_REFERER = "https://github.com/panepilot/panepilot"
APP_TITLE = "PanePilot"
CANCEL_POLL_SECONDS = 0.05
DEFAULT_AZURE_API_VERSION = "2025-04-01-preview"


class ModelRequestError(RuntimeError):
    """Raised when the provider cannot produce a completion."""


class RequestCanceled(ModelRequestError):
    """Raised when the caller cancelled the request scope."""


def chat_messages_to_roles(messages: Sequence[ChatMessage]) -> list[dict[str, str]]:
    """Assign provider roles positionally.

    A leading non-user message is the system prompt; afterwards user messages
    map to ``user`` and everything else to ``assistant``.
    """
    converted: list[dict[str, str]] = []
    for index, message in enumerate(messages):
        if index == 0 and not message.from_user:
            role = "system"
        elif message.from_user:
            role = "user"
        else:
            role = "assistant"
        converted.append({"role": role, "content": message.content})
    return converted


class LLMClient:
    """Small HTTP client for chat-style model calls."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        provider: str = "openrouter",
        base_url: str = "https://openrouter.ai/api/v1",
        azure_api_version: str | None = None,
        azure_deployment: str | None = None,
        timeout: float = 120.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.provider = provider
        self.base_url = base_url
        self.azure_api_version = azure_api_version
        self.azure_deployment = azure_deployment
        self.timeout = timeout

    def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        cancel: CancelScope | None = None,
        model: str | None = None,
    ) -> str:
        """Return the completion text for an ordered chat history."""
        return self.chat_completion(chat_messages_to_roles(messages), cancel=cancel, model=model)

    def chat_completion(
        self,
        messages: list[dict[str, str]],
        *,
        cancel: CancelScope | None = None,
        model: str | None = None,
    ) -> str:
        """Return the completion text for already role-tagged messages."""
        if not messages:
            raise ModelRequestError("no messages provided")
        selected_model = model or self.model
        if self.provider == "openai":
            url, payload = self._build_responses_request(messages, selected_model)
            raw = self._post_json(url, payload, cancel=cancel)
            return self._extract_responses_text(raw, selected_model)

        url, payload = self._build_chat_request(messages, selected_model)
        raw = self._post_json(url, payload, cancel=cancel)
        return self._extract_chat_text(raw, selected_model)

    def _build_chat_request(
        self, messages: list[dict[str, str]], model: str
    ) -> tuple[str, dict[str, object]]:
        base_url = self.base_url.rstrip("/")
        if self.provider == "azure":
            deployment = self.azure_deployment or model
            api_version = self.azure_api_version or DEFAULT_AZURE_API_VERSION
            query = parse.urlencode({"api-version": api_version})
            url = f"{base_url}/openai/deployments/{parse.quote(deployment)}/chat/completions?{query}"
            return url, {"messages": messages}
        return f"{base_url}/chat/completions", {"model": model, "messages": messages}

    def _build_responses_request(
        self, messages: list[dict[str, str]], model: str
    ) -> tuple[str, dict[str, object]]:
        payload: dict[str, object] = {"model": model, "store": False}
        if messages[0]["role"] == "system":
            if len(messages) == 1:
                raise ModelRequestError("only system message provided, no user message to process")
            payload["instructions"] = messages[0]["content"]
            payload["input"] = messages[1:]
        else:
            payload["input"] = messages
        return f"{self.base_url.rstrip('/')}/responses", payload

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            if self.provider == "azure":
                headers["api-key"] = self.api_key
            else:
                headers["Authorization"] = f"Bearer {self.api_key}"
        if self.provider == "openrouter":
            headers["HTTP-Referer"] = APP_REFERER
            headers["X-Title"] = APP_TITLE
        return headers

    def _post_json(
        self,
        url: str,
        payload: dict[str, object],
        *,
        cancel: CancelScope | None,
    ) -> dict[str, object]:
        if cancel is not None and cancel.cancelled:
            raise RequestCanceled("request canceled before it was sent")

        body = json.dumps(payload).encode("utf-8")
        LOGGER.debug(
            "llm_request_prepared",
            extra={"url": url, "provider": self.provider, "payload_bytes": len(body)},
        )
        req = request.Request(url, data=body, headers=self._headers(), method="POST")

        outcome: dict[str, object] = {}
        finished = threading.Event()

        def send() -> None:
            try:
                outcome["value"] = self._send(req)
            except ModelRequestError as exc:
                outcome["error"] = exc
            finally:
                finished.set()

        worker = threading.Thread(target=send, name="llm-request", daemon=True)
        worker.start()
        while not finished.wait(CANCEL_POLL_SECONDS):
            if cancel is not None and cancel.cancelled:
                LOGGER.info("llm_request_canceled", extra={"url": url})
                raise RequestCanceled("request canceled")

        if cancel is not None and cancel.cancelled:
            raise RequestCanceled("request canceled")
        error = outcome.get("error")
        if isinstance(error, ModelRequestError):
            raise error
        value = outcome.get("value")
        if not isinstance(value, dict):
            raise ModelRequestError("Model response parsing error: expected top-level object")
        return value

    def _send(self, req: request.Request) -> object:
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                return json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            body_excerpt = self._read_error_body_excerpt(exc)
            LOGGER.error(
                "llm_request_http_error",
                extra={
                    "url": req.full_url,
                    "http_status": exc.code,
                    "reason": exc.reason,
                    "response_excerpt": body_excerpt,
                },
            )
            details = f"Model request failed with HTTP {exc.code}: {exc.reason}"
            if body_excerpt:
                details = f"{details}. Response body: {body_excerpt}"
            raise ModelRequestError(details) from exc
        except URLError as exc:
            LOGGER.error(
                "llm_request_transport_error",
                extra={"url": req.full_url, "reason": str(exc.reason)},
            )
            raise ModelRequestError(f"Model request transport error: {exc.reason}") from exc
        except TimeoutError as exc:
            LOGGER.error(
                "llm_request_timeout",
                extra={"url": req.full_url, "timeout_seconds": self.timeout},
            )
            raise ModelRequestError(f"Model request timed out after {self.timeout:.1f}s") from exc
        except OSError as exc:
            LOGGER.error(
                "llm_request_transport_error",
                extra={"url": req.full_url, "reason": str(exc)},
            )
            raise ModelRequestError(f"Model request transport error: {exc}") from exc
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.error("llm_response_parse_error", extra={"url": req.full_url, "error": str(exc)})
            raise ModelRequestError(f"Model response parsing error: {exc}") from exc

    @staticmethod
    def _extract_chat_text(payload: dict[str, object], model: str) -> str:
        choices = payload.get("choices")
        if isinstance(choices, list):
            for choice in choices:
                if not isinstance(choice, dict):
                    continue
                message = choice.get("message")
                if isinstance(message, dict) and isinstance(message.get("content"), str):
                    return str(message["content"])
        LOGGER.error("llm_no_choices", extra={"model": model})
        raise ModelRequestError(f"no completion choices returned (model: {model})")

    @staticmethod
    def _extract_responses_text(payload: dict[str, object], model: str) -> str:
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            raise ModelRequestError(f"API error: {error['message']}")

        output_text = payload.get("output_text")
        if isinstance(output_text, str) and output_text:
            return output_text

        output_items = payload.get("output")
        if isinstance(output_items, list):
            for item in output_items:
                if not isinstance(item, dict) or item.get("type") != "message":
                    continue
                content_items = item.get("content")
                if not isinstance(content_items, list):
                    continue
                for content in content_items:
                    if not isinstance(content, dict):
                        continue
                    text = content.get("text")
                    if content.get("type") in {"output_text", "text"} and isinstance(text, str) and text:
                        return text
        LOGGER.error("llm_no_output", extra={"model": model})
        raise ModelRequestError(f"no response content returned (model: {model})")

    @staticmethod
    def _read_error_body_excerpt(exc: HTTPError, *, max_chars: int = 500) -> str | None:
        if exc.fp is None:
            return None
        try:
            raw = exc.read()
        except OSError:
            return None

        if not raw:
            return None

        excerpt = raw.decode("utf-8", errors="replace").replace("\n", " ").strip()
        if len(excerpt) > max_chars:
            return f"{excerpt[:max_chars]}..."
        return excerpt
