"""Environment-backed application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_MODEL = "google/gemini-2.5-flash-preview"
DEFAULT_BASE_URLS = {
    "openrouter": "https://openrouter.ai/api/v1",
    "openai": "https://api.openai.com/v1",
    "azure": "",
}
SUPPORTED_PROVIDERS = tuple(DEFAULT_BASE_URLS)

# Keys that may be changed for the running session with ``/config set``.
ALLOWED_OVERRIDE_KEYS = (
    "max_capture_lines",
    "max_context_size",
    "wait_interval",
    "exec_confirm",
    "send_keys_confirm",
    "paste_multiline_confirm",
    "model",
    "tools_manifest_path",
)


def _to_bool(value: object, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if isinstance(value, bool):
        return value
    if not isinstance(value, str):
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from a JSON file and environment variables."""

    api_key: str | None
    provider: str = "openrouter"
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URLS["openrouter"]
    azure_api_version: str | None = None
    azure_deployment: str | None = None
    config_dir: str = str(Path.home() / ".config" / "panepilot")
    log_dir: str = ""
    debug: bool = False
    max_capture_lines: int = 200
    max_context_size: int = 100000
    wait_interval: int = 5
    exec_confirm: bool = True
    send_keys_confirm: bool = True
    paste_multiline_confirm: bool = True
    whitelist_patterns: list[str] = field(default_factory=list)
    blacklist_patterns: list[str] = field(default_factory=list)
    tools_manifest_path: str = "tools-available.md"
    reflection_log_path: str = "lessons-learned.json"
    system_prompt: str | None = None
    chat_assistant_prompt: str | None = None
    watch_prompt: str | None = None
    max_guardrail_retries: int = 3
    max_continuations: int = 25
    request_timeout: float = 120.0

    def __post_init__(self) -> None:
        if not self.log_dir:
            self.log_dir = str(Path(self.config_dir) / "logs")

    def resolve_path(self, value: str) -> str:
        """Resolve a possibly relative path against the config directory."""
        if not value:
            return ""
        path = Path(value).expanduser()
        if path.is_absolute():
            return str(path)
        return str(Path(self.config_dir) / path)

    @classmethod
    def from_env(cls, config_file: str | None = None) -> AppConfig:
        file_config = _load_preferred_file_config(config_file)
        provider_from_file = file_config.get("provider")
        provider = _resolve_provider(
            os.getenv("PANEPILOT_PROVIDER")
            or (provider_from_file if isinstance(provider_from_file, str) else None)
        )
        providers_from_file = file_config.get("providers")
        providers_config = providers_from_file if isinstance(providers_from_file, dict) else {}
        provider_entry = providers_config.get(provider)
        provider_config = provider_entry if isinstance(provider_entry, dict) else {}
        prompts_from_file = file_config.get("prompts")
        prompts_config = prompts_from_file if isinstance(prompts_from_file, dict) else {}

        config_dir = (
            os.getenv("PANEPILOT_CONFIG_DIR")
            or _to_optional_string(file_config.get("config_dir"))
            or str(Path.home() / ".config" / "panepilot")
        )

        return cls(
            api_key=(
                os.getenv("PANEPILOT_API_KEY")
                or _to_optional_string(provider_config.get("api_key"))
                or _to_optional_string(file_config.get("api_key"))
            ),
            provider=provider,
            model=(
                os.getenv("PANEPILOT_MODEL")
                or _to_optional_string(provider_config.get("model"))
                or _to_optional_string(file_config.get("model"))
                or DEFAULT_MODEL
            ),
            base_url=(
                os.getenv("PANEPILOT_BASE_URL")
                or _to_optional_string(provider_config.get("base_url"))
                or DEFAULT_BASE_URLS[provider]
            ),
            azure_api_version=(
                os.getenv("PANEPILOT_AZURE_API_VERSION")
                or _to_optional_string(provider_config.get("api_version"))
            ),
            azure_deployment=(
                os.getenv("PANEPILOT_AZURE_DEPLOYMENT")
                or _to_optional_string(provider_config.get("deployment_name"))
            ),
            config_dir=config_dir,
            log_dir=(
                os.getenv("PANEPILOT_LOG_DIR")
                or _to_optional_string(file_config.get("log_dir"))
                or str(Path(config_dir) / "logs")
            ),
            debug=_to_bool(
                os.getenv("PANEPILOT_DEBUG"),
                default=_to_bool(file_config.get("debug"), default=False),
            ),
            max_capture_lines=_to_positive_int(
                os.getenv("PANEPILOT_MAX_CAPTURE_LINES") or file_config.get("max_capture_lines"),
                default=200,
            ),
            max_context_size=_to_positive_int(
                os.getenv("PANEPILOT_MAX_CONTEXT_SIZE") or file_config.get("max_context_size"),
                default=100000,
            ),
            wait_interval=_to_positive_int(
                os.getenv("PANEPILOT_WAIT_INTERVAL") or file_config.get("wait_interval"),
                default=5,
            ),
            exec_confirm=_to_bool(
                os.getenv("PANEPILOT_EXEC_CONFIRM"),
                default=_to_bool(file_config.get("exec_confirm"), default=True),
            ),
            send_keys_confirm=_to_bool(
                os.getenv("PANEPILOT_SEND_KEYS_CONFIRM"),
                default=_to_bool(file_config.get("send_keys_confirm"), default=True),
            ),
            paste_multiline_confirm=_to_bool(
                os.getenv("PANEPILOT_PASTE_MULTILINE_CONFIRM"),
                default=_to_bool(file_config.get("paste_multiline_confirm"), default=True),
            ),
            whitelist_patterns=_to_string_list(file_config.get("whitelist_patterns")),
            blacklist_patterns=_to_string_list(file_config.get("blacklist_patterns")),
            tools_manifest_path=(
                os.getenv("PANEPILOT_TOOLS_MANIFEST_PATH")
                or _to_optional_string(file_config.get("tools_manifest_path"))
                or "tools-available.md"
            ),
            reflection_log_path=(
                _to_optional_string(file_config.get("reflection_log_path"))
                or "lessons-learned.json"
            ),
            system_prompt=(
                os.getenv("PANEPILOT_SYSTEM_PROMPT")
                or _to_optional_string(prompts_config.get("base_system"))
            ),
            chat_assistant_prompt=_to_optional_string(prompts_config.get("chat_assistant")),
            watch_prompt=_to_optional_string(prompts_config.get("watch")),
            max_guardrail_retries=_to_positive_int(
                file_config.get("max_guardrail_retries"), default=3
            ),
            max_continuations=_to_positive_int(file_config.get("max_continuations"), default=25),
            request_timeout=float(
                _to_positive_int(
                    os.getenv("PANEPILOT_REQUEST_TIMEOUT") or file_config.get("request_timeout"),
                    default=120,
                )
            ),
        )


def infer_override_value(config: AppConfig, key: str, raw: str) -> object:
    """Coerce a ``/config set`` value to the type of the configured field."""
    current = getattr(config, key, None)
    value = raw.strip()
    if isinstance(current, bool):
        return _to_bool(value, default=current)
    if isinstance(current, int):
        try:
            return int(value)
        except ValueError:
            return current
    return value


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _to_string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str) and item]


def _resolve_provider(value: str | None) -> str:
    if value is None:
        return "openrouter"
    normalized = value.strip().lower()
    aliases = {"azure_openai": "azure", "azure-openai": "azure"}
    normalized = aliases.get(normalized, normalized)
    return normalized if normalized in SUPPORTED_PROVIDERS else "openrouter"


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value).expanduser()
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config(explicit: str | None = None) -> dict[str, object]:
    explicit_path = explicit or os.getenv("PANEPILOT_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("panepilot.config.json")
    local_override = _load_file_config("panepilot.config.local.json")
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


def _to_positive_int(value: object, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default
