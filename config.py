"""
ChatPilot — Configuration
Flat .env-based configuration system.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger("chatpilot.config")


LATEST_MODEL_DEFAULTS = {
    "openai": "gpt-4o-mini",
    "openrouter": "deepseek/deepseek-chat-v3-0324:free",
    "deepseek": "deepseek-chat",
    "claude": "claude-3-5-haiku-latest",
    "gemini": "gemini-2.0-flash",
}

_MODEL_DEFAULT_SENTINELS = {"", "latest", "auto", "default"}

MIN_HISTORY_SIZE = 1
MAX_HISTORY_SIZE = 200


def _strip_inline_comment(value: str) -> str:
    """Strip shell-style inline comments for unquoted env values."""
    if not value:
        return ""
    cleaned = value.strip()
    if not cleaned:
        return ""
    if cleaned.startswith("#"):
        return ""
    return re.sub(r"\s+#.*$", "", cleaned).strip()


def _parse_allowed_users(raw: str) -> list[str]:
    """Parse TELEGRAM_ALLOWED_USERS as comma-separated numeric user IDs."""
    cleaned = _strip_inline_comment(raw)
    if not cleaned:
        return []

    users: list[str] = []
    for chunk in cleaned.split(","):
        token = chunk.strip()
        if not token:
            continue
        if token.startswith("#"):
            break
        token = token.split("#", 1)[0].strip()
        if not token:
            continue
        # Telegram user IDs are numeric; ignore placeholder/comment text safely.
        if token.lstrip("-").isdigit():
            users.append(token)
    return users


def _env_int(name: str, default: int) -> int:
    raw = _strip_inline_comment(os.getenv(name, ""))
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning(f"Ignoring invalid integer {name}={raw!r}; using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = _strip_inline_comment(os.getenv(name, ""))
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning(f"Ignoring invalid number {name}={raw!r}; using {default}")
        return default


def clamp_history_size(value: int) -> int:
    return max(MIN_HISTORY_SIZE, min(MAX_HISTORY_SIZE, int(value)))


@dataclass
class Config:
    # LLM Provider
    llm_provider: str = ""
    llm_model: str = ""
    max_output_tokens: int = 2048

    # API Keys
    openai_api_key: str = ""
    openrouter_api_key: str = ""
    deepseek_api_key: str = ""
    anthropic_api_key: str = ""
    gemini_api_key: str = ""

    # Telegram
    telegram_bot_token: str = ""
    telegram_allowed_users: list[str] = field(default_factory=list)
    owner_id: int = 0

    # Storage
    session_storage_path: str = ".chatpilot/sessions.json"
    dialog_storage_path: str = ".chatpilot/dialogs.json"
    persist_interval_sec: int = 300

    # Conversation
    history_size: int = 20
    inline_debounce_sec: float = 1.5
    stream_tick_sec: float = 0.5
    stream_timeout_sec: float = 60.0

    # Translation
    translate_target_language: str = "en"
    translate_fallback_language: str = "ru"

    # Smart home authorization link prefix (chat id is appended as state)
    oauth_url: str = ""

    # Movie picks page offered from the main menu and empty inline queries
    movies_url: str = ""


def _resolve_model(provider: str, model: str) -> str:
    """Resolve empty/default model values to provider-specific defaults."""
    provider_name = _strip_inline_comment(provider or "").lower()
    requested = _strip_inline_comment(model or "")
    if requested.lower() in _MODEL_DEFAULT_SENTINELS:
        return LATEST_MODEL_DEFAULTS.get(provider_name, LATEST_MODEL_DEFAULTS["openai"])
    return requested


def load_config() -> Config:
    """Load config from environment variables with auto-detection."""
    allowed_raw = os.getenv("TELEGRAM_ALLOWED_USERS", "")
    allowed = _parse_allowed_users(allowed_raw)

    cfg = Config(
        llm_provider=_strip_inline_comment(os.getenv("LLM_PROVIDER", "")),
        llm_model=os.getenv("LLM_MODEL", ""),
        max_output_tokens=_env_int("MAX_OUTPUT_TOKENS", 2048),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openrouter_api_key=os.getenv("OPENROUTER_API_KEY", ""),
        deepseek_api_key=os.getenv("DEEPSEEK_API_KEY", ""),
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
        telegram_allowed_users=allowed,
        owner_id=_env_int("OWNER_ID", 0),
        session_storage_path=os.getenv("SESSION_STORAGE_PATH", "") or ".chatpilot/sessions.json",
        dialog_storage_path=os.getenv("DIALOG_STORAGE_PATH", "") or ".chatpilot/dialogs.json",
        persist_interval_sec=_env_int("PERSIST_INTERVAL_SEC", 300),
        history_size=_env_int("HISTORY_SIZE", 20),
        inline_debounce_sec=_env_float("INLINE_DEBOUNCE_SEC", 1.5),
        stream_tick_sec=_env_float("STREAM_TICK_SEC", 0.5),
        stream_timeout_sec=_env_float("STREAM_TIMEOUT_SEC", 60.0),
        translate_target_language=_strip_inline_comment(os.getenv("TRANSLATE_TARGET_LANGUAGE", "")) or "en",
        translate_fallback_language=_strip_inline_comment(os.getenv("TRANSLATE_FALLBACK_LANGUAGE", "")) or "ru",
        oauth_url=_strip_inline_comment(os.getenv("OAUTH_URL", "")),
        movies_url=_strip_inline_comment(os.getenv("MOVIES_URL", "")),
    )

    # Auto-detect provider from API keys if not explicitly set
    if not cfg.llm_provider:
        if cfg.openai_api_key:
            cfg.llm_provider = "openai"
        elif cfg.openrouter_api_key:
            cfg.llm_provider = "openrouter"
        elif cfg.deepseek_api_key:
            cfg.llm_provider = "deepseek"
        elif cfg.anthropic_api_key:
            cfg.llm_provider = "claude"
        elif cfg.gemini_api_key:
            cfg.llm_provider = "gemini"

    cfg.llm_provider = cfg.llm_provider.strip().lower()
    cfg.llm_model = _resolve_model(cfg.llm_provider, cfg.llm_model)
    cfg.max_output_tokens = max(256, int(cfg.max_output_tokens))
    cfg.persist_interval_sec = max(5, int(cfg.persist_interval_sec))
    cfg.history_size = clamp_history_size(cfg.history_size)
    cfg.inline_debounce_sec = max(0.0, cfg.inline_debounce_sec)
    cfg.stream_tick_sec = max(0.05, cfg.stream_tick_sec)
    cfg.stream_timeout_sec = max(1.0, cfg.stream_timeout_sec)

    return cfg
