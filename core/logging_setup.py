"""Logging configuration for ChatPilot.

Human-readable lines go to stderr. With JSON_LOG_ENABLED set, the
"chatpilot" logger also appends one JSON object per record to a file.
Chat-scoped messages are written as "[<chat id>] ..." or
"[inline:<user id>] ..."; the JSON sink splits that prefix out.
"""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("chatpilot")

_TRUTHY = {"1", "true", "yes", "on"}
_NOISY_LOGGERS = ("httpx", "httpcore", "telegram.ext", "openai._base_client", "anthropic._base_client")

if os.getenv("CHATPILOT_VERBOSE_HTTP", "").strip().lower() not in _TRUTHY:
    for _name in _NOISY_LOGGERS:
        logging.getLogger(_name).setLevel(logging.WARNING)

_CHAT_PREFIX_RE = re.compile(r"^\[(?P<session>[^\]]+)\]\s*(?P<body>.*)$", re.DOTALL)

# First matching keyword wins; checked against the lowercased message body.
_OPERATION_KEYWORDS = (
    ("user:", "user_message"),
    ("bot:", "assistant_message"),
    ("route", "routing"),
    ("inline", "inline_query"),
    ("stream", "stream"),
    ("long reply", "stream"),
    ("snapshot", "persistence"),
    ("user sessions", "persistence"),
    ("dialog history for", "persistence"),
    ("history", "dialog_history"),
    ("device", "smart_home"),
    ("smart home", "smart_home"),
    ("model", "generative"),
    ("llm", "generative"),
    ("translat", "translation"),
    ("telegram", "transport"),
)


def _infer_channel(session_id: str | None) -> str:
    if session_id and session_id.lstrip("-").isdigit():
        return "telegram"
    if session_id and session_id.startswith("inline:"):
        return "inline"
    return "system"


def _infer_operation(body: str) -> str:
    lower = (body or "").lower()
    for keyword, operation in _OPERATION_KEYWORDS:
        if lower.startswith(keyword) if keyword.endswith(":") else keyword in lower:
            return operation
    return "general"


class _JsonLogFormatter(logging.Formatter):
    """One JSON object per record, tagged with chat and operation."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        session_id = None
        body = message
        matched = _CHAT_PREFIX_RE.match(message or "")
        if matched:
            session_id, body = matched.group("session"), matched.group("body")

        channel = _infer_channel(session_id)
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": body,
            "session": session_id,
            "chat_id": int(session_id) if channel == "telegram" else None,
            "channel": channel,
            "operation": _infer_operation(body),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_optional_json_logging(runtime_root: str | Path | None = None) -> Path | None:
    """Attach the JSONL sink when JSON_LOG_ENABLED is truthy.

    JSON_LOG_PATH overrides the default <runtime_root>/logs/chatpilot.jsonl;
    a relative override is taken from runtime_root as well. Calling twice
    with the same target is a no-op.
    """
    if os.getenv("JSON_LOG_ENABLED", "").strip().lower() not in _TRUTHY:
        return None

    base = Path(runtime_root).expanduser() if runtime_root else Path.cwd()
    raw_path = os.getenv("JSON_LOG_PATH", "").strip()
    path = Path(raw_path).expanduser() if raw_path else Path("logs") / "chatpilot.jsonl"
    if not path.is_absolute():
        path = base / path
    path = path.resolve()

    for handler in log.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename).resolve() == path:
            return path

    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(_JsonLogFormatter())
    log.addHandler(file_handler)
    log.info(f"Structured JSON logging enabled: {path.as_posix()}")
    return path
