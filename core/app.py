"""Application entrypoint and Telegram handler registration."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from telegram.ext import Application, CommandHandler, InlineQueryHandler, MessageHandler, filters

from config import load_config
from dialogs import DialogHistoryStore
from providers import (
    ActivitySuggester,
    GenerativeClient,
    LLMTranslator,
    UnconfiguredOAuth,
    UnconfiguredSmartHome,
)
from sessions import SessionStore
from storage import StoreCorruptedError

from .bot import UpdateDispatcher
from .constants import PROJECT_ROOT
from .logging_setup import configure_optional_json_logging, log
from .transport import TelegramTransport


def resolve_runtime_path(path_value: str) -> Path:
    """Resolve configured paths relative to CHATPILOT_HOME or project root."""
    runtime_home = os.getenv("CHATPILOT_HOME", "").strip()
    base_dir = Path(runtime_home).expanduser().resolve() if runtime_home else PROJECT_ROOT
    path = Path(path_value).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path.resolve()


def main():
    """Start the ChatPilot Telegram bot."""
    config = load_config()

    # Resolve runtime paths relative to CHATPILOT_HOME (if set) or project root.
    config.session_storage_path = str(resolve_runtime_path(config.session_storage_path))
    config.dialog_storage_path = str(resolve_runtime_path(config.dialog_storage_path))
    configure_optional_json_logging(Path(config.session_storage_path).parent)

    # Validate required config
    if not config.telegram_bot_token:
        log.error("TELEGRAM_BOT_TOKEN is required. Set it in .env")
        return

    if not config.llm_provider:
        log.error(
            "No LLM provider configured. Set LLM_PROVIDER and the corresponding API key in .env"
        )
        return

    sessions = SessionStore(config.session_storage_path)
    dialogs = DialogHistoryStore(config.dialog_storage_path)
    try:
        sessions.load()
        dialogs.load()
    except StoreCorruptedError as e:
        log.error(f"Refusing to start on a corrupted snapshot: {e}")
        sys.exit(1)

    log.info("🧭 ChatPilot starting...")
    log.info(f"   Provider: {config.llm_provider} ({config.llm_model})")
    log.info(f"   Sessions: {config.session_storage_path} ({len(sessions)} chats)")
    log.info(f"   Dialogs: {config.dialog_storage_path}")
    log.info(f"   History size: {config.history_size} messages")
    log.info(f"   Persist every: {config.persist_interval_sec}s")
    log.info(f"   Max output: {config.max_output_tokens:,} tokens")
    if config.owner_id:
        log.info(f"   Owner: {config.owner_id}")
    if config.telegram_allowed_users:
        log.info(f"   Allowed users: {', '.join(config.telegram_allowed_users)}")
    else:
        log.info("   Allowed users: everyone")
    if not config.oauth_url:
        log.info("   Smart home: ❌ disabled (set OAUTH_URL)")

    generative = GenerativeClient(config)

    dispatcher: UpdateDispatcher | None = None

    async def _post_init(application: Application):
        application.job_queue.run_repeating(
            dispatcher.persist_job,
            interval=config.persist_interval_sec,
            first=config.persist_interval_sec,
            name="persist-stores",
        )

    async def _post_shutdown(application: Application):
        await dispatcher.debounce.close()
        if dispatcher.persist_stores():
            log.info("Final snapshot written")

    # Build Telegram application
    app = (
        Application.builder()
        .token(config.telegram_bot_token)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .concurrent_updates(True)
        .build()
    )

    dispatcher = UpdateDispatcher(
        config=config,
        sessions=sessions,
        dialogs=dialogs,
        transport=TelegramTransport(app.bot),
        translator=LLMTranslator(
            generative,
            target_language=config.translate_target_language,
            fallback_language=config.translate_fallback_language,
        ),
        activity=ActivitySuggester(),
        smart_home=UnconfiguredSmartHome(),
        generative=generative,
        oauth=UnconfiguredOAuth(),
    )

    # Register handlers
    app.add_handler(CommandHandler("start", dispatcher.handle_message))
    app.add_handler(CommandHandler("stop", dispatcher.handle_message))
    app.add_handler(MessageHandler(filters.TEXT, dispatcher.handle_message))
    app.add_handler(InlineQueryHandler(dispatcher.handle_inline_query))
    app.add_error_handler(dispatcher.on_error)

    log.info("🧭 ChatPilot is running! Press Ctrl+C to stop.")

    # Start polling
    # Longer Telegram long-poll timeout reduces idle request churn.
    app.run_polling(drop_pending_updates=True, timeout=30)


if __name__ == "__main__":
    main()
