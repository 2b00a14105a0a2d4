"""python-telegram-bot update adapters and framework error handling."""

from __future__ import annotations

import asyncio
import time

from telegram import Update
from telegram.error import Conflict, NetworkError, RetryAfter, TimedOut
from telegram.ext import ContextTypes

from storage import PersistenceError

from ..logging_setup import log


class DispatcherMessagingMixin:
    @staticmethod
    def _normalize_command(text: str) -> str:
        """Drop the @BotName suffix Telegram adds to commands in group chats."""
        if not text.startswith("/"):
            return text
        head, sep, rest = text.partition(" ")
        command = head.split("@", 1)[0]
        return f"{command}{sep}{rest}"

    async def handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not update.effective_user or not update.message or not update.effective_chat:
            return
        chat_id = update.effective_chat.id
        if not self.is_allowed(update.effective_user.id):
            log.info(f"[{chat_id}] Ignoring message from user {update.effective_user.id} (not allowed)")
            return

        text = self._normalize_command(update.message.text or "")
        await self.dispatch_text(chat_id, text, message_id=update.message.message_id)

    async def handle_inline_query(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.inline_query
        if query is None or not query.from_user:
            return
        if not self.is_allowed(query.from_user.id):
            return
        self.dispatch_inline(query.from_user.id, query.id, query.query)

    # ── Persistence ───────────────────────────────────────────

    def persist_stores(self) -> bool:
        """Flush both stores; failures are logged and retried on the next call."""
        ok = True
        for store in (self.sessions, self.dialogs):
            try:
                store.persist()
            except PersistenceError as e:
                ok = False
                log.error(f"Snapshot write failed, will retry: {e}")
        return ok

    async def persist_job(self, context: ContextTypes.DEFAULT_TYPE):
        await asyncio.to_thread(self.persist_stores)

    # ── Global Telegram Error Handler ────────────────────────

    async def on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE):
        """Handle Telegram framework errors without noisy unstructured tracebacks."""
        err = context.error
        session_id = "unknown"
        if isinstance(update, Update) and update.effective_chat:
            session_id = str(update.effective_chat.id)

        if isinstance(err, Conflict):
            now = time.time()
            # Polling conflicts repeat every few seconds; avoid log spam.
            if now - self._last_telegram_conflict_log_at >= 30:
                self._last_telegram_conflict_log_at = now
                log.warning(
                    f"[{session_id}] Telegram polling conflict: another bot instance is using getUpdates. "
                    "Keep only one `chatpilot` process active for this bot token."
                )
            return
        if isinstance(err, RetryAfter):
            log.warning(f"[{session_id}] Telegram rate limit: retry after {err.retry_after}s")
            return
        if isinstance(err, (TimedOut, NetworkError)):
            log.warning(f"[{session_id}] Telegram network issue: {err}")
            return

        log.exception(f"[{session_id}] Unhandled Telegram error", exc_info=err)
