"""Dispatcher wiring state and shared utility methods."""

from __future__ import annotations

import time

from config import Config, clamp_history_size
from dialogs import DialogHistoryStore
from providers import (
    ActivityProvider,
    GenerativeProvider,
    OAuthTokenProvider,
    SmartHomeProvider,
    TranslationProvider,
)
from sessions import Mode, SessionStore, UserSession

from ..debounce import DebounceResolver
from ..logging_setup import log
from ..streaming import StreamAggregator
from ..transport import ChatTransport, Keyboard, LinkButton


class DispatcherBaseMixin:
    def __init__(
        self,
        config: Config,
        sessions: SessionStore,
        dialogs: DialogHistoryStore,
        transport: ChatTransport,
        translator: TranslationProvider,
        activity: ActivityProvider,
        smart_home: SmartHomeProvider,
        generative: GenerativeProvider,
        oauth: OAuthTokenProvider,
    ):
        self.config = config
        self.sessions = sessions
        self.dialogs = dialogs
        self.transport = transport
        self.translator = translator
        self.activity = activity
        self.smart_home = smart_home
        self.generative = generative
        self.oauth = oauth
        self.start_time = time.time()

        # Maximum dialog length shared by every chat; changed from the AI settings menu.
        self.history_limit = clamp_history_size(config.history_size)
        # Pauses between intro lines; tests set this to 0.
        self.intro_delay_scale = 1.0

        self.debounce = DebounceResolver(quiet_period=config.inline_debounce_sec)
        self.streamer = StreamAggregator(
            transport,
            dialogs,
            tick_interval=config.stream_tick_sec,
            timeout=config.stream_timeout_sec,
        )
        # Throttle repeated Telegram polling conflict warnings.
        self._last_telegram_conflict_log_at: float = 0.0

    def is_allowed(self, user_id: int | None) -> bool:
        """Check if this user is in the allowlist (empty = allow all)."""
        if not self.config.telegram_allowed_users:
            return True
        return str(user_id) in self.config.telegram_allowed_users

    def is_owner(self, chat_id: int) -> bool:
        """Owner-only menus are open to everyone when OWNER_ID is unset."""
        if not self.config.owner_id:
            return True
        return chat_id == self.config.owner_id

    @staticmethod
    def _trim_for_log(text: str, max_chars: int = 8000) -> str:
        if len(text) <= max_chars:
            return text
        return text[:max_chars] + "\n...[truncated]"

    def _log_user_message(self, chat_id: int, text: str):
        log.info(f"[{chat_id}] User: {self._trim_for_log(text)}")

    def _log_bot_message(self, chat_id: int, text: str):
        log.info(f"[{chat_id}] Bot: {self._trim_for_log(text)}")

    def _set_state(
        self,
        chat_id: int,
        step: str,
        text: str = "",
        mode: Mode = Mode.IDLE,
    ) -> UserSession:
        return self.sessions.upsert(chat_id, step, last_user_message=text, mode=mode)

    async def _say(
        self,
        chat_id: int,
        text: str,
        *,
        reply_to: int | None = None,
        keyboard: Keyboard | None = None,
        link: LinkButton | None = None,
    ) -> int | None:
        """Send to the chat and mirror the same content to terminal logs."""
        self._log_bot_message(chat_id, text)
        return await self.transport.send_message(
            chat_id, text, reply_to=reply_to, keyboard=keyboard, link=link
        )
