"""Free-text handlers for the translate, AI chat, and AI settings modes."""

from __future__ import annotations

import re

from config import MAX_HISTORY_SIZE, MIN_HISTORY_SIZE
from dialogs import Message
from providers import ProviderError
from sessions import Mode

from ..constants import (
    AI_TIMEOUT_TEXT,
    AI_UNAVAILABLE_TEXT,
    GENERATIVE_PROMPT_TEXT,
    HISTORY_SIZE_CHANGED_TEXT,
    HISTORY_SIZE_INVALID_TEXT,
    MODEL_CHANGE_FAILED_TEXT,
    MODEL_CHANGED_TEXT,
    TRANSLATE_FAILED_TEXT,
    TRANSLATE_PROMPT_TEXT,
)
from ..logging_setup import log

_WHOLE_NUMBER_RE = re.compile(r"[0-9]+")


class DispatcherModesMixin:
    # ── Translating ───────────────────────────────────────────

    async def handle_translate_text(self, chat_id: int, text: str, message_id: int | None = None):
        self._set_state(chat_id, "translate", text, mode=Mode.TRANSLATING)
        if not text:
            await self._say(chat_id, TRANSLATE_PROMPT_TEXT)
            return

        try:
            translated = await self.translator.translate(text)
        except ProviderError as e:
            log.error(f"[{chat_id}] Translation failed: {e}")
            await self._say(chat_id, TRANSLATE_FAILED_TEXT, reply_to=message_id)
            return
        await self._say(chat_id, translated, reply_to=message_id)

    # ── Generative chat ───────────────────────────────────────

    def _make_room_for_turn(self, chat_id: int):
        """Start over when the next user/assistant pair would not fit."""
        length = self.dialogs.length(chat_id)
        if length + 2 > self.history_limit:
            self.dialogs.clear(chat_id)
            if length:
                log.info(f"[{chat_id}] Dialog history reached {length}/{self.history_limit}, starting fresh")

    def _enforce_history_limit(self, chat_id: int):
        length = self.dialogs.length(chat_id)
        if length > self.history_limit:
            self.dialogs.clear(chat_id)
            log.info(f"[{chat_id}] Dialog history exceeded {self.history_limit} messages, cleared")

    async def handle_generative_text(self, chat_id: int, text: str, message_id: int | None = None):
        self._set_state(chat_id, "generative", text, mode=Mode.GENERATIVE_CHAT)
        if not text:
            await self._say(chat_id, GENERATIVE_PROMPT_TEXT)
            return

        self._make_room_for_turn(chat_id)
        history = self.dialogs.get(chat_id)
        self.dialogs.append(chat_id, Message("user", text))

        try:
            result = await self.streamer.run(
                chat_id,
                self.generative.generate_stream(text, history),
                reply_to=message_id,
            )
        except ProviderError as e:
            log.error(f"[{chat_id}] Generative stream failed: {e}")
            await self._say(chat_id, AI_UNAVAILABLE_TEXT, reply_to=message_id)
            return
        finally:
            self._enforce_history_limit(chat_id)

        if result.timed_out:
            await self._say(chat_id, AI_TIMEOUT_TEXT, reply_to=message_id)
        elif result.empty:
            await self._say(chat_id, AI_UNAVAILABLE_TEXT, reply_to=message_id)
        else:
            self._log_bot_message(chat_id, result.text)

    # ── AI settings ───────────────────────────────────────────

    async def handle_change_model_text(self, chat_id: int, text: str, message_id: int | None = None):
        # One attempt per visit; the chat is back in the menu either way.
        self._set_state(chat_id, "change model", text)
        try:
            await self.generative.change_model(text)
        except ProviderError as e:
            log.warning(f"[{chat_id}] Model change to {text!r} failed: {e}")
            await self._say(chat_id, MODEL_CHANGE_FAILED_TEXT, reply_to=message_id)
        else:
            await self._say(chat_id, MODEL_CHANGED_TEXT, reply_to=message_id)
        await self._send_main_menu(chat_id)

    @staticmethod
    def parse_history_size(text: str) -> int | None:
        """Whole number within the allowed bounds, else None."""
        candidate = (text or "").strip()
        if not _WHOLE_NUMBER_RE.fullmatch(candidate):
            return None
        value = int(candidate)
        if value < MIN_HISTORY_SIZE or value > MAX_HISTORY_SIZE:
            return None
        return value

    async def handle_history_size_text(self, chat_id: int, text: str, message_id: int | None = None):
        size = self.parse_history_size(text)
        if size is None:
            self._set_state(chat_id, "history size rejected", text, mode=Mode.CHANGING_HISTORY_SIZE)
            await self._say(
                chat_id,
                HISTORY_SIZE_INVALID_TEXT.format(low=MIN_HISTORY_SIZE, high=MAX_HISTORY_SIZE),
                reply_to=message_id,
            )
            return

        previous = self.history_limit
        self.history_limit = size
        self._set_state(chat_id, "history size changed", text)
        log.info(f"[{chat_id}] History size changed: {previous} -> {size}")
        await self._say(chat_id, HISTORY_SIZE_CHANGED_TEXT.format(size=size), reply_to=message_id)
        await self._send_main_menu(chat_id)
