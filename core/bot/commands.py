"""Command handlers for /start and /stop, plus the menus they lead to."""

from __future__ import annotations

import asyncio
import time

from config import MAX_HISTORY_SIZE, MIN_HISTORY_SIZE
from providers import ProviderError
from sessions import Mode

from ..constants import (
    ACTIVITY_FAILED_TEXT,
    AI_SETTINGS_KEYBOARD,
    BUTTON_WHICH_MOVIE,
    CHANGE_HISTORY_SIZE_PROMPT_TEXT,
    CHANGE_MODEL_PROMPT_TEXT,
    GENERATIVE_PROMPT_TEXT,
    HISTORY_CLEARED_TEXT,
    INTRO_KEYBOARD,
    INTRO_LINES,
    INTRO_QUESTION_TEXT,
    MAIN_MENU_KEYBOARD,
    MENU_TEXT,
    MOVIES_MISSING_TEXT,
    MOVIES_TEXT,
    OWNER_ONLY_TEXT,
    STOP_TEXT,
    TRANSLATE_PROMPT_TEXT,
)
from ..logging_setup import log
from ..transport import LinkButton


class DispatcherCommandsMixin:
    async def cmd_start(self, chat_id: int, text: str, message_id: int | None = None):
        self._set_state(chat_id, "start", text)
        await self._say(chat_id, INTRO_QUESTION_TEXT, keyboard=INTRO_KEYBOARD)

    async def cmd_stop(self, chat_id: int, text: str, message_id: int | None = None):
        self._set_state(chat_id, "stop", text)
        await self._say(chat_id, STOP_TEXT)
        await self._send_main_menu(chat_id)

    # ── Menus ─────────────────────────────────────────────────

    async def _send_main_menu(self, chat_id: int):
        await self._say(chat_id, MENU_TEXT, keyboard=MAIN_MENU_KEYBOARD)

    def _keep_mode(self, chat_id: int, step: str, text: str):
        """Record a menu step without leaving the current mode."""
        self._set_state(chat_id, step, text, mode=self.sessions.get_mode(chat_id))

    async def show_main_menu(self, chat_id: int, text: str, message_id: int | None = None):
        self._keep_mode(chat_id, "menu", text)
        await self._send_main_menu(chat_id)

    async def show_intro(self, chat_id: int, text: str, message_id: int | None = None):
        self._keep_mode(chat_id, "intro", text)
        for delay, line in INTRO_LINES:
            await self._say(chat_id, line)
            if self.intro_delay_scale > 0:
                await asyncio.sleep(delay * self.intro_delay_scale)
        await self._send_main_menu(chat_id)

    async def suggest_activity(self, chat_id: int, text: str, message_id: int | None = None):
        self._keep_mode(chat_id, "activity", text)
        try:
            suggestion = await self.activity.suggest()
        except ProviderError as e:
            log.warning(f"[{chat_id}] Activity suggestion failed: {e}")
            await self._say(chat_id, ACTIVITY_FAILED_TEXT)
        else:
            await self._say(chat_id, suggestion)
        await self._send_main_menu(chat_id)

    async def send_movies_link(self, chat_id: int, text: str, message_id: int | None = None):
        self._keep_mode(chat_id, "movies", text)
        if not self.config.movies_url:
            log.warning(f"[{chat_id}] Movie link requested but MOVIES_URL is not set")
            await self._say(chat_id, MOVIES_MISSING_TEXT)
            await self._send_main_menu(chat_id)
            return
        await self._say(chat_id, MOVIES_TEXT, link=LinkButton(BUTTON_WHICH_MOVIE, self.config.movies_url))

    async def show_ai_settings(self, chat_id: int, text: str, message_id: int | None = None):
        if not await self._require_owner(chat_id, text):
            return
        self._keep_mode(chat_id, "ai settings", text)

        uptime = int(time.time() - self.start_time)
        hours, remainder = divmod(uptime, 3600)
        minutes, seconds = divmod(remainder, 60)
        model = getattr(self.generative, "model", "") or self.config.llm_model or "default"

        await self._say(
            chat_id,
            f"Provider: {self.config.llm_provider or 'none'}\n"
            f"Model: {model}\n"
            f"History size: {self.history_limit}\n"
            f"Messages in this chat: {self.dialogs.length(chat_id)}\n"
            f"Uptime: {hours}h {minutes}m {seconds}s",
            keyboard=AI_SETTINGS_KEYBOARD,
        )

    async def _require_owner(self, chat_id: int, text: str) -> bool:
        if self.is_owner(chat_id):
            return True
        log.info(f"[{chat_id}] Owner-only menu requested by another chat")
        self._keep_mode(chat_id, "owner only", text)
        await self._say(chat_id, OWNER_ONLY_TEXT)
        await self._send_main_menu(chat_id)
        return False

    # ── Mode entry ────────────────────────────────────────────

    async def enter_translate(self, chat_id: int, text: str, message_id: int | None = None):
        self._set_state(chat_id, "translate", text, mode=Mode.TRANSLATING)
        await self._say(chat_id, TRANSLATE_PROMPT_TEXT)

    async def enter_generative(self, chat_id: int, text: str, message_id: int | None = None):
        self._set_state(chat_id, "generative", text, mode=Mode.GENERATIVE_CHAT)
        await self._say(chat_id, GENERATIVE_PROMPT_TEXT)

    async def enter_change_model(self, chat_id: int, text: str, message_id: int | None = None):
        if not await self._require_owner(chat_id, text):
            return
        self._set_state(chat_id, "change model", text, mode=Mode.CHANGING_MODEL)
        await self._say(chat_id, CHANGE_MODEL_PROMPT_TEXT)

    async def enter_change_history_size(self, chat_id: int, text: str, message_id: int | None = None):
        if not await self._require_owner(chat_id, text):
            return
        self._set_state(chat_id, "change history size", text, mode=Mode.CHANGING_HISTORY_SIZE)
        await self._say(chat_id, self._history_size_prompt())

    def _history_size_prompt(self) -> str:
        return CHANGE_HISTORY_SIZE_PROMPT_TEXT.format(
            low=MIN_HISTORY_SIZE, high=MAX_HISTORY_SIZE, current=self.history_limit
        )

    async def clear_ai_history(self, chat_id: int, text: str, message_id: int | None = None):
        if not await self._require_owner(chat_id, text):
            return
        self._keep_mode(chat_id, "clear history", text)
        self.dialogs.clear(chat_id)
        log.info(f"[{chat_id}] Dialog history cleared on request")
        await self._say(chat_id, HISTORY_CLEARED_TEXT, keyboard=AI_SETTINGS_KEYBOARD)
