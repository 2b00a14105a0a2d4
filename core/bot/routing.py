"""Ordered routing rules that map an incoming text to its handler."""

from __future__ import annotations

from typing import Awaitable, Callable, NamedTuple

from sessions import Mode, SessionNotFound

from ..constants import (
    BUTTON_AI_SETTINGS,
    BUTTON_CHANGE_HISTORY_SIZE,
    BUTTON_CHANGE_MODEL,
    BUTTON_CLEAR_HISTORY,
    BUTTON_PRINT_INTRO,
    BUTTON_PRINT_MENU,
    BUTTON_SKIP_INTRO,
    BUTTON_SMART_HOME,
    BUTTON_SMART_HOME_INFO,
    BUTTON_TALK_TO_AI,
    BUTTON_TRANSLATE,
    BUTTON_WHAT_TO_DO,
    BUTTON_WHICH_MOVIE,
    COMMAND_START,
    COMMAND_STOP,
    DEVICE_TURN_OFF_PREFIX,
    DEVICE_TURN_ON_PREFIX,
    SORRY_TEXT,
)
from ..logging_setup import log

TextHandler = Callable[[int, str, "int | None"], Awaitable[None]]


class Route(NamedTuple):
    name: str
    handler: TextHandler


class DispatcherRoutingMixin:
    """
    Routing precedence, first match wins:
    1. Exact commands and menu captions
    2. Device toggle captions for a device the chat knows about
    3. The chat's active mode
    4. Fallback apology
    """

    def _literal_routes(self) -> dict[str, Route]:
        return {
            COMMAND_START: Route("start", self.cmd_start),
            COMMAND_STOP: Route("stop", self.cmd_stop),
            BUTTON_PRINT_INTRO: Route("print_intro", self.show_intro),
            BUTTON_SKIP_INTRO: Route("skip_intro", self.show_main_menu),
            BUTTON_PRINT_MENU: Route("main_menu", self.show_main_menu),
            BUTTON_WHAT_TO_DO: Route("what_to_do", self.suggest_activity),
            BUTTON_TRANSLATE: Route("enter_translate", self.enter_translate),
            BUTTON_TALK_TO_AI: Route("enter_generative", self.enter_generative),
            BUTTON_AI_SETTINGS: Route("ai_settings", self.show_ai_settings),
            BUTTON_CHANGE_MODEL: Route("enter_change_model", self.enter_change_model),
            BUTTON_CHANGE_HISTORY_SIZE: Route("enter_change_history_size", self.enter_change_history_size),
            BUTTON_CLEAR_HISTORY: Route("clear_history", self.clear_ai_history),
            BUTTON_SMART_HOME: Route("smart_home", self.open_smart_home),
            BUTTON_SMART_HOME_INFO: Route("smart_home_info", self.show_smart_home_info),
            BUTTON_WHICH_MOVIE: Route("which_movie", self.send_movies_link),
        }

    def _mode_routes(self) -> dict[Mode, Route]:
        return {
            Mode.CHANGING_MODEL: Route("mode:changing_model", self.handle_change_model_text),
            Mode.CHANGING_HISTORY_SIZE: Route("mode:changing_history_size", self.handle_history_size_text),
            Mode.TRANSLATING: Route("mode:translating", self.handle_translate_text),
            Mode.GENERATIVE_CHAT: Route("mode:generative_chat", self.handle_generative_text),
        }

    @staticmethod
    def parse_device_toggle(text: str) -> tuple[str, bool] | None:
        """Return (device name, wants_on) for a toggle caption, else None."""
        for prefix, wants_on in ((DEVICE_TURN_ON_PREFIX, True), (DEVICE_TURN_OFF_PREFIX, False)):
            if text.startswith(prefix):
                name = text[len(prefix):].strip()
                if name:
                    return name, wants_on
        return None

    def _match_literal(self, chat_id: int, text: str) -> Route | None:
        return self._literal_routes().get(text)

    def _match_device_toggle(self, chat_id: int, text: str) -> Route | None:
        parsed = self.parse_device_toggle(text)
        if parsed is None:
            return None
        try:
            devices = self.sessions.get_devices(chat_id)
        except SessionNotFound:
            return None
        if parsed[0] not in devices:
            return None
        return Route("device_toggle", self.toggle_device)

    def _match_mode(self, chat_id: int, text: str) -> Route | None:
        mode = self.sessions.get_mode(chat_id)
        if mode is Mode.IDLE:
            return None
        return self._mode_routes().get(mode)

    def route_for(self, chat_id: int, text: str) -> Route:
        """Pick the handler for text without running it."""
        for matcher in (self._match_literal, self._match_device_toggle, self._match_mode):
            route = matcher(chat_id, text)
            if route is not None:
                return route
        return Route("fallback", self.handle_unknown)

    async def dispatch_text(
        self,
        chat_id: int,
        text: str,
        *,
        message_id: int | None = None,
    ) -> Route:
        text = (text or "").strip()
        self._log_user_message(chat_id, text)
        route = self.route_for(chat_id, text)
        log.debug(f"[{chat_id}] Route: {route.name}")
        try:
            await route.handler(chat_id, text, message_id)
        except Exception:
            log.exception(f"[{chat_id}] Route {route.name} failed")
            await self._say(chat_id, SORRY_TEXT)
        return route

    async def handle_unknown(self, chat_id: int, text: str, message_id: int | None = None):
        self._set_state(chat_id, "unknown", text)
        await self._say(chat_id, SORRY_TEXT, reply_to=message_id)
