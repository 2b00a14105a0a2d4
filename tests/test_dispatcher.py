"""Tests for UpdateDispatcher: routing precedence, mode handlers and menus."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from telegram.error import Conflict, RetryAfter, TimedOut

from dialogs import Message
from providers import ProviderError
from sessions import Mode
from storage import PersistenceError

from core.constants import (
    AI_TIMEOUT_TEXT,
    AI_UNAVAILABLE_TEXT,
    AUTH_SUCCESS_TEXT,
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
    DEVICE_FAILED_TEXT,
    HISTORY_CLEARED_TEXT,
    INLINE_ACTIVITY_TITLE,
    INLINE_MOVIES_TITLE,
    INLINE_TRANSLATE_TITLE,
    INTRO_KEYBOARD,
    INTRO_LINES,
    INTRO_QUESTION_TEXT,
    MAIN_MENU_KEYBOARD,
    MENU_TEXT,
    MODEL_CHANGE_FAILED_TEXT,
    MODEL_CHANGED_TEXT,
    MOVIES_MISSING_TEXT,
    MOVIES_TEXT,
    OWNER_ONLY_TEXT,
    SORRY_TEXT,
    STOP_TEXT,
    TRANSLATE_FAILED_TEXT,
)
from core.transport import LinkButton

CHAT = 7


def _flag_count(sessions, chat_id=CHAT) -> int:
    return sum(1 for value in sessions.get_mode_flags(chat_id) if value)


# ── Commands and menus ─────────────────────────────────────


async def test_start_asks_about_intro(dispatcher, sessions, transport):
    route = await dispatcher.dispatch_text(CHAT, "/start", message_id=1)

    assert route.name == "start"
    assert sessions.get_mode(CHAT) is Mode.IDLE
    assert sessions.get(CHAT).current_step == "start"
    assert transport.last.text == INTRO_QUESTION_TEXT
    assert transport.last.keyboard == INTRO_KEYBOARD


async def test_print_intro_then_menu(dispatcher, transport):
    await dispatcher.dispatch_text(CHAT, BUTTON_PRINT_INTRO)

    assert transport.texts() == [line for _, line in INTRO_LINES] + [MENU_TEXT]
    assert transport.last.keyboard == MAIN_MENU_KEYBOARD


async def test_skip_intro_shows_menu(dispatcher, transport):
    await dispatcher.dispatch_text(CHAT, BUTTON_SKIP_INTRO)
    assert transport.texts() == [MENU_TEXT]


async def test_what_to_do_suggests_activity(dispatcher, transport, activity):
    await dispatcher.dispatch_text(CHAT, BUTTON_WHAT_TO_DO)

    activity.suggest.assert_awaited_once()
    assert transport.texts() == ["Go for a walk", MENU_TEXT]


async def test_which_movie_sends_link(dispatcher, config, sessions, transport):
    config.movies_url = "https://movies.example.com/"
    await dispatcher.dispatch_text(CHAT, BUTTON_TRANSLATE)

    route = await dispatcher.dispatch_text(CHAT, BUTTON_WHICH_MOVIE)

    assert route.name == "which_movie"
    assert transport.last.text == MOVIES_TEXT
    assert transport.last.link == LinkButton(BUTTON_WHICH_MOVIE, "https://movies.example.com/")
    assert sessions.get_mode(CHAT) is Mode.TRANSLATING


async def test_which_movie_without_url_explains(dispatcher, transport):
    await dispatcher.dispatch_text(CHAT, BUTTON_WHICH_MOVIE)

    assert transport.texts() == [MOVIES_MISSING_TEXT, MENU_TEXT]
    assert all(m.link is None for m in transport.sent)


async def test_unrecognized_text_gets_apology(dispatcher, sessions, transport):
    route = await dispatcher.dispatch_text(CHAT, "make me a sandwich", message_id=4)

    assert route.name == "fallback"
    assert transport.last.text == SORRY_TEXT
    assert transport.last.reply_to == 4
    assert sessions.get_mode(CHAT) is Mode.IDLE
    assert sessions.get(CHAT).last_user_message == "make me a sandwich"


async def test_menu_captions_keep_the_current_mode(dispatcher, sessions):
    await dispatcher.dispatch_text(CHAT, BUTTON_TRANSLATE)
    route = await dispatcher.dispatch_text(CHAT, BUTTON_PRINT_MENU)

    assert route.name == "main_menu"
    assert sessions.get_mode(CHAT) is Mode.TRANSLATING
    assert sessions.get(CHAT).current_step == "menu"


async def test_ai_settings_shows_current_limit(dispatcher, transport):
    await dispatcher.dispatch_text(CHAT, BUTTON_AI_SETTINGS)
    assert "History size: 20" in transport.last.text


# ── Translate scenario ─────────────────────────────────────


async def test_translate_scenario(dispatcher, sessions, transport, translator):
    await dispatcher.dispatch_text(CHAT, "/start")
    assert sessions.get_mode(CHAT) is Mode.IDLE

    await dispatcher.dispatch_text(CHAT, BUTTON_TRANSLATE)
    assert sessions.get_mode(CHAT) is Mode.TRANSLATING

    route = await dispatcher.dispatch_text(CHAT, "hello", message_id=11)
    assert route.name == "mode:translating"
    assert translator.calls == ["hello"]
    assert transport.last.text == "translated:hello"
    assert transport.last.reply_to == 11
    assert sessions.get_mode(CHAT) is Mode.TRANSLATING

    await dispatcher.dispatch_text(CHAT, "/stop")
    assert sessions.get_mode(CHAT) is Mode.IDLE
    assert transport.texts()[-2:] == [STOP_TEXT, MENU_TEXT]
    assert transport.last.keyboard == MAIN_MENU_KEYBOARD


async def test_translate_failure_keeps_mode(dispatcher, sessions, transport, translator):
    await dispatcher.dispatch_text(CHAT, BUTTON_TRANSLATE)
    translator.error = ProviderError("translation backend down")

    await dispatcher.dispatch_text(CHAT, "hello")

    assert transport.last.text == TRANSLATE_FAILED_TEXT
    assert sessions.get_mode(CHAT) is Mode.TRANSLATING


async def test_unexpected_handler_error_becomes_apology(dispatcher, transport, translator):
    await dispatcher.dispatch_text(CHAT, BUTTON_TRANSLATE)
    translator.error = RuntimeError("boom")

    await dispatcher.dispatch_text(CHAT, "hello")

    assert transport.last.text == SORRY_TEXT
    assert "boom" not in " ".join(transport.texts())


# ── Routing precedence ─────────────────────────────────────


@pytest.mark.parametrize(
    "mode, expected",
    [
        (Mode.IDLE, "fallback"),
        (Mode.TRANSLATING, "mode:translating"),
        (Mode.GENERATIVE_CHAT, "mode:generative_chat"),
        (Mode.CHANGING_MODEL, "mode:changing_model"),
        (Mode.CHANGING_HISTORY_SIZE, "mode:changing_history_size"),
    ],
)
def test_free_text_follows_mode(dispatcher, sessions, mode, expected):
    sessions.upsert(CHAT, "setup", mode=mode)
    assert dispatcher.route_for(CHAT, "some free text").name == expected


@pytest.mark.parametrize("mode", list(Mode))
def test_literals_win_over_any_mode(dispatcher, sessions, mode):
    sessions.upsert(CHAT, "setup", mode=mode)

    assert dispatcher.route_for(CHAT, "/start").name == "start"
    assert dispatcher.route_for(CHAT, "/stop").name == "stop"
    assert dispatcher.route_for(CHAT, BUTTON_TRANSLATE).name == "enter_translate"
    assert dispatcher.route_for(CHAT, BUTTON_TALK_TO_AI).name == "enter_generative"
    assert dispatcher.route_for(CHAT, BUTTON_CHANGE_MODEL).name == "enter_change_model"
    assert dispatcher.route_for(CHAT, BUTTON_CHANGE_HISTORY_SIZE).name == "enter_change_history_size"


def test_route_for_does_not_touch_sessions(dispatcher, sessions):
    dispatcher.route_for(CHAT, "/start")
    assert CHAT not in sessions


async def test_modes_stay_mutually_exclusive(dispatcher, sessions):
    inputs = [
        "/start",
        BUTTON_TRANSLATE,
        "hi",
        BUTTON_TALK_TO_AI,
        "question",
        BUTTON_CHANGE_MODEL,
        BUTTON_CHANGE_HISTORY_SIZE,
        "oops",
        BUTTON_TRANSLATE,
        BUTTON_PRINT_MENU,
        "/stop",
    ]
    for text in inputs:
        await dispatcher.dispatch_text(CHAT, text)
        assert _flag_count(sessions) <= 1


# ── Generative chat ────────────────────────────────────────


async def test_generative_scenario(dispatcher, sessions, dialogs, transport, generative):
    await dispatcher.dispatch_text(CHAT, BUTTON_TALK_TO_AI)
    assert sessions.get_mode(CHAT) is Mode.GENERATIVE_CHAT

    route = await dispatcher.dispatch_text(CHAT, "what is up?", message_id=5)

    assert route.name == "mode:generative_chat"
    placeholder = transport.last
    assert placeholder.reply_to == 5
    assert transport.edits[-1] == (CHAT, placeholder.message_id, "Hello world")
    assert dialogs.get(CHAT) == [Message("user", "what is up?"), Message("assistant", "Hello world")]
    # The provider sees the history before the new question.
    assert generative.histories == [[]]
    assert sessions.get_mode(CHAT) is Mode.GENERATIVE_CHAT


async def test_generative_passes_prior_turns(dispatcher, generative):
    await dispatcher.dispatch_text(CHAT, BUTTON_TALK_TO_AI)
    await dispatcher.dispatch_text(CHAT, "first")
    await dispatcher.dispatch_text(CHAT, "second")

    assert generative.histories[1] == [Message("user", "first"), Message("assistant", "Hello world")]


async def test_history_is_cleared_not_trimmed(dispatcher, dialogs, generative):
    dispatcher.history_limit = 4
    await dispatcher.dispatch_text(CHAT, BUTTON_TALK_TO_AI)

    lengths = []
    for question in ("one", "two", "three"):
        await dispatcher.dispatch_text(CHAT, question)
        lengths.append(dialogs.length(CHAT))

    assert lengths == [2, 4, 2]
    assert generative.histories[2] == []
    assert dialogs.get(CHAT)[0] == Message("user", "three")


async def test_history_limit_of_one_never_exceeded(dispatcher, dialogs):
    dispatcher.history_limit = 1
    await dispatcher.dispatch_text(CHAT, BUTTON_TALK_TO_AI)
    await dispatcher.dispatch_text(CHAT, "hello")

    assert dialogs.length(CHAT) <= 1


async def test_generative_failure_apologizes(dispatcher, sessions, dialogs, transport, generative):
    generative.error = ProviderError("model overloaded")
    await dispatcher.dispatch_text(CHAT, BUTTON_TALK_TO_AI)

    await dispatcher.dispatch_text(CHAT, "hello")

    assert transport.last.text == AI_UNAVAILABLE_TEXT
    assert sessions.get_mode(CHAT) is Mode.GENERATIVE_CHAT
    assert all(m.role == "user" for m in dialogs.get(CHAT))


async def test_empty_stream_apologizes(dispatcher, dialogs, transport, generative):
    generative.fragments = []
    await dispatcher.dispatch_text(CHAT, BUTTON_TALK_TO_AI)

    await dispatcher.dispatch_text(CHAT, "hello")

    assert transport.last.text == AI_UNAVAILABLE_TEXT
    assert transport.edits == []
    assert dialogs.get(CHAT) == [Message("user", "hello")]


async def test_stream_timeout_apologizes_and_keeps_mode(dispatcher, sessions, dialogs, transport, generative):
    generative.stall = 10
    dispatcher.streamer.timeout = 0.1
    await dispatcher.dispatch_text(CHAT, BUTTON_TALK_TO_AI)

    await dispatcher.dispatch_text(CHAT, "tell me a long story", message_id=9)

    assert transport.last.text == AI_TIMEOUT_TEXT
    assert transport.last.reply_to == 9
    # The partial answer stays visible but is not remembered.
    assert transport.edits[-1][2] == "Hello world"
    assert dialogs.get(CHAT) == [Message("user", "tell me a long story")]
    assert sessions.get_mode(CHAT) is Mode.GENERATIVE_CHAT


async def test_clear_history_keeps_mode(dispatcher, sessions, dialogs, transport):
    await dispatcher.dispatch_text(CHAT, BUTTON_TALK_TO_AI)
    await dispatcher.dispatch_text(CHAT, "hello")
    assert dialogs.length(CHAT) == 2

    await dispatcher.dispatch_text(CHAT, BUTTON_CLEAR_HISTORY)

    assert dialogs.length(CHAT) == 0
    assert transport.last.text == HISTORY_CLEARED_TEXT
    assert sessions.get_mode(CHAT) is Mode.GENERATIVE_CHAT


# ── AI settings ────────────────────────────────────────────


async def test_history_size_scenario(dispatcher, sessions, transport):
    await dispatcher.dispatch_text(CHAT, BUTTON_CHANGE_HISTORY_SIZE)
    assert sessions.get_mode(CHAT) is Mode.CHANGING_HISTORY_SIZE

    await dispatcher.dispatch_text(CHAT, "500")
    assert sessions.get_mode(CHAT) is Mode.CHANGING_HISTORY_SIZE
    assert dispatcher.history_limit == 20
    assert "1 to 200" in transport.last.text

    await dispatcher.dispatch_text(CHAT, "50")
    assert dispatcher.history_limit == 50
    assert sessions.get_mode(CHAT) is Mode.IDLE
    assert transport.last.text == MENU_TEXT


@pytest.mark.parametrize(
    "text, expected",
    [("1", 1), ("200", 200), (" 42 ", 42), ("0", None), ("201", None), ("-5", None), ("1_0", None), ("ten", None), ("", None)],
)
def test_parse_history_size(dispatcher, text, expected):
    assert dispatcher.parse_history_size(text) == expected


async def test_change_model_success(dispatcher, sessions, transport, generative):
    await dispatcher.dispatch_text(CHAT, BUTTON_CHANGE_MODEL)
    assert sessions.get_mode(CHAT) is Mode.CHANGING_MODEL

    await dispatcher.dispatch_text(CHAT, "gpt-4o")

    assert generative.models == ["gpt-4o"]
    assert transport.texts()[-2:] == [MODEL_CHANGED_TEXT, MENU_TEXT]
    assert sessions.get_mode(CHAT) is Mode.IDLE


async def test_change_model_failure_returns_to_idle(dispatcher, sessions, transport, generative):
    await dispatcher.dispatch_text(CHAT, BUTTON_CHANGE_MODEL)
    await dispatcher.dispatch_text(CHAT, "no-such-model")

    assert generative.models == []
    assert transport.texts()[-2:] == [MODEL_CHANGE_FAILED_TEXT, MENU_TEXT]
    assert sessions.get_mode(CHAT) is Mode.IDLE


async def test_owner_only_menus(dispatcher, config, sessions, transport):
    config.owner_id = 42

    await dispatcher.dispatch_text(CHAT, BUTTON_CHANGE_MODEL)
    assert OWNER_ONLY_TEXT in transport.texts()
    assert sessions.get_mode(CHAT) is Mode.IDLE

    await dispatcher.dispatch_text(42, BUTTON_CHANGE_MODEL)
    assert sessions.get_mode(42) is Mode.CHANGING_MODEL


# ── Smart home ─────────────────────────────────────────────


async def test_smart_home_without_token_shows_auth_link(dispatcher, transport):
    await dispatcher.dispatch_text(CHAT, BUTTON_SMART_HOME)

    link = transport.last.link
    assert link is not None
    assert link.url == "https://auth.example.com/authorize?client_id=chatpilot&state=7"


async def test_smart_home_fetches_devices_after_oauth(dispatcher, sessions, transport, authorized_oauth):
    await dispatcher.dispatch_text(CHAT, BUTTON_SMART_HOME)

    assert AUTH_SUCCESS_TEXT in transport.texts()
    assert sessions.get_token(CHAT) == "tok-1"
    assert set(sessions.get_devices(CHAT)) == {"Lamp", "Kettle"}
    assert transport.last.keyboard == [
        ["Turn off: Kettle"],
        ["Turn on: Lamp"],
        [BUTTON_SMART_HOME_INFO, BUTTON_PRINT_MENU],
    ]


async def test_device_toggle_flips_cached_state(dispatcher, sessions, transport, smart_home, authorized_oauth):
    await dispatcher.dispatch_text(CHAT, BUTTON_SMART_HOME)

    route = await dispatcher.dispatch_text(CHAT, "Turn on: Lamp")

    assert route.name == "device_toggle"
    assert smart_home.set_calls == [("tok-1", "dev-1", True)]
    assert sessions.get_devices(CHAT)["Lamp"].actual_state is True
    assert "Turned on: Lamp" in transport.texts()


async def test_device_toggle_beats_active_mode(dispatcher, sessions, translator, smart_home, authorized_oauth):
    await dispatcher.dispatch_text(CHAT, BUTTON_SMART_HOME)
    await dispatcher.dispatch_text(CHAT, BUTTON_TRANSLATE)

    route = await dispatcher.dispatch_text(CHAT, "Turn off: Kettle")

    assert route.name == "device_toggle"
    assert translator.calls == []
    assert smart_home.set_calls == [("tok-1", "dev-2", False)]
    assert sessions.get_mode(CHAT) is Mode.TRANSLATING


async def test_unknown_device_caption_is_free_text(dispatcher, translator, authorized_oauth):
    await dispatcher.dispatch_text(CHAT, BUTTON_SMART_HOME)
    await dispatcher.dispatch_text(CHAT, BUTTON_TRANSLATE)

    route = await dispatcher.dispatch_text(CHAT, "Turn on: Heater")

    assert route.name == "mode:translating"
    assert translator.calls == ["Turn on: Heater"]


async def test_device_toggle_failure_keeps_cached_state(dispatcher, sessions, transport, smart_home, authorized_oauth):
    await dispatcher.dispatch_text(CHAT, BUTTON_SMART_HOME)
    smart_home.error = ProviderError("device offline")

    await dispatcher.dispatch_text(CHAT, "Turn on: Lamp")

    assert DEVICE_FAILED_TEXT in transport.texts()
    assert sessions.get_devices(CHAT)["Lamp"].actual_state is False


async def test_smart_home_info_lists_devices(dispatcher, transport, authorized_oauth):
    await dispatcher.dispatch_text(CHAT, BUTTON_SMART_HOME)
    await dispatcher.dispatch_text(CHAT, BUTTON_SMART_HOME_INFO)

    assert "Kettle: on (id dev-2)\nLamp: off (id dev-1)" in transport.texts()


# ── Inline queries ─────────────────────────────────────────


async def test_inline_burst_makes_one_translation(dispatcher, transport, translator):
    tasks = []
    for query_id, text in (("q1", "a"), ("q2", "ab"), ("q3", "abc")):
        tasks.append(dispatcher.dispatch_inline(9, query_id, text))
        await asyncio.sleep(0.01)
    await tasks[-1]

    assert translator.calls == ["abc"]
    assert len(transport.inline_answers) == 1
    query_id, results = transport.inline_answers[0]
    assert query_id == "q3"
    assert results[0].title == INLINE_TRANSLATE_TITLE
    assert results[0].text == "translated:abc"


async def test_empty_inline_query_suggests_activity(dispatcher, transport, translator):
    await dispatcher.dispatch_inline(9, "q1", "   ")

    assert translator.calls == []
    _, results = transport.inline_answers[0]
    assert results[0].title == INLINE_ACTIVITY_TITLE
    assert results[0].text == "Go for a walk"


async def test_empty_inline_query_offers_movies(dispatcher, config, transport, activity):
    config.movies_url = "https://movies.example.com/"
    activity.suggest.side_effect = ProviderError("bored")

    await dispatcher.dispatch_inline(9, "q1", "")

    _, results = transport.inline_answers[0]
    assert [r.title for r in results] == [INLINE_MOVIES_TITLE]
    assert results[0].link.url == "https://movies.example.com/"


async def test_inline_failure_sends_nothing(dispatcher, transport, translator):
    translator.error = ProviderError("down")
    await dispatcher.dispatch_inline(9, "q1", "hello")
    assert transport.inline_answers == []


# ── Telegram adapters ──────────────────────────────────────


def _update(user_id: int, chat_id: int, text: str, message_id: int = 1):
    update = MagicMock()
    update.effective_user.id = user_id
    update.effective_chat.id = chat_id
    update.message.text = text
    update.message.message_id = message_id
    return update


async def test_handle_message_strips_bot_name(dispatcher, transport):
    await dispatcher.handle_message(_update(CHAT, CHAT, "/start@ChatPilotBot"), MagicMock())
    assert transport.last.text == INTRO_QUESTION_TEXT


async def test_handle_message_respects_allowlist(dispatcher, config, transport):
    config.telegram_allowed_users = ["1"]
    await dispatcher.handle_message(_update(2, 2, "/start"), MagicMock())
    assert transport.sent == []


def test_normalize_command(dispatcher):
    assert dispatcher._normalize_command("/stop@Bot") == "/stop"
    assert dispatcher._normalize_command("/start@Bot payload") == "/start payload"
    assert dispatcher._normalize_command("hello@there") == "hello@there"


@pytest.mark.parametrize("error", [Conflict("terminated by other getUpdates"), RetryAfter(5), TimedOut()])
async def test_on_error_swallows_framework_noise(dispatcher, error):
    context = MagicMock()
    context.error = error
    await dispatcher.on_error(None, context)


def test_persist_stores_reports_failures(dispatcher, sessions, config, monkeypatch):
    def _fail():
        raise PersistenceError("disk full")

    monkeypatch.setattr(sessions, "persist", _fail)

    assert dispatcher.persist_stores() is False
    # The other store is still written.
    assert open(config.dialog_storage_path, encoding="utf-8").read().strip() == "{}"


def test_persist_stores_writes_both_files(dispatcher, sessions, config):
    sessions.upsert(CHAT, "start")
    assert dispatcher.persist_stores() is True
    assert '"7"' in open(config.session_storage_path, encoding="utf-8").read()
