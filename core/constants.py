"""Shared constants used by the ChatPilot bot."""

from __future__ import annotations

from pathlib import Path

# Project root for resolving runtime-relative paths reliably.
PROJECT_ROOT = Path(__file__).resolve().parent.parent

EMOJI_BICEPS = "\U0001F4AA"
_BUTTON_START = "▶  "
_BUTTON_END = "  ◀"


def _button(label: str) -> str:
    return f"{_BUTTON_START}{label}{_BUTTON_END}"


COMMAND_START = "/start"
COMMAND_STOP = "/stop"

# Reply-keyboard captions. Incoming text is matched against these exactly.
BUTTON_PRINT_INTRO = _button("Tell me about yourself")
BUTTON_SKIP_INTRO = _button("Skip intro")
BUTTON_PRINT_MENU = _button("Show main menu")
BUTTON_WHAT_TO_DO = _button("What should I do?")
BUTTON_TRANSLATE = _button("Translate text")
BUTTON_SMART_HOME = _button("Smart home")
BUTTON_SMART_HOME_INFO = _button("Show smart home info")
BUTTON_TALK_TO_AI = _button("Talk to AI")
BUTTON_AI_SETTINGS = _button("AI settings")
BUTTON_CHANGE_MODEL = _button("Change model")
BUTTON_CHANGE_HISTORY_SIZE = _button("Change history size")
BUTTON_CLEAR_HISTORY = _button("Clear AI history")
BUTTON_WHICH_MOVIE = _button("Which movie to watch")

DEVICE_TURN_ON_PREFIX = "Turn on: "
DEVICE_TURN_OFF_PREFIX = "Turn off: "

MAIN_MENU_KEYBOARD = (
    (BUTTON_WHAT_TO_DO, BUTTON_TRANSLATE),
    (BUTTON_TALK_TO_AI, BUTTON_AI_SETTINGS),
    (BUTTON_SMART_HOME, BUTTON_WHICH_MOVIE),
)
INTRO_KEYBOARD = ((BUTTON_PRINT_INTRO, BUTTON_SKIP_INTRO),)
AI_SETTINGS_KEYBOARD = (
    (BUTTON_CHANGE_MODEL, BUTTON_CHANGE_HISTORY_SIZE),
    (BUTTON_CLEAR_HISTORY, BUTTON_PRINT_MENU),
)

# ── Texts ─────────────────────────────────────────────────────

INTRO_QUESTION_TEXT = (
    "This is the welcome intro that describes what the bot can do, "
    "but you can skip it. What do you choose?"
)
INTRO_LINES = (
    (1.0, "Hi! For now I'm a small bot project."),
    (2.0, "But my abilities keep growing."),
    (1.0, EMOJI_BICEPS),
)
MENU_TEXT = "Menu ↓"
SMART_MENU_TEXT = "Choose an item ↓"
STOP_TEXT = "Back to the main menu."
SORRY_TEXT = "I can't do that yet, but I'm learning."
OWNER_ONLY_TEXT = "Sorry, only my owner has access to this menu."

TRANSLATE_PROMPT_TEXT = "You are in translation mode.\nSend text to translate or /stop to exit."
GENERATIVE_PROMPT_TEXT = "You are chatting with the AI.\nAsk your question or /stop to exit."
CHANGE_MODEL_PROMPT_TEXT = (
    "You are changing the generative model.\n"
    "Send the model name, for example deepseek/deepseek-chat-v3-0324:free, or /stop to exit."
)
CHANGE_HISTORY_SIZE_PROMPT_TEXT = (
    "You are changing how many messages the AI remembers.\n"
    "Send a whole number from {low} to {high} or /stop to exit. Current value: {current}."
)
HISTORY_SIZE_INVALID_TEXT = "Please send a whole number from {low} to {high}."
HISTORY_SIZE_CHANGED_TEXT = "The AI will now remember up to {size} messages."
HISTORY_CLEARED_TEXT = "AI conversation history cleared."
MODEL_CHANGED_TEXT = "Model changed successfully!"
MODEL_CHANGE_FAILED_TEXT = (
    "Couldn't switch the generative model right now. Check the model name "
    "and whether your account has access to it."
)

STREAM_PLACEHOLDER_TEXT = "Processing your request..."
AI_UNAVAILABLE_TEXT = "The AI is not available right now, please try again later."
AI_TIMEOUT_TEXT = "The AI took too long to answer, please try again."
TRANSLATE_FAILED_TEXT = "Translation failed, please try again."
ACTIVITY_FAILED_TEXT = "I can't reach my ideas right now, try again later."

AUTH_REQUIRED_TEXT = "You need to authenticate first ↓"
AUTH_BUTTON_TEXT = "Authenticate"
AUTH_SUCCESS_TEXT = "Authorization successful."
AUTH_MISSING_TEXT = "Looks like you haven't authenticated yet."
DEVICES_FAILED_TEXT = "Couldn't load information about your devices."
DEVICE_NOT_FOUND_TEXT = "Device {name} not found."
DEVICE_FAILED_TEXT = "Couldn't reach the device."
DEVICE_TURNED_ON_TEXT = "Turned on: {name}"
DEVICE_TURNED_OFF_TEXT = "Turned off: {name}"
DEVICE_STATE_ON = "on"
DEVICE_STATE_OFF = "off"

MOVIES_TEXT = "Here is a list of great movies worth watching."
MOVIES_MISSING_TEXT = "The movie list is not set up yet."

INLINE_TRANSLATE_TITLE = "Translate the entered text"
INLINE_ACTIVITY_TITLE = "Suggest something to do"
INLINE_MOVIES_TITLE = "Recommend some movies"
INLINE_MOVIES_TEXT = "Tap the button to open the movie picks."
