"""
Shared fixtures for ChatPilot tests.

Provides an in-memory chat transport and provider fakes so the dispatcher,
stream aggregator and stores run without Telegram or any LLM API.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any
from unittest.mock import AsyncMock

import pytest

from config import Config
from dialogs import DialogHistoryStore
from providers import OAuthToken, ProviderError
from sessions import Device, SessionStore

from core.bot import UpdateDispatcher


# ── Transport ──────────────────────────────────────────────


@dataclass
class SentMessage:
    chat_id: int
    text: str
    message_id: int
    reply_to: int | None = None
    keyboard: Any = None
    link: Any = None


class FakeTransport:
    """Records every send/edit/inline answer for assertions."""

    def __init__(self):
        self.sent: list[SentMessage] = []
        self.edits: list[tuple[int, int, str]] = []
        self.inline_answers: list[tuple[str, list]] = []
        self._next_id = 100

    async def send_message(self, chat_id, text, *, reply_to=None, keyboard=None, link=None):
        self._next_id += 1
        self.sent.append(SentMessage(chat_id, text, self._next_id, reply_to, keyboard, link))
        return self._next_id

    async def edit_message(self, chat_id, message_id, text):
        self.edits.append((chat_id, message_id, text))
        return True

    async def answer_inline_query(self, query_id, results):
        self.inline_answers.append((query_id, list(results)))
        return True

    def texts(self, chat_id: int | None = None) -> list[str]:
        return [m.text for m in self.sent if chat_id is None or m.chat_id == chat_id]

    @property
    def last(self) -> SentMessage:
        return self.sent[-1]


# ── Providers ──────────────────────────────────────────────


class FakeTranslator:
    def __init__(self):
        self.calls: list[str] = []
        self.error: Exception | None = None

    async def translate(self, text: str) -> str:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return f"translated:{text}"

    async def detect_language(self, text: str) -> str:
        return "en"


class FakeGenerative:
    def __init__(self, fragments=("Hel", "lo", " world")):
        self.fragments = list(fragments)
        self.error: Exception | None = None
        self.prompts: list[str] = []
        self.histories: list[list] = []
        self.models: list[str] = []
        self.stall: float = 0.0

    async def generate(self, text: str) -> str:
        return "".join(self.fragments)

    async def generate_stream(self, text, history):
        self.prompts.append(text)
        self.histories.append(list(history))
        for fragment in self.fragments:
            yield fragment
        if self.stall:
            await asyncio.sleep(self.stall)
        if self.error is not None:
            raise self.error

    async def change_model(self, name: str) -> None:
        if name == "no-such-model":
            raise ProviderError(f"model {name!r} is not available")
        self.models.append(name)


class FakeSmartHome:
    def __init__(self):
        self.devices = {"Lamp": Device("Lamp", "dev-1", False), "Kettle": Device("Kettle", "dev-2", True)}
        self.set_calls: list[tuple[str, str, bool]] = []
        self.error: Exception | None = None

    async def get_devices(self, token: str) -> dict[str, Device]:
        if self.error is not None:
            raise self.error
        return dict(self.devices)

    async def set_device_state(self, token: str, device_id: str, desired_on: bool) -> None:
        if self.error is not None:
            raise self.error
        self.set_calls.append((token, device_id, desired_on))


# ── Fixtures ───────────────────────────────────────────────


@pytest.fixture
def config(tmp_path):
    return Config(
        llm_provider="openai",
        llm_model="gpt-4o-mini",
        session_storage_path=str(tmp_path / "sessions.json"),
        dialog_storage_path=str(tmp_path / "dialogs.json"),
        history_size=20,
        inline_debounce_sec=0.05,
        stream_tick_sec=0.01,
        stream_timeout_sec=1.0,
        oauth_url="https://auth.example.com/authorize?client_id=chatpilot",
    )


@pytest.fixture
def sessions(config):
    return SessionStore(config.session_storage_path)


@pytest.fixture
def dialogs(config):
    return DialogHistoryStore(config.dialog_storage_path)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def translator():
    return FakeTranslator()


@pytest.fixture
def generative():
    return FakeGenerative()


@pytest.fixture
def smart_home():
    return FakeSmartHome()


@pytest.fixture
def activity():
    mock = AsyncMock()
    mock.suggest = AsyncMock(return_value="Go for a walk")
    return mock


@pytest.fixture
def oauth():
    """OAuth provider that has not issued a token yet."""
    mock = AsyncMock()
    mock.get_token = AsyncMock(side_effect=ProviderError("no token yet"))
    return mock


@pytest.fixture
def authorized_oauth(oauth):
    oauth.get_token = AsyncMock(return_value=OAuthToken(access_token="tok-1", refresh_token="r", expires_in=3600))
    return oauth


@pytest.fixture
def dispatcher(config, sessions, dialogs, transport, translator, activity, smart_home, generative, oauth):
    bot = UpdateDispatcher(
        config=config,
        sessions=sessions,
        dialogs=dialogs,
        transport=transport,
        translator=translator,
        activity=activity,
        smart_home=smart_home,
        generative=generative,
        oauth=oauth,
    )
    bot.intro_delay_scale = 0
    return bot
