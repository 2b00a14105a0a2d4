"""Tests for the shipped capability implementations that need no network."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from config import Config
from providers import (
    ActivitySuggester,
    GenerativeClient,
    LLMTranslator,
    ProviderError,
    UnconfiguredOAuth,
    UnconfiguredSmartHome,
)


def _llm(*replies):
    llm = AsyncMock()
    llm.generate = AsyncMock(side_effect=list(replies))
    return llm


async def test_translate_to_target_language():
    llm = _llm("ru", "Hello")
    translator = LLMTranslator(llm, target_language="en", fallback_language="ru")

    assert await translator.translate("Привет") == "Hello"
    _, kwargs = llm.generate.await_args
    assert "'en'" in kwargs["system_prompt"]


async def test_text_in_target_language_goes_to_fallback():
    llm = _llm("EN.", "Привет")
    translator = LLMTranslator(llm, target_language="en", fallback_language="ru")

    assert await translator.translate("Hello") == "Привет"
    _, kwargs = llm.generate.await_args
    assert "'ru'" in kwargs["system_prompt"]


async def test_undetectable_language_raises():
    translator = LLMTranslator(_llm("???"))
    with pytest.raises(ProviderError):
        await translator.detect_language("???")


async def test_empty_translation_raises():
    translator = LLMTranslator(_llm("de", "   "))
    with pytest.raises(ProviderError):
        await translator.translate("Hallo")


async def test_activity_suggester_picks_from_list():
    suggester = ActivitySuggester(["Read a book"])
    assert await suggester.suggest() == "Read a book"


async def test_unconfigured_collaborators_raise_provider_error():
    with pytest.raises(ProviderError, match="not configured"):
        await UnconfiguredSmartHome().get_devices("tok")
    with pytest.raises(ProviderError, match="not configured"):
        await UnconfiguredSmartHome().set_device_state("tok", "dev-1", True)
    with pytest.raises(ProviderError, match="not configured"):
        await UnconfiguredOAuth().get_token(1)


def _openrouter_client(completion):
    client = GenerativeClient(
        Config(llm_provider="openrouter", llm_model="openai/gpt-4o-mini", openrouter_api_key="sk-or-test")
    )
    client._client = MagicMock()
    client._client.chat.completions.create = MagicMock(**completion)
    return client


async def test_change_model_sends_small_completion():
    client = _openrouter_client({"return_value": SimpleNamespace(choices=[SimpleNamespace()])})

    await client.change_model("deepseek/deepseek-chat-v3-0324:free")

    assert client.model == "deepseek/deepseek-chat-v3-0324:free"
    _, kwargs = client._client.chat.completions.create.call_args
    assert kwargs["model"] == "deepseek/deepseek-chat-v3-0324:free"
    assert kwargs["max_tokens"] == 10
    assert kwargs["messages"] == [{"role": "user", "content": "Hello, are you working?"}]
    client._client.models.retrieve.assert_not_called()


async def test_change_model_without_choices_keeps_current_model():
    client = _openrouter_client({"return_value": SimpleNamespace(choices=[])})

    with pytest.raises(ProviderError, match="not available"):
        await client.change_model("broken/model")
    assert client.model == "openai/gpt-4o-mini"


async def test_change_model_api_error_keeps_current_model():
    client = _openrouter_client({"side_effect": RuntimeError("404 model not found")})

    with pytest.raises(ProviderError):
        await client.change_model("missing/model")
    assert client.model == "openai/gpt-4o-mini"


async def test_change_model_rejects_empty_name():
    client = _openrouter_client({"return_value": SimpleNamespace(choices=[SimpleNamespace()])})

    with pytest.raises(ProviderError, match="empty"):
        await client.change_model("   ")
    client._client.chat.completions.create.assert_not_called()
