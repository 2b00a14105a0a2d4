"""
ChatPilot — Capability Providers
Narrow interfaces the dispatcher depends on, plus the shipped implementations.

Generative text routes to the correct SDK based on provider name:
  - openai     → OpenAI (via openai SDK)
  - openrouter → OpenRouter (via openai SDK with custom base_url)
  - deepseek   → DeepSeek (via openai SDK with custom base_url)
  - claude     → Anthropic Claude (via anthropic SDK)
  - gemini     → Google Gemini (via google-generativeai SDK)
"""

import asyncio
import logging
import random
import re
import threading
from dataclasses import dataclass
from typing import AsyncIterator, Iterator, Protocol, Sequence

from config import Config
from dialogs import Message
from sessions import Device

log = logging.getLogger("chatpilot.providers")

OPENAI_COMPATIBLE = {
    "openai": None,
    "openrouter": "https://openrouter.ai/api/v1",
    "deepseek": "https://api.deepseek.com",
}

MODEL_CHECK_PROMPT = "Hello, are you working?"
MODEL_CHECK_MAX_TOKENS = 10


class ProviderError(RuntimeError):
    """A capability call failed (network, timeout, bad response, not configured)."""


@dataclass(frozen=True)
class OAuthToken:
    access_token: str
    refresh_token: str = ""
    expires_in: int = 0


# ──────────────────────────────────────────────────────────────
# Capability interfaces
# ──────────────────────────────────────────────────────────────


class TranslationProvider(Protocol):
    async def translate(self, text: str) -> str: ...

    async def detect_language(self, text: str) -> str: ...


class ActivityProvider(Protocol):
    async def suggest(self) -> str: ...


class SmartHomeProvider(Protocol):
    async def get_devices(self, token: str) -> dict[str, Device]: ...

    async def set_device_state(self, token: str, device_id: str, desired_on: bool) -> None: ...


class GenerativeProvider(Protocol):
    async def generate(self, text: str) -> str: ...

    def generate_stream(self, text: str, history: Sequence[Message]) -> AsyncIterator[str]: ...

    async def change_model(self, name: str) -> None: ...


class OAuthTokenProvider(Protocol):
    async def get_token(self, chat_id: int) -> OAuthToken: ...


# ──────────────────────────────────────────────────────────────
# Generative text
# ──────────────────────────────────────────────────────────────


class GenerativeClient:
    """
    Unified generative interface over the vendor SDKs.

    The SDK clients are synchronous; calls run in worker threads and
    streamed chunks are handed back to the event loop through a queue.
    """

    def __init__(self, config: Config):
        self.config = config
        self.provider_name = config.llm_provider
        self.model = config.llm_model
        self.max_output_tokens = max(256, int(getattr(config, "max_output_tokens", 2048) or 2048))
        self._client = None

        self._init_client()
        log.info(f"LLM output budget: {self.max_output_tokens} tokens")

    def _init_client(self):
        """Initialize the appropriate SDK client."""
        if self.provider_name in OPENAI_COMPATIBLE:
            import openai

            key_attr = f"{self.provider_name}_api_key"
            api_key = getattr(self.config, key_attr, "")
            if not api_key:
                raise ValueError(f"{key_attr.upper()} is required when LLM_PROVIDER={self.provider_name}")
            base_url = OPENAI_COMPATIBLE[self.provider_name]
            if base_url:
                self._client = openai.OpenAI(api_key=api_key, base_url=base_url)
            else:
                self._client = openai.OpenAI(api_key=api_key)
            log.info(f"Initialized {self.provider_name} provider (model: {self.model})")

        elif self.provider_name == "claude":
            import anthropic

            if not self.config.anthropic_api_key:
                raise ValueError("ANTHROPIC_API_KEY is required when LLM_PROVIDER=claude")
            self._client = anthropic.Anthropic(
                api_key=self.config.anthropic_api_key,
            )
            log.info(f"Initialized Claude provider (model: {self.model})")

        elif self.provider_name == "gemini":
            import google.generativeai as genai

            if not self.config.gemini_api_key:
                raise ValueError("GEMINI_API_KEY is required when LLM_PROVIDER=gemini")
            genai.configure(api_key=self.config.gemini_api_key)
            self._client = genai.GenerativeModel(self.model)
            log.info(f"Initialized Gemini provider (model: {self.model})")

        else:
            raise ValueError(
                f"Unknown provider: {self.provider_name!r}. "
                f"Supported: openai, openrouter, deepseek, claude, gemini"
            )

    @staticmethod
    def _build_messages(text: str, history: Sequence[Message] = ()) -> list[dict]:
        messages = [m.to_dict() for m in history]
        messages.append({"role": "user", "content": text})
        return messages

    # ── One-shot ──────────────────────────────────────────────

    async def generate(self, text: str, system_prompt: str = "") -> str:
        """Return a complete response for a single prompt."""
        messages = self._build_messages(text)
        try:
            return await asyncio.to_thread(self._complete, messages, system_prompt)
        except Exception as e:
            log.error(f"LLM call failed ({self.provider_name}): {e}")
            raise ProviderError(f"{self.provider_name} request failed: {e}") from e

    def _complete(self, messages: list[dict], system_prompt: str) -> str:
        if self.provider_name in OPENAI_COMPATIBLE:
            api_messages = []
            if system_prompt:
                api_messages.append({"role": "system", "content": system_prompt})
            api_messages.extend(messages)
            response = self._client.chat.completions.create(
                model=self.model,
                messages=api_messages,
                max_tokens=self.max_output_tokens,
                temperature=0.7,
            )
            return response.choices[0].message.content or ""

        if self.provider_name == "claude":
            kwargs = self._claude_kwargs(messages, system_prompt)
            response = self._client.messages.create(**kwargs)
            # Extract text from content blocks
            return "\n".join(block.text for block in response.content if hasattr(block, "text"))

        chat, last = self._gemini_chat(messages, system_prompt)
        response = chat.send_message(last)
        return response.text or ""

    # ── Streaming ─────────────────────────────────────────────

    async def generate_stream(self, text: str, history: Sequence[Message] = ()) -> AsyncIterator[str]:
        """Yield response fragments as the provider produces them.

        The sequence is finite and single-use. Provider failures surface as
        ProviderError from the iteration.
        """
        messages = self._build_messages(text, history)
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        finished = object()
        stop = threading.Event()

        def _deliver(item):
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                # Event loop already closed; nobody is listening.
                stop.set()

        def _pump():
            try:
                for chunk in self._iter_stream(messages):
                    if stop.is_set():
                        break
                    if chunk:
                        _deliver(chunk)
            except Exception as e:
                log.error(f"LLM stream failed ({self.provider_name}): {e}")
                _deliver(ProviderError(f"{self.provider_name} stream failed: {e}"))
            finally:
                _deliver(finished)

        loop.run_in_executor(None, _pump)
        try:
            while True:
                item = await queue.get()
                if item is finished:
                    break
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            stop.set()

    def _iter_stream(self, messages: list[dict]) -> Iterator[str]:
        if self.provider_name in OPENAI_COMPATIBLE:
            stream = self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_output_tokens,
                temperature=0.7,
                stream=True,
            )
            for chunk in stream:
                if chunk.choices:
                    yield chunk.choices[0].delta.content or ""
            return

        if self.provider_name == "claude":
            with self._client.messages.stream(**self._claude_kwargs(messages, "")) as stream:
                yield from stream.text_stream
            return

        chat, last = self._gemini_chat(messages, "")
        for chunk in chat.send_message(last, stream=True):
            yield chunk.text or ""

    def _claude_kwargs(self, messages: list[dict], system_prompt: str) -> dict:
        # Claude requires the conversation to start with a user message
        api_messages = [m for m in messages if m.get("role") in ("user", "assistant")]
        if not api_messages or api_messages[0]["role"] != "user":
            api_messages.insert(0, {"role": "user", "content": "Hello!"})
        kwargs = {
            "model": self.model,
            "messages": api_messages,
            "max_tokens": self.max_output_tokens,
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        return kwargs

    def _gemini_chat(self, messages: list[dict], system_prompt: str):
        import google.generativeai as genai

        if system_prompt:
            model = genai.GenerativeModel(self.model, system_instruction=system_prompt)
        else:
            model = self._client

        gemini_history = []
        for msg in messages[:-1]:  # all but last (last is the current prompt)
            role = "user" if msg["role"] == "user" else "model"
            gemini_history.append({"role": role, "parts": [msg["content"]]})
        return model.start_chat(history=gemini_history), messages[-1]["content"]

    # ── Model switching ───────────────────────────────────────

    async def change_model(self, name: str) -> None:
        """Switch to another model after checking the provider knows it."""
        requested = (name or "").strip()
        if not requested:
            raise ProviderError("model name is empty")

        log.info(f"Checking if model {requested!r} is working ({self.provider_name})")
        try:
            await asyncio.to_thread(self._check_model, requested)
        except Exception as e:
            log.warning(f"Model check failed for {requested!r} ({self.provider_name}): {e}")
            raise ProviderError(f"model {requested!r} is not available: {e}") from e

        previous = self.model
        self.model = requested
        if self.provider_name == "gemini":
            import google.generativeai as genai

            self._client = genai.GenerativeModel(requested)
        log.info(f"Generative model changed: {previous} -> {requested}")

    def _check_model(self, name: str):
        """Send a tiny completion to ``name``; raises unless it answers."""
        ping = [{"role": "user", "content": MODEL_CHECK_PROMPT}]

        if self.provider_name in OPENAI_COMPATIBLE:
            # OpenRouter and DeepSeek cannot look up a single model by id.
            response = self._client.chat.completions.create(
                model=name,
                messages=ping,
                max_tokens=MODEL_CHECK_MAX_TOKENS,
                temperature=0.7,
            )
            if not response.choices:
                raise ProviderError(f"no choices returned from model {name}")
            return response

        if self.provider_name == "claude":
            response = self._client.messages.create(
                model=name,
                max_tokens=MODEL_CHECK_MAX_TOKENS,
                messages=ping,
            )
            if not response.content:
                raise ProviderError(f"no content returned from model {name}")
            return response

        import google.generativeai as genai

        model_id = name if name.startswith("models/") else f"models/{name}"
        return genai.get_model(model_id)


# ──────────────────────────────────────────────────────────────
# Translation (prompted through the generative provider)
# ──────────────────────────────────────────────────────────────

_LANG_CODE_RE = re.compile(r"\b([a-z]{2})\b")


class LLMTranslator:
    """Translate between a target and a fallback language using an LLM."""

    def __init__(self, llm: GenerativeClient, target_language: str = "en", fallback_language: str = "ru"):
        self.llm = llm
        self.target_language = target_language.lower()
        self.fallback_language = fallback_language.lower()

    async def detect_language(self, text: str) -> str:
        reply = await self.llm.generate(
            text,
            system_prompt=(
                "Identify the language of the user's message. "
                "Reply with the two-letter ISO 639-1 code only."
            ),
        )
        match = _LANG_CODE_RE.search((reply or "").strip().lower())
        if not match:
            raise ProviderError(f"could not detect language from reply {reply!r}")
        return match.group(1)

    async def translate(self, text: str) -> str:
        source = await self.detect_language(text)
        target = self.fallback_language if source == self.target_language else self.target_language
        translated = await self.llm.generate(
            text,
            system_prompt=(
                f"Translate the user's message into the language with ISO 639-1 code '{target}'. "
                "Reply with the translation only, without quotes or comments."
            ),
        )
        translated = (translated or "").strip()
        if not translated:
            raise ProviderError("translation came back empty")
        log.info(f"Translated {len(text)} chars ({source} -> {target})")
        return translated


# ──────────────────────────────────────────────────────────────
# Activity suggestions
# ──────────────────────────────────────────────────────────────

DEFAULT_ACTIVITIES = (
    "Take a 20 minute walk without your phone",
    "Learn to cook a dish you have never tried",
    "Write a letter to a friend you haven't talked to in a while",
    "Read the first chapter of a classic novel",
    "Solve a crossword or a sudoku",
    "Clean up your desktop and downloads folder",
    "Try a short beginner yoga session",
    "Plan a weekend trip to a nearby town",
    "Learn ten words in a new language",
    "Sketch something you can see from your window",
)


class ActivitySuggester:
    def __init__(self, activities: Sequence[str] = DEFAULT_ACTIVITIES):
        self.activities = tuple(activities)

    async def suggest(self) -> str:
        return random.choice(self.activities)


# ──────────────────────────────────────────────────────────────
# Placeholders for deployments without smart-home / OAuth backends
# ──────────────────────────────────────────────────────────────


class UnconfiguredSmartHome:
    async def get_devices(self, token: str) -> dict[str, Device]:
        raise ProviderError("smart home provider is not configured")

    async def set_device_state(self, token: str, device_id: str, desired_on: bool) -> None:
        raise ProviderError("smart home provider is not configured")


class UnconfiguredOAuth:
    async def get_token(self, chat_id: int) -> OAuthToken:
        raise ProviderError("OAuth token provider is not configured")
