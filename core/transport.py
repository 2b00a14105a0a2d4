"""Outbound chat transport: the protocol the dispatcher talks to and its Telegram adapter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

from telegram import (
    Bot,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    InlineQueryResultArticle,
    InputTextMessageContent,
    ReplyKeyboardMarkup,
    ReplyParameters,
)
from telegram.error import BadRequest, TelegramError

from .logging_setup import log

MAX_MESSAGE_LEN = 4096


@dataclass(frozen=True)
class LinkButton:
    text: str
    url: str


@dataclass(frozen=True)
class InlineResult:
    id: str
    title: str
    text: str
    link: LinkButton | None = None


Keyboard = Sequence[Sequence[str]]


class ChatTransport(Protocol):
    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_to: int | None = None,
        keyboard: Keyboard | None = None,
        link: LinkButton | None = None,
    ) -> int | None: ...

    async def edit_message(self, chat_id: int, message_id: int, text: str) -> bool: ...

    async def answer_inline_query(self, query_id: str, results: Sequence[InlineResult]) -> bool: ...


def chunk_message(text: str, max_len: int = MAX_MESSAGE_LEN - 96) -> list[str]:
    """Split a long message into chunks that fit Telegram's limit.

    Splits at newline boundaries where possible.
    """
    if len(text) <= max_len:
        return [text]

    chunks = []
    while text:
        if len(text) <= max_len:
            chunks.append(text)
            break

        # Find the last newline within the limit
        split_at = text.rfind("\n", 0, max_len)
        if split_at <= 0:
            split_at = max_len

        chunks.append(text[:split_at])
        text = text[split_at:].lstrip("\n")

    return chunks


def clip_for_edit(text: str, max_len: int = MAX_MESSAGE_LEN) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 1] + "…"


class TelegramTransport:
    """ChatTransport backed by a python-telegram-bot Bot.

    Failures are logged and reported through the return value; nothing is
    raised back into the dispatcher.
    """

    def __init__(self, bot: Bot):
        self.bot = bot

    @staticmethod
    def _markup(keyboard: Keyboard | None, link: LinkButton | None):
        if link is not None:
            return InlineKeyboardMarkup([[InlineKeyboardButton(link.text, url=link.url)]])
        if keyboard:
            return ReplyKeyboardMarkup(
                [list(row) for row in keyboard],
                resize_keyboard=True,
                one_time_keyboard=True,
            )
        return None

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_to: int | None = None,
        keyboard: Keyboard | None = None,
        link: LinkButton | None = None,
    ) -> int | None:
        chunks = chunk_message(text or "…")
        markup = self._markup(keyboard, link)
        first_id: int | None = None
        for i, chunk in enumerate(chunks):
            is_last = i == len(chunks) - 1
            try:
                sent = await self.bot.send_message(
                    chat_id=chat_id,
                    text=chunk,
                    reply_parameters=ReplyParameters(message_id=reply_to) if reply_to and i == 0 else None,
                    reply_markup=markup if is_last else None,
                )
            except TelegramError as e:
                log.error(f"[{chat_id}] Failed to send message chunk: {e}")
                return first_id
            if first_id is None:
                first_id = sent.message_id
        if len(chunks) > 1:
            log.info(f"[{chat_id}] Long message split into {len(chunks)} parts ({len(text)} chars)")
        return first_id

    async def edit_message(self, chat_id: int, message_id: int, text: str) -> bool:
        try:
            await self.bot.edit_message_text(
                chat_id=chat_id,
                message_id=message_id,
                text=clip_for_edit(text),
            )
            return True
        except BadRequest as e:
            if "not modified" in str(e).lower():
                return True
            log.warning(f"[{chat_id}] Failed to edit message {message_id}: {e}")
            return False
        except TelegramError as e:
            log.warning(f"[{chat_id}] Failed to edit message {message_id}: {e}")
            return False

    async def answer_inline_query(self, query_id: str, results: Sequence[InlineResult]) -> bool:
        articles = [
            InlineQueryResultArticle(
                id=result.id,
                title=result.title,
                input_message_content=InputTextMessageContent(clip_for_edit(result.text)),
                description=result.text[:100],
                reply_markup=self._markup(None, result.link),
            )
            for result in results
        ]
        try:
            await self.bot.answer_inline_query(
                inline_query_id=query_id,
                results=articles,
                cache_time=0,
                is_personal=True,
            )
            return True
        except TelegramError as e:
            log.warning(f"Failed to answer inline query {query_id}: {e}")
            return False
