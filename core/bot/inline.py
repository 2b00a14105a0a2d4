"""Debounced inline-query answers."""

from __future__ import annotations

import asyncio
import uuid

from providers import ProviderError

from ..constants import (
    BUTTON_WHICH_MOVIE,
    INLINE_ACTIVITY_TITLE,
    INLINE_MOVIES_TEXT,
    INLINE_MOVIES_TITLE,
    INLINE_TRANSLATE_TITLE,
)
from ..logging_setup import log
from ..transport import InlineResult, LinkButton


class DispatcherInlineMixin:
    def dispatch_inline(self, user_id: int, query_id: str, text: str) -> asyncio.Task:
        """Schedule an answer for the user's latest inline text.

        Keystrokes arriving within the quiet period replace the pending
        answer, so only the final text reaches a provider.
        """
        text = (text or "").strip()
        log.debug(f"[inline:{user_id}] Inline query {query_id}: {text!r}")

        async def _answer():
            await self._answer_inline(user_id, query_id, text)

        return self.debounce.touch(user_id, text, _answer)

    async def _answer_inline(self, user_id: int, query_id: str, text: str):
        results: list[InlineResult] = []
        try:
            if text:
                body = await self.translator.translate(text)
                results.append(InlineResult(id=uuid.uuid4().hex, title=INLINE_TRANSLATE_TITLE, text=body))
            else:
                body = await self.activity.suggest()
                results.append(InlineResult(id=uuid.uuid4().hex, title=INLINE_ACTIVITY_TITLE, text=body))
        except ProviderError as e:
            log.warning(f"[inline:{user_id}] Inline answer failed: {e}")

        if not text and self.config.movies_url:
            results.append(
                InlineResult(
                    id=uuid.uuid4().hex,
                    title=INLINE_MOVIES_TITLE,
                    text=INLINE_MOVIES_TEXT,
                    link=LinkButton(BUTTON_WHICH_MOVIE, self.config.movies_url),
                )
            )

        if not results:
            return
        if await self.transport.answer_inline_query(query_id, results):
            log.info(f"[inline:{user_id}] Inline query answered with {len(results)} result(s)")
