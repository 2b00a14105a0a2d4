"""Live-edit a single chat message while generated text streams in."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator

from dialogs import DialogHistoryStore, Message

from .constants import STREAM_PLACEHOLDER_TEXT
from .logging_setup import log
from .transport import ChatTransport, chunk_message


@dataclass
class StreamResult:
    text: str
    message_id: int | None
    edits: int = 0
    follow_ups: int = 0
    timed_out: bool = False

    @property
    def empty(self) -> bool:
        return not self.text


class StreamAggregator:
    """
    Accumulate fragments and mirror them into one placeholder message.

    Flow:
    1. Send the placeholder and keep its id
    2. Append every fragment to the accumulator
    3. Every tick, and once more when the stream ends, edit the placeholder
       to the full accumulated text if it changed
    4. Text past Telegram's message limit goes out as follow-up messages
       once the stream ends
    5. On a clean end with text, record it as the assistant turn

    An empty stream leaves the placeholder alone and writes nothing. Running
    past the timeout stops consumption and also skips the history write;
    the caller reports both cases to the user.
    """

    def __init__(
        self,
        transport: ChatTransport,
        history: DialogHistoryStore,
        tick_interval: float = 0.5,
        timeout: float = 60.0,
        placeholder_text: str = STREAM_PLACEHOLDER_TEXT,
    ):
        self.transport = transport
        self.history = history
        self.tick_interval = tick_interval
        self.timeout = timeout
        self.placeholder_text = placeholder_text

    async def run(
        self,
        chat_id: int,
        fragments: AsyncIterator[str],
        *,
        reply_to: int | None = None,
    ) -> StreamResult:
        message_id = await self.transport.send_message(chat_id, self.placeholder_text, reply_to=reply_to)
        result = StreamResult(text="", message_id=message_id)
        parts: list[str] = []
        finished = asyncio.Event()

        async def _consume():
            try:
                async for fragment in fragments:
                    if fragment:
                        parts.append(fragment)
            finally:
                finished.set()

        consumer = asyncio.create_task(_consume())
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        shown = ""

        try:
            while not finished.is_set():
                remaining = deadline - loop.time()
                if remaining <= 0:
                    result.timed_out = True
                    break
                try:
                    await asyncio.wait_for(finished.wait(), timeout=min(self.tick_interval, remaining))
                except asyncio.TimeoutError:
                    pass
                if not finished.is_set():
                    shown = await self._refresh(chat_id, result, "".join(parts), shown)
        finally:
            if not consumer.done():
                consumer.cancel()

        if result.timed_out:
            try:
                await consumer
            except asyncio.CancelledError:
                pass
            log.warning(f"[{chat_id}] Stream timed out after {self.timeout:.0f}s")
        else:
            # Re-raises whatever the fragment source raised.
            await consumer

        result.text = "".join(parts)
        shown = await self._refresh(chat_id, result, result.text, shown)

        if result.text and message_id is None:
            # Placeholder never made it out; deliver the reply as a new message.
            result.message_id = await self.transport.send_message(chat_id, result.text, reply_to=reply_to)
        elif result.text:
            await self._send_overflow(chat_id, result)

        if result.text and not result.timed_out:
            self.history.append(chat_id, Message("assistant", result.text))
            log.info(f"[{chat_id}] Stream finished: {len(result.text)} chars, {result.edits} edit(s)")
        elif not result.text:
            log.warning(f"[{chat_id}] Stream ended without any text")
        return result

    async def _refresh(self, chat_id: int, result: StreamResult, text: str, shown: str) -> str:
        # The placeholder only ever holds the first chunk; the rest follows at the end.
        head = chunk_message(text)[0] if text else ""
        if not head or head == shown or result.message_id is None:
            return shown
        if await self.transport.edit_message(chat_id, result.message_id, head):
            result.edits += 1
            return head
        return shown

    async def _send_overflow(self, chat_id: int, result: StreamResult):
        chunks = chunk_message(result.text)
        for chunk in chunks[1:]:
            await self.transport.send_message(chat_id, chunk)
            result.follow_ups += 1
        if result.follow_ups:
            log.info(f"[{chat_id}] Long reply continued in {result.follow_ups} more message(s)")
