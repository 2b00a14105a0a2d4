"""
ChatPilot — Dialog History
Per-chat generative conversation history, snapshotted to a JSON file.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass

from storage import StoreCorruptedError, atomic_write, parse_chat_id, read_snapshot

log = logging.getLogger("chatpilot.dialogs")

ROLES = ("user", "assistant")


@dataclass(frozen=True)
class Message:
    role: str
    content: str

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"unsupported role {self.role!r}, expected one of {ROLES}")

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


class DialogHistoryStore:
    """
    Append/get/clear store of ordered messages per chat.

    The store does not bound history length; the dispatcher decides when a
    conversation is too long and clears it. get() always hands back a new
    list so callers cannot reach the stored sequence.
    """

    def __init__(self, storage_path: str):
        self.storage_path = storage_path
        self._history: dict[int, list[Message]] = {}
        self._lock = threading.Lock()

    def load(self):
        data = read_snapshot(self.storage_path)
        history: dict[int, list[Message]] = {}
        for raw_key, raw_messages in data.items():
            chat_id = parse_chat_id(raw_key)
            if not isinstance(raw_messages, list):
                raise StoreCorruptedError(f"dialog {chat_id}: expected a list of messages")
            messages = []
            for raw in raw_messages:
                if not isinstance(raw, dict):
                    raise StoreCorruptedError(f"dialog {chat_id}: message must be an object")
                try:
                    messages.append(Message(role=raw.get("role", ""), content=str(raw.get("content", ""))))
                except ValueError as e:
                    raise StoreCorruptedError(f"dialog {chat_id}: {e}") from e
            history[chat_id] = messages

        with self._lock:
            self._history = history
        log.info(f"Loaded dialog history for {len(history)} chats from {self.storage_path}")

    def append(self, chat_id: int, message: Message):
        with self._lock:
            self._history.setdefault(chat_id, []).append(message)

    def replace(self, chat_id: int, messages: list[Message]):
        with self._lock:
            self._history[chat_id] = list(messages)

    def get(self, chat_id: int) -> list[Message]:
        with self._lock:
            return list(self._history.get(chat_id, ()))

    def length(self, chat_id: int) -> int:
        with self._lock:
            return len(self._history.get(chat_id, ()))

    def clear(self, chat_id: int):
        with self._lock:
            self._history.pop(chat_id, None)

    def persist(self):
        """Write every chat's history to disk. Raises PersistenceError on failure."""
        started = time.monotonic()
        with self._lock:
            snapshot = {
                str(chat_id): [m.to_dict() for m in messages]
                for chat_id, messages in self._history.items()
            }
            payload = json.dumps(snapshot, ensure_ascii=False, indent=2)

        atomic_write(self.storage_path, payload)
        elapsed = time.monotonic() - started
        log.info(f"Saved dialog history for {len(snapshot)} chats to {self.storage_path} in {elapsed:.3f}s")
