"""
ChatPilot — Session Store
Per-chat conversational state kept in memory and snapshotted to a JSON file.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import NamedTuple

from storage import StoreCorruptedError, atomic_write, parse_chat_id, read_snapshot

log = logging.getLogger("chatpilot.sessions")


class Mode(str, Enum):
    IDLE = "idle"
    TRANSLATING = "translating"
    GENERATIVE_CHAT = "generative_chat"
    CHANGING_MODEL = "changing_model"
    CHANGING_HISTORY_SIZE = "changing_history_size"


# Snapshot flag name for every non-idle mode. Loading resolves several set
# flags in this order, matching how free text is routed.
_MODE_FLAGS = {
    Mode.CHANGING_MODEL: "isChangingModel",
    Mode.CHANGING_HISTORY_SIZE: "isChangingHistorySize",
    Mode.TRANSLATING: "isTranslating",
    Mode.GENERATIVE_CHAT: "isGenerative",
}


class SessionNotFound(LookupError):
    """No session, token or devices recorded for a chat yet."""


class ModeFlags(NamedTuple):
    is_translating: bool = False
    is_generative: bool = False
    is_changing_model: bool = False
    is_changing_history_size: bool = False


@dataclass(frozen=True)
class Device:
    name: str
    id: str
    actual_state: bool = False


@dataclass
class UserSession:
    chat_id: int
    current_step: str = ""
    last_user_message: str = ""
    last_callback_data: str = ""
    mode: Mode = Mode.IDLE
    smart_home_token: str | None = field(default=None, repr=False)
    devices: dict[str, Device] = field(default_factory=dict)

    @property
    def flags(self) -> ModeFlags:
        return ModeFlags(
            is_translating=self.mode is Mode.TRANSLATING,
            is_generative=self.mode is Mode.GENERATIVE_CHAT,
            is_changing_model=self.mode is Mode.CHANGING_MODEL,
            is_changing_history_size=self.mode is Mode.CHANGING_HISTORY_SIZE,
        )

    def copy(self) -> "UserSession":
        # Devices are frozen, so copying the dict is enough.
        return replace(self, devices=dict(self.devices))

    def to_record(self) -> dict:
        """Snapshot form. The smart-home token is never written out."""
        record = {
            "chatID": self.chat_id,
            "currentStep": self.current_step,
            "lastUserMessage": self.last_user_message,
            "callbackData": self.last_callback_data,
            "devices": {
                name: {"id": device.id, "actualState": device.actual_state}
                for name, device in self.devices.items()
            },
        }
        for mode, flag in _MODE_FLAGS.items():
            record[flag] = self.mode is mode
        return record

    @classmethod
    def from_record(cls, chat_id: int, record: dict) -> "UserSession":
        if not isinstance(record, dict):
            raise StoreCorruptedError(f"session {chat_id}: record must be an object")

        active = [mode for mode, flag in _MODE_FLAGS.items() if record.get(flag)]
        if len(active) > 1:
            log.warning(
                f"[{chat_id}] Snapshot has several modes set "
                f"({', '.join(m.value for m in active)}); keeping {active[0].value}"
            )
        mode = active[0] if active else Mode.IDLE

        raw_devices = record.get("devices") or {}
        if not isinstance(raw_devices, dict):
            raise StoreCorruptedError(f"session {chat_id}: devices must be an object")
        devices: dict[str, Device] = {}
        for name, raw in raw_devices.items():
            if not isinstance(raw, dict):
                raise StoreCorruptedError(f"session {chat_id}: device {name!r} must be an object")
            devices[name] = Device(
                name=name,
                id=str(raw.get("id", "")),
                actual_state=bool(raw.get("actualState", False)),
            )

        return cls(
            chat_id=chat_id,
            current_step=str(record.get("currentStep", "") or ""),
            last_user_message=str(record.get("lastUserMessage", "") or ""),
            last_callback_data=str(record.get("callbackData", "") or ""),
            mode=mode,
            devices=devices,
        )


class SessionStore:
    """
    Concurrent map of chat id -> UserSession with file snapshots.

    Every read and write goes through one lock, and callers only ever get
    copies, so a record is never observed half-written. Snapshots are
    serialized under the lock and written to disk after releasing it.
    """

    def __init__(self, storage_path: str):
        self.storage_path = storage_path
        self._sessions: dict[int, UserSession] = {}
        self._lock = threading.Lock()

    # ── Load / Persist ────────────────────────────────────────

    def load(self):
        """Replace the in-memory map with the on-disk snapshot.

        A missing file leaves the store empty; a malformed one raises
        StoreCorruptedError.
        """
        data = read_snapshot(self.storage_path)
        sessions: dict[int, UserSession] = {}
        for raw_key, record in data.items():
            chat_id = parse_chat_id(raw_key)
            sessions[chat_id] = UserSession.from_record(chat_id, record)

        with self._lock:
            self._sessions = sessions
        log.info(f"Loaded {len(sessions)} user sessions from {self.storage_path}")

    def persist(self):
        """Write the whole map to disk. Raises PersistenceError on failure."""
        started = time.monotonic()
        with self._lock:
            snapshot = {
                str(chat_id): session.to_record()
                for chat_id, session in self._sessions.items()
            }
            payload = json.dumps(snapshot, ensure_ascii=False, indent=2)

        atomic_write(self.storage_path, payload)
        elapsed = time.monotonic() - started
        log.info(f"Saved {len(snapshot)} user sessions to {self.storage_path} in {elapsed:.3f}s")

    # ── Writes ────────────────────────────────────────────────

    def upsert(
        self,
        chat_id: int,
        step: str,
        *,
        last_user_message: str = "",
        callback_data: str = "",
        mode: Mode = Mode.IDLE,
    ) -> UserSession:
        """Replace the conversational part of a chat's record.

        Setting a mode always clears the previous one. The smart-home token
        and devices are carried over from the existing record.
        """
        with self._lock:
            previous = self._sessions.get(chat_id)
            session = UserSession(
                chat_id=chat_id,
                current_step=step,
                last_user_message=last_user_message,
                last_callback_data=callback_data,
                mode=Mode(mode),
                smart_home_token=previous.smart_home_token if previous else None,
                devices=dict(previous.devices) if previous else {},
            )
            self._sessions[chat_id] = session
            return session.copy()

    def save_smart_home_info(self, chat_id: int, token: str, devices: dict[str, Device]):
        """Store a fresh credential and device map, keeping the conversational state."""
        with self._lock:
            previous = self._sessions.get(chat_id) or UserSession(chat_id=chat_id)
            self._sessions[chat_id] = replace(
                previous, smart_home_token=token, devices=dict(devices)
            )

    def set_device_state(self, chat_id: int, name: str, actual_state: bool) -> Device:
        """Swap in a new Device for name; the old object is never mutated."""
        with self._lock:
            session = self._sessions.get(chat_id)
            if session is None or name not in session.devices:
                raise SessionNotFound(f"no device {name!r} for chat {chat_id}")
            device = replace(session.devices[name], actual_state=actual_state)
            devices = dict(session.devices)
            devices[name] = device
            self._sessions[chat_id] = replace(session, devices=devices)
            return device

    # ── Reads ─────────────────────────────────────────────────

    def get(self, chat_id: int) -> UserSession:
        with self._lock:
            session = self._sessions.get(chat_id)
            if session is None:
                raise SessionNotFound(f"no session for chat {chat_id}")
            return session.copy()

    def get_token(self, chat_id: int) -> str:
        with self._lock:
            session = self._sessions.get(chat_id)
            if session is None or not session.smart_home_token:
                raise SessionNotFound(f"no token for chat {chat_id}")
            return session.smart_home_token

    def get_devices(self, chat_id: int) -> dict[str, Device]:
        with self._lock:
            session = self._sessions.get(chat_id)
            if session is None or not session.devices:
                raise SessionNotFound(f"no devices for chat {chat_id}")
            return dict(session.devices)

    def get_mode_flags(self, chat_id: int) -> ModeFlags:
        """Mode flags for routing; an unknown chat reads as idle."""
        with self._lock:
            session = self._sessions.get(chat_id)
            return session.flags if session else ModeFlags()

    def get_mode(self, chat_id: int) -> Mode:
        with self._lock:
            session = self._sessions.get(chat_id)
            return session.mode if session else Mode.IDLE

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, chat_id: int) -> bool:
        with self._lock:
            return chat_id in self._sessions
