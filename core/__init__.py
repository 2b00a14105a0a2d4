"""ChatPilot core package."""

from .app import main, resolve_runtime_path
from .bot import Route, UpdateDispatcher
from .constants import PROJECT_ROOT
from .debounce import DebounceResolver
from .logging_setup import log
from .streaming import StreamAggregator, StreamResult
from .transport import ChatTransport, InlineResult, LinkButton, TelegramTransport

__all__ = [
    "ChatTransport",
    "DebounceResolver",
    "InlineResult",
    "LinkButton",
    "log",
    "main",
    "PROJECT_ROOT",
    "resolve_runtime_path",
    "Route",
    "StreamAggregator",
    "StreamResult",
    "TelegramTransport",
    "UpdateDispatcher",
]
