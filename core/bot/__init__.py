"""Composed ChatPilot dispatcher built from focused mixins."""

from __future__ import annotations

from .base import DispatcherBaseMixin
from .commands import DispatcherCommandsMixin
from .inline import DispatcherInlineMixin
from .messaging import DispatcherMessagingMixin
from .modes import DispatcherModesMixin
from .routing import DispatcherRoutingMixin, Route
from .smarthome import DispatcherSmartHomeMixin


class UpdateDispatcher(
    DispatcherMessagingMixin,
    DispatcherRoutingMixin,
    DispatcherInlineMixin,
    DispatcherSmartHomeMixin,
    DispatcherModesMixin,
    DispatcherCommandsMixin,
    DispatcherBaseMixin,
):
    """The conversation state machine wiring sessions, history, and providers together."""

    pass


__all__ = ["Route", "UpdateDispatcher"]
