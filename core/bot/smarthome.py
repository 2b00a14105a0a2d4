"""Smart-home menu: OAuth token exchange, device listing, and on/off toggles."""

from __future__ import annotations

from providers import ProviderError
from sessions import Device, SessionNotFound

from ..constants import (
    AUTH_BUTTON_TEXT,
    AUTH_MISSING_TEXT,
    AUTH_REQUIRED_TEXT,
    AUTH_SUCCESS_TEXT,
    BUTTON_PRINT_MENU,
    BUTTON_SMART_HOME_INFO,
    DEVICE_FAILED_TEXT,
    DEVICE_NOT_FOUND_TEXT,
    DEVICE_STATE_OFF,
    DEVICE_STATE_ON,
    DEVICE_TURN_OFF_PREFIX,
    DEVICE_TURN_ON_PREFIX,
    DEVICE_TURNED_OFF_TEXT,
    DEVICE_TURNED_ON_TEXT,
    DEVICES_FAILED_TEXT,
    SMART_MENU_TEXT,
)
from ..logging_setup import log
from ..transport import LinkButton


class DispatcherSmartHomeMixin:
    @staticmethod
    def _device_keyboard(devices: dict[str, Device]) -> list[list[str]]:
        rows = []
        for name in sorted(devices):
            prefix = DEVICE_TURN_OFF_PREFIX if devices[name].actual_state else DEVICE_TURN_ON_PREFIX
            rows.append([f"{prefix}{name}"])
        rows.append([BUTTON_SMART_HOME_INFO, BUTTON_PRINT_MENU])
        return rows

    async def _send_smart_menu(self, chat_id: int):
        try:
            devices = self.sessions.get_devices(chat_id)
        except SessionNotFound:
            devices = {}
        await self._say(chat_id, SMART_MENU_TEXT, keyboard=self._device_keyboard(devices))

    def _auth_url(self, chat_id: int) -> str:
        base = self.config.oauth_url
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}state={chat_id}"

    async def _ask_to_authenticate(self, chat_id: int):
        if not self.config.oauth_url:
            await self._say(chat_id, AUTH_MISSING_TEXT)
            await self._send_main_menu(chat_id)
            return
        await self._say(
            chat_id,
            AUTH_REQUIRED_TEXT,
            link=LinkButton(AUTH_BUTTON_TEXT, self._auth_url(chat_id)),
        )

    async def _refresh_devices(self, chat_id: int, token: str) -> dict[str, Device] | None:
        try:
            devices = await self.smart_home.get_devices(token)
        except ProviderError as e:
            log.error(f"[{chat_id}] Smart home device listing failed: {e}")
            await self._say(chat_id, DEVICES_FAILED_TEXT)
            return None
        self.sessions.save_smart_home_info(chat_id, token, devices)
        log.info(f"[{chat_id}] Smart home devices refreshed: {len(devices)}")
        return devices

    async def open_smart_home(self, chat_id: int, text: str, message_id: int | None = None):
        if not await self._require_owner(chat_id, text):
            return
        self._keep_mode(chat_id, "smart home", text)

        try:
            self.sessions.get_token(chat_id)
        except SessionNotFound:
            try:
                token = await self.oauth.get_token(chat_id)
            except ProviderError as e:
                log.info(f"[{chat_id}] No smart home token yet: {e}")
                await self._ask_to_authenticate(chat_id)
                return
            if await self._refresh_devices(chat_id, token.access_token) is None:
                await self._send_main_menu(chat_id)
                return
            await self._say(chat_id, AUTH_SUCCESS_TEXT)

        await self._send_smart_menu(chat_id)

    async def show_smart_home_info(self, chat_id: int, text: str, message_id: int | None = None):
        if not await self._require_owner(chat_id, text):
            return
        self._keep_mode(chat_id, "smart home info", text)

        try:
            token = self.sessions.get_token(chat_id)
        except SessionNotFound:
            await self._ask_to_authenticate(chat_id)
            return

        devices = await self._refresh_devices(chat_id, token)
        if devices is not None:
            lines = [
                f"{name}: {DEVICE_STATE_ON if device.actual_state else DEVICE_STATE_OFF} (id {device.id})"
                for name, device in sorted(devices.items())
            ]
            await self._say(chat_id, "\n".join(lines) or DEVICES_FAILED_TEXT)
        await self._send_smart_menu(chat_id)

    async def toggle_device(self, chat_id: int, text: str, message_id: int | None = None):
        if not await self._require_owner(chat_id, text):
            return
        parsed = self.parse_device_toggle(text)
        if parsed is None:
            await self.handle_unknown(chat_id, text, message_id)
            return
        name, _ = parsed
        self._keep_mode(chat_id, "device toggle", text)

        try:
            token = self.sessions.get_token(chat_id)
            device = self.sessions.get_devices(chat_id)[name]
        except SessionNotFound:
            await self._ask_to_authenticate(chat_id)
            return
        except KeyError:
            await self._say(chat_id, DEVICE_NOT_FOUND_TEXT.format(name=name))
            await self._send_smart_menu(chat_id)
            return

        desired_on = not device.actual_state
        try:
            await self.smart_home.set_device_state(token, device.id, desired_on)
        except ProviderError as e:
            log.error(f"[{chat_id}] Device {name!r} toggle failed: {e}")
            await self._say(chat_id, DEVICE_FAILED_TEXT)
        else:
            # Cached state follows the request; the device is not re-queried.
            self.sessions.set_device_state(chat_id, name, desired_on)
            done_text = DEVICE_TURNED_ON_TEXT if desired_on else DEVICE_TURNED_OFF_TEXT
            await self._say(chat_id, done_text.format(name=name))
        await self._send_smart_menu(chat_id)
