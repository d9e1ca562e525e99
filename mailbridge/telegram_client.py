"""Telegram Bot API client."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

import requests

from .config import Settings
from .errors import TelegramAPIError

logger = logging.getLogger(__name__)


class TelegramClient:
    """Send texts and documents to a single chat through the Bot API.

    HTTP connections live only as long as a :meth:`channel` block. Calls made
    outside one get a session of their own that is closed right after.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.session: requests.Session | None = None
        self.base_url = settings.telegram_api_url
        self.chat_id = settings.telegram_chat_id
        self._token = settings.telegram_bot_token or ""

    @contextmanager
    def channel(self) -> Iterator["TelegramClient"]:
        """Keep one HTTP session open for every call made inside the block."""
        if self.session is not None:
            yield self
            return
        self.session = self.session_factory()
        try:
            yield self
        finally:
            session, self.session = self.session, None
            session.close()

    def get_me(self) -> Dict[str, Any]:
        """Return the bot's own user record; used as a connectivity check."""
        return self._call("getMe", timeout=30)

    def send_message(self, text: str, *, disable_web_page_preview: bool = True) -> Dict[str, Any]:
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": disable_web_page_preview,
        }
        return self._call("sendMessage", json=payload, timeout=30)

    def send_document(self, content: bytes, filename: str, caption: str = "") -> Dict[str, Any]:
        data = {
            "chat_id": self.chat_id,
            "caption": caption[:1024],
            "parse_mode": "HTML",
        }
        files = {"document": (filename, content, "application/octet-stream")}
        logger.debug("Uploading document '%s' (%d bytes)", filename, len(content))
        return self._call("sendDocument", data=data, files=files, timeout=120)

    def _call(
        self,
        method: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        timeout: float = 30,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/{method}"
        try:
            with self.channel():
                response = self.session.post(url, json=json, data=data, files=files, timeout=timeout)
        except requests.RequestException as exc:
            description = self._redact(str(exc))
            logger.error("Telegram %s request failed: %s", method, description)
            raise TelegramAPIError(method, description) from exc

        payload = self._parse_response_body(response)
        if response.status_code >= 400 or not (isinstance(payload, dict) and payload.get("ok")):
            description = payload.get("description") if isinstance(payload, dict) else payload
            description = self._redact(str(description or response.reason or "unknown error"))
            logger.error("Telegram %s failed (%s): %s", method, response.status_code, description)
            raise TelegramAPIError(method, description, response.status_code)
        return payload.get("result") or {}

    def _redact(self, text: str) -> str:
        if self._token:
            return text.replace(self._token, "<token>")
        return text

    @staticmethod
    def _parse_response_body(response) -> dict | str:
        try:
            return response.json()
        except ValueError:
            return response.text
