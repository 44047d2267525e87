"""
Minimal Telegram Bot API client (long polling)
"""
from typing import Any, Dict, List, Optional

import httpx

from dbms_advisor.core.config import Settings, get_settings
from dbms_advisor.core.logging_config import LoggingConfig
from dbms_advisor.core.wizard_prompts import Prompt

logger = LoggingConfig.get_logger(__name__)


class TelegramError(Exception):
    """Custom exception for Telegram Bot API errors"""
    pass


def reply_markup(prompt: Prompt) -> Optional[Dict[str, Any]]:
    """Inline keyboard of a prompt in Bot API shape"""
    if not prompt.keyboard:
        return None
    return {
        "inline_keyboard": [
            [{"text": choice.label, "callback_data": choice.token} for choice in row]
            for row in prompt.keyboard
        ]
    }


class TelegramClient:
    """Thin async wrapper over the Bot API methods the wizard needs"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def base_url(self) -> str:
        return f"{self.settings.telegram_api_url.rstrip('/')}/bot{self.settings.telegram_bot_token}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Long polling holds the request open for poll_timeout seconds
            self._client = httpx.AsyncClient(
                timeout=float(self.settings.telegram_poll_timeout + 10),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        client = self._get_client()
        try:
            response = await client.post(f"{self.base_url}/{method}", json=payload)
        except httpx.HTTPError as e:
            raise TelegramError(f"{method} failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise TelegramError(f"{method} returned HTTP {response.status_code} without JSON") from e

        if not data.get("ok"):
            raise TelegramError(f"{method} failed: {data.get('description', response.status_code)}")
        return data.get("result")

    async def get_updates(self, offset: Optional[int] = None) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {
            "timeout": self.settings.telegram_poll_timeout,
            "allowed_updates": ["message", "callback_query"],
        }
        if offset is not None:
            payload["offset"] = offset
        return await self._call("getUpdates", payload) or []

    async def send_message(self, chat_id: int, prompt: Prompt) -> int:
        """Send a prompt as a new message. Returns the message id."""
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": prompt.text}
        if prompt.parse_mode:
            payload["parse_mode"] = prompt.parse_mode
        markup = reply_markup(prompt)
        if markup:
            payload["reply_markup"] = markup
        result = await self._call("sendMessage", payload)
        return result["message_id"]

    async def edit_message_text(self, chat_id: int, message_id: int, prompt: Prompt) -> None:
        payload: Dict[str, Any] = {"chat_id": chat_id, "message_id": message_id, "text": prompt.text}
        if prompt.parse_mode:
            payload["parse_mode"] = prompt.parse_mode
        markup = reply_markup(prompt)
        if markup:
            payload["reply_markup"] = markup
        await self._call("editMessageText", payload)

    async def edit_message_reply_markup(self, chat_id: int, message_id: int, prompt: Prompt) -> None:
        payload: Dict[str, Any] = {"chat_id": chat_id, "message_id": message_id}
        markup = reply_markup(prompt)
        if markup:
            payload["reply_markup"] = markup
        await self._call("editMessageReplyMarkup", payload)

    async def answer_callback_query(self, callback_query_id: str) -> None:
        await self._call("answerCallbackQuery", {"callback_query_id": callback_query_id})
