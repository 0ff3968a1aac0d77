"""Telegram Bot API notifier."""
import logging
from typing import Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from afisha_crawler.config import config
from afisha_crawler.fetch.endpoints import absolute_url

logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"
TICKET_BUTTON_TEXT = "🎫 Купити квитки"


class NotificationError(RuntimeError):
    """Telegram rejected a call."""

    def __init__(self, method: str, status_code: int, detail: str):
        super().__init__(f"Telegram {method} failed with {status_code}: {detail}")
        self.method = method
        self.status_code = status_code


class TelegramNotifier:
    """Sends show announcements to chats."""

    def __init__(
        self,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        parse_mode: str = "Markdown",
    ):
        token = token or config.TELEGRAM_BOT_TOKEN
        if not token:
            raise ValueError("TELEGRAM_BOT_TOKEN is required")
        self.base_url = f"{API_BASE}/bot{token}"
        self.parse_mode = parse_mode
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=config.TIMEOUT, transport=transport)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _call(self, method: str, payload: dict) -> dict:
        response = await self.client.post(f"{self.base_url}/{method}", json=payload)
        if not response.is_success:
            raise NotificationError(method, response.status_code, response.text)
        return response.json()

    @staticmethod
    def _keyboard(ticket_url: str) -> dict:
        return {"inline_keyboard": [[{"text": TICKET_BUTTON_TEXT, "url": absolute_url(ticket_url)}]]}

    async def send(
        self,
        chat_id: int,
        text: str,
        image_url: Optional[str] = None,
        ticket_url: Optional[str] = None,
    ) -> None:
        """Send a photo with caption, or plain text if there is no photo or it fails."""
        base = {"chat_id": chat_id, "parse_mode": self.parse_mode}
        if ticket_url:
            base["reply_markup"] = self._keyboard(ticket_url)

        if image_url:
            try:
                await self._call("sendPhoto", {**base, "photo": image_url, "caption": text})
                return
            except (NotificationError, httpx.HTTPError) as e:
                logger.warning(f"Failed to send photo to {chat_id}, falling back to text: {e}")

        await self._call("sendMessage", {**base, "text": text})

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "TelegramNotifier":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
