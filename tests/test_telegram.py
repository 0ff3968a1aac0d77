"""Tests for the Telegram notifier and message formatting."""
from datetime import datetime, timezone

import httpx
import orjson
import pytest

from afisha_crawler.config import Config
from afisha_crawler.notify.formatter import format_show
from afisha_crawler.notify.telegram import NotificationError, TelegramNotifier
from afisha_crawler.parse.models import Show

WHEN = datetime(2025, 6, 12, 16, 0, tzinfo=timezone.utc)


def make_show(sold_out=False) -> Show:
    return Show.build(title="Гамлет", url="/vystava/hamlet", occurs_at=WHEN, sold_out=sold_out)


def test_format_show_local_time():
    assert format_show(make_show()) == "*Гамлет*\n\nДата: 12.06.2025, 19:00"


def test_format_show_sold_out_suffix():
    assert format_show(make_show(sold_out=True)).endswith("19:00 (Розпродано)")


class TelegramStub:
    def __init__(self, photo_status=200):
        self.photo_status = photo_status
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        payload = orjson.loads(request.content)
        self.calls.append((method, payload))
        if method == "sendPhoto" and self.photo_status != 200:
            return httpx.Response(self.photo_status, json={"ok": False, "description": "bad photo"})
        return httpx.Response(200, json={"ok": True, "result": {}})


@pytest.mark.asyncio
async def test_photo_with_ticket_button():
    stub = TelegramStub()
    notifier = TelegramNotifier(token="123:abc", transport=httpx.MockTransport(stub))

    await notifier.send(42, "*Гамлет*", image_url="https://theatre.test/h.jpg", ticket_url="/tickets/1")

    method, payload = stub.calls[0]
    assert method == "sendPhoto"
    assert payload["chat_id"] == 42
    assert payload["caption"] == "*Гамлет*"
    assert payload["parse_mode"] == "Markdown"
    button = payload["reply_markup"]["inline_keyboard"][0][0]
    assert button["url"].endswith("/tickets/1")
    assert button["url"].startswith("http")
    await notifier.aclose()


@pytest.mark.asyncio
async def test_photo_failure_falls_back_to_text():
    stub = TelegramStub(photo_status=400)
    notifier = TelegramNotifier(token="123:abc", transport=httpx.MockTransport(stub))

    await notifier.send(42, "*Гамлет*", image_url="https://theatre.test/h.jpg")

    assert [method for method, _ in stub.calls] == ["sendPhoto", "sendMessage"]
    assert stub.calls[1][1]["text"] == "*Гамлет*"
    await notifier.aclose()


@pytest.mark.asyncio
async def test_text_only_without_image():
    stub = TelegramStub()
    notifier = TelegramNotifier(token="123:abc", transport=httpx.MockTransport(stub))

    await notifier.send(42, "hello")

    assert [method for method, _ in stub.calls] == ["sendMessage"]
    assert "reply_markup" not in stub.calls[0][1]
    await notifier.aclose()


@pytest.mark.asyncio
async def test_message_rejection_raises():
    def handler(request):
        return httpx.Response(403, json={"ok": False, "description": "blocked"})

    notifier = TelegramNotifier(token="123:abc", transport=httpx.MockTransport(handler))
    with pytest.raises(NotificationError) as excinfo:
        await notifier.send(42, "hello")
    assert excinfo.value.status_code == 403
    await notifier.aclose()


def test_requires_token(monkeypatch):
    monkeypatch.setattr(Config, "TELEGRAM_BOT_TOKEN", None)
    with pytest.raises(ValueError):
        TelegramNotifier(token=None)
