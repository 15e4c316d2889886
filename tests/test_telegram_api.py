"""Tests for telegram_api.py — base URL, error mapping and the shared client cache."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.error import TelegramError

import telegram_api
from telegram_api import TelegramAPI, build_base_url, close_clients, get_telegram_api


@pytest.fixture(autouse=True)
def empty_cache(monkeypatch):
    monkeypatch.setattr(telegram_api, "clients", {})


def mocked_api():
    api = TelegramAPI("123:abc")
    api.bot = MagicMock()
    api.bot.initialize = AsyncMock()
    api.bot.shutdown = AsyncMock()
    return api


def test_build_base_url():
    assert build_base_url("") == "https://api.telegram.org/bot"
    assert build_base_url("tg.example.com/") == "https://tg.example.com/bot"
    assert build_base_url("http://10.0.0.1:8080") == "http://10.0.0.1:8080/bot"


class TestTelegramAPI:
    @pytest.mark.asyncio
    async def test_send_initializes_client_first(self):
        api = mocked_api()
        api.bot.send_message = AsyncMock(return_value=SimpleNamespace(message_id=7))

        assert await api.send_message("123", "hi") == {"ok": True, "result": {"message_id": 7}}
        api.bot.initialize.assert_awaited_once()
        api.bot.send_message.assert_awaited_once_with(chat_id="123", text="hi")

    @pytest.mark.asyncio
    async def test_telegram_error_becomes_not_ok(self):
        api = mocked_api()
        api.bot.edit_message_text = AsyncMock(side_effect=TelegramError("message to edit not found"))

        result = await api.edit_message_text("123", 7, "done")
        assert result == {"ok": False, "description": "message to edit not found"}


class TestSharedClients:
    def test_same_token_and_proxy_share_one_client(self):
        first = get_telegram_api("123:abc")
        assert get_telegram_api("123:abc", "") is first
        assert get_telegram_api("123:abc", "tg.example.com") is not first
        assert get_telegram_api("456:def") is not first
        assert len(telegram_api.clients) == 3

    @pytest.mark.asyncio
    async def test_close_clients_shuts_down_every_client(self):
        healthy, broken = mocked_api(), mocked_api()
        broken.bot.shutdown = AsyncMock(side_effect=TelegramError("already closed"))
        telegram_api.clients.update({("a", ""): broken, ("b", ""): healthy})

        await close_clients()

        healthy.bot.shutdown.assert_awaited_once()
        broken.bot.shutdown.assert_awaited_once()
        assert telegram_api.clients == {}
        # a later call builds a fresh client
        assert get_telegram_api("a") is not broken
