# 🤖 Thin Telegram Bot API client (one shared instance per upload channel)
# ----------------------------------------------------------------------
# Every call returns a Bot-API-shaped dict ({"ok": ..., "result": ...}).
# Telegram errors are logged and returned as {"ok": False, "description": ...}
# so callers decide whether a failure matters.

import logging
from typing import Dict, Optional, Tuple

from telegram import Bot
from telegram.error import TelegramError

log = logging.getLogger("imgbed-bot")

DEFAULT_BASE_URL = "https://api.telegram.org/bot"


def build_base_url(proxy_url: Optional[str]) -> str:
    if not proxy_url:
        return DEFAULT_BASE_URL
    proxy_url = proxy_url.rstrip("/")
    if not proxy_url.startswith(("http://", "https://")):
        proxy_url = f"https://{proxy_url}"
    return f"{proxy_url}/bot"


class TelegramAPI:

    def __init__(self, bot_token: str, proxy_url: str = ""):
        self.bot = Bot(token=bot_token, base_url=build_base_url(proxy_url))

    async def _ready(self):
        # no-op after the first call; shutdown() only closes an initialized Bot
        await self.bot.initialize()

    async def close(self):
        await self.bot.shutdown()

    async def send_message(self, chat_id, text: str) -> dict:
        try:
            await self._ready()
            sent = await self.bot.send_message(chat_id=chat_id, text=text)
        except TelegramError as e:
            log.error(f"❌ sendMessage to {chat_id} failed: {e}")
            return {"ok": False, "description": str(e)}
        log.info(f"✅ Sent message to {chat_id} | message_id={sent.message_id}")
        return {"ok": True, "result": {"message_id": sent.message_id}}

    async def edit_message_text(self, chat_id, message_id: int, text: str) -> dict:
        try:
            await self._ready()
            await self.bot.edit_message_text(text=text, chat_id=chat_id, message_id=message_id)
        except TelegramError as e:
            log.error(f"❌ editMessageText {message_id} in {chat_id} failed: {e}")
            return {"ok": False, "description": str(e)}
        log.info(f"✏️ Edited message {message_id} in {chat_id}")
        return {"ok": True, "result": {"message_id": message_id}}

    async def set_webhook(self, url: str) -> dict:
        try:
            await self._ready()
            result = await self.bot.set_webhook(url=url, allowed_updates=["message"])
        except TelegramError as e:
            log.error(f"❌ setWebhook failed: {e}")
            return {"ok": False, "description": str(e)}
        return {"ok": True, "result": result}

    async def delete_webhook(self) -> dict:
        try:
            await self._ready()
            result = await self.bot.delete_webhook()
        except TelegramError as e:
            log.error(f"❌ deleteWebhook failed: {e}")
            return {"ok": False, "description": str(e)}
        return {"ok": True, "result": result}

    async def get_webhook_info(self) -> dict:
        try:
            await self._ready()
            info = await self.bot.get_webhook_info()
        except TelegramError as e:
            log.error(f"❌ getWebhookInfo failed: {e}")
            return {"ok": False, "description": str(e)}
        return {"ok": True, "result": info.to_dict()}


# ---------------------------
# Shared clients
# ---------------------------
# 🔌 one client per (token, proxy) for the life of the process
clients: Dict[Tuple[str, str], TelegramAPI] = {}


def get_telegram_api(bot_token: str, proxy_url: str = "") -> TelegramAPI:
    key = (bot_token, proxy_url or "")
    api = clients.get(key)
    if api is None:
        api = clients[key] = TelegramAPI(bot_token, proxy_url or "")
    return api


async def close_clients() -> None:
    for api in list(clients.values()):
        try:
            await api.close()
        except TelegramError as e:
            log.warning(f"⚠️ Closing Telegram client failed: {e}")
    clients.clear()
