# 🛠 Webhook management API
# ----------------------------------------------------------------------
# GET  /api/manage/telegram-bot/webhook                       -> local config
# GET  /api/manage/telegram-bot/webhook?action=getWebhookInfo -> + Telegram status
# POST /api/manage/telegram-bot/webhook {action: saveConfig | setWebhook | deleteWebhook}

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from kv_store import KVStore, StoreError
from state import get_telegram_channel, load_webhook_config, save_webhook_config
from telegram_api import get_telegram_api

log = logging.getLogger("imgbed-bot")

router = APIRouter(prefix="/api/manage/telegram-bot")

DEFAULT_WEBHOOK_CONFIG = {"enabled": False, "targetChannel": ""}


def error(message: str, status: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)


def provide_store(request: Request) -> KVStore:
    return request.app.state.store


def provide_api_factory():
    return get_telegram_api


async def channel_api(store: KVStore, channel_name: str, api_factory):
    channel = await get_telegram_channel(store, channel_name)
    if not channel:
        return None, error(f"Channel not found: {channel_name}", 404)
    if not channel.get("botToken"):
        return None, error("Bot token not found in channel config", 400)
    return api_factory(channel["botToken"], channel.get("proxyUrl") or ""), None


@router.get("/webhook")
async def get_webhook(action: str = "", store: KVStore = Depends(provide_store),
                      api_factory=Depends(provide_api_factory)):
    try:
        config = await load_webhook_config(store)
        if action != "getWebhookInfo":
            return config or dict(DEFAULT_WEBHOOK_CONFIG)

        if not config:
            return error("Webhook not configured", 404)
        api, failure = await channel_api(store, config.get("targetChannel", ""), api_factory)
        if failure:
            return failure
        info = await api.get_webhook_info()
        return {"success": True, "localConfig": config, "telegramInfo": info}
    except StoreError as e:
        log.error(f"❌ Reading webhook config failed: {e}")
        return error(str(e), 500)


@router.post("/webhook")
async def post_webhook(request: Request, store: KVStore = Depends(provide_store),
                       api_factory=Depends(provide_api_factory)):
    try:
        body = await request.json()
    except ValueError:
        return error("Request body must be JSON", 400)
    if not isinstance(body, dict):
        return error("Invalid action", 400)

    action = body.get("action")
    try:
        if action == "saveConfig":
            return await save_config(store, body)
        if action == "setWebhook":
            return await set_webhook(store, body, api_factory)
        if action == "deleteWebhook":
            return await delete_webhook(store, api_factory)
    except StoreError as e:
        log.error(f"❌ Webhook {action} failed: {e}")
        return error(str(e), 500)
    return error("Invalid action", 400)


async def save_config(store: KVStore, body: dict):
    config = {
        "enabled": bool(body.get("enabled", False)),
        "targetChannel": body.get("targetChannel") or "",
    }
    await save_webhook_config(store, config)
    log.info(f"💾 Webhook config saved: {config}")
    return {"success": True, "config": config}


async def set_webhook(store: KVStore, body: dict, api_factory):
    webhook_url = body.get("webhookUrl")
    target_channel = body.get("targetChannel")
    if not webhook_url or not target_channel:
        return error("Missing required parameters: webhookUrl, targetChannel", 400)

    api, failure = await channel_api(store, target_channel, api_factory)
    if failure:
        return failure

    result = await api.set_webhook(webhook_url)
    if not result.get("ok"):
        return JSONResponse(
            {"success": False, "error": result.get("description") or "Failed to set webhook"},
            status_code=400,
        )

    config = {"enabled": True, "targetChannel": target_channel}
    await save_webhook_config(store, config)
    log.info(f"🔗 Webhook set to {webhook_url} for channel {target_channel}")
    return {"success": True, "result": result, "config": config}


async def delete_webhook(store: KVStore, api_factory):
    config = await load_webhook_config(store)
    if not config:
        return error("Webhook not configured", 404)

    api, failure = await channel_api(store, config.get("targetChannel", ""), api_factory)
    if failure:
        return failure

    result = await api.delete_webhook()
    if not result.get("ok"):
        return JSONResponse(
            {"success": False, "error": result.get("description") or "Failed to delete webhook"},
            status_code=400,
        )

    config["enabled"] = False
    await save_webhook_config(store, config)
    log.info("🔌 Webhook deleted and disabled")
    return {"success": True, "result": result}
