# 📥 Handles incoming Telegram updates
# -----------------------------------------
# Flow for an image message:
#   - Extract the image (photo or image document).
#   - Check the webhook / channel config.
#   - Skip files that are already stored (same Telegram file).
#   - Allocate a storage key in the chat's upload directory and write metadata.
#   - Albums go through media_group; single images get an immediate reply.
# Text "/dir" commands set or show the chat's upload directory.
# -----------------------------------------

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from telegram import Message, Update

from config import (
    DEFAULT_IMAGE_TYPE,
    DIRECTORY_COMMAND,
    INTERNAL_KEY_PREFIXES,
    METADATA_CHANNEL,
    REASON_ALREADY_SAVED,
    REASON_CHANNEL_NOT_FOUND,
    REASON_DATABASE_ERROR,
    REASON_INVALID_DIRECTORY,
    REASON_NO_MESSAGE,
    REASON_NOT_IMAGE,
    REASON_WEBHOOK_DISABLED,
    REASON_WEBHOOK_NOT_CONFIGURED,
)
from kv_store import KVStore, StoreError
from media_group import track_media_group
from state import (
    add_batch_entry,
    get_chat_directory,
    get_telegram_channel,
    load_webhook_config,
    set_chat_directory,
)
from telegram_api import TelegramAPI, get_telegram_api
from uploads import build_unique_file_id, end_upload
from utils import (
    build_directory_text,
    build_invalid_directory_text,
    build_saved_text,
    directory_from_key,
    format_size_mb,
    normalize_directory,
)

log = logging.getLogger("imgbed-bot")


@dataclass
class InboundFile:
    chat_id: str
    origin_file_id: str
    telegram_file_id: str
    size: int
    file_name: str
    mime_type: str
    media_group_id: Optional[str] = None


def extract_image(msg: Message) -> Optional[InboundFile]:
    chat_id = str(msg.chat.id)
    now_ms = int(time.time() * 1000)

    # compressed photo: take the largest size
    if msg.photo:
        largest = max(msg.photo, key=lambda p: p.file_size or 0)
        return InboundFile(
            chat_id=chat_id,
            origin_file_id=largest.file_unique_id or largest.file_id,
            telegram_file_id=largest.file_id,
            size=largest.file_size or 0,
            file_name=f"photo_{datetime.now(timezone.utc).date().isoformat()}_{now_ms}.jpg",
            mime_type=DEFAULT_IMAGE_TYPE,
            media_group_id=msg.media_group_id,
        )

    # uncompressed image sent as a file
    doc = msg.document
    if doc and (doc.mime_type or "").startswith("image/"):
        return InboundFile(
            chat_id=chat_id,
            origin_file_id=doc.file_unique_id or doc.file_id,
            telegram_file_id=doc.file_id,
            size=doc.file_size or 0,
            file_name=doc.file_name or f"document_{now_ms}.jpg",
            mime_type=doc.mime_type,
            media_group_id=msg.media_group_id,
        )
    return None


# ---------------------------
# Config
# ---------------------------
async def resolve_channel(store: KVStore):
    """Returns (channel, None) or (None, reason)."""
    config = await load_webhook_config(store)
    if not config:
        return None, REASON_WEBHOOK_NOT_CONFIGURED
    if not config.get("enabled") or not config.get("targetChannel"):
        return None, REASON_WEBHOOK_DISABLED

    channel = await get_telegram_channel(store, config["targetChannel"])
    if not channel:
        return None, REASON_CHANNEL_NOT_FOUND
    return channel, None


# ---------------------------
# Dedup
# ---------------------------
async def find_stored_file(store: KVStore, origin_file_id: str) -> Optional[str]:
    """
    Storage key of a file already saved from the same Telegram file, or None.
    Full scan of stored keys; store errors propagate so nothing is written
    after a failed check.
    """
    for key in await store.list_keys():
        if key.startswith(INTERNAL_KEY_PREFIXES):
            continue
        _, metadata = await store.get_with_metadata(key)
        if metadata and origin_file_id in (metadata.get("TgFileUniqueId"), metadata.get("TgFileId")):
            return key
    return None


def build_metadata(inbound: InboundFile, channel: dict, storage_key: str) -> dict:
    metadata = {
        "Channel": METADATA_CHANNEL,
        "ChannelName": channel.get("name"),
        "TgFileId": inbound.telegram_file_id,
        "TgFileUniqueId": inbound.origin_file_id,
        "TgChatId": inbound.chat_id,
        "TgBotToken": channel.get("botToken"),
        "TgMediaGroupId": inbound.media_group_id,
        "FileName": inbound.file_name,
        "FileType": inbound.mime_type,
        "FileSize": format_size_mb(inbound.size),
        "UploadIP": "Bot",
        "TimeStamp": int(time.time() * 1000),
        "Label": "None",
        # from the allocated key, which may differ from the requested folder
        "Directory": directory_from_key(storage_key),
        "Tags": [],
    }
    if channel.get("proxyUrl"):
        metadata["TgProxyUrl"] = channel["proxyUrl"]
    return metadata


# ---------------------------
# Commands
# ---------------------------
def parse_directory_command(text: Optional[str]) -> Optional[str]:
    """Argument of a "/dir" command ("" when none), or None for other text."""
    if not text or not text.startswith("/"):
        return None
    command, _, argument = text.strip().partition(" ")
    if command.split("@", 1)[0] != DIRECTORY_COMMAND:
        return None
    return argument.strip()


async def handle_directory_command(store: KVStore, api: TelegramAPI, chat_id: str, argument: str) -> dict:
    if not argument:
        directory = await get_chat_directory(store, chat_id)
        await safe_send(api, chat_id, build_directory_text(directory, changed=False))
        return {"success": True, "action": "directory_query", "directory": directory}

    directory = normalize_directory(argument)
    if directory is None:
        log.info(f"⚠️ Rejected directory {argument!r} for chat {chat_id}")
        await safe_send(api, chat_id, build_invalid_directory_text())
        return {"success": False, "reason": REASON_INVALID_DIRECTORY}

    await set_chat_directory(store, chat_id, directory)
    log.info(f"📁 Upload directory for chat {chat_id} set to {directory or '/'}")
    await safe_send(api, chat_id, build_directory_text(directory, changed=True))
    return {"success": True, "action": "directory_set", "directory": directory}


async def safe_send(api: TelegramAPI, chat_id: str, text: str) -> None:
    try:
        await api.send_message(chat_id, text)
    except Exception as e:
        log.error(f"❌ Failed to send reply to {chat_id}: {e}")


# ---------------------------
# Main handler
# ---------------------------
async def handle_telegram_message(payload: dict, store: KVStore, api_factory=None, scheduler=None) -> dict:
    """
    Process one webhook update.
    Returns {"success": bool, "reason"?, "file_id"?, "metadata"?, "media_group_id"?}.
    Store read failures in the save path raise StoreError.
    """
    update = Update.de_json(payload, None)
    msg = update.message if update else None
    if not msg:
        return {"success": False, "reason": REASON_NO_MESSAGE}

    chat_id = str(msg.chat.id)
    make_api = api_factory or get_telegram_api

    command_arg = parse_directory_command(msg.text)
    if command_arg is not None:
        channel, reason = await resolve_channel(store)
        if reason:
            return {"success": False, "reason": reason}
        api = make_api(channel["botToken"], channel.get("proxyUrl") or "")
        return await handle_directory_command(store, api, chat_id, command_arg)

    inbound = extract_image(msg)
    if not inbound:
        return {"success": False, "reason": REASON_NOT_IMAGE}
    log.info(f"📥 Received image in chat {chat_id} | origin={inbound.origin_file_id} group={inbound.media_group_id}")

    channel, reason = await resolve_channel(store)
    if reason:
        log.info(f"⏭ Skipping image from chat {chat_id}: {reason}")
        return {"success": False, "reason": reason}

    existing = await find_stored_file(store, inbound.origin_file_id)
    if existing:
        log.info(f"♻️ Already saved as {existing} | origin={inbound.origin_file_id}")
        return {"success": False, "reason": REASON_ALREADY_SAVED, "file_id": existing}

    folder = await get_chat_directory(store, chat_id)
    storage_key = await build_unique_file_id(store, inbound.file_name, inbound.mime_type, folder)
    metadata = build_metadata(inbound, channel, storage_key)

    try:
        await store.put(storage_key, "", metadata=metadata)
    except StoreError as e:
        log.error(f"❌ Failed to write {storage_key}: {e}")
        try:
            await store.delete(storage_key)
        except StoreError as cleanup_error:
            log.warning(f"⚠️ Reserved key {storage_key} left behind: {cleanup_error}")
        return {"success": False, "reason": REASON_DATABASE_ERROR, "error": str(e)}
    log.info(f"💾 Saved {storage_key} ({metadata['FileSize']}MB)")

    try:
        await end_upload(store, storage_key, metadata)
    except Exception as e:
        log.error(f"❌ Failed to update index for {storage_key}: {e}")

    api = make_api(channel["botToken"], channel.get("proxyUrl") or "")

    if inbound.media_group_id:
        try:
            await add_batch_entry(store, inbound.media_group_id, storage_key, inbound.size)
            await track_media_group(store, api, chat_id, inbound.media_group_id, storage_key, scheduler)
        except Exception as e:
            log.error(f"❌ Batch bookkeeping failed for group {inbound.media_group_id}: {e}")
    else:
        await safe_send(api, chat_id, build_saved_text(storage_key, metadata["FileSize"]))

    return {
        "success": True,
        "file_id": storage_key,
        "metadata": metadata,
        "media_group_id": inbound.media_group_id,
    }
