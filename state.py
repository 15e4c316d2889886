# 🧠 Shared state across webhook calls
# ----------------------------------------------------------------------
# Nothing is kept in process memory: every call may run in a different
# worker, so all state is read from and written to the key-value store.

import json
from typing import List, Optional

from config import (
    BATCH_ARRIVAL_PREFIX,
    BATCH_INDEX_PREFIX,
    BATCH_INDEX_TTL,
    BATCH_MESSAGE_PREFIX,
    BATCH_NOTIFY_FAILED_PREFIX,
    BATCH_STATE_PREFIX,
    BATCH_STATE_TTL,
    CHAT_DIRECTORY_PREFIX,
    UPLOAD_CONFIG_KEY,
    WEBHOOK_CONFIG_KEY,
)
from kv_store import KVStore


# ---------------------------
# Keys
# ---------------------------
def batch_state_key(group_id: str) -> str:
    return f"{BATCH_STATE_PREFIX}{group_id}"


def batch_message_key(group_id: str) -> str:
    return f"{BATCH_MESSAGE_PREFIX}{group_id}"


def batch_index_prefix(group_id: str) -> str:
    return f"{BATCH_INDEX_PREFIX}{group_id}@"


def batch_arrival_prefix(group_id: str) -> str:
    return f"{BATCH_ARRIVAL_PREFIX}{group_id}@"


def batch_notify_failed_key(group_id: str) -> str:
    return f"{BATCH_NOTIFY_FAILED_PREFIX}{group_id}"


def chat_directory_key(chat_id: str) -> str:
    return f"{CHAT_DIRECTORY_PREFIX}{chat_id}"


# ---------------------------
# System config
# ---------------------------
async def load_webhook_config(store: KVStore) -> Optional[dict]:
    raw = await store.get(WEBHOOK_CONFIG_KEY)
    return json.loads(raw) if raw else None


async def save_webhook_config(store: KVStore, config: dict) -> None:
    await store.put(WEBHOOK_CONFIG_KEY, json.dumps(config))


async def get_telegram_channel(store: KVStore, channel_name: str) -> Optional[dict]:
    """Find a Telegram upload channel ({name, botToken, proxyUrl}) by name."""
    raw = await store.get(UPLOAD_CONFIG_KEY)
    if not raw:
        return None
    channels = (json.loads(raw).get("telegram") or {}).get("channels") or []
    return next((ch for ch in channels if ch.get("name") == channel_name), None)


# ---------------------------
# Per-chat upload directory
# ---------------------------
async def get_chat_directory(store: KVStore, chat_id: str) -> str:
    return await store.get(chat_directory_key(chat_id)) or ""


async def set_chat_directory(store: KVStore, chat_id: str, directory: str) -> None:
    await store.put(chat_directory_key(chat_id), directory)


# ---------------------------
# Media group batches
# ---------------------------
# 📦 A batch is split over several keys so no writer ever replaces another's data:
#   batchState         {group_id, chat_id, first_file}; created once, TTL only refreshed
#   batchArrival@<t>   one key per arrival; the newest is the max
#   batchMessage       id of the "receiving" message; set once
#   batchNotifyFailed  present while that message still has to be sent
async def load_batch_state(store: KVStore, group_id: str) -> Optional[dict]:
    raw = await store.get(batch_state_key(group_id))
    return json.loads(raw) if raw else None


async def create_batch_state(store: KVStore, state: dict) -> bool:
    return await store.put_if_absent(
        batch_state_key(state["group_id"]), json.dumps(state), expiration_ttl=BATCH_STATE_TTL
    )


async def touch_batch_state(store: KVStore, group_id: str) -> bool:
    # False once finalize has claimed the batch; the record is never recreated here
    return await store.touch(batch_state_key(group_id), BATCH_STATE_TTL)


async def load_last_arrival(store: KVStore, group_id: str) -> float:
    """Newest arrival time recorded for the group, 0.0 when none."""
    latest = 0.0
    for key in await store.list_keys(batch_arrival_prefix(group_id)):
        raw = await store.get(key)
        if raw:
            latest = max(latest, float(raw))
    return latest


async def record_arrival(store: KVStore, group_id: str, arrival: float) -> None:
    # one key per arrival, so concurrent files never overwrite a newer time
    await store.put(f"{batch_arrival_prefix(group_id)}{arrival!r}", repr(arrival),
                    expiration_ttl=BATCH_STATE_TTL)


async def mark_notify_failed(store: KVStore, group_id: str) -> None:
    await store.put(batch_notify_failed_key(group_id), "1", expiration_ttl=BATCH_STATE_TTL)


async def claim_notify_retry(store: KVStore, group_id: str) -> bool:
    # deleting the flag is atomic, so one sibling retries per failure
    return await store.delete(batch_notify_failed_key(group_id))


async def clear_batch(store: KVStore, group_id: str) -> None:
    keys = [batch_message_key(group_id), batch_notify_failed_key(group_id)]
    keys += await store.list_keys(batch_arrival_prefix(group_id))
    for key in keys:
        await store.delete(key)


async def add_batch_entry(store: KVStore, group_id: str, storage_key: str, size: int) -> None:
    await store.put(
        f"{batch_index_prefix(group_id)}{storage_key}",
        json.dumps({"storage_key": storage_key, "size": size}),
        expiration_ttl=BATCH_INDEX_TTL,
    )


async def load_batch_entries(store: KVStore, group_id: str) -> List[dict]:
    entries = []
    for key in await store.list_keys(batch_index_prefix(group_id)):
        raw = await store.get(key)
        # expired between list and get
        if raw:
            entries.append(json.loads(raw))
    return entries
