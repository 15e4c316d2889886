# 📦 Media group coalescing
# ----------------------------------------------------------------------
# Telegram delivers an album as one update per file, all sharing a
# media_group_id, possibly to different workers at the same time.
#   - The first file of a group sends a single "receiving" message.
#   - Every file schedules a delayed finalize.
#   - Only the finalize of the last-arriving file does the work: it counts
#     the group's index entries and edits the message with the totals.
# The store is the only shared state; the counters are always recomputed
# from the index entries, never carried between calls.

import asyncio
import logging
import time
from typing import Optional, Set

from config import BATCH_INDEX_TTL, MEDIA_GROUP_QUIET_SECS
from kv_store import KVStore
from state import (
    batch_message_key,
    batch_state_key,
    claim_notify_retry,
    clear_batch,
    create_batch_state,
    load_batch_entries,
    load_batch_state,
    load_last_arrival,
    mark_notify_failed,
    record_arrival,
    touch_batch_state,
)
from telegram_api import TelegramAPI
from utils import build_batch_text, build_receiving_text

log = logging.getLogger("imgbed-bot")

# ⏳ finalize tasks still sleeping; held here so they are not garbage collected
pending_finalizers: Set[asyncio.Task] = set()


# ---------------------------
# Arrival
# ---------------------------
async def send_receiving_notice(store: KVStore, api: TelegramAPI, chat_id: str, group_id: str) -> bool:
    try:
        result = await api.send_message(chat_id, build_receiving_text())
    except Exception as e:
        log.error(f"❌ Failed to send receiving notice for group {group_id}: {e}")
        result = {"ok": False}
    if not result.get("ok"):
        # the next file of the group retries
        await mark_notify_failed(store, group_id)
        return False

    message_id = str(result["result"]["message_id"])
    # first handle wins; a concurrent retry may have stored one already
    if not await store.put_if_absent(batch_message_key(group_id), message_id, expiration_ttl=BATCH_INDEX_TTL):
        log.warning(f"⚠️ Group {group_id} already has a notice, message {message_id} left as is")
    return True


async def track_media_group(store: KVStore, api: TelegramAPI, chat_id: str, group_id: str,
                            storage_key: str, scheduler=None) -> float:
    """Register one stored file of a media group. Returns its arrival time."""
    arrival = time.time()

    created = False
    if await load_batch_state(store, group_id) is None:
        created = await create_batch_state(store, {
            "group_id": group_id,
            "chat_id": chat_id,
            "first_file": storage_key,
        })
        if created:
            log.info(f"➕ New batch for group {group_id}, first file {storage_key}")

    if created:
        await send_receiving_notice(store, api, chat_id, group_id)
    elif await store.get(batch_message_key(group_id)) is None and await claim_notify_retry(store, group_id):
        log.info(f"🔁 Retrying receiving notice for group {group_id}")
        await send_receiving_notice(store, api, chat_id, group_id)

    await record_arrival(store, group_id, arrival)
    if not await touch_batch_state(store, group_id):
        # finalize claimed the batch after our read; its index scan already counts this file
        log.info(f"⏭ Group {group_id} closed while {storage_key} was arriving")

    (scheduler or schedule_finalize)(store, api, chat_id, group_id, arrival)
    return arrival


# ---------------------------
# Finalize
# ---------------------------
async def finalize_media_group(store: KVStore, api: TelegramAPI, chat_id: str, group_id: str,
                               arrival: float) -> bool:
    """
    Close the batch if this task belongs to the last file seen.
    Returns True only for the single call that did the work.
    """
    state = await load_batch_state(store, group_id)
    if state is None:
        log.info(f"⏭ Group {group_id} already finalized or expired")
        return False
    if await load_last_arrival(store, group_id) > arrival:
        log.info(f"⏭ Newer file arrived in group {group_id}, leaving finalize to it")
        return False

    # atomic claim: exactly one finalize gets True here
    if not await store.delete(batch_state_key(group_id)):
        log.info(f"⏭ Group {group_id} claimed by another finalize")
        return False

    entries = await load_batch_entries(store, group_id)
    count = len(entries)
    total_size = sum(int(e.get("size") or 0) for e in entries)
    log.info(f"🚀 Finalizing group {group_id}: {count} files, {total_size} bytes")

    message_id = await store.get(batch_message_key(group_id))
    if message_id is None:
        log.warning(f"⚠️ Group {group_id} has no notice to update")
    else:
        text = build_batch_text(count, total_size, state["first_file"])
        try:
            result = await api.edit_message_text(chat_id, int(message_id), text)
            if not result.get("ok"):
                log.warning(f"⚠️ Final notice for group {group_id} not updated: {result.get('description')}")
        except Exception as e:
            log.error(f"❌ Failed to edit notice for group {group_id}: {e}")
    await clear_batch(store, group_id)
    return True


def schedule_finalize(store: KVStore, api: TelegramAPI, chat_id: str, group_id: str,
                      arrival: float, delay: Optional[float] = None) -> asyncio.Task:
    wait = MEDIA_GROUP_QUIET_SECS if delay is None else delay

    async def delayed_finalize():
        log.info(f"⏳ Finalize for group {group_id} in {wait}s")
        await asyncio.sleep(wait)
        try:
            await finalize_media_group(store, api, chat_id, group_id, arrival)
        except Exception as e:
            log.error(f"❌ Finalize failed for group {group_id}: {e}")

    task = asyncio.create_task(delayed_finalize())
    pending_finalizers.add(task)
    task.add_done_callback(pending_finalizers.discard)
    return task


async def drain_finalizers() -> None:
    """Wait for every scheduled finalize; they are never cancelled."""
    if pending_finalizers:
        log.info(f"⏳ Waiting for {len(pending_finalizers)} pending finalize tasks")
        await asyncio.gather(*list(pending_finalizers), return_exceptions=True)
