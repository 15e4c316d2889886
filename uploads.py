# 🏷 Storage identity allocation and index updates

import json
import logging
import os
import secrets
import time

from config import INDEX_OPERATION_PREFIX, MAX_NAME_SUFFIX, UPLOAD_NAME_TYPE
from kv_store import KVStore
from utils import guess_extension

log = logging.getLogger("imgbed-bot")


def build_base_name(file_name: str, mime_type: str, name_type: str, now_ms: int) -> str:
    if name_type == "origin":
        return file_name
    if name_type == "default":
        return f"{now_ms}_{file_name}"
    return f"{now_ms}{guess_extension(file_name, mime_type)}"


async def build_unique_file_id(store: KVStore, file_name: str, mime_type: str,
                               folder: str = "", name_type: str = UPLOAD_NAME_TYPE) -> str:
    """
    Allocate a storage key "<folder>/<name>" that is not used yet.
    Taken names get a numeric suffix before the extension: a.jpg -> a(1).jpg
    The key is reserved with an empty value so concurrent uploads never share it.
    """
    name = build_base_name(file_name, mime_type, name_type, int(time.time() * 1000))
    prefix = f"{folder}/" if folder else ""
    candidate = f"{prefix}{name}"
    if await store.put_if_absent(candidate, ""):
        return candidate

    stem, ext = os.path.splitext(name)
    for n in range(1, MAX_NAME_SUFFIX + 1):
        candidate = f"{prefix}{stem}({n}){ext}"
        if await store.put_if_absent(candidate, ""):
            log.info(f"🔁 Name taken, using {candidate}")
            return candidate
    raise RuntimeError(f"No free storage key for {prefix}{name}")


async def end_upload(store: KVStore, storage_key: str, metadata: dict) -> None:
    """Queue an "add" operation for the file index."""
    now_ms = int(time.time() * 1000)
    op_key = f"{INDEX_OPERATION_PREFIX}{now_ms}_{secrets.token_hex(4)}"
    await store.put(op_key, json.dumps({
        "type": "add",
        "key": storage_key,
        "metadata": metadata,
        "timestamp": now_ms,
    }))
    log.info(f"📇 Index operation queued for {storage_key}")
