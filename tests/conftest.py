"""Shared fixtures: seeded in-memory stores, a fake Telegram client and update builders."""

import asyncio
import json

import pytest

from config import UPLOAD_CONFIG_KEY, WEBHOOK_CONFIG_KEY
from kv_store import MemoryKVStore
from media_group import finalize_media_group

CHANNEL = {"name": "tg-main", "botToken": "123:abc", "proxyUrl": ""}


def seeded_config(enabled=True, target="tg-main", channels=None):
    return {
        WEBHOOK_CONFIG_KEY: json.dumps({"enabled": enabled, "targetChannel": target}),
        UPLOAD_CONFIG_KEY: json.dumps({"telegram": {"channels": channels if channels is not None else [CHANNEL]}}),
    }


class FakeTelegram:
    """Stands in for TelegramAPI; every instance built by factory() shares this recorder."""

    def __init__(self):
        self.tokens = []
        self.sent = []
        self.edited = []
        self.fail_send = False
        self.fail_edit = False
        self._next_id = 100

    def factory(self, bot_token, proxy_url=""):
        self.tokens.append((bot_token, proxy_url))
        return self

    async def send_message(self, chat_id, text):
        if self.fail_send:
            return {"ok": False, "description": "Forbidden: bot was blocked by the user"}
        self._next_id += 1
        self.sent.append({"chat_id": chat_id, "text": text, "message_id": self._next_id})
        return {"ok": True, "result": {"message_id": self._next_id}}

    async def edit_message_text(self, chat_id, message_id, text):
        if self.fail_edit:
            return {"ok": False, "description": "Bad Request: message to edit not found"}
        self.edited.append({"chat_id": chat_id, "message_id": message_id, "text": text})
        return {"ok": True, "result": {"message_id": message_id}}

    async def set_webhook(self, url):
        return {"ok": True, "result": True}

    async def delete_webhook(self):
        return {"ok": True, "result": True}

    async def get_webhook_info(self):
        return {"ok": True, "result": {"url": "https://example.com/webhook/telegram", "pending_update_count": 0}}


class RecordingScheduler:
    """Collects finalize requests instead of sleeping; run them explicitly."""

    def __init__(self):
        self.calls = []

    def __call__(self, store, api, chat_id, group_id, arrival):
        self.calls.append((store, api, chat_id, group_id, arrival))

    async def run_all(self):
        return [await finalize_media_group(*call) for call in self.calls]


class YieldingStore(MemoryKVStore):
    """Gives other tasks a turn before every operation, like a remote store would."""

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def get_with_metadata(self, key):
        await asyncio.sleep(0)
        return await super().get_with_metadata(key)

    async def put(self, key, value, metadata=None, expiration_ttl=None):
        await asyncio.sleep(0)
        await super().put(key, value, metadata, expiration_ttl)

    async def put_if_absent(self, key, value, metadata=None, expiration_ttl=None):
        await asyncio.sleep(0)
        return await super().put_if_absent(key, value, metadata, expiration_ttl)

    async def delete(self, key):
        await asyncio.sleep(0)
        return await super().delete(key)

    async def touch(self, key, expiration_ttl):
        await asyncio.sleep(0)
        return await super().touch(key, expiration_ttl)

    async def list_keys(self, prefix=""):
        await asyncio.sleep(0)
        return await super().list_keys(prefix)


class HookedStore(MemoryKVStore):
    """Runs a coroutine once, just before the first write matching (operation, key prefix)."""

    def __init__(self, initial=None):
        super().__init__(initial=initial)
        self.hooks = []

    def before(self, operation, key_prefix, action):
        self.hooks.append((operation, key_prefix, action))

    async def _fire(self, operation, key):
        for hook in list(self.hooks):
            if hook[0] == operation and key.startswith(hook[1]):
                self.hooks.remove(hook)
                await hook[2]()

    async def put(self, key, value, metadata=None, expiration_ttl=None):
        await self._fire("put", key)
        await super().put(key, value, metadata, expiration_ttl)

    async def put_if_absent(self, key, value, metadata=None, expiration_ttl=None):
        await self._fire("put_if_absent", key)
        return await super().put_if_absent(key, value, metadata, expiration_ttl)

    async def delete(self, key):
        await self._fire("delete", key)
        return await super().delete(key)


@pytest.fixture
def store():
    return MemoryKVStore(initial=seeded_config())


@pytest.fixture
def telegram():
    return FakeTelegram()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


# === Update builders ===

_update_ids = iter(range(1, 1_000_000))


def _message(chat_id, **fields):
    update_id = next(_update_ids)
    message = {
        "message_id": update_id,
        "date": 1700000000,
        "chat": {"id": chat_id, "type": "private"},
    }
    message.update(fields)
    return {"update_id": update_id, "message": message}


def photo_update(unique_id, chat_id=123, size=1024, media_group_id=None):
    fields = {
        "photo": [
            {"file_id": f"thumb-{unique_id}", "file_unique_id": f"{unique_id}-thumb",
             "width": 90, "height": 90, "file_size": 10},
            {"file_id": f"file-{unique_id}", "file_unique_id": unique_id,
             "width": 1280, "height": 960, "file_size": size},
        ]
    }
    if media_group_id:
        fields["media_group_id"] = media_group_id
    return _message(chat_id, **fields)


def document_update(unique_id, chat_id=123, size=2048, mime_type="image/png", file_name="scan.png",
                    media_group_id=None):
    fields = {
        "document": {"file_id": f"file-{unique_id}", "file_unique_id": unique_id,
                     "file_name": file_name, "mime_type": mime_type, "file_size": size}
    }
    if media_group_id:
        fields["media_group_id"] = media_group_id
    return _message(chat_id, **fields)


def text_update(text, chat_id=123):
    return _message(chat_id, text=text)
