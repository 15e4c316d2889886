# 🗄 Key-value store adapters
# ----------------------------------------------------------------------
# Every piece of bot state lives behind this interface. Two backends:
#   - MemoryKVStore: one process only (development, tests).
#   - RedisKVStore: shared by every worker, so concurrent webhook calls
#     coordinate through it.
# Values are strings; each key may carry a JSON metadata dict and a TTL.

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config import REDIS_NAMESPACE, REDIS_URL, STORE_BACKEND

log = logging.getLogger("imgbed-bot")


class StoreError(Exception):
    """A store read or write failed."""


class KVStore(ABC):

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Value for key, or None when missing or expired."""

    @abstractmethod
    async def get_with_metadata(self, key: str) -> Tuple[Optional[str], Optional[dict]]:
        """(value, metadata) for key; (None, None) when missing."""

    @abstractmethod
    async def put(self, key: str, value: str, metadata: Optional[dict] = None,
                  expiration_ttl: Optional[int] = None) -> None:
        """Write key unconditionally."""

    @abstractmethod
    async def put_if_absent(self, key: str, value: str, metadata: Optional[dict] = None,
                            expiration_ttl: Optional[int] = None) -> bool:
        """Write key only if it does not exist. True if this call created it."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove key. True if it existed, so only one caller ever wins."""

    @abstractmethod
    async def touch(self, key: str, expiration_ttl: int) -> bool:
        """Restart the TTL of an existing key. Never creates it; False if missing."""

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> List[str]:
        """All live keys starting with prefix, sorted."""

    async def close(self) -> None:
        pass


# ---------------------------
# In-memory backend
# ---------------------------
class MemoryKVStore(KVStore):

    def __init__(self, initial: Optional[Dict[str, str]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        # key -> (value, metadata, expires_at)
        self._data: Dict[str, Tuple[str, Optional[dict], Optional[float]]] = {
            key: (value, None, None) for key, value in (initial or {}).items()
        }

    def _live(self, key: str):
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at = entry[2]
        if expires_at is not None and expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return entry

    def _expiry(self, expiration_ttl: Optional[int]) -> Optional[float]:
        return self._clock() + expiration_ttl if expiration_ttl else None

    async def get(self, key):
        entry = self._live(key)
        return entry[0] if entry else None

    async def get_with_metadata(self, key):
        entry = self._live(key)
        if entry is None:
            return None, None
        return entry[0], entry[1]

    async def put(self, key, value, metadata=None, expiration_ttl=None):
        self._data[key] = (value, metadata, self._expiry(expiration_ttl))

    async def put_if_absent(self, key, value, metadata=None, expiration_ttl=None):
        if self._live(key) is not None:
            return False
        self._data[key] = (value, metadata, self._expiry(expiration_ttl))
        return True

    async def delete(self, key):
        if self._live(key) is None:
            return False
        del self._data[key]
        return True

    async def touch(self, key, expiration_ttl):
        entry = self._live(key)
        if entry is None:
            return False
        self._data[key] = (entry[0], entry[1], self._expiry(expiration_ttl))
        return True

    async def list_keys(self, prefix=""):
        return sorted(k for k in list(self._data) if k.startswith(prefix) and self._live(k))


# ---------------------------
# Redis backend
# ---------------------------
def _escape_glob(text: str) -> str:
    for ch in ("\\", "*", "?", "[", "]"):
        text = text.replace(ch, "\\" + ch)
    return text


class RedisKVStore(KVStore):
    """Each key is one Redis string holding {"value": ..., "metadata": ...}.

    put_if_absent maps to SET NX, delete to DEL and touch to EXPIRE, all atomic
    on the server.
    """

    def __init__(self, redis_url: str = REDIS_URL, namespace: str = REDIS_NAMESPACE):
        self._client = aioredis.Redis.from_url(redis_url, decode_responses=True)
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    @staticmethod
    def _encode(value: str, metadata: Optional[dict]) -> str:
        return json.dumps({"value": value, "metadata": metadata})

    async def _load(self, key: str) -> Optional[dict]:
        try:
            raw = await self._client.get(self._key(key))
        except RedisError as e:
            raise StoreError(f"get {key} failed: {e}") from e
        if raw is None:
            return None
        return json.loads(raw)

    async def get(self, key):
        record = await self._load(key)
        return record["value"] if record else None

    async def get_with_metadata(self, key):
        record = await self._load(key)
        if record is None:
            return None, None
        return record["value"], record.get("metadata")

    async def put(self, key, value, metadata=None, expiration_ttl=None):
        try:
            await self._client.set(self._key(key), self._encode(value, metadata), ex=expiration_ttl)
        except RedisError as e:
            raise StoreError(f"put {key} failed: {e}") from e

    async def put_if_absent(self, key, value, metadata=None, expiration_ttl=None):
        try:
            created = await self._client.set(
                self._key(key), self._encode(value, metadata), ex=expiration_ttl, nx=True
            )
        except RedisError as e:
            raise StoreError(f"put_if_absent {key} failed: {e}") from e
        return bool(created)

    async def delete(self, key):
        try:
            removed = await self._client.delete(self._key(key))
        except RedisError as e:
            raise StoreError(f"delete {key} failed: {e}") from e
        return removed > 0

    async def touch(self, key, expiration_ttl):
        try:
            refreshed = await self._client.expire(self._key(key), expiration_ttl)
        except RedisError as e:
            raise StoreError(f"touch {key} failed: {e}") from e
        return bool(refreshed)

    async def list_keys(self, prefix=""):
        pattern = f"{_escape_glob(self._namespace + prefix)}*"
        try:
            keys = [k async for k in self._client.scan_iter(match=pattern)]
        except RedisError as e:
            raise StoreError(f"list {prefix!r} failed: {e}") from e
        start = len(self._namespace)
        return sorted(k[start:] for k in keys)

    async def close(self):
        await self._client.aclose()


def create_store(backend: str = STORE_BACKEND) -> KVStore:
    if backend == "redis":
        log.info(f"🗄 Using Redis store at {REDIS_URL}")
        return RedisKVStore()
    if backend == "memory":
        log.info("🗄 Using in-memory store (single process only)")
        return MemoryKVStore()
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")
