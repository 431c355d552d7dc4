from __future__ import annotations

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Mapping

import redis.asyncio as redis

from api_session.configs.logging_config import get_logger

log = get_logger(__name__)


class KeyValueBackend(ABC):
    """
    Durable string key-value storage.

    `set_many` and `remove_many` must apply all keys as one unit so readers
    never see a half-written credential triple.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        pass

    @abstractmethod
    async def set_many(self, values: Mapping[str, str]) -> None:
        pass

    @abstractmethod
    async def remove_many(self, keys: Iterable[str]) -> None:
        pass

    async def set(self, key: str, value: str) -> None:
        await self.set_many({key: value})

    async def remove(self, key: str) -> None:
        await self.remove_many([key])

    async def close(self) -> None:
        pass


class InMemoryBackend(KeyValueBackend):
    def __init__(self, initial: Mapping[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set_many(self, values: Mapping[str, str]) -> None:
        self._data.update(values)

    async def remove_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class JsonFileBackend(KeyValueBackend):
    """
    Single JSON document on disk.

    Every write rewrites the whole file through a temp file + os.replace, so a
    crash mid-write leaves the previous document intact. A corrupt file is
    replaced by the next write. File I/O runs in a worker thread.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._lock = asyncio.Lock()

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"credential file {self._path} does not hold an object")
        return data

    def _load_for_write(self) -> dict[str, str]:
        try:
            return self._load()
        except ValueError as exc:
            log.warning("credentials.file_corrupt path=%s error=%s", self._path, exc)
            return {}

    def _dump(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".credentials-", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def get(self, key: str) -> str | None:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
        return data.get(key)

    async def set_many(self, values: Mapping[str, str]) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._load_for_write)
            data.update(values)
            await asyncio.to_thread(self._dump, data)

    async def remove_many(self, keys: Iterable[str]) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._load_for_write)
            for key in keys:
                data.pop(key, None)
            await asyncio.to_thread(self._dump, data)


class RedisBackend(KeyValueBackend):
    """MSET / DEL are atomic on the server side."""

    def __init__(self, client: redis.Redis):
        self._client = client

    async def get(self, key: str) -> str | None:
        value = await self._client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set_many(self, values: Mapping[str, str]) -> None:
        if values:
            await self._client.mset(dict(values))

    async def remove_many(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if keys:
            await self._client.delete(*keys)

    async def close(self) -> None:
        await self._client.aclose()


async def connect_redis(url: str) -> RedisBackend:
    try:
        log.info("redis.connect url=%s", url)
        client = redis.from_url(url, decode_responses=True)
        await client.ping()
        log.info("redis.connected")
    except Exception as e:
        log.error("redis.connect_failed error=%s", e)
        raise
    return RedisBackend(client)
