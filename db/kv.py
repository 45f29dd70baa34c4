"""
Key-value adapter over Redis: plain get/put/list/delete with TTL, plus the
counter and running-average primitives the analytics code is built on.

Counters use INCRBY so concurrent increments do not lose updates. Running
averages and JSON documents are read-modify-write and therefore approximate
under contention (last write wins).
"""
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from redis.exceptions import RedisError

from utils.errors import UpstreamFailure

logger = logging.getLogger("formpulse.kv")

_GLOB_SPECIAL = "*?[]\\"


def _escape_glob(value: str) -> str:
    return "".join("\\" + ch if ch in _GLOB_SPECIAL else ch for ch in value)


class KVStore:
    """Namespaced access to the key-value store"""

    def __init__(self, client, prefix: str = ""):
        self.client = client
        self.prefix = prefix

    def _k(self, key: str) -> str:
        return f"{self.prefix}{key}"

    @asynccontextmanager
    async def _guard(self, op: str, key: str):
        try:
            yield
        except RedisError as e:
            logger.error("kv %s failed key=%s: %s", op, key, e)
            raise UpstreamFailure("Storage unavailable") from e

    async def get(self, key: str) -> Optional[str]:
        async with self._guard("get", key):
            value = await self.client.get(self._k(key))
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def get_json(self, key: str) -> Any:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("kv value is not JSON key=%s", key)
            return None

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        async with self._guard("put", key):
            if ttl_seconds:
                await self.client.set(self._k(key), value, ex=int(ttl_seconds))
            else:
                await self.client.set(self._k(key), value)

    async def put_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        await self.put(key, json.dumps(value, separators=(",", ":")), ttl_seconds)

    async def delete(self, key: str) -> None:
        async with self._guard("delete", key):
            await self.client.delete(self._k(key))

    async def list(self, prefix: str, limit: Optional[int] = None) -> List[str]:
        """Key names (without the namespace prefix) starting with prefix, sorted"""
        pattern = _escape_glob(self._k(prefix)) + "*"
        names: List[str] = []
        async with self._guard("list", prefix):
            async for raw in self.client.scan_iter(match=pattern, count=500):
                name = raw.decode("utf-8") if isinstance(raw, bytes) else raw
                names.append(name[len(self.prefix):])
        names.sort()
        if limit is not None:
            names = names[: max(0, int(limit))]
        return names

    async def increment(self, key: str, amount: int = 1) -> int:
        async with self._guard("incr", key):
            return int(await self.client.incrby(self._k(key), amount))

    async def get_counter(self, key: str) -> int:
        value = await self.get(key)
        if not value:
            return 0
        try:
            return int(float(value))
        except ValueError:
            return 0

    async def add_to_average(self, key: str, value: float) -> None:
        data = await self.get_json(key)
        if isinstance(data, dict):
            updated = {"sum": data.get("sum", 0) + value, "count": data.get("count", 0) + 1}
        else:
            updated = {"sum": value, "count": 1}
        await self.put_json(key, updated)

    async def get_average(self, key: str) -> float:
        data = await self.get_json(key)
        if not isinstance(data, dict) or not data.get("count"):
            return 0.0
        return data.get("sum", 0) / data["count"]

    async def ping(self) -> bool:
        async with self._guard("ping", ""):
            return bool(await self.client.ping())
