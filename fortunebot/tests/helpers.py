"""
Shared test doubles and helpers.

FakeRedis implements only the commands cache.py uses (ping/get/setex/delete).
get() yields to the event loop AFTER reading, like a real network round trip,
so concurrent turns can interleave the way they do against a live server.
"""
import asyncio
import json
from unittest.mock import AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError

from fortunebot.cache import make_session_key

REPORT_TEXT = "あなたの恋愛運は今年の後半に大きく開けます。" * 10


class FakeRedis:
    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.down = False
        self.fail_writes = False

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("Connection refused")

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str):
        self._check()
        value = self.data.get(key)
        await asyncio.sleep(0)
        return value

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self._check()
        if self.fail_writes:
            raise RedisConnectionError("Connection reset by peer")
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed


def seed_session(fake: FakeRedis, user_id: str, **fields) -> None:
    record = {"step": 0, "name": "", "birth": "", "theme": ""}
    record.update(fields)
    fake.data[make_session_key(user_id)] = json.dumps(record, ensure_ascii=False)


def stored_session(fake: FakeRedis, user_id: str):
    raw = fake.data.get(make_session_key(user_id))
    return None if raw is None else json.loads(raw)


def replied_texts(reply_mock: AsyncMock) -> list[str]:
    """All message texts passed to reply(), in call order."""
    return [m.text for call in reply_mock.await_args_list for m in call.args[1]]
