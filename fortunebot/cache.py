"""
cache.py — Redis session store for fortunebot.

Namespace conventions:
  {session_prefix}:{user_id}   → dialogue Session JSON   TTL 24h (sliding)

Design:
  - Uses redis.asyncio (async client, part of redis-py 5.x)
  - Pool created once in lifespan, stored on app.state.redis; the client
    connects lazily and reconnects on the next command after a drop
  - Helper functions take the client as a param — no module-level global state
  - load_session() fails soft (None = start over); save/delete raise StoreError
  - Logs only user_id (not field values) — no PII in logs
"""
import json
import logging
from typing import Optional

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from fortunebot.config import settings
from fortunebot.dialogue.schemas import Session

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """A write or delete against the session store did not go through."""


class StoreUnavailableError(StoreError):
    """The session store did not answer the readiness probe."""


# ---------------------------------------------------------------------------
# Key builder
# ---------------------------------------------------------------------------

def make_session_key(user_id: str) -> str:
    """Build Redis key for a user's dialogue session: {prefix}:{user_id}"""
    return f"{settings.session_prefix}:{user_id}"


# ---------------------------------------------------------------------------
# Pool factory — called once in lifespan
# ---------------------------------------------------------------------------

async def create_redis_pool() -> aioredis.Redis:
    """
    Create and return an async Redis connection pool.

    Does NOT fail startup when Redis is down: webhooks check readiness per
    batch via ensure_ready() and answer 503 until the store is back.
    """
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
        socket_connect_timeout=10,
    )
    if await is_ready(client):
        logger.info("Redis connection pool established")
    else:
        logger.warning("Redis not reachable at startup — will retry on first webhook")
    return client


# ---------------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------------

async def is_ready(client: Optional[aioredis.Redis]) -> bool:
    """PING the store. A PING on a dropped connection also reconnects it."""
    if client is None:
        return False
    try:
        return bool(await client.ping())
    except (RedisError, OSError) as exc:
        logger.warning("Redis ping failed: %s", exc)
        return False


async def ensure_ready(client: Optional[aioredis.Redis]) -> None:
    """
    Guard run once per webhook batch, before any event is processed.
    Raises StoreUnavailableError so the boundary can answer 503 and let the
    platform redeliver the whole batch.
    """
    if not await is_ready(client):
        raise StoreUnavailableError("Session store is temporarily unavailable")


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------

async def load_session(client: aioredis.Redis, user_id: str) -> Optional[Session]:
    """
    Retrieve a user's Session.

    Returns None if the session expired, never existed, cannot be decoded
    (bad UTF-8, bad JSON, wrong shape), or the store could not be reached.
    Never raises: the caller starts over.
    """
    key = make_session_key(user_id)
    try:
        raw = await client.get(key)
    except (RedisError, OSError) as exc:
        logger.error("Session load failed user_id=%s: %s", user_id, exc)
        return None
    except UnicodeDecodeError as exc:
        # decode_responses=True: non-UTF-8 bytes fail inside the client
        logger.error("Discarding undecodable session user_id=%s: %s", user_id, exc)
        return None
    if raw is None:
        return None
    try:
        return Session.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as exc:
        logger.error("Discarding undecodable session user_id=%s: %s", user_id, exc)
        return None


async def save_session(client: aioredis.Redis, user_id: str, session: Session) -> None:
    """
    Store a Session with TTL settings.session_ttl_seconds.
    Overwrites the existing value and resets TTL on every write.
    """
    key = make_session_key(user_id)
    try:
        await client.setex(key, settings.session_ttl_seconds, json.dumps(session.to_record(), ensure_ascii=False))
    except (RedisError, OSError) as exc:
        raise StoreError(f"Failed to save session for user_id={user_id}") from exc
    logger.info("Session saved user_id=%s step=%d ttl=%ds", user_id, session.step, settings.session_ttl_seconds)


async def delete_session(client: aioredis.Redis, user_id: str) -> None:
    key = make_session_key(user_id)
    try:
        await client.delete(key)
    except (RedisError, OSError) as exc:
        raise StoreError(f"Failed to delete session for user_id={user_id}") from exc
    logger.info("Session deleted user_id=%s", user_id)
