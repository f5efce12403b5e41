"""
store.py — Ledger data access facade for fortunebot.

The ledger is append-only: one row per completed request, reviewed by a human
operator before anything is sent to the user.

Design principles:
  - Functions taking an AsyncSession use flush() — the caller commits
  - record_fortune_request() owns its own session scope; it is the
    append(user_id, name, birth, theme, report) collaborator used by webhook turns
  - Logs only user_id / row id — never names, birth dates or report text
  - Returns plain dicts so callers are persistence-agnostic
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fortunebot.database import AsyncSessionLocal
from fortunebot.models.fortune_request import FortuneRequestORM

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Ledger writes
# ---------------------------------------------------------------------------

async def append_fortune_request(
    db: AsyncSession,
    user_id: str,
    name: str,
    birth: str,
    theme: str,
    report: str,
) -> str:
    """Insert one ledger row. Returns the new row id."""
    orm = FortuneRequestORM(
        id=str(uuid.uuid4()),
        user_id=user_id,
        name=name,
        birth=birth,
        theme=theme,
        report=report,
    )
    db.add(orm)
    await db.flush()
    logger.info("Ledger row appended id=%s user_id=%s theme=%s", orm.id, user_id, theme)
    return orm.id


async def record_fortune_request(
    user_id: str,
    name: str,
    birth: str,
    theme: str,
    report: str,
) -> str:
    """
    Append and commit in a dedicated session.
    Any database error propagates — the caller treats it as a failed turn.
    """
    async with AsyncSessionLocal() as db:
        row_id = await append_fortune_request(db, user_id, name, birth, theme, report)
        await db.commit()
    return row_id


# ---------------------------------------------------------------------------
# Operator reads
# ---------------------------------------------------------------------------

async def list_fortune_requests(
    db: AsyncSession,
    status: Optional[str] = None,
    limit: int = 50,
) -> list[dict]:
    """Ledger rows newest first, optionally filtered by status."""
    query = select(FortuneRequestORM).order_by(FortuneRequestORM.created_at.desc()).limit(limit)
    if status:
        query = query.where(FortuneRequestORM.status == status)
    result = await db.execute(query)
    rows = result.scalars().all()
    return [
        {
            "id": row.id,
            "user_id": row.user_id,
            "name": row.name,
            "birth": row.birth,
            "theme": row.theme,
            "report": row.report,
            "status": row.status,
            "created_at": row.created_at.isoformat(),
        }
        for row in rows
    ]
