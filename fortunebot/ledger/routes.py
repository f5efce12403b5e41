"""
routes.py — Operator review of the fortune request ledger.

GET /api/requests — newest first, optional ?status=pending filter

No authentication in v1: expose this router only on an internal network.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fortunebot.database import get_db
from fortunebot.store import list_fortune_requests

router = APIRouter(prefix="/api", tags=["ledger"])


@router.get("/requests")
async def get_requests(
    status: Optional[str] = Query(default=None, description="Filter by status, e.g. 'pending'"),
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await list_fortune_requests(db, status=status, limit=limit)
    return {"requests": rows, "count": len(rows)}
