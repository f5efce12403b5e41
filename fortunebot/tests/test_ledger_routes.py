"""
Operator ledger endpoint tests. get_db is overridden with a mocked AsyncSession.
"""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from fortunebot.database import get_db
from fortunebot.main import app
from fortunebot.models.fortune_request import FortuneRequestORM


def _row(row_id: str, theme: str) -> FortuneRequestORM:
    return FortuneRequestORM(
        id=row_id,
        user_id="U1",
        name="花子",
        birth="1993-07-21",
        theme=theme,
        report="鑑定結果",
        status="pending",
        created_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def mock_db() -> MagicMock:
    db = MagicMock()
    result = MagicMock()
    result.scalars.return_value.all.return_value = [_row("r2", "金運"), _row("r1", "恋愛運")]
    db.execute = AsyncMock(return_value=result)
    return db


@pytest_asyncio.fixture
async def client(mock_db):
    async def _override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = _override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_list_requests(client: AsyncClient, mock_db) -> None:
    response = await client.get("/api/requests", params={"status": "pending", "limit": 10})

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["count"] == 2
    assert [r["id"] for r in body["requests"]] == ["r2", "r1"]
    assert body["requests"][0]["theme"] == "金運"
    assert body["requests"][0]["created_at"].startswith("2024-05-01T12:00:00")
    mock_db.execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_limit_out_of_range_is_rejected(client: AsyncClient) -> None:
    response = await client.get("/api/requests", params={"limit": 0})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
