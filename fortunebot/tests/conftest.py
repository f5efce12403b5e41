"""
Test configuration for fortunebot tests.

sys.path is configured so 'from fortunebot...' resolves whether pytest is run
from the repository root or from fortunebot/.
"""
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

_project_root = Path(__file__).parent.parent.parent     # repository root

if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from fortunebot.dialogue.orchestrator import ReplyHandle, TurnResources  # noqa: E402
from fortunebot.tests.helpers import REPORT_TEXT, FakeRedis  # noqa: E402


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def resources(fake_redis: FakeRedis) -> TurnResources:
    return TurnResources(
        redis=fake_redis,
        generate=AsyncMock(return_value=REPORT_TEXT),
        append_ledger=AsyncMock(return_value="row-1"),
        reply=AsyncMock(return_value=None),
        generation_timeout=5.0,
    )


@pytest.fixture
def handle() -> ReplyHandle:
    return ReplyHandle.issue("reply-token-1", window=30.0)
