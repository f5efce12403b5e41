"""
models/fortune_request.py — SQLAlchemy ORM model for the operator ledger.

Table: fortune_requests
Append-only: one row per completed intake (name, birth, theme + generated draft).
An operator reviews each draft before the result is sent to the user.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fortunebot.database import Base

STATUS_PENDING = "pending"


class FortuneRequestORM(Base):
    """
    ORM model for a single fortune request.

    birth: canonical 'YYYY-MM-DD' string, exactly as stored in the session.
    status: 'pending' on insert; changed only by operators outside this service.
    """
    __tablename__ = "fortune_requests"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="UUID row identifier",
    )
    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="LINE userId of the requester",
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    birth: Mapped[str] = mapped_column(String(10), nullable=False)
    theme: Mapped[str] = mapped_column(String(16), nullable=False)
    report: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Generated draft awaiting operator review",
    )
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=STATUS_PENDING,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
