"""
models/__init__.py — imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.
"""
from fortunebot.models.fortune_request import FortuneRequestORM

__all__ = ["FortuneRequestORM"]
