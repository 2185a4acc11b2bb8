# app/db/db.py

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core import settings
from app.db.models import Base

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

_initialized = False
_init_lock = asyncio.Lock()


def _default_sqlite_url() -> str:
    backend_root = Path(__file__).resolve().parents[2]  # .../backend
    db_path = backend_root / "usage.db"
    return f"sqlite+aiosqlite:///{db_path.as_posix()}"


def normalize_database_url(url: Optional[str]) -> str:
    u = (url or "").strip()
    if not u:
        return _default_sqlite_url()

    # Fly / common env formats -> async driver (asyncpg comes with the "postgres" extra)
    if u.startswith("postgres://"):
        u = u.replace("postgres://", "postgresql+asyncpg://", 1)
    elif u.startswith("postgresql://"):
        u = u.replace("postgresql://", "postgresql+asyncpg://", 1)

    # sqlite sync -> sqlite async
    if u.startswith("sqlite:///") and not u.startswith("sqlite+aiosqlite:///"):
        u = u.replace("sqlite:///", "sqlite+aiosqlite:///", 1)

    return u


def get_engine() -> AsyncEngine:
    global _engine, _sessionmaker
    if _engine is not None and _sessionmaker is not None:
        return _engine

    _engine = create_async_engine(
        normalize_database_url(getattr(settings, "DATABASE_URL", None)),
        echo=False,
        pool_pre_ping=True,
    )
    _sessionmaker = async_sessionmaker(bind=_engine, expire_on_commit=False)
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    global _sessionmaker
    if _sessionmaker is None:
        get_engine()
    assert _sessionmaker is not None
    return _sessionmaker


async def init_db() -> None:
    global _initialized
    if _initialized:
        return

    async with _init_lock:
        if _initialized:
            return

        engine = get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        _initialized = True

