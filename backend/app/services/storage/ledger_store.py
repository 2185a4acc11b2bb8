# app/services/storage/ledger_store.py

from __future__ import annotations

import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import LedgerReadError, LedgerWriteError
from app.db.models import LedgerDocument

logger = logging.getLogger(__name__)


class LedgerStore(ABC):
    """
    Whole-document storage for the usage ledger.
    No partial updates: read() returns the full document, write() replaces it.
    """

    name: str = "base"

    @abstractmethod
    async def read(self) -> dict:
        """Raise LedgerReadError when the document cannot be fetched."""
        raise NotImplementedError

    @abstractmethod
    async def write(self, document: dict) -> None:
        """Raise LedgerWriteError when the document cannot be stored."""
        raise NotImplementedError


def ensure_json_document(document: Any) -> dict:
    if not isinstance(document, dict):
        raise LedgerWriteError(f"Ledger document must be an object, got {type(document).__name__}")
    try:
        # round-trip so callers never share mutable state with the store
        return json.loads(json.dumps(document))
    except (TypeError, ValueError) as e:
        raise LedgerWriteError(f"Ledger document is not JSON-serializable: {e}") from e


class MemoryLedgerStore(LedgerStore):
    """Process-local document. Used for local dev and tests."""

    name = "memory"

    def __init__(self, document: Optional[dict] = None) -> None:
        self._document: dict = copy.deepcopy(document) if document else {}
        self.reads = 0
        self.writes = 0

    async def read(self) -> dict:
        self.reads += 1
        return copy.deepcopy(self._document)

    async def write(self, document: dict) -> None:
        self._document = ensure_json_document(document)
        self.writes += 1

    @property
    def document(self) -> dict:
        return copy.deepcopy(self._document)


class SqlLedgerStore(LedgerStore):
    name = "sql"

    def __init__(
        self,
        sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        key: str = "usage",
        timeout: float = 30.0,
    ) -> None:
        self._sessionmaker = sessionmaker
        self.key = key
        self.timeout = timeout

    async def _sessions(self) -> async_sessionmaker[AsyncSession]:
        if self._sessionmaker is None:
            # local import so the engine is only created for LEDGER_BACKEND=sql
            from app.db.db import get_sessionmaker, init_db

            await init_db()
            self._sessionmaker = get_sessionmaker()
        return self._sessionmaker

    async def _fetch(self) -> Optional[LedgerDocument]:
        sm = await self._sessions()
        async with sm() as db:
            q = select(LedgerDocument).where(LedgerDocument.key == self.key)
            r = await db.execute(q)
            return r.scalar_one_or_none()

    async def _store(self, document: dict) -> None:
        sm = await self._sessions()
        async with sm() as db:
            q = select(LedgerDocument).where(LedgerDocument.key == self.key)
            r = await db.execute(q)
            row = r.scalar_one_or_none()

            if row is None:
                db.add(LedgerDocument(key=self.key, document=document))
            else:
                row.document = document

            await db.commit()

    async def read(self) -> dict:
        try:
            row = await asyncio.wait_for(self._fetch(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise LedgerReadError(f"SQL ledger read timed out after {self.timeout:.1f}s") from e
        except (SQLAlchemyError, OSError) as e:
            # drivers raise OSError (e.g. ConnectionRefusedError) before SQLAlchemy can wrap it
            raise LedgerReadError(f"SQL ledger read failed: {type(e).__name__}: {e}") from e

        if row is None or row.document is None:
            return {}

        doc = row.document
        return doc if isinstance(doc, dict) else {}

    async def write(self, document: dict) -> None:
        document = ensure_json_document(document)

        try:
            await asyncio.wait_for(self._store(document), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise LedgerWriteError(f"SQL ledger write timed out after {self.timeout:.1f}s") from e
        except (SQLAlchemyError, OSError) as e:
            raise LedgerWriteError(f"SQL ledger write failed: {type(e).__name__}: {e}") from e


def build_ledger_store(backend: Optional[str] = None) -> LedgerStore:
    from app.core import settings
    from app.services.storage.jsonbin import JsonBinLedgerStore

    backend = (backend or getattr(settings, "LEDGER_BACKEND", "jsonbin") or "jsonbin").strip().lower()
    timeout = float(getattr(settings, "LEDGER_TIMEOUT_SECONDS", 30.0) or 30.0)

    if backend == "sql":
        return SqlLedgerStore(timeout=timeout)

    if backend == "jsonbin":
        url = (getattr(settings, "JSONBIN_URL", "") or "").strip()
        if url:
            return JsonBinLedgerStore(
                url=url,
                master_key=getattr(settings, "JSONBIN_KEY", ""),
                timeout=timeout,
            )
        logger.warning("JSONBIN_URL is not configured; usage ledger is kept in memory only")

    return MemoryLedgerStore()
