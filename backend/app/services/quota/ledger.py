# app/services/quota/ledger.py

from __future__ import annotations

import asyncio
import contextlib
import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

from app.core.errors import LedgerStoreError
from app.services.storage.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_MONTHLY_LIMIT = 30


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def month_key(now: datetime) -> str:
    """YYYY-MM of the UTC calendar month containing `now`."""
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m")


def normalize_user_id(user_id: Optional[str]) -> str:
    return (user_id or "").strip().lower()


@dataclass
class UsageRecord:
    used: int = 0
    limit: int = DEFAULT_MONTHLY_LIMIT

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

    def to_dict(self) -> dict:
        return {"used": self.used, "limit": self.limit}


def _coerce_record(raw: object, default_limit: int) -> UsageRecord:
    if not isinstance(raw, dict):
        return UsageRecord(used=0, limit=default_limit)

    try:
        used = int(raw.get("used", 0))
    except (TypeError, ValueError):
        used = 0

    try:
        limit = int(raw.get("limit", default_limit))
    except (TypeError, ValueError):
        limit = default_limit

    return UsageRecord(used=max(0, used), limit=limit if limit > 0 else default_limit)


class UsageLedger:
    """
    In-memory view of the whole usage document:
      { userId: { "YYYY-MM": { "used": int, "limit": int } } }
    """

    def __init__(self, document: Optional[dict] = None, *, default_limit: int = DEFAULT_MONTHLY_LIMIT) -> None:
        self.default_limit = default_limit
        self._doc: Dict[str, Dict[str, dict]] = {}

        for user, months in (document or {}).items():
            if not isinstance(user, str) or not isinstance(months, dict):
                continue
            bucket = self._doc.setdefault(normalize_user_id(user), {})
            for mk, raw in months.items():
                if not isinstance(mk, str):
                    continue
                record = _coerce_record(raw, default_limit)
                seen = bucket.get(mk)
                # keys differing only in case collapse into one user; the higher count wins
                if seen is None or record.used > seen["used"]:
                    bucket[mk] = record.to_dict()

    def peek(self, user_id: str, month: str) -> UsageRecord:
        """Current record, or a fresh zero record. Never creates the key."""
        raw = self._doc.get(normalize_user_id(user_id), {}).get(month)
        if raw is None:
            return UsageRecord(used=0, limit=self.default_limit)
        return _coerce_record(raw, self.default_limit)

    def resolve(self, user_id: str, month: str) -> dict:
        """The stored record for (user, month), created as used=0 on first access."""
        bucket = self._doc.setdefault(normalize_user_id(user_id), {})
        if month not in bucket:
            bucket[month] = UsageRecord(used=0, limit=self.default_limit).to_dict()
        return bucket[month]

    def try_consume(self, user_id: str, month: str) -> Tuple[UsageRecord, bool]:
        raw = self.resolve(user_id, month)
        if raw["used"] >= raw["limit"]:
            return UsageRecord(**raw), False
        raw["used"] += 1
        return UsageRecord(**raw), True

    def to_dict(self) -> dict:
        return copy.deepcopy(self._doc)

    def __contains__(self, user_id: object) -> bool:
        return isinstance(user_id, str) and normalize_user_id(user_id) in self._doc


class QuotaLedger:
    """
    Per-user monthly quota on top of a LedgerStore.

    Every access reads the full document and every write replaces it. With
    concurrency="none" two concurrent requests of the same user can both read
    used=k and both write k+1. concurrency="per_user" holds an in-process lock
    per user around the whole request and re-reads the document before
    consuming; it does not coordinate between processes.
    """

    def __init__(
        self,
        store: LedgerStore,
        *,
        limit: int = DEFAULT_MONTHLY_LIMIT,
        clock: Callable[[], datetime] = utc_now,
        concurrency: str = "none",
        write_timeout: float = 30.0,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        if concurrency not in ("none", "per_user"):
            raise ValueError(f"Unknown ledger concurrency mode: {concurrency}")

        self.store = store
        self.limit = limit
        self.clock = clock
        self.concurrency = concurrency
        self.write_timeout = write_timeout
        self._user_locks: Dict[str, asyncio.Lock] = {}
        self._lock_holders: Dict[str, int] = {}

    @property
    def serialized(self) -> bool:
        return self.concurrency == "per_user"

    def current_month(self) -> str:
        return month_key(self.clock())

    async def load(self) -> UsageLedger:
        """Full ledger; an unreadable store counts as an empty ledger."""
        try:
            document = await self.store.read()
        except LedgerStoreError as e:
            logger.warning("Usage ledger unavailable, treating as empty: %s", e)
            document = {}
        return UsageLedger(document, default_limit=self.limit)

    async def get_usage(self, user_id: str) -> UsageRecord:
        ledger = await self.load()
        return ledger.peek(user_id, self.current_month())

    async def try_consume(self, user_id: str, month: Optional[str] = None) -> Tuple[UsageRecord, bool, UsageLedger]:
        """
        Load, then consume one unit in memory. The caller persists the returned
        ledger once it decides the consumption stands.
        """
        ledger = await self.load()
        record, allowed = ledger.try_consume(user_id, month or self.current_month())
        return record, allowed, ledger

    async def persist(self, ledger: UsageLedger) -> None:
        """Overwrite the stored document unconditionally. Raises LedgerWriteError."""
        await self.store.write(ledger.to_dict())

    async def persist_quietly(self, ledger: UsageLedger) -> bool:
        """
        Write without failing the caller. The write is shielded from cancellation
        of the calling request and waited on for at most write_timeout seconds;
        past that it keeps running in the background.
        """
        task = asyncio.ensure_future(self.persist(ledger))
        task.add_done_callback(_log_write_outcome)
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self.write_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Usage ledger write still pending after %.1fs, continuing in background",
                self.write_timeout,
            )
            return False
        except LedgerStoreError:
            return False
        return True

    @contextlib.asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        if not self.serialized:
            yield
            return

        key = normalize_user_id(user_id)
        lock = self._user_locks.setdefault(key, asyncio.Lock())
        self._lock_holders[key] = self._lock_holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # drop the lock once nobody holds or waits on it
            self._lock_holders[key] -= 1
            if not self._lock_holders[key]:
                del self._lock_holders[key]
                del self._user_locks[key]


def _log_write_outcome(task: "asyncio.Future[None]") -> None:
    if task.cancelled():
        logger.error("Usage ledger write was cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Failed to update usage ledger: %s: %s", type(exc).__name__, exc)
    else:
        logger.info("Usage ledger updated")
