# app/routes/usage.py

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.routes.deps import get_quota_ledger
from app.services.quota.ledger import QuotaLedger

router = APIRouter(tags=["usage"])


class UsageOut(BaseModel):
    used: int
    limit: int


@router.get("/usage/{email}", response_model=UsageOut)
async def get_usage(email: str, quota: QuotaLedger = Depends(get_quota_ledger)) -> UsageOut:
    # read-only; an unreachable store reports zero usage
    record = await quota.get_usage(email)
    return UsageOut(used=record.used, limit=record.limit)
