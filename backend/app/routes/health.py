# app/routes/health.py

from __future__ import annotations

from fastapi import APIRouter

from app.core import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "env": settings.ENV,
        "stt_provider": settings.STT_PROVIDER,
        "openai_configured": bool(settings.OPENAI_API_KEY),
        "ledger_backend": settings.LEDGER_BACKEND,
        "ledger_write_mode": settings.LEDGER_WRITE_MODE,
        "ledger_concurrency": settings.LEDGER_CONCURRENCY,
        "monthly_limit": settings.MONTHLY_LIMIT,
    }
