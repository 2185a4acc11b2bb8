# app/routes/deps.py

from __future__ import annotations

from app.core import settings
from app.services.feedback.extractor import FeedbackExtractor
from app.services.feedback.generator import build_feedback_generator
from app.services.grading import GradingService
from app.services.quota.ledger import QuotaLedger
from app.services.speech.providers import build_stt_provider
from app.services.storage.ledger_store import build_ledger_store

# Built once per process on first use, then shared by every request
_quota: QuotaLedger | None = None
_grading: GradingService | None = None


def get_quota_ledger() -> QuotaLedger:
    global _quota
    if _quota is None:
        _quota = QuotaLedger(
            build_ledger_store(),
            limit=int(getattr(settings, "MONTHLY_LIMIT", 30)),
            concurrency=getattr(settings, "LEDGER_CONCURRENCY", "none"),
            write_timeout=float(getattr(settings, "LEDGER_TIMEOUT_SECONDS", 30.0)),
        )
    return _quota


def get_grading_service() -> GradingService:
    global _grading
    if _grading is None:
        _grading = GradingService(
            quota=get_quota_ledger(),
            stt=build_stt_provider(),
            generator=build_feedback_generator(),
            extractor=FeedbackExtractor(getattr(settings, "FEEDBACK_EXTRACT_FALLBACK", "empty")),
            write_mode=getattr(settings, "LEDGER_WRITE_MODE", "inline"),
            language=getattr(settings, "STT_LANGUAGE", "en"),
        )
    return _grading

