# app/services/grading.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from app.core.errors import (
    QuotaExceeded,
    UploadInvalid,
    UploadMissing,
    UpstreamServiceError,
)
from app.services.feedback.extractor import FeedbackExtractor, FeedbackSections
from app.services.feedback.generator import FeedbackGenerator
from app.services.quota.ledger import QuotaLedger, UsageRecord, normalize_user_id
from app.services.speech.stt_base import STTProvider

logger = logging.getLogger(__name__)

# BackgroundTasks.add_task has this shape
Scheduler = Callable[..., Any]


@dataclass
class GradeResult:
    sections: FeedbackSections
    usage: UsageRecord
    feedback: str
    transcript: str

    def to_response(self) -> dict:
        return {
            **self.sections.to_dict(),
            "used": self.usage.used,
            "limit": self.usage.limit,
            "remaining": self.usage.remaining,
            "feedback": self.feedback,
            "transcript": self.transcript,
        }


class GradingService:
    """
    admit -> transcribe -> generate feedback -> extract -> consume -> persist.

    The quota is consumed only after extraction, so a failed or cancelled
    upstream call leaves the ledger untouched.
    """

    def __init__(
        self,
        *,
        quota: QuotaLedger,
        stt: STTProvider,
        generator: FeedbackGenerator,
        extractor: Optional[FeedbackExtractor] = None,
        write_mode: str = "inline",
        language: str = "en",
    ) -> None:
        if write_mode not in ("inline", "background"):
            raise ValueError(f"Unknown ledger write mode: {write_mode}")
        self.quota = quota
        self.stt = stt
        self.generator = generator
        self.extractor = extractor or FeedbackExtractor()
        self.write_mode = write_mode
        self.language = language

    async def grade(
        self,
        *,
        user_email: str,
        audio_bytes: Optional[bytes],
        examples: Sequence[str],
        filename: str = "audio.wav",
        content_type: str = "audio/wav",
        schedule: Optional[Scheduler] = None,
    ) -> GradeResult:
        if not audio_bytes:
            raise UploadMissing()

        user_id = normalize_user_id(user_email)

        async with self.quota.hold(user_id):
            ledger = await self.quota.load()
            month = self.quota.current_month()

            current = ledger.peek(user_id, month)
            if current.exhausted:
                logger.info("Quota reached for %s (%d/%d)", user_id, current.used, current.limit)
                raise QuotaExceeded(used=current.used, limit=current.limit)

            logger.info("Received audio from %s: %s (%d bytes)", user_id, filename, len(audio_bytes))

            transcript = await self._transcribe(audio_bytes, filename=filename, content_type=content_type)
            feedback = await self._generate(examples, transcript)
            sections = self.extractor.extract(feedback)

            if self.quota.serialized:
                # pick up writes other users made while we were waiting on upstream
                ledger = await self.quota.load()

            usage, allowed = ledger.try_consume(user_id, month)
            if not allowed:
                logger.warning("Quota for %s was used up while grading (%d/%d)", user_id, usage.used, usage.limit)
                raise QuotaExceeded(used=usage.used, limit=usage.limit)

            if self.write_mode == "background" and schedule is not None and not self.quota.serialized:
                schedule(self.quota.persist_quietly, ledger)
            else:
                await self.quota.persist_quietly(ledger)

        return GradeResult(sections=sections, usage=usage, feedback=feedback, transcript=transcript)

    async def _transcribe(self, audio_bytes: bytes, *, filename: str, content_type: str) -> str:
        try:
            res = await self.stt.transcribe(
                audio_bytes=audio_bytes,
                lang=self.language,
                content_type=content_type,
                filename=filename,
            )
        except ValueError as e:
            raise UploadInvalid(f"Unsupported audio: {e}") from e
        except UpstreamServiceError:
            logger.exception("Transcription failed")
            raise

        logger.info("Transcribed %d characters", len(res.text))
        return res.text

    async def _generate(self, examples: Sequence[str], transcript: str) -> str:
        try:
            feedback = await self.generator.generate(examples=examples, transcript=transcript)
        except UpstreamServiceError:
            logger.exception("Feedback generation failed")
            raise

        logger.debug("Feedback: %s", feedback)
        return feedback
