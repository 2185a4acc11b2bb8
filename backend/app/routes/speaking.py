# app/routes/speaking.py

from __future__ import annotations

import json
import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile
from pydantic import BaseModel

from app.core import settings
from app.core.errors import ServiceError, UploadInvalid, UploadMissing, UpstreamServiceError
from app.routes.deps import get_grading_service
from app.services.grading import GradingService
from app.services.speech.stt_base import clamp_str

logger = logging.getLogger(__name__)

router = APIRouter(tags=["speaking"])

MAX_EXAMPLES = 20
MAX_EXAMPLE_CHARS = 500


class GradeOut(BaseModel):
    fluency: str
    vocabulary: str
    grammar: str
    used: int
    limit: int
    remaining: int
    feedback: str = ""
    transcript: str = ""


def parse_examples(raw: Optional[str]) -> List[str]:
    """`examples` form field: JSON array of reference sentences."""
    txt = (raw or "").strip()
    if not txt:
        return []

    try:
        data = json.loads(txt)
    except ValueError:
        raise UploadInvalid("examples must be a JSON array of strings")

    if not isinstance(data, list):
        raise UploadInvalid("examples must be a JSON array of strings")

    out = []
    for item in data[:MAX_EXAMPLES]:
        if item is None or isinstance(item, (dict, list)):
            continue
        s = str(item).strip()
        if s:
            out.append(s[:MAX_EXAMPLE_CHARS])
    return out


@router.post("/speaking/grade", response_model=GradeOut)
async def grade(
    background_tasks: BackgroundTasks,
    audio: Optional[UploadFile] = File(None),
    examples: Optional[str] = Form(None),
    userEmail: Optional[str] = Form(None),  # noqa: N803
    service: GradingService = Depends(get_grading_service),
) -> GradeOut:
    try:
        if audio is None:
            raise UploadMissing()

        b = await audio.read()
        if not b:
            raise UploadMissing("Empty audio upload", message="Empty audio upload.")

        max_bytes = int(settings.MAX_AUDIO_BYTES)
        if max_bytes > 0 and len(b) > max_bytes:
            raise UploadInvalid(
                f"Audio too large ({len(b)} bytes). Max is {max_bytes}.",
                status_code=413,
            )

        user_email = clamp_str(userEmail, default=settings.DEFAULT_USER_EMAIL, max_len=320)

        result = await service.grade(
            user_email=user_email,
            audio_bytes=b,
            examples=parse_examples(examples),
            filename=clamp_str(audio.filename, default="audio.wav", max_len=128),
            content_type=(audio.content_type or "audio/wav"),
            schedule=background_tasks.add_task,
        )
        return GradeOut(**result.to_response())

    except ServiceError:
        raise
    except Exception as e:
        logger.exception("Error in /api/speaking/grade")
        raise UpstreamServiceError(f"{type(e).__name__}: {e}") from e
