# app/services/speech/providers.py

from __future__ import annotations

from typing import Optional

from app.core import settings
from app.services.speech.stt_base import STTProvider


def build_stt_provider(name: Optional[str] = None) -> STTProvider:
    provider = (name or getattr(settings, "STT_PROVIDER", "openai") or "openai").strip().lower()

    if provider == "openai":
        from app.services.speech.openai_whisper import OpenAIWhisperSTT

        return OpenAIWhisperSTT()

    raise RuntimeError(f"Unknown STT_PROVIDER: {provider}")
