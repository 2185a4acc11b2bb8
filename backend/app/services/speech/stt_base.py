# app/services/speech/stt_base.py

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class STTResult:
    text: str
    confidence: Optional[float] = None
    language: Optional[str] = None
    raw: Optional[dict] = None


class STTProvider(ABC):
    name: str = "base"

    @abstractmethod
    async def transcribe(
        self,
        *,
        audio_bytes: bytes,
        lang: str = "en",
        content_type: str = "audio/wav",
        filename: str = "audio.wav",
    ) -> STTResult:
        """
        Raise ValueError for audio the provider cannot accept and
        UpstreamServiceError when the provider itself fails.
        """
        raise NotImplementedError


def clamp_str(s: Optional[str], default: str = "", max_len: int = 64) -> str:
    x = (s or "").strip()
    if not x:
        return default
    return x[:max_len]
