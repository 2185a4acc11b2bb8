# app/services/speech/openai_whisper.py

from __future__ import annotations

from typing import Optional

import httpx
from openai import AsyncOpenAI, OpenAIError

from app.core import settings
from app.core.errors import UpstreamServiceError
from app.services.speech.stt_base import STTProvider, STTResult, clamp_str


class OpenAIWhisperSTT(STTProvider):
    name = "openai"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = (api_key if api_key is not None else getattr(settings, "OPENAI_API_KEY", "")).strip()
        if not self.api_key:
            raise RuntimeError("OPENAI_API_KEY is not configured.")

        self.base_url = (base_url or getattr(settings, "OPENAI_BASE_URL", "https://api.openai.com/v1")).rstrip("/")
        self.model = model or getattr(settings, "WHISPER_MODEL", "whisper-1")
        self.timeout = timeout or float(getattr(settings, "UPSTREAM_TIMEOUT_SECONDS", 30.0))
        self.max_retries = (
            max_retries if max_retries is not None else int(getattr(settings, "OPENAI_MAX_RETRIES", 2))
        )
        self._transport = transport

    def _client(self) -> AsyncOpenAI:
        http_client = httpx.AsyncClient(transport=self._transport) if self._transport is not None else None
        return AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=self.max_retries,
            http_client=http_client,
        )

    async def transcribe(
        self,
        *,
        audio_bytes: bytes,
        lang: str = "en",
        content_type: str = "audio/wav",
        filename: str = "audio.wav",
    ) -> STTResult:
        if not audio_bytes:
            raise ValueError("Empty audio upload")

        extra = {}
        language = clamp_str(lang, default="", max_len=8).split("-")[0].lower()
        if language and language != "auto":
            extra["language"] = language

        upload = (clamp_str(filename, default="audio.wav", max_len=128), audio_bytes, content_type)

        try:
            async with self._client() as client:
                res = await client.audio.transcriptions.create(
                    model=self.model,
                    file=upload,
                    response_format="text",
                    **extra,
                )
        except OpenAIError as e:
            raise UpstreamServiceError(f"Whisper transcription failed: {e}") from e

        # response_format="text" comes back as a plain string
        text = res if isinstance(res, str) else getattr(res, "text", "")

        return STTResult(
            text=(text or "").strip(),
            language=extra.get("language"),
            raw={"model": self.model},
        )
