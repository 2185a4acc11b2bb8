# app/services/feedback/generator.py

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import httpx
from openai import AsyncOpenAI, OpenAIError

from app.core import settings
from app.core.errors import UpstreamServiceError
from app.services.feedback.prompt import SYSTEM_PROMPT, build_feedback_prompt

logger = logging.getLogger(__name__)


class FeedbackGenerator(ABC):
    name: str = "base"

    @abstractmethod
    async def generate(self, *, examples: Sequence[str], transcript: str) -> str:
        """Free-form feedback text containing the fluency / vocabulary / grammar sections."""
        raise NotImplementedError


class OpenAIFeedback(FeedbackGenerator):
    name = "openai"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = (api_key if api_key is not None else getattr(settings, "OPENAI_API_KEY", "")).strip()
        if not self.api_key:
            raise RuntimeError("OPENAI_API_KEY is not configured.")

        self.base_url = (base_url or getattr(settings, "OPENAI_BASE_URL", "https://api.openai.com/v1")).rstrip("/")
        self.model = model or getattr(settings, "FEEDBACK_MODEL", "gpt-4o-mini")
        self.temperature = (
            temperature if temperature is not None else float(getattr(settings, "FEEDBACK_TEMPERATURE", 0.5))
        )
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

    async def generate(self, *, examples: Sequence[str], transcript: str) -> str:
        try:
            async with self._client() as client:
                response = await client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": build_feedback_prompt(examples, transcript)},
                    ],
                    temperature=self.temperature,
                )
        except OpenAIError as e:
            raise UpstreamServiceError(f"Feedback generation failed: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError):
            raise UpstreamServiceError("Unexpected chat completion response")

        if not isinstance(content, str) or not content.strip():
            raise UpstreamServiceError("Feedback generation returned no text")

        return content.strip()


def build_feedback_generator() -> FeedbackGenerator:
    return OpenAIFeedback()
