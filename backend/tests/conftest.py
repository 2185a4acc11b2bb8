"""Shared test fixtures for the speaking backend.

Provides:
- In-memory ledger store that can be told to fail reads / writes
- Fixed clock and a QuotaLedger on top of both
- Fake transcription and feedback providers (no network)
- Async FastAPI test client with the service dependencies overridden
"""
from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.errors import LedgerReadError, LedgerWriteError, UpstreamServiceError
from app.services.feedback.extractor import FeedbackExtractor
from app.services.feedback.generator import FeedbackGenerator
from app.services.grading import GradingService
from app.services.quota.ledger import QuotaLedger
from app.services.speech.stt_base import STTProvider, STTResult
from app.services.storage.ledger_store import MemoryLedgerStore

SAMPLE_FEEDBACK = (
    "💬 Fluency — You spoke smoothly with few pauses.\n"
    "Try linking your ideas with 'because'.\n\n"
    "🧠 Vocabulary — Good range of words.\n"
    "👉 'very big' → 'huge'\n\n"
    "🛠️ Grammar — One tense mistake.\n"
    "👉 I go there yesterday.\n"
    "✅ I went there yesterday."
)


class FlakyStore(MemoryLedgerStore):
    """Memory store whose reads / writes can be switched to fail."""

    def __init__(self, document=None):
        super().__init__(document)
        self.fail_reads = False
        self.fail_writes = False

    async def read(self):
        if self.fail_reads:
            raise LedgerReadError("store unreachable")
        return await super().read()

    async def write(self, document):
        if self.fail_writes:
            raise LedgerWriteError("store unreachable")
        await super().write(document)


class FixedClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class FakeSTT(STTProvider):
    name = "fake"

    def __init__(self, text="I go to the park yesterday and it was very big fun."):
        self.text = text
        self.error = None
        self.hook = None
        self.calls = []

    async def transcribe(self, *, audio_bytes, lang="en", content_type="audio/wav", filename="audio.wav"):
        self.calls.append({"size": len(audio_bytes), "lang": lang, "filename": filename})
        if self.hook is not None:
            await self.hook()
        if self.error is not None:
            raise self.error
        return STTResult(text=self.text, language=lang)


class FakeFeedback(FeedbackGenerator):
    name = "fake"

    def __init__(self, text=SAMPLE_FEEDBACK):
        self.text = text
        self.error = None
        self.calls = []

    async def generate(self, *, examples, transcript):
        self.calls.append({"examples": list(examples), "transcript": transcript})
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def quota(store, clock):
    return QuotaLedger(store, limit=30, clock=clock, write_timeout=2.0)


@pytest.fixture
def stt():
    return FakeSTT()


@pytest.fixture
def generator():
    return FakeFeedback()


@pytest.fixture
def upstream_error():
    return UpstreamServiceError("upstream down")


@pytest.fixture
def grading(quota, stt, generator):
    return GradingService(
        quota=quota,
        stt=stt,
        generator=generator,
        extractor=FeedbackExtractor("empty"),
    )


@pytest.fixture
async def client(quota, grading):
    """Async HTTP test client for the FastAPI app, no real upstreams or store."""
    from app.main import app
    from app.routes.deps import get_grading_service, get_quota_ledger

    app.dependency_overrides[get_quota_ledger] = lambda: quota
    app.dependency_overrides[get_grading_service] = lambda: grading

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
