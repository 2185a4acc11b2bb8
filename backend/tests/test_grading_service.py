"""Tests for the grading pipeline: quota admission, upstream calls and charging."""
import asyncio

import pytest

from app.core.errors import QuotaExceeded, UploadInvalid, UploadMissing, UpstreamServiceError
from app.services.grading import GradingService
from app.services.quota.ledger import QuotaLedger

EXAMPLES = ["I usually walk to school.", "My favourite place is the park."]
MONTH = "2025-03"


async def grade(service, user="Student@Example.com", audio=b"audio-bytes", **kwargs):
    return await service.grade(user_email=user, audio_bytes=audio, examples=EXAMPLES, **kwargs)


# =============================================================================
# HAPPY PATH
# =============================================================================

class TestGrade:

    async def test_success_charges_one_unit(self, grading, store, stt, generator):
        result = await grade(grading)

        assert result.sections.fluency.startswith("You spoke smoothly")
        assert result.sections.vocabulary.startswith("Good range of words.")
        assert result.sections.grammar.endswith("✅ I went there yesterday.")
        assert (result.usage.used, result.usage.limit, result.usage.remaining) == (1, 30, 29)
        assert store.document == {"student@example.com": {MONTH: {"used": 1, "limit": 30}}}

        assert stt.calls[0]["size"] == len(b"audio-bytes")
        assert generator.calls == [{"examples": EXAMPLES, "transcript": stt.text}]

    async def test_response_shape(self, grading):
        body = (await grade(grading)).to_response()
        assert set(body) == {
            "fluency", "vocabulary", "grammar", "used", "limit", "remaining", "feedback", "transcript",
        }

    async def test_consecutive_requests_accumulate(self, grading, store):
        for _ in range(3):
            await grade(grading)
        assert store.document["student@example.com"][MONTH]["used"] == 3

    async def test_unlabelled_feedback_still_charges(self, grading, store, generator):
        generator.text = "Nice work overall, keep practising."
        result = await grade(grading)
        assert result.sections.to_dict() == {"fluency": "", "vocabulary": "", "grammar": ""}
        assert result.usage.used == 1


# =============================================================================
# REJECTIONS
# =============================================================================

class TestRejections:

    async def test_quota_exhausted_makes_no_calls(self, grading, store, stt, generator):
        await store.write({"student@example.com": {MONTH: {"used": 30, "limit": 30}}})
        writes_before = store.writes

        with pytest.raises(QuotaExceeded) as exc:
            await grade(grading)

        assert exc.value.status_code == 403
        assert exc.value.message == "Monthly limit reached (30 feedbacks)."
        assert stt.calls == []
        assert generator.calls == []
        assert store.writes == writes_before

    async def test_missing_audio_makes_no_calls(self, grading, store, stt):
        with pytest.raises(UploadMissing):
            await grade(grading, audio=None)
        with pytest.raises(UploadMissing):
            await grade(grading, audio=b"")
        assert stt.calls == []
        assert store.reads == 0

    async def test_bad_audio_is_a_client_error(self, grading, store, stt, generator):
        stt.error = ValueError("Not a WAV file")
        with pytest.raises(UploadInvalid):
            await grade(grading)
        assert generator.calls == []
        assert store.writes == 0


# =============================================================================
# CHARGE ONLY ON FULL SUCCESS
# =============================================================================

class TestNoChargeOnFailure:

    async def test_transcription_failure(self, grading, store, stt, generator, upstream_error):
        stt.error = upstream_error
        with pytest.raises(UpstreamServiceError):
            await grade(grading)
        assert generator.calls == []
        assert store.writes == 0

    async def test_feedback_failure(self, grading, store, generator, upstream_error):
        generator.error = upstream_error
        with pytest.raises(UpstreamServiceError):
            await grade(grading)
        assert store.writes == 0
        assert store.document == {}

    async def test_cancelled_request_is_not_charged(self, grading, store, stt):
        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.sleep(10)

        stt.hook = hang
        task = asyncio.create_task(grade(grading))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert store.writes == 0


# =============================================================================
# STORE FAILURES
# =============================================================================

class TestStoreFailures:

    async def test_unreadable_store_fails_open(self, grading, store):
        store.fail_reads = True
        result = await grade(grading)
        assert result.usage.used == 1

    async def test_write_failure_is_not_surfaced(self, grading, store):
        store.fail_writes = True
        result = await grade(grading)
        assert result.usage.used == 1
        assert store.document == {}


# =============================================================================
# WRITE MODES / SERIALIZATION
# =============================================================================

class TestWriteModes:

    async def test_background_write_is_scheduled(self, quota, store, stt, generator):
        service = GradingService(quota=quota, stt=stt, generator=generator, write_mode="background")
        scheduled = []

        result = await grade(service, schedule=lambda fn, *args: scheduled.append((fn, args)))

        assert result.usage.used == 1
        assert store.writes == 0
        fn, args = scheduled[0]
        assert await fn(*args) is True
        assert store.document["student@example.com"][MONTH]["used"] == 1

    async def test_background_without_scheduler_writes_inline(self, quota, store, stt, generator):
        service = GradingService(quota=quota, stt=stt, generator=generator, write_mode="background")
        await grade(service)
        assert store.writes == 1

    async def test_serialized_mode_writes_inline(self, store, clock, stt, generator):
        quota = QuotaLedger(store, clock=clock, concurrency="per_user")
        service = GradingService(quota=quota, stt=stt, generator=generator, write_mode="background")
        scheduled = []

        await grade(service, schedule=lambda fn, *args: scheduled.append(fn))

        assert scheduled == []
        assert store.writes == 1

    def test_unknown_write_mode(self, quota, stt, generator):
        with pytest.raises(ValueError):
            GradingService(quota=quota, stt=stt, generator=generator, write_mode="later")


class TestConcurrentWriters:

    async def other_user_writes_during_upstream(self, store):
        doc = await store.read()
        doc["other@example.com"] = {MONTH: {"used": 7, "limit": 30}}
        await store.write(doc)

    async def test_plain_mode_overwrites_other_writers(self, grading, store, stt):
        stt.hook = lambda: self.other_user_writes_during_upstream(store)
        await grade(grading)
        # last writer wins: the write made during transcription is lost
        assert "other@example.com" not in store.document

    async def test_serialized_mode_rereads_before_consuming(self, store, clock, stt, generator):
        quota = QuotaLedger(store, clock=clock, concurrency="per_user")
        service = GradingService(quota=quota, stt=stt, generator=generator)
        stt.hook = lambda: self.other_user_writes_during_upstream(store)

        await grade(service)

        assert store.document["other@example.com"][MONTH]["used"] == 7
        assert store.document["student@example.com"][MONTH]["used"] == 1

    async def test_serialized_mode_counts_concurrent_requests(self, store, clock, stt, generator):
        quota = QuotaLedger(store, clock=clock, concurrency="per_user")
        service = GradingService(quota=quota, stt=stt, generator=generator)

        async def slow():
            await asyncio.sleep(0.02)

        stt.hook = slow
        await asyncio.gather(*(grade(service) for _ in range(5)))
        assert store.document["student@example.com"][MONTH]["used"] == 5

    async def test_serialized_mode_rejects_when_quota_ran_out_meanwhile(self, store, clock, stt, generator):
        quota = QuotaLedger(store, clock=clock, concurrency="per_user")
        service = GradingService(quota=quota, stt=stt, generator=generator)

        async def another_process_uses_last_unit():
            await store.write({"student@example.com": {MONTH: {"used": 30, "limit": 30}}})

        stt.hook = another_process_uses_last_unit
        with pytest.raises(QuotaExceeded):
            await grade(service)
        assert store.document["student@example.com"][MONTH]["used"] == 30
