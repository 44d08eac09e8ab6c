"""
Tests for the Job Processor

Tests cover:
- End-to-end success and failure scenarios
- Silent skip on a lost claim and idempotent double dispatch
- Error path for scrape, refine, timeout and persist failures
- Terminal states are never reprocessed
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from scrape_worker.errors import ParseError, TimeoutFailure
from scrape_worker.models import JobStatus
from scrape_worker.services.change_feed import ChangeFeed
from scrape_worker.services.field_refiner import RefinedJob
from scrape_worker.services.job_processor import JobProcessor, ProcessOutcome
from scrape_worker.services.job_store import JobStore
from scrape_worker.services.page_extractor import PageExtractor, ScrapedPage


REFINED = RefinedJob(
    title="Senior Engineer",
    company="Acme Corp",
    location="Remote",
    description="Build the core data platform.",
    skills=["Go", "SQL"],
    work_type="Full-time",
)


@pytest.fixture
def extractor(job_text):
    extractor = MagicMock()
    extractor.extract = AsyncMock(return_value=ScrapedPage(title="Example", content=job_text))
    return extractor


@pytest.fixture
def refiner():
    refiner = MagicMock()
    refiner.refine = AsyncMock(return_value=REFINED)
    return refiner


@pytest.fixture
def processor(store, extractor, refiner):
    return JobProcessor(store=store, extractor=extractor, refiner=refiner, timeout_seconds=5)


class TestEndToEnd:
    """Full pipeline scenarios against a real store."""

    @pytest.mark.asyncio
    async def test_collected_job_is_finalized(self, processor, store, make_job, extractor, refiner, job_text):
        await make_job("j1", normalized_url="https://example.com/post")

        outcome = await processor.process("j1")

        assert outcome == ProcessOutcome.FINALIZED
        extractor.extract.assert_awaited_once_with("https://example.com/post")
        refiner.refine.assert_awaited_once_with(
            job_text, "https://example.com/post", max_chars=30000
        )

        job = await store.get("j1")
        assert job.status == JobStatus.FINALIZED.value
        assert job.title == "Senior Engineer"
        assert job.company == "Acme Corp"
        assert job.skills == ["Go", "SQL"]
        assert job.work_type == "Full-time"
        assert job.error_message is None

    @pytest.mark.asyncio
    async def test_unreachable_url_ends_in_error(self, store, make_job, refiner):
        await make_job("j1", normalized_url="https://unreachable.invalid/job")
        extractor = PageExtractor(max_attempts=2, retry_delay=0, settle_seconds=0)
        processor = JobProcessor(store=store, extractor=extractor, refiner=refiner, timeout_seconds=5)
        network_error = RuntimeError("net::ERR_NAME_NOT_RESOLVED at https://unreachable.invalid/job")

        with patch.object(extractor, "_fetch_once", AsyncMock(side_effect=network_error)) as fetch:
            outcome = await processor.process("j1")

        assert outcome == ProcessOutcome.ERROR
        assert fetch.await_count == 2
        refiner.refine.assert_not_awaited()

        job = await store.get("j1")
        assert job.status == JobStatus.ERROR.value
        assert job.description.startswith("Scraper Error: ")
        assert "net::ERR_NAME_NOT_RESOLVED" in job.description

    @pytest.mark.asyncio
    async def test_short_content_on_every_attempt_ends_in_error(self, store, make_job, refiner):
        await make_job("j1")
        extractor = PageExtractor(max_attempts=2, retry_delay=0, settle_seconds=0)
        processor = JobProcessor(store=store, extractor=extractor, refiner=refiner, timeout_seconds=5)
        short = ScrapedPage(title="Just a moment...", content="Checking your browser")

        with patch.object(extractor, "_fetch_once", AsyncMock(return_value=short)) as fetch:
            outcome = await processor.process("j1")

        assert outcome == ProcessOutcome.ERROR
        assert fetch.await_count == 2
        job = await store.get("j1")
        assert job.status == JobStatus.ERROR.value
        assert "too short" in job.description


class TestClaiming:
    """Test claim conflicts and duplicate dispatch."""

    @pytest.mark.asyncio
    async def test_lost_claim_is_silent_skip(self, processor, store, make_job, extractor):
        await make_job("j1", status="processing")

        outcome = await processor.process("j1")

        assert outcome == ProcessOutcome.SKIPPED
        extractor.extract.assert_not_awaited()
        assert (await store.get("j1")).status == "processing"

    @pytest.mark.asyncio
    async def test_double_dispatch_enriches_once(self, processor, store, make_job, extractor, refiner):
        await make_job("j1")

        first = await processor.process("j1")
        second = await processor.process("j1")

        assert first == ProcessOutcome.FINALIZED
        assert second == ProcessOutcome.SKIPPED
        assert extractor.extract.await_count == 1
        assert refiner.refine.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_dispatch_enriches_once(self, processor, make_job, extractor):
        await make_job("j1")

        outcomes = await asyncio.gather(processor.process("j1"), processor.process("j1"))

        assert sorted(o.value for o in outcomes) == ["finalized", "skipped"]
        assert extractor.extract.await_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["finalized", "error"])
    async def test_terminal_jobs_are_not_reprocessed(self, processor, store, make_job, extractor, status):
        await make_job("j1", status=status, description="Existing")

        outcome = await processor.process("j1")

        assert outcome == ProcessOutcome.SKIPPED
        extractor.extract.assert_not_awaited()
        job = await store.get("j1")
        assert job.status == status
        assert job.description == "Existing"

    @pytest.mark.asyncio
    async def test_deleted_job_is_skipped(self, processor, make_job, extractor):
        await make_job("j1", is_deleted=True)

        assert await processor.process("j1") == ProcessOutcome.SKIPPED
        extractor.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_failure_during_claim_defers_job(self, extractor, refiner):
        store = MagicMock()
        store.claim = AsyncMock(side_effect=ConnectionError("database is unavailable"))
        store.mark_error = AsyncMock()
        processor = JobProcessor(store=store, extractor=extractor, refiner=refiner, timeout_seconds=5)

        outcome = await processor.process("j1")

        assert outcome == ProcessOutcome.DEFERRED
        store.mark_error.assert_not_awaited()
        extractor.extract.assert_not_awaited()


class TestErrorPath:
    """Test conversion of failures into error status."""

    @pytest.mark.asyncio
    async def test_refine_api_failure(self, processor, store, make_job, refiner):
        await make_job("j1")
        refiner.refine.side_effect = RuntimeError("429 quota exceeded")

        outcome = await processor.process("j1")

        assert outcome == ProcessOutcome.ERROR
        job = await store.get("j1")
        assert job.status == JobStatus.ERROR.value
        assert job.error_message == "Refiner Error: 429 quota exceeded"

    @pytest.mark.asyncio
    async def test_refine_parse_failure(self, processor, store, make_job, refiner):
        await make_job("j1")
        refiner.refine.side_effect = ParseError("AI response is not valid JSON: Expecting value")

        await processor.process("j1")

        job = await store.get("j1")
        assert job.status == JobStatus.ERROR.value
        assert "not valid JSON" in job.description

    @pytest.mark.asyncio
    async def test_timeout_routes_to_error(self, store, make_job, refiner):
        await make_job("j1")

        async def hang(url):
            await asyncio.sleep(10)

        extractor = MagicMock()
        extractor.extract = AsyncMock(side_effect=hang)
        processor = JobProcessor(store=store, extractor=extractor, refiner=refiner, timeout_seconds=0.05)

        outcome = await processor.process("j1")

        assert outcome == ProcessOutcome.ERROR
        refiner.refine.assert_not_awaited()
        job = await store.get("j1")
        assert job.status == JobStatus.ERROR.value
        assert "timed out" in job.description

    @pytest.mark.asyncio
    async def test_default_timeout_message_mentions_two_minutes(self, store, extractor, refiner):
        processor = JobProcessor(store=store, extractor=extractor, refiner=refiner)

        assert processor.timeout_seconds == 120

        assert str(TimeoutFailure(120)) == "Job processing timed out (2m)"

    @pytest.mark.asyncio
    async def test_persist_failure_is_logged_and_error_attempted(self, extractor, refiner):
        job = MagicMock(normalized_url="https://example.com/post")
        store = MagicMock()
        store.claim = AsyncMock(return_value=True)
        store.get = AsyncMock(return_value=job)
        store.finalize = AsyncMock(side_effect=ConnectionError("connection refused"))
        store.mark_error = AsyncMock(side_effect=ConnectionError("connection refused"))
        processor = JobProcessor(store=store, extractor=extractor, refiner=refiner, timeout_seconds=5)

        outcome = await processor.process("j1")

        assert outcome == ProcessOutcome.ERROR
        store.mark_error.assert_awaited_once()
        assert "Failed to save results" in store.mark_error.await_args.args[1]

    @pytest.mark.asyncio
    async def test_unexpected_exception_does_not_escape(self, processor, store, make_job, extractor):
        await make_job("j1")
        extractor.extract.side_effect = KeyError("title")

        outcome = await processor.process("j1")

        assert outcome == ProcessOutcome.ERROR
        assert (await store.get("j1")).status == JobStatus.ERROR.value


class TestSlowChangeFeed:
    """Test that change notifications cannot undo or stall a job."""

    @pytest.mark.asyncio
    async def test_slow_feed_after_finalize_keeps_job_finalized(
        self, session_factory, make_job, extractor, refiner
    ):
        await make_job("j1")

        async def publish(event_type, record, *args, **kwargs):
            if record["status"] == "finalized":
                await asyncio.sleep(0.5)
            return True

        feed = MagicMock()
        feed.publish = AsyncMock(side_effect=publish)
        store = JobStore(session_factory, change_feed=feed)
        processor = JobProcessor(store=store, extractor=extractor, refiner=refiner, timeout_seconds=0.2)

        outcome = await processor.process("j1")

        assert outcome == ProcessOutcome.FINALIZED
        job = await store.get("j1")
        assert job.status == JobStatus.FINALIZED.value
        assert job.description == "Build the core data platform."
        statuses = [c.args[1]["status"] for c in feed.publish.await_args_list]
        assert statuses == ["processing", "finalized"]

    @pytest.mark.asyncio
    async def test_hung_redis_does_not_block_processing(self, session_factory, make_job, extractor, refiner):
        await make_job("j1")

        async def hang(*args, **kwargs):
            await asyncio.sleep(30)

        redis = AsyncMock()
        redis.publish = AsyncMock(side_effect=hang)
        feed = ChangeFeed(redis_url="redis://localhost:6379", publish_timeout=0.05)
        feed.redis = redis
        store = JobStore(session_factory, change_feed=feed)
        processor = JobProcessor(store=store, extractor=extractor, refiner=refiner, timeout_seconds=5)

        outcome = await asyncio.wait_for(processor.process("j1"), timeout=2)

        assert outcome == ProcessOutcome.FINALIZED
        assert redis.publish.await_count == 2
        assert (await store.get("j1")).status == JobStatus.FINALIZED.value

    @pytest.mark.asyncio
    async def test_hung_redis_does_not_block_error_path(self, session_factory, make_job, extractor, refiner):
        await make_job("j1")
        extractor.extract.side_effect = RuntimeError("net::ERR_NAME_NOT_RESOLVED")

        async def hang(*args, **kwargs):
            await asyncio.sleep(30)

        redis = AsyncMock()
        redis.publish = AsyncMock(side_effect=hang)
        feed = ChangeFeed(redis_url="redis://localhost:6379", publish_timeout=0.05)
        feed.redis = redis
        store = JobStore(session_factory, change_feed=feed)
        processor = JobProcessor(store=store, extractor=extractor, refiner=refiner, timeout_seconds=5)

        outcome = await asyncio.wait_for(processor.process("j1"), timeout=2)

        assert outcome == ProcessOutcome.ERROR
        assert (await store.get("j1")).status == JobStatus.ERROR.value
