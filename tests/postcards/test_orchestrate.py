"""Tests for batch image resolution.

Tests the ImageResolutionOrchestrator that resolves every record
concurrently:
1. Real locations via stock search
2. Fictional locations via paid → free → stock search → placeholder
3. Progress events per tier attempt
4. At most one committed image per record
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from imagery.free_providers import FreeImageProvider
from imagery.generative import GenerativeImageClient
from imagery.models import LoadResult
from imagery.placeholder import resolve_placeholder
from postcards.models import STAGE_PAID, STAGE_SEARCHING, LocationRecord
from postcards.orchestrate import ImageResolutionOrchestrator, ResolutionBatch

PROVIDER_A = FreeImageProvider(name="A", url_template="https://free-a.test/{prompt}")
PROVIDER_B = FreeImageProvider(name="B", url_template="https://free-b.test/{prompt}")


class FakeStockSearch:
    """Stock search double; queries listed in stall_on block until released."""

    def __init__(self, url=None, stall_on=()):
        self.url = url
        self.stall_on = set(stall_on)
        self.release = asyncio.Event()
        self.queries = []

    async def try_search(self, query):
        self.queries.append(query)
        if query in self.stall_on:
            await self.release.wait()
        if self.url is None:
            return None
        return f"{self.url}?q={query}"


def make_orchestrator(settings, handler, stock_search=None, free_providers=(PROVIDER_A, PROVIDER_B)):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    generator = GenerativeImageClient(settings, client, free_providers=list(free_providers))
    orchestrator = ImageResolutionOrchestrator(
        settings,
        client,
        stock_search=stock_search,
        generator=generator,
    )
    return orchestrator, client


def states(batch, index):
    """(state, stage, url) tuples of every event published for one record."""
    return [
        (e.status.state, e.status.stage, e.status.url)
        for e in batch.history
        if e.index == index
    ]


@pytest.fixture
def paid_settings(fast_settings):
    return fast_settings.model_copy(update={
        "aigc_api_key": "sk-test",
        "aigc_api_type": "openai",
        "aigc_api_url": "https://paid.test/v1/images/generations",
    })


@pytest.mark.unit
class TestResolutionBatch:
    """Test commit/advance bookkeeping without any providers."""

    @pytest.mark.asyncio
    async def test_second_commit_is_discarded(self):
        batch = ResolutionBatch([LocationRecord(location="Tokyo")])

        assert batch.commit(0, "https://img.test/first.jpg")
        assert not batch.commit(0, "https://img.test/second.jpg")
        assert not batch.advance(0, "searching")

        assert batch.records[0].image_url == "https://img.test/first.jpg"
        assert batch.discarded_updates == 2
        assert batch.finished

    @pytest.mark.asyncio
    async def test_callbacks(self):
        progress, results = [], []
        batch = ResolutionBatch([LocationRecord(location="A"), LocationRecord(location="B")])
        batch.subscribe(on_progress=lambda i, s: progress.append((i, s)),
                        on_result=lambda i, u: results.append((i, u)))

        batch.advance(1, "searching")
        batch.commit(1, "https://img.test/b.jpg")

        assert progress == [(1, "searching")]
        assert results == [(1, "https://img.test/b.jpg")]
        assert not batch.finished

    @pytest.mark.asyncio
    async def test_empty_batch_is_finished(self):
        batch = ResolutionBatch([])

        assert batch.finished
        assert await batch.wait() == []
        assert [e async for e in batch.events()] == []

    @pytest.mark.asyncio
    async def test_events_replay_backlog_then_stop(self):
        batch = ResolutionBatch([LocationRecord(location="A")])
        batch.advance(0, "searching")

        async def consume():
            return [e async for e in batch.events()]

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        batch.commit(0, "https://img.test/a.jpg")
        events = await asyncio.wait_for(consumer, timeout=1.0)

        assert [e.status.state for e in events] == ["in_progress", "succeeded"]


@pytest.mark.unit
class TestRealLocations:
    """Real locations resolve through stock search only."""

    @pytest.mark.asyncio
    async def test_search_hit(self, fast_settings):
        stock = FakeStockSearch(url="https://stock.test/img")
        orchestrator, client = make_orchestrator(fast_settings, lambda r: httpx.Response(500), stock)
        record = LocationRecord(location="Tokyo", imageQuery="Tokyo cityscape")

        async with client:
            batch = orchestrator.resolve_batch([record])
            await batch.wait()

        assert record.image_url == "https://stock.test/img?q=Tokyo cityscape"
        assert states(batch, 0) == [
            ("in_progress", STAGE_SEARCHING, None),
            ("succeeded", None, "https://stock.test/img?q=Tokyo cityscape"),
        ]

    @pytest.mark.asyncio
    async def test_search_failure_is_failed_placeholder(self, fast_settings):
        stock = FakeStockSearch(url=None)
        orchestrator, client = make_orchestrator(fast_settings, lambda r: httpx.Response(500), stock)
        record = LocationRecord(location="Tokyo", imageQuery="Tokyo cityscape")

        async with client:
            batch = orchestrator.resolve_batch([record])
            await batch.wait()

        assert batch.tasks[0].status.state == "failed"
        assert record.image_url == resolve_placeholder("Tokyo cityscape")

    @pytest.mark.asyncio
    async def test_picsum_default(self, fast_settings):
        def handler(request):
            raise AssertionError("no network expected")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        orchestrator = ImageResolutionOrchestrator(fast_settings, client)
        record = LocationRecord(location="Riohacha")

        async with client:
            records = await orchestrator.resolve_all([record])

        assert records[0].image_url == resolve_placeholder("Riohacha atmospheric cinematic")


@pytest.mark.smoke
@pytest.mark.unit
class TestFictionalCascade:
    """Fictional locations walk the generative tiers in order."""

    @pytest.mark.asyncio
    async def test_paid_then_free_order(self, paid_settings, png_bytes):
        def handler(request):
            if request.url.host == "free-b.test":
                return httpx.Response(200, content=png_bytes)
            return httpx.Response(500, json={"error": "down"})

        orchestrator, client = make_orchestrator(paid_settings, handler, FakeStockSearch())
        record = LocationRecord(location="Ami Hostel", type="fictional", imageQuery="mountain lodge")
        final_url = PROVIDER_B.build_url("mountain lodge")

        async with client:
            batch = orchestrator.resolve_batch([record])
            await batch.wait()

        assert states(batch, 0) == [
            ("in_progress", STAGE_PAID, None),
            ("in_progress", "generating via free: A", None),
            ("in_progress", "generating via free: B", None),
            ("succeeded", None, final_url),
        ]
        assert record.image_url == final_url

    @pytest.mark.asyncio
    async def test_paid_success(self, paid_settings):
        def handler(request):
            assert request.url.host == "paid.test"
            return httpx.Response(200, json={"data": [{"url": "https://paid.test/img.png"}]})

        orchestrator, client = make_orchestrator(paid_settings, handler, FakeStockSearch())
        record = LocationRecord(location="West Egg", type="fictional")

        async with client:
            records = await orchestrator.resolve_all([record])

        assert records[0].image_url == "https://paid.test/img.png"

    @pytest.mark.asyncio
    async def test_no_key_skips_paid(self, fast_settings, png_bytes):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            return httpx.Response(200, content=png_bytes)

        orchestrator, client = make_orchestrator(fast_settings, handler, FakeStockSearch())
        record = LocationRecord(location="West Egg", type="fictional")

        async with client:
            batch = orchestrator.resolve_batch([record])
            await batch.wait()

        assert hosts == ["free-a.test"]
        assert states(batch, 0)[0] == ("in_progress", "generating via free: A", None)

    @pytest.mark.asyncio
    async def test_free_failure_falls_to_search(self, fast_settings):
        stock = FakeStockSearch(url="https://stock.test/img")
        orchestrator, client = make_orchestrator(fast_settings, lambda r: httpx.Response(503), stock)
        record = LocationRecord(location="Ami Hostel", type="fictional", imageQuery="mountain lodge")

        async with client:
            batch = orchestrator.resolve_batch([record])
            await batch.wait()

        assert states(batch, 0)[-2] == ("in_progress", STAGE_SEARCHING, None)
        assert record.image_url == "https://stock.test/img?q=mountain lodge"
        assert batch.tasks[0].status.state == "succeeded"

    @pytest.mark.asyncio
    async def test_macondo_without_key_ends_on_placeholder(self, fast_settings):
        """No paid key, every free provider failing: the deterministic placeholder wins."""
        def handler(request):
            return httpx.Response(503, text="busy")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        generator = GenerativeImageClient(fast_settings, client, free_providers=[PROVIDER_A, PROVIDER_B])
        orchestrator = ImageResolutionOrchestrator(fast_settings, client, generator=generator)
        record = LocationRecord(
            location="Macondo",
            type="fictional",
            imageQuery="Colombian jungle magical realism",
        )

        async with client:
            records = await orchestrator.resolve_all([record])

        assert records[0].image_url == "https://picsum.photos/seed/1548418088/600/400"


@pytest.mark.unit
class TestConcurrency:
    """Records resolve independently and commit once."""

    @pytest.mark.asyncio
    async def test_stalled_record_does_not_block_others(self, fast_settings):
        stock = FakeStockSearch(url="https://stock.test/img", stall_on={"stall"})
        orchestrator, client = make_orchestrator(fast_settings, lambda r: httpx.Response(500), stock)
        records = [
            LocationRecord(location="A", imageQuery="alpha"),
            LocationRecord(location="B", imageQuery="stall"),
            LocationRecord(location="C", imageQuery="gamma"),
        ]

        async with client:
            batch = orchestrator.resolve_batch(records)

            async def first_two_results():
                results = []
                async for event in batch.events():
                    if event.is_result:
                        results.append(event.index)
                        if len(results) == 2:
                            return results

            try:
                done = await asyncio.wait_for(first_two_results(), timeout=1.0)
            finally:
                batch.cancel()

        assert sorted(done) == [0, 2]
        assert batch.tasks[1].status.state == "in_progress"
        assert not batch.finished

    @pytest.mark.asyncio
    async def test_late_paid_success_is_discarded(self, paid_settings, png_bytes):
        settings = paid_settings.model_copy(update={"paid_stage_timeout": 0.05})
        paid_done = asyncio.Event()

        async def handler(request):
            if request.url.host == "paid.test":
                await asyncio.sleep(0.2)
                paid_done.set()
                return httpx.Response(200, json={"data": [{"url": "https://paid.test/late.png"}]})
            return httpx.Response(200, content=png_bytes)

        orchestrator, client = make_orchestrator(settings, handler, FakeStockSearch())
        record = LocationRecord(location="West Egg", type="fictional", imageQuery="green light")

        async with client:
            batch = orchestrator.resolve_batch([record])
            await batch.wait()
            committed = record.image_url
            await asyncio.wait_for(paid_done.wait(), timeout=1.0)
            await asyncio.sleep(0.05)

        assert committed.startswith("https://free-a.test/")
        assert record.image_url == committed
        assert batch.tasks[0].status.url == committed
        assert batch.discarded_updates == 1
        assert [e.status.state for e in batch.history].count("succeeded") == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_commits_placeholder(self, fast_settings):
        class BrokenSearch:
            async def try_search(self, query):
                raise RuntimeError("bug")

        orchestrator, client = make_orchestrator(fast_settings, lambda r: httpx.Response(500), BrokenSearch())
        record = LocationRecord(location="Tokyo", imageQuery="Tokyo")

        async with client:
            records = await orchestrator.resolve_all([record])

        assert records[0].image_url == resolve_placeholder("Tokyo")

    @pytest.mark.asyncio
    async def test_progress_and_result_callbacks(self, fast_settings):
        progress, results = [], []
        stock = FakeStockSearch(url="https://stock.test/img")
        orchestrator, client = make_orchestrator(fast_settings, lambda r: httpx.Response(500), stock)
        records = [LocationRecord(location=name, imageQuery=name) for name in ("x", "y")]

        async with client:
            await orchestrator.resolve_all(
                records,
                on_progress=lambda i, stage: progress.append((i, stage)),
                on_result=lambda i, url: results.append((i, url)),
            )

        assert sorted(progress) == [(0, "searching"), (1, "searching")]
        assert sorted(results) == [
            (0, "https://stock.test/img?q=x"),
            (1, "https://stock.test/img?q=y"),
        ]

    @pytest.mark.asyncio
    async def test_resolve_record_refreshes_url(self, fast_settings):
        stock = FakeStockSearch(url="https://stock.test/new")
        orchestrator, client = make_orchestrator(fast_settings, lambda r: httpx.Response(500), stock)
        record = LocationRecord(location="Tokyo", imageQuery="Tokyo", imageUrl="https://old.test/a.jpg")

        async with client:
            url = await orchestrator.resolve_record(record)

        assert url == "https://stock.test/new?q=Tokyo"
        assert record.image_url == url


@pytest.mark.unit
class TestAbandonedPaidAttempt:
    """A paid attempt abandoned at its timeout never supplies the image."""

    @pytest.mark.asyncio
    async def test_late_paid_during_free_load_is_ignored(self, paid_settings):
        settings = paid_settings.model_copy(update={"paid_stage_timeout": 0.05})
        paid_done = asyncio.Event()

        async def handler(request):
            await asyncio.sleep(0.2)
            paid_done.set()
            return httpx.Response(200, json={"data": [{"url": "https://paid.test/late.png"}]})

        class SlowFreeLoader:
            async def load(self, url):
                await asyncio.sleep(0.4)
                return LoadResult(url=url, ok=True)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        generator = GenerativeImageClient(
            settings,
            client,
            free_providers=[PROVIDER_A],
            image_loader=SlowFreeLoader(),
        )
        orchestrator = ImageResolutionOrchestrator(settings, client, FakeStockSearch(), generator)
        record = LocationRecord(location="West Egg", type="fictional", imageQuery="green light")

        async with client:
            batch = orchestrator.resolve_batch([record])
            await asyncio.wait_for(paid_done.wait(), timeout=1.0)
            await asyncio.sleep(0.05)

            # Paid answered, free load still running: nothing committed yet
            assert batch.tasks[0].status.state == "in_progress"
            assert record.image_url == ""
            assert batch.discarded_updates == 1

            await asyncio.wait_for(batch.wait(), timeout=1.0)

        assert record.image_url == PROVIDER_A.build_url("green light")
        assert states(batch, 0) == [
            ("in_progress", STAGE_PAID, None),
            ("in_progress", "generating via free: A", None),
            ("succeeded", None, PROVIDER_A.build_url("green light")),
        ]


@pytest.mark.unit
class TestStagger:
    """Free generation is staggered by record position."""

    @pytest.fixture
    def stagger_settings(self, fast_settings):
        return fast_settings.model_copy(update={"stagger_min": 2.0, "stagger_max": 5.0})

    @pytest.mark.asyncio
    async def test_delay_scales_with_index(self, stagger_settings, png_bytes):
        orchestrator, client = make_orchestrator(
            stagger_settings,
            lambda request: httpx.Response(200, content=png_bytes),
            FakeStockSearch(),
        )
        records = [LocationRecord(location=name, type="fictional") for name in ("x", "y", "z")]

        with patch("postcards.orchestrate.random.uniform", return_value=3.0) as mock_uniform, \
                patch("postcards.orchestrate.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            async with client:
                await orchestrator.resolve_all(records)

        assert sorted(call.args[0] for call in mock_sleep.await_args_list) == [3.0, 6.0]
        for call in mock_uniform.call_args_list:
            assert call.args == (2.0, 5.0)
        assert all(r.image_url.startswith("https://free-a.test/") for r in records)

    def test_first_record_never_waits(self, stagger_settings):
        orchestrator = ImageResolutionOrchestrator(
            stagger_settings, None, FakeStockSearch(), MagicMock(),
        )

        with patch("postcards.orchestrate.random.uniform", return_value=4.0):
            assert orchestrator._stagger_delay(0) == 0.0
            assert orchestrator._stagger_delay(1) == 4.0
            assert orchestrator._stagger_delay(3) == 12.0

    def test_disabled_when_max_is_zero(self, fast_settings):
        orchestrator = ImageResolutionOrchestrator(fast_settings, None, FakeStockSearch(), MagicMock())

        assert orchestrator._stagger_delay(5) == 0.0


@pytest.mark.unit
class TestCancel:
    """Cancelling a batch releases every waiter."""

    @pytest.mark.asyncio
    async def test_cancel_releases_wait_and_events(self, fast_settings):
        stock = FakeStockSearch(url="https://stock.test/img", stall_on={"stall"})
        orchestrator, client = make_orchestrator(fast_settings, lambda r: httpx.Response(500), stock)
        records = [
            LocationRecord(location="A", imageQuery="alpha"),
            LocationRecord(location="B", imageQuery="stall", imageUrl="https://old.test/b.jpg"),
        ]

        async with client:
            batch = orchestrator.resolve_batch(records)

            async def consume():
                return [e async for e in batch.events()]

            consumer = asyncio.create_task(consume())
            waiter = asyncio.create_task(batch.wait())
            await asyncio.sleep(0.05)
            batch.cancel()

            events = await asyncio.wait_for(consumer, timeout=1.0)
            await asyncio.wait_for(waiter, timeout=1.0)

        assert batch.cancelled
        assert not batch.finished
        assert any(e.index == 0 and e.is_result for e in events)
        assert batch.tasks[1].status.state == "in_progress"
        assert records[1].image_url == "https://old.test/b.jpg"

    @pytest.mark.asyncio
    async def test_events_after_cancel_replay_and_stop(self):
        batch = ResolutionBatch([LocationRecord(location="A")])
        batch.advance(0, "searching")
        batch.cancel()

        events = await asyncio.wait_for(_collect(batch), timeout=1.0)

        assert [e.status.stage for e in events] == ["searching"]

    @pytest.mark.asyncio
    async def test_cancel_after_finish_is_noop(self):
        batch = ResolutionBatch([LocationRecord(location="A")])
        batch.commit(0, "https://img.test/a.jpg")

        batch.cancel()

        assert batch.finished
        assert not batch.cancelled


async def _collect(batch):
    return [e async for e in batch.events()]
