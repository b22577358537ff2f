"""Image resolution orchestration for a batch of locations.

Every record in a batch is resolved concurrently:
- real locations: stock photo search
- fictional locations: paid generation → free generation → stock search
  → deterministic placeholder

Each tier attempt is published as a progress event so the presentation layer
can show what is happening per card, and each record is committed to exactly
one terminal image. Results from abandoned attempts are discarded whenever
they arrive.
"""

import asyncio
import logging
import random
from typing import Callable, List, Optional, Sequence

import httpx

from config import Settings
from imagery.generative import GenerativeImageClient
from imagery.placeholder import resolve_placeholder
from imagery.stock_search import StockImageSearch
from util.timeouts import wait_abandoning
from .models import (
    STAGE_FREE,
    STAGE_PAID,
    STAGE_SEARCHING,
    LocationRecord,
    ResolutionEvent,
    ResolutionTask,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]
ResultCallback = Callable[[int, str], None]


class ResolutionBatch:
    """Authoritative view of one batch: records, tasks and event fan-out.

    All writes are keyed by index and go through advance()/commit(), which
    refuse any change once the record's task is terminal.
    """

    def __init__(self, records: Sequence[LocationRecord]):
        self.records: List[LocationRecord] = list(records)
        self.tasks: List[ResolutionTask] = [ResolutionTask(index=i) for i in range(len(self.records))]
        self.history: List[ResolutionEvent] = []
        self.discarded_updates = 0
        self.finished = not self.records
        self.cancelled = False
        self._progress_callbacks: List[ProgressCallback] = []
        self._result_callbacks: List[ResultCallback] = []
        self._queues: List[asyncio.Queue] = []
        self._workers: List[asyncio.Task] = []
        self._done = asyncio.Event()
        if self.finished:
            self._done.set()

    def subscribe(
        self,
        on_progress: Optional[ProgressCallback] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> None:
        """Register callbacks for progress labels and final URLs."""
        if on_progress is not None:
            self._progress_callbacks.append(on_progress)
        if on_result is not None:
            self._result_callbacks.append(on_result)

    def advance(self, index: int, stage: str) -> bool:
        """Publish an in-progress stage for one record."""
        task = self.tasks[index]
        if not task.advance(stage):
            self._discard(index, f"stage '{stage}'")
            return False
        logger.debug(f"[{index}] {self.records[index].location}: {stage}")
        self._publish(ResolutionEvent(index=index, status=task.status))
        for callback in self._progress_callbacks:
            callback(index, stage)
        return True

    def commit(self, index: int, url: str, succeeded: bool = True) -> bool:
        """Commit the terminal image for one record; later commits are discarded."""
        task = self.tasks[index]
        if not task.finish(url, succeeded):
            self._discard(index, f"url {url}")
            return False

        self.records[index].image_url = url
        state = "resolved" if succeeded else "fell back"
        logger.info(f"[{index}] {self.records[index].location} {state}: {url}")

        self._publish(ResolutionEvent(index=index, status=task.status))
        for callback in self._result_callbacks:
            callback(index, url)

        if all(t.is_terminal for t in self.tasks):
            self.finished = True
            self._done.set()
            for queue in self._queues:
                queue.put_nowait(None)
        return True

    def discard_late(self, index: int, url: str) -> None:
        """Drop the result of an abandoned attempt; it never reaches the record."""
        self.discarded_updates += 1
        logger.debug(f"[{index}] discarded late url {url}: attempt was abandoned")

    def _discard(self, index: int, what: str) -> None:
        self.discarded_updates += 1
        logger.debug(f"[{index}] discarded late {what}: record already terminal")

    def _publish(self, event: ResolutionEvent) -> None:
        self.history.append(event)
        for queue in self._queues:
            queue.put_nowait(event)

    async def events(self):
        """
        Iterate over status events until every record is terminal.

        Events published before iteration started are replayed first.
        """
        queue: asyncio.Queue = asyncio.Queue()
        backlog = list(self.history)
        finished = self._done.is_set()
        if not finished:
            self._queues.append(queue)
        try:
            for event in backlog:
                yield event
            if finished:
                return
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    async def wait(self) -> List[LocationRecord]:
        """Wait until every record has a terminal image and return the records."""
        await self._done.wait()
        return self.records

    def cancel(self) -> None:
        """
        Stop the batch's workers; used when the batch is replaced or cleared.

        Pending wait() calls return and events() iterators end. Records that
        never reached a terminal state keep their previous image_url.
        """
        for worker in self._workers:
            if not worker.done():
                worker.cancel()
        if self._done.is_set():
            return
        self.cancelled = True
        self._done.set()
        for queue in self._queues:
            queue.put_nowait(None)


class ImageResolutionOrchestrator:
    """Chooses and runs the image strategy for every record in a batch."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        stock_search: Optional[StockImageSearch] = None,
        generator: Optional[GenerativeImageClient] = None,
    ):
        """
        Args:
            settings: Immutable application settings
            http_client: Shared async HTTP client
            stock_search: Stock search tier (built from settings if omitted)
            generator: Generative tiers (built from settings if omitted)
        """
        self.settings = settings
        self.stock_search = stock_search or StockImageSearch(settings, http_client)
        self.generator = generator or GenerativeImageClient(settings, http_client)

    def resolve_batch(
        self,
        records: Sequence[LocationRecord],
        on_progress: Optional[ProgressCallback] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> ResolutionBatch:
        """
        Start resolving every record concurrently.

        Must be called from a running event loop. Returns immediately; the
        work starts at the caller's next suspension point, so subscribing
        right after this call sees every event.
        """
        batch = ResolutionBatch(records)
        batch.subscribe(on_progress, on_result)
        logger.info(f"Resolving images for {len(batch.records)} locations")
        for index in range(len(batch.records)):
            batch._workers.append(asyncio.create_task(self._resolve_record(batch, index)))
        return batch

    async def resolve_all(
        self,
        records: Sequence[LocationRecord],
        on_progress: Optional[ProgressCallback] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> List[LocationRecord]:
        """Resolve a batch and wait for every record."""
        batch = self.resolve_batch(records, on_progress, on_result)
        return await batch.wait()

    async def resolve_record(self, record: LocationRecord) -> str:
        """Resolve (or re-resolve) one record on its own and return the URL."""
        batch = self.resolve_batch([record])
        await batch.wait()
        return batch.records[0].image_url

    async def _resolve_record(self, batch: ResolutionBatch, index: int) -> None:
        record = batch.records[index]
        try:
            if record.kind == "fictional":
                await self._resolve_fictional(batch, index, record)
            else:
                await self._resolve_real(batch, index, record)
        except Exception as e:
            logger.error(f"[{index}] {record.location}: unexpected error: {e}", exc_info=True)
            batch.commit(index, resolve_placeholder(record.image_query), succeeded=False)

    async def _resolve_real(self, batch: ResolutionBatch, index: int, record: LocationRecord) -> None:
        batch.advance(index, STAGE_SEARCHING)
        url = await self.stock_search.try_search(record.image_query)
        if url is not None:
            batch.commit(index, url)
        else:
            batch.commit(index, resolve_placeholder(record.image_query), succeeded=False)

    async def _resolve_fictional(self, batch: ResolutionBatch, index: int, record: LocationRecord) -> None:
        query = record.image_query

        # Tier 1: paid provider only, failures fall through
        if self.generator.paid_configured:
            abandoned = False

            def on_stage(stage: str) -> None:
                # Labels from an abandoned attempt would overwrite the free tier's
                if not abandoned:
                    batch.advance(index, stage)

            batch.advance(index, STAGE_PAID)
            outcome = await wait_abandoning(
                self.generator.generate_paid(query, on_stage=on_stage),
                timeout=self.settings.paid_stage_timeout,
                on_late=lambda url: batch.discard_late(index, url),
            )
            if outcome.ok:
                batch.commit(index, outcome.value)
                return
            abandoned = outcome.timed_out
            reason = "timed out" if outcome.timed_out else outcome.error
            logger.warning(f"[{index}] {record.location}: paid generation failed ({reason}), trying free services")

        # Tier 2: free providers, staggered by position to spread rate limits
        delay = self._stagger_delay(index)
        if delay > 0:
            logger.debug(f"[{index}] waiting {delay:.1f}s before free generation")
            await asyncio.sleep(delay)

        url = await self.generator.try_free_providers(
            query,
            on_attempt=lambda provider, attempt: batch.advance(index, f"{STAGE_FREE}: {provider.name}"),
        )
        if url is not None:
            batch.commit(index, url)
            return

        # Tier 3: stock search, then the placeholder
        logger.warning(f"[{index}] {record.location}: free generation failed, searching instead")
        batch.advance(index, STAGE_SEARCHING)
        url = await self.stock_search.try_search(query)
        if url is not None:
            batch.commit(index, url)
        else:
            logger.error(f"[{index}] {record.location}: every tier failed, using placeholder")
            batch.commit(index, resolve_placeholder(query), succeeded=False)

    def _stagger_delay(self, index: int) -> float:
        """Random base delay in [stagger_min, stagger_max] scaled by position."""
        if index == 0 or self.settings.stagger_max <= 0:
            return 0.0
        return random.uniform(self.settings.stagger_min, self.settings.stagger_max) * index
