"""
Background enrichment queue.

Ingest hands each committed round to the queue and returns immediately.
A single worker drains jobs one at a time: the company first, then each
distinct investor in order. A failure on one entity is logged and
recorded in the job result; the remaining entities still run.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from .company_enricher import enrich_company
from .investor_enricher import enrich_investor
from .outcome import EnrichmentError, EnrichmentOutcome
from .progress import ProgressSink, noop_sink
from ..analyst.normalizer import normalize_investor_name
from ..archivist.graph import EntityType
from ..config.settings import settings

logger = logging.getLogger(__name__)

Enricher = Callable[[str, Optional[ProgressSink]], Awaitable[EnrichmentOutcome]]


@dataclass
class EnrichmentJob:
    company: Optional[str]
    investors: List[str] = field(default_factory=list)
    round_key: Optional[str] = None

    def targets(self) -> List[tuple]:
        """(entity_type, name) pairs in processing order, investors deduplicated."""
        items = []
        if self.company:
            items.append((EntityType.COMPANY, self.company))
        seen = set()
        for name in self.investors:
            key = normalize_investor_name(name)
            if not key or key in seen:
                continue
            seen.add(key)
            items.append((EntityType.INVESTOR, name))
        return items


@dataclass
class EnrichmentJobResult:
    round_key: Optional[str]
    outcomes: List[EnrichmentOutcome] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def failed(self) -> List[EnrichmentOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def to_dict(self) -> dict:
        return {
            "roundKey": self.round_key,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "failed": len(self.failed),
            "durationMs": self.duration_ms,
        }


class EnrichmentQueue:
    """Bounded job queue with one worker task."""

    def __init__(
        self,
        maxsize: Optional[int] = None,
        company_enricher: Enricher = enrich_company,
        investor_enricher: Enricher = enrich_investor,
    ):
        self.maxsize = settings.enrichment_queue_size if maxsize is None else maxsize
        self._enrichers = {
            EntityType.COMPANY: company_enricher,
            EntityType.INVESTOR: investor_enricher,
        }
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self.results: List[EnrichmentJobResult] = []
        self.dropped = 0

    @property
    def queue(self) -> asyncio.Queue:
        # Created lazily so it binds to the running event loop
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.maxsize)
        return self._queue

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def pending(self) -> int:
        return self.queue.qsize()

    def submit(self, job: EnrichmentJob) -> bool:
        """Enqueue without blocking. Returns False when the job was dropped."""
        if not job.targets():
            return False
        try:
            self.queue.put_nowait(job)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Enrichment queue full ({self.maxsize}); dropping job for {job.company} "
                f"({job.round_key})"
            )
            return False
        logger.debug(f"Queued enrichment for {job.company} ({self.pending()} pending)")
        return True

    async def run_job(self, job: EnrichmentJob) -> EnrichmentJobResult:
        start = time.monotonic()
        result = EnrichmentJobResult(round_key=job.round_key)

        for entity_type, name in job.targets():
            enricher = self._enrichers[entity_type]
            try:
                outcome = await enricher(name, noop_sink)
            except EnrichmentError as e:
                logger.warning(f"Enrichment skipped for {entity_type.value} {name}: {e.message}")
                outcome = EnrichmentOutcome(entity_type=entity_type, name=name, error=e.message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Enrichment failed for {entity_type.value} {name}: {e}", exc_info=True)
                outcome = EnrichmentOutcome(entity_type=entity_type, name=name, error=str(e))
            result.outcomes.append(outcome)

        result.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Enrichment job {job.round_key or job.company}: "
            f"{len(result.outcomes) - len(result.failed)}/{len(result.outcomes)} succeeded "
            f"in {result.duration_ms}ms"
        )
        return result

    async def _work(self):
        while True:
            job = await self.queue.get()
            try:
                self.results.append(await self.run_job(job))
                # Keep only recent history
                del self.results[:-50]
            finally:
                self.queue.task_done()

    def start(self):
        if self.running:
            return
        self._worker = asyncio.create_task(self._work(), name="enrichment-worker")
        logger.info(f"Enrichment worker started (queue size {self.maxsize})")

    async def join(self):
        """Wait until every queued job has been processed."""
        await self.queue.join()

    async def stop(self):
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info(f"Enrichment worker stopped ({self.pending()} jobs abandoned)")


_queue: Optional[EnrichmentQueue] = None


def get_enrichment_queue() -> EnrichmentQueue:
    global _queue
    if _queue is None:
        _queue = EnrichmentQueue()
    return _queue


async def close_enrichment_queue():
    global _queue
    if _queue is not None:
        await _queue.stop()
        _queue = None
