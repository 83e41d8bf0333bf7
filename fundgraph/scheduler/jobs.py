"""
APScheduler job definitions for periodic graph synchronization.

The bulk sync re-projects every stored funding mention into the graph.
All writes are MERGE-based, so a run over unchanged data only touches
timestamps.

run_reprocess() is the on-demand counterpart for the relational side: it
re-extracts every stored article and rewrites its funding mention.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..analyst.merger import extract_funding
from ..archivist.database import get_session
from ..archivist.graph_sync import GraphSyncError, GraphSyncResult, sync_all_rounds
from ..archivist.storage import delete_mention, load_all_articles, load_mentions, save_mention
from ..config.settings import settings

logger = logging.getLogger(__name__)

scheduler: Optional[AsyncIOScheduler] = None


async def run_graph_sync() -> GraphSyncResult:
    """Load all mentions and project them into the graph."""
    async with get_session() as session:
        mentions = await load_mentions(session)
    logger.info(f"Graph sync: projecting {len(mentions)} mentions")
    return await sync_all_rounds(mentions)


@dataclass
class ReprocessResult:
    """Counts from one re-extraction pass over stored articles."""
    total_articles: int = 0
    funding_found: int = 0
    mentions_removed: int = 0
    failed: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "totalArticles": self.total_articles,
            "fundingFound": self.funding_found,
            "mentionsRemoved": self.mentions_removed,
            "failed": self.failed,
            "durationMs": self.duration_ms,
        }


async def run_reprocess() -> ReprocessResult:
    """
    Re-run per-article extraction over every stored article.

    Each article's mention is replaced with the new extraction (keeping its
    ingested stamp); an article that no longer yields a round loses its
    mention. One article failing does not stop the pass.
    """
    start = time.monotonic()
    async with get_session() as session:
        articles = await load_all_articles(session)

    result = ReprocessResult(total_articles=len(articles))
    for article in articles:
        try:
            extraction = await extract_funding(article.title, article.body, article_id=article.id)
            async with get_session() as session:
                if extraction is not None:
                    await save_mention(session, article.id, extraction)
                    result.funding_found += 1
                elif article.mention is not None and await delete_mention(session, article.id):
                    result.mentions_removed += 1
        except Exception as e:
            result.failed += 1
            logger.error(f"Reprocess failed for article {article.id}: {e}", exc_info=True)

    result.duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(f"Reprocess complete: {result.to_dict()}")
    return result


async def scheduled_graph_sync_job():
    """Scheduler entry point; failures are logged so the next run still fires."""
    try:
        result = await run_graph_sync()
        logger.info(
            f"Scheduled graph sync done: {result.funding_rounds} rounds, "
            f"{result.edges} new edges in {result.duration_ms}ms"
        )
    except GraphSyncError as e:
        logger.error(f"Scheduled graph sync failed at {e.step} ({e.entity}): {e.cause}")
    except Exception as e:
        logger.error(f"Scheduled graph sync crashed: {e}", exc_info=True)


def setup_scheduler() -> Optional[AsyncIOScheduler]:
    """
    Start the scheduler when enabled.

    Configures:
    - Graph sync every GRAPH_SYNC_INTERVAL_MINUTES
    - Job store in memory (stateless)
    """
    global scheduler

    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")
        return None

    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,  # Collapse missed runs into one
            "max_instances": 1,
            "misfire_grace_time": 300,
        },
    )
    interval = settings.graph_sync_interval_minutes
    scheduler.add_job(
        scheduled_graph_sync_job,
        trigger=IntervalTrigger(minutes=interval),
        id="graph_sync",
        name=f"Graph sync (every {interval} min)",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(f"Scheduler started: graph sync every {interval} minutes")
    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job: {job.id} - next run: {job.next_run_time}")

    return scheduler


def shutdown_scheduler():
    """Shutdown the scheduler without waiting for a running sync."""
    global scheduler
    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shutdown complete")
        scheduler = None
