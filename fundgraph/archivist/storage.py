"""
Relational storage helpers for articles, feeds and funding mentions.

The graph is the system of record for companies, investors and rounds.
This module only covers what the ingest workflow needs from the article
store: reading mentions for grouping, loading the articles behind one
round, stamping mentions as ingested, replacing mentions on reprocess,
and the bulk clear.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .grouper import MentionRecord
from .models import Article, Feed, FundingMention, utc_now_naive
from ..analyst.schemas import RawExtraction

logger = logging.getLogger(__name__)


@dataclass
class ArticleWithMention:
    """An article plus its per-article extraction, as used by ingest."""
    id: str
    url: str
    title: str
    content: Optional[str]
    summary: Optional[str]
    author: Optional[str]
    published_at: Optional[datetime]
    feed_title: Optional[str]
    mention: Optional[FundingMention]

    @property
    def confidence(self) -> float:
        return self.mention.confidence if self.mention else 0.0

    @property
    def body(self) -> str:
        return self.content or self.summary or self.title


def _to_record(mention: FundingMention) -> MentionRecord:
    article = mention.article
    return MentionRecord(
        id=mention.id,
        article_id=mention.article_id,
        company_name=mention.company_name,
        confidence=mention.confidence,
        created_at=mention.created_at,
        amount_usd=mention.amount_usd,
        currency=mention.currency,
        stage=mention.stage,
        investors=list(mention.investors or []),
        lead_investor=mention.lead_investor,
        country=mention.country,
        raw_excerpt=mention.raw_excerpt,
        published_at=article.published_at if article else None,
        ingested_at=mention.ingested_at,
        feed_title=article.feed.title if article and article.feed else None,
        article_title=article.title if article else None,
        article_url=article.url if article else None,
    )


def _to_article(article: Article) -> ArticleWithMention:
    return ArticleWithMention(
        id=article.id,
        url=article.url,
        title=article.title,
        content=article.content,
        summary=article.summary,
        author=article.author,
        published_at=article.published_at,
        feed_title=article.feed.title if article.feed else None,
        mention=article.mention,
    )


async def load_mentions(
    session: AsyncSession,
    stage: Optional[str] = None,
    country: Optional[str] = None,
    search: Optional[str] = None,
    since: Optional[datetime] = None,
) -> List[MentionRecord]:
    """All mentions matching the filters, newest first (grouping order)."""
    stmt = (
        select(FundingMention)
        .join(Article, FundingMention.article_id == Article.id)
        .options(selectinload(FundingMention.article).selectinload(Article.feed))
        .order_by(FundingMention.created_at.desc())
    )
    if stage:
        stmt = stmt.where(FundingMention.stage == stage)
    if country:
        stmt = stmt.where(FundingMention.country == country)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(
            FundingMention.company_name.ilike(pattern),
            Article.title.ilike(pattern),
        ))
    if since:
        stmt = stmt.where(FundingMention.created_at >= since)

    result = await session.execute(stmt)
    return [_to_record(m) for m in result.scalars().all()]


async def load_articles_with_mentions(
    session: AsyncSession,
    article_ids: List[str],
) -> List[ArticleWithMention]:
    """Articles for `article_ids` with their feed and mention; unknown ids are skipped."""
    if not article_ids:
        return []

    stmt = (
        select(Article)
        .where(Article.id.in_(article_ids))
        .options(selectinload(Article.feed), selectinload(Article.mention))
    )
    result = await session.execute(stmt)
    return [_to_article(a) for a in result.scalars().all()]


async def load_all_articles(session: AsyncSession) -> List[ArticleWithMention]:
    """Every stored article with its feed and mention, oldest first."""
    stmt = (
        select(Article)
        .options(selectinload(Article.feed), selectinload(Article.mention))
        .order_by(Article.created_at)
    )
    result = await session.execute(stmt)
    return [_to_article(a) for a in result.scalars().all()]


async def load_article_content(session: AsyncSession, urls: List[str]) -> Dict[str, str]:
    """Map url -> best available text, for enrichment prompts."""
    if not urls:
        return {}
    stmt = select(Article.url, Article.content, Article.summary, Article.title).where(Article.url.in_(urls))
    result = await session.execute(stmt)
    return {
        row.url: row.content or row.summary or row.title
        for row in result.all()
    }


async def mark_ingested(
    session: AsyncSession,
    article_ids: List[str],
    when: Optional[datetime] = None,
) -> int:
    """Stamp mentions of `article_ids` as ingested and their articles as read."""
    if not article_ids:
        return 0
    when = when or utc_now_naive()

    result = await session.execute(
        update(FundingMention)
        .where(FundingMention.article_id.in_(article_ids))
        .values(ingested_at=when)
    )
    await session.execute(
        update(Article).where(Article.id.in_(article_ids)).values(is_read=True)
    )
    return result.rowcount or 0


async def save_mention(
    session: AsyncSession,
    article_id: str,
    extraction: RawExtraction,
) -> FundingMention:
    """Insert or replace the mention for one article and bump its feed counter."""
    existing = (await session.execute(
        select(FundingMention).where(FundingMention.article_id == article_id)
    )).scalar_one_or_none()

    values = dict(
        company_name=extraction.company_name,
        amount=extraction.amount,
        currency=extraction.currency,
        amount_usd=extraction.amount_usd,
        stage=extraction.stage,
        investors=list(extraction.investors),
        lead_investor=extraction.lead_investor,
        country=extraction.country,
        confidence=extraction.confidence,
        raw_excerpt=extraction.raw_excerpt,
        signals=list(extraction.signals),
    )

    if existing:
        for key, value in values.items():
            setattr(existing, key, value)
        session.add(existing)
        return existing

    mention = FundingMention(article_id=article_id, **values)
    session.add(mention)

    feed_id = (await session.execute(
        select(Article.feed_id).where(Article.id == article_id)
    )).scalar_one_or_none()
    if feed_id:
        await session.execute(
            update(Feed).where(Feed.id == feed_id).values(funding_count=Feed.funding_count + 1)
        )
    return mention


async def delete_mention(session: AsyncSession, article_id: str) -> bool:
    """Remove the mention of one article and decrement its feed counter."""
    mention = (await session.execute(
        select(FundingMention).where(FundingMention.article_id == article_id)
    )).scalar_one_or_none()
    if mention is None:
        return False

    await session.delete(mention)
    feed_id = (await session.execute(
        select(Article.feed_id).where(Article.id == article_id)
    )).scalar_one_or_none()
    if feed_id:
        await session.execute(
            update(Feed)
            .where(Feed.id == feed_id, Feed.funding_count > 0)
            .values(funding_count=Feed.funding_count - 1)
        )
    return True


async def clear_funding_data(session: AsyncSession) -> Dict[str, int]:
    """
    Delete all mentions and articles and reset per-feed counters.

    Feed rows (configuration) are kept.
    """
    mentions = (await session.execute(select(func.count()).select_from(FundingMention))).scalar_one()
    articles = (await session.execute(select(func.count()).select_from(Article))).scalar_one()

    await session.execute(delete(FundingMention))
    await session.execute(delete(Article))
    await session.execute(update(Feed).values(article_count=0, funding_count=0))

    logger.info(f"Cleared {mentions} funding mentions and {articles} articles")
    return {"mentions": mentions, "articles": articles}


async def ingestion_counts(session: AsyncSession) -> Dict[str, int]:
    """Mentions in the relational store, split by whether they reached the graph."""
    total = (await session.execute(select(func.count()).select_from(FundingMention))).scalar_one()
    ingested = (await session.execute(
        select(func.count()).select_from(FundingMention).where(FundingMention.ingested_at.is_not(None))
    )).scalar_one()
    return {"mentions": total, "ingested": ingested, "pending": total - ingested}
