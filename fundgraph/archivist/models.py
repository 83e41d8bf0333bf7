"""
Relational models using SQLModel (SQLAlchemy + Pydantic).

Schema:
- Feed: A news source with per-feed counters
- Article: One fetched article (immutable once stored)
- FundingMention: One per-article funding extraction, later grouped into
  canonical rounds and marked ingested once committed to the graph
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Column
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, Relationship, SQLModel


def utc_now_naive() -> datetime:
    """Return current UTC time as timezone-naive datetime.

    PostgreSQL TIMESTAMP WITHOUT TIME ZONE columns require naive datetimes.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


class Feed(SQLModel, table=True):
    """A news feed. Configuration survives bulk clears; counters do not."""
    __tablename__ = "feeds"

    id: str = Field(default_factory=new_id, primary_key=True)
    title: str
    url: str = Field(unique=True, index=True)
    article_count: int = 0
    funding_count: int = 0
    created_at: datetime = Field(default_factory=utc_now_naive)

    articles: List["Article"] = Relationship(back_populates="feed")


class Article(SQLModel, table=True):
    """A source article."""
    __tablename__ = "articles"

    id: str = Field(default_factory=new_id, primary_key=True)
    feed_id: Optional[str] = Field(default=None, foreign_key="feeds.id", index=True)

    url: str = Field(unique=True, index=True)
    title: str
    author: Optional[str] = None
    published_at: Optional[datetime] = Field(default=None, index=True)
    content: Optional[str] = None
    summary: Optional[str] = None
    is_read: bool = False
    created_at: datetime = Field(default_factory=utc_now_naive)

    feed: Optional[Feed] = Relationship(back_populates="articles")
    mention: Optional["FundingMention"] = Relationship(
        back_populates="article",
        sa_relationship_kwargs={"uselist": False},
    )


class FundingMention(SQLModel, table=True):
    """Funding extraction for a single article."""
    __tablename__ = "funding_mentions"

    id: str = Field(default_factory=new_id, primary_key=True)
    article_id: str = Field(foreign_key="articles.id", unique=True, index=True)

    company_name: str = Field(index=True)
    amount: Optional[float] = None
    currency: str = "USD"
    amount_usd: Optional[float] = None
    stage: Optional[str] = None
    investors: List[str] = Field(default_factory=list, sa_column=Column(JSONB, nullable=False, server_default="[]"))
    lead_investor: Optional[str] = None
    country: Optional[str] = None
    confidence: float = 0.0
    raw_excerpt: Optional[str] = None
    signals: List[str] = Field(default_factory=list, sa_column=Column(JSONB, nullable=False, server_default="[]"))

    created_at: datetime = Field(default_factory=utc_now_naive, index=True)
    ingested_at: Optional[datetime] = Field(default=None, index=True)

    article: Optional[Article] = Relationship(back_populates="mention")
