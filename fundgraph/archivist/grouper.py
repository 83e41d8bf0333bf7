"""
Round Grouper - clusters per-article funding mentions into canonical rounds.

Grouping is a single first-match pass in retrieval order (newest first):

- same company key
- same stage key, or either side "unknown"
- within DEDUP_WINDOW of ANY member already in the group (strictly less
  than 7 days apart)

Groups are never reopened or re-scanned, so an older article processed
after a newer group was closed only joins it if it still matches a member.
Mentions without a publish date use their ingestion time, which can split
rounds that were reported with a long ingestion delay.

A round's key is `<company>_<stage>_<millis>` where the timestamp is the
oldest member's event time, so later coverage of the same round does not
change it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from ..analyst.normalizer import (
    UNKNOWN_STAGE,
    normalize_company_key,
    normalize_stage_key,
)
from ..config.settings import settings

logger = logging.getLogger(__name__)

DEDUP_WINDOW = timedelta(days=settings.dedup_window_days)


@dataclass
class MentionRecord:
    """A per-article funding mention as read from the relational store."""
    id: str
    article_id: str
    company_name: str
    confidence: float
    created_at: datetime
    amount_usd: Optional[float] = None
    currency: str = "USD"
    stage: Optional[str] = None
    investors: List[str] = field(default_factory=list)
    lead_investor: Optional[str] = None
    country: Optional[str] = None
    raw_excerpt: Optional[str] = None
    published_at: Optional[datetime] = None
    ingested_at: Optional[datetime] = None
    feed_title: Optional[str] = None
    article_title: Optional[str] = None
    article_url: Optional[str] = None

    @property
    def event_time(self) -> datetime:
        return self.published_at or self.created_at


@dataclass
class RoundSource:
    """One contributing feed of a canonical round."""
    article_id: str
    feed_title: Optional[str]
    article_title: Optional[str]
    article_url: Optional[str]
    confidence: float
    published_at: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "articleId": self.article_id,
            "feedTitle": self.feed_title,
            "articleTitle": self.article_title,
            "articleUrl": self.article_url,
            "confidence": self.confidence,
            "publishedAt": self.published_at.isoformat() if self.published_at else None,
        }


@dataclass
class CanonicalRound:
    """Merged view of one real funding event."""
    key: str
    company_name: str
    amount_usd: Optional[float]
    stage: Optional[str]
    country: Optional[str]
    lead_investor: Optional[str]
    all_investors: List[str]
    max_confidence: float
    sources: List[RoundSource]
    first_seen: datetime
    last_seen: datetime
    ingested_at: Optional[datetime] = None
    members: List[MentionRecord] = field(default_factory=list, repr=False)

    @property
    def source_count(self) -> int:
        return len(self.sources)

    @property
    def article_ids(self) -> List[str]:
        return [m.article_id for m in self.members]

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "companyName": self.company_name,
            "amountUsd": self.amount_usd,
            "stage": self.stage,
            "country": self.country,
            "leadInvestor": self.lead_investor,
            "allInvestors": list(self.all_investors),
            "maxConfidence": self.max_confidence,
            "sourceCount": self.source_count,
            "sources": [s.to_dict() for s in self.sources],
            "articleIds": self.article_ids,
            "firstSeen": self.first_seen.isoformat(),
            "lastSeen": self.last_seen.isoformat(),
            "ingestedAt": self.ingested_at.isoformat() if self.ingested_at else None,
        }


@dataclass
class _OpenGroup:
    company_key: str
    stage_key: str
    key_stage: str
    members: List[MentionRecord] = field(default_factory=list)

    @property
    def key(self) -> str:
        """Anchored on the oldest member, so newer reports keep the key."""
        earliest = min(m.event_time for m in self.members)
        return f"{self.company_key}_{self.key_stage}_{_epoch_millis(earliest)}"


def _stages_compatible(a: str, b: str) -> bool:
    return a == b or a == UNKNOWN_STAGE or b == UNKNOWN_STAGE


def _within_window(group: _OpenGroup, ts: datetime) -> bool:
    return any(abs(m.event_time - ts) < DEDUP_WINDOW for m in group.members)


def _epoch_millis(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


def _first_present(members: List[MentionRecord], attr: str):
    for m in members:
        value = getattr(m, attr)
        if value is not None and value != "":
            return value
    return None


def _build_round(group: _OpenGroup) -> CanonicalRound:
    members = group.members
    # sorted() is stable: equal confidences keep retrieval order
    ranked = sorted(members, key=lambda m: m.confidence, reverse=True)
    primary = ranked[0]

    def pick(attr: str):
        value = getattr(primary, attr)
        if value is None or value == "":
            value = _first_present(members, attr)
        return value

    stage = pick("stage")
    if stage is None:
        stage = None if group.key_stage == UNKNOWN_STAGE else group.key_stage

    investors: List[str] = []
    seen = set()
    for m in members:
        names = list(m.investors or [])
        if m.lead_investor:
            names.append(m.lead_investor)
        for name in names:
            folded = name.strip().lower()
            if folded and folded not in seen:
                seen.add(folded)
                investors.append(name.strip())

    sources: List[RoundSource] = []
    seen_feeds = set()
    for m in members:
        feed_id = m.feed_title or f"article:{m.article_id}"
        if feed_id in seen_feeds:
            continue
        seen_feeds.add(feed_id)
        sources.append(RoundSource(
            article_id=m.article_id,
            feed_title=m.feed_title,
            article_title=m.article_title,
            article_url=m.article_url,
            confidence=m.confidence,
            published_at=m.published_at,
        ))

    times = [m.event_time for m in members]
    return CanonicalRound(
        key=group.key,
        company_name=primary.company_name or _first_present(members, "company_name"),
        amount_usd=pick("amount_usd"),
        stage=stage,
        country=pick("country"),
        lead_investor=pick("lead_investor"),
        all_investors=investors,
        max_confidence=primary.confidence,
        sources=sources,
        first_seen=min(times),
        last_seen=max(times),
        ingested_at=_first_present(members, "ingested_at"),
        members=list(members),
    )


def group_mentions(mentions: List[MentionRecord]) -> List[CanonicalRound]:
    """
    Cluster mentions into canonical rounds.

    Args:
        mentions: Per-article mentions in retrieval order (newest first).

    Returns:
        One CanonicalRound per group, in group-creation order.
    """
    groups: List[_OpenGroup] = []

    for mention in mentions:
        company_key = normalize_company_key(mention.company_name)
        if not company_key:
            logger.debug(f"Skipping mention {mention.id}: empty company key")
            continue
        stage_key = normalize_stage_key(mention.stage)
        ts = mention.event_time

        target = None
        for group in groups:
            if group.company_key != company_key:
                continue
            if not _stages_compatible(group.stage_key, stage_key):
                continue
            if _within_window(group, ts):
                target = group
                break

        if target is None:
            target = _OpenGroup(company_key=company_key, stage_key=stage_key, key_stage=stage_key)
            groups.append(target)
        elif target.stage_key == UNKNOWN_STAGE and stage_key != UNKNOWN_STAGE:
            # The key keeps "unknown"; matching continues against the specific stage
            target.stage_key = stage_key

        target.members.append(mention)

    rounds = [_build_round(g) for g in groups]
    logger.debug(f"Grouped {len(mentions)} mentions into {len(rounds)} rounds")
    return rounds


SORT_KEYS: Dict[str, Callable[[CanonicalRound], object]] = {
    "amount": lambda r: r.amount_usd or 0,
    "confidence": lambda r: r.max_confidence,
    "sources": lambda r: r.source_count,
    "company": lambda r: r.company_name.lower(),
    "lastSeen": lambda r: r.last_seen,
}
DEFAULT_SORT = "lastSeen"


def sort_rounds(
    rounds: List[CanonicalRound],
    sort: str = DEFAULT_SORT,
    order: str = "desc",
) -> List[CanonicalRound]:
    """Sort rounds by one of SORT_KEYS; unknown sort names use lastSeen."""
    key = SORT_KEYS.get(sort, SORT_KEYS[DEFAULT_SORT])
    return sorted(rounds, key=key, reverse=(order != "asc"))
