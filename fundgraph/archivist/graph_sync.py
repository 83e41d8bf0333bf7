"""
Graph Sync - projects funding rounds into the graph.

commit_round() writes one round in a fixed order:

    Company -> Location -> FundingRound (+RAISED) -> Investors (+PARTICIPATED_IN)
    -> Articles (+SOURCED_FROM) -> totalFundingUsd

Each step is its own statement and is retried on transient Neo4j errors.
Steps that already ran stay committed when a later step fails; every
statement is a MERGE, so re-running the whole commit converges.
Any other store error is not retried but still surfaces as GraphSyncError.

Before writing, both paths look up rounds already SOURCED_FROM the same
articles (same company, compatible stage) and reuse that roundKey, so
later coverage of a round updates it instead of adding a second one.

sync_all_rounds() is the bulk variant: it groups stored mentions into
canonical rounds and writes them with UNWIND batches.
"""

import asyncio
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from neo4j.exceptions import ServiceUnavailable, SessionExpired, TransientError

from .graph import (
    BulkWrite,
    EntityType,
    Neo4jGraphStore,
    WriteResult,
    get_graph_store,
    parse_entity_type,
    validate_lock_field,
)
from .grouper import CanonicalRound, MentionRecord, group_mentions
from ..analyst.normalizer import (
    UNKNOWN_STAGE,
    normalize_company_key,
    normalize_company_name,
    normalize_investor_name,
    normalize_stage_key,
)
from ..analyst.schemas import RawExtraction
from ..config.settings import settings

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (TransientError, ServiceUnavailable, SessionExpired)


class GraphSyncError(Exception):
    """A graph step failed: retries exhausted, or an error that is not retried."""

    def __init__(self, step: str, entity: str, cause: Optional[BaseException] = None):
        self.step = step
        self.entity = entity
        self.cause = cause
        super().__init__(f"Graph sync failed at step '{step}' for {entity}: {cause}")

    def to_dict(self) -> dict:
        return {"step": self.step, "entity": self.entity, "error": str(self.cause)}


@dataclass
class ArticleRef:
    """Article fields written to the graph."""
    id: str
    url: str
    title: str
    published_at: Optional[datetime] = None
    author: Optional[str] = None

    def graph_props(self) -> Dict[str, Any]:
        return {
            "articleId": self.id,
            "title": self.title,
            "publishedAt": self.published_at.isoformat() if self.published_at else None,
            "author": self.author,
        }


@dataclass
class GraphSyncSummary:
    """What one commit_round call wrote."""
    round_key: str
    nodes: List[str] = field(default_factory=list)
    edges: List[str] = field(default_factory=list)
    nodes_created: int = 0
    nodes_matched: int = 0
    edges_created: int = 0
    edges_matched: int = 0
    total_funding_usd: Optional[float] = None
    skipped: List[str] = field(default_factory=list)

    def record(self, result: WriteResult, nodes: int = 0, edges: int = 0):
        """Count a step that touched `nodes` nodes and `edges` edges."""
        self.nodes_created += result.nodes_created
        self.nodes_matched += max(nodes - result.nodes_created, 0)
        self.edges_created += result.relationships_created
        self.edges_matched += max(edges - result.relationships_created, 0)

    def to_dict(self) -> dict:
        return {
            "roundKey": self.round_key,
            "nodes": list(self.nodes),
            "edges": list(self.edges),
            "nodesCreated": self.nodes_created,
            "nodesMatched": self.nodes_matched,
            "edgesCreated": self.edges_created,
            "edgesMatched": self.edges_matched,
            "totalFundingUsd": self.total_funding_usd,
            "skipped": list(self.skipped),
        }


@dataclass
class GraphSyncResult:
    """Counts from a bulk projection."""
    companies: int = 0
    investors: int = 0
    funding_rounds: int = 0
    articles: int = 0
    locations: int = 0
    edges: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "companies": self.companies,
            "investors": self.investors,
            "fundingRounds": self.funding_rounds,
            "articles": self.articles,
            "locations": self.locations,
            "edges": self.edges,
            "durationMs": self.duration_ms,
        }


async def _with_retry(
    step: str,
    entity: str,
    op: Callable[[], Awaitable[Any]],
) -> Any:
    """
    Run one graph statement, retrying transient failures with jittered backoff.

    Raises:
        GraphSyncError: Retries exhausted, or a non-transient error (not retried).
    """
    max_retries = settings.graph_max_retries
    last_error: Optional[BaseException] = None

    for attempt in range(max_retries + 1):
        try:
            return await op()
        except TRANSIENT_ERRORS as e:
            last_error = e
            if attempt < max_retries:
                backoff = (2 ** attempt) * 0.5 * random.uniform(0.9, 1.1)
                logger.warning(
                    f"Graph step '{step}' for {entity} failed: {e}. "
                    f"Retrying in {backoff:.1f}s (attempt {attempt + 1}/{max_retries + 1})"
                )
                await asyncio.sleep(backoff)
        except Exception as e:
            logger.error(f"Graph step '{step}' for {entity} failed: {e}", exc_info=True)
            raise GraphSyncError(step, entity, e) from e

    logger.error(f"Graph step '{step}' for {entity} failed after {max_retries + 1} attempts: {last_error}")
    raise GraphSyncError(step, entity, last_error) from last_error


def build_round_key(company_name: str, stage: Optional[str], opaque_id: Optional[str] = None) -> str:
    """`<company>_<stage|unknown>_<opaque id>`; the id is only unique, never meaningful."""
    return f"{normalize_company_key(company_name)}_{normalize_stage_key(stage)}_{opaque_id or uuid.uuid4().hex}"


def _stage_compatible(a: Optional[str], b: Optional[str]) -> bool:
    a_key, b_key = normalize_stage_key(a), normalize_stage_key(b)
    return a_key == b_key or UNKNOWN_STAGE in (a_key, b_key)


def existing_round_key(
    candidates: List[Dict[str, Any]],
    company_key: str,
    stage: Optional[str],
    urls: Sequence[str],
) -> Optional[str]:
    """
    Key of the oldest round already sourced from one of `urls` for the same
    company and a compatible stage, or None.

    `candidates` are rows from Neo4jGraphStore.rounds_for_articles().
    """
    wanted = set(urls)
    matches = [
        c for c in candidates
        if c.get("url") in wanted
        and c.get("companyKey") == company_key
        and _stage_compatible(c.get("stage"), stage)
    ]
    if not matches:
        return None
    matches.sort(key=lambda c: c.get("createdAt") or "")
    return matches[0]["roundKey"]


def _dedupe_investors(extraction: RawExtraction) -> List[tuple]:
    """(key, display name, role) per distinct investor, lead first-class."""
    lead_key = normalize_investor_name(extraction.lead_investor) if extraction.lead_investor else None
    seen: Dict[str, int] = {}
    investors: List[list] = []

    for name in extraction.all_investors:
        key = normalize_investor_name(name)
        if not key:
            continue
        role = "lead" if key == lead_key else "participant"
        if key in seen:
            if role == "lead":
                investors[seen[key]][2] = "lead"
            continue
        seen[key] = len(investors)
        investors.append([key, name, role])

    return [tuple(i) for i in investors]


async def commit_round(
    extraction: RawExtraction,
    articles: Sequence[ArticleRef],
    round_key: Optional[str] = None,
    store: Optional[Neo4jGraphStore] = None,
    ingested_at: Optional[datetime] = None,
) -> GraphSyncSummary:
    """
    Idempotently write one funding round and its entities.

    Args:
        extraction: Merged extraction for the round.
        articles: Source articles; each becomes an Article node and SOURCED_FROM edge.
        round_key: Grouper key to reuse; generated from the first article otherwise.
            A round of the same company and stage already sourced from one of
            `articles` keeps its own key.
        store: Graph store (shared Neo4j store by default).
        ingested_at: Stamped on the round when given.

    Raises:
        ValueError: companyName is missing (nothing is written).
        GraphSyncError: A step exhausted its retries.
    """
    if not extraction.company_name or not extraction.company_name.strip():
        raise ValueError("companyName is required to commit a round")

    store = store or get_graph_store()
    company_name = extraction.company_name.strip()
    company_key = normalize_company_name(company_name)
    entity = f"Company:{company_name}"

    # A round already sourced from these articles keeps its key
    urls = [a.url for a in articles if a.url]
    if urls:
        candidates = await _with_retry("resolve_round", entity, lambda: store.rounds_for_articles(urls))
        existing = existing_round_key(candidates, company_key, extraction.stage, urls)
        if existing and existing != round_key:
            logger.info(f"Round {round_key or '(new)'} for {company_name} already in graph as {existing}")
            round_key = existing
    if round_key is None:
        round_key = build_round_key(company_name, extraction.stage, articles[0].id if articles else None)

    summary = GraphSyncSummary(round_key=round_key)

    # 1. Company
    company_fields = {"country": extraction.country}
    if extraction.company_meta:
        company_fields.update(extraction.company_meta.as_graph_fields())
    result = await _with_retry(
        "company", entity,
        lambda: store.merge_entity(EntityType.COMPANY, company_key, company_name, company_fields),
    )
    summary.record(result, nodes=1)
    summary.nodes.append(f"Company: {company_name}")

    # 2. Location (skipped inside the statement when country is locked)
    if extraction.country:
        result = await _with_retry(
            "location", f"Location:{extraction.country}",
            lambda: store.merge_hq(company_key, extraction.country, "country", guard="country"),
        )
        if result.rows:
            summary.record(result, nodes=1, edges=1)
            summary.nodes.append(f"Location: {extraction.country}")
            summary.edges.append("HQ_IN")
        else:
            summary.skipped.append("HQ_IN (country locked)")

    # 3. FundingRound + RAISED
    round_props = {
        "amountUsd": extraction.amount_usd,
        "currency": extraction.currency,
        "stage": extraction.stage,
        "confidence": extraction.confidence,
        "ingestedAt": ingested_at.isoformat() if ingested_at else None,
    }
    result = await _with_retry("round", f"FundingRound:{round_key}", lambda: store.merge_round(round_key, round_props))
    summary.record(result, nodes=1)
    summary.nodes.append(f"FundingRound: {company_name} {extraction.stage or ''}".rstrip())

    result = await _with_retry("raised", entity, lambda: store.link_raised(company_key, round_key))
    summary.record(result, edges=1)
    summary.edges.append("RAISED")

    # 4. Investors + PARTICIPATED_IN
    investors = _dedupe_investors(extraction)
    for inv_key, inv_name, role in investors:
        inv_entity = f"InvestorOrg:{inv_name}"
        result = await _with_retry(
            "investor", inv_entity,
            lambda: store.merge_entity(EntityType.INVESTOR, inv_key, inv_name, {}),
        )
        summary.record(result, nodes=1)
        summary.nodes.append(f"InvestorOrg: {inv_name}")

        result = await _with_retry(
            "participated_in", inv_entity,
            lambda: store.link_participant(inv_key, round_key, role),
        )
        summary.record(result, edges=1)
    if investors:
        summary.edges.append(f"PARTICIPATED_IN x{len(investors)}")

    # 5. Articles + SOURCED_FROM
    for article in articles:
        art_entity = f"Article:{article.url}"
        result = await _with_retry(
            "article", art_entity,
            lambda: store.merge_article(article.url, article.graph_props()),
        )
        summary.record(result, nodes=1)
        summary.nodes.append(f"Article: {article.title}")

        result = await _with_retry(
            "sourced_from", art_entity,
            lambda: store.link_source(round_key, article.url, extraction.confidence),
        )
        summary.record(result, edges=1)
        summary.edges.append("SOURCED_FROM")

    # 6. Derived total
    summary.total_funding_usd = await _with_retry(
        "total_funding", entity, lambda: store.recompute_total_funding(company_key),
    )

    logger.info(
        f"Committed round {round_key}: {summary.nodes_created} nodes created, "
        f"{summary.nodes_matched} matched, {summary.edges_created} edges created"
    )
    return summary


async def set_field_lock(
    entity_type: Any,
    entity_name: str,
    field: str,
    locked: bool,
    store: Optional[Neo4jGraphStore] = None,
) -> List[str]:
    """
    Lock or unlock one field. Only lockedFields changes.

    Raises:
        ValueError: Unknown entity type, non-lockable field, or empty name.
        LookupError: No such entity.
    """
    kind = parse_entity_type(entity_type)
    validate_lock_field(kind, field)
    if not entity_name or not entity_name.strip():
        raise ValueError("entityName is required")

    store = store or get_graph_store()
    name = entity_name.strip()
    key = normalize_company_name(name) if kind == EntityType.COMPANY else normalize_investor_name(name)

    locked_fields = await store.set_field_lock(kind, name, key, field, locked)
    if locked_fields is None:
        raise LookupError(f"{kind.value} not found: {name}")

    logger.info(f"{'Locked' if locked else 'Unlocked'} {kind.value} field {field} on {name}")
    return locked_fields


def _round_rows(rounds: List[CanonicalRound]) -> Dict[BulkWrite, List[Dict[str, Any]]]:
    """Denormalize canonical rounds into UNWIND rows, one list per statement."""
    companies: Dict[str, Dict[str, Any]] = {}
    investors: Dict[str, Dict[str, Any]] = {}
    locations: Dict[str, Dict[str, Any]] = {}
    articles: Dict[str, Dict[str, Any]] = {}
    round_rows, raised, participated, sourced, hq = [], [], [], [], {}

    for r in rounds:
        company_key = normalize_company_name(r.company_name)
        if not company_key:
            continue
        if company_key not in companies:
            companies[company_key] = {"key": company_key, "name": r.company_name, "country": r.country}
        elif r.country and not companies[company_key]["country"]:
            companies[company_key]["country"] = r.country

        primary = r.members[0] if r.members else None
        round_rows.append({
            "roundKey": r.key,
            "amountUsd": r.amount_usd,
            "currency": primary.currency if primary else "USD",
            "stage": r.stage,
            "confidence": r.max_confidence,
            "ingestedAt": r.ingested_at.isoformat() if r.ingested_at else None,
        })
        raised.append({"companyKey": company_key, "roundKey": r.key})

        if r.country:
            locations.setdefault(r.country, {"name": r.country, "type": "country"})
            hq.setdefault((company_key, r.country), {"companyKey": company_key, "location": r.country})

        lead_key = normalize_investor_name(r.lead_investor) if r.lead_investor else None
        seen = set()
        for name in r.all_investors:
            inv_key = normalize_investor_name(name)
            if not inv_key or inv_key in seen:
                continue
            seen.add(inv_key)
            investors.setdefault(inv_key, {"key": inv_key, "name": name})
            participated.append({
                "investorKey": inv_key,
                "roundKey": r.key,
                "role": "lead" if inv_key == lead_key else "participant",
            })

        for m in r.members:
            if not m.article_url:
                continue
            articles.setdefault(m.article_url, {
                "url": m.article_url,
                "title": m.article_title,
                "publishedAt": m.published_at.isoformat() if m.published_at else None,
                "author": None,
                "articleId": m.article_id,
            })
            sourced.append({"roundKey": r.key, "url": m.article_url, "confidence": m.confidence})

    return {
        BulkWrite.COMPANIES: list(companies.values()),
        BulkWrite.INVESTORS: list(investors.values()),
        BulkWrite.LOCATIONS: list(locations.values()),
        BulkWrite.ARTICLES: list(articles.values()),
        BulkWrite.ROUNDS: round_rows,
        BulkWrite.RAISED: raised,
        BulkWrite.PARTICIPATED_IN: participated,
        BulkWrite.SOURCED_FROM: sourced,
        BulkWrite.HQ_IN: list(hq.values()),
        BulkWrite.TOTALS: [{"companyKey": k} for k in companies],
    }


# Nodes before edges; totals last
BULK_ORDER = [
    BulkWrite.COMPANIES,
    BulkWrite.INVESTORS,
    BulkWrite.LOCATIONS,
    BulkWrite.ARTICLES,
    BulkWrite.ROUNDS,
    BulkWrite.RAISED,
    BulkWrite.PARTICIPATED_IN,
    BulkWrite.SOURCED_FROM,
    BulkWrite.HQ_IN,
    BulkWrite.TOTALS,
]


async def _reuse_existing_keys(rounds: List[CanonicalRound], store: Neo4jGraphStore):
    """Point grouped rounds at rounds the graph already holds for their articles."""
    urls = sorted({m.article_url for r in rounds for m in r.members if m.article_url})
    if not urls:
        return
    candidates = await _with_retry(
        "resolve_rounds", f"{len(urls)} articles", lambda: store.rounds_for_articles(urls),
    )
    reused = 0
    for r in rounds:
        existing = existing_round_key(
            candidates,
            normalize_company_name(r.company_name),
            r.stage,
            [m.article_url for m in r.members if m.article_url],
        )
        if existing and existing != r.key:
            r.key = existing
            reused += 1
    if reused:
        logger.info(f"Reusing {reused} existing round keys")


async def sync_all_rounds(
    mentions: List[MentionRecord],
    store: Optional[Neo4jGraphStore] = None,
) -> GraphSyncResult:
    """Group all stored mentions and project every canonical round into the graph."""
    start = time.monotonic()
    store = store or get_graph_store()

    rounds = group_mentions(mentions)
    await _reuse_existing_keys(rounds, store)
    rows = _round_rows(rounds)

    edges = 0
    for op in BULK_ORDER:
        batch = rows[op]
        if not batch:
            continue
        result = await _with_retry("bulk_" + op.value, f"{len(batch)} rows", lambda: store.run_batch(op, batch))
        edges += result.relationships_created

    sync_result = GraphSyncResult(
        companies=len(rows[BulkWrite.COMPANIES]),
        investors=len(rows[BulkWrite.INVESTORS]),
        funding_rounds=len(rows[BulkWrite.ROUNDS]),
        articles=len(rows[BulkWrite.ARTICLES]),
        locations=len(rows[BulkWrite.LOCATIONS]),
        edges=edges,
        duration_ms=int((time.monotonic() - start) * 1000),
    )
    logger.info(f"Bulk graph sync complete: {sync_result.to_dict()}")
    return sync_result


async def clear_rounds(store: Optional[Neo4jGraphStore] = None) -> Dict[str, int]:
    """Remove rounds and articles from the graph; companies and investors stay."""
    store = store or get_graph_store()
    return await _with_retry("clear_rounds", "graph", store.clear_rounds)
