"""
Read-only aggregate views over the graph.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

from .graph import Neo4jGraphStore, get_graph_store

logger = logging.getLogger(__name__)

FORBIDDEN_KEYWORDS = re.compile(
    r"\b(?:CREATE|DELETE|SET|MERGE|REMOVE|DROP|DETACH)\b|\bCALL\s*\{",
    re.IGNORECASE,
)

MAX_QUERY_ROWS = 500


class ReadOnlyQueryError(ValueError):
    """A user query contained a write keyword."""
    pass


SUMMARY_QUERY = """
OPTIONAL MATCH (fr:FundingRound)
WITH sum(fr.amountUsd) AS totalFunding, count(fr) AS totalRounds, avg(fr.amountUsd) AS avgDealSize
OPTIONAL MATCH (c:Company)
WITH totalFunding, totalRounds, avgDealSize, count(c) AS totalCompanies
OPTIONAL MATCH (inv:InvestorOrg)
WITH totalFunding, totalRounds, avgDealSize, totalCompanies, count(inv) AS totalInvestors
OPTIONAL MATCH (a:Article)
WITH totalFunding, totalRounds, avgDealSize, totalCompanies, totalInvestors, count(a) AS totalArticles
OPTIONAL MATCH (l:Location)
RETURN totalFunding, totalRounds, avgDealSize, totalCompanies, totalInvestors, totalArticles,
       count(l) AS totalLocations
"""

EDGES_QUERY = "MATCH ()-[r]->() RETURN count(r) AS totalEdges"

MEDIAN_QUERY = """
MATCH (fr:FundingRound)
WHERE fr.amountUsd IS NOT NULL
RETURN percentileDisc(fr.amountUsd, 0.5) AS medianDealSize
"""

RECENT_DEALS_QUERY = """
MATCH (c:Company)-[:RAISED]->(fr:FundingRound)
OPTIONAL MATCH (lead:InvestorOrg)-[:PARTICIPATED_IN {role: 'lead'}]->(fr)
OPTIONAL MATCH (participant:InvestorOrg)-[:PARTICIPATED_IN]->(fr)
OPTIONAL MATCH (fr)-[:SOURCED_FROM]->(a:Article)
WITH c, fr,
     collect(DISTINCT lead.name)[0] AS leadInvestor,
     count(DISTINCT participant) AS participantCount,
     collect(DISTINCT {url: a.url, title: a.title, publishedAt: a.publishedAt}) AS articles
RETURN c.name AS company,
       c.country AS companyCountry,
       fr.roundKey AS roundKey,
       fr.amountUsd AS amount,
       fr.stage AS stage,
       leadInvestor,
       participantCount,
       articles[0].url AS articleUrl,
       articles[0].title AS articleTitle,
       articles[0].publishedAt AS publishedAt
ORDER BY publishedAt DESC
LIMIT 25
"""

TOP_COMPANIES_QUERY = """
MATCH (c:Company)
OPTIONAL MATCH (c)-[:RAISED]->(fr:FundingRound)
WITH c, fr ORDER BY fr.createdAt
WITH c, count(fr) AS roundCount, collect({stage: fr.stage, amount: fr.amountUsd}) AS rounds
RETURN c.name AS name,
       c.country AS country,
       c.totalFundingUsd AS totalFunding,
       roundCount,
       rounds[size(rounds) - 1].stage AS lastRoundStage,
       rounds[size(rounds) - 1].amount AS lastRoundAmount
ORDER BY totalFunding DESC
LIMIT 20
"""

TOP_INVESTORS_QUERY = """
MATCH (inv:InvestorOrg)-[p:PARTICIPATED_IN]->(fr:FundingRound)
OPTIONAL MATCH (c:Company)-[:RAISED]->(fr)
WITH inv,
     count(DISTINCT fr) AS dealCount,
     sum(CASE WHEN p.role = 'lead' THEN 1 ELSE 0 END) AS leadCount,
     sum(fr.amountUsd) AS totalDeployed,
     collect(DISTINCT c.name) AS allCompanies
RETURN inv.name AS name,
       dealCount,
       leadCount,
       totalDeployed,
       allCompanies[0..5] AS portfolioCompanies
ORDER BY dealCount DESC
LIMIT 20
"""

BY_STAGE_QUERY = """
MATCH (fr:FundingRound)
WHERE fr.stage IS NOT NULL
RETURN fr.stage AS stage, count(fr) AS count, sum(fr.amountUsd) AS totalAmount
ORDER BY totalAmount DESC
"""

BY_COUNTRY_QUERY = """
MATCH (c:Company)-[:RAISED]->(fr:FundingRound)
WHERE c.country IS NOT NULL
RETURN c.country AS country,
       sum(fr.amountUsd) AS totalAmount,
       count(fr) AS dealCount,
       count(DISTINCT c) AS companyCount
ORDER BY totalAmount DESC
LIMIT 10
"""

# A round counts once per month even with several sources in that month
TIMELINE_QUERY = """
MATCH (fr:FundingRound)-[:SOURCED_FROM]->(a:Article)
WHERE a.publishedAt IS NOT NULL
WITH DISTINCT fr, substring(toString(a.publishedAt), 0, 7) AS month
RETURN month, count(fr) AS dealCount, sum(fr.amountUsd) AS totalAmount
ORDER BY month ASC
"""


def _first(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    return rows[0] if rows else {}


async def graph_stats(
    store: Optional[Neo4jGraphStore] = None,
    ingestion: Optional[Dict[str, int]] = None,
) -> Dict[str, Any]:
    """All dashboard aggregates in one payload."""
    store = store or get_graph_store()

    (
        summary_rows,
        edge_rows,
        median_rows,
        recent,
        top_companies,
        top_investors,
        by_stage,
        by_country,
        timeline,
    ) = await asyncio.gather(
        store.run_read(SUMMARY_QUERY),
        store.run_read(EDGES_QUERY),
        store.run_read(MEDIAN_QUERY),
        store.run_read(RECENT_DEALS_QUERY),
        store.run_read(TOP_COMPANIES_QUERY),
        store.run_read(TOP_INVESTORS_QUERY),
        store.run_read(BY_STAGE_QUERY),
        store.run_read(BY_COUNTRY_QUERY),
        store.run_read(TIMELINE_QUERY),
    )

    row = _first(summary_rows)
    stats = {
        "summary": {
            "totalFunding": row.get("totalFunding") or 0,
            "totalCompanies": row.get("totalCompanies") or 0,
            "totalInvestors": row.get("totalInvestors") or 0,
            "totalRounds": row.get("totalRounds") or 0,
            "totalArticles": row.get("totalArticles") or 0,
            "totalLocations": row.get("totalLocations") or 0,
            "totalEdges": _first(edge_rows).get("totalEdges") or 0,
            "avgDealSize": row.get("avgDealSize") or 0,
            "medianDealSize": _first(median_rows).get("medianDealSize"),
        },
        "recentDeals": recent,
        "topCompanies": top_companies,
        "topInvestors": top_investors,
        "fundingByStage": by_stage,
        "fundingByCountry": by_country,
        "fundingTimeline": timeline,
    }
    if ingestion is not None:
        stats["ingestion"] = ingestion
    return stats


def check_read_only(query: str) -> str:
    """Reject queries containing write clauses."""
    if not query or not isinstance(query, str) or not query.strip():
        raise ReadOnlyQueryError("Missing query")
    match = FORBIDDEN_KEYWORDS.search(query)
    if match:
        raise ReadOnlyQueryError(
            f"Only read queries are allowed (found {match.group(0).upper()})"
        )
    return query.strip()


async def run_read_query(query: str, store: Optional[Neo4jGraphStore] = None) -> Dict[str, Any]:
    """Run a user-supplied read query in a READ session."""
    cypher = check_read_only(query)
    store = store or get_graph_store()
    records = await store.run_read(cypher)
    truncated = len(records) > MAX_QUERY_ROWS
    if truncated:
        logger.info(f"Graph query returned {len(records)} rows, truncating to {MAX_QUERY_ROWS}")
        records = records[:MAX_QUERY_ROWS]
    return {"records": records, "count": len(records), "truncated": truncated}
