"""
Graph store backed by Neo4j.

Node labels: Company, InvestorOrg, FundingRound, Article, Location.
Edges: RAISED, PARTICIPATED_IN{role}, SOURCED_FROM{confidence}, HQ_IN.

Every statement is a fixed, parameterized Cypher template. Labels and
property names come from EntityType / LockableField, never from request
input. Locked fields are checked inside the statement that writes, so a
lock set between a read and a write is still honoured.

All values leaving this module pass through to_native() once.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from neo4j import AsyncDriver, AsyncGraphDatabase, Query
from neo4j.graph import Node, Path, Relationship
from neo4j.time import Date, DateTime, Duration, Time

from ..config.settings import settings

logger = logging.getLogger(__name__)


class EntityType(str, Enum):
    """Entities whose fields can be locked and enriched."""
    COMPANY = "company"
    INVESTOR = "investor"


class CompanyField(str, Enum):
    NAME = "name"
    COUNTRY = "country"
    LOCATION = "location"
    STATUS = "status"
    DESCRIPTION = "description"
    WEBSITE = "website"
    FOUNDED_YEAR = "foundedYear"
    EMPLOYEE_RANGE = "employeeRange"
    LINKEDIN_URL = "linkedinUrl"
    LOGO_URL = "logoUrl"


class InvestorField(str, Enum):
    NAME = "name"
    TYPE = "type"
    WEBSITE = "website"
    LINKEDIN_URL = "linkedinUrl"
    FOUNDED_YEAR = "foundedYear"
    LOGO_URL = "logoUrl"
    AUM = "aum"
    HQ = "hq"
    STAGE_FOCUS = "stageFocus"
    SECTOR_FOCUS = "sectorFocus"
    GEO_FOCUS = "geoFocus"
    CHECK_SIZE_MIN = "checkSizeMinUsd"
    CHECK_SIZE_MAX = "checkSizeMaxUsd"


LOCKABLE_FIELDS: Dict[EntityType, FrozenSet[str]] = {
    EntityType.COMPANY: frozenset(f.value for f in CompanyField),
    EntityType.INVESTOR: frozenset(f.value for f in InvestorField),
}

# Lockable names that are not plain node properties
_NON_PROPERTY_FIELDS = {"name", "location"}


def parse_entity_type(value: Any) -> EntityType:
    """Raise ValueError for anything other than a known entity type."""
    try:
        return EntityType(value)
    except ValueError:
        raise ValueError(f"Unknown entity type: {value!r}") from None


def validate_lock_field(entity_type: EntityType, field: str) -> str:
    if field not in LOCKABLE_FIELDS[entity_type]:
        raise ValueError(f"Field {field!r} cannot be locked on {entity_type.value}")
    return field


def to_native(value: Any) -> Any:
    """Convert driver values into plain JSON-friendly Python values."""
    if value is None:
        return None
    if isinstance(value, float):
        return None if math.isnan(value) else value
    if isinstance(value, (DateTime, Date, Time, Duration)):
        return value.iso_format()
    if isinstance(value, (Node, Relationship)):
        return {k: to_native(v) for k, v in value.items()}
    if isinstance(value, Path):
        return [to_native(n) for n in value.nodes]
    if isinstance(value, dict):
        return {k: to_native(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_native(v) for v in value]
    return value


@dataclass
class WriteResult:
    """Counters from one write statement."""
    nodes_created: int = 0
    relationships_created: int = 0
    rows: int = 0

    def __add__(self, other: "WriteResult") -> "WriteResult":
        return WriteResult(
            self.nodes_created + other.nodes_created,
            self.relationships_created + other.relationships_created,
            self.rows + other.rows,
        )


# =============================================================================
# Cypher templates
# =============================================================================

def _guarded_set(var: str, fields: List[str], source: str = "$props") -> str:
    """SET clauses that skip nulls and locked fields, evaluated per row."""
    return ",\n    ".join(
        f"{var}.{f} = CASE WHEN {source}.{f} IS NULL "
        f"OR '{f}' IN coalesce({var}.lockedFields, []) "
        f"THEN {var}.{f} ELSE {source}.{f} END"
        for f in fields
    )


def _property_fields(entity_type: EntityType) -> List[str]:
    return sorted(LOCKABLE_FIELDS[entity_type] - _NON_PROPERTY_FIELDS)


@dataclass(frozen=True)
class EntityQueries:
    """Statements for one entity type."""
    label: str
    merge: str
    get: str
    lock: str
    unlock: str
    articles: str
    listing: str


def _entity_queries(entity_type: EntityType, label: str, on_create: str, related: str) -> EntityQueries:
    fields = _property_fields(entity_type)
    return EntityQueries(
        label=label,
        merge=f"""
MERGE (n:{label} {{normalizedName: $key}})
ON CREATE SET n.name = $name, n.lockedFields = [], n.createdAt = datetime(){on_create}
SET n.name = CASE WHEN $name IS NULL OR 'name' IN coalesce(n.lockedFields, [])
                  THEN n.name ELSE $name END,
    {_guarded_set("n", fields)},
    n.enrichedAt = CASE WHEN $enriched THEN datetime() ELSE n.enrichedAt END,
    n.updatedAt = datetime()
RETURN n.lockedFields AS lockedFields
""",
        get=f"""
MATCH (n:{label})
WHERE n.name = $name OR n.normalizedName = $key
RETURN n AS node
ORDER BY CASE WHEN n.name = $name THEN 0 ELSE 1 END
LIMIT 1
""",
        lock=f"""
MATCH (n:{label})
WHERE n.name = $name OR n.normalizedName = $key
SET n.lockedFields = CASE
    WHEN n.lockedFields IS NULL THEN [$field]
    WHEN NOT $field IN n.lockedFields THEN n.lockedFields + $field
    ELSE n.lockedFields
END
RETURN n.lockedFields AS lockedFields
""",
        unlock=f"""
MATCH (n:{label})
WHERE n.name = $name OR n.normalizedName = $key
SET n.lockedFields = [f IN coalesce(n.lockedFields, []) WHERE f <> $field]
RETURN n.lockedFields AS lockedFields
""",
        articles=f"""
MATCH (n:{label} {{normalizedName: $key}}){related}(:FundingRound)-[s:SOURCED_FROM]->(a:Article)
RETURN DISTINCT a.url AS url, a.title AS title, a.publishedAt AS publishedAt, s.confidence AS confidence
ORDER BY confidence DESC
LIMIT $limit
""",
        listing=f"""
MATCH (n:{label})
WHERE $search IS NULL OR toLower(n.name) CONTAINS toLower($search)
OPTIONAL MATCH (n){related}(r:FundingRound)
WITH n, count(DISTINCT r) AS rounds
RETURN n AS node, rounds
ORDER BY rounds DESC, n.name
SKIP $offset
LIMIT $limit
""",
    )


ENTITY_QUERIES: Dict[EntityType, EntityQueries] = {
    EntityType.COMPANY: _entity_queries(
        EntityType.COMPANY,
        "Company",
        on_create=", n.status = 'active', n.totalFundingUsd = 0",
        related="-[:RAISED]->",
    ),
    EntityType.INVESTOR: _entity_queries(
        EntityType.INVESTOR,
        "InvestorOrg",
        on_create="",
        related="-[:PARTICIPATED_IN]->",
    ),
}

CONSTRAINTS = [
    "CREATE CONSTRAINT company_name IF NOT EXISTS FOR (c:Company) REQUIRE c.normalizedName IS UNIQUE",
    "CREATE CONSTRAINT investor_name IF NOT EXISTS FOR (i:InvestorOrg) REQUIRE i.normalizedName IS UNIQUE",
    "CREATE CONSTRAINT funding_round_key IF NOT EXISTS FOR (f:FundingRound) REQUIRE f.roundKey IS UNIQUE",
    "CREATE CONSTRAINT article_url IF NOT EXISTS FOR (a:Article) REQUIRE a.url IS UNIQUE",
    "CREATE CONSTRAINT location_name IF NOT EXISTS FOR (l:Location) REQUIRE l.name IS UNIQUE",
]

HQ_QUERY = """
MATCH (c:Company {normalizedName: $key})
WHERE NOT $guard IN coalesce(c.lockedFields, [])
MERGE (l:Location {name: $location})
ON CREATE SET l.type = $locationType
MERGE (c)-[:HQ_IN]->(l)
RETURN count(*) AS rows
"""

ROUND_QUERY = """
MERGE (f:FundingRound {roundKey: $roundKey})
ON CREATE SET f.createdAt = datetime(), f.confidence = $confidence
SET f.amountUsd = coalesce($amountUsd, f.amountUsd),
    f.currency = coalesce($currency, f.currency),
    f.stage = coalesce($stage, f.stage),
    f.confidence = CASE WHEN f.confidence IS NULL OR $confidence > f.confidence
                        THEN $confidence ELSE f.confidence END,
    f.ingestedAt = coalesce($ingestedAt, f.ingestedAt)
RETURN count(*) AS rows
"""

RAISED_QUERY = """
MATCH (c:Company {normalizedName: $companyKey})
MATCH (f:FundingRound {roundKey: $roundKey})
MERGE (c)-[:RAISED]->(f)
RETURN count(*) AS rows
"""

# A lead edge stays lead; a participant edge is upgraded when the lead is seen
PARTICIPANT_QUERY = """
MATCH (i:InvestorOrg {normalizedName: $investorKey})
MATCH (f:FundingRound {roundKey: $roundKey})
MERGE (i)-[rel:PARTICIPATED_IN]->(f)
ON CREATE SET rel.role = $role
SET rel.role = CASE WHEN rel.role = 'lead' OR $role = 'lead' THEN 'lead' ELSE 'participant' END
RETURN count(*) AS rows
"""

ARTICLE_QUERY = """
MERGE (a:Article {url: $url})
SET a.title = coalesce($title, a.title),
    a.publishedAt = coalesce($publishedAt, a.publishedAt),
    a.author = coalesce($author, a.author),
    a.articleId = coalesce($articleId, a.articleId)
RETURN count(*) AS rows
"""

SOURCE_QUERY = """
MATCH (f:FundingRound {roundKey: $roundKey})
MATCH (a:Article {url: $url})
MERGE (f)-[rel:SOURCED_FROM]->(a)
ON CREATE SET rel.confidence = $confidence
SET rel.confidence = CASE WHEN rel.confidence IS NULL OR $confidence > rel.confidence
                          THEN $confidence ELSE rel.confidence END
RETURN count(*) AS rows
"""

# Oldest round first, so the first committed key wins
ROUNDS_FOR_ARTICLES_QUERY = """
UNWIND $urls AS url
MATCH (c:Company)-[:RAISED]->(f:FundingRound)-[:SOURCED_FROM]->(a:Article {url: url})
RETURN a.url AS url, c.normalizedName AS companyKey, f.roundKey AS roundKey,
       f.stage AS stage, f.createdAt AS createdAt
ORDER BY createdAt
"""

TOTAL_FUNDING_QUERY = """
MATCH (c:Company {normalizedName: $key})
OPTIONAL MATCH (c)-[:RAISED]->(f:FundingRound)
WITH c, sum(coalesce(f.amountUsd, 0)) AS total
SET c.totalFundingUsd = total
RETURN total
"""

CLEAR_ROUNDS_QUERIES = [
    ("fundingRounds", "MATCH (f:FundingRound) DETACH DELETE f RETURN count(*) AS affected"),
    ("articles", "MATCH (a:Article) DETACH DELETE a RETURN count(*) AS affected"),
    ("companiesReset", "MATCH (c:Company) SET c.totalFundingUsd = 0 RETURN count(c) AS affected"),
]


class BulkWrite(str, Enum):
    """UNWIND statements used by the bulk projection."""
    COMPANIES = "companies"
    INVESTORS = "investors"
    LOCATIONS = "locations"
    ARTICLES = "articles"
    ROUNDS = "rounds"
    RAISED = "raised"
    PARTICIPATED_IN = "participated_in"
    SOURCED_FROM = "sourced_from"
    HQ_IN = "hq_in"
    TOTALS = "totals"


BULK_QUERIES: Dict[BulkWrite, str] = {
    BulkWrite.COMPANIES: """
UNWIND $rows AS row
MERGE (c:Company {normalizedName: row.key})
ON CREATE SET c.name = row.name, c.lockedFields = [], c.createdAt = datetime(),
              c.status = 'active', c.totalFundingUsd = 0
SET c.name = CASE WHEN 'name' IN coalesce(c.lockedFields, []) THEN c.name ELSE row.name END,
    c.country = CASE WHEN row.country IS NULL OR 'country' IN coalesce(c.lockedFields, [])
                     THEN c.country ELSE row.country END
""",
    BulkWrite.INVESTORS: """
UNWIND $rows AS row
MERGE (i:InvestorOrg {normalizedName: row.key})
ON CREATE SET i.name = row.name, i.lockedFields = [], i.createdAt = datetime()
SET i.name = CASE WHEN 'name' IN coalesce(i.lockedFields, []) THEN i.name ELSE row.name END
""",
    BulkWrite.LOCATIONS: """
UNWIND $rows AS row
MERGE (l:Location {name: row.name})
ON CREATE SET l.type = row.type
""",
    BulkWrite.ARTICLES: """
UNWIND $rows AS row
MERGE (a:Article {url: row.url})
SET a.title = coalesce(row.title, a.title),
    a.publishedAt = coalesce(row.publishedAt, a.publishedAt),
    a.author = coalesce(row.author, a.author),
    a.articleId = coalesce(row.articleId, a.articleId)
""",
    BulkWrite.ROUNDS: """
UNWIND $rows AS row
MERGE (f:FundingRound {roundKey: row.roundKey})
ON CREATE SET f.createdAt = datetime(), f.confidence = row.confidence
SET f.amountUsd = coalesce(row.amountUsd, f.amountUsd),
    f.currency = coalesce(row.currency, f.currency),
    f.stage = coalesce(row.stage, f.stage),
    f.confidence = CASE WHEN f.confidence IS NULL OR row.confidence > f.confidence
                        THEN row.confidence ELSE f.confidence END,
    f.ingestedAt = coalesce(row.ingestedAt, f.ingestedAt)
""",
    BulkWrite.RAISED: """
UNWIND $rows AS row
MATCH (c:Company {normalizedName: row.companyKey})
MATCH (f:FundingRound {roundKey: row.roundKey})
MERGE (c)-[:RAISED]->(f)
""",
    BulkWrite.PARTICIPATED_IN: """
UNWIND $rows AS row
MATCH (i:InvestorOrg {normalizedName: row.investorKey})
MATCH (f:FundingRound {roundKey: row.roundKey})
MERGE (i)-[rel:PARTICIPATED_IN]->(f)
ON CREATE SET rel.role = row.role
SET rel.role = CASE WHEN rel.role = 'lead' OR row.role = 'lead' THEN 'lead' ELSE 'participant' END
""",
    BulkWrite.SOURCED_FROM: """
UNWIND $rows AS row
MATCH (f:FundingRound {roundKey: row.roundKey})
MATCH (a:Article {url: row.url})
MERGE (f)-[rel:SOURCED_FROM]->(a)
ON CREATE SET rel.confidence = row.confidence
SET rel.confidence = CASE WHEN rel.confidence IS NULL OR row.confidence > rel.confidence
                          THEN row.confidence ELSE rel.confidence END
""",
    BulkWrite.HQ_IN: """
UNWIND $rows AS row
MATCH (c:Company {normalizedName: row.companyKey})
WHERE NOT 'country' IN coalesce(c.lockedFields, [])
MATCH (l:Location {name: row.location})
MERGE (c)-[:HQ_IN]->(l)
""",
    BulkWrite.TOTALS: """
UNWIND $rows AS row
MATCH (c:Company {normalizedName: row.companyKey})
OPTIONAL MATCH (c)-[:RAISED]->(f:FundingRound)
WITH c, sum(coalesce(f.amountUsd, 0)) AS total
SET c.totalFundingUsd = total
""",
}


# =============================================================================
# Store
# =============================================================================

class Neo4jGraphStore:
    """
    Async Neo4j access for the upsert engine, enrichment and stats.

    One auto-commit statement per call; each statement carries a server-side
    transaction timeout of settings.graph_timeout.
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        database: Optional[str] = None,
    ):
        self.uri = uri or settings.neo4j_uri
        self.database = database or settings.neo4j_database or None
        self._auth = (user or settings.neo4j_user, password or settings.neo4j_password)
        self._driver: Optional[AsyncDriver] = None

    @property
    def driver(self) -> AsyncDriver:
        if self._driver is None:
            self._driver = AsyncGraphDatabase.driver(self.uri, auth=self._auth)
            logger.info(f"Neo4j driver initialized for {self.uri}")
        return self._driver

    async def close(self):
        if self._driver is not None:
            await self._driver.close()
            self._driver = None
            logger.info("Neo4j driver closed")

    async def _run(self, cypher: str, params: Optional[Dict[str, Any]] = None):
        """Run one statement; returns (records, counters)."""
        async with self.driver.session(database=self.database) as session:
            result = await session.run(Query(cypher, timeout=settings.graph_timeout), params or {})
            records = [r async for r in result]
            summary = await result.consume()
            return records, summary.counters

    async def _write(self, cypher: str, params: Dict[str, Any]) -> WriteResult:
        records, counters = await self._run(cypher, params)
        rows = records[0]["rows"] if records and "rows" in records[0].keys() else len(records)
        return WriteResult(
            nodes_created=counters.nodes_created,
            relationships_created=counters.relationships_created,
            rows=rows,
        )

    async def verify(self) -> bool:
        try:
            await self.driver.verify_connectivity()
            return True
        except Exception as e:
            logger.warning(f"Neo4j connectivity check failed: {e}")
            return False

    async def ensure_constraints(self):
        for cypher in CONSTRAINTS:
            await self._run(cypher)
        logger.info(f"Ensured {len(CONSTRAINTS)} graph constraints")

    # --- entities -----------------------------------------------------------

    async def merge_entity(
        self,
        entity_type: EntityType,
        key: str,
        name: Optional[str],
        fields: Dict[str, Any],
        enriched: bool = False,
    ) -> WriteResult:
        """MERGE a Company/InvestorOrg; only non-null, unlocked values are written."""
        allowed = _property_fields(entity_type)
        props = {f: fields.get(f) for f in allowed}
        unknown = set(fields) - set(allowed)
        if unknown:
            logger.debug(f"Ignoring non-property fields for {entity_type.value}: {sorted(unknown)}")
        return await self._write(
            ENTITY_QUERIES[entity_type].merge,
            {"key": key, "name": name, "props": props, "enriched": enriched},
        )

    async def get_entity(self, entity_type: EntityType, name: str, key: str) -> Optional[Dict[str, Any]]:
        records, _ = await self._run(ENTITY_QUERIES[entity_type].get, {"name": name, "key": key})
        if not records:
            return None
        node = to_native(records[0]["node"])
        node.setdefault("lockedFields", [])
        return node

    async def set_field_lock(
        self,
        entity_type: EntityType,
        name: str,
        key: str,
        field: str,
        locked: bool,
    ) -> Optional[List[str]]:
        queries = ENTITY_QUERIES[entity_type]
        records, _ = await self._run(
            queries.lock if locked else queries.unlock,
            {"name": name, "key": key, "field": field},
        )
        if not records:
            return None
        return list(records[0]["lockedFields"] or [])

    async def entity_articles(self, entity_type: EntityType, key: str, limit: int = 10) -> List[Dict[str, Any]]:
        records, _ = await self._run(ENTITY_QUERIES[entity_type].articles, {"key": key, "limit": limit})
        return [to_native(dict(r)) for r in records]

    async def list_entities(
        self,
        entity_type: EntityType,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        records, _ = await self._run(
            ENTITY_QUERIES[entity_type].listing,
            {"search": search, "limit": limit, "offset": offset},
        )
        items = []
        for r in records:
            item = to_native(r["node"])
            item["roundCount"] = r["rounds"]
            items.append(item)
        return items

    # --- rounds and edges ---------------------------------------------------

    async def merge_hq(
        self,
        company_key: str,
        location: str,
        location_type: str = "country",
        guard: str = "country",
    ) -> WriteResult:
        """Location + HQ_IN edge, skipped entirely when `guard` is locked on the company."""
        return await self._write(HQ_QUERY, {
            "key": company_key,
            "location": location,
            "locationType": location_type,
            "guard": guard,
        })

    async def merge_round(self, round_key: str, props: Dict[str, Any]) -> WriteResult:
        return await self._write(ROUND_QUERY, {
            "roundKey": round_key,
            "amountUsd": props.get("amountUsd"),
            "currency": props.get("currency"),
            "stage": props.get("stage"),
            "confidence": props.get("confidence") or 0.0,
            "ingestedAt": props.get("ingestedAt"),
        })

    async def link_raised(self, company_key: str, round_key: str) -> WriteResult:
        return await self._write(RAISED_QUERY, {"companyKey": company_key, "roundKey": round_key})

    async def link_participant(self, investor_key: str, round_key: str, role: str) -> WriteResult:
        return await self._write(PARTICIPANT_QUERY, {
            "investorKey": investor_key,
            "roundKey": round_key,
            "role": role,
        })

    async def merge_article(self, url: str, props: Dict[str, Any]) -> WriteResult:
        return await self._write(ARTICLE_QUERY, {
            "url": url,
            "title": props.get("title"),
            "publishedAt": props.get("publishedAt"),
            "author": props.get("author"),
            "articleId": props.get("articleId"),
        })

    async def link_source(self, round_key: str, url: str, confidence: float) -> WriteResult:
        return await self._write(SOURCE_QUERY, {"roundKey": round_key, "url": url, "confidence": confidence})

    async def rounds_for_articles(self, urls: List[str]) -> List[Dict[str, Any]]:
        """Existing rounds sourced from any of `urls`, with their company and stage."""
        rows: List[Dict[str, Any]] = []
        size = settings.graph_batch_size
        for start in range(0, len(urls), size):
            records, _ = await self._run(ROUNDS_FOR_ARTICLES_QUERY, {"urls": urls[start:start + size]})
            rows.extend(to_native(dict(r)) for r in records)
        return rows

    async def recompute_total_funding(self, company_key: str) -> Optional[float]:
        records, _ = await self._run(TOTAL_FUNDING_QUERY, {"key": company_key})
        return to_native(records[0]["total"]) if records else None

    # --- bulk and admin -----------------------------------------------------

    async def run_batch(self, op: BulkWrite, rows: List[Dict[str, Any]]) -> WriteResult:
        total = WriteResult()
        size = settings.graph_batch_size
        for start in range(0, len(rows), size):
            batch = rows[start:start + size]
            _, counters = await self._run(BULK_QUERIES[op], {"rows": batch})
            total = total + WriteResult(
                nodes_created=counters.nodes_created,
                relationships_created=counters.relationships_created,
                rows=len(batch),
            )
        return total

    async def run_read(self, cypher: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Run a read statement and return records as plain dicts."""
        async with self.driver.session(database=self.database, default_access_mode="READ") as session:
            result = await session.run(Query(cypher, timeout=settings.graph_timeout), params or {})
            return [to_native(r.data()) async for r in result]

    async def clear_rounds(self) -> Dict[str, int]:
        counts = {}
        for name, cypher in CLEAR_ROUNDS_QUERIES:
            records, _ = await self._run(cypher)
            counts[name] = records[0]["affected"] if records else 0
        logger.info(f"Cleared graph rounds: {counts}")
        return counts


_store: Optional[Neo4jGraphStore] = None


def get_graph_store() -> Neo4jGraphStore:
    """Get the shared graph store."""
    global _store
    if _store is None:
        _store = Neo4jGraphStore()
    return _store


async def close_graph_store():
    """Close the shared driver (call on shutdown)."""
    global _store
    if _store:
        await _store.close()
        _store = None
