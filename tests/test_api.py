"""
HTTP tests for the FastAPI app.

The client is used without its context manager, so the lifespan (graph
constraints, scheduler, enrichment worker) does not run. Storage, the
merger and the graph writer are patched per test.
"""

from contextlib import asynccontextmanager
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock, patch

from fundgraph.analyst.schemas import RawExtraction
from fundgraph.archivist.graph import EntityType
from fundgraph.archivist.graph_sync import GraphSyncError, GraphSyncSummary
from fundgraph.archivist.models import FundingMention
from fundgraph.archivist.storage import ArticleWithMention
from fundgraph.enrichment import EnrichmentError, ProgressStage
from fundgraph.enrichment.progress import emit
from fundgraph.main import app
from fundgraph.scheduler.jobs import ReprocessResult

HEADERS = {"X-API-Key": "dev-key"}


@asynccontextmanager
async def fake_session():
    yield MagicMock()


def article(article_id: str, confidence: float) -> ArticleWithMention:
    return ArticleWithMention(
        id=article_id,
        url=f"https://news.example.com/{article_id}",
        title=f"Acme raises €10M ({article_id})",
        content="Acme raised €10 million led by Foo Ventures.",
        summary=None,
        author=None,
        published_at=datetime(2025, 1, 20),
        feed_title="Example News",
        mention=FundingMention(
            article_id=article_id,
            company_name="Acme",
            confidence=confidence,
            stage="Series A",
            amount_usd=10_800_000,
            raw_excerpt="Acme raised €10 million",
        ),
    )


EXTRACTION = RawExtraction(
    company_name="Acme GmbH",
    amount=10_000_000,
    currency="EUR",
    amount_usd=10_800_000,
    stage="Series A",
    investors=["Foo Ventures", "Bar Capital"],
    lead_investor="Foo Ventures",
    country="Germany",
    confidence=0.92,
)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def ingest_mocks():
    queue = MagicMock()
    queue.submit.return_value = True
    with patch("fundgraph.main.get_session", fake_session), \
            patch("fundgraph.main.load_articles_with_mentions",
                  AsyncMock(return_value=[article("a1", 0.5), article("a2", 0.8)])) as load, \
            patch("fundgraph.main.extract_from_sources", AsyncMock(return_value=EXTRACTION)) as extract, \
            patch("fundgraph.main.commit_round",
                  AsyncMock(return_value=GraphSyncSummary(round_key="acme_seriesa_1", nodes_created=7))) as commit, \
            patch("fundgraph.main.mark_ingested", AsyncMock(return_value=2)) as mark, \
            patch("fundgraph.main.get_enrichment_queue", return_value=queue):
        yield {
            "load": load,
            "extract": extract,
            "commit": commit,
            "mark": mark,
            "queue": queue,
        }


class TestAuth:
    def test_missing_key(self, client):
        response = client.post("/funding/ingest", json={"key": "k", "articleIds": ["a1"]})
        assert response.status_code == 401

    def test_invalid_key(self, client):
        response = client.post("/funding/ingest", json={"key": "k", "articleIds": ["a1"]},
                               headers={"X-API-Key": "wrong"})
        assert response.status_code == 403


class TestIngest:
    @pytest.mark.parametrize("body", [
        {},
        {"key": "acme_seriesa_1"},
        {"key": "acme_seriesa_1", "articleIds": []},
        {"articleIds": ["a1"]},
    ])
    def test_missing_fields(self, client, body):
        response = client.post("/funding/ingest", json=body, headers=HEADERS)
        assert response.status_code == 400

    def test_success(self, client, ingest_mocks):
        response = client.post("/funding/ingest", json={"key": "acme_seriesa_1", "articleIds": ["a1", "a2"]},
                               headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["companyName"] == "Acme GmbH"
        assert body["data"]["articlesIngested"] == 2
        assert body["pipeline"]["input"]["articleUrl"] == "https://news.example.com/a2"
        assert body["pipeline"]["graph"]["roundKey"] == "acme_seriesa_1"
        assert body["pipeline"]["enrichmentQueued"] is True

        sources = ingest_mocks["extract"].await_args.args[0]
        assert [s.article_id for s in sources] == ["a2", "a1"]
        assert ingest_mocks["commit"].await_args.kwargs["round_key"] == "acme_seriesa_1"
        assert ingest_mocks["mark"].await_args.args[1] == ["a2", "a1"]

        job = ingest_mocks["queue"].submit.call_args.args[0]
        assert job.company == "Acme GmbH"
        assert job.investors == ["Foo Ventures", "Bar Capital"]

    def test_no_articles(self, client, ingest_mocks):
        ingest_mocks["load"].return_value = []
        response = client.post("/funding/ingest", json={"key": "k", "articleIds": ["zz"]}, headers=HEADERS)
        assert response.status_code == 404

    def test_not_a_funding_round(self, client, ingest_mocks):
        ingest_mocks["extract"].return_value = None
        response = client.post("/funding/ingest", json={"key": "k", "articleIds": ["a1"]}, headers=HEADERS)

        assert response.status_code == 422
        ingest_mocks["commit"].assert_not_called()
        ingest_mocks["mark"].assert_not_called()

    def test_graph_failure_is_502(self, client, ingest_mocks):
        ingest_mocks["commit"].side_effect = GraphSyncError("round", "FundingRound:k", RuntimeError("down"))
        response = client.post("/funding/ingest", json={"key": "k", "articleIds": ["a1"]}, headers=HEADERS)

        assert response.status_code == 502
        assert response.json()["detail"]["step"] == "round"
        ingest_mocks["mark"].assert_not_called()
        ingest_mocks["queue"].submit.assert_not_called()


class TestReprocess:
    def test_requires_api_key(self, client):
        assert client.post("/funding/reprocess").status_code == 401

    def test_returns_counts(self, client):
        result = ReprocessResult(total_articles=3, funding_found=2, mentions_removed=1)
        with patch("fundgraph.main.run_reprocess", AsyncMock(return_value=result)):
            response = client.post("/funding/reprocess", headers=HEADERS)

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["fundingFound"] == 2
        assert body["mentionsRemoved"] == 1


class TestLockField:
    def test_missing_fields(self, client):
        response = client.post("/lock-field", json={"entityType": "company"}, headers=HEADERS)
        assert response.status_code == 400

    def test_invalid_field(self, client):
        with patch("fundgraph.main.set_field_lock", AsyncMock(side_effect=ValueError("Field 'x' cannot be locked"))):
            response = client.post("/lock-field", json={
                "entityType": "company", "entityName": "Acme", "field": "x",
            }, headers=HEADERS)
        assert response.status_code == 400

    def test_unknown_entity(self, client):
        with patch("fundgraph.main.set_field_lock", AsyncMock(side_effect=LookupError("company not found"))):
            response = client.post("/lock-field", json={
                "entityType": "company", "entityName": "Nobody", "field": "website",
            }, headers=HEADERS)
        assert response.status_code == 404

    def test_success(self, client):
        with patch("fundgraph.main.set_field_lock", AsyncMock(return_value=["website"])) as lock:
            response = client.post("/lock-field", json={
                "entityType": "company", "entityName": "Acme", "field": "website", "locked": True,
            }, headers=HEADERS)

        assert response.json() == {"success": True, "lockedFields": ["website"]}
        lock.assert_awaited_once_with("company", "Acme", "website", True)


class TestGraphQuery:
    def test_write_query_rejected(self, client):
        response = client.post("/graph-query", json={"query": "MATCH (n) DETACH DELETE n"}, headers=HEADERS)
        assert response.status_code == 400

    def test_missing_query(self, client):
        response = client.post("/graph-query", json={}, headers=HEADERS)
        assert response.status_code == 400

    def test_read_query(self, client):
        result = {"records": [{"n": 1}], "count": 1, "truncated": False}
        with patch("fundgraph.main.run_read_query", AsyncMock(return_value=result)):
            response = client.post("/graph-query", json={"query": "RETURN 1 AS n"}, headers=HEADERS)
        assert response.json() == result


class TestEntities:
    def test_unknown_entity_type(self, client):
        assert client.get("/graph/entities/funds").status_code == 400


class TestEnrichmentStream:
    def test_missing_name(self, client):
        response = client.post("/enrich-company", json={"companyName": "  "}, headers=HEADERS)
        assert response.status_code == 400

    def test_events_streamed_until_done(self, client):
        async def fake_enrich(name, on_progress=None):
            await emit(on_progress, ProgressStage.ARTICLES, "Loading linked articles...")
            await emit(on_progress, ProgressStage.DONE, "Enrichment complete", fields_updated=["website"])

        with patch("fundgraph.main.enrich_company", fake_enrich):
            response = client.post("/enrich-company", json={"companyName": "Acme"}, headers=HEADERS)

        assert response.headers["content-type"].startswith("text/event-stream")
        frames = [f for f in response.text.split("\n\n") if f]
        assert len(frames) == 2
        assert '"stage": "done"' in frames[-1]

    def test_error_event_ends_stream(self, client):
        async def failing(name, on_progress=None):
            await emit(on_progress, ProgressStage.ERROR, "Investor not found in graph")
            raise EnrichmentError(EntityType.INVESTOR, name, "Investor not found in graph")

        with patch("fundgraph.main.enrich_investor", failing):
            response = client.post("/enrich-investor", json={"investorName": "Nobody"}, headers=HEADERS)

        frames = [f for f in response.text.split("\n\n") if f]
        assert len(frames) == 1
        assert '"stage": "error"' in frames[0]
