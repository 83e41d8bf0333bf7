"""
FundGraph - Main Application Entry Point

Resolves funding news into canonical rounds and keeps the knowledge
graph in sync:
- Grouped view of stored funding mentions
- Ingest of one group (LLM merge + idempotent graph commit)
- Re-extraction of stored articles into funding mentions
- Bulk graph projection, field locks, enrichment streams
- Read-only graph stats and queries
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from fastapi.security import APIKeyHeader
from neo4j.exceptions import ClientError
from pydantic import BaseModel, ConfigDict, Field

from .analyst import SourceDocument, extract_from_sources
from .archivist import (
    ArticleRef,
    GraphSyncError,
    check_db,
    close_db,
    close_graph_store,
    commit_round,
    get_graph_store,
    get_session,
    group_mentions,
    set_field_lock,
    sort_rounds,
)
from .archivist import graph_sync
from .archivist.graph import parse_entity_type
from .archivist.models import utc_now_naive
from .archivist.stats import ReadOnlyQueryError, graph_stats, run_read_query
from .archivist.storage import (
    clear_funding_data,
    ingestion_counts,
    load_articles_with_mentions,
    load_mentions,
    mark_ingested,
)
from .common.brave_client import close_brave_client
from .config.settings import settings
from .enrichment import (
    EnrichmentError,
    EnrichmentJob,
    ProgressEvent,
    ProgressStage,
    close_enrichment_queue,
    enrich_company,
    enrich_investor,
    get_enrichment_queue,
)
from .scheduler import run_graph_sync, run_reprocess, setup_scheduler, shutdown_scheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ----- API Key Security -----

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)):
    """Verify API key for protected endpoints."""
    if not api_key:
        raise HTTPException(status_code=401, detail="API key required")
    if api_key not in settings.valid_api_keys:
        raise HTTPException(status_code=403, detail="Invalid API key")
    return api_key


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting FundGraph...")

    try:
        await get_graph_store().ensure_constraints()
    except Exception as e:
        logger.warning(f"Could not ensure graph constraints: {e}")

    get_enrichment_queue().start()

    try:
        setup_scheduler()
    except Exception as e:
        logger.warning(f"Could not start scheduler: {e}")

    yield

    logger.info("Shutting down...")
    shutdown_scheduler()
    await close_enrichment_queue()

    try:
        await close_graph_store()
    except Exception as e:
        logger.warning(f"Error closing graph driver: {e}")

    try:
        await close_brave_client()
    except Exception as e:
        logger.warning(f"Error closing Brave client: {e}")

    try:
        await close_db()
    except Exception as e:
        logger.warning(f"Error closing database: {e}")


app = FastAPI(
    title="FundGraph",
    description="Funding event resolution and graph synchronization",
    version="0.1.0",
    lifespan=lifespan,
)

_allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
]
if settings.frontend_url:
    _allowed_origins.append(settings.frontend_url)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----- Request/Response Models -----

class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class IngestRequest(CamelModel):
    # Optional so missing values produce our 400 rather than a validation 422
    key: Optional[str] = None
    article_ids: Optional[List[str]] = Field(default=None, alias="articleIds")


class LockFieldRequest(CamelModel):
    entity_type: Optional[str] = Field(default=None, alias="entityType")
    entity_name: Optional[str] = Field(default=None, alias="entityName")
    field: Optional[str] = None
    locked: bool = True


class EnrichCompanyRequest(CamelModel):
    company_name: Optional[str] = Field(default=None, alias="companyName")


class EnrichInvestorRequest(CamelModel):
    investor_name: Optional[str] = Field(default=None, alias="investorName")


class GraphQueryRequest(BaseModel):
    query: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    graph: bool
    database: bool
    enrichment_pending: int


# ----- Health -----

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Liveness plus graph and database connectivity."""
    graph_ok, db_ok = await asyncio.gather(get_graph_store().verify(), check_db())
    queue = get_enrichment_queue()
    return HealthResponse(
        status="healthy" if graph_ok and db_ok else "degraded",
        timestamp=datetime.now(timezone.utc),
        graph=graph_ok,
        database=db_ok,
        enrichment_pending=queue.pending(),
    )


# ----- Funding rounds -----

@app.get("/funding/grouped")
async def get_grouped_rounds(
    sort: str = Query("lastSeen"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    pending_only: bool = Query(False),
    stage: Optional[str] = Query(None),
    country: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
):
    """Canonical rounds built from all stored mentions."""
    try:
        async with get_session() as session:
            mentions = await load_mentions(session, stage=stage, country=country, search=search)

        rounds = group_mentions(mentions)
        if pending_only:
            rounds = [r for r in rounds if r.ingested_at is None]
        rounds = sort_rounds(rounds, sort, order)

        return {
            "rounds": [r.to_dict() for r in rounds],
            "total": len(rounds),
            "mentions": len(mentions),
        }
    except Exception as e:
        logger.error("Request failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/funding/ingest", dependencies=[Depends(verify_api_key)])
async def ingest_round(request: IngestRequest):
    """
    Merge one group of articles into a single extraction and commit it.

    Enrichment of the company and its investors is queued and does not
    delay the response.
    """
    if not request.key or not request.article_ids:
        raise HTTPException(status_code=400, detail="key and articleIds required")

    try:
        async with get_session() as session:
            articles = await load_articles_with_mentions(session, request.article_ids)
        if not articles:
            raise HTTPException(status_code=404, detail="No articles found")

        articles.sort(key=lambda a: a.confidence, reverse=True)
        best = articles[0]

        extraction = await extract_from_sources([
            SourceDocument(title=a.title, content=a.body, article_id=a.id) for a in articles
        ])
        if extraction is None:
            raise HTTPException(status_code=422, detail="LLM did not identify a funding round")

        now = utc_now_naive()
        summary = await commit_round(
            extraction,
            [
                ArticleRef(id=a.id, url=a.url, title=a.title, published_at=a.published_at, author=a.author)
                for a in articles
            ],
            round_key=request.key,
            ingested_at=now,
        )

        article_ids = [a.id for a in articles]
        async with get_session() as session:
            await mark_ingested(session, article_ids, when=now)

        queued = get_enrichment_queue().submit(EnrichmentJob(
            company=extraction.company_name,
            investors=extraction.all_investors,
            round_key=summary.round_key,
        ))

        regex_mention = best.mention
        return {
            "success": True,
            "data": {
                "companyName": extraction.company_name,
                "amountUsd": extraction.amount_usd,
                "stage": extraction.stage,
                "investors": extraction.investors,
                "country": extraction.country,
                "confidence": extraction.confidence,
                "articlesIngested": len(articles),
            },
            "pipeline": {
                "input": {
                    "articleTitle": best.title,
                    "articleUrl": best.url,
                    "rawExcerpt": regex_mention.raw_excerpt if regex_mention else None,
                    "regexExtraction": {
                        "companyName": regex_mention.company_name,
                        "amountUsd": regex_mention.amount_usd,
                        "stage": regex_mention.stage,
                        "confidence": regex_mention.confidence,
                    } if regex_mention else None,
                },
                "llmOutput": extraction.to_dict(),
                "graph": summary.to_dict(),
                "enrichmentQueued": queued,
            },
        }
    except HTTPException:
        raise
    except GraphSyncError as e:
        logger.error(f"Ingest of {request.key} failed: {e}")
        raise HTTPException(status_code=502, detail=e.to_dict())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.error("Request failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/funding/reprocess", dependencies=[Depends(verify_api_key)])
async def reprocess_articles():
    """Re-run per-article extraction over every stored article."""
    try:
        result = await run_reprocess()
        return {"success": True, **result.to_dict()}
    except Exception as e:
        logger.error("Request failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


# ----- Graph -----

@app.post("/graph/sync", dependencies=[Depends(verify_api_key)])
async def sync_graph():
    """Project every stored mention into the graph."""
    try:
        result = await run_graph_sync()
        return {"success": True, **result.to_dict()}
    except GraphSyncError as e:
        logger.error(f"Bulk graph sync failed: {e}")
        raise HTTPException(status_code=502, detail=e.to_dict())
    except Exception as e:
        logger.error("Request failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/lock-field", dependencies=[Depends(verify_api_key)])
async def lock_field(request: LockFieldRequest):
    """Lock or unlock one field on a company or investor."""
    if not request.entity_type or not request.entity_name or not request.field:
        raise HTTPException(status_code=400, detail="entityType, entityName and field are required")

    try:
        locked_fields = await set_field_lock(
            request.entity_type, request.entity_name, request.field, request.locked,
        )
        return {"success": True, "lockedFields": locked_fields}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GraphSyncError as e:
        logger.error(f"Lock update failed: {e}")
        raise HTTPException(status_code=502, detail=e.to_dict())
    except Exception as e:
        logger.error("Request failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/graph-stats")
async def get_graph_stats():
    """Dashboard aggregates from the graph plus relational ingestion counts."""
    try:
        async with get_session() as session:
            counts = await ingestion_counts(session)
        return await graph_stats(ingestion=counts)
    except Exception as e:
        logger.error("Request failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/graph-query", dependencies=[Depends(verify_api_key)])
async def graph_query(request: GraphQueryRequest):
    """Run a read-only Cypher query."""
    try:
        return await run_read_query(request.query)
    except ReadOnlyQueryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ClientError as e:
        raise HTTPException(status_code=400, detail=f"Query failed: {e.message}")
    except Exception as e:
        logger.error("Request failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/graph/entities/{entity_type}")
async def list_graph_entities(
    entity_type: str,
    search: Optional[str] = Query(None, max_length=200),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """List companies or investors with their round counts."""
    try:
        kind = parse_entity_type(entity_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        items = await get_graph_store().list_entities(kind, search=search, limit=limit, offset=offset)
        return {"entityType": kind.value, "items": items, "count": len(items)}
    except Exception as e:
        logger.error("Request failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/admin/clear", dependencies=[Depends(verify_api_key)])
async def clear_all():
    """Remove rounds/articles from the graph and mentions/articles from the database."""
    try:
        graph_counts = await graph_sync.clear_rounds()
        async with get_session() as session:
            relational_counts = await clear_funding_data(session)
        return {"success": True, "graph": graph_counts, "database": relational_counts}
    except GraphSyncError as e:
        logger.error(f"Clear failed: {e}")
        raise HTTPException(status_code=502, detail=e.to_dict())
    except Exception as e:
        logger.error("Request failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


# ----- Enrichment (Server-Sent Events) -----

async def enrichment_events(enricher, name: str) -> AsyncIterator[str]:
    """
    Run `enricher` and yield its progress as SSE frames.

    The stream ends after the first terminal (done/error) event.
    """
    events: asyncio.Queue = asyncio.Queue()

    async def run():
        try:
            await enricher(name, events.put_nowait)
        except EnrichmentError:
            pass  # error event already emitted
        except Exception as e:
            logger.error(f"Enrichment of {name} failed: {e}", exc_info=True)
            events.put_nowait(ProgressEvent(stage=ProgressStage.ERROR, message="Enrichment failed", detail=str(e)))
        finally:
            events.put_nowait(None)

    task = asyncio.create_task(run())
    try:
        while True:
            event = await events.get()
            if event is None:
                break
            yield event.to_sse()
            if event.is_terminal:
                break
    finally:
        if not task.done():
            task.cancel()


def _sse_response(stream: AsyncIterator[str]) -> StreamingResponse:
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.post("/enrich-company", dependencies=[Depends(verify_api_key)])
async def enrich_company_stream(request: EnrichCompanyRequest):
    if not request.company_name or not request.company_name.strip():
        raise HTTPException(status_code=400, detail="companyName required")
    return _sse_response(enrichment_events(enrich_company, request.company_name.strip()))


@app.post("/enrich-investor", dependencies=[Depends(verify_api_key)])
async def enrich_investor_stream(request: EnrichInvestorRequest):
    if not request.investor_name or not request.investor_name.strip():
        raise HTTPException(status_code=400, detail="investorName required")
    return _sse_response(enrichment_events(enrich_investor, request.investor_name.strip()))


# ----- CLI Runner -----

def run_server():
    """Run the FastAPI server."""
    import uvicorn
    uvicorn.run(
        "fundgraph.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )


if __name__ == "__main__":
    run_server()
