"""
Company enrichment: linked articles plus the company website, summarised
by the LLM into CompanyEnrichment and written back under the save policy.

Stages reported to the progress sink: articles -> website -> llm -> save
-> done (or error).
"""

import logging
from typing import Optional

from .outcome import EnrichmentError, EnrichmentOutcome
from .policy import fill_discovered, save_enrichment
from .progress import ProgressSink, ProgressStage, emit, plural
from .schemas import CompanyEnrichment
from .sources import (
    WEBSITE_BUDGET,
    article_context,
    format_articles,
    load_entity_articles,
    resolve_logo,
    resolve_website,
)
from ..analyst.llm import extract_structured
from ..analyst.normalizer import normalize_company_name
from ..archivist.graph import EntityType, Neo4jGraphStore, get_graph_store

logger = logging.getLogger(__name__)

COMPANY_SYSTEM_PROMPT = """You are a company data enrichment engine. Given sources about a company (news articles and/or website content), extract structured metadata.

Rules:
- Extract ONLY information that is clearly stated or strongly implied in the sources
- For employeeRange use one of: "1-10", "11-50", "51-200", "201-500", "501-1000", "1000+"
- For status use one of: "active", "acquired", "closed"
- For country, use the country name (e.g. "Germany", "France", "UK")
- For location, use the headquarters city if available
- For website and linkedinUrl, provide full URLs
- For each field, provide a confidence score (0.0-1.0) in fieldConfidence
- If a field cannot be determined, set it to null with confidence 0"""


def build_company_prompt(name: str, articles_text: str, website_text: Optional[str]) -> str:
    parts = [f"Company: {name}"]
    if articles_text:
        parts.append(f"NEWS ARTICLES:\n{articles_text}")
    if website_text:
        parts.append(f"COMPANY WEBSITE:\n{website_text[:WEBSITE_BUDGET]}")
    return "\n\n".join(parts)


async def _fail(on_progress: Optional[ProgressSink], name: str, message: str, detail: Optional[str] = None):
    await emit(on_progress, ProgressStage.ERROR, message, detail=detail)
    raise EnrichmentError(EntityType.COMPANY, name, message)


async def enrich_company(
    name: str,
    on_progress: Optional[ProgressSink] = None,
    store: Optional[Neo4jGraphStore] = None,
) -> EnrichmentOutcome:
    """
    Enrich one company node.

    Raises:
        EnrichmentError: company not in the graph, no sources, or the
            extraction returned nothing. An error event is emitted first.
    """
    store = store or get_graph_store()
    key = normalize_company_name(name)

    node = await store.get_entity(EntityType.COMPANY, name, key)
    if node is None:
        await _fail(on_progress, name, "Company not found in graph")

    display_name = node.get("name") or name
    key = node.get("normalizedName") or key

    await emit(on_progress, ProgressStage.ARTICLES, "Loading linked articles...")
    articles = await load_entity_articles(store, EntityType.COMPANY, key)
    await emit(on_progress, ProgressStage.ARTICLES, f"{plural(len(articles), 'article')} loaded")

    await emit(on_progress, ProgressStage.WEBSITE, "Checking company website...")
    website = await resolve_website(
        display_name, "company", node.get("website"), on_progress, context=article_context(articles),
    )

    if not articles and not website.text:
        await _fail(
            on_progress, display_name,
            "No sources available for enrichment",
            detail="Neither articles nor a website could be found",
        )

    await emit(on_progress, ProgressStage.LLM, "Extracting company data...")
    prompt = build_company_prompt(display_name, format_articles(articles), website.text)
    result = await extract_structured(COMPANY_SYSTEM_PROMPT, prompt, CompanyEnrichment)
    if result is None:
        await _fail(on_progress, display_name, "LLM extraction failed")

    fill_discovered(result, website.url if website.discovered else None, website.linkedin_url)
    extracted = result.graph_values()
    await emit(
        on_progress, ProgressStage.LLM,
        f"{plural(len(extracted), 'field')} extracted",
        detail=", ".join(sorted(extracted)) or None,
    )

    logo_url = await resolve_logo(display_name, "company", website, on_progress)

    await emit(on_progress, ProgressStage.SAVE, "Updating graph...")
    written = await save_enrichment(
        store,
        EntityType.COMPANY,
        display_name,
        key,
        result,
        location=result.location,
        location_confidence=result.confidence("location"),
        logo_url=logo_url,
    )
    await emit(on_progress, ProgressStage.SAVE, f"Graph updated ({plural(len(written), 'field')})")
    await emit(on_progress, ProgressStage.DONE, "Enrichment complete", fields_updated=written)

    return EnrichmentOutcome(
        entity_type=EntityType.COMPANY,
        name=display_name,
        fields_updated=written,
        website=website.url,
        articles_used=len(articles),
    )
