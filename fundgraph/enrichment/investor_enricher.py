"""
Investor enrichment.

The investor's own website is the primary source and is extracted on its
own. Deal articles describe portfolio companies, so they are only used
for investment-pattern fields (stage/sector/geo focus, check sizes, type)
and their confidence is capped when merged.
"""

import logging
from typing import Optional

from .outcome import EnrichmentError, EnrichmentOutcome
from .policy import fill_discovered, merge_investor_results, save_enrichment
from .progress import ProgressSink, ProgressStage, emit, plural
from .schemas import INVESTOR_TYPES, InvestorArticleEnrichment, InvestorEnrichment
from .sources import article_context, format_articles, load_entity_articles, resolve_logo, resolve_website
from ..analyst.llm import extract_structured
from ..analyst.normalizer import normalize_investor_name
from ..archivist.graph import EntityType, Neo4jGraphStore, get_graph_store

logger = logging.getLogger(__name__)

INVESTOR_WEBSITE_LIMIT = 4000

WEBSITE_SYSTEM_PROMPT = f"""You extract structured data about an investment firm from its own website content.

This is the investor's OWN website. All information here is about the investor itself.

Rules:
- For type use one of: {", ".join(INVESTOR_TYPES)}
- For stageFocus, extract stages like ["Pre-Seed", "Seed", "Series A", "Series B", "Growth"]
- For sectorFocus, extract industries like ["Fintech", "SaaS", "HealthTech", "DeepTech"]
- For geoFocus, extract regions like ["DACH", "Europe", "Nordics", "Global"]
- For checkSizeMinUsd / checkSizeMaxUsd and aum, give raw USD numbers
- For foundedYear, the year the firm was established
- For hq, the headquarters city
- Confidence 0.0-1.0 per field in fieldConfidence. If unknown, set null with confidence 0."""

ARTICLE_SYSTEM_PROMPT = f"""You analyze funding round articles to extract information about an INVESTOR's investment activity.

The articles describe STARTUPS that raised money; the investor participated in these rounds.
- Do NOT extract the startup's data (website, location, founded year, description)
- ONLY extract the investor's investment patterns: stages (from round types), sectors (from the startups' industries), geographies (from where the startups are based), typical check size (only if their contribution is stated) and investor type
- For type use one of: {", ".join(INVESTOR_TYPES)}
- Confidence 0.0-1.0 per field in fieldConfidence. If unknown, set null with confidence 0."""


async def _fail(on_progress: Optional[ProgressSink], name: str, message: str, detail: Optional[str] = None):
    await emit(on_progress, ProgressStage.ERROR, message, detail=detail)
    raise EnrichmentError(EntityType.INVESTOR, name, message)


async def enrich_investor(
    name: str,
    on_progress: Optional[ProgressSink] = None,
    store: Optional[Neo4jGraphStore] = None,
) -> EnrichmentOutcome:
    """
    Enrich one investor node.

    Raises:
        EnrichmentError: investor not in the graph, no sources, or both
            extractions returned nothing. An error event is emitted first.
    """
    store = store or get_graph_store()
    key = normalize_investor_name(name)

    node = await store.get_entity(EntityType.INVESTOR, name, key)
    if node is None:
        await _fail(on_progress, name, "Investor not found in graph")

    display_name = node.get("name") or name
    key = node.get("normalizedName") or key

    await emit(on_progress, ProgressStage.ARTICLES, "Loading linked articles...")
    articles = await load_entity_articles(store, EntityType.INVESTOR, key)
    await emit(on_progress, ProgressStage.ARTICLES, f"{plural(len(articles), 'article')} loaded")

    await emit(on_progress, ProgressStage.WEBSITE, "Checking investor website...")
    website = await resolve_website(
        display_name, "investor", node.get("website"), on_progress, context=article_context(articles),
    )

    if not articles and not website.text:
        await _fail(
            on_progress, display_name,
            "No sources available for enrichment",
            detail="Neither articles nor a website could be found",
        )

    website_result = None
    if website.text:
        await emit(on_progress, ProgressStage.LLM, "Extracting from website...")
        website_result = await extract_structured(
            WEBSITE_SYSTEM_PROMPT,
            f"Investor: {display_name}\n\nWEBSITE CONTENT:\n{website.text[:INVESTOR_WEBSITE_LIMIT]}",
            InvestorEnrichment,
        )
        found = website_result.graph_values() if website_result else {}
        await emit(on_progress, ProgressStage.LLM, f"Website: {plural(len(found), 'field')}")

    article_result = None
    if articles:
        await emit(on_progress, ProgressStage.LLM, "Extracting from articles...")
        article_result = await extract_structured(
            ARTICLE_SYSTEM_PROMPT,
            f"Investor: {display_name}\n\nFUNDING ARTICLES:\n{format_articles(articles)}",
            InvestorArticleEnrichment,
        )
        found = article_result.graph_values() if article_result else {}
        await emit(on_progress, ProgressStage.LLM, f"Articles: {plural(len(found), 'field')}")

    if website_result is None and article_result is None:
        await _fail(on_progress, display_name, "LLM extraction failed")

    result = merge_investor_results(website_result, article_result)
    fill_discovered(result, website.url if website.discovered else None, website.linkedin_url)
    extracted = result.graph_values()
    await emit(
        on_progress, ProgressStage.LLM,
        f"{plural(len(extracted), 'field')} extracted",
        detail=", ".join(sorted(extracted)) or None,
    )

    logo_url = await resolve_logo(display_name, "investor", website, on_progress)

    await emit(on_progress, ProgressStage.SAVE, "Updating graph...")
    written = await save_enrichment(
        store, EntityType.INVESTOR, display_name, key, result, logo_url=logo_url,
    )
    await emit(on_progress, ProgressStage.SAVE, f"Graph updated ({plural(len(written), 'field')})")
    await emit(on_progress, ProgressStage.DONE, "Enrichment complete", fields_updated=written)

    return EnrichmentOutcome(
        entity_type=EntityType.INVESTOR,
        name=display_name,
        fields_updated=written,
        website=website.url,
        articles_used=len(articles),
    )
