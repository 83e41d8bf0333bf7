"""
Source gathering shared by the company and investor enrichers.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from bs4 import BeautifulSoup

from .progress import ProgressSink, ProgressStage, emit
from .website import (
    ScrapeResult,
    discover_website,
    fetch_html,
    page_mentions_name,
    scrape_html,
    search_logo,
    verify_website_with_llm,
)
from ..archivist.database import get_session
from ..archivist.graph import EntityType, Neo4jGraphStore
from ..archivist.storage import load_article_content
from ..common.url_utils import get_domain, is_valid_website_url

logger = logging.getLogger(__name__)

ARTICLE_TEXT_LIMIT = 3000
ARTICLE_BUDGET = 4000
WEBSITE_BUDGET = 3000


@dataclass
class SourceArticle:
    url: str
    title: str
    text: str


@dataclass
class WebsiteSource:
    url: Optional[str] = None
    linkedin_url: Optional[str] = None
    logo_url: Optional[str] = None
    text: Optional[str] = None
    discovered: bool = False


@dataclass
class EnrichmentSources:
    articles: List[SourceArticle] = field(default_factory=list)
    website: WebsiteSource = field(default_factory=WebsiteSource)

    @property
    def empty(self) -> bool:
        return not self.articles and not self.website.text


def html_to_text(content: Optional[str]) -> str:
    if not content:
        return ""
    if "<" not in content:
        return " ".join(content.split())
    return " ".join(BeautifulSoup(content, "html.parser").get_text(" ").split())


async def load_entity_articles(
    store: Neo4jGraphStore,
    entity_type: EntityType,
    key: str,
) -> List[SourceArticle]:
    """Articles linked to the entity in the graph, with full text from the article store."""
    rows = await store.entity_articles(entity_type, key)
    if not rows:
        return []

    urls = [r["url"] for r in rows if r.get("url")]
    async with get_session() as session:
        contents = await load_article_content(session, urls)

    articles = []
    for row in rows:
        url = row.get("url")
        title = row.get("title") or ""
        text = html_to_text(contents.get(url)) or title
        if text:
            articles.append(SourceArticle(url=url, title=title, text=text[:ARTICLE_TEXT_LIMIT]))
    return articles


def format_articles(articles: List[SourceArticle], budget: int = ARTICLE_BUDGET) -> str:
    if not articles:
        return ""
    per_article = budget // len(articles)
    return "\n\n".join(
        f"--- Article {i} ---\n{a.text[:per_article]}"
        for i, a in enumerate(articles, 1)
    )


def _from_scrape(url: str, scraped: ScrapeResult, discovered: bool) -> WebsiteSource:
    return WebsiteSource(
        url=url,
        linkedin_url=scraped.linkedin_url,
        logo_url=scraped.logo_url,
        text=scraped.text or "(verified but no extractable text)",
        discovered=discovered,
    )


async def resolve_website(
    name: str,
    kind: str,
    stored_website: Optional[str],
    on_progress: Optional[ProgressSink] = None,
    context: Optional[str] = None,
) -> WebsiteSource:
    """
    Verify the stored website or discover one.

    A stored website is kept only when it is reachable, mentions the
    entity's name and passes LLM verification against `context`;
    otherwise discovery runs.
    """
    if is_valid_website_url(stored_website):
        domain = get_domain(stored_website)
        await emit(on_progress, ProgressStage.WEBSITE, f"Verifying {domain}...")
        html = await fetch_html(stored_website)
        if html and page_mentions_name(html, name) and await verify_website_with_llm(
                name, kind, stored_website, html, context):
            await emit(on_progress, ProgressStage.WEBSITE, f"{domain} verified")
            return _from_scrape(stored_website, scrape_html(html, stored_website), discovered=False)
        reason = "unreachable" if html is None else "doesn't match"
        await emit(on_progress, ProgressStage.WEBSITE, f"{domain} {reason}, re-discovering...")
    else:
        await emit(on_progress, ProgressStage.WEBSITE, "No stored website, searching...")

    discovery = await discover_website(name, kind, context=context)
    if discovery.website and discovery.html:
        source = _from_scrape(discovery.website, scrape_html(discovery.html, discovery.website), discovered=True)
        source.linkedin_url = source.linkedin_url or discovery.linkedin_url
        await emit(
            on_progress, ProgressStage.WEBSITE,
            f"Discovered {get_domain(discovery.website)}",
            detail=f"{discovery.candidates_checked} candidates checked",
        )
        return source

    await emit(on_progress, ProgressStage.WEBSITE, "No website found")
    return WebsiteSource(linkedin_url=discovery.linkedin_url)


def article_context(articles: List[SourceArticle], limit: int = 3) -> str:
    """Short summary of what the articles say, for website verification."""
    return "\n".join(f"- {a.title}: {a.text[:200]}" for a in articles[:limit])


async def resolve_logo(
    name: str,
    kind: str,
    website: WebsiteSource,
    on_progress: Optional[ProgressSink] = None,
) -> Optional[str]:
    """The homepage logo, else the best Brave image search hit."""
    if website.logo_url:
        return website.logo_url

    await emit(on_progress, ProgressStage.WEBSITE, "Searching for logo...")
    domain = get_domain(website.url) if website.url else None
    logo_url = await search_logo(name, kind, domain)
    if logo_url:
        await emit(on_progress, ProgressStage.WEBSITE, "Logo found via image search", detail=logo_url)
    return logo_url
