"""
Website fetching, scraping and discovery for enrichment.

scrape_html() turns a homepage into a compact text block for the LLM:
meta description, JSON-LD facts, LinkedIn links and the first 2000
characters of visible body text. discover_website() finds an official
site through Brave web search and accepts a candidate only when the page
actually mentions the entity's name and, with an API key configured, the
LLM agrees the page describes the same entity. search_logo() falls back to
Brave image search when the homepage offers no logo.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from .schemas import WebsiteMatch
from ..analyst.llm import extract_structured
from ..common.brave_client import BraveAPIError, get_brave_client
from ..common.http_client import create_website_client
from ..common.url_utils import (
    LINKEDIN_COMPANY_PATTERN,
    get_domain,
    is_news_url,
    is_valid_website_url,
    sanitize_linkedin_url,
)
from ..config.settings import settings

logger = logging.getLogger(__name__)

BODY_TEXT_LIMIT = 2000
VERIFY_BODY_LIMIT = 1500
VERIFY_MIN_CONTENT = 50
LOGO_MIN_SCORE = 15
STRIP_TAGS = ["nav", "footer", "script", "style", "header", "aside", "noscript"]

_WHITESPACE = re.compile(r"\s+")

# Legal suffixes and fund words ignored when checking a page mentions a name
_NAME_NOISE = re.compile(
    r"\b(gmbh|inc|ltd|llc|corp|ag|sa|sas|bv|plc|ventures|capital|partners)\b\.?",
    re.IGNORECASE,
)

_IMAGE_EXTENSION = re.compile(r"\.(png|jpe?g|svg|webp|ico|gif)(\?|$)", re.IGNORECASE)
_LOGO_NOISE = ("pixel", "tracking", "spacer")
_AGGREGATOR_SOURCES = ("crunchbase", "dealroom", "pitchbook", "cbinsights")

VERIFY_SYSTEM_PROMPT = "You verify whether a website belongs to a specific entity."


@dataclass
class ScrapeResult:
    text: str
    linkedin_url: Optional[str] = None
    logo_url: Optional[str] = None


@dataclass
class DiscoveryResult:
    website: Optional[str] = None
    linkedin_url: Optional[str] = None
    html: Optional[str] = None
    candidates_checked: int = 0


@dataclass
class LogoCandidate:
    url: str
    source: str = ""
    width: int = 0
    height: int = 0


def _clean(text: str) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def _ld_json_objects(soup: BeautifulSoup) -> List[dict]:
    objects = []
    for tag in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(tag.string or "")
        except (ValueError, TypeError):
            continue
        items = data if isinstance(data, list) else [data]
        objects.extend(item for item in items if isinstance(item, dict))
    return objects


def _logo_url(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    """og:image, then apple-touch-icon, then an <img> whose attributes mention a logo."""
    og = soup.find("meta", property="og:image")
    if og and og.get("content"):
        return urljoin(base_url, og["content"])
    icon = soup.find("link", rel=lambda r: r and "apple-touch-icon" in r)
    if icon and icon.get("href"):
        return urljoin(base_url, icon["href"])
    for img in soup.find_all("img", src=True):
        hint = " ".join([img.get("alt", ""), " ".join(img.get("class", [])), img["src"]]).lower()
        if "logo" in hint:
            return urljoin(base_url, img["src"])
    return None


def scrape_html(html: str, base_url: str) -> ScrapeResult:
    """Extract enrichment-relevant text from a homepage."""
    full_url = base_url if base_url.startswith("http") else f"https://{base_url}"
    soup = BeautifulSoup(html, "html.parser")
    parts: List[str] = []
    linkedin_url = None

    meta = soup.find("meta", attrs={"name": "description"}) or soup.find("meta", property="og:description")
    if meta and meta.get("content"):
        parts.append(f"Description: {_clean(meta['content'])}")

    for obj in _ld_json_objects(soup):
        if obj.get("foundingDate"):
            parts.append(f"Founded: {obj['foundingDate']}")
        employees = obj.get("numberOfEmployees")
        if isinstance(employees, dict) and employees.get("value"):
            parts.append(f"Employees: {employees['value']}")
        same_as = obj.get("sameAs") or []
        for link in same_as if isinstance(same_as, list) else [same_as]:
            if isinstance(link, str) and "linkedin.com" in link:
                parts.append(f"LinkedIn: {link}")
                linkedin_url = linkedin_url or sanitize_linkedin_url(link)

    for a in soup.select('a[href*="linkedin.com/company"]'):
        href = a.get("href")
        if href:
            parts.append(f"LinkedIn: {href}")
            linkedin_url = linkedin_url or sanitize_linkedin_url(href)

    logo_url = _logo_url(soup, full_url)

    for tag in soup.find_all(STRIP_TAGS):
        tag.decompose()
    body = soup.body or soup
    body_text = _clean(body.get_text(" "))[:BODY_TEXT_LIMIT]
    if body_text:
        parts.append(f"Page content: {body_text}")

    return ScrapeResult(text="\n\n".join(parts), linkedin_url=linkedin_url, logo_url=logo_url)


async def fetch_html(url: str, client: Optional[httpx.AsyncClient] = None) -> Optional[str]:
    """GET a page and return its HTML, or None when unreachable or not HTML."""
    full_url = url if url.startswith("http") else f"https://{url}"
    own_client = client is None
    client = client or create_website_client()
    try:
        response = await client.get(full_url)
        if response.status_code >= 400:
            logger.debug(f"Website fetch {full_url} returned {response.status_code}")
            return None
        if not is_valid_website_url(str(response.url)):
            logger.debug(f"Website {full_url} redirected to {response.url}")
            return None
        if "html" not in response.headers.get("content-type", "html"):
            return None
        return response.text
    except httpx.HTTPError as e:
        logger.debug(f"Website fetch failed for {full_url}: {e}")
        return None
    finally:
        if own_client:
            await client.aclose()


def page_mentions_name(html: str, name: str) -> bool:
    """True when the page title or text contains the entity's core name."""
    core = _clean(_NAME_NOISE.sub(" ", name)).lower()
    if len(core) < 2:
        return False
    text = _clean(BeautifulSoup(html, "html.parser").get_text(" ")).lower()
    return core in text or core.replace(" ", "") in text.replace(" ", "")


def _page_summary(html: str) -> Tuple[str, str, str]:
    """Title, meta description and leading body text of a page."""
    soup = BeautifulSoup(html, "html.parser")
    title = _clean(soup.title.get_text()) if soup.title else ""
    meta = soup.find("meta", attrs={"name": "description"}) or soup.find("meta", property="og:description")
    description = _clean(meta.get("content", "")) if meta else ""
    for tag in soup.find_all(STRIP_TAGS):
        tag.decompose()
    body = _clean((soup.body or soup).get_text(" "))[:VERIFY_BODY_LIMIT]
    return title, description, body


def build_verify_prompt(name: str, kind: str, url: str, html: str, context: Optional[str]) -> Optional[str]:
    """Verification prompt for a page, or None when the page is too thin to judge."""
    title, description, body = _page_summary(html)
    if len(f"{title}{description}{body}".strip()) < VERIFY_MIN_CONTENT:
        return None

    label = "investment firm / VC" if kind == "investor" else "company / startup"
    known = (context or "").strip()[:600] or "(no article context)"
    return (
        f'Does this website belong to the {label} "{name}"?\n\n'
        f"Website URL: {url}\n"
        f"Page title: {title}\n"
        f"Meta description: {description}\n"
        f"Page content (excerpt): {body[:800]}\n\n"
        f'What we know about "{name}" from news articles:\n{known}\n\n'
        "Match only when the page describes the same entity and business as the "
        "articles and is a real company site, not a parked domain or placeholder."
    )


async def verify_website_with_llm(
    name: str,
    kind: str,
    url: str,
    html: str,
    context: Optional[str] = None,
) -> bool:
    """
    Ask the LLM whether a name-matched page is really the entity's site.

    Runs only with an Anthropic key and `website_llm_verification` on;
    otherwise the name check stands alone. Near-empty pages (redirect
    shells, parked domains) are rejected without a call, and a missing
    verdict counts as a rejection.
    """
    if not settings.website_llm_verification or not settings.anthropic_api_key:
        return True

    prompt = build_verify_prompt(name, kind, url, html, context)
    if prompt is None:
        logger.info(f"Rejected {url} for {name}: page has almost no content")
        return False

    verdict = await extract_structured(VERIFY_SYSTEM_PROMPT, prompt, WebsiteMatch, max_tokens=200)
    if verdict is None:
        logger.warning(f"Website verification for {name} returned nothing, rejecting {url}")
        return False
    if not verdict.match:
        logger.info(f"LLM rejected {url} for {name}: {verdict.reason}")
    return verdict.match


def _dimension(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def logo_candidates(results: List[Dict[str, Any]]) -> List[LogoCandidate]:
    """Image search hits as logo candidates, minus data URIs and tracking pixels."""
    candidates = []
    for r in results:
        props = r.get("properties") or {}
        url = props.get("url") or (r.get("thumbnail") or {}).get("src")
        if not url or not isinstance(url, str):
            continue
        if url.startswith("data:") or any(word in url for word in _LOGO_NOISE):
            continue
        candidates.append(LogoCandidate(
            url=url,
            source=r.get("source") or "",
            width=_dimension(props.get("width") or r.get("width")),
            height=_dimension(props.get("height") or r.get("height")),
        ))
    return candidates


def score_logo(candidate: LogoCandidate, website_domain: Optional[str] = None) -> int:
    """Higher for own-domain, logo-named, vector and roughly square images."""
    score = 10
    url = candidate.url.lower()
    source = candidate.source.lower()

    if website_domain and (website_domain in url or website_domain in source):
        score += 40
    if "logo" in url or "logo" in source:
        score += 30
    if url.endswith(".svg"):
        score += 20
    if url.endswith(".png"):
        score += 10
    if ".webp" in url:
        score += 5

    w, h = candidate.width, candidate.height
    if w > 0 and h > 0:
        ratio = max(w, h) / min(w, h)
        if ratio < 3:
            score += 10
        if ratio > 5:
            score -= 15  # banner
        if 64 <= w <= 1024 and 64 <= h <= 1024:
            score += 10
        if w < 32 or h < 32:
            score -= 20

    if any(site in source for site in _AGGREGATOR_SOURCES):
        score -= 10
    return score


def pick_logo(results: List[Dict[str, Any]], website_domain: Optional[str] = None) -> Optional[str]:
    """Best-scoring candidate URL, or None when nothing reaches LOGO_MIN_SCORE."""
    best, best_score = None, None
    for candidate in logo_candidates(results):
        score = score_logo(candidate, website_domain)
        if best_score is None or score > best_score:
            best, best_score = candidate, score
    if best is None or best_score < LOGO_MIN_SCORE:
        return None
    return best.url


async def is_image_url(url: str, client: Optional[httpx.AsyncClient] = None) -> bool:
    """HEAD the URL; True when it answers with an image type or has an image extension."""
    own_client = client is None
    client = client or create_website_client()
    try:
        response = await client.head(url)
        if response.status_code >= 400:
            return False
        content_type = response.headers.get("content-type", "")
        return content_type.startswith("image/") or bool(_IMAGE_EXTENSION.search(url))
    except httpx.HTTPError as e:
        logger.debug(f"Logo check failed for {url}: {e}")
        return False
    finally:
        if own_client:
            await client.aclose()


async def search_logo(name: str, kind: str = "company", website_domain: Optional[str] = None) -> Optional[str]:
    """Find a logo via Brave image search, validated with a HEAD request."""
    client = get_brave_client()
    if not client.configured:
        return None

    hint = "venture capital fund" if kind == "investor" else "startup company"
    try:
        results = await client.search_images(f"{name} {hint} logo", count=8)
    except BraveAPIError as e:
        logger.warning(f"Logo search for {name} failed: {e}")
        return None

    url = pick_logo(results, website_domain)
    if url is None:
        return None
    if not await is_image_url(url):
        logger.debug(f"Logo candidate for {name} is not an image: {url}")
        return None
    logger.info(f"Found logo for {name} via image search: {url}")
    return url


def _homepage(url: str) -> str:
    parsed = urlparse(url)
    return f"https://{parsed.netloc}"


async def discover_website(
    name: str,
    kind: str = "company",
    max_candidates: int = 4,
    context: Optional[str] = None,
) -> DiscoveryResult:
    """
    Find the official website for `name` via Brave web search.

    Social, directory and news domains are skipped. Each remaining
    candidate homepage is fetched and accepted only when it mentions
    the name and passes verify_website_with_llm() against `context`
    (what the articles say about the entity).
    """
    result = DiscoveryResult()
    client = get_brave_client()
    if not client.configured:
        logger.debug("Website discovery skipped: Brave Search not configured")
        return result

    suffix = "venture capital firm" if kind == "investor" else "official website"
    try:
        hits = await client.search_web(f'"{name}" {suffix}', count=10)
    except BraveAPIError as e:
        logger.warning(f"Website discovery for {name} failed: {e}")
        return result

    seen_domains = set()
    async with create_website_client() as http:
        for hit in hits:
            url = hit.get("url") or ""
            if result.linkedin_url is None and LINKEDIN_COMPANY_PATTERN.search(url):
                result.linkedin_url = sanitize_linkedin_url(url)
                continue
            if not is_valid_website_url(url) or is_news_url(url):
                continue
            domain = get_domain(url)
            if domain in seen_domains:
                continue
            seen_domains.add(domain)
            if result.candidates_checked >= max_candidates:
                break

            result.candidates_checked += 1
            homepage = _homepage(url)
            html = await fetch_html(homepage, client=http)
            if not html or not page_mentions_name(html, name):
                continue
            if await verify_website_with_llm(name, kind, homepage, html, context):
                result.website = homepage
                result.html = html
                logger.info(f"Discovered website for {name}: {homepage}")
                break

    return result
