"""
URL validation helpers shared by extraction and enrichment.

LLMs like to answer "Not mentioned" or a LinkedIn page when asked for a
company website. Everything that stores a URL on a graph node goes
through sanitize_website_url / sanitize_linkedin_url first.
"""

import re
from typing import Optional
from urllib.parse import urlparse

# Placeholder answers that are not URLs
INVALID_URL_PLACEHOLDERS = {
    "not mentioned", "not specified", "unknown", "n/a", "none", "",
    "<unknown>", "null", "undefined", "na", "not available",
    "not provided", "tbd", "no website", "not found",
}

PLACEHOLDER_PATTERNS = ["not mentioned", "not specified", "unknown", "n/a", "unavailable"]

# Hosts that are never an entity's own website (matched on domain suffix)
NOT_A_WEBSITE_DOMAINS = frozenset({
    # Social and content platforms
    "linkedin.com", "twitter.com", "x.com", "facebook.com", "instagram.com",
    "youtube.com", "tiktok.com", "github.com", "medium.com", "substack.com",
    # Company databases
    "crunchbase.com", "pitchbook.com", "dealroom.co", "cbinsights.com", "wikipedia.org",
})

# News and aggregator hosts: links to them inside articles are not candidates
NEWS_DOMAINS = frozenset({
    "techcrunch.com", "bloomberg.com", "reuters.com", "cnbc.com", "bbc.com",
    "theguardian.com", "nytimes.com", "wsj.com", "ft.com", "forbes.com",
    "venturebeat.com", "wired.com", "theverge.com", "sifted.eu", "eu-startups.com",
    "tech.eu", "handelsblatt.com", "gruenderszene.de", "t3n.de", "businessinsider.com",
    "google.com", "apple.com", "amazon.com", "microsoft.com",
}) | NOT_A_WEBSITE_DOMAINS

LINKEDIN_COMPANY_PATTERN = re.compile(
    r'^https?://(?:[a-z]{2,3}\.)?linkedin\.com/company/[a-zA-Z0-9_%-]{2,}/?(?:\?.*)?$',
    re.IGNORECASE,
)


def is_valid_url(url: Optional[str]) -> bool:
    """
    Check if URL is a real URL (not a placeholder).

    Examples:
        >>> is_valid_url("https://example.com")
        True
        >>> is_valid_url("Not mentioned")
        False
    """
    if not url:
        return False

    url_lower = url.lower().strip()
    if url_lower in INVALID_URL_PLACEHOLDERS:
        return False
    if any(p in url_lower for p in PLACEHOLDER_PATTERNS):
        return False
    return url_lower.startswith(("http://", "https://", "www."))


def get_domain(url: Optional[str]) -> str:
    """Hostname without a leading www., or "" when the URL does not parse."""
    if not url:
        return ""
    candidate = url.strip()
    if not candidate.lower().startswith(("http://", "https://")):
        candidate = "https://" + candidate
    try:
        host = urlparse(candidate).hostname or ""
    except ValueError:
        return ""
    return host.lower().removeprefix("www.")


def _domain_in(domain: str, blocked: frozenset) -> bool:
    return any(domain == b or domain.endswith("." + b) for b in blocked)


def is_valid_website_url(url: Optional[str]) -> bool:
    """True for URLs that could be an entity's own website."""
    if not is_valid_url(url):
        return False
    domain = get_domain(url)
    if not domain or "." not in domain:
        return False
    return not _domain_in(domain, NOT_A_WEBSITE_DOMAINS)


def is_news_url(url: Optional[str]) -> bool:
    domain = get_domain(url)
    return bool(domain) and _domain_in(domain, NEWS_DOMAINS)


def sanitize_website_url(url: Optional[str]) -> Optional[str]:
    """
    Return a normalized https:// website URL, or None when the value is a
    placeholder or points at a social/database site.

    Examples:
        >>> sanitize_website_url("www.example.com")
        'https://www.example.com'
        >>> sanitize_website_url("https://linkedin.com/company/acme")
        None
    """
    if not is_valid_website_url(url):
        return None

    url = url.strip()
    if url.lower().startswith("www."):
        url = "https://" + url
    if url.lower().startswith("http://"):
        url = "https://" + url[7:]
    return url


def sanitize_linkedin_url(url: Optional[str]) -> Optional[str]:
    """Validate and normalize a LinkedIn company page URL."""
    if not is_valid_url(url):
        return None

    url = url.strip()
    if url.lower().startswith("www."):
        url = "https://" + url
    if url.lower().startswith("http://"):
        url = "https://" + url[7:]

    if not LINKEDIN_COMPANY_PATTERN.match(url):
        return None
    return url
