"""
Shared HTTP client configuration.

Usage:
    from fundgraph.common.http_client import create_website_client

    async with create_website_client() as client:
        response = await client.get(url)
"""

import httpx
from typing import Optional

from ..config.settings import settings


# Identifies the service to APIs and sites that allow bots
USER_AGENT_BOT = "FundGraph/0.1 (Funding Research Bot)"

# Company websites often block non-browser agents
USER_AGENT_BROWSER = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


def create_scraper_client(
    user_agent: str = USER_AGENT_BOT,
    timeout: Optional[float] = None,
    max_connections: int = 20,
    max_keepalive: int = 10,
    follow_redirects: bool = True,
    extra_headers: Optional[dict] = None,
) -> httpx.AsyncClient:
    """
    Create a standardized async HTTP client.

    Args:
        user_agent: User-Agent string (use constants above)
        timeout: Request timeout in seconds (default: settings.request_timeout)
        max_connections: Maximum concurrent connections
        max_keepalive: Maximum keepalive connections
        follow_redirects: Whether to follow HTTP redirects
        extra_headers: Additional headers to include
    """
    headers = {"User-Agent": user_agent}
    if extra_headers:
        headers.update(extra_headers)

    return httpx.AsyncClient(
        timeout=timeout or settings.request_timeout,
        headers=headers,
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive,
        ),
        follow_redirects=follow_redirects,
    )


def create_website_client(timeout: Optional[float] = None) -> httpx.AsyncClient:
    """Browser-like client with the short website fetch timeout."""
    return create_scraper_client(
        user_agent=USER_AGENT_BROWSER,
        timeout=timeout or settings.website_fetch_timeout,
        max_connections=5,
        max_keepalive=2,
        extra_headers={"Accept": "text/html,application/xhtml+xml"},
    )
