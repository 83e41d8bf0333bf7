"""
Common utilities and shared modules.
"""

from .brave_client import (
    BraveClient,
    BraveAPIError,
    get_brave_client,
    close_brave_client,
    BRAVE_WEB_API,
)

from .http_client import (
    create_scraper_client,
    create_website_client,
    USER_AGENT_BOT,
    USER_AGENT_BROWSER,
)

from .url_utils import (
    is_valid_url,
    is_valid_website_url,
    is_news_url,
    sanitize_website_url,
    sanitize_linkedin_url,
)

__all__ = [
    # Brave client
    "BraveClient",
    "BraveAPIError",
    "get_brave_client",
    "close_brave_client",
    "BRAVE_WEB_API",
    # HTTP client utilities
    "create_scraper_client",
    "create_website_client",
    "USER_AGENT_BOT",
    "USER_AGENT_BROWSER",
    # URL helpers
    "is_valid_url",
    "is_valid_website_url",
    "is_news_url",
    "sanitize_website_url",
    "sanitize_linkedin_url",
]
