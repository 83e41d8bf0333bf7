"""
Extraction Merger - one funding event from one or more articles.

All sources believed to describe the same round go to the completion
service in a single call, with instructions to cross-reference them. The
answer is parsed defensively: anything that is not a specific funding
announcement with a company name comes back as None, which is an expected
outcome rather than an error.
"""

import asyncio
import json
import logging
import re
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from pydantic import ValidationError

from .llm import complete as default_complete
from .regex_extractor import clean_text, extract_with_regex, has_any_funding_signal
from .schemas import FundingExtractionResponse, RawExtraction
from ..config.settings import settings

logger = logging.getLogger(__name__)

CompleteFn = Callable[[str, str], Awaitable[Optional[str]]]

# Fixed conversion table; rates are approximate and only used for ranking/totals
CURRENCY_TO_USD = {
    "USD": 1.0,
    "EUR": 1.08,
    "GBP": 1.27,
    "CHF": 1.12,
    "SEK": 0.096,
    "NOK": 0.094,
    "DKK": 0.145,
    "PLN": 0.25,
}

_CODE_FENCE_START = re.compile(r"^\s*```(?:json)?\s*\n?", re.IGNORECASE)
_CODE_FENCE_END = re.compile(r"\n?```\s*$")

SYSTEM_PROMPT = """You are a funding round extraction engine. Given one or more news articles about the same funding round, extract structured funding data by cross-referencing all sources.

Rules:
- Only extract SPECIFIC startup/company funding announcements (Pre-Seed, Seed, Series A-E+, Bridge, Growth, Debt, Grant)
- Do NOT extract: funding roundups/listicles ("Top 10 funded startups"), market analysis, IPOs, acquisitions/mergers, VC fund closes, conference announcements. Set isFundingArticle to false for these.
- When several sources cover the round, combine them: one source may name investors another missed, or give a more precise amount
- When sources conflict, prefer the most specific and detailed source and lower the confidence score
- Corroboration by two or more sources should raise confidence, not just average it
- Investors are individual named firms or people, never descriptions like "existing investors"
- country is the company's country name (e.g. "Germany", "France", "UK")
- amount is a raw number in the stated currency (10000000 for $10M)

Also extract company metadata mentioned in the articles.

Respond with ONLY a JSON object, no markdown, no explanation:
{
  "isFundingArticle": boolean,
  "companyName": string | null,
  "amount": number | null,
  "currency": "USD" | "EUR" | "GBP" | other ISO code,
  "stage": "Pre-Seed" | "Seed" | "Series A" | "Series B" | "Series C" | "Series D" | "Series E+" | "Bridge" | "Growth" | "Debt" | "Grant" | null,
  "investors": string[],
  "leadInvestor": string | null,
  "country": string | null,
  "confidence": number,
  "companyMeta": {
    "description": string | null,
    "website": string | null,
    "foundedYear": number | null,
    "employeeRange": "1-10" | "11-50" | "51-200" | "201-500" | "501-1000" | "1000+" | null,
    "linkedinUrl": string | null
  }
}"""


@dataclass
class SourceDocument:
    """One article handed to the merger."""
    title: str
    content: Optional[str] = None
    article_id: Optional[str] = None

    @property
    def text(self) -> str:
        return self.content or self.title or ""


# =============================================================================
# MERGER STATS (monitoring of negative outcomes)
# =============================================================================

_merger_stats = {
    "not_funding": 0,        # isFundingArticle false or no company name
    "parse_failed": 0,       # Response was not valid JSON / schema
    "no_response": 0,        # Timeout or exhausted retries
    "unknown_currency": 0,   # Fell back to a 1:1 rate
    "regex_fallback": 0,     # LLM gave nothing, regex result used
}
_merger_stats_lock = threading.Lock()


def increment_merger_stat(stat_name: str, count: int = 1) -> None:
    with _merger_stats_lock:
        if stat_name in _merger_stats:
            _merger_stats[stat_name] += count


def get_merger_stats() -> dict:
    with _merger_stats_lock:
        return _merger_stats.copy()


def clear_merger_stats() -> None:
    with _merger_stats_lock:
        for key in _merger_stats:
            _merger_stats[key] = 0


# =============================================================================
# PROMPT + PARSING
# =============================================================================

def build_user_prompt(sources: List[SourceDocument]) -> str:
    """
    Concatenate sources under a character budget.

    A single source is cut to merger_budget_single. With several sources,
    when their combined text exceeds merger_budget_multi, each one gets
    floor(budget / n) characters so later sources are still read.
    """
    if len(sources) == 1:
        s = sources[0]
        return f"Title: {s.title}\n\nContent: {s.text[:settings.merger_budget_single]}"

    total = sum(len(s.text) for s in sources)
    per_source = None
    if total > settings.merger_budget_multi:
        per_source = settings.merger_budget_multi // len(sources)

    parts = []
    for i, s in enumerate(sources, start=1):
        body = s.text if per_source is None else s.text[:per_source]
        parts.append(f"--- Source {i} ---\nTitle: {s.title}\n\nContent: {body}")

    return (
        f"{len(sources)} news articles report on the same funding round. "
        f"Cross-reference all sources to extract the most complete and accurate data.\n\n"
        + "\n\n".join(parts)
    )


def strip_code_fences(text: str) -> str:
    text = _CODE_FENCE_START.sub("", text)
    return _CODE_FENCE_END.sub("", text).strip()


def convert_to_usd(amount: Optional[float], currency: str) -> Optional[float]:
    """Convert with the fixed table; unknown codes use 1:1 and log a warning."""
    if amount is None:
        return None
    rate = CURRENCY_TO_USD.get(currency)
    if rate is None:
        logger.warning(f"Unknown currency '{currency}', converting {amount} at 1:1")
        increment_merger_stat("unknown_currency")
        rate = 1.0
    return round(amount * rate, 2)


def parse_extraction_response(text: Optional[str]) -> Optional[RawExtraction]:
    """
    Parse a completion into a RawExtraction.

    Returns None on missing text, invalid JSON, a schema mismatch,
    isFundingArticle false, or no company name.
    """
    if not text:
        return None

    try:
        payload = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        logger.warning(f"Extraction response is not JSON: {e}")
        increment_merger_stat("parse_failed")
        return None

    if not isinstance(payload, dict):
        increment_merger_stat("parse_failed")
        return None

    try:
        parsed = FundingExtractionResponse.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Extraction response failed validation: {e.error_count()} errors")
        increment_merger_stat("parse_failed")
        return None

    if not parsed.is_funding_article or not parsed.company_name:
        increment_merger_stat("not_funding")
        return None

    return RawExtraction(
        company_name=parsed.company_name,
        amount=parsed.amount,
        currency=parsed.currency,
        amount_usd=convert_to_usd(parsed.amount, parsed.currency),
        stage=parsed.stage,
        investors=parsed.investors,
        lead_investor=parsed.lead_investor,
        country=parsed.country,
        confidence=parsed.confidence,
        raw_excerpt=parsed.company_name,
        signals=["llm_extraction"],
        company_meta=parsed.company_meta,
    )


async def _run_completion(complete: Optional[CompleteFn], user_prompt: str) -> Optional[str]:
    """One completion call, bounded by settings.llm_timeout; a timeout is no response."""
    if complete is None:
        # llm.complete bounds each of its own attempts
        return await default_complete(SYSTEM_PROMPT, user_prompt)
    try:
        return await asyncio.wait_for(complete(SYSTEM_PROMPT, user_prompt), timeout=settings.llm_timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Completion timed out after {settings.llm_timeout}s")
        return None


# =============================================================================
# PUBLIC API
# =============================================================================

async def extract_from_sources(
    sources: List[SourceDocument],
    complete: Optional[CompleteFn] = None,
) -> Optional[RawExtraction]:
    """
    Extract one funding event from all `sources` with a single completion.

    Args:
        sources: Articles believed to describe the same round, best first.
        complete: Async (system_prompt, user_prompt) -> text. Defaults to the
            Anthropic Messages API.

    Returns:
        A fully populated RawExtraction, or None when there is no event.
    """
    if not sources:
        return None

    text = await _run_completion(complete, build_user_prompt(sources))
    if text is None:
        increment_merger_stat("no_response")
        return None

    result = parse_extraction_response(text)
    if result is None:
        return None

    result.raw_excerpt = sources[0].title
    result.source_article_id = sources[0].article_id
    if len(sources) > 1:
        result.signals = ["llm_extraction", f"multi_source_{len(sources)}"]

    logger.info(
        f"Extracted {result.company_name} ({result.stage or 'unknown stage'}) "
        f"from {len(sources)} source(s), confidence={result.confidence:.2f}"
    )
    return result


async def extract_funding(
    title: str,
    content: Optional[str],
    article_id: Optional[str] = None,
    complete: Optional[CompleteFn] = None,
) -> Optional[RawExtraction]:
    """
    Per-article extraction: LLM first, regex when the LLM returns nothing
    because it is unavailable. An explicit "not a funding article" answer
    is respected and not overridden by the regex extractor.
    """
    if not has_any_funding_signal(title, clean_text(title, content or "")):
        return None

    source = SourceDocument(title=title, content=content, article_id=article_id)
    text = None
    if complete is not None or settings.anthropic_api_key:
        text = await _run_completion(complete, build_user_prompt([source]))
        if text is None:
            increment_merger_stat("no_response")

    if text is not None:
        result = parse_extraction_response(text)
        if result is not None:
            result.raw_excerpt = title
            result.source_article_id = article_id
        return result

    result = extract_with_regex(title, content or "")
    if result is not None:
        increment_merger_stat("regex_fallback")
        result.source_article_id = article_id
        result.signals.append("regex_fallback")
    return result
