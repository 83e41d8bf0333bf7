"""
Tests for the extraction merger.

The completion service is replaced by an AsyncMock so prompts and
parsing can be checked without network access.
"""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock, patch

from fundgraph.analyst.merger import (
    SourceDocument,
    build_user_prompt,
    convert_to_usd,
    extract_from_sources,
    extract_funding,
    get_merger_stats,
    clear_merger_stats,
    parse_extraction_response,
)
from fundgraph.config.settings import settings


def llm_json(**overrides) -> str:
    payload = {
        "isFundingArticle": True,
        "companyName": "Acme GmbH",
        "amount": 10_000_000,
        "currency": "EUR",
        "stage": "Series A",
        "investors": ["Foo Ventures"],
        "leadInvestor": "Foo Ventures",
        "country": "Germany",
        "confidence": 0.9,
    }
    payload.update(overrides)
    return json.dumps(payload)


class TestBuildPrompt:
    def test_single_source_uses_single_budget(self):
        source = SourceDocument(title="Acme raises", content="x" * 10_000)
        prompt = build_user_prompt([source])

        assert prompt.startswith("Title: Acme raises")
        assert prompt.count("x") == settings.merger_budget_single

    def test_multi_source_under_budget_kept_whole(self):
        sources = [SourceDocument(title=f"T{i}", content="y" * 100) for i in range(3)]
        prompt = build_user_prompt(sources)

        assert "3 news articles report on the same funding round" in prompt
        assert prompt.count("y") == 300
        assert "--- Source 3 ---" in prompt

    def test_multi_source_over_budget_split_evenly(self):
        sources = [SourceDocument(title=f"T{i}", content="z" * 5000) for i in range(3)]
        prompt = build_user_prompt(sources)

        per_source = settings.merger_budget_multi // 3
        assert prompt.count("z") == per_source * 3

    def test_missing_content_falls_back_to_title(self):
        assert SourceDocument(title="Only a title").text == "Only a title"


class TestParseResponse:
    def test_valid_response(self):
        result = parse_extraction_response(llm_json())

        assert result.company_name == "Acme GmbH"
        assert result.amount_usd == pytest.approx(10_800_000)
        assert result.lead_investor == "Foo Ventures"
        assert result.signals == ["llm_extraction"]

    def test_code_fences_stripped(self):
        assert parse_extraction_response(f"```json\n{llm_json()}\n```") is not None

    def test_not_funding_is_none(self):
        assert parse_extraction_response(llm_json(isFundingArticle=False)) is None

    def test_missing_company_is_none(self):
        assert parse_extraction_response(llm_json(companyName=None)) is None
        assert parse_extraction_response(llm_json(companyName="   ")) is None

    def test_invalid_json_is_none(self):
        assert parse_extraction_response("Sorry, I cannot help with that") is None

    def test_non_object_is_none(self):
        assert parse_extraction_response("[1, 2, 3]") is None

    def test_string_amount_rejected(self):
        result = parse_extraction_response(llm_json(amount="$10M"))
        assert result.amount is None
        assert result.amount_usd is None

    def test_confidence_clamped_and_defaulted(self):
        assert parse_extraction_response(llm_json(confidence=3)).confidence == 1.0
        assert parse_extraction_response(llm_json(confidence="high")).confidence == 0.5

    def test_placeholder_investors_dropped(self):
        result = parse_extraction_response(
            llm_json(investors=["Foo Ventures", "existing investors", "foo ventures", ""])
        )
        assert result.investors == ["Foo Ventures"]

    def test_malformed_meta_dropped(self):
        result = parse_extraction_response(llm_json(companyMeta="n/a"))
        assert result.company_meta is None


class TestCurrency:
    def test_known_rates(self):
        assert convert_to_usd(1_000_000, "USD") == 1_000_000
        assert convert_to_usd(1_000_000, "GBP") == 1_270_000

    def test_unknown_currency_one_to_one(self):
        clear_merger_stats()
        assert convert_to_usd(5_000_000, "XYZ") == 5_000_000
        assert get_merger_stats()["unknown_currency"] == 1

    def test_none_amount(self):
        assert convert_to_usd(None, "EUR") is None


class TestExtractFromSources:
    @pytest.mark.asyncio
    async def test_empty_sources(self):
        complete = AsyncMock()
        assert await extract_from_sources([], complete=complete) is None
        complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_one_call_for_all_sources(self):
        complete = AsyncMock(return_value=llm_json())
        sources = [
            SourceDocument(title="Acme raises €10M", content="...", article_id="a1"),
            SourceDocument(title="Acme lands Series A", content="...", article_id="a2"),
        ]
        result = await extract_from_sources(sources, complete=complete)

        complete.assert_awaited_once()
        assert result.source_article_id == "a1"
        assert result.raw_excerpt == "Acme raises €10M"
        assert result.signals == ["llm_extraction", "multi_source_2"]

    @pytest.mark.asyncio
    async def test_no_response_is_none(self):
        complete = AsyncMock(return_value=None)
        sources = [SourceDocument(title="Acme raises", content="...")]
        assert await extract_from_sources(sources, complete=complete) is None

    @pytest.mark.asyncio
    async def test_slow_completion_is_none(self):
        async def slow(system_prompt, user_prompt):
            await asyncio.sleep(5)
            return llm_json()

        clear_merger_stats()
        sources = [SourceDocument(title="Acme raises", content="...")]
        with patch.object(settings, "llm_timeout", 0.01):
            assert await extract_from_sources(sources, complete=slow) is None
        assert get_merger_stats()["no_response"] == 1

    @pytest.mark.asyncio
    async def test_roundup_rejected(self):
        complete = AsyncMock(return_value=llm_json(isFundingArticle=False, companyName=None))
        sources = [SourceDocument(title="Top 10 Funded Startups This Week", content="...")]
        assert await extract_from_sources(sources, complete=complete) is None


class TestExtractFunding:
    @pytest.mark.asyncio
    async def test_no_signal_skips_llm(self):
        complete = AsyncMock()
        result = await extract_funding("Weather report for Berlin", "Sunny all week.", complete=complete)

        assert result is None
        complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_llm_negative_not_overridden_by_regex(self):
        complete = AsyncMock(return_value=llm_json(isFundingArticle=False))
        result = await extract_funding(
            "Acme raises $10 million Series A",
            "Acme raised $10 million led by Foo Ventures.",
            complete=complete,
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_regex_fallback_when_llm_unavailable(self):
        complete = AsyncMock(return_value=None)
        result = await extract_funding(
            "Acme raises $10 million Series A",
            "Berlin-based Acme raised $10 million in a Series A round led by Foo Ventures.",
            article_id="a1",
            complete=complete,
        )

        assert result is not None
        assert result.company_name == "Acme"
        assert "regex_fallback" in result.signals
        assert result.source_article_id == "a1"

    @pytest.mark.asyncio
    async def test_regex_only_without_api_key(self):
        with patch.object(settings, "anthropic_api_key", ""):
            result = await extract_funding(
                "Acme raises $10 million Series A",
                "Acme raised $10 million in a Series A round.",
            )
        assert result is not None
        assert result.stage == "Series A"
