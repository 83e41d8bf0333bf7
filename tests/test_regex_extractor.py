"""
Tests for the regex funding extractor.
"""

import pytest

from fundgraph.analyst.regex_extractor import (
    extract_amount,
    extract_company_name,
    extract_country,
    extract_investors,
    extract_stage,
    extract_with_regex,
    has_any_funding_signal,
)


class TestAmount:
    @pytest.mark.parametrize("text,expected", [
        ("raised $10 million", (10_000_000, "USD")),
        ("raised $2.5M", (2_500_000, "USD")),
        ("secures €15 million", (15_000_000, "EUR")),
        ("closes £3m round", (3_000_000, "GBP")),
        ("raises 20 Mio. EUR", (20_000_000, "EUR")),
        ("a $1.2 billion valuation", (1_200_000_000, "USD")),
    ])
    def test_amounts(self, text, expected):
        assert extract_amount(text) == expected

    def test_no_amount(self):
        assert extract_amount("raises a seed round") is None


class TestFields:
    def test_stage_order_prefers_pre_seed(self):
        assert extract_stage("a pre-seed round") == "Pre-Seed"
        assert extract_stage("its Series B") == "Series B"
        assert extract_stage("nothing here") is None

    def test_investors_with_lead(self):
        investors, lead = extract_investors(
            "The round was led by Foo Ventures, with participation from Bar Capital and Baz Partners."
        )
        assert lead == "Foo Ventures"
        assert investors == ["Foo Ventures", "Bar Capital", "Baz Partners"]

    def test_placeholder_investors_ignored(self):
        investors, lead = extract_investors("backed by existing investors.")
        assert investors == []
        assert lead is None

    def test_country_from_city(self):
        assert extract_country("Berlin-based Acme") == "Germany"
        assert extract_country("a London startup") == "UK"

    def test_company_name_from_headline(self):
        assert extract_company_name("Berlin-based fintech Acme raises $10M") == "Acme"
        assert extract_company_name("Acme secures €5M Seed") == "Acme"


class TestExtractWithRegex:
    def test_full_announcement(self):
        result = extract_with_regex(
            "Acme raises $10 million Series A",
            "Berlin-based Acme has raised $10 million in a Series A round led by Foo Ventures, "
            "with participation from Bar Capital.",
        )

        assert result is not None
        assert result.company_name == "Acme"
        assert result.amount_usd == 10_000_000
        assert result.stage == "Series A"
        assert result.lead_investor == "Foo Ventures"
        assert result.country == "Germany"
        assert 0.35 <= result.confidence <= 1.0

    def test_roundup_rejected(self):
        result = extract_with_regex(
            "Top 10 Funded Startups This Week",
            "Here are the biggest funding rounds of the week, including several Series A deals.",
        )
        assert result is None

    def test_vc_fund_close_rejected(self):
        result = extract_with_regex(
            "Foo Capital raises $200 million Fund III",
            "Foo Capital closed its third fund.",
        )
        assert result is None

    def test_no_signal(self):
        assert not has_any_funding_signal("Quarterly earnings call", "Revenue grew.")
        assert extract_with_regex("Quarterly earnings call", "Revenue grew.") is None

    def test_html_is_stripped(self):
        result = extract_with_regex(
            "Acme raises $10 million Series A",
            "<p>Acme has raised <b>$10 million</b> led by Foo Ventures.</p>",
        )
        assert result is not None
        assert "<b>" not in result.raw_excerpt
