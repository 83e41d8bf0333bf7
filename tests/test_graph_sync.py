"""
Tests for the graph upsert engine.

Runs against FakeGraphStore, which applies the same MERGE and lock rules
as the Cypher templates.
"""

from datetime import datetime, timedelta

import pytest
from neo4j.exceptions import ClientError, ServiceUnavailable

from fundgraph.analyst.schemas import CompanyMeta, RawExtraction
from fundgraph.archivist.graph_sync import (
    ArticleRef,
    GraphSyncError,
    build_round_key,
    clear_rounds,
    commit_round,
    set_field_lock,
    sync_all_rounds,
)

from tests.test_helpers import make_mention

JAN_20 = datetime(2025, 1, 20, 9, 0)


def acme_extraction(**overrides) -> RawExtraction:
    fields = dict(
        company_name="Acme GmbH",
        amount=10_000_000,
        currency="EUR",
        amount_usd=10_800_000,
        stage="Series A",
        investors=["Foo Ventures", "Bar Capital"],
        lead_investor="Foo Ventures",
        country="Germany",
        confidence=0.92,
    )
    fields.update(overrides)
    return RawExtraction(**fields)


def acme_articles():
    return [
        ArticleRef(id="a1", url="https://news.example.com/acme-1", title="Acme raises €10M", published_at=JAN_20),
        ArticleRef(id="a2", url="https://news.example.com/acme-2", title="Acme lands Series A"),
    ]


class TestCommitRound:
    @pytest.mark.asyncio
    async def test_acme_round(self, fake_store):
        summary = await commit_round(acme_extraction(), acme_articles(), store=fake_store)

        assert summary.round_key == "acmegmbh_seriesa_a1"
        assert fake_store.counts() == {
            "companies": 1,
            "investors": 2,
            "locations": 1,
            "rounds": 1,
            "articles": 2,
            "edges": 6,
        }
        assert summary.nodes_created == 7
        assert summary.edges_created == 6
        assert summary.total_funding_usd == pytest.approx(10_800_000)
        assert fake_store.participants[("foo", summary.round_key)] == "lead"
        assert fake_store.participants[("bar", summary.round_key)] == "participant"
        assert fake_store.companies["acme"]["name"] == "Acme GmbH"
        assert "PARTICIPATED_IN x2" in summary.edges

    @pytest.mark.asyncio
    async def test_second_commit_creates_nothing(self, fake_store):
        await commit_round(acme_extraction(), acme_articles(), store=fake_store)
        before = fake_store.counts()

        summary = await commit_round(acme_extraction(), acme_articles(), store=fake_store)

        assert summary.nodes_created == 0
        assert summary.edges_created == 0
        assert summary.nodes_matched == 7
        assert summary.edges_matched == 6
        assert fake_store.counts() == before

    @pytest.mark.asyncio
    async def test_role_upgraded_to_lead_never_downgraded(self, fake_store):
        key = "acme_seriesa_r1"
        await commit_round(acme_extraction(investors=["Foo Ventures"], lead_investor=None),
                           acme_articles(), round_key=key, store=fake_store)
        assert fake_store.participants[("foo", key)] == "participant"

        await commit_round(acme_extraction(investors=[], lead_investor="Foo Ventures"),
                           acme_articles(), round_key=key, store=fake_store)
        assert fake_store.participants[("foo", key)] == "lead"

        await commit_round(acme_extraction(investors=["Foo Ventures"], lead_investor=None),
                           acme_articles(), round_key=key, store=fake_store)
        assert fake_store.participants[("foo", key)] == "lead"

    @pytest.mark.asyncio
    async def test_investor_spellings_dedupe_to_one_node(self, fake_store):
        extraction = acme_extraction(investors=["Foo Ventures", "FOO ventures"], lead_investor="foo ventures")
        summary = await commit_round(extraction, acme_articles(), store=fake_store)

        assert list(fake_store.investors) == ["foo"]
        assert fake_store.participants[("foo", summary.round_key)] == "lead"

    @pytest.mark.asyncio
    async def test_locked_country_skips_hq(self, fake_store):
        await commit_round(acme_extraction(country="France"), acme_articles(), store=fake_store)
        await set_field_lock("company", "Acme GmbH", "country", True, store=fake_store)

        summary = await commit_round(acme_extraction(country="Germany"), acme_articles(), store=fake_store)

        assert "HQ_IN (country locked)" in summary.skipped
        assert fake_store.companies["acme"]["country"] == "France"
        assert fake_store.hq == {("acme", "France")}

    @pytest.mark.asyncio
    async def test_locked_meta_field_not_overwritten(self, fake_store):
        first = acme_extraction(company_meta=CompanyMeta(description="Hand written"))
        await commit_round(first, acme_articles(), store=fake_store)
        await set_field_lock("company", "Acme GmbH", "description", True, store=fake_store)

        second = acme_extraction(company_meta=CompanyMeta(description="From the article", foundedYear=2020))
        await commit_round(second, acme_articles(), store=fake_store)

        company = fake_store.companies["acme"]
        assert company["description"] == "Hand written"
        assert company["foundedYear"] == 2020

        assert await set_field_lock("company", "Acme GmbH", "description", False, store=fake_store) == []
        await commit_round(second, acme_articles(), store=fake_store)

        assert fake_store.companies["acme"]["description"] == "From the article"

    @pytest.mark.asyncio
    async def test_new_coverage_reuses_existing_round(self, fake_store):
        first = await commit_round(acme_extraction(), acme_articles()[:1], store=fake_store)

        later = acme_articles()[::-1]
        summary = await commit_round(acme_extraction(), later, round_key="acme_seriesa_other", store=fake_store)

        assert summary.round_key == first.round_key
        assert list(fake_store.rounds) == [first.round_key]
        assert fake_store.companies["acme"]["totalFundingUsd"] == 10_800_000
        assert (first.round_key, "https://news.example.com/acme-2") in fake_store.sources

    @pytest.mark.asyncio
    async def test_null_values_never_overwrite(self, fake_store):
        key = "acme_seriesa_r1"
        await commit_round(acme_extraction(), acme_articles(), round_key=key, store=fake_store)
        await commit_round(acme_extraction(amount_usd=None, country=None), acme_articles(),
                           round_key=key, store=fake_store)

        assert fake_store.rounds[key]["amountUsd"] == 10_800_000
        assert fake_store.companies["acme"]["country"] == "Germany"

    @pytest.mark.asyncio
    async def test_confidence_only_goes_up(self, fake_store):
        key = "acme_seriesa_r1"
        await commit_round(acme_extraction(confidence=0.9), acme_articles(), round_key=key, store=fake_store)
        await commit_round(acme_extraction(confidence=0.4), acme_articles(), round_key=key, store=fake_store)

        assert fake_store.rounds[key]["confidence"] == 0.9
        assert fake_store.sources[(key, "https://news.example.com/acme-1")] == 0.9

    @pytest.mark.asyncio
    async def test_total_funding_sums_rounds(self, fake_store):
        await commit_round(acme_extraction(), acme_articles(), round_key="acme_seriesa_r1", store=fake_store)
        summary = await commit_round(
            acme_extraction(stage="Seed", amount_usd=2_000_000),
            acme_articles(), round_key="acme_seed_r0", store=fake_store,
        )
        assert summary.total_funding_usd == pytest.approx(12_800_000)

    @pytest.mark.asyncio
    async def test_missing_company_name_writes_nothing(self, fake_store):
        with pytest.raises(ValueError):
            await commit_round(acme_extraction(company_name="  "), acme_articles(), store=fake_store)
        assert fake_store.calls == []

    @pytest.mark.asyncio
    async def test_round_key_generated_without_articles(self, fake_store):
        summary = await commit_round(acme_extraction(), [], store=fake_store)
        assert summary.round_key.startswith("acmegmbh_seriesa_")
        assert fake_store.articles == {}


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_error_retried(self, fake_store):
        fake_store.fail("merge_round", ServiceUnavailable("leader switch"))

        summary = await commit_round(acme_extraction(), acme_articles(), store=fake_store)

        assert fake_store.calls.count("merge_round") == 2
        assert len(fake_store.rounds) == 1
        assert summary.nodes_created == 7

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_with_step(self, fake_store):
        fake_store.fail("merge_round", *[ServiceUnavailable("down") for _ in range(4)])

        with pytest.raises(GraphSyncError) as exc_info:
            await commit_round(acme_extraction(), acme_articles(), store=fake_store)

        assert exc_info.value.step == "round"
        assert fake_store.calls.count("merge_round") == 4
        # Earlier steps stay committed
        assert "acme" in fake_store.companies
        assert fake_store.rounds == {}

    @pytest.mark.asyncio
    async def test_non_transient_error_not_retried(self, fake_store):
        fake_store.fail("merge_article", RuntimeError("bad cypher"))

        with pytest.raises(GraphSyncError) as exc_info:
            await commit_round(acme_extraction(), acme_articles(), store=fake_store)

        assert exc_info.value.step == "article"
        assert exc_info.value.entity == "Article:https://news.example.com/acme-1"
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert fake_store.calls.count("merge_article") == 1

    @pytest.mark.asyncio
    async def test_statement_timeout_carries_step(self, fake_store):
        timeout = ClientError("The transaction has been terminated")
        fake_store.fail("merge_round", timeout)

        with pytest.raises(GraphSyncError) as exc_info:
            await commit_round(acme_extraction(), acme_articles(), store=fake_store)

        assert exc_info.value.step == "round"
        assert exc_info.value.cause is timeout
        assert exc_info.value.to_dict()["entity"] == "FundingRound:acmegmbh_seriesa_a1"
        assert fake_store.calls.count("merge_round") == 1


class TestFieldLocks:
    @pytest.mark.asyncio
    async def test_lock_and_unlock(self, fake_store):
        await commit_round(acme_extraction(), acme_articles(), store=fake_store)

        assert await set_field_lock("company", "Acme GmbH", "website", True, store=fake_store) == ["website"]
        assert await set_field_lock("company", "Acme GmbH", "website", True, store=fake_store) == ["website"]
        assert await set_field_lock("company", "Acme GmbH", "website", False, store=fake_store) == []

    @pytest.mark.asyncio
    async def test_investor_lock(self, fake_store):
        await commit_round(acme_extraction(), acme_articles(), store=fake_store)
        locked = await set_field_lock("investor", "Foo Ventures", "aum", True, store=fake_store)
        assert locked == ["aum"]
        assert fake_store.investors["foo"]["lockedFields"] == ["aum"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entity_type,name,field", [
        ("fund", "Acme GmbH", "website"),
        ("company", "Acme GmbH", "bogus"),
        ("investor", "Foo Ventures", "country"),
        ("company", "   ", "website"),
    ])
    async def test_invalid_requests(self, fake_store, entity_type, name, field):
        with pytest.raises(ValueError):
            await set_field_lock(entity_type, name, field, True, store=fake_store)

    @pytest.mark.asyncio
    async def test_unknown_entity(self, fake_store):
        with pytest.raises(LookupError):
            await set_field_lock("company", "Nobody Inc", "website", True, store=fake_store)


class TestBulkSync:
    def mentions(self):
        return [
            make_mention("m1", "Acme GmbH", "Series A", JAN_20, confidence=0.9, amount_usd=10_800_000,
                         investors=["Foo Ventures"], lead_investor="Foo Ventures", country="Germany"),
            make_mention("m2", "Acme GmbH", "Series A", JAN_20 - timedelta(days=1), investors=["Bar Capital"]),
            make_mention("m3", "Beta", "Seed", JAN_20, amount_usd=1_000_000),
        ]

    @pytest.mark.asyncio
    async def test_projects_all_rounds(self, fake_store):
        result = await sync_all_rounds(self.mentions(), store=fake_store)

        assert result.companies == 2
        assert result.funding_rounds == 2
        assert result.investors == 2
        assert result.articles == 3
        assert result.locations == 1
        assert result.edges == 8
        assert fake_store.companies["acme"]["totalFundingUsd"] == 10_800_000

    @pytest.mark.asyncio
    async def test_rerun_creates_no_edges(self, fake_store):
        await sync_all_rounds(self.mentions(), store=fake_store)
        before = fake_store.counts()

        result = await sync_all_rounds(self.mentions(), store=fake_store)

        assert result.edges == 0
        assert fake_store.counts() == before

    @pytest.mark.asyncio
    async def test_newer_article_keeps_round(self, fake_store):
        m1 = make_mention("m1", "Acme", "Series A", JAN_20, amount_usd=10_000_000)
        m2 = make_mention("m2", "Acme", "Series A", JAN_20 + timedelta(days=2), amount_usd=10_000_000)

        await sync_all_rounds([m1], store=fake_store)
        keys = list(fake_store.rounds)
        await sync_all_rounds([m2, m1], store=fake_store)

        assert list(fake_store.rounds) == keys
        assert fake_store.companies["acme"]["totalFundingUsd"] == 10_000_000
        assert len([edge for edge in fake_store.sources if edge[0] == keys[0]]) == 2

    @pytest.mark.asyncio
    async def test_bulk_sync_reuses_ingested_round(self, fake_store):
        extraction = acme_extraction(company_name="Acme", amount_usd=10_000_000)
        ingested = await commit_round(
            extraction,
            [ArticleRef(id="art-m1", url="https://news.example.com/m1", title="Acme raises")],
            store=fake_store,
        )

        m1 = make_mention("m1", "Acme", "Series A", JAN_20, amount_usd=10_000_000)
        m2 = make_mention("m2", "Acme", "Series A", JAN_20 - timedelta(days=1))
        await sync_all_rounds([m1, m2], store=fake_store)

        assert list(fake_store.rounds) == [ingested.round_key]
        assert fake_store.companies["acme"]["totalFundingUsd"] == 10_000_000

    @pytest.mark.asyncio
    async def test_other_stage_on_same_article_not_reused(self, fake_store):
        m1 = make_mention("m1", "Acme", "Series A", JAN_20)
        await sync_all_rounds([m1], store=fake_store)

        seed = make_mention("m2", "Acme", "Seed", JAN_20, article_url=m1.article_url)
        await sync_all_rounds([seed], store=fake_store)

        assert len(fake_store.rounds) == 2

    @pytest.mark.asyncio
    async def test_empty_input(self, fake_store):
        result = await sync_all_rounds([], store=fake_store)
        assert result.funding_rounds == 0
        assert fake_store.calls == []

    @pytest.mark.asyncio
    async def test_clear_rounds_keeps_entities(self, fake_store):
        await sync_all_rounds(self.mentions(), store=fake_store)
        counts = await clear_rounds(store=fake_store)

        assert counts["fundingRounds"] == 2
        assert fake_store.rounds == {}
        assert len(fake_store.companies) == 2


class TestRoundKey:
    def test_format(self):
        assert build_round_key("Acme GmbH", "Series A", "a1") == "acmegmbh_seriesa_a1"

    def test_unknown_stage_and_random_id(self):
        first = build_round_key("Acme", None)
        second = build_round_key("Acme", None)
        assert first.startswith("acme_unknown_")
        assert first != second
