"""
Tests for round grouping.

Mentions are passed newest first, as load_mentions returns them.
"""

from datetime import datetime, timedelta

from fundgraph.archivist.grouper import group_mentions, sort_rounds

from tests.test_helpers import make_mention

JAN_20 = datetime(2025, 1, 20, 9, 0)


def days_before(days: float) -> datetime:
    return JAN_20 - timedelta(days=days)


class TestWindow:
    def test_same_round_within_window_grouped(self):
        mentions = [
            make_mention("m1", "Acme GmbH", "Series A", JAN_20),
            make_mention("m2", "ACME GmbH", "series a", days_before(3)),
        ]
        rounds = group_mentions(mentions)

        assert len(rounds) == 1
        assert rounds[0].source_count == 2
        assert rounds[0].key.startswith("acmegmbh_seriesa_")

    def test_exactly_seven_days_apart_not_grouped(self):
        mentions = [
            make_mention("m1", "Acme", "Seed", JAN_20),
            make_mention("m2", "Acme", "Seed", days_before(7)),
        ]
        assert len(group_mentions(mentions)) == 2

    def test_window_measured_against_any_member(self):
        mentions = [
            make_mention("m1", "Acme", "Seed", JAN_20),
            make_mention("m2", "Acme", "Seed", days_before(6)),
            make_mention("m3", "Acme", "Seed", days_before(11)),
        ]
        rounds = group_mentions(mentions)

        assert len(rounds) == 1
        assert [m.id for m in rounds[0].members] == ["m1", "m2", "m3"]

    def test_created_at_used_without_publish_date(self):
        mentions = [
            make_mention("m1", "Acme", "Seed", JAN_20),
            make_mention("m2", "Acme", "Seed", None, created_at=days_before(2)),
        ]
        assert len(group_mentions(mentions)) == 1

    def test_key_uses_first_member_timestamp(self):
        rounds = group_mentions([make_mention("m1", "Acme", "Seed", JAN_20)])
        assert rounds[0].key == f"acme_seed_{int(JAN_20.timestamp() * 1000)}"

    def test_key_unchanged_when_newer_coverage_arrives(self):
        older = make_mention("m1", "Acme", "Seed", JAN_20)
        newer = make_mention("m2", "Acme", "Seed", JAN_20 + timedelta(days=2))

        before = group_mentions([older])
        after = group_mentions([newer, older])

        assert len(after) == 1
        assert after[0].key == before[0].key
        assert [m.id for m in after[0].members] == ["m2", "m1"]


class TestStages:
    def test_different_stages_split(self):
        mentions = [
            make_mention("m1", "Acme", "Series A", JAN_20),
            make_mention("m2", "Acme", "Series B", days_before(1)),
        ]
        assert len(group_mentions(mentions)) == 2

    def test_unknown_stage_joins_specific(self):
        mentions = [
            make_mention("m1", "Acme", "Series A", JAN_20),
            make_mention("m2", "Acme", None, days_before(1)),
        ]
        rounds = group_mentions(mentions)

        assert len(rounds) == 1
        assert rounds[0].stage == "Series A"

    def test_unknown_group_adopts_first_specific_stage(self):
        mentions = [
            make_mention("m1", "Acme", None, JAN_20),
            make_mention("m2", "Acme", "Series A", days_before(1)),
            make_mention("m3", "Acme", "Series B", days_before(2)),
        ]
        rounds = group_mentions(mentions)

        assert len(rounds) == 2
        assert rounds[0].key.startswith("acme_unknown_")
        assert [m.id for m in rounds[0].members] == ["m1", "m2"]
        assert rounds[0].stage == "Series A"
        assert [m.id for m in rounds[1].members] == ["m3"]


class TestFirstMatch:
    def test_joins_first_matching_group_without_merging(self):
        mentions = [
            make_mention("m1", "Acme", "Seed", JAN_20),
            make_mention("m2", "Acme", "Seed", days_before(8)),
            make_mention("m3", "Acme", "Seed", days_before(4)),
        ]
        rounds = group_mentions(mentions)

        assert len(rounds) == 2
        assert [m.id for m in rounds[0].members] == ["m1", "m3"]
        assert [m.id for m in rounds[1].members] == ["m2"]

    def test_other_companies_never_grouped(self):
        mentions = [
            make_mention("m1", "Acme", "Seed", JAN_20),
            make_mention("m2", "Acme Labs", "Seed", JAN_20),
        ]
        assert len(group_mentions(mentions)) == 2

    def test_empty_company_skipped(self):
        mentions = [
            make_mention("m1", "", "Seed", JAN_20),
            make_mention("m2", "Acme", "Seed", JAN_20),
        ]
        rounds = group_mentions(mentions)

        assert len(rounds) == 1
        assert rounds[0].company_name == "Acme"

    def test_every_mention_in_exactly_one_round(self):
        mentions = [
            make_mention(f"m{i}", "Acme" if i % 2 else "Beta", "Seed", days_before(i * 2))
            for i in range(10)
        ]
        rounds = group_mentions(mentions)
        member_ids = [m.id for r in rounds for m in r.members]

        assert sorted(member_ids) == sorted(m.id for m in mentions)


class TestCanonicalValues:
    def test_primary_is_highest_confidence(self):
        mentions = [
            make_mention("m1", "Acme", "Series A", JAN_20, confidence=0.4, amount_usd=9_000_000),
            make_mention("m2", "Acme", "Series A", days_before(1), confidence=0.9, amount_usd=10_800_000),
        ]
        r = group_mentions(mentions)[0]

        assert r.amount_usd == 10_800_000
        assert r.max_confidence == 0.9

    def test_missing_values_filled_from_other_members(self):
        mentions = [
            make_mention("m1", "Acme", "Series A", JAN_20, confidence=0.9),
            make_mention("m2", "Acme", "Series A", days_before(1), confidence=0.5, country="Germany"),
        ]
        r = group_mentions(mentions)[0]

        assert r.country == "Germany"
        assert r.amount_usd is None

    def test_investor_union_is_case_insensitive(self):
        mentions = [
            make_mention("m1", "Acme", "Seed", JAN_20, investors=["Foo Ventures"], lead_investor="Foo Ventures"),
            make_mention("m2", "Acme", "Seed", days_before(1), investors=["foo ventures", "Bar Capital"]),
        ]
        r = group_mentions(mentions)[0]

        assert r.all_investors == ["Foo Ventures", "Bar Capital"]
        assert r.lead_investor == "Foo Ventures"

    def test_one_source_per_feed(self):
        mentions = [
            make_mention("m1", "Acme", "Seed", JAN_20, feed_title="TechCrunch"),
            make_mention("m2", "Acme", "Seed", days_before(1), feed_title="TechCrunch"),
            make_mention("m3", "Acme", "Seed", days_before(2), feed_title="Sifted"),
        ]
        r = group_mentions(mentions)[0]

        assert [s.feed_title for s in r.sources] == ["TechCrunch", "Sifted"]
        assert len(r.members) == 3

    def test_first_and_last_seen(self):
        mentions = [
            make_mention("m1", "Acme", "Seed", JAN_20),
            make_mention("m2", "Acme", "Seed", days_before(3)),
        ]
        r = group_mentions(mentions)[0]

        assert r.first_seen == days_before(3)
        assert r.last_seen == JAN_20

    def test_to_dict_uses_camel_case(self):
        r = group_mentions([make_mention("m1", "Acme", "Seed", JAN_20)])[0]
        data = r.to_dict()

        assert data["companyName"] == "Acme"
        assert data["articleIds"] == ["art-m1"]
        assert data["ingestedAt"] is None


class TestSortRounds:
    def test_sort_by_amount(self):
        rounds = group_mentions([
            make_mention("m1", "Acme", "Seed", JAN_20, amount_usd=1_000_000),
            make_mention("m2", "Beta", "Seed", JAN_20, amount_usd=5_000_000),
            make_mention("m3", "Gamma", "Seed", JAN_20),
        ])
        ordered = sort_rounds(rounds, "amount", "desc")
        assert [r.company_name for r in ordered] == ["Beta", "Acme", "Gamma"]

    def test_unknown_sort_falls_back_to_last_seen(self):
        rounds = group_mentions([
            make_mention("m1", "Acme", "Seed", days_before(10)),
            make_mention("m2", "Beta", "Seed", JAN_20),
        ])
        ordered = sort_rounds(rounds, "nonsense", "asc")
        assert [r.company_name for r in ordered] == ["Acme", "Beta"]


class TestAcmeScenario:
    def test_two_articles_resolve_to_one_round(self):
        mentions = [
            make_mention("m2", "Acme", "Series A", JAN_20, confidence=0.8, amount_usd=10_000_000,
                         investors=["Foo Ventures", "Bar Capital"],
                         article_title="Acme secures $10M Series A from Foo Ventures, Bar Capital"),
            make_mention("m1", "Acme", "Series A", days_before(2), confidence=0.9, amount_usd=10_000_000,
                         investors=["Foo Ventures"], lead_investor="Foo Ventures",
                         article_title="Acme raises $10M Series A led by Foo Ventures"),
        ]
        rounds = group_mentions(mentions)

        assert len(rounds) == 1
        r = rounds[0]
        assert set(r.all_investors) == {"Foo Ventures", "Bar Capital"}
        assert r.lead_investor == "Foo Ventures"
        assert r.source_count == 2
