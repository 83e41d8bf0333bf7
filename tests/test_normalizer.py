"""
Tests for name and stage normalization.
"""

import pytest

from fundgraph.analyst.normalizer import (
    UNKNOWN_STAGE,
    company_from_key,
    normalize_company_key,
    normalize_company_name,
    normalize_investor_name,
    normalize_stage_key,
    stage_from_key,
)


class TestCompanyKey:
    def test_folds_case_and_punctuation(self):
        assert normalize_company_key("Acme-Labs, Inc.") == "acmelabsinc"

    def test_punctuation_and_spacing_converge(self):
        assert normalize_company_key("Acme, Inc.") == normalize_company_key("acme inc")

    def test_empty_and_none(self):
        assert normalize_company_key("") == ""
        assert normalize_company_key(None) == ""

    @pytest.mark.parametrize("name", ["Acme GmbH", "ACME gmbh", "acme GMBH"])
    def test_case_insensitive(self, name):
        assert normalize_company_key(name) == "acmegmbh"

    @pytest.mark.parametrize("name", ["Acme GmbH", "N26", "Über Mobility", "  spaced  out  "])
    def test_idempotent(self, name):
        once = normalize_company_key(name)
        assert normalize_company_key(once) == once


class TestStageKey:
    def test_series_a(self):
        assert normalize_stage_key("Series A") == "seriesa"

    def test_keeps_plus(self):
        assert normalize_stage_key("Series E+") == "seriese+"

    def test_missing_is_unknown(self):
        assert normalize_stage_key(None) == UNKNOWN_STAGE
        assert normalize_stage_key("") == UNKNOWN_STAGE
        assert normalize_stage_key("---") == UNKNOWN_STAGE

    def test_idempotent(self):
        assert normalize_stage_key(normalize_stage_key("Pre-Seed")) == "preseed"


class TestGraphIdentity:
    def test_legal_suffix_dropped(self):
        assert normalize_company_name("Acme GmbH") == "acme"
        assert normalize_company_name("Acme, Inc.") == "acme"
        assert normalize_company_name("acme") == "acme"

    def test_suffix_only_name_keeps_plain_key(self):
        assert normalize_company_name("AB Co") == "abco"

    def test_investor_fund_words_dropped(self):
        assert normalize_investor_name("Foo Ventures") == "foo"
        assert normalize_investor_name("Bar Capital Partners") == "bar"

    def test_investor_spellings_converge(self):
        assert normalize_investor_name("Foo Ventures") == normalize_investor_name("FOO ventures")

    def test_idempotent(self):
        key = normalize_investor_name("Bar Capital")
        assert normalize_investor_name(key) == key


class TestKeyParsing:
    def test_stage_from_key(self):
        assert stage_from_key("acme_seriesa_1736000000000") == "seriesa"

    def test_stage_from_short_key(self):
        assert stage_from_key("acme") == UNKNOWN_STAGE

    def test_company_from_key(self):
        assert company_from_key("acme_seriesa_1736000000000") == "acme"
