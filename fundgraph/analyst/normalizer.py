"""
Name and stage normalization for matching.

Two families of keys live here:

- Grouping keys (normalize_company_key, normalize_stage_key) compare raw
  mentions against each other. They only fold case and punctuation.
- Graph identity keys (normalize_company_name, normalize_investor_name) decide
  which Company / InvestorOrg node a name resolves to. They also drop legal
  suffixes ("GmbH", "Inc.") and fund words ("Ventures", "Capital").

Every function is pure, total and idempotent. Keys are never shown to users.
"""

import re
from typing import Optional

UNKNOWN_STAGE = "unknown"

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_NON_STAGE = re.compile(r"[^a-z0-9+]")

COMPANY_LEGAL_SUFFIXES = (
    "gmbh", "ug", "ag", "se", "inc", "ltd", "llc", "corp",
    "sa", "sas", "bv", "ab", "plc", "co", "limited",
)
INVESTOR_FUND_WORDS = (
    "ventures", "capital", "partners", "management", "advisors",
    "group", "fund", "investments", "holding", "holdings",
)

_COMPANY_SUFFIX_PATTERN = re.compile(
    r"\b(?:" + "|".join(COMPANY_LEGAL_SUFFIXES) + r")\b\.?"
)
_INVESTOR_WORD_PATTERN = re.compile(
    r"\b(?:" + "|".join(INVESTOR_FUND_WORDS) + r")\b"
)


def normalize_company_key(name: Optional[str]) -> str:
    """Lowercase and drop everything except ASCII letters and digits."""
    if not name:
        return ""
    return _NON_ALNUM.sub("", name.lower())


def normalize_stage_key(stage: Optional[str]) -> str:
    """Lowercase and keep letters, digits and '+'; empty means "unknown"."""
    if not stage:
        return UNKNOWN_STAGE
    key = _NON_STAGE.sub("", stage.lower())
    return key or UNKNOWN_STAGE


def _strip_words(name: Optional[str], pattern: re.Pattern) -> str:
    plain = normalize_company_key(name)
    if not plain:
        return ""
    stripped = normalize_company_key(pattern.sub(" ", name.lower()))
    # A name made only of suffix words ("AB Co") keeps its plain key
    return stripped or plain


def normalize_company_name(name: Optional[str]) -> str:
    """
    Graph identity key for a company.

    Examples:
        "Acme GmbH" -> "acme"
        "Acme, Inc." -> "acme"
        "acme" -> "acme"
    """
    return _strip_words(name, _COMPANY_SUFFIX_PATTERN)


def normalize_investor_name(name: Optional[str]) -> str:
    """
    Graph identity key for an investor organisation.

    Examples:
        "Foo Ventures" -> "foo"
        "Bar Capital Partners" -> "bar"
    """
    return _strip_words(name, _INVESTOR_WORD_PATTERN)


def stage_from_key(key: str) -> str:
    """Return the stage segment of a `company_stage_anchor` group/round key."""
    parts = key.split("_")
    if len(parts) < 3:
        return UNKNOWN_STAGE
    return "_".join(parts[1:-1]) or UNKNOWN_STAGE


def company_from_key(key: str) -> str:
    """Return the company segment of a group/round key."""
    return key.split("_", 1)[0]
