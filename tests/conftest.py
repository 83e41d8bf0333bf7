"""
Pytest fixtures for test infrastructure.

This module is automatically loaded by pytest and provides shared fixtures.
For the fake graph store and record builders, see test_helpers.py.
"""

import pytest

from tests.test_helpers import FakeGraphStore, make_mention


# =============================================================================
# Global fixtures (autouse)
# =============================================================================
@pytest.fixture(autouse=True)
def no_retry_backoff(monkeypatch):
    """Zero jitter makes every retry backoff sleep(0)."""
    monkeypatch.setattr("fundgraph.archivist.graph_sync.random.uniform", lambda a, b: 0.0)


# =============================================================================
# Shared fixtures
# =============================================================================
@pytest.fixture
def fake_store():
    return FakeGraphStore()


@pytest.fixture
def mention_factory():
    return make_mention


@pytest.fixture
def acme_llm_response():
    """Completion text for the Acme Series A announcement."""
    return """```json
{
  "isFundingArticle": true,
  "companyName": "Acme GmbH",
  "amount": 10000000,
  "currency": "EUR",
  "stage": "Series A",
  "investors": ["Foo Ventures", "Bar Capital"],
  "leadInvestor": "Foo Ventures",
  "country": "Germany",
  "confidence": 0.92,
  "companyMeta": {"description": "Workflow automation", "website": "https://acme.example", "foundedYear": 2020}
}
```"""
