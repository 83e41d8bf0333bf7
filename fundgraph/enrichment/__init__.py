"""
Enrichment module for company and investor nodes.

Reads linked articles and the entity's website, extracts structured
metadata with the LLM and writes it back under the lock/confidence
policy.
"""
from .company_enricher import enrich_company
from .investor_enricher import enrich_investor
from .orchestrator import (
    EnrichmentJob,
    EnrichmentJobResult,
    EnrichmentQueue,
    close_enrichment_queue,
    get_enrichment_queue,
)
from .outcome import EnrichmentError, EnrichmentOutcome
from .progress import ProgressEvent, ProgressStage, emit, noop_sink

__all__ = [
    "enrich_company",
    "enrich_investor",
    "EnrichmentJob",
    "EnrichmentJobResult",
    "EnrichmentQueue",
    "close_enrichment_queue",
    "get_enrichment_queue",
    "EnrichmentError",
    "EnrichmentOutcome",
    "ProgressEvent",
    "ProgressStage",
    "emit",
    "noop_sink",
]
