"""
Write policy for enrichment results.

A field is written when it is not locked and either the node has no
value yet or the new value's confidence exceeds the overwrite threshold.
Locks are read from the node immediately before saving, and the graph
statement checks them again while writing.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from .schemas import EnrichmentResult, InvestorArticleEnrichment, InvestorEnrichment
from ..archivist.graph import EntityType, Neo4jGraphStore
from ..config.settings import settings

logger = logging.getLogger(__name__)

DISCOVERY_CONFIDENCE = 0.8

# Properties that never come from the LLM and are handled separately
_EDGE_FIELDS = {"location"}


def is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, list) and len(value) == 0)


def plan_field_updates(
    current: Dict[str, Any],
    values: Dict[str, Any],
    confidences: Dict[str, float],
    locked: Iterable[str],
    threshold: Optional[float] = None,
) -> Dict[str, Any]:
    """Subset of `values` that may be written over `current`."""
    threshold = settings.enrichment_field_confidence if threshold is None else threshold
    locked = set(locked)
    updates = {}
    for prop, value in values.items():
        if prop in locked or prop in _EDGE_FIELDS or is_empty(value):
            continue
        if is_empty(current.get(prop)) or confidences.get(prop, 0.0) > threshold:
            updates[prop] = value
    return updates


def fill_discovered(result: EnrichmentResult, website: Optional[str], linkedin_url: Optional[str]):
    """Use discovery results for website/LinkedIn when the model found none."""
    if website and getattr(result, "website", None) is None and "website" in type(result).model_fields:
        result.website = website
        result.field_confidence["website"] = DISCOVERY_CONFIDENCE
    if linkedin_url and getattr(result, "linkedin_url", None) is None and "linkedin_url" in type(result).model_fields:
        result.linkedin_url = linkedin_url
        result.field_confidence["linkedinUrl"] = DISCOVERY_CONFIDENCE


def merge_investor_results(
    website_result: Optional[InvestorEnrichment],
    article_result: Optional[InvestorArticleEnrichment],
    cap: Optional[float] = None,
) -> InvestorEnrichment:
    """
    Website data wins whenever present; articles only fill gaps and their
    confidence is capped.
    """
    cap = settings.enrichment_article_confidence_cap if cap is None else cap
    merged = InvestorEnrichment()
    web_values = website_result.graph_values() if website_result else {}
    art_values = article_result.graph_values() if article_result else {}

    for name, info in InvestorEnrichment.model_fields.items():
        if name == "field_confidence":
            continue
        prop = info.alias or name
        if not is_empty(web_values.get(prop)):
            setattr(merged, name, web_values[prop])
            merged.field_confidence[prop] = website_result.confidence(prop)
        elif not is_empty(art_values.get(prop)):
            setattr(merged, name, art_values[prop])
            merged.field_confidence[prop] = min(article_result.confidence(prop), cap)
    return merged


async def save_enrichment(
    store: Neo4jGraphStore,
    entity_type: EntityType,
    name: str,
    key: str,
    result: EnrichmentResult,
    location: Optional[str] = None,
    location_confidence: float = 0.0,
    logo_url: Optional[str] = None,
) -> List[str]:
    """
    Apply `result` to the entity node and stamp enrichedAt.

    Returns the property names that were written.
    """
    node = await store.get_entity(entity_type, name, key)
    if node is None:
        logger.warning(f"Cannot save enrichment: {entity_type.value} {name} no longer exists")
        return []

    locked: Set[str] = set(node.get("lockedFields") or [])
    node_key = node.get("normalizedName") or key
    values = result.graph_values()
    confidences = result.field_confidence

    updates = plan_field_updates(node, values, confidences, locked)
    if logo_url and "logoUrl" not in locked:
        updates["logoUrl"] = logo_url

    await store.merge_entity(entity_type, node_key, None, updates, enriched=True)
    written = sorted(updates)

    if (
        entity_type == EntityType.COMPANY
        and location
        and location_confidence > settings.enrichment_location_confidence
        and "location" not in locked
    ):
        hq = await store.merge_hq(node_key, location, "city", guard="location")
        if hq.rows:
            written.append("location")

    logger.info(f"Enriched {entity_type.value} {name}: {len(written)} fields written")
    return written
