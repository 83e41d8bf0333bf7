"""Results and errors shared by the enrichers and the queue."""

from dataclasses import dataclass, field
from typing import List, Optional

from ..archivist.graph import EntityType


class EnrichmentError(Exception):
    """Enrichment could not run for one entity."""

    def __init__(self, entity_type: EntityType, name: str, message: str):
        self.entity_type = entity_type
        self.name = name
        self.message = message
        super().__init__(f"{entity_type.value} {name}: {message}")


@dataclass
class EnrichmentOutcome:
    entity_type: EntityType
    name: str
    fields_updated: List[str] = field(default_factory=list)
    website: Optional[str] = None
    articles_used: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "entityType": self.entity_type.value,
            "name": self.name,
            "fieldsUpdated": list(self.fields_updated),
            "website": self.website,
            "articlesUsed": self.articles_used,
            "error": self.error,
        }
