"""
Response models for LLM enrichment (Instructor validates against these).

Values are keyed by the graph property names through aliases so the
model output, the confidence map and the node properties all use the
same field names.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..analyst.schemas import EMPLOYEE_RANGES
from ..common.url_utils import sanitize_linkedin_url, sanitize_website_url

COMPANY_STATUSES = ("active", "acquired", "closed")

INVESTOR_TYPES = ("vc", "cvc", "pe", "angel", "accelerator", "family_office", "government", "other")


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


def _clean_list(v: Any) -> Optional[List[str]]:
    """Empty lists count as missing."""
    if not isinstance(v, list):
        return None
    items = [s.strip() for s in v if isinstance(s, str) and s.strip()]
    return items or None


def _clean_year(v: Any) -> Optional[int]:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    year = int(v)
    return year if 1800 <= year <= datetime.now().year else None


def _clean_amount(v: Any) -> Optional[float]:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    return float(v) if v > 0 else None


class EnrichmentResult(BaseModel):
    """Base for enrichment models: values plus a per-field confidence map."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    field_confidence: Dict[str, float] = Field(
        default_factory=dict,
        alias="fieldConfidence",
        description="Confidence 0.0-1.0 per field name; 0 when a field is null",
    )

    @field_validator("field_confidence", mode="before")
    @classmethod
    def clamp_confidences(cls, v: Any) -> Dict[str, float]:
        if not isinstance(v, dict):
            return {}
        return {
            str(k): max(0.0, min(1.0, float(c)))
            for k, c in v.items()
            if isinstance(c, (int, float)) and not isinstance(c, bool)
        }

    def graph_values(self) -> Dict[str, Any]:
        """Non-null field values keyed by graph property name."""
        data = self.model_dump(by_alias=True, exclude={"field_confidence"})
        return {k: v for k, v in data.items() if v is not None}

    def confidence(self, prop: str) -> float:
        return self.field_confidence.get(prop, 0.0)


class CompanyEnrichment(EnrichmentResult):
    description: Optional[str] = None
    website: Optional[str] = None
    founded_year: Optional[int] = Field(default=None, alias="foundedYear")
    employee_range: Optional[str] = Field(
        default=None,
        alias="employeeRange",
        description="One of: " + ", ".join(EMPLOYEE_RANGES),
    )
    linkedin_url: Optional[str] = Field(default=None, alias="linkedinUrl")
    country: Optional[str] = Field(default=None, description="Country name, e.g. Germany")
    status: Optional[str] = Field(default=None, description="One of: " + ", ".join(COMPANY_STATUSES))
    location: Optional[str] = Field(default=None, description="Headquarters city")

    @field_validator("description", "country", "location", mode="before")
    @classmethod
    def clean_text(cls, v: Any) -> Optional[str]:
        v = _blank_to_none(v)
        return v.strip() if isinstance(v, str) else None

    @field_validator("website", mode="before")
    @classmethod
    def clean_website(cls, v: Any) -> Optional[str]:
        return sanitize_website_url(v) if isinstance(v, str) else None

    @field_validator("linkedin_url", mode="before")
    @classmethod
    def clean_linkedin(cls, v: Any) -> Optional[str]:
        return sanitize_linkedin_url(v) if isinstance(v, str) else None

    @field_validator("founded_year", mode="before")
    @classmethod
    def validate_year(cls, v: Any) -> Optional[int]:
        return _clean_year(v)

    @field_validator("employee_range", mode="before")
    @classmethod
    def validate_employee_range(cls, v: Any) -> Optional[str]:
        return v if v in EMPLOYEE_RANGES else None

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v: Any) -> Optional[str]:
        if not isinstance(v, str):
            return None
        v = v.strip().lower()
        return v if v in COMPANY_STATUSES else None


class InvestorArticleEnrichment(EnrichmentResult):
    """Investment-pattern fields that can be read off deal coverage."""
    type: Optional[str] = Field(default=None, description="One of: " + ", ".join(INVESTOR_TYPES))
    stage_focus: Optional[List[str]] = Field(default=None, alias="stageFocus")
    sector_focus: Optional[List[str]] = Field(default=None, alias="sectorFocus")
    geo_focus: Optional[List[str]] = Field(default=None, alias="geoFocus")
    check_size_min_usd: Optional[float] = Field(default=None, alias="checkSizeMinUsd")
    check_size_max_usd: Optional[float] = Field(default=None, alias="checkSizeMaxUsd")

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, v: Any) -> Optional[str]:
        if not isinstance(v, str) or not v.strip():
            return None
        v = v.strip().lower().replace(" ", "_")
        return v if v in INVESTOR_TYPES else "other"

    @field_validator("stage_focus", "sector_focus", "geo_focus", mode="before")
    @classmethod
    def clean_focus(cls, v: Any) -> Optional[List[str]]:
        return _clean_list(v)

    @field_validator("check_size_min_usd", "check_size_max_usd", mode="before")
    @classmethod
    def validate_check_size(cls, v: Any) -> Optional[float]:
        return _clean_amount(v)


class InvestorEnrichment(InvestorArticleEnrichment):
    """Everything an investor's own website can tell us."""
    website: Optional[str] = None
    linkedin_url: Optional[str] = Field(default=None, alias="linkedinUrl")
    founded_year: Optional[int] = Field(default=None, alias="foundedYear")
    aum: Optional[float] = Field(default=None, description="Assets under management in USD")
    hq: Optional[str] = Field(default=None, description="Headquarters city")

    @field_validator("website", mode="before")
    @classmethod
    def clean_website(cls, v: Any) -> Optional[str]:
        return sanitize_website_url(v) if isinstance(v, str) else None

    @field_validator("linkedin_url", mode="before")
    @classmethod
    def clean_linkedin(cls, v: Any) -> Optional[str]:
        return sanitize_linkedin_url(v) if isinstance(v, str) else None

    @field_validator("founded_year", mode="before")
    @classmethod
    def validate_year(cls, v: Any) -> Optional[int]:
        return _clean_year(v)

    @field_validator("aum", mode="before")
    @classmethod
    def validate_aum(cls, v: Any) -> Optional[float]:
        return _clean_amount(v)

    @field_validator("hq", mode="before")
    @classmethod
    def clean_hq(cls, v: Any) -> Optional[str]:
        v = _blank_to_none(v)
        return v.strip() if isinstance(v, str) else None


class WebsiteMatch(BaseModel):
    """Verdict on whether a fetched page is the entity's own website."""
    match: bool = False
    reason: str = ""
