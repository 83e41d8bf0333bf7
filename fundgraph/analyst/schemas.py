"""
Schemas for funding extraction.

FundingExtractionResponse validates the JSON the completion service returns.
The service is not trusted to follow the schema, so validators coerce bad
values to None instead of failing the whole response where a field is
optional. RawExtraction is the internal result handed to the grouper and
the graph writer.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..common.url_utils import sanitize_linkedin_url, sanitize_website_url

logger = logging.getLogger(__name__)


class FundingStage(str, Enum):
    """Stage labels the extractor is asked to use."""
    PRE_SEED = "Pre-Seed"
    SEED = "Seed"
    SERIES_A = "Series A"
    SERIES_B = "Series B"
    SERIES_C = "Series C"
    SERIES_D = "Series D"
    SERIES_E_PLUS = "Series E+"
    BRIDGE = "Bridge"
    GROWTH = "Growth"
    DEBT = "Debt"
    GRANT = "Grant"


EMPLOYEE_RANGES = ("1-10", "11-50", "51-200", "201-500", "501-1000", "1000+")

# Investor strings that describe a group rather than name one
INVESTOR_PLACEHOLDERS = frozenset({
    "existing investors", "new investors", "other investors", "angel investors",
    "undisclosed investors", "undisclosed", "unknown", "n/a", "none",
})


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


class CompanyMeta(BaseModel):
    """Company facts mentioned alongside the funding news."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    description: Optional[str] = None
    website: Optional[str] = None
    founded_year: Optional[int] = Field(default=None, alias="foundedYear")
    employee_range: Optional[str] = Field(default=None, alias="employeeRange")
    linkedin_url: Optional[str] = Field(default=None, alias="linkedinUrl")

    @field_validator("description", mode="before")
    @classmethod
    def clean_description(cls, v: Any) -> Optional[str]:
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
    def validate_founded_year(cls, v: Any) -> Optional[int]:
        """Reject non-numeric and implausible years."""
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        year = int(v)
        if year < 1800 or year > date.today().year:
            return None
        return year

    @field_validator("employee_range", mode="before")
    @classmethod
    def validate_employee_range(cls, v: Any) -> Optional[str]:
        return v if v in EMPLOYEE_RANGES else None

    def as_graph_fields(self) -> dict:
        """Property names as stored on the Company node."""
        return {
            "description": self.description,
            "website": self.website,
            "foundedYear": self.founded_year,
            "employeeRange": self.employee_range,
            "linkedinUrl": self.linkedin_url,
        }


class FundingExtractionResponse(BaseModel):
    """JSON object returned by the completion service for one funding event."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_funding_article: bool = Field(
        default=False,
        alias="isFundingArticle",
        description="False for roundups, IPOs, acquisitions, fund closes",
    )
    company_name: Optional[str] = Field(default=None, alias="companyName")
    amount: Optional[float] = Field(default=None, description="Raw number in the stated currency")
    currency: str = "USD"
    stage: Optional[str] = None
    investors: List[str] = Field(default_factory=list)
    lead_investor: Optional[str] = Field(default=None, alias="leadInvestor")
    country: Optional[str] = None
    confidence: float = Field(default=0.5, description="0.0-1.0")
    company_meta: Optional[CompanyMeta] = Field(default=None, alias="companyMeta")

    @field_validator("is_funding_article", mode="before")
    @classmethod
    def coerce_flag(cls, v: Any) -> bool:
        return v is True

    @field_validator("company_name", "stage", "lead_investor", "country", mode="before")
    @classmethod
    def clean_optional_text(cls, v: Any) -> Optional[str]:
        v = _blank_to_none(v)
        return v.strip() if isinstance(v, str) else None

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Optional[float]:
        """Only plain numbers count; "$10M" strings are rejected."""
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        return float(v) if v > 0 else None

    @field_validator("currency", mode="before")
    @classmethod
    def normalize_currency(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            return "USD"
        return v.strip().upper()

    @field_validator("investors", mode="before")
    @classmethod
    def clean_investors(cls, v: Any) -> List[str]:
        """Keep named investors only, in order, without duplicates."""
        if not isinstance(v, list):
            return []
        seen = set()
        cleaned = []
        for item in v:
            if not isinstance(item, str):
                continue
            name = item.strip()
            if not name or name.lower() in INVESTOR_PLACEHOLDERS:
                continue
            if name.lower() in seen:
                continue
            seen.add(name.lower())
            cleaned.append(name)
        return cleaned

    @field_validator("confidence", mode="before")
    @classmethod
    def validate_confidence(cls, v: Any) -> float:
        """Default to 0.5 when missing and clamp into [0, 1]."""
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return 0.5
        return max(0.0, min(1.0, float(v)))

    @field_validator("company_meta", mode="before")
    @classmethod
    def drop_malformed_meta(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None


@dataclass
class RawExtraction:
    """One extraction result, from the regex extractor or the LLM merger."""
    company_name: str
    amount: Optional[float] = None
    currency: str = "USD"
    amount_usd: Optional[float] = None
    stage: Optional[str] = None
    investors: List[str] = field(default_factory=list)
    lead_investor: Optional[str] = None
    country: Optional[str] = None
    confidence: float = 0.5
    raw_excerpt: Optional[str] = None
    signals: List[str] = field(default_factory=list)
    source_article_id: Optional[str] = None
    company_meta: Optional[CompanyMeta] = None

    @property
    def all_investors(self) -> List[str]:
        """Participants plus the lead, first spelling wins."""
        names = list(self.investors)
        if self.lead_investor and self.lead_investor.lower() not in {n.lower() for n in names}:
            names.append(self.lead_investor)
        return names

    def to_dict(self) -> dict:
        return {
            "companyName": self.company_name,
            "amount": self.amount,
            "currency": self.currency,
            "amountUsd": self.amount_usd,
            "stage": self.stage,
            "investors": list(self.investors),
            "leadInvestor": self.lead_investor,
            "country": self.country,
            "confidence": self.confidence,
            "rawExcerpt": self.raw_excerpt,
            "signals": list(self.signals),
            "companyMeta": self.company_meta.as_graph_fields() if self.company_meta else None,
        }
