from .normalizer import (
    normalize_company_key,
    normalize_stage_key,
    normalize_company_name,
    normalize_investor_name,
    UNKNOWN_STAGE,
)
from .schemas import (
    CompanyMeta,
    FundingExtractionResponse,
    FundingStage,
    RawExtraction,
)
from .merger import (
    SourceDocument,
    extract_from_sources,
    extract_funding,
    convert_to_usd,
    CURRENCY_TO_USD,
)
from .regex_extractor import extract_with_regex, has_any_funding_signal

__all__ = [
    "normalize_company_key",
    "normalize_stage_key",
    "normalize_company_name",
    "normalize_investor_name",
    "UNKNOWN_STAGE",
    "CompanyMeta",
    "FundingExtractionResponse",
    "FundingStage",
    "RawExtraction",
    "SourceDocument",
    "extract_from_sources",
    "extract_funding",
    "convert_to_usd",
    "CURRENCY_TO_USD",
    "extract_with_regex",
    "has_any_funding_signal",
]
