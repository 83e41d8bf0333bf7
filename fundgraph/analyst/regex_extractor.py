"""
Regex funding extractor with signal-weighted confidence.

Each signal adds a weight (anti-patterns subtract). The confidence is the
clamped sum. Used as a cheap per-article producer and as the fallback when
the completion service is unavailable.
"""

import html
import re
from typing import List, Optional, Tuple

from .schemas import RawExtraction
from ..config.settings import settings

_AMOUNT_UNIT = r"(?:m|mn|million|billion|b|k|mio)"

TITLE_STRONG_TRIGGERS = [
    re.compile(rf"\b(?:raises?|secures?)\s+[$€£]?[\d,.]+\s*{_AMOUNT_UNIT}", re.I),
    re.compile(r"\b(?:raises?|secures?)\s+(?:EUR|USD|GBP|CHF)\s*[\d,.]+", re.I),
    re.compile(rf"\bcloses?\s+[$€£]?[\d,.]+\s*{_AMOUNT_UNIT}\s*(?:seed|series|round|funding)", re.I),
    re.compile(r"\b(?:seed|series\s+[a-e]\+?)\s+(?:round|funding)\s+of\s+[$€£]", re.I),
    re.compile(r"\bseries\s+[a-e]\+?\b.*\braises?\b", re.I),
    re.compile(rf"\bleads?\s+[$€£]?[\d,.]+\s*{_AMOUNT_UNIT}", re.I),
]

MODERATE_TRIGGERS = [
    re.compile(r"\b(?:raises?|raised)\s", re.I),
    re.compile(r"\b(?:secures?|secured)\s", re.I),
    re.compile(r"\b(?:closes?|closed)\s.*\b(?:round|funding)\b", re.I),
    re.compile(r"\b(?:leads?|led)\s+[$€£]?\s*[\d,.]+.{0,20}\b(?:round|funding)\b", re.I),
    re.compile(r"\bfunding\s+round\b", re.I),
    re.compile(r"\binvestment\s+round\b", re.I),
]

WEAK_TRIGGERS = [
    re.compile(r"\bseries\s+[a-e]\+?\b", re.I),
    re.compile(r"\bseed\s+round\b", re.I),
    re.compile(r"\bpre[- ]?seed\b", re.I),
    re.compile(r"\bventure\s+(?:capital|funding)\b", re.I),
]

# (pattern, penalty); penalties are halved when the match is only in the body
ANTI_PATTERNS: List[Tuple[re.Pattern, float]] = [
    # Listicles and roundups
    (re.compile(r"\b\d+\s+(?:trends?|tips?|ways?|things?|reasons?|startups?|companies|deals)\b", re.I), -0.25),
    (re.compile(r"\btop\s+\d+\b", re.I), -0.20),
    (re.compile(r"\bweek(?:ly|'s|s)?\s+(?:funding|round|recap|digest|top)\b", re.I), -0.30),
    (re.compile(r"\bround[- ]?up\b", re.I), -0.30),
    (re.compile(r"\bbiggest\s+funding\s+rounds?\b", re.I), -0.25),
    (re.compile(r"\bmost\s+(?:promising|funded)\b", re.I), -0.15),
    # Market analysis
    (re.compile(r"\bmarket\s+(?:report|analysis|overview|recap)\b", re.I), -0.20),
    (re.compile(r"\bfunding\s+(?:landscape|trends?|recap|report|review|overview)\b", re.I), -0.25),
    (re.compile(r"\bstate\s+of\s+(?:vc|venture|funding|startups?)\b", re.I), -0.20),
    # Opinion and advice
    (re.compile(r"\bhow\s+to\b", re.I), -0.15),
    (re.compile(r"\binterview\b", re.I), -0.10),
    (re.compile(r"\bopinion\b", re.I), -0.15),
    # VC fund formation
    (re.compile(r"\b(?:fund|partners?|ventures?)\s+(?:closes?|raises?)\s+.*\bfund\b", re.I), -0.25),
    (re.compile(r"\bfund\s+(?:i{1,3}|iv|v|vi|[1-5])\b", re.I), -0.20),
    (re.compile(r"\braises?\s+.*\bfund\s+to\s+back\b", re.I), -0.30),
    # Events
    (re.compile(r"\bearly\s+bird\s+tickets?\b", re.I), -0.35),
    (re.compile(r"\bstartup\s+of\s+the\s+(?:week|month|year)\b", re.I), -0.25),
    # Public markets and M&A
    (re.compile(r"\bipo\b", re.I), -0.40),
    (re.compile(r"\bacquir(?:es?|ed|ing|ition)\b", re.I), -0.35),
    (re.compile(r"\bmerger\b", re.I), -0.25),
]

PROXIMITY_PATTERN = re.compile(
    r"\b[A-Z][a-zA-Z\-']{1,30}(?:\s+[A-Z][a-zA-Z\-']{1,30}){0,3}\s+"
    r"(?:raises?|secures?|closes?|bags?|lands?|nabs?|gets?|leads?)\s+"
    r"[$€£]?\s*[\d,.]+\s*(?:m|mn|million|billion|b|mio\.?|millionen?)\b",
    re.I,
)
AMOUNT_NEAR_TRIGGER = re.compile(
    r"(?:raises?|secures?|closes?|leads?|funding|round).{0,80}[$€£]\s*[\d,.]+\s*(?:m|mn|million|billion|b)\b",
    re.I,
)
COMPANY_BEFORE_TRIGGER = re.compile(
    r"\b[A-Z][a-zA-Z\-']+(?:\s+[A-Z][a-zA-Z\-']+){0,2}\s+(?:raises?|secures?|closes?|gets?|lands?|announces?|leads?)"
)

AMOUNT_PATTERNS = [
    re.compile(r"\$\s*([\d,.]+)\s*(billion|million|mn|m|b|k)\b", re.I),
    re.compile(r"(?:EUR|€)\s*([\d,.]+)\s*(billion|million|mn|m|b|k)?\b", re.I),
    re.compile(r"(?:GBP|£)\s*([\d,.]+)\s*(billion|million|mn|m|b|k)?\b", re.I),
    re.compile(r"CHF\s*([\d,.]+)\s*(billion|million|mn|m|b|k)?\b", re.I),
    re.compile(r"([\d,.]+)\s*(billion|million|mn|m|b)\s*(?:dollars?|euros?|pounds?|USD|EUR|GBP|CHF)", re.I),
    re.compile(r"([\d,.]+)\s*(mio\.?|millionen?)\s*(?:EUR|Euro|USD|Dollar|GBP)", re.I),
]

MULTIPLIERS = {
    "k": 1_000,
    "m": 1_000_000,
    "mn": 1_000_000,
    "million": 1_000_000,
    "millionen": 1_000_000,
    "mio": 1_000_000,
    "mio.": 1_000_000,
    "b": 1_000_000_000,
    "billion": 1_000_000_000,
}

REGEX_CURRENCY_TO_USD = {"USD": 1.0, "EUR": 1.08, "GBP": 1.27, "CHF": 1.12}

STAGE_PATTERNS = [
    (re.compile(r"\bpre[- ]?seed\b", re.I), "Pre-Seed"),
    (re.compile(r"\bseed\b", re.I), "Seed"),
    (re.compile(r"\bseries\s+a\+?\b", re.I), "Series A"),
    (re.compile(r"\bseries\s+b\+?\b", re.I), "Series B"),
    (re.compile(r"\bseries\s+c\+?\b", re.I), "Series C"),
    (re.compile(r"\bseries\s+d\+?\b", re.I), "Series D"),
    (re.compile(r"\bseries\s+[e-z]\+?\b", re.I), "Series E+"),
    (re.compile(r"\bbridge\s+round\b", re.I), "Bridge"),
    (re.compile(r"\bgrowth\s+(?:round|funding|equity)\b", re.I), "Growth"),
    (re.compile(r"\bdebt\s+(?:round|funding|financing)\b", re.I), "Debt"),
    (re.compile(r"\bgrant\b", re.I), "Grant"),
]

# Name lists end at a sentence/clause boundary. Commas and "and" split names.
INVESTOR_PATTERNS = [
    re.compile(r"\bled\s+by\s+([^.;]+)", re.I),
    re.compile(r"\bwith\s+participation\s+(?:from|of)\s+([^.;]+)", re.I),
    re.compile(r"\bbacked\s+by\s+([^.;]+)", re.I),
    re.compile(r"\binvestors?\s+(?:include|including)\s+([^.;]+)", re.I),
    re.compile(r"\bjoined\s+by\s+([^.;]+)", re.I),
]
_INVESTOR_SPLIT = re.compile(r",\s*(?:and\s+)?|\s+and\s+")
_INVESTOR_STOPWORDS = re.compile(
    r"\b(?:the|a|an|other|various|several|multiple|undisclosed|existing|new|additional|angel|investors)\b",
    re.I,
)
# A clause that follows the name list ("..., with participation from")
_INVESTOR_TAIL = re.compile(r"\s+(?:with|alongside|as well as|to|for)\b.*$", re.I)

COUNTRY_PATTERNS = [
    (re.compile(r"\bgerman[ys]?\b|\bberlin\b|\bmunich\b|\bhamburg\b|\bfrankfurt\b", re.I), "Germany"),
    (re.compile(r"\bfrance\b|\bfrench\b|\bparis\b|\blyon\b", re.I), "France"),
    (re.compile(r"\buk\b|\bunited\s+kingdom\b|\bbritish\b|\blondon\b|\bmanchester\b", re.I), "UK"),
    (re.compile(r"\bspain\b|\bspanish\b|\bmadrid\b|\bbarcelona\b", re.I), "Spain"),
    (re.compile(r"\bitaly\b|\bitalian\b|\bmilan\b", re.I), "Italy"),
    (re.compile(r"\bnetherlands\b|\bdutch\b|\bamsterdam\b", re.I), "Netherlands"),
    (re.compile(r"\bsweden\b|\bswedish\b|\bstockholm\b", re.I), "Sweden"),
    (re.compile(r"\bdenmark\b|\bdanish\b|\bcopenhagen\b", re.I), "Denmark"),
    (re.compile(r"\bnorway\b|\bnorwegian\b|\boslo\b", re.I), "Norway"),
    (re.compile(r"\bfinland\b|\bfinnish\b|\bhelsinki\b", re.I), "Finland"),
    (re.compile(r"\bswitzerland\b|\bswiss\b|\bzurich\b|\bgeneva\b", re.I), "Switzerland"),
    (re.compile(r"\baustria\b|\baustrian\b|\bvienna\b", re.I), "Austria"),
    (re.compile(r"\bpoland\b|\bpolish\b|\bwarsaw\b", re.I), "Poland"),
    (re.compile(r"\bireland\b|\birish\b|\bdublin\b", re.I), "Ireland"),
    (re.compile(r"\bestonia\b|\btallinn\b", re.I), "Estonia"),
    (re.compile(r"\bunited\s+states\b|\bsan\s+francisco\b|\bnew\s+york\b", re.I), "United States"),
]

_TAGS = re.compile(r"<[^>]+>")
_WS = re.compile(r"\s+")
_COMPANY_TRIGGER = re.compile(
    r"\s+(?:raises?|secures?|closes?|gets?|lands?|nabs?|bags?|announces?|receives?)\s+", re.I
)
_DESCRIPTOR_PREFIX = re.compile(
    r"^.*?\b(?:startup|fintech|healthtech|edtech|proptech|saas|company|firm|scale-?up)\s+", re.I
)
_VC_NAME = re.compile(
    r"\b(?:venture\s+partners|capital|fund\b|a16z|andreessen|sequoia|accel|greylock)", re.I
)
_EXCERPT = re.compile(r".{0,100}(?:raises?|secures?|funding|round|series).{0,100}", re.I)


def clean_text(title: str, content: str) -> str:
    text = f"{title} {html.unescape(content or '')}"
    return _WS.sub(" ", _TAGS.sub(" ", text)).strip()


def has_any_funding_signal(title: str, text: str) -> bool:
    """Cheap gate: skip articles without a single funding trigger."""
    return (
        any(p.search(title) for p in TITLE_STRONG_TRIGGERS)
        or any(p.search(text) for p in MODERATE_TRIGGERS)
        or any(p.search(text) for p in WEAK_TRIGGERS)
    )


def extract_amount(text: str) -> Optional[Tuple[float, str]]:
    """First amount in the text as (amount, ISO currency)."""
    for pattern in AMOUNT_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue

        full = match.group(0)
        currency = "USD"
        if re.search(r"€|EUR|euro", full, re.I):
            currency = "EUR"
        elif re.search(r"£|GBP|pound", full, re.I):
            currency = "GBP"
        elif re.search(r"CHF", full):
            currency = "CHF"

        try:
            number = float(match.group(1).replace(",", ""))
        except ValueError:
            continue

        unit = (match.group(2) or "").lower()
        multiplier = MULTIPLIERS.get(unit, 1)
        # A bare small number next to a currency sign is read as millions
        if multiplier == 1 and number < 1000:
            return number * 1_000_000, currency
        return number * multiplier, currency
    return None


def extract_stage(text: str) -> Optional[str]:
    for pattern, stage in STAGE_PATTERNS:
        if pattern.search(text):
            return stage
    return None


def extract_investors(text: str) -> Tuple[List[str], Optional[str]]:
    """Named investors in order of appearance; "led by" marks the lead."""
    investors: List[str] = []
    lead: Optional[str] = None

    for pattern in INVESTOR_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue

        raw = _INVESTOR_TAIL.sub("", match.group(1))
        names = []
        for part in _INVESTOR_SPLIT.split(raw):
            name = part.strip(" ,")
            if 1 < len(name) < 80 and not _INVESTOR_STOPWORDS.search(name):
                names.append(name)

        if names:
            if lead is None and match.group(0).lower().startswith("led by"):
                lead = names[0]
            for name in names:
                if name not in investors:
                    investors.append(name)

    return investors, lead


def extract_company_name(title: str) -> str:
    """Subject of the funding verb in the headline."""
    match = _COMPANY_TRIGGER.search(title)
    if match and match.start() > 0:
        name = title[:match.start()].strip()
        name = _DESCRIPTOR_PREFIX.sub("", name)
        name = re.sub(r"^.*?-based\s+", "", name, flags=re.I)
        name = re.sub(r"^(?:the|a|an)\s+", "", name, flags=re.I)
        name = re.split(r"[:|–—]", name)[-1].strip()
        if 0 < len(name) < 80:
            return name

    round_for = re.search(r"(?:round|funding|investment)\s+(?:for|in|into)\s+(.+)", title, re.I)
    if round_for:
        name = _DESCRIPTOR_PREFIX.sub("", round_for.group(1).strip())
        name = re.split(r"[,;–—|]|\s+(?:to|as|in|with|that|which)\s+", name)[0].strip()
        if 0 < len(name) < 80:
            return name

    return " ".join(title.split()[:3])


def extract_country(text: str) -> Optional[str]:
    for pattern, country in COUNTRY_PATTERNS:
        if pattern.search(text):
            return country
    return None


def score_article(
    title: str,
    text: str,
    amount: Optional[float],
    stage: Optional[str],
    investors: List[str],
    lead: Optional[str],
    country: Optional[str],
) -> Tuple[float, List[str]]:
    """Sum weighted signals; returns (confidence, fired signal names)."""
    signals: List[Tuple[str, float]] = []

    if any(p.search(title) for p in TITLE_STRONG_TRIGGERS):
        signals.append(("title_strong_trigger", 0.35))
    if any(p.search(title) for p in MODERATE_TRIGGERS):
        signals.append(("title_moderate_trigger", 0.20))
    if PROXIMITY_PATTERN.search(title):
        signals.append(("title_proximity", 0.15))
    if any(p.search(text) for p in MODERATE_TRIGGERS):
        signals.append(("body_trigger", 0.10))
    if AMOUNT_NEAR_TRIGGER.search(text):
        signals.append(("amount_near_trigger", 0.10))

    if amount is not None:
        signals.append(("has_amount", 0.10))
        if 100_000 <= amount <= 5_000_000_000:
            signals.append(("reasonable_amount", 0.05))
        if amount > 10_000_000_000:
            signals.append(("unreasonable_amount", -0.25))
    if stage:
        signals.append(("has_stage", 0.10))
    if investors:
        signals.append(("has_investors", 0.08))
    if lead:
        signals.append(("has_lead_investor", 0.04))
    if country:
        signals.append(("has_country", 0.05))
    if COMPANY_BEFORE_TRIGGER.search(title):
        signals.append(("company_before_trigger", 0.08))

    head = f"{title} {text[:500]}"
    for pattern, penalty in ANTI_PATTERNS:
        if pattern.search(title):
            signals.append((f"anti_title:{pattern.pattern[:30]}", penalty))
        elif pattern.search(head):
            signals.append((f"anti_body:{pattern.pattern[:30]}", penalty * 0.5))

    total = sum(weight for _, weight in signals)
    confidence = round(max(0.0, min(1.0, total)), 2)
    return confidence, [f"{name}({weight:+.2f})" for name, weight in signals]


def extract_with_regex(title: str, content: str) -> Optional[RawExtraction]:
    """
    Regex extraction for one article.

    Returns None below the confidence threshold, for weak articles without
    an amount, and for headlines whose subject looks like a VC firm.
    """
    text = clean_text(title, content)
    if not has_any_funding_signal(title, text):
        return None

    company_name = extract_company_name(title)
    amount_info = extract_amount(text)
    stage = extract_stage(text)
    investors, lead = extract_investors(text)
    country = extract_country(text)

    amount = amount_info[0] if amount_info else None
    confidence, signals = score_article(title, text, amount, stage, investors, lead, country)

    if confidence < settings.regex_confidence_threshold:
        return None

    strong_title = any(p.search(title) for p in TITLE_STRONG_TRIGGERS)
    if not strong_title and confidence < 0.45 and amount_info is None:
        return None

    if _VC_NAME.search(company_name) and not re.search(r"\bstartup\b", title, re.I):
        return None

    amount_usd = None
    currency = "USD"
    if amount_info:
        currency = amount_info[1]
        amount_usd = round(amount_info[0] * REGEX_CURRENCY_TO_USD.get(currency, 1.0), 2)

    excerpt = _EXCERPT.search(text)
    return RawExtraction(
        company_name=company_name,
        amount=amount,
        currency=currency,
        amount_usd=amount_usd,
        stage=stage,
        investors=investors,
        lead_investor=lead,
        country=country,
        confidence=confidence,
        raw_excerpt=excerpt.group(0).strip() if excerpt else text[:200],
        signals=signals,
    )
