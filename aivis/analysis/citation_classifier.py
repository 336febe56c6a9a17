"""Citation Classifier.

Buckets a cited URL into one of three origins relative to a brand:
  - brand:  the URL's host is the brand's own domain (netflix.com, www.hdfcbank.in)
  - social: the host belongs to a social platform (twitter.com, youtube.com, ...)
  - earned: everything else (reviews, press, marketplaces, unparseable input)

Classification is purely lexical and never raises.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from urllib.parse import urlparse

from aivis.analysis.types import BrandMention, Citation, CitationMetrics, CitationType
from aivis.core.config import Settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

# Sentence punctuation LLMs glue onto URLs: "see https://x.com/a)."
_TRAILING_PUNCT_PATTERN = re.compile(r"[)\]\\.,;!?]+$")

# Host fallback for URLs urlparse can't make sense of (no scheme, stray chars)
_HOST_FALLBACK_PATTERN = re.compile(r"(?:https?://)?(?:www\.)?([^/\\)]+)")

_NON_ALNUM_PATTERN = re.compile(r"[^a-z0-9]")

DEFAULT_SOCIAL_DOMAINS: tuple[str, ...] = (
    "twitter.com",
    "linkedin.com",
    "facebook.com",
    "instagram.com",
    "youtube.com",
)

DEFAULT_BRAND_TLDS: tuple[str, ...] = (".com", ".io", ".ai", ".in")


@dataclass(frozen=True)
class ClassificationRules:
    """Immutable classification configuration injected into every caller."""

    social_domains: tuple[str, ...] = DEFAULT_SOCIAL_DOMAINS
    brand_tlds: tuple[str, ...] = DEFAULT_BRAND_TLDS

    @classmethod
    def from_settings(cls, settings: Settings) -> ClassificationRules:
        return cls(
            social_domains=tuple(settings.social_domain_list) or DEFAULT_SOCIAL_DOMAINS,
            brand_tlds=tuple(settings.brand_tld_list),
        )

    def brand_hosts(self, core: str) -> frozenset[str]:
        """Hostnames treated as the brand's own: {core, www.core} x (tlds + bare)."""
        if not core:
            return frozenset()
        suffixes = (*self.brand_tlds, "")
        return frozenset(prefix + core + suffix for prefix in ("", "www.") for suffix in suffixes)


DEFAULT_RULES = ClassificationRules()


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


def clean_url(url: str) -> str:
    """Strip trailing sentence punctuation from a URL."""
    return _TRAILING_PUNCT_PATTERN.sub("", (url or "").strip())


def brand_core_name(brand_name: str) -> str:
    """Collapse a brand name to its domain-like root token.

    "HDFC Bank Freedom Credit Card" -> "hdfcbank", "Netflix" -> "netflix".
    """
    tokens = (brand_name or "").lower().split()
    return _NON_ALNUM_PATTERN.sub("", "".join(tokens[:2]))


def extract_hostname(url: str) -> str:
    """Lowercased hostname of an already-cleaned URL, or "" if none can be found."""
    host = ""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        host = ""

    if not host:
        match = _HOST_FALLBACK_PATTERN.match(url.lower())
        if match:
            host = _TRAILING_PUNCT_PATTERN.sub("", match.group(1))

    return host.strip().lower()


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def classify_citation(
    url: str,
    brand_name: str,
    rules: ClassificationRules = DEFAULT_RULES,
) -> CitationType:
    """Classify a cited URL as brand / social / earned for the given brand.

    Depends only on ``url`` and ``brand_name``; anything that does not clearly
    match the brand's own domain or a social platform is ``earned``.
    """
    host = extract_hostname(clean_url(url))
    if not host:
        return CitationType.EARNED

    if host in rules.brand_hosts(brand_core_name(brand_name)):
        return CitationType.BRAND

    if any(social in host for social in rules.social_domains):
        return CitationType.SOCIAL

    return CitationType.EARNED


@dataclass
class MentionReclassification:
    """Result of reclassifying one BrandMention's citations."""

    mention: BrandMention
    types_changed: int = 0  # citations whose stored type differed
    urls_cleaned: int = 0  # citations whose stored URL had trailing punctuation removed
    metrics_changed: bool = False  # stored citation_metrics differed from the recount
    before: CitationMetrics | None = None  # counts of the stored citation types

    @property
    def changed(self) -> bool:
        return self.types_changed > 0 or self.urls_cleaned > 0 or self.metrics_changed


def reclassify_mention(
    mention: BrandMention,
    rules: ClassificationRules = DEFAULT_RULES,
    fix_urls: bool = False,
) -> MentionReclassification:
    """Reclassify every citation of a mention and recount its citation_metrics.

    Returns a new BrandMention; the input is left untouched. With ``fix_urls``
    stored URLs are also rewritten to their punctuation-free form.
    """
    before = CitationMetrics.from_citations(mention.citations)

    citations: list[Citation] = []
    types_changed = 0
    urls_cleaned = 0
    for citation in mention.citations:
        new_type = classify_citation(citation.url, mention.brand_name, rules)
        url = citation.url
        if fix_urls:
            cleaned = clean_url(url)
            if cleaned != url:
                urls_cleaned += 1
                url = cleaned
        if citation.type != new_type:
            types_changed += 1
            logger.debug(
                "%s: %s (%s -> %s)",
                mention.brand_name,
                citation.url,
                citation.type.value if citation.type else "none",
                new_type.value,
            )
        citations.append(replace(citation, url=url, type=new_type))

    metrics = CitationMetrics.from_citations(citations)

    return MentionReclassification(
        mention=replace(mention, citations=citations, citation_metrics=metrics),
        types_changed=types_changed,
        urls_cleaned=urls_cleaned,
        metrics_changed=metrics != mention.citation_metrics,
        before=before,
    )


def citation_breakdown(brand: int, earned: int, social: int) -> dict[str, dict[str, float]]:
    """Counts and percentages (1 decimal) of each citation type."""
    total = brand + earned + social

    def _pct(n: int) -> float:
        return round(n / total * 100.0, 1) if total > 0 else 0.0

    return {
        "brand": {"count": brand, "percent": _pct(brand)},
        "earned": {"count": earned, "percent": _pct(earned)},
        "social": {"count": social, "percent": _pct(social)},
    }
