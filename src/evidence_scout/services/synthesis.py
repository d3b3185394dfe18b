"""
Synthesis engine: one multi-article LLM turn, citation linking and the
evidence rating.

The rating is computed from the articles, never from the synthesis text:
mean of the card star badges, else mean study-type weight found in the
analyses, else DEFAULT_EVIDENCE_RATING.
"""

import html
import logging
import math
import re
from typing import Any

from evidence_scout.constants import (
    DEFAULT_EVIDENCE_RATING,
    STUDY_TYPE_WEIGHTS,
    SYNTHESIS_ABSTRACT_CHARS,
    SYNTHESIS_ANALYSIS_CHARS,
)
from evidence_scout.errors import ValidationError
from evidence_scout.helpers.author_helpers import citation_key, strip_accents
from evidence_scout.helpers.text_helpers import extract_year, sanitize_text, truncate
from evidence_scout.models.model_article import Article
from evidence_scout.models.model_synthesis import SynthesisResult
from evidence_scout.services.card import card_stars, strip_code_fences
from evidence_scout.services.llm_gateway import LLMGateway, format_authors

logger = logging.getLogger(__name__)

CITATION_RE = re.compile(r"\(([^()]+?)\s+et\s+al\.,\s*(\d{4})\)")


def build_records(articles: list[Article]) -> list[dict[str, Any]]:
    """Truncated per-article records for the synthesis prompt."""
    return [
        {
            "pmid": a.pmid,
            "title": a.title,
            "authors": format_authors(a),
            "date": a.publication_date,
            "abstract": truncate(a.abstract, SYNTHESIS_ABSTRACT_CHARS),
            "analysis": truncate(sanitize_text(a.secondary_analysis), SYNTHESIS_ANALYSIS_CHARS),
        }
        for a in articles
    ]


def resolve_citation(last_name: str, year: int, articles: list[Article]) -> str | None:
    """PMID of the first article with an author of that last name and that year."""
    # the citation carries only the surname, which may span several words
    key = strip_accents(last_name.strip()).casefold()
    for article in articles:
        if extract_year(article.publication_date) != year:
            continue
        if any(citation_key(author.name) == key for author in article.authors):
            return article.pmid
    return None


def link_citations(synthesis_html: str, articles: list[Article]) -> tuple[str, list[str]]:
    """Wrap resolvable ``(Lastname et al., YYYY)`` citations in citation spans.

    Returns the new HTML and the referenced PMIDs in first-citation order.
    Unresolved citations stay as plain text.
    """
    referenced: list[str] = []

    def replace(match: re.Match) -> str:
        pmid = resolve_citation(match.group(1).strip(), int(match.group(2)), articles)
        if pmid is None:
            logger.debug("Unresolved citation %s", match.group(0))
            return match.group(0)
        if pmid not in referenced:
            referenced.append(pmid)
        return (
            f'<span class="citation" data-pmid="{html.escape(pmid)}">'
            f"{match.group(0)}</span>"
        )

    return CITATION_RE.sub(replace, synthesis_html), referenced


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp_rating(value: float) -> int:
    return max(1, min(5, _round_half_up(value)))


def study_type_weight(text: str) -> float | None:
    haystack = strip_accents(text).lower()
    for keywords, weight in STUDY_TYPE_WEIGHTS:
        if any(keyword in haystack for keyword in keywords):
            return weight
    return None


def evidence_rating(articles: list[Article]) -> int:
    stars = [s for s in (card_stars(a.secondary_analysis) for a in articles) if s is not None]
    if stars:
        return _clamp_rating(sum(stars) / len(stars))

    weights = []
    for article in articles:
        if not article.secondary_analysis:
            continue
        weight = study_type_weight(sanitize_text(article.secondary_analysis))
        if weight is not None:
            weights.append(weight)
    if weights:
        return _clamp_rating(sum(weights) / len(weights))

    return DEFAULT_EVIDENCE_RATING


class SynthesisEngine:
    def __init__(self, gateway: LLMGateway):
        self.gateway = gateway

    async def synthesize(self, question: str, articles: list[Article]) -> SynthesisResult:
        if not articles:
            raise ValidationError("At least one article is required for a synthesis")

        raw = await self.gateway.synthesize(question, build_records(articles))
        linked, referenced = link_citations(strip_code_fences(raw), articles)
        rating = evidence_rating(articles)
        logger.info(
            "Synthesis over %d articles: rating=%d referenced=%d",
            len(articles),
            rating,
            len(referenced),
        )
        return SynthesisResult(html=linked, evidence_rating=rating, referenced=referenced)
