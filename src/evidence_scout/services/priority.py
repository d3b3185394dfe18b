"""
Heuristic priority score for retrieved articles (0-100).

Weighted sum of study-type tier, recency, journal tier, MeSH/title overlap
with the question and citation impact. Weights live in ``constants`` and are
tunable; the ordering tie-breakers are fixed: newer first, then lower PMID.
"""

import re
from datetime import date

from evidence_scout.constants import (
    HIGH_IMPACT_JOURNALS,
    PRIORITY_RECENCY_TIERS,
    PRIORITY_STUDY_TIERS,
    PRIORITY_WEIGHT_IMPACT,
    PRIORITY_WEIGHT_JOURNAL,
    PRIORITY_WEIGHT_OVERLAP,
    PRIORITY_WEIGHT_RECENCY,
    PRIORITY_WEIGHT_STUDY_TYPE,
    QUALITY_MESH_TERMS,
    QUESTION_STOPWORDS,
    TOP_TIER_JOURNALS,
)
from evidence_scout.helpers.author_helpers import strip_accents
from evidence_scout.helpers.text_helpers import parse_publication_date
from evidence_scout.models.model_article import Article

_WORD_RE = re.compile(r"[a-z0-9][a-z0-9\-]+")


def question_terms(text: str) -> set[str]:
    """Content words (>3 chars, no stopwords) of a question, lower-cased."""
    words = _WORD_RE.findall(strip_accents(text).lower())
    return {w for w in words if len(w) > 3 and w not in QUESTION_STOPWORDS}


def study_type_fraction(article: Article) -> float:
    haystack = " ".join([article.title, *article.publication_types]).lower()
    for keywords, fraction in PRIORITY_STUDY_TIERS:
        if any(keyword in haystack for keyword in keywords):
            return fraction
    return 0.0


def recency_fraction(article: Article, today: date) -> float:
    published = parse_publication_date(article.publication_date)
    if published is None:
        return 0.0
    age_years = (today - published).days / 365.25
    for max_age, fraction in PRIORITY_RECENCY_TIERS:
        if age_years <= max_age:
            return fraction
    return 0.0


def journal_fraction(article: Article) -> float:
    journal = (article.source or "").lower().rstrip(".").strip()
    if not journal:
        return 0.0
    if journal in TOP_TIER_JOURNALS:
        return 1.0
    if journal in HIGH_IMPACT_JOURNALS:
        return 0.5
    return 0.0


def overlap_fraction(article: Article, terms: set[str]) -> float:
    """Share of question terms found in MeSH headings or the title.

    Quality-indicator MeSH headings add a small bonus on top.
    """
    mesh = [m.lower() for m in article.mesh_terms]
    bonus = min(0.2, 0.05 * sum(1 for m in mesh if m in QUALITY_MESH_TERMS))
    if not terms:
        return bonus

    mesh_text = strip_accents(" ".join(mesh))
    title_text = strip_accents(article.title.lower())
    hits = 0.0
    for term in terms:
        if term in mesh_text:
            hits += 1.0
        elif term in title_text:
            hits += 0.75
    return min(1.0, hits / len(terms) + bonus)


def impact_fraction(article: Article) -> float:
    metrics = article.icite_metrics
    if metrics is None:
        return 0.0
    if metrics.relative_citation_ratio is not None:
        rcr = metrics.relative_citation_ratio
        if rcr >= 2.0:
            return 1.0
        if rcr >= 1.0:
            return 0.6
        if rcr > 0:
            return 0.3
    if metrics.nih_percentile is not None:
        return max(0.0, min(1.0, metrics.nih_percentile / 100))
    return 0.0


def priority_score(article: Article, terms: set[str], today: date | None = None) -> float:
    today = today or date.today()
    score = (
        PRIORITY_WEIGHT_STUDY_TYPE * study_type_fraction(article)
        + PRIORITY_WEIGHT_RECENCY * recency_fraction(article, today)
        + PRIORITY_WEIGHT_JOURNAL * journal_fraction(article)
        + PRIORITY_WEIGHT_OVERLAP * overlap_fraction(article, terms)
        + PRIORITY_WEIGHT_IMPACT * impact_fraction(article)
    )
    return round(max(0.0, min(100.0, score)), 2)


def _pmid_key(pmid: str) -> tuple[int, str]:
    return (int(pmid), pmid) if pmid.isdigit() else (2**63, pmid)


def sort_key(article: Article) -> tuple:
    """Score desc, publication date desc, PMID asc."""
    published = parse_publication_date(article.publication_date) or date.min
    return (-(article.priority_score or 0.0), -published.toordinal(), _pmid_key(article.pmid))


def prioritize(articles: list[Article], question_text: str, today: date | None = None) -> list[Article]:
    """Score every article and return them in priority order."""
    terms = question_terms(question_text)
    scored = [
        article.model_copy(update={"priority_score": priority_score(article, terms, today)})
        for article in articles
    ]
    return sorted(scored, key=sort_key)
