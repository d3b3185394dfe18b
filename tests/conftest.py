"""Pytest configuration and fixtures."""

import pytest

from evidence_scout.models.model_article import Article
from evidence_scout.services.card import render_card
from evidence_scout.services.executor import ExecutorConfig, RateLimitedExecutor


def _article(pmid: str, **overrides) -> Article:
    fields = {
        "pmid": pmid,
        "title": f"Article {pmid}",
        "abstract": f"Abstract of article {pmid}.",
        "authors": [{"name": "Smith J"}, {"name": "Doe A"}],
        "publication_date": "2020-05-01",
        "source": "Test Journal",
    }
    fields.update(overrides)
    return Article(**fields)


def _card(stars: int, study_type: str = "Ensayo clínico aleatorizado") -> str:
    return render_card(
        [("RESUMEN CLÍNICO", "<p>Resultados consistentes.</p>")],
        stars=stars,
        study_type=study_type,
    )


@pytest.fixture
def make_article():
    """Factory for Articles with sensible defaults."""
    return _article


@pytest.fixture
def make_card():
    """Factory for card envelopes with a given star count."""
    return _card


@pytest.fixture
def fast_executor() -> RateLimitedExecutor:
    """Executor with no pacing so tests never sleep."""
    return RateLimitedExecutor(
        ExecutorConfig(max_concurrent=2, base_delay=0.0, recovery_time=0.0)
    )


@pytest.fixture
def sample_articles() -> list[Article]:
    return [
        _article("11111", authors=[{"name": "Smith J"}], publication_date="2019-03-01"),
        _article("22222", authors=[{"name": "García-López M"}], publication_date="2021"),
        _article("33333", authors=[{"name": "Chen L"}], publication_date="2022-07-15"),
    ]
