"""Unit tests for the literature gateway (PubMed and iCite clients mocked)."""

import json
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from evidence_scout.data_sources.base_client import DataSourceError
from evidence_scout.data_sources.icite import ICiteClient
from evidence_scout.data_sources.pubmed import PubMedClient
from evidence_scout.errors import ArticleNotFound, LiteratureGatewayError
from evidence_scout.models.model_article import ICiteMetrics
from evidence_scout.models.model_query import Question, Strategy
from evidence_scout.services.literature import LiteratureGateway

TODAY = date(2024, 1, 1)


@pytest.fixture
def pubmed():
    client = MagicMock()
    client.search = AsyncMock(return_value=[])
    client.fetch_articles = AsyncMock(return_value=[])
    client.get_article = AsyncMock(return_value=None)
    client.close = AsyncMock()
    return client


@pytest.fixture
def icite():
    client = MagicMock()
    client.get_metrics = AsyncMock(return_value={})
    client.close = AsyncMock()
    return client


def _html_session() -> AsyncMock:
    """Session whose GET answers 200 with an HTML error page instead of JSON."""
    resp = AsyncMock()
    resp.status = 200
    resp.headers = {}
    resp.text = AsyncMock(return_value="<html>Service Unavailable</html>")
    resp.json = AsyncMock(
        side_effect=json.JSONDecodeError("Expecting value", "<html>", 0)
    )
    session = AsyncMock()
    session.get = AsyncMock(return_value=resp)
    return session


class TestEffectiveQuery:
    """Which text is sent to ESearch."""

    def test_uses_question_text_without_ai(self):
        question = Question.build("diabetes treatment", use_ai=False, max_results=5)
        strategy = Strategy(strategy='"Diabetes Mellitus"[Mesh]')

        assert LiteratureGateway.effective_query(question, strategy) == "diabetes treatment"

    def test_falls_back_on_empty_strategy(self):
        question = Question.build("diabetes treatment")

        assert LiteratureGateway.effective_query(question, Strategy(strategy="  ")) == (
            "diabetes treatment"
        )
        assert LiteratureGateway.effective_query(question, None) == "diabetes treatment"
        assert LiteratureGateway.effective_query(
            question, Strategy(strategy='"Diabetes Mellitus"[Mesh]')
        ) == '"Diabetes Mellitus"[Mesh]'


@pytest.mark.asyncio
class TestSearch:
    """Tests for search: ESearch, EFetch, dedupe, ranking and iCite enrichment."""

    async def test_empty_result_is_not_an_error(self, pubmed):
        gateway = LiteratureGateway(pubmed)

        result = await gateway.search(Question.build("rare disease"), today=TODAY)

        assert result.articles == []
        assert result.query == "rare disease"
        pubmed.fetch_articles.assert_not_awaited()

    async def test_sends_strategy_and_max_results(self, pubmed, sample_articles):
        pubmed.search.return_value = ["11111", "22222", "33333"]
        pubmed.fetch_articles.return_value = sample_articles
        gateway = LiteratureGateway(pubmed)
        question = Question.build("Is metformin effective for PCOS?", max_results=3)

        result = await gateway.search(
            question, Strategy(strategy="(metformin) AND (pcos)"), today=TODAY
        )

        pubmed.search.assert_awaited_once_with("(metformin) AND (pcos)", 3)
        pubmed.fetch_articles.assert_awaited_once_with(["11111", "22222", "33333"])
        assert result.query == "(metformin) AND (pcos)"
        assert {a.pmid for a in result.articles} == {"11111", "22222", "33333"}
        assert all(a.priority_score is not None for a in result.articles)

    async def test_dedupes_pmids(self, pubmed, make_article):
        pubmed.search.return_value = ["1", "2"]
        pubmed.fetch_articles.return_value = [
            make_article("1"),
            make_article("2"),
            make_article("1"),
        ]

        result = await LiteratureGateway(pubmed).search(Question.build("q text"), today=TODAY)

        assert sorted(a.pmid for a in result.articles) == ["1", "2"]

    async def test_attaches_icite_metrics(self, pubmed, icite, sample_articles):
        pubmed.search.return_value = ["11111", "22222", "33333"]
        pubmed.fetch_articles.return_value = sample_articles
        icite.get_metrics.return_value = {
            "22222": ICiteMetrics(relative_citation_ratio=2.5, citation_count=40)
        }

        result = await LiteratureGateway(pubmed, icite).search(
            Question.build("metformin"), today=TODAY
        )

        by_pmid = {a.pmid: a for a in result.articles}
        assert by_pmid["22222"].icite_metrics.citation_count == 40
        assert by_pmid["11111"].icite_metrics is None


@pytest.mark.asyncio
class TestSearchFailures:
    """Upstream faults: PubMed failures surface, iCite failures degrade."""

    async def test_icite_failure_does_not_fail_search(self, pubmed, icite, sample_articles):
        pubmed.search.return_value = ["11111", "22222", "33333"]
        pubmed.fetch_articles.return_value = sample_articles
        icite.get_metrics.side_effect = DataSourceError("icite", "HTTP 503", status_code=503)

        result = await LiteratureGateway(pubmed, icite).search(
            Question.build("metformin"), today=TODAY
        )

        assert len(result.articles) == 3
        assert all(a.icite_metrics is None for a in result.articles)

    async def test_icite_non_json_body_does_not_fail_search(self, pubmed, sample_articles):
        """iCite answering 200 with an HTML page still yields the articles, unenriched."""
        pubmed.search.return_value = ["11111", "22222", "33333"]
        pubmed.fetch_articles.return_value = sample_articles
        icite = ICiteClient(max_retries=0)

        with patch.object(
            icite, "_get_session", new_callable=AsyncMock, return_value=_html_session()
        ):
            result = await LiteratureGateway(pubmed, icite).search(
                Question.build("metformin"), today=TODAY
            )

        assert len(result.articles) == 3
        assert all(a.icite_metrics is None for a in result.articles)

    async def test_pubmed_non_json_body_becomes_gateway_error(self):
        """ESearch answering 200 with an HTML page is a gateway error, not a crash."""
        client = PubMedClient(max_retries=0)

        with patch.object(
            client, "_get_session", new_callable=AsyncMock, return_value=_html_session()
        ):
            with pytest.raises(LiteratureGatewayError, match="Malformed response") as exc_info:
                await LiteratureGateway(client).search(Question.build("metformin"))

        assert exc_info.value.http_status == 502
        assert exc_info.value.code == "literature_gateway_error"

    async def test_upstream_error_becomes_gateway_error(self, pubmed):
        pubmed.search.side_effect = DataSourceError(
            "pubmed", "HTTP 502: bad gateway", status_code=502
        )

        with pytest.raises(LiteratureGatewayError) as exc_info:
            await LiteratureGateway(pubmed).search(Question.build("metformin"))

        assert exc_info.value.status == 502
        assert exc_info.value.http_status == 502

    async def test_malformed_xml_becomes_gateway_error(self, pubmed):
        pubmed.search.return_value = ["1"]
        pubmed.fetch_articles.side_effect = DataSourceError(
            "pubmed", "Failed to parse XML: junk"
        )

        with pytest.raises(LiteratureGatewayError, match="Failed to parse XML"):
            await LiteratureGateway(pubmed).search(Question.build("metformin"))


@pytest.mark.asyncio
class TestGetArticle:
    """Tests for single-article lookup by PMID."""

    async def test_returns_enriched_article(self, pubmed, icite, make_article):
        pubmed.get_article.return_value = make_article("12345")
        icite.get_metrics.return_value = {"12345": ICiteMetrics(citation_count=3)}

        article = await LiteratureGateway(pubmed, icite).get_article(" 12345 ")

        pubmed.get_article.assert_awaited_once_with("12345")
        assert article.icite_metrics.citation_count == 3

    @pytest.mark.parametrize("pmid", ["abc", "", "12a"])
    async def test_rejects_non_numeric_pmid(self, pubmed, pmid):
        with pytest.raises(ArticleNotFound):
            await LiteratureGateway(pubmed).get_article(pmid)
        pubmed.get_article.assert_not_awaited()

    async def test_unknown_pmid(self, pubmed):
        with pytest.raises(ArticleNotFound):
            await LiteratureGateway(pubmed).get_article("99999999")

    async def test_upstream_400_is_not_found(self, pubmed):
        pubmed.get_article.side_effect = DataSourceError("pubmed", "HTTP 400", status_code=400)

        with pytest.raises(ArticleNotFound):
            await LiteratureGateway(pubmed).get_article("1")

    async def test_close_closes_both_clients(self, pubmed, icite):
        await LiteratureGateway(pubmed, icite).close()

        pubmed.close.assert_awaited_once()
        icite.close.assert_awaited_once()
