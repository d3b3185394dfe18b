"""Literature gateway: question + strategy → prioritized, enriched PubMed articles."""

import logging
from dataclasses import dataclass, field
from datetime import date

from evidence_scout.config import Settings
from evidence_scout.data_sources.base_client import DataSourceError
from evidence_scout.data_sources.icite import ICiteClient
from evidence_scout.data_sources.pubmed import PubMedClient
from evidence_scout.errors import ArticleNotFound, LiteratureGatewayError
from evidence_scout.models.model_article import Article
from evidence_scout.models.model_query import Question, Strategy
from evidence_scout.services.priority import prioritize

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    articles: list[Article] = field(default_factory=list)
    query: str = ""  # the query actually sent to ESearch


class LiteratureGateway:
    def __init__(self, pubmed: PubMedClient, icite: ICiteClient | None = None):
        self.pubmed = pubmed
        self.icite = icite

    @classmethod
    def from_settings(cls, settings: Settings) -> "LiteratureGateway":
        pubmed = PubMedClient(
            settings.pubmed_base_url,
            settings.ncbi_api_key,
            max_retries=settings.pubmed_max_retries,
            timeout=settings.pubmed_timeout,
        )
        icite = (
            ICiteClient(settings.icite_base_url, timeout=settings.pubmed_timeout)
            if settings.icite_enabled
            else None
        )
        return cls(pubmed, icite)

    @staticmethod
    def effective_query(question: Question, strategy: Strategy | None) -> str:
        if not question.use_ai or strategy is None or not strategy.strategy.strip():
            return question.text
        return strategy.strategy.strip()

    async def search(
        self,
        question: Question,
        strategy: Strategy | None = None,
        *,
        today: date | None = None,
    ) -> SearchResult:
        query = self.effective_query(question, strategy)
        logger.info("PubMed search max_results=%d query=%s", question.max_results, query)

        try:
            pmids = await self.pubmed.search(query, question.max_results)
            if not pmids:
                return SearchResult(articles=[], query=query)
            articles = await self.pubmed.fetch_articles(pmids)
        except DataSourceError as e:
            raise LiteratureGatewayError(str(e), status=e.status_code) from e

        articles = self._dedupe(articles)
        articles = await self._attach_icite(articles)
        return SearchResult(articles=prioritize(articles, question.text, today), query=query)

    async def get_article(self, pmid: str) -> Article:
        pmid = pmid.strip()
        if not pmid.isdigit():
            raise ArticleNotFound(pmid)
        try:
            article = await self.pubmed.get_article(pmid)
        except DataSourceError as e:
            if e.status_code in (400, 404):
                raise ArticleNotFound(pmid) from e
            raise LiteratureGatewayError(str(e), status=e.status_code) from e
        if article is None:
            raise ArticleNotFound(pmid)

        enriched = await self._attach_icite([article])
        return enriched[0]

    @staticmethod
    def _dedupe(articles: list[Article]) -> list[Article]:
        seen: set[str] = set()
        unique = []
        for article in articles:
            if article.pmid not in seen:
                seen.add(article.pmid)
                unique.append(article)
        return unique

    async def _attach_icite(self, articles: list[Article]) -> list[Article]:
        """Best effort: any failure leaves the metrics absent."""
        if self.icite is None or not articles:
            return articles
        try:
            metrics = await self.icite.get_metrics([a.pmid for a in articles])
        except DataSourceError as e:
            logger.warning("iCite enrichment skipped: %s", e)
            return articles
        return [
            a.model_copy(update={"icite_metrics": metrics[a.pmid]}) if a.pmid in metrics else a
            for a in articles
        ]

    async def close(self) -> None:
        await self.pubmed.close()
        if self.icite is not None:
            await self.icite.close()
