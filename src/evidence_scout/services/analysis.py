"""
Analysis pipeline: annotate every article with a card or an error flag.

Batch mode is tried first when a batch endpoint exists and the executor is
not throttling; any batch failure or misaligned response falls back to
sequential mode silently. Output order always equals input order.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from evidence_scout.errors import RequestCancelled
from evidence_scout.models.model_article import Article
from evidence_scout.models.model_progress import ProgressEvent, Stage
from evidence_scout.services.card import ensure_envelope
from evidence_scout.services.context import QueryContext
from evidence_scout.services.executor import RateLimitedExecutor
from evidence_scout.services.llm_gateway import LLMGateway

logger = logging.getLogger(__name__)

Emit = Callable[[ProgressEvent], Any]

MODE_BATCH = "batch"
MODE_SEQUENTIAL = "sequential"


@dataclass
class AnalysisOutcome:
    articles: list[Article] = field(default_factory=list)
    mode: str = MODE_SEQUENTIAL
    cancelled: bool = False

    @property
    def failed_count(self) -> int:
        return sum(1 for a in self.articles if a.analysis_error)


def _noop(event: ProgressEvent) -> None:
    return None


class AnalysisPipeline:
    def __init__(self, gateway: LLMGateway, executor: RateLimitedExecutor):
        self.gateway = gateway
        self.executor = executor

    async def run(
        self,
        articles: list[Article],
        question: str,
        context: QueryContext,
        emit: Emit | None = None,
    ) -> AnalysisOutcome:
        emit = emit or _noop
        try:
            if not self.executor.is_throttling and await self._batch_available():
                analyzed = await self._run_batch(articles, question, context)
                if analyzed is not None:
                    self._emit_all(articles, context, emit)
                    return AnalysisOutcome(analyzed, MODE_BATCH)
        except RequestCancelled:
            return AnalysisOutcome(list(articles), MODE_BATCH, cancelled=True)

        return await self.run_sequential(articles, question, context, emit)

    # -- Modes -----------------------------------------------------------------

    async def _batch_available(self) -> bool:
        try:
            return await self.gateway.supports_batch()
        except Exception as e:
            logger.warning("Batch availability check failed: %s", e)
            return False

    async def _run_batch(
        self, articles: list[Article], question: str, context: QueryContext
    ) -> list[Article] | None:
        try:
            results = await context.guard(self.gateway.analyze_batch(articles, question))
        except RequestCancelled:
            raise
        except Exception as e:
            logger.warning("Batch analysis failed, falling back to sequential: %s", e)
            return None

        aligned = self.align_batch(articles, results)
        if aligned is None:
            logger.warning("Batch response misaligned, falling back to sequential")
        return aligned

    async def run_sequential(
        self,
        articles: list[Article],
        question: str,
        context: QueryContext,
        emit: Emit | None = None,
    ) -> AnalysisOutcome:
        emit = emit or _noop
        total = len(articles)
        results = list(articles)

        for i, article in enumerate(articles):
            if context.cancelled:
                return AnalysisOutcome(results, MODE_SEQUENTIAL, cancelled=True)
            emit(self._event(context, i, total))
            try:
                card = await context.guard(self.gateway.analyze_one(article, question))
            except RequestCancelled:
                return AnalysisOutcome(results, MODE_SEQUENTIAL, cancelled=True)
            except Exception as e:
                logger.warning("Analysis failed for PMID %s: %s", article.pmid, e)
                results[i] = article.with_analysis_error()
            else:
                results[i] = article.with_analysis(card)

        emit(self._event(context, total, total))
        return AnalysisOutcome(results, MODE_SEQUENTIAL)

    # -- Helpers ---------------------------------------------------------------

    @staticmethod
    def align_batch(
        articles: list[Article], results: Any
    ) -> list[Article] | None:
        """Map batch results onto the submitted articles by index.

        Returns None when the length or any PMID does not line up.
        """
        if not isinstance(results, list) or len(results) != len(articles):
            return None

        aligned = []
        for article, result in zip(articles, results):
            if not isinstance(result, dict) or str(result.get("pmid")) != article.pmid:
                return None
            analysis = result.get("secondaryAnalysis")
            if result.get("analysisError") or not analysis:
                aligned.append(article.with_analysis_error())
            else:
                aligned.append(article.with_analysis(ensure_envelope(analysis)))
        return aligned

    def _emit_all(self, articles: list[Article], context: QueryContext, emit: Emit) -> None:
        total = len(articles)
        for i in range(total):
            emit(self._event(context, i, total))
        emit(self._event(context, total, total))

    @staticmethod
    def _event(context: QueryContext, index: int, total: int) -> ProgressEvent:
        return ProgressEvent(
            request_id=context.request_id, stage=Stage.ANALYZE, index=index, total=total
        )
