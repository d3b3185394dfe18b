"""
Typed operations over the LLM provider: strategy, analyze_one, synthesize.

Every provider call is submitted to the shared RateLimitedExecutor and
bounded by the LLM request timeout.
"""

import asyncio
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Awaitable, Callable

import anthropic

from evidence_scout.config import Settings
from evidence_scout.constants import DEFAULT_LLM_TIMEOUT
from evidence_scout.data_sources.batch_analysis import BatchAnalysisClient
from evidence_scout.errors import LLMGatewayError, UpstreamRateLimited
from evidence_scout.models.model_article import Article
from evidence_scout.models.model_query import Question, Strategy
from evidence_scout.services.card import ensure_envelope
from evidence_scout.services.executor import RateLimitedExecutor
from evidence_scout.services.llm import query_llm
from evidence_scout.services.strategy import (
    extract_metrics,
    extract_strategy,
    normalize_strategy,
    render_enhanced,
)

logger = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).parent.parent / "prompts"

# extra attempts on dropped connections; these never touch the 429 counter
_CONNECTION_RETRIES = 1

CompleteFn = Callable[..., Awaitable[str]]


@lru_cache
def load_prompt(name: str) -> str:
    return (_PROMPTS_DIR / f"{name}.txt").read_text(encoding="utf-8")


def format_authors(article: Article, limit: int = 6) -> str:
    names = [a.name for a in article.authors[:limit]]
    if len(article.authors) > limit:
        names.append("et al.")
    return ", ".join(names) or "No disponible"


class LLMGateway:
    def __init__(
        self,
        executor: RateLimitedExecutor,
        *,
        timeout: float = DEFAULT_LLM_TIMEOUT,
        batch_client: BatchAnalysisClient | None = None,
        complete: CompleteFn = query_llm,
    ):
        self.executor = executor
        self.timeout = timeout
        self.batch_client = batch_client
        self._complete = complete

    @classmethod
    def from_settings(cls, settings: Settings, executor: RateLimitedExecutor) -> "LLMGateway":
        batch_client = (
            BatchAnalysisClient(settings.analysis_batch_url, timeout=settings.llm_timeout)
            if settings.analysis_batch_url
            else None
        )
        return cls(executor, timeout=settings.llm_timeout, batch_client=batch_client)

    # -- Operations ------------------------------------------------------------

    async def strategy(self, question: Question | str) -> Strategy:
        """Ask for a PubMed strategy; the bare query plus the full rationale."""
        text = question.text if isinstance(question, Question) else question
        prompt = load_prompt("strategy").format(question=text)
        response = await self._call(prompt, load_prompt("strategy_system"), "strategy")

        query = normalize_strategy(extract_strategy(response))
        if not query:
            raise LLMGatewayError("LLM response did not contain a search strategy")
        metrics = extract_metrics(response)
        return Strategy(
            strategy=query,
            full_response=response,
            enhanced_response=render_enhanced(query, metrics),
            metrics=metrics,
        )

    async def analyze_one(self, article: Article, question: str) -> str:
        """Critical appraisal of one article as a card envelope."""
        prompt = load_prompt("analyze").format(
            question=question,
            pmid=article.pmid,
            title=article.title or "Sin título",
            authors=format_authors(article),
            source=article.source or "No disponible",
            publication_date=article.publication_date or "No disponible",
            publication_types=", ".join(article.publication_types) or "No disponible",
            abstract=article.abstract or "No disponible",
        )
        response = await self._call(prompt, load_prompt("analyze_system"), "analyze")
        if not response.strip():
            raise LLMGatewayError(f"Empty analysis for PMID {article.pmid}")
        return ensure_envelope(response)

    async def synthesize(self, question: str, records: list[dict[str, Any]]) -> str:
        """One synthesis turn over pre-truncated article records."""
        prompt = load_prompt("synthesis").format(
            question=question,
            count=len(records),
            records="\n\n".join(self._format_record(i, r) for i, r in enumerate(records, 1)),
        )
        response = await self._call(prompt, load_prompt("synthesis_system"), "synthesize")
        if not response.strip():
            raise LLMGatewayError("Empty synthesis response")
        return response.strip()

    # -- Batch -----------------------------------------------------------------

    async def supports_batch(self) -> bool:
        if self.batch_client is None:
            return False
        return await self.batch_client.supports_batch()

    async def analyze_batch(
        self, articles: list[Article], question: str
    ) -> list[dict[str, Any]]:
        """Single remote batch submission; results are expected aligned by index."""
        if self.batch_client is None:
            raise LLMGatewayError("No batch analysis endpoint configured")
        payload = [a.to_wire() for a in articles]

        async def attempt() -> list[dict[str, Any]]:
            return await self.batch_client.analyze_batch(payload, question)

        return await asyncio.wait_for(
            self.executor.submit(attempt, retry_on_429=True),
            timeout=self.timeout * max(1, len(articles)),
        )

    # -- Internals -------------------------------------------------------------

    @staticmethod
    def _format_record(position: int, record: dict[str, Any]) -> str:
        return (
            f"[{position}] PMID: {record['pmid']}\n"
            f"Título: {record['title']}\n"
            f"Autores: {record['authors']}\n"
            f"Fecha: {record['date']}\n"
            f"Resumen: {record['abstract']}\n"
            f"Análisis: {record['analysis']}"
        )

    async def _call(self, prompt: str, system: str, operation: str) -> str:
        async def attempt() -> str:
            return await self._invoke(prompt, system, operation)

        try:
            return await asyncio.wait_for(
                self.executor.submit(attempt, retry_on_429=True), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            if self.executor.is_throttling:
                raise UpstreamRateLimited(
                    f"{operation} timed out after {self.timeout:.0f}s while upstream was rate limiting"
                ) from e
            raise LLMGatewayError(f"{operation} timed out after {self.timeout:.0f}s") from e

    async def _invoke(self, prompt: str, system: str, operation: str) -> str:
        for attempt in range(_CONNECTION_RETRIES + 1):
            try:
                return await self._complete(prompt, system)
            except anthropic.RateLimitError as e:
                raise UpstreamRateLimited(f"{operation}: provider rate limit") from e
            except anthropic.APITimeoutError as e:
                raise LLMGatewayError(f"{operation}: provider timeout") from e
            except anthropic.APIConnectionError as e:
                if attempt < _CONNECTION_RETRIES:
                    logger.warning("%s: connection error, retrying: %s", operation, e)
                    continue
                raise LLMGatewayError(f"{operation}: connection error: {e}") from e
            except anthropic.APIStatusError as e:
                raise LLMGatewayError(
                    f"{operation}: provider error {e.status_code}", status=e.status_code
                ) from e
        raise LLMGatewayError(f"{operation}: no response")
