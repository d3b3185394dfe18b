"""Request bodies for the HTTP API (camelCase on the wire)."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from evidence_scout.models.model_article import Article


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScientificQueryRequest(_Body):
    question: str | None = None
    use_ai: bool = Field(default=True, alias="useAI")
    max_results: int | None = None
    search_strategy: str | None = None
    request_id: str | None = None


class SearchRequest(_Body):
    query: str | None = None
    search_strategy: str | None = None
    max_results: int | None = None


class StrategyRequest(_Body):
    prompt: str | None = None


class AnalyzeRequest(_Body):
    article: Article
    clinical_question: str | None = None


class AnalyzeByPmidRequest(_Body):
    pmid: str | None = None
    question: str | None = None


class AnalyzeBatchRequest(_Body):
    articles: list[Article] = []
    clinical_question: str | None = None


class SynthesisRequest(_Body):
    clinical_question: str | None = None
    articles: list[Article] = []
    query_id: str | None = None  # synthesize a stored query session instead
    request_id: str | None = None


class ICiteBatchRequest(_Body):
    pmids: list[str] | str = []

    def pmid_list(self) -> list[str]:
        raw: Any = self.pmids
        if isinstance(raw, str):
            raw = raw.split(",")
        return [str(p).strip() for p in raw if str(p).strip()]
