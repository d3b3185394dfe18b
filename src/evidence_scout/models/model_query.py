"""Question and search-strategy models."""

import unicodedata
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from evidence_scout.constants import DEFAULT_MAX_RESULTS, MAX_RESULTS_LIMIT
from evidence_scout.errors import EmptyQuestion, InvalidMaxResults


def normalize_question_text(text: str | None) -> str:
    if not text:
        return ""
    return unicodedata.normalize("NFC", text).strip()


class Question(BaseModel):
    """A clinical question as submitted by the user. Immutable."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    text: str
    use_ai: bool = Field(default=True, alias="useAI")
    max_results: int = Field(default=DEFAULT_MAX_RESULTS, ge=1, le=MAX_RESULTS_LIMIT)

    @classmethod
    def build(
        cls, text: str | None, use_ai: bool = True, max_results: Any = None
    ) -> "Question":
        """Validate raw input and raise the typed validation errors."""
        normalized = normalize_question_text(text)
        if not normalized:
            raise EmptyQuestion()

        if max_results is None:
            max_results = DEFAULT_MAX_RESULTS
        if (
            isinstance(max_results, bool)
            or not isinstance(max_results, int)
            or not 1 <= max_results <= MAX_RESULTS_LIMIT
        ):
            raise InvalidMaxResults(
                f"maxResults must be an integer between 1 and {MAX_RESULTS_LIMIT}, "
                f"got {max_results!r}"
            )
        return cls(text=normalized, use_ai=bool(use_ai), max_results=max_results)


class StrategyMetrics(BaseModel):
    """Quality estimates the LLM reports alongside its search strategy (percent)."""

    sensitivity: int | None = Field(default=None, ge=0, le=100)
    precision: int | None = Field(default=None, ge=0, le=100)
    specificity: int | None = Field(default=None, ge=0, le=100)
    nnr: float | None = None  # number needed to read


class Strategy(BaseModel):
    """A PubMed boolean query plus the prose that produced it."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    strategy: str
    full_response: str = ""
    enhanced_response: str | None = None
    metrics: StrategyMetrics | None = None

    @classmethod
    def passthrough(cls, question: Question) -> "Strategy":
        return cls(strategy=question.text, full_response="")
