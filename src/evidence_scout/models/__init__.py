"""Data models for EvidenceScout."""

from evidence_scout.models.model_article import Article, Author, ICiteMetrics
from evidence_scout.models.model_progress import ProgressEvent, Stage
from evidence_scout.models.model_query import Question, Strategy, StrategyMetrics
from evidence_scout.models.model_synthesis import SynthesisResult

__all__ = [
    "Article",
    "Author",
    "ICiteMetrics",
    "ProgressEvent",
    "Question",
    "Stage",
    "Strategy",
    "StrategyMetrics",
    "SynthesisResult",
]
