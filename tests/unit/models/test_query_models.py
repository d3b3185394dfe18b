"""Unit tests for question, strategy, progress and synthesis models."""

import pytest
from pydantic import ValidationError

from evidence_scout.errors import EmptyQuestion, InvalidMaxResults
from evidence_scout.models.model_progress import ProgressEvent, Stage
from evidence_scout.models.model_query import Question, Strategy, StrategyMetrics
from evidence_scout.models.model_synthesis import SynthesisResult


class TestQuestion:
    def test_build_normalizes_text(self):
        question = Question.build("  Café and PCOS?  ")

        assert question.text == "Café and PCOS?"
        assert question.use_ai is True
        assert question.max_results == 10

    @pytest.mark.parametrize("text", [None, "", " \n\t "])
    def test_build_rejects_empty(self, text):
        with pytest.raises(EmptyQuestion):
            Question.build(text)

    @pytest.mark.parametrize("max_results", [0, 51, -3, 2.5, "5", False])
    def test_build_rejects_bad_max_results(self, max_results):
        with pytest.raises(InvalidMaxResults, match="between 1 and 50"):
            Question.build("metformin", max_results=max_results)

    @pytest.mark.parametrize("max_results", [1, 50])
    def test_build_accepts_bounds(self, max_results):
        assert Question.build("metformin", max_results=max_results).max_results == max_results

    def test_question_is_frozen(self):
        question = Question.build("metformin")
        with pytest.raises(ValidationError):
            question.text = "other"

    def test_wire_aliases(self):
        question = Question.model_validate({"text": "x", "useAI": False, "maxResults": 3})
        assert question.use_ai is False
        assert question.max_results == 3


class TestStrategy:
    def test_passthrough_uses_question_text(self):
        strategy = Strategy.passthrough(Question.build("diabetes treatment"))

        assert strategy.strategy == "diabetes treatment"
        assert strategy.full_response == ""
        assert strategy.metrics is None

    def test_metrics_are_percentages(self):
        with pytest.raises(ValidationError):
            StrategyMetrics(sensitivity=120)


class TestProgressEvent:
    def test_done_and_failed_are_terminal(self):
        done = ProgressEvent.done("req-1", "empty")
        failed = ProgressEvent.failed("req-1", "cancelled")

        assert (done.stage, done.terminal, done.detail) == (Stage.DONE, True, "empty")
        assert (failed.stage, failed.terminal, failed.detail) == (Stage.FAILED, True, "cancelled")

    def test_dump_uses_camel_case(self):
        event = ProgressEvent(request_id="req-1", stage=Stage.ANALYZE, index=2, total=5)

        assert event.model_dump(by_alias=True, exclude_none=True, mode="json") == {
            "requestId": "req-1",
            "stage": "analyze",
            "index": 2,
            "total": 5,
            "terminal": False,
        }


class TestSynthesisResult:
    @pytest.mark.parametrize("rating", [0, 6])
    def test_rating_bounds(self, rating):
        with pytest.raises(ValidationError):
            SynthesisResult(html="<p/>", evidence_rating=rating)

    def test_dump_uses_camel_case(self):
        result = SynthesisResult(html="<p/>", evidence_rating=4, referenced=["1"])
        assert result.model_dump(by_alias=True) == {
            "html": "<p/>",
            "evidenceRating": 4,
            "referenced": ["1"],
        }
