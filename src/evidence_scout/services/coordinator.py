"""
Query coordinator: the per-request state machine.

    IDLE → FORMULATING → STRATEGIZING → SEARCHING → ANALYZING → READY
                                            ↓                     ↓
                                          EMPTY             SYNTHESIZING → SYNTHESIZED
    any non-terminal state → FAILED

Synthesis only starts on an explicit call and a failed synthesis returns the
session to READY so it can be retried without searching again.
"""

import collections
import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from evidence_scout.constants import SESSION_REGISTRY_LIMIT
from evidence_scout.errors import (
    DuplicateRequest,
    EvidenceScoutError,
    InvalidTransition,
    RequestCancelled,
)
from evidence_scout.models.model_article import Article
from evidence_scout.models.model_progress import ProgressEvent, Stage
from evidence_scout.models.model_query import Question, Strategy
from evidence_scout.models.model_synthesis import SynthesisResult
from evidence_scout.services.analysis import AnalysisPipeline
from evidence_scout.services.context import QueryContext
from evidence_scout.services.literature import LiteratureGateway
from evidence_scout.services.llm_gateway import LLMGateway
from evidence_scout.services.progress import ProgressBroker
from evidence_scout.services.synthesis import SynthesisEngine

logger = logging.getLogger(__name__)


class QueryState(str, Enum):
    IDLE = "idle"
    FORMULATING = "formulating"
    STRATEGIZING = "strategizing"
    SEARCHING = "searching"
    EMPTY = "empty"
    ANALYZING = "analyzing"
    READY = "ready"
    SYNTHESIZING = "synthesizing"
    SYNTHESIZED = "synthesized"
    FAILED = "failed"


TRANSITIONS: dict[QueryState, set[QueryState]] = {
    QueryState.IDLE: {QueryState.FORMULATING, QueryState.FAILED},
    QueryState.FORMULATING: {QueryState.STRATEGIZING, QueryState.FAILED},
    QueryState.STRATEGIZING: {QueryState.SEARCHING, QueryState.FAILED},
    QueryState.SEARCHING: {
        QueryState.EMPTY,
        QueryState.ANALYZING,
        QueryState.READY,
        QueryState.FAILED,
    },
    QueryState.ANALYZING: {QueryState.READY, QueryState.FAILED},
    QueryState.READY: {QueryState.SYNTHESIZING},
    QueryState.SYNTHESIZING: {QueryState.SYNTHESIZED, QueryState.READY, QueryState.FAILED},
    QueryState.SYNTHESIZED: {QueryState.SYNTHESIZING},
    QueryState.EMPTY: set(),
    QueryState.FAILED: set(),
}


@dataclass
class QuerySession:
    """Request-scoped state owned by the coordinator."""

    context: QueryContext
    question: Question | None = None
    state: QueryState = QueryState.IDLE
    strategy: Strategy | None = None
    query: str = ""
    articles: list[Article] = field(default_factory=list)
    synthesis: SynthesisResult | None = None
    error: EvidenceScoutError | None = None
    cancelled: bool = False
    started_at: float = field(default_factory=time.monotonic)
    finished_at: float | None = None

    @property
    def request_id(self) -> str:
        return self.context.request_id

    @property
    def processing_time(self) -> float:
        end = self.finished_at or time.monotonic()
        return round(end - self.started_at, 3)

    def advance(self, new_state: QueryState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"Cannot move from {self.state.value} to {new_state.value}"
            )
        logger.debug("Request %s: %s -> %s", self.request_id, self.state.value, new_state.value)
        self.state = new_state


class QueryCoordinator:
    def __init__(
        self,
        llm: LLMGateway,
        literature: LiteratureGateway,
        pipeline: AnalysisPipeline,
        synthesis: SynthesisEngine,
        progress: ProgressBroker,
        *,
        session_limit: int = SESSION_REGISTRY_LIMIT,
    ):
        self.llm = llm
        self.literature = literature
        self.pipeline = pipeline
        self.synthesis = synthesis
        self.progress = progress
        self._sessions: collections.OrderedDict[str, QuerySession] = collections.OrderedDict()
        self._session_limit = session_limit

    # -- Session registry ------------------------------------------------------

    def get_session(self, request_id: str) -> QuerySession | None:
        return self._sessions.get(request_id)

    def cancel(self, request_id: str) -> bool:
        """Trip the cancellation signal of a running request."""
        session = self._sessions.get(request_id)
        if session is None or session.finished_at is not None:
            return False
        session.context.cancel()
        return True

    def _claim(self, request_id: str) -> None:
        """Reject a request id that already names a session or a finished stream.

        A stream that exists but has not ended is accepted: clients may
        subscribe to progress before submitting the request.
        """
        if request_id in self._sessions or self.progress.is_finished(request_id):
            raise DuplicateRequest(request_id)

    def _register(self, session: QuerySession) -> None:
        self._sessions[session.request_id] = session
        self._sessions.move_to_end(session.request_id)
        while len(self._sessions) > self._session_limit:
            self._sessions.popitem(last=False)

    # -- Run -------------------------------------------------------------------

    async def run(
        self,
        text: str | None,
        *,
        use_ai: bool = True,
        max_results: object = None,
        strategy: str | None = None,
        context: QueryContext | None = None,
    ) -> QuerySession:
        """Drive a question from IDLE to READY, EMPTY or FAILED.

        Errors are recorded on the session, published as the terminal
        ``failed`` event and re-raised; cancellation is only published.
        """
        session = QuerySession(context=context or QueryContext())
        self._claim(session.request_id)
        self._register(session)
        emit = self.progress.emitter(session.request_id)

        try:
            session.advance(QueryState.FORMULATING)
            emit(self._event(session, Stage.FORMULATE))
            session.question = Question.build(text, use_ai, max_results)

            session.advance(QueryState.STRATEGIZING)
            emit(self._event(session, Stage.STRATEGIZE))
            session.strategy = await self._strategize(session, strategy)
            session.context.raise_if_cancelled()

            session.advance(QueryState.SEARCHING)
            emit(self._event(session, Stage.SEARCH))
            result = await session.context.guard(
                self.literature.search(session.question, session.strategy)
            )
            session.query = result.query
            session.articles = result.articles

            if not session.articles:
                session.advance(QueryState.EMPTY)
                self._finish(session, emit, ProgressEvent.done(session.request_id, "empty"))
                return session

            if not session.question.use_ai:
                session.advance(QueryState.READY)
                self._finish(session, emit, ProgressEvent.done(session.request_id))
                return session

            session.advance(QueryState.ANALYZING)
            outcome = await self.pipeline.run(
                session.articles, session.question.text, session.context, emit
            )
            session.articles = outcome.articles
            if outcome.cancelled:
                raise RequestCancelled()

            session.advance(QueryState.READY)
            self._finish(session, emit, ProgressEvent.done(session.request_id))
            return session

        except RequestCancelled:
            session.cancelled = True
            self._fail(session, emit, "cancelled")
            return session
        except EvidenceScoutError as e:
            session.error = e
            self._fail(session, emit, type(e).__name__)
            raise
        except Exception:
            self._fail(session, emit, "internal_error")
            raise

    async def _strategize(self, session: QuerySession, provided: str | None) -> Strategy:
        question = session.question
        if provided and provided.strip():
            return Strategy(strategy=provided.strip())
        if not question.use_ai:
            return Strategy.passthrough(question)
        return await session.context.guard(self.llm.strategy(question))

    # -- Synthesis -------------------------------------------------------------

    async def synthesize(
        self, session: QuerySession, context: QueryContext | None = None
    ) -> SynthesisResult:
        """Synthesize a READY (or already SYNTHESIZED) session.

        Progress goes to ``context.request_id`` when given, so a finished
        query stream is never reopened.
        """
        if session.state not in (QueryState.READY, QueryState.SYNTHESIZED):
            raise InvalidTransition(
                f"Synthesis requires a ready session, request {session.request_id} "
                f"is {session.state.value}"
            )
        context = context or QueryContext()
        if self.progress.is_finished(context.request_id):
            raise DuplicateRequest(context.request_id)
        emit = self.progress.emitter(context.request_id)
        previous = session.state

        session.advance(QueryState.SYNTHESIZING)
        emit(ProgressEvent(request_id=context.request_id, stage=Stage.SYNTHESIZE))
        try:
            result = await context.guard(
                self.synthesis.synthesize(session.question.text, session.articles)
            )
        except RequestCancelled:
            session.advance(previous)
            emit(ProgressEvent.failed(context.request_id, "cancelled"))
            raise
        except EvidenceScoutError as e:
            # READY stays intact so the client can retry
            session.advance(previous)
            emit(ProgressEvent.failed(context.request_id, type(e).__name__))
            raise
        except Exception:
            session.advance(previous)
            emit(ProgressEvent.failed(context.request_id, "internal_error"))
            raise

        session.synthesis = result
        session.advance(QueryState.SYNTHESIZED)
        emit(ProgressEvent.done(context.request_id))
        return result

    async def synthesize_articles(
        self, question: str, articles: list[Article], context: QueryContext | None = None
    ) -> SynthesisResult:
        """Stateless synthesis over client-supplied articles."""
        context = context or QueryContext()
        if self.progress.is_finished(context.request_id):
            raise DuplicateRequest(context.request_id)
        emit = self.progress.emitter(context.request_id)
        emit(ProgressEvent(request_id=context.request_id, stage=Stage.SYNTHESIZE))
        try:
            result = await context.guard(self.synthesis.synthesize(question, articles))
        except RequestCancelled:
            emit(ProgressEvent.failed(context.request_id, "cancelled"))
            raise
        except EvidenceScoutError as e:
            emit(ProgressEvent.failed(context.request_id, type(e).__name__))
            raise
        except Exception:
            emit(ProgressEvent.failed(context.request_id, "internal_error"))
            raise
        emit(ProgressEvent.done(context.request_id))
        return result

    # -- Helpers ---------------------------------------------------------------

    @staticmethod
    def _event(session: QuerySession, stage: Stage) -> ProgressEvent:
        return ProgressEvent(request_id=session.request_id, stage=stage)

    @staticmethod
    def _finish(session: QuerySession, emit, event: ProgressEvent) -> None:
        session.finished_at = time.monotonic()
        emit(event)
        logger.info(
            "Request %s finished state=%s articles=%d elapsed=%.2fs",
            session.request_id,
            session.state.value,
            len(session.articles),
            session.processing_time,
        )

    @staticmethod
    def _fail(session: QuerySession, emit, detail: str) -> None:
        if session.state not in (QueryState.FAILED, QueryState.EMPTY, QueryState.READY):
            session.advance(QueryState.FAILED)
        session.finished_at = time.monotonic()
        emit(ProgressEvent.failed(session.request_id, detail))
        logger.warning("Request %s failed: %s", session.request_id, detail)
