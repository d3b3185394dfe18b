"""FastAPI application."""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from evidence_scout import __version__
from evidence_scout.api.schemas import (
    AnalyzeBatchRequest,
    AnalyzeByPmidRequest,
    AnalyzeRequest,
    ICiteBatchRequest,
    ScientificQueryRequest,
    SearchRequest,
    StrategyRequest,
    SynthesisRequest,
)
from evidence_scout.config import Settings, get_settings
from evidence_scout.data_sources.base_client import DataSourceError
from evidence_scout.errors import (
    EmptyQuestion,
    EvidenceScoutError,
    GatewayError,
    QueryNotFound,
    ValidationError,
)
from evidence_scout.models.model_query import Question, normalize_question_text
from evidence_scout.services.container import Services
from evidence_scout.services.context import QueryContext

logger = logging.getLogger(__name__)

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}


def error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "code": code},
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def _require_question(text: str | None) -> str:
    normalized = normalize_question_text(text)
    if not normalized:
        raise EmptyQuestion()
    return normalized


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.services.close()

    app = FastAPI(
        title="EvidenceScout API",
        description="Evidence retrieval, appraisal and synthesis for clinical questions",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services or Services.build(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Middleware / error handling -----------------------------------------

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        logger.info(
            "%s %s -> %d (%.2fs)",
            request.method,
            request.url.path,
            response.status_code,
            time.monotonic() - start,
        )
        return response

    @app.exception_handler(EvidenceScoutError)
    async def handle_domain_error(request: Request, exc: EvidenceScoutError):
        if exc.http_status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return error_response(exc.http_status, exc.message, exc.code)

    @app.exception_handler(DataSourceError)
    async def handle_data_source_error(request: Request, exc: DataSourceError):
        logger.error("%s %s upstream failure: %s", request.method, request.url.path, exc)
        status = 429 if exc.status_code == 429 else 502
        return error_response(status, str(exc), "upstream_error")

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return error_response(400, details or "Invalid request", ValidationError.code)

    # -- Scientific query ----------------------------------------------------

    @app.post("/api/scientific-query")
    async def scientific_query(
        body: ScientificQueryRequest, services: Services = Depends(get_services)
    ) -> dict[str, Any]:
        context = QueryContext(body.request_id)
        session = await services.coordinator.run(
            body.question,
            use_ai=body.use_ai,
            max_results=body.max_results,
            strategy=body.search_strategy,
            context=context,
        )
        strategy = session.strategy
        return {
            "success": True,
            "requestId": session.request_id,
            "question": session.question.text if session.question else body.question,
            "cancelled": session.cancelled,
            "articlesFound": len(session.articles),
            "articles": [a.to_wire() for a in session.articles],
            "searchStrategy": session.query or (strategy.strategy if strategy else ""),
            "fullResponseStrategy": strategy.full_response if strategy else "",
            "processingTime": session.processing_time,
        }

    @app.post("/api/scientific-query/search")
    async def search_articles(
        body: SearchRequest, services: Services = Depends(get_services)
    ) -> dict[str, Any]:
        text = body.search_strategy or body.query
        question = Question.build(text, use_ai=False, max_results=body.max_results)
        result = await services.literature.search(question)
        return {
            "success": True,
            "searchStrategy": result.query,
            "articlesFound": len(result.articles),
            "articles": [a.to_wire() for a in result.articles],
        }

    @app.get("/api/scientific-query/article/{pmid}")
    async def get_article(pmid: str, services: Services = Depends(get_services)):
        article = await services.literature.get_article(pmid)
        return {"success": True, "result": article.to_wire()}

    @app.post("/api/scientific-query/analyze")
    async def analyze_by_pmid(
        body: AnalyzeByPmidRequest, services: Services = Depends(get_services)
    ):
        """Fetch one article by PMID and appraise it against the question."""
        question = _require_question(body.question)
        if not body.pmid or not body.pmid.strip():
            raise ValidationError("pmid is required")
        article = await services.literature.get_article(body.pmid)
        analysis = await services.llm.analyze_one(article, question)
        return {
            "success": True,
            "pmid": article.pmid,
            "article": article.with_analysis(analysis).to_wire(),
            "analysis": analysis,
        }

    @app.post("/api/scientific-query/{request_id}/cancel")
    async def cancel_query(request_id: str, services: Services = Depends(get_services)):
        if services.coordinator.get_session(request_id) is None:
            raise QueryNotFound(request_id)
        return {"success": True, "cancelled": services.coordinator.cancel(request_id)}

    # -- LLM operations ------------------------------------------------------

    @app.post("/api/claude/strategy")
    async def generate_strategy(
        body: StrategyRequest, services: Services = Depends(get_services)
    ):
        strategy = await services.llm.strategy(_require_question(body.prompt))
        return {
            "success": True,
            "content": strategy.model_dump(mode="json", by_alias=True, exclude_none=True),
        }

    @app.post("/api/claude/analyze")
    async def analyze_article(body: AnalyzeRequest, services: Services = Depends(get_services)):
        question = _require_question(body.clinical_question)
        analysis = await services.llm.analyze_one(body.article, question)
        return {"success": True, "analysis": analysis}

    @app.head("/api/claude/analyze-batch")
    async def analyze_batch_head() -> Response:
        return Response(status_code=200)

    @app.post("/api/claude/analyze-batch")
    async def analyze_batch(
        body: AnalyzeBatchRequest, services: Services = Depends(get_services)
    ):
        question = _require_question(body.clinical_question)
        if not body.articles:
            raise ValidationError("articles must not be empty")
        outcome = await services.pipeline.run_sequential(body.articles, question, QueryContext())
        results = []
        for article in outcome.articles:
            item = article.to_wire()
            item["analyzed"] = bool(article.secondary_analysis)
            results.append(item)
        return {"success": True, "results": results}

    @app.post("/api/claude/synthesis")
    async def generate_synthesis(
        body: SynthesisRequest, services: Services = Depends(get_services)
    ):
        context = QueryContext(body.request_id)
        coordinator = services.coordinator
        if body.query_id:
            session = coordinator.get_session(body.query_id)
            if session is None:
                raise QueryNotFound(body.query_id)
            result = await coordinator.synthesize(session, context)
        else:
            question = _require_question(body.clinical_question)
            if not body.articles:
                raise ValidationError("articles must not be empty")
            result = await coordinator.synthesize_articles(question, body.articles, context)
        return {
            "success": True,
            "requestId": context.request_id,
            "synthesis": result.html,
            "evidenceRating": result.evidence_rating,
            "referenced": result.referenced,
        }

    # -- iCite ---------------------------------------------------------------

    def _icite_client(services: Services):
        client = services.literature.icite
        if client is None:
            raise GatewayError("iCite enrichment is disabled", status=503)
        return client

    @app.get("/api/icite/{pmid}")
    async def icite_metrics(pmid: str, services: Services = Depends(get_services)):
        metrics = await _icite_client(services).get_metrics([pmid.strip()])
        return {
            "success": True,
            "results": {k: v.model_dump(exclude_none=True) for k, v in metrics.items()},
        }

    @app.post("/api/icite/batch")
    async def icite_batch(body: ICiteBatchRequest, services: Services = Depends(get_services)):
        pmids = body.pmid_list()
        if not pmids:
            raise ValidationError("At least one PMID is required")
        metrics = await _icite_client(services).get_metrics(pmids)
        return {
            "success": True,
            "results": {k: v.model_dump(exclude_none=True) for k, v in metrics.items()},
        }

    # -- Progress / health ---------------------------------------------------

    @app.get("/events")
    async def progress_events(
        request_id: str = Query(..., alias="requestId", min_length=1),
        last_event_id: int | None = Header(default=None, alias="Last-Event-ID"),
        services: Services = Depends(get_services),
    ) -> StreamingResponse:
        stream = services.progress.stream(request_id)
        return StreamingResponse(
            stream.sse(last_event_id or 0, services.settings.heartbeat_interval),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.get("/health")
    async def health_check(services: Services = Depends(get_services)) -> dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "executor": services.executor.stats(),
        }

    return app


app = create_app()
