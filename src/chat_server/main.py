# FastAPI chat server: chat, suggested questions, health and metrics endpoints

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from src.services.chat_pipeline import ChatRequest, RagPipeline, build_pipeline
from src.shared import ConnectionManager, init_config
from src.shared.config import Config, Settings
from src.shared.errors import InputValidationError, RealtyRagError, UpstreamRequestError
from src.shared.observability import (
    clear_request_context,
    get_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
    setup_tracing,
)
from src.shared.observability.metrics import (
    PrometheusMiddleware,
    get_metrics,
    setup_metrics,
)

from .models import (
    ChatRequestBody,
    ChatResponseBody,
    ErrorResponse,
    HealthResponse,
    SuggestedQuestionsBody,
    SuggestedQuestionsResponse,
    history_payload,
)

logger = get_logger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


class MissingClientIdError(InputValidationError):
    error_code = "missing_client_id"

    def __init__(self):
        super().__init__("Client ID is required")


def _resolve_client_id(body_client_id: Optional[str], header_client_id: Optional[str]) -> str:
    client_id = (body_client_id or header_client_id or "").strip()
    if not client_id:
        raise MissingClientIdError()
    return client_id


def create_app(
    config: Config,
    settings: Settings,
    *,
    pipeline: Optional[RagPipeline] = None,
) -> FastAPI:
    """
    Build the chat API.

    When ``pipeline`` is given it is used as-is (tests); otherwise the
    production pipeline is built at startup and its clients are closed at
    shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting chat server", version=config.app.version)
        connections: Optional[ConnectionManager] = None
        if app.state.pipeline is None:
            connections = ConnectionManager(config, settings)
            app.state.pipeline = build_pipeline(connections, config, settings)
        try:
            yield
        finally:
            logger.info("Shutting down chat server")
            if connections is not None:
                await connections.close_all()

    app = FastAPI(
        title=config.app.name,
        version=config.app.version,
        description="Multi-tenant real-estate RAG chat API",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    setup_tracing(app, settings, config.app.version)
    setup_metrics(settings, config.app.version)
    app.add_middleware(PrometheusMiddleware)

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        """Add correlation ID to request context"""
        corr_id = request.headers.get("X-Correlation-ID")
        if not corr_id:
            corr_id = get_correlation_id()
        else:
            set_correlation_id(corr_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Correlation-ID"] = corr_id
        return response

    @app.exception_handler(RealtyRagError)
    async def realty_error_handler(request: Request, exc: RealtyRagError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "request_failed",
            path=request.url.path,
            status_code=exc.status_code,
            error_code=exc.error_code,
            error=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(UpstreamRequestError)
    async def upstream_error_handler(request: Request, exc: UpstreamRequestError):
        logger.error(
            "upstream_request_failed",
            path=request.url.path,
            service=exc.service,
            upstream_status=exc.status,
            detail=exc.detail,
        )
        return JSONResponse(
            status_code=502,
            content={"error": f"{exc.service} request failed", "code": "upstream_error"},
        )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Health check endpoint"""
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(timezone.utc).isoformat(),
            version=config.app.version,
        )

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint"""
        return Response(content=get_metrics(), media_type="text/plain; version=0.0.4")

    @app.post("/api/chat", response_model=ChatResponseBody, responses=ERROR_RESPONSES)
    async def chat(
        body: ChatRequestBody,
        request: Request,
        x_client_id: Optional[str] = Header(default=None),
    ):
        client_id = _resolve_client_id(body.client_id, x_client_id)
        pipeline: RagPipeline = request.app.state.pipeline
        answer = await pipeline.generate_response(
            ChatRequest(
                client_id=client_id,
                query=body.query or "",
                external_context=body.context.to_domain() if body.context else None,
                user_context=body.user.to_domain() if body.user else None,
                chat_history=history_payload(body.chat_history),
                onboarding_answers=body.onboarding_answers,
            )
        )
        return ChatResponseBody(response=answer)

    @app.post(
        "/api/suggested-questions",
        response_model=SuggestedQuestionsResponse,
        responses=ERROR_RESPONSES,
    )
    async def suggested_questions(
        body: SuggestedQuestionsBody,
        request: Request,
        x_client_id: Optional[str] = Header(default=None),
    ):
        client_id = _resolve_client_id(body.client_id, x_client_id)
        pipeline: RagPipeline = request.app.state.pipeline
        questions = await pipeline.suggest_questions(
            client_id,
            external_context=body.context.to_domain() if body.context else None,
            chat_history=history_payload(body.chat_history),
            user_context=body.user.to_domain() if body.user else None,
        )
        return SuggestedQuestionsResponse(questions=questions)

    return app


def build_app() -> FastAPI:
    config, settings = init_config()
    setup_logging(config.app.log_level)
    return create_app(config, settings)


if __name__ == "__main__":
    uvicorn.run(
        "src.chat_server.main:build_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )
