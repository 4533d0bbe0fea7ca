"""
Symptom Service - FastAPI Backend

Architecture:
  - /analyze: validate -> prompt -> Ollama chat (non-streaming) -> structured extraction
  - /chat:    Ollama generate (streaming) -> NDJSON relay -> text/plain stream
"""
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from .config import Settings, get_settings
from .extraction import FallbackAnalysis, ModelRejected, extract_analysis
from .input_validation import Rejected, sanitize_symptoms, validate_symptoms
from .models import AnalyzeRequest, ChatRequest
from .ollama_client import OllamaClient, UpstreamUnavailable
from .prompts import build_analysis_prompt
from .stream_relay import StreamRelay
from .structured_logging import (
    OUTCOME_ENGINE_UNAVAILABLE,
    OUTCOME_FAILED,
    OUTCOME_FALLBACK,
    OUTCOME_INPUT_REJECTED,
    OUTCOME_INVALID_REQUEST,
    OUTCOME_MODEL_REJECTED,
    OUTCOME_PARSED,
    OUTCOME_STREAMING,
    StructuredLogger,
    log_request,
    set_request_id,
    setup_logging,
)

logger = StructuredLogger(__name__)

SYMPTOMS_REQUIRED_MESSAGE = "Symptoms are required"
ANALYZE_FAILED_MESSAGE = "Failed to analyze symptoms"
CHAT_INVALID_MESSAGE = "messages must be a non-empty list of {role, content} objects"
CHAT_FAILED_MESSAGE = "Failed to process chat message"

QUIET_PATHS = {"/health", "/docs", "/openapi.json"}


async def _read_json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def create_app(
    settings: Optional[Settings] = None,
    ollama_client: Optional[OllamaClient] = None,
) -> FastAPI:
    """Build the ASGI app.

    Args:
        settings: Explicit configuration; read from the environment if omitted
        ollama_client: Pre-built client (tests inject one with a mock
            transport); otherwise one is created at startup and closed at
            shutdown
    """
    settings = settings or get_settings()
    setup_logging(level=settings.log_level, use_json=settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting Symptom Service",
            ollama_base_url=settings.ollama_base_url,
            analysis_model=settings.analysis_model,
            chat_model=settings.chat_model,
        )
        owns_client = ollama_client is None
        app.state.ollama_client = ollama_client or OllamaClient(settings)
        yield
        logger.info("Shutting down...")
        if owns_client:
            await app.state.ollama_client.aclose()

    app = FastAPI(
        title="Symptom Service",
        description="Symptom analysis and chat relay over a local Ollama engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """Request ID tracking and access logging with the handler's outcome."""
        start_time = time.time()
        request_id = set_request_id(request.headers.get("X-Request-ID"))

        response = await call_next(request)

        if request.url.path not in QUIET_PATHS:
            log_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=(time.time() - start_time) * 1000,
                outcome=getattr(request.state, "outcome", None),
                client_ip=request.client.host if request.client else None,
            )

        response.headers["X-Request-ID"] = request_id
        return response

    @app.get("/health")
    async def health(request: Request):
        client: OllamaClient = request.app.state.ollama_client
        reachable = await client.health_check()
        return {
            "status": "healthy" if reachable else "degraded",
            "engine_reachable": reachable,
            "analysis_model": settings.analysis_model,
            "chat_model": settings.chat_model,
        }

    @app.post("/analyze")
    async def analyze(request: Request):
        """Analyze a symptom description into a structured record."""
        start_time = time.time()
        body = await _read_json_body(request)

        try:
            request_model = AnalyzeRequest.model_validate(body)
        except ValidationError:
            request.state.outcome = OUTCOME_INVALID_REQUEST
            return JSONResponse({"error": SYMPTOMS_REQUIRED_MESSAGE}, status_code=400)
        if not request_model.symptoms:
            request.state.outcome = OUTCOME_INVALID_REQUEST
            return JSONResponse({"error": SYMPTOMS_REQUIRED_MESSAGE}, status_code=400)

        outcome = validate_symptoms(sanitize_symptoms(request_model.symptoms))
        if isinstance(outcome, Rejected):
            logger.info("Symptoms rejected by validator", reason=outcome.reason.value)
            request.state.outcome = OUTCOME_INPUT_REJECTED
            return JSONResponse({"error": outcome.message}, status_code=400)

        client: OllamaClient = request.app.state.ollama_client
        try:
            raw_reply = await client.complete(build_analysis_prompt(outcome.text))
            result = extract_analysis(raw_reply)
            if isinstance(result, ModelRejected):
                logger.info("Symptoms rejected by model")
                request.state.outcome = OUTCOME_MODEL_REJECTED
                return JSONResponse({"error": result.message}, status_code=400)
            response = JSONResponse(result.payload)
        except UpstreamUnavailable as e:
            logger.error("analyze failed: engine unavailable", error=str(e))
            request.state.outcome = OUTCOME_ENGINE_UNAVAILABLE
            return JSONResponse({"error": ANALYZE_FAILED_MESSAGE}, status_code=500)
        except Exception as e:
            logger.exception("analyze failed", error=str(e))
            request.state.outcome = OUTCOME_FAILED
            return JSONResponse({"error": ANALYZE_FAILED_MESSAGE}, status_code=500)

        fallback = isinstance(result, FallbackAnalysis)
        if fallback:
            logger.warning("analyze returned fallback record", reason=result.reason)
        request.state.outcome = OUTCOME_FALLBACK if fallback else OUTCOME_PARSED
        logger.info(
            "analyze completed",
            conditions=len(result.analysis.conditions),
            fallback=fallback,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return response

    @app.post("/chat")
    async def chat(request: Request):
        """Relay the engine's token stream for the last chat message."""
        body = await _read_json_body(request)

        try:
            request_model = ChatRequest.model_validate(body)
        except ValidationError:
            request.state.outcome = OUTCOME_INVALID_REQUEST
            return JSONResponse({"error": CHAT_INVALID_MESSAGE}, status_code=400)

        prompt = request_model.messages[-1].content
        client: OllamaClient = request.app.state.ollama_client
        try:
            upstream = await client.open_generate_stream(prompt)
        except UpstreamUnavailable as e:
            logger.error("chat failed: engine unavailable", error=str(e))
            request.state.outcome = OUTCOME_ENGINE_UNAVAILABLE
            return JSONResponse({"error": CHAT_FAILED_MESSAGE}, status_code=500)
        except Exception as e:
            logger.exception("chat failed", error=str(e))
            request.state.outcome = OUTCOME_FAILED
            return JSONResponse({"error": CHAT_FAILED_MESSAGE}, status_code=500)

        relay = StreamRelay(
            upstream.aiter_bytes(),
            release=upstream.aclose,
            max_pending=settings.stream_queue_size,
        )
        # also releases upstream when the body is never iterated
        cleanup = BackgroundTasks()
        cleanup.add_task(relay.aclose)
        request.state.outcome = OUTCOME_STREAMING
        return StreamingResponse(
            relay.iter_bytes(),
            media_type="text/plain",
            headers={"Cache-Control": "no-cache"},
            background=cleanup,
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
