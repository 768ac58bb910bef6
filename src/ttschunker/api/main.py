import logging

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ttschunker.errors import AllSegmentsFailedError, PipelineTimeoutError, TTSChunkerError

from .dependencies import get_pipeline
from .middleware import LoggingMiddleware
from .settings import get_settings
from .tts import router as tts_router

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="ttschunker API", version="0.1.0")
app.state.expose_error_details = settings.expose_error_details
app.add_middleware(LoggingMiddleware)

# CORS middleware (allow all for now; adjust in prod)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tts_router)


@app.exception_handler(TTSChunkerError)
async def handle_pipeline_error(request: Request, exc: TTSChunkerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")

    detail = exc.message
    if exc.status_code >= 500 and not request.app.state.expose_error_details:
        detail = "The request could not be completed"

    body: dict = {"error": type(exc).__name__, "detail": detail}
    if isinstance(exc, AllSegmentsFailedError):
        body["failedIndices"] = exc.failed_indices
    if isinstance(exc, PipelineTimeoutError):
        body["completed"] = exc.completed
        body["total"] = exc.total
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": "InputError", "detail": problems})


@app.get("/health", tags=["Utility"])
async def health() -> dict[str, str]:
    """Return basic service health status."""
    return {"status": "ok"}


@app.get("/status", tags=["Utility"])
async def service_status(pipeline=Depends(get_pipeline)) -> dict:
    """Report provider, storage and limit configuration."""
    return {
        "status": "ok",
        "environment": settings.env,
        "provider": pipeline.client.provider.name,
        "ssml": pipeline.client.enricher.is_ssml,
        "storage": {
            "configured": pipeline.publisher is not None,
            **(pipeline.publisher.store.describe() if pipeline.publisher else {}),
        },
        "limits": {
            "maxSegmentBytes": pipeline.max_segment_bytes,
            "defaultConcurrency": pipeline.default_concurrency,
            "maxConcurrency": pipeline.max_concurrency,
            "synthesisTimeoutSeconds": pipeline.client.timeout,
            "operationTimeoutSeconds": pipeline.operation_timeout,
            "minIntroSeconds": pipeline.program_assembler.min_intro_seconds,
            "minOutroSeconds": pipeline.program_assembler.min_outro_seconds,
        },
    }
