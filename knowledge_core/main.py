import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

from .config import get_settings
from .errors import DimensionMismatchError, TransientError, ValidationError
from .health import router as health_router
from .logging import configure_logging
from .observability.tracing import configure_tracing
from .routes.cache import router as cache_router
from .routes.maintenance import router as maintenance_router
from .routes.search import router as search_router

logger = logging.getLogger(__name__)

REQUESTS = Counter(
    "knowledge_core_http_requests_total",
    "HTTP requests",
    ["method", "path", "status"],
)

RETRY_AFTER_SECONDS = 1


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_logging(settings.log_level)
    configure_tracing("knowledge-core", settings.otel_exporter_otlp_endpoint)
    logger.info("knowledge-core.start", extra={"env": settings.env})
    yield
    logger.info("knowledge-core.stop")


app = FastAPI(lifespan=lifespan, title="Knowledge Core", version="0.1.0")


@app.middleware("http")
async def metrics_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    response: Response = await call_next(request)
    try:
        # Route template keeps label cardinality bounded
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        REQUESTS.labels(request.method, path, str(response.status_code)).inc()
    except Exception:
        logger.warning("Failed to update metrics", exc_info=True)
    return response


@app.exception_handler(ValidationError)
@app.exception_handler(DimensionMismatchError)
async def invalid_request_handler(
    request: Request, exc: ValidationError | DimensionMismatchError
) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": exc.message})


@app.exception_handler(TransientError)
async def transient_error_handler(request: Request, exc: TransientError) -> JSONResponse:
    logger.warning(
        "request.transient_error",
        extra={"path": request.url.path, "error": exc.message},
    )
    return JSONResponse(
        status_code=503,
        content={"detail": exc.message},
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


@app.get("/metrics")
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(health_router)
app.include_router(search_router)
app.include_router(cache_router)
app.include_router(maintenance_router)
