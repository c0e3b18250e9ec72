import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from memorix.api.errors import STATUS_BY_KIND
from memorix.api.schemas import ErrorResponse, HealthResponse, describe_errors
from memorix.api.v2.cards import router as cards_router
from memorix.api.v2.decks import router as decks_router
from memorix.core.config import Settings, settings as default_settings
from memorix.core.logging import get_logger, setup_logging
from memorix.core.observability import metrics, setup_observability
from memorix.domain.results import ErrorKind
from memorix.infrastructure.container import DECK_ROLE, ServiceContainer

logger = get_logger(__name__)

API_PREFIX = "/api/v2"


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """Create the FastAPI application for the configured service role."""
    settings = settings or default_settings
    container = container or ServiceContainer(settings)

    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "Starting up Memorix service",
            role=container.role,
            version=settings.version,
        )
        try:
            setup_observability()
            await container.start()
        except Exception as e:
            logger.error("Application startup failed", error=str(e))
            raise

        try:
            yield
        finally:
            logger.info("Shutting down Memorix service", role=container.role)
            await container.stop()

    app = FastAPI(
        title=f"{settings.app_name} {container.role} service",
        version=settings.version,
        docs_url="/docs" if not settings.is_production() else None,
        redoc_url="/redoc" if not settings.is_production() else None,
        lifespan=lifespan,
    )
    app.state.container = container

    if container.role == DECK_ROLE:
        app.include_router(decks_router, prefix=API_PREFIX)
    else:
        app.include_router(cards_router, prefix=API_PREFIX)

    @app.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        metrics.record_http_request(
            request.method, endpoint, response.status_code, time.perf_counter() - start
        )
        return response

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        services = await container.health()
        healthy = all(services.values())
        return HealthResponse(
            status="healthy" if healthy else "unhealthy",
            service=container.role,
            version=settings.version,
            database=services["database"],
            broker=services["broker"],
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # Same body shape and status as a validation Failure from a service
        return JSONResponse(
            status_code=STATUS_BY_KIND[ErrorKind.VALIDATION],
            content={
                "detail": ErrorResponse(
                    error=ErrorKind.VALIDATION.value,
                    message=describe_errors(exc.errors()),
                ).model_dump()
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception",
            error=str(exc),
            path=str(request.url.path),
            method=request.method,
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="internal_server_error",
                message="An unexpected error occurred",
            ).model_dump(),
        )

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "memorix.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.is_development(),
        log_level=default_settings.log_level.lower(),
    )
