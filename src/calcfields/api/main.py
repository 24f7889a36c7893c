"""FastAPI application factory."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from calcfields.api import routers
from calcfields.catalog.provider import CatalogNotFoundError
from calcfields.context import FieldsContext
from calcfields.core.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler.

    Opens the FieldsContext (connections, pipeline, initial view publish) on
    startup and drains in-flight commits before closing it.
    """
    context: FieldsContext = app.state.context
    await context.open()
    logger.info("api_started", scopes=context.registry.scopes())

    yield

    await context.close()


def create_app(
    context: FieldsContext | None = None,
    title: str = "Calculated Fields API",
    version: str = "1.0.0",
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        context: Pipeline context. If None, one is built from settings with
                 the expression generator enabled.
        title: API title
        version: API version
        cors_origins: Allowed CORS origins (default: allow all)

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=title,
        version=version,
        description="Natural-language calculated fields over a governed semantic view",
        lifespan=lifespan,
    )
    app.state.context = context or FieldsContext(with_generator=True)

    # Configure CORS
    if cors_origins is None:
        cors_origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CatalogNotFoundError)  # type: ignore[untyped-decorator]
    async def catalog_not_found(request: Request, exc: CatalogNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    # Include API routers
    app.include_router(routers.views.router, prefix="/api/v1", tags=["views"])
    app.include_router(routers.fields.router, prefix="/api/v1", tags=["fields"])

    @app.get("/health")  # type: ignore[untyped-decorator]
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app
