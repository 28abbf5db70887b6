"""
Main FastAPI application setup.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..agents.orchestrator import OrchestrationController, OrchestrationServices
from ..core.config import settings
from ..core.logging import logger
from .middleware import setup_middleware
from .routers import health_router, knowledge_router, orchestration_router


def install_services(app: FastAPI, services: OrchestrationServices) -> None:
    app.state.services = services
    app.state.controller = OrchestrationController(services)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting Agora API server")

    if getattr(app.state, "controller", None) is None:
        try:
            install_services(app, OrchestrationServices.from_settings())
            logger.info("Orchestration services initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize orchestration services: {e}")
            raise

    logger.info("Agora API server started successfully")

    yield

    logger.info("Shutting down Agora API server")


def create_app(services: Optional[OrchestrationServices] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Pre-built service container; the lifespan builds the
            default one from settings when omitted
    """
    app = FastAPI(
        title="Agora Orchestration API",
        description="Agent orchestration and resilient inference pipeline",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_hosts_list if settings.allowed_hosts != "*" else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_middleware(app)

    if services is not None:
        install_services(app, services)

    app.include_router(
        health_router,
        prefix="/api/v1/health",
        tags=["health"]
    )

    app.include_router(
        orchestration_router,
        prefix="/api/v1/orchestration",
        tags=["orchestration"]
    )

    app.include_router(
        knowledge_router,
        prefix="/api/v1/knowledge",
        tags=["knowledge"]
    )

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": "Welcome to the Agora Orchestration API",
            "version": __version__,
            "docs": "/docs" if settings.debug else "disabled",
            "health": "/api/v1/health"
        }

    return app


# Create the app instance
app = create_app()
