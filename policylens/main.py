"""
Main FastAPI application
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from policylens.api.routes import router
from policylens.core.config import settings
from policylens.services.policy_coordinator import PolicyCoordinator


def create_application(coordinator: PolicyCoordinator = None) -> FastAPI:
    """Create and configure FastAPI application"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.coordinator = coordinator or PolicyCoordinator()
        await app.state.coordinator.startup()
        try:
            yield
        finally:
            await app.state.coordinator.shutdown()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        debug=settings.debug,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API routes
    app.include_router(router)

    return app

# Create the application instance
app = create_application()
