"""
FastAPI application entry point for the JogoLinga entitlements API.

Startup builds the ServiceContainer from the environment. Missing
credentials raise ConfigurationError inside the lifespan, so the process
stops before it serves any traffic.
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import health
from src.api.routes import auth
from src.api.routes import subscription
from src.api.routes import payments
from src.api.routes import webhooks_stripe
from src.api.routes import premium
from src.config.settings import (
    Settings,
    ConfigurationError,
    DEFAULT_FRONTEND_URL,
    parse_cors_origins,
)
from src.models import Base
from src.platform.container import ServiceContainer

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting JogoLinga API")

    container: Optional[ServiceContainer] = getattr(app.state, "container", None)
    owns_container = container is None

    if owns_container:
        try:
            settings = Settings.from_env()
        except ConfigurationError as e:
            logger.critical("Refusing to start: %s", e, extra={"missing": e.missing})
            raise

        container = ServiceContainer.build(settings)
        app.state.container = container

    # Create tables that do not exist yet
    Base.metadata.create_all(bind=container.engine)

    logger.info("JogoLinga API ready", extra={
        "environment": container.settings.environment
    })

    yield

    logger.info("Shutting down JogoLinga API")
    if owns_container:
        container.dispose()


def _cors_origins(container: Optional[ServiceContainer]) -> List[str]:
    if container is not None:
        return container.settings.cors_origins
    # The container is built in the lifespan, after middleware is installed
    return parse_cors_origins(
        os.getenv("CORS_ORIGINS"),
        os.getenv("FRONTEND_URL") or DEFAULT_FRONTEND_URL,
    )


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        container: Pre-built container (tests); built from the environment
            at startup when omitted
    """
    app = FastAPI(
        title="JogoLinga API",
        description="Subscription entitlements and premium feature gating",
        version="1.0.0",
        lifespan=lifespan
    )
    if container is not None:
        app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(container),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(subscription.router)
    app.include_router(payments.router)
    app.include_router(webhooks_stripe.router)
    app.include_router(premium.router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unhandled exceptions with proper logging."""
        logger.error(
            "Unhandled exception",
            extra={
                "error": str(exc),
                "error_type": type(exc).__name__,
                "path": request.url.path
            },
            exc_info=True
        )

        state_container = getattr(request.app.state, "container", None)
        is_production = (
            state_container.settings.is_production
            if state_container is not None
            else os.getenv("ENV") == "production"
        )

        content = {"error": "Internal server error"}
        if is_production:
            content["detail"] = "An unexpected error occurred"
        else:
            content["detail"] = f"{type(exc).__name__}: {exc}"

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=content
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
