"""FastAPI application for the shiprates API.

Provides the application factory with routers, middleware and exception
handlers configured, and a module-level ``app`` for uvicorn:

    uvicorn shiprates.api.main:app
"""

import logging
import time as _time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shiprates import __version__
from shiprates.api.middleware.auth import maybe_require_api_key
from shiprates.api.routes import analyses, markup_profiles
from shiprates.api.runtime import build_runtime
from shiprates.config import AppConfig, load_config
from shiprates.errors import RateAnalysisError
from shiprates.logging_config import configure_logging
from shiprates.services.rate_lookup import RateProvider

logger = logging.getLogger(__name__)


def create_app(
    config: AppConfig | None = None,
    rate_provider: RateProvider | None = None,
) -> FastAPI:
    """Build the API application.

    Args:
        config: Settings; loaded from ``shiprates.yaml`` / env when omitted.
        rate_provider: Carrier rating client shared by every analysis.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build shared services on startup, drain analyses on shutdown."""
        app_config = config or load_config()
        configure_logging(app_config.api.log_level)
        app.state.started_at = _time.time()
        app.state.runtime = build_runtime(app_config, rate_provider)
        logger.info("shiprates API started database=%s", app_config.database.url)

        yield

        await app.state.runtime.shutdown()
        logger.info("shiprates API stopped")

    app = FastAPI(
        title="shiprates API",
        description="Batch shipping-rate comparison",
        version=__version__,
        lifespan=lifespan,
    )

    # Optional API auth when SHIPRATES_API_KEY is configured.
    app.middleware("http")(maybe_require_api_key)

    @app.exception_handler(RateAnalysisError)
    async def rate_analysis_error_handler(
        request: Request, exc: RateAnalysisError
    ) -> JSONResponse:
        """Handle RateAnalysisError exceptions with consistent format."""
        return JSONResponse(
            status_code=400,
            content={
                "error_code": exc.code,
                "message": exc.message,
                "remediation": exc.remediation,
                "details": exc.details if exc.details else None,
            },
        )

    app.include_router(analyses.router)
    app.include_router(markup_profiles.router)

    @app.get("/health")
    def health_check(request: Request) -> dict:
        """Health check endpoint with cache and uptime figures."""
        runtime = getattr(request.app.state, "runtime", None)
        started_at = getattr(request.app.state, "started_at", None)
        return {
            "status": "ok",
            "version": __version__,
            "uptime_seconds": round(_time.time() - started_at, 1) if started_at else 0.0,
            "rate_cache": runtime.cache.stats() if runtime else None,
            "active_analyses": len(runtime.pipeline.background) if runtime else 0,
        }

    return app


app = create_app()


def main() -> None:
    """Run the API with uvicorn using the configured host and port."""
    import uvicorn

    config = load_config()
    uvicorn.run(
        create_app(config),
        host=config.api.host,
        port=config.api.port,
        log_level=config.api.log_level,
    )


if __name__ == "__main__":
    main()
