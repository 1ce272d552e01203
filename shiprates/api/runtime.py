"""Process-wide service instances shared by the API routes.

Built once in the application lifespan and stored on ``app.state.runtime``.
The rate cache and de-duplicator live here so every analysis started
through the API shares them.
"""

import logging
from dataclasses import dataclass

from fastapi import Request

from shiprates.config import AppConfig
from shiprates.db.connection import create_session_factory, init_db
from shiprates.services.analysis_pipeline import AnalysisPipeline
from shiprates.services.analysis_store import AnalysisStore
from shiprates.services.rate_cache import RateCache, RequestDeduplicator
from shiprates.services.rate_lookup import (
    RateLookupService,
    RateProvider,
    UnconfiguredRateProvider,
)
from shiprates.services.status_notifier import AnalysisStatusNotifier

logger = logging.getLogger(__name__)


@dataclass
class ApiRuntime:
    config: AppConfig
    store: AnalysisStore
    cache: RateCache
    deduplicator: RequestDeduplicator
    notifier: AnalysisStatusNotifier
    pipeline: AnalysisPipeline

    async def shutdown(self) -> None:
        await self.pipeline.shutdown()
        self.deduplicator.clear()
        self.cache.clear()


def build_runtime(config: AppConfig, rate_provider: RateProvider | None = None) -> ApiRuntime:
    """Create the database schema and wire the services together."""
    session_factory = create_session_factory(config.database.url, echo=config.database.echo)
    init_db(session_factory)
    store = AnalysisStore(session_factory)
    cache = RateCache(
        max_entries=config.cache.max_entries,
        default_ttl=config.cache.default_ttl_seconds,
    )
    deduplicator = RequestDeduplicator()
    notifier = AnalysisStatusNotifier()
    if rate_provider is None:
        logger.warning("No rate provider configured; every rate lookup will fail.")
        rate_provider = UnconfiguredRateProvider()
    pipeline = AnalysisPipeline(
        store,
        RateLookupService(rate_provider, cache, deduplicator),
        config=config,
        notifier=notifier,
    )
    return ApiRuntime(
        config=config,
        store=store,
        cache=cache,
        deduplicator=deduplicator,
        notifier=notifier,
        pipeline=pipeline,
    )


def get_runtime(request: Request) -> ApiRuntime:
    """Dependency to get the shared ApiRuntime."""
    return request.app.state.runtime
