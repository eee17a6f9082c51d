import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from .analytics import FanOutAnalyticsSource, SingleQueryAnalyticsSource
from .api.endpoints import router as analytics_router
from .cache import CachedAnalyticsSource, build_cache
from .config import config
from .db import create_engine, create_session_factory, get_db, init_db
from .monitoring import MetricsCollector
from .persistence import create_sample_data
from .schemas import HealthResponse

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the engine, sources and cache; dispose them on shutdown."""
    engine = create_engine()
    await init_db(engine)
    session_factory = create_session_factory(engine)

    metrics = MetricsCollector(
        history_size=config.metrics_history_size,
        slow_request_ms=config.slow_request_ms
    )
    source_options = {
        "timeout": config.query_timeout_seconds,
        "trip_detail_limit": config.detail_limit,
        "observer": metrics,
    }
    fan_out = FanOutAnalyticsSource(session_factory, **source_options)
    single_query = SingleQueryAnalyticsSource(session_factory, **source_options)

    cache = build_cache(config)
    cached = None
    if cache is not None:
        cached = CachedAnalyticsSource(
            fan_out,
            cache,
            ttl_seconds=config.cache_ttl_seconds,
            key_prefix=config.cache_key_prefix,
            observer=metrics
        )

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.metrics = metrics
    app.state.cache = cache
    app.state.cached_source = cached
    app.state.fan_out_source = fan_out
    app.state.single_query_source = single_query
    app.state.analytics_source = cached or fan_out
    logger.info("Trip analytics started (cache backend: %s)", config.cache_backend)

    yield

    if cache is not None:
        await cache.close()
    await engine.dispose()

# Create FastAPI app
app = FastAPI(
    title="Driver Trip Analytics",
    description="Per-driver trip analytics: single JOIN query vs fan-out with in-memory merge",
    version="1.0.0",
    lifespan=lifespan
)

if config.enable_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Include API routes
app.include_router(analytics_router)

@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Driver Trip Analytics",
        "analytics": "/drivers/{driver_id}/analytics",
        "unoptimized": "/drivers/{driver_id}/analytics/unoptimized",
        "docs": "/docs"
    }

@app.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """Health check endpoint with database and cache status."""
    details = {}
    try:
        await db.execute(text("SELECT 1"))
        database = "healthy"
    except SQLAlchemyError as e:
        logger.warning("Database health check failed: %s", e)
        database = "unhealthy"
        details["database"] = type(e).__name__

    cache = app.state.cache
    if cache is None:
        cache_status = "disabled"
    else:
        cache_status = "healthy" if await cache.ping() else "unhealthy"

    status = "healthy" if database == "healthy" and cache_status != "unhealthy" else "degraded"
    return HealthResponse(status=status, database=database, cache=cache_status, details=details)

@app.post("/sample-data")
async def api_create_sample_data(db: AsyncSession = Depends(get_db)):
    """Insert the sample drivers, trips, payments and ratings."""
    try:
        created = await create_sample_data(db)
    except SQLAlchemyError as e:
        logger.exception("Sample data creation failed")
        raise HTTPException(status_code=500, detail="Internal server error") from e
    return {"message": "sample data created", "created": created}
