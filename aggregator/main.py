"""
Sports Data Aggregator - Main FastAPI Application
Odds, props and rosters served from cache, refreshed through provider fallback chains
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from aggregator.dispatcher import AggregationDispatcher
from aggregator.health import build_health_report
from aggregator.maintenance import MaintenanceLoop
from aggregator.service import get_dispatcher
from config.settings import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("main")

# Version tracking
APP_VERSION = "v0.3.0"
APP_NAME = "Sports Data Aggregator"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the maintenance loop when enabled; stop it on shutdown."""
    logger.info(f"Starting {APP_NAME} {APP_VERSION}")
    maintenance: Optional[MaintenanceLoop] = None
    if settings.maintenance_enabled:
        maintenance = MaintenanceLoop.from_settings(get_dispatcher(), settings)
        maintenance.start()
    yield
    if maintenance is not None:
        maintenance.stop()


app = FastAPI(
    title=APP_NAME,
    description="Cached sports odds, props and rosters with provider fallback",
    version=APP_VERSION,
    lifespan=lifespan,
)

# Query parameters that address the router itself rather than the operation
ROUTER_PARAMS = {"operation", "sport"}


@app.get("/health")
def health_check(
    deep: bool = Query(False, description="Also ping upstream hosts"),
    dispatcher: AggregationDispatcher = Depends(get_dispatcher),
):
    """Health check endpoint."""
    return build_health_report(dispatcher, APP_VERSION, deep=deep)


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "full": f"{APP_NAME} {APP_VERSION}",
    }


@app.get("/cache/stats")
def cache_stats(dispatcher: AggregationDispatcher = Depends(get_dispatcher)):
    """Get cache, coordinator and coalescer statistics."""
    return {
        "store": dispatcher.coordinator.store.get_stats(),
        "coordinator": dispatcher.coordinator.get_stats(),
    }


# =============================================================================
# AGGREGATION ROUTER
# =============================================================================

class RouterRequest(BaseModel):
    """Request body for the router endpoint."""
    operation: Optional[str] = None
    sport: Optional[str] = None
    options: Optional[Dict[str, Any]] = None


def _respond(envelope) -> JSONResponse:
    return JSONResponse(status_code=envelope.status, content=envelope.to_dict())


@app.get("/api/router")
def api_router_get(
    request: Request,
    operation: Optional[str] = Query(None, description="Operation name, e.g. getOdds"),
    sport: Optional[str] = Query(None, description="Sport key, e.g. nfl"),
    dispatcher: AggregationDispatcher = Depends(get_dispatcher),
):
    """
    Aggregation router.

    Operations: getOdds, getProps, getRosterStatus, syncRoster, refreshAll,
    cacheStatus, purgeCache. Any other query parameter is passed to the
    operation as an option (forceRefresh, markets, regions, maxAgeHours...).
    """
    options = {k: v for k, v in request.query_params.items() if k not in ROUTER_PARAMS}
    return _respond(dispatcher.handle(operation, sport, options))


@app.post("/api/router")
def api_router_post(
    body: RouterRequest,
    dispatcher: AggregationDispatcher = Depends(get_dispatcher),
):
    """Aggregation router, JSON body form."""
    return _respond(dispatcher.handle(body.operation, body.sport, body.options or {}))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "aggregator.main:app",
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower(),
    )
