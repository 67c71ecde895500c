"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shuttle.api import geocoding, services, ws
from shuttle.config import settings
from shuttle.core.eta_estimator import EtaSessions
from shuttle.core.geocoding_client import GeocodingClient
from shuttle.core.push_client import PushClient
from shuttle.core.relay import LocationRelay
from shuttle.core.rooms import RoomRegistry
from shuttle.core.route_optimizer import RouteOptimizer
from shuttle.core.routing_client import RoutingClient
from shuttle.core.scheduler import create_scheduler
from shuttle.core.store import ServiceStore
from shuttle.core.trip_planner import TripPlanner
from shuttle.db.session import async_session, engine
from shuttle.models.base import Base
from shuttle.models import tables  # noqa: F401

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    # Create tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Initialize services
    store = ServiceStore(async_session)
    push = PushClient(store)
    routing = RoutingClient()
    geocoder = GeocodingClient()
    registry = RoomRegistry()
    relay = LocationRelay(registry, store=store, push=push)
    planner = TripPlanner(registry, store, RouteOptimizer(routing))
    eta_sessions = EtaSessions(routing)
    registry.on_idle(eta_sessions.drop_service)

    # Wire up API modules
    ws.relay = relay
    services.store = store
    services.planner = planner
    services.registry = registry
    services.eta_sessions = eta_sessions
    geocoding.geocoder = geocoder

    scheduler = create_scheduler(planner)
    scheduler.start()
    logger.info(
        "Shuttle relay started on port %d - refreshing live routes every %ds",
        settings.port, settings.route_refresh_seconds,
    )

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    await relay.close()
    await push.close()
    await routing.close()
    await geocoder.close()
    await engine.dispose()
    logger.info("Shuttle relay shut down")


app = FastAPI(
    title="Shuttle Live Tracking",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(services.router)
app.include_router(geocoding.router)
app.include_router(ws.router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}


def run() -> None:
    import uvicorn

    uvicorn.run("shuttle.main:app", host="0.0.0.0", port=settings.port)
