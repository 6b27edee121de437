"""FastAPI server for the service monitor."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.service_routes import service_router
from src.config import settings
from src.health.errors import ValidationError
from src.health.monitor import Monitor
from src.services.registry import ServiceRegistry
from src.storage import get_storage

logger = logging.getLogger(__name__)


def build_monitor() -> Monitor:
    """Monitor wired from settings."""
    options = {}
    if settings.storage_backend == "sqlite":
        options["db_path"] = Path(settings.db_path)
    storage = get_storage(settings.storage_backend, **options)
    return Monitor(
        storage,
        failure_threshold=settings.failure_threshold,
        max_workers=settings.probe_workers,
        probe_grace_ms=settings.probe_grace_ms,
        history_limit=settings.history_limit,
    )


def seed_services(monitor: Monitor, path: Path) -> int:
    """Add services from the seed file that the monitor does not know yet."""
    added = 0
    known_names = {s.definition.name for s in monitor.list_services()}
    for definition in ServiceRegistry(path).load():
        if definition.id and monitor.scheduler.get(definition.id):
            continue
        if not definition.id and definition.name in known_names:
            continue  # id-less entries are matched by name
        try:
            monitor.add_service(definition)
            added += 1
        except ValidationError as e:
            logger.warning("Seed service %s rejected: %s", definition.name, e)
    return added


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load services and start the scheduler on startup."""
    monitor = getattr(app.state, "monitor", None)
    if monitor is None:
        monitor = build_monitor()
        app.state.monitor = monitor
        monitor.load_persisted()
        seeded = seed_services(monitor, Path(settings.services_file))
        if seeded:
            logger.info("Seeded %d services from %s", seeded, settings.services_file)

    try:
        await monitor.start()
    except Exception:
        logger.exception("Health scheduler failed to start")

    yield

    # Shutdown
    await monitor.stop()
    monitor.storage.close()


def create_app(monitor: Monitor | None = None) -> FastAPI:
    app = FastAPI(
        title="Service Monitor",
        version="0.1.0",
        lifespan=lifespan,
    )
    if monitor is not None:
        app.state.monitor = monitor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(service_router, prefix="/api")

    @app.get("/api/health")
    async def health() -> dict[str, object]:
        """Liveness of the monitor process itself."""
        scheduler = app.state.monitor.scheduler
        return {
            "status": "ok",
            "scheduler_running": scheduler.running,
            "services": len(scheduler.service_ids()),
        }

    return app


app = create_app()
