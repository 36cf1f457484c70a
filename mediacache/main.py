import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from . import __version__
from .api.media import router as media_router
from .api.ops import router as ops_router
from .api.routes_health import router as health_router
from .core.config import Settings, settings as default_settings
from .core.log_buffer import configure_logging, install_log_buffer
from .core.transform import ImageTransformer
from .services.fill import FillOrchestrator
from .storage import BlobStore, build_cache_store, build_origin_store

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    origin: Optional[BlobStore] = None,
    cache: Optional[BlobStore] = None,
    transformer: Optional[ImageTransformer] = None,
) -> FastAPI:
    """Build the application.

    Stores default to the backends named in settings; pass them explicitly
    to inject other implementations. They are connected once at startup.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        orchestrator = FillOrchestrator.from_settings(
            settings,
            origin or build_origin_store(settings),
            cache or build_cache_store(settings),
            transformer,
        )
        await orchestrator.startup()
        app.state.orchestrator = orchestrator
        try:
            yield
        finally:
            app.state.orchestrator = None
            await orchestrator.shutdown()

    app = FastAPI(
        title="mediacache",
        description="On-demand image transformation cache",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.orchestrator = None
    app.state.settings = settings

    app.include_router(health_router)
    if settings.OPS_ENDPOINTS:
        app.include_router(ops_router)
    # Catch-all must stay last
    app.include_router(media_router)
    return app


configure_logging(default_settings.LOG_LEVEL)
install_log_buffer()

app = create_app()


def run() -> None:
    import uvicorn

    logger.info("Image server running on port %s", default_settings.PORT)
    uvicorn.run(app, host=default_settings.HOST, port=default_settings.PORT)
