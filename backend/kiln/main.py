"""
Kiln backend service: project management and build status over HTTP.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .compilers.base import Compiler
from .config import KilnSettings, load_settings
from .persistence.store import ProjectStore
from .routes import events, projects
from .runtime import KilnRuntime

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[KilnSettings] = None,
    compiler: Optional[Compiler] = None,
    store: Optional[ProjectStore] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    The store is loaded here, so a corrupt store fails app creation
    instead of being reset.

    Args:
        settings: Runtime settings (default: load_settings())
        compiler: Compiler capability (default: command-line compilers)
        store: Pre-loaded store (default: settings.projects_file)

    Raises:
        CorruptStoreError: If the persisted store cannot be read
    """
    settings = settings or load_settings()
    runtime = KilnRuntime.open(settings, compiler=compiler, store=store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        runtime.start()
        try:
            yield
        finally:
            runtime.close()

    app = FastAPI(title="Kiln Backend", version=__version__, lifespan=lifespan)

    # CORS middleware for frontend access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173"],  # Vite dev server
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.runtime = runtime
    app.state.store = runtime.store
    app.state.event_bus = runtime.event_bus
    app.state.project_manager = runtime.manager
    app.state.build_coordinator = runtime.coordinator

    app.include_router(projects.router)
    app.include_router(events.router)

    @app.get("/health")
    async def health(request: Request):
        store = request.app.state.store
        return {
            "status": "ok",
            "version": __version__,
            "projects": len(store.all()),
            "watching": runtime.watcher is not None and runtime.watcher.running,
        }

    @app.get("/")
    async def root():
        return {"service": "kiln-backend", "status": "running"}

    logger.info(f"Kiln backend created (data dir: {settings.data_dir})")
    return app
