"""FastAPI application for the Quest sideloader."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
import uvicorn

from sideloader.api.routes import router
from sideloader.config import Settings, load_settings
from sideloader.services.device import AdbDeviceBackend
from sideloader.services.orchestrator import InstallOrchestrator
from sideloader.services.state_manager import StateManager
from sideloader.utils.logging import setup_logger


def build_orchestrator(settings: Settings) -> InstallOrchestrator:
    backend = AdbDeviceBackend(
        adb_path=settings.adb_path,
        auth_timeout=settings.auth_timeout,
        poll_interval=settings.poll_interval,
    )
    return InstallOrchestrator(
        backend=backend,
        settings=settings,
        state_manager=StateManager(settings.log_history),
    )


def configure_logging(settings: Settings) -> logging.Logger:
    """Set up the rotating service log from settings."""
    return setup_logger(
        "sideloader",
        settings.log_file,
        max_bytes=settings.log_max_bytes,
        backup_count=settings.log_backup_count,
        level=settings.log_level_value,
    )


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[InstallOrchestrator] = None,
) -> FastAPI:
    """Create the API application.

    Args:
        settings: Service settings (loaded from file/environment if None)
        orchestrator: Pre-built orchestrator (tests pass one with a fake backend)
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup: logger, download directory, orchestrator. Shutdown: disconnect."""
        logger = configure_logging(settings)
        logger.info("Sideloader starting up...")

        Path(settings.download_dir).mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {settings.download_dir}")

        if getattr(app.state, "orchestrator", None) is None:
            app.state.orchestrator = build_orchestrator(settings)

        logger.info(f"Sideloader ready on {settings.host}:{settings.port}")

        yield

        logger.info("Sideloader shutting down...")
        await app.state.orchestrator.disconnect()

    app = FastAPI(
        title="Quest Sideloader",
        description="Install APKs and OBB bundles on a USB-connected headset",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.include_router(router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "service": "quest-sideloader", "version": "1.0.0"}

    return app


def main():
    """Main entry point for running the server."""
    settings = load_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    main()
