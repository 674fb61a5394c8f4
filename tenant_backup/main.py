### tenant_backup/main.py

"""
FastAPI application: backup intake and health check.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from tenant_backup.backups.router import router as backup_router
from tenant_backup.core.config import get_settings
from tenant_backup.core.db import init_db
from tenant_backup.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    init_db()
    logger.info(f"Backup intake started ({settings.environment})")
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="Tenant Backup Service", lifespan=lifespan)
    app.include_router(backup_router)

    @app.get("/health", tags=["Health"])
    def health():
        return {"status": "ok"}

    return app


app = create_app()
