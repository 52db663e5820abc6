"""FastAPI application factory."""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from banksync import __version__
from banksync.api.routers import rules, sync, webhooks
from banksync.bank.client import BankApiClient
from banksync.config import SyncConfig
from banksync.database.base import Database
from banksync.domain.errors import (
    ConflictError,
    DomainError,
    NotFoundError,
    SyncError,
    ValidationError,
)
from banksync.services import Services, build_services

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
}


def create_app(
    db: Database,
    config: Optional[SyncConfig] = None,
    client: Optional[BankApiClient] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """Build the HTTP app around a database.

    Args:
        db: Database instance
        config: Configuration
        client: Bank API client (needed for id-only webhooks and acknowledge)
        services: Prebuilt services (overrides db/config/client)
    """
    app = FastAPI(title="banksync", version=__version__)
    app.state.services = services or build_services(db, config, client)

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        status_code = ERROR_STATUS.get(type(exc), 400)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError):
        logger.warning("Bank API error during %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(webhooks.router)
    app.include_router(rules.router)
    app.include_router(sync.router)
    return app
