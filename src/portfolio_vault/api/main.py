# Portfolio API - FastAPI Backend
#
# Local REST server consumed by the browser UI. One VaultStore and one
# PriceAggregator live on app.state for the lifetime of the app; there is
# no module-level session state.

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional, Type

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import Settings
from ..core import EventSeverity, EventType, configure_audit_logger
from ..exceptions import (
    AlreadyExistsError,
    AuthenticationError,
    LockedError,
    NotFoundError,
    PasswordPolicyError,
    PortfolioVaultError,
    SchemaError,
    VaultWriteError,
)
from ..prices import PriceAggregator
from ..vault import VaultStore
from .portfolio_routes import router as portfolio_router

logger = logging.getLogger(__name__)

_ERROR_STATUS: Dict[Type[PortfolioVaultError], int] = {
    LockedError: status.HTTP_401_UNAUTHORIZED,
    AuthenticationError: status.HTTP_401_UNAUTHORIZED,
    AlreadyExistsError: status.HTTP_400_BAD_REQUEST,
    PasswordPolicyError: status.HTTP_400_BAD_REQUEST,
    SchemaError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    VaultWriteError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

_ERROR_DETAIL: Dict[Type[PortfolioVaultError], str] = {
    LockedError: "Database is locked",
    AuthenticationError: "Invalid password",
}


def create_app(
    settings: Optional[Settings] = None,
    aggregator: Optional[PriceAggregator] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Runtime settings (``Settings.from_env()`` if omitted)
        aggregator: Price aggregator (built from settings if omitted)
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        audit = configure_audit_logger(settings.audit_dir)
        audit.log_event(
            EventType.SYSTEM_START,
            EventSeverity.INFO,
            "Portfolio Vault API starting",
            details={"version": __version__, "data_file": str(settings.data_file)},
        )
        app.state.vault = VaultStore(settings.data_file)
        app.state.aggregator = aggregator or PriceAggregator.from_settings(settings)
        try:
            yield
        finally:
            app.state.vault.lock()
            await app.state.aggregator.aclose()
            audit.log_event(EventType.SYSTEM_STOP, EventSeverity.INFO, "Portfolio Vault API stopped")

    app = FastAPI(
        title="Portfolio Vault API",
        description="Encrypted personal investment tracker",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173", "http://127.0.0.1:5173",
            "http://localhost:3000", "http://127.0.0.1:3000",
        ],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PortfolioVaultError)
    async def vault_error_handler(request: Request, exc: PortfolioVaultError):
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
        detail = str(exc)
        for error_type, error_code in _ERROR_STATUS.items():
            if isinstance(exc, error_type):
                code = error_code
                detail = _ERROR_DETAIL.get(error_type, detail)
                break
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content={"detail": detail})

    @app.exception_handler(IndexError)
    async def index_error_handler(request: Request, exc: IndexError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": "Invalid index"})

    app.include_router(portfolio_router)
    return app


def start_api_server(settings: Optional[Settings] = None):
    """
    Start the API server.

    Binds to localhost by default; the vault is meant for a single local user.
    """
    settings = settings or Settings.from_env()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level="info")
