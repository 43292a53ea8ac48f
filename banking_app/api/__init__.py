"""
Banking API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_config
from ..exceptions import BankingError
from ..logging_config import setup_logging, get_logger
from .dependencies import BankingSystem
from .customers import router as customers_router
from .accounts import router as accounts_router
from .transactions import router as transactions_router
from .loans import router as loans_router


logger = get_logger("banking_app.api")

# Seconds a client should wait before retrying a storage failure
RETRY_AFTER_SECONDS = 1


def banking_error_response(exc: BankingError) -> JSONResponse:
    """Render a domain error as {"error", "code", "details"}"""
    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "code": exc.code, "details": exc.details},
        headers=headers
    )


def create_app(system: Optional[BankingSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    if system is None:
        system = BankingSystem()
    config = system.config

    app = FastAPI(
        title="Banking API",
        description="Customer, account, transaction and loan records with atomic balance updates",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.banking_system = system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BankingError)
    async def handle_banking_error(request: Request, exc: BankingError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return banking_error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": [str(part) for part in error["loc"]], "msg": error["msg"], "type": error["type"]}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "code": "validation_error", "details": {"errors": errors}}
        )

    # Include routers
    prefix = config.api_prefix
    app.include_router(customers_router, prefix=f"{prefix}/customers", tags=["Customers"])
    app.include_router(accounts_router, prefix=f"{prefix}/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix=f"{prefix}/transactions", tags=["Transactions"])
    app.include_router(loans_router, prefix=f"{prefix}/loans", tags=["Loans"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "banking_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Banking API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "customers": f"{prefix}/customers",
                "accounts": f"{prefix}/accounts",
                "transactions": f"{prefix}/transactions",
                "loans": f"{prefix}/loans",
            }
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, reload: Optional[bool] = None):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level)
    uvicorn.run(
        "banking_app.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=config.api_reload if reload is None else reload,
        log_level=config.log_level.lower()
    )
