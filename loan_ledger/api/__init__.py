"""
Loan Ledger API Application Factory
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..exceptions import (
    LedgerError, PermissionDenied, RecordNotFound, PeriodClosed, PeriodAlreadyClosed,
    AlreadyReversed, SystemAccountProtected, ConcurrencyConflict, UnbalancedEntry
)
from .loans import router as loans_router
from .repayments import router as repayments_router
from .accounts import router as accounts_router
from .ledger import router as ledger_router
from .periods import router as periods_router
from .audit import router as audit_router


logger = logging.getLogger(__name__)

# First match wins; validation errors are ValueErrors
ERROR_STATUS = (
    (PermissionDenied, 403),
    (RecordNotFound, 404),
    ((PeriodClosed, PeriodAlreadyClosed, AlreadyReversed, SystemAccountProtected), 409),
    (ConcurrencyConflict, 503),
    (ValueError, 400),
)


def status_for(error: Exception) -> int:
    for error_types, status_code in ERROR_STATUS:
        if isinstance(error, error_types):
            return status_code
    return 500


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Loan Ledger API",
        description="Loan accounting core: amortization, repayment allocation and double-entry books",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status_code = status_for(exc)
        if isinstance(exc, UnbalancedEntry):
            logger.error("Unbalanced entry while handling %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status_code,
            content={"error": type(exc).__name__, "detail": str(exc), "retryable": exc.retryable}
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content={"error": "ValidationError", "detail": str(exc), "retryable": False}
        )

    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(repayments_router, prefix="/repayments", tags=["Repayments"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(ledger_router, prefix="/ledger", tags=["Ledger"])
    app.include_router(periods_router, prefix="/periods", tags=["Periods"])
    app.include_router(audit_router, prefix="/audit", tags=["Audit"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_ledger_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Loan Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "loans": "/loans",
                "repayments": "/repayments",
                "accounts": "/accounts",
                "ledger": "/ledger",
                "periods": "/periods",
                "audit": "/audit"
            }
        }

    return app
