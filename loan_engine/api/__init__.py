"""
Loan Engine API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .deps import LoanSystem, get_loan_system
from .loans import router as loans_router
from .. import __version__
from ..config import get_config
from ..logging_config import setup_logging


def create_app(system: Optional[LoanSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Loan system to serve; defaults to one built from configuration
    """
    config = system.config if system else get_config()
    setup_logging(level=config.log_level, log_format=config.log_format, log_file=config.log_file)

    app = FastAPI(
        title="Loan Engine API",
        description="Loan amortization schedules and payment reconciliation",
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

    app.include_router(loans_router, prefix="/loans", tags=["Loans"])

    if system is not None:
        app.dependency_overrides[get_loan_system] = lambda: system

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_engine_api",
            "version": __version__
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "loan_engine.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
