"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Lifespan manager — logging setup, DB table creation, engine disposal
  2. CORS middleware — allows frontend origins to make cross-origin requests
  3. Exception handlers — maps ledger errors to HTTP responses
  4. Router registration — mounts the ledger endpoint groups under /financial

Running locally:
    uvicorn ledger.main:app --reload
"""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ledger.config import settings
from ledger.database import Base, engine
from ledger.exceptions import register_exception_handlers
from ledger.logging_config import setup_logging
from ledger.routers import (
    accounts,
    credit_cards,
    installments,
    invoices,
    payments,
    statements,
    transactions,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      Configures logging and creates all tables that don't exist yet. In
      production, schema changes belong in migrations instead.

    Shutdown:
      Disposes of the database engine, closing all connections cleanly.
    """
    # --- Startup ---
    setup_logging()
    if engine.url.get_backend_name() == "sqlite" and engine.url.database:
        Path(engine.url.database).parent.mkdir(parents=True, exist_ok=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    # --- Shutdown ---
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Financial ledger: accounts, transactions, credit card invoices, installments and payments",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

# Card routers with static first segments (/invoices, /installments,
# /payments) go before the ones that start with {account_id}.
app.include_router(accounts.router, prefix="/financial/accounts", tags=["Accounts"])
app.include_router(transactions.router, prefix="/financial/transactions", tags=["Transactions"])
app.include_router(payments.router, prefix="/financial/credit-cards", tags=["Payments"])
app.include_router(invoices.router, prefix="/financial/credit-cards", tags=["Invoices"])
app.include_router(installments.router, prefix="/financial/credit-cards", tags=["Installments"])
app.include_router(credit_cards.router, prefix="/financial/credit-cards", tags=["Credit Cards"])
app.include_router(statements.router, prefix="/financial/statements", tags=["Statements"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness check for deployments."""
    return {"status": "ok", "version": settings.APP_VERSION}
