"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from dyncrud.core.config import settings
from dyncrud.core.middleware import setup_middleware
from dyncrud.core.rate_limiter import limiter
from dyncrud.core.exceptions import AuthenticationError, DynCrudError

from dyncrud.api.auth import router as auth_router
from dyncrud.api.crud import router as crud_router
from dyncrud.api.admin import router as admin_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("dyncrud")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    from dyncrud.executor.crud_executor import CrudExecutor
    from dyncrud.services.audit_service import AuditRecorder
    from dyncrud.services.cache_service import cache_service
    from dyncrud.services.catalog_service import TableCatalog
    from dyncrud.services.ledger_service import LoginLedger
    from dyncrud.services.statement_builder import StatementBuilder

    logger.info("🚀 Starting Dynamic CRUD API")

    # The catalog is required; a bad catalog source aborts startup
    catalog = TableCatalog.from_settings()
    logger.info("✅ Catalog ready (%d tables)", len(catalog))

    recorder = AuditRecorder()
    app.state.catalog = catalog
    app.state.recorder = recorder
    app.state.executor = CrudExecutor(catalog, StatementBuilder(), recorder)
    app.state.ledger = LoginLedger()

    # Redis carries alerts only; the API works without it
    if cache_service.health_check():
        logger.info("✅ Redis connected")
    else:
        logger.warning("⚠️  Redis not available, audit alerts will be log-only")

    yield

    logger.info("🔻 Shutting down Dynamic CRUD API")
    recorder.shutdown()


app = FastAPI(
    title="Dynamic CRUD API",
    description="Catalog-driven CRUD over relational tables with a durable audit trail",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Middleware
setup_middleware(app)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Exception handler for platform errors
@app.exception_handler(DynCrudError)
async def dyncrud_exception_handler(request: Request, exc: DynCrudError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers,
    )

# Register routers
app.include_router(auth_router, prefix="/api")
app.include_router(crud_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/api/health")
async def health():
    """Quick health check endpoint."""
    return {"status": "ok"}
