"""
Lecture Reporting API: role-scoped reports, courses, classes, streams and users.
"""
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

import config
from database.connection import Database
from core.logger import logger
from policy.errors import PolicyError
from middleware.security import SecurityHeadersMiddleware, setup_cors
from middleware.auth_middleware import AuthRequiredMiddleware
from routers.auth import router as auth_router
from routers.users import router as users_router
from routers.streams import router as streams_router
from routers.courses import router as courses_router
from routers.classes import router as classes_router
from routers.reports import router as reports_router
from routers.dashboard import router as dashboard_router


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan events for FastAPI app.
    Open the database handle on startup and close it on shutdown.
    """
    logger.info("=" * 60)
    logger.info(f"Starting {config.APP_NAME}...")
    logger.info("=" * 60)

    owns_db = config.db is None
    if owns_db:
        try:
            config.db = Database(
                database_url=config.DATABASE_URL,
                pool_size=config.DB_POOL_SIZE,
                max_overflow=config.DB_MAX_OVERFLOW,
                statement_timeout_ms=config.DB_STATEMENT_TIMEOUT_MS
            )
            if config.CREATE_TABLES_ON_STARTUP:
                config.db.create_tables()
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}", exc_info=True)
            raise

    logger.info(f"Server ready! Environment: {config.ENVIRONMENT}")
    logger.info("API Docs: http://localhost:8000/docs")

    yield

    logger.info("Shutting down...")
    if owns_db and config.db:
        config.db.dispose()
        config.db = None
        logger.info("Database connections closed")


# Initialize FastAPI app
app = FastAPI(
    title=config.APP_NAME,
    description="Lecture reporting API with role- and stream-scoped access control",
    version=config.APP_VERSION,
    lifespan=lifespan
)


@app.exception_handler(PolicyError)
async def policy_error_handler(request: Request, exc: PolicyError):
    """Map policy errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.detail}")
    content = {"detail": exc.detail}
    if exc.reason:
        content["reason"] = exc.reason
    headers = {"Retry-After": "1"} if exc.status_code == 503 else None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


# Setup security middleware
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(AuthRequiredMiddleware)
setup_cors(app, config.CORS_ORIGINS, allow_credentials=config.CORS_ALLOW_CREDENTIALS)

# Include routers
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(streams_router)
app.include_router(courses_router)
app.include_router(classes_router)
app.include_router(reports_router)
app.include_router(dashboard_router)


@app.get("/")
async def root():
    """Root endpoint with API information. Public endpoint."""
    return {
        "message": config.APP_NAME,
        "version": config.APP_VERSION,
        "environment": config.ENVIRONMENT,
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring. Public endpoint."""
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "checks": {}
    }

    try:
        if config.db is None:
            health_status["checks"]["database"] = {"status": "error", "error": "not initialized"}
            health_status["status"] = "degraded"
        else:
            with config.db.get_session() as db:
                db.execute(text("SELECT 1"))
            health_status["checks"]["database"] = {"status": "ok"}
    except Exception as e:
        health_status["checks"]["database"] = {"status": "error", "error": str(e)}
        health_status["status"] = "degraded"

    return health_status


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
