"""
Identity Reconciliation Service
FastAPI Application Entry Point

Run with:

    python -m api.main

or under uvicorn directly:

    uvicorn api.main:app --host 0.0.0.0 --port 8000
"""
# Load environment variables from .env file first, before any imports
from dotenv import load_dotenv
load_dotenv()

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.routes import identify
from api.services.contact_store import get_contact_store
from api.services.errors import ReconciliationError
from config.settings import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    # Startup: open the contact store so schema problems fail fast
    store = get_contact_store()
    logger.info(
        f"Identity service started (environment={settings.environment}, db={store.db_path})"
    )

    yield  # Application runs here

    logger.info("Identity service shutting down")


app = FastAPI(
    title="Identity Reconciliation",
    description="Consolidates customer contact submissions into identity clusters",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status and duration for every request."""
    start = time.perf_counter()
    logger.debug(f"Incoming request: {request.method} {request.url.path}")

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start) * 1000
    level = logging.WARNING if response.status_code >= 400 else logging.INFO
    logger.log(
        level,
        f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms:.0f}ms)"
    )
    return response


# Include routers
app.include_router(identify.router)


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    """Map reconciliation errors to their HTTP status."""
    if exc.is_operational:
        logger.warning(
            f"Operational error on {request.method} {request.url.path}: "
            f"{exc.message} ({exc.status_code})"
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    logger.error(f"Non-operational error on {request.method} {request.url.path}: {exc.message}", exc_info=exc)
    content = {"error": exc.message}
    if settings.is_development and exc.__cause__ is not None:
        content["details"] = str(exc.__cause__)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert request body errors to 400 with clear messages."""
    details = [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "details": details}
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Return JSON for unknown routes and other HTTP errors."""
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={"error": "Not Found", "message": f"Cannot {request.method} {request.url.path}"}
        )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Last-resort handler: never leak internals outside development."""
    logger.error(f"Unexpected error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    content = {"error": "Internal server error"}
    if settings.is_development:
        content["details"] = str(exc)
    return JSONResponse(status_code=500, content=content)


@app.get("/health")
async def health_check():
    """Liveness check."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.service_name,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
