"""
Customer Identity Reconciliation Service
FastAPI Application Entry Point

Start the server with `identity-server`, which runs uvicorn with the
host/port from settings.
"""
# Load environment variables from .env file first, before any imports
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.routes import identify
from api.services.contact_store import get_contact_store
from api.services.errors import IdentityError
from config.settings import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - open the contact store on startup."""
    store = get_contact_store()
    logger.info(f"Contact store ready ({type(store).__name__}, {store.count()} active contacts)")

    yield  # Application runs here

    logger.info("Identity service stopped")


app = FastAPI(
    title="Identity Reconciliation",
    description="Consolidates customer contact details into one identity per customer",
    version="1.0.0",
    lifespan=lifespan
)

# Include routers
app.include_router(identify.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert validation errors to 400 with clear messages."""
    errors = exc.errors()

    # Sanitize errors for JSON serialization (bytes input, exception ctx)
    sanitized_errors = []
    for error in errors:
        sanitized = dict(error)
        if "input" in sanitized and isinstance(sanitized["input"], bytes):
            sanitized["input"] = sanitized["input"].decode("utf-8", errors="replace")
        if "ctx" in sanitized:
            sanitized["ctx"] = {k: str(v) for k, v in sanitized["ctx"].items()}
        sanitized_errors.append(sanitized)

    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "detail": sanitized_errors}
    )


@app.exception_handler(IdentityError)
async def identity_exception_handler(request: Request, exc: IdentityError):
    """Map identity errors to their status codes."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": exc.message}
    )


@app.get("/health")
async def health_check():
    """Health check endpoint that verifies the contact store answers."""
    checks = {}
    try:
        get_contact_store().count()
        checks["store"] = True
    except IdentityError as e:
        logger.error(f"Health check: contact store unavailable: {e}")
        checks["store"] = False

    all_healthy = all(checks.values())

    return {
        "status": "healthy" if all_healthy else "degraded",
        "service": "identity-reconciliation",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def run():
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run("api.main:app", host=settings.host, port=settings.port)
