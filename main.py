# main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

# Settings and monitoring
from settings import get_settings
settings = get_settings()

# Initialize Sentry error monitoring (if configured)
if settings.SENTRY_DSN:
    import sentry_sdk
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.1,  # 10% sampling for performance (free tier friendly)
    )

# Database initialization
from database import init_db

# Import routers
from routers import pos

# POS integration core
from services.integrations import POSIntegrationError, build_registry
from services.token_vault import TokenVault

# Import scheduler
from scheduler import start_scheduler, shutdown_scheduler

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME, version="1.0.0")


@app.exception_handler(POSIntegrationError)
async def pos_integration_exception_handler(request: Request, exc: POSIntegrationError):
    """Map integration errors to their status codes without leaking provider bodies."""
    detail = exc.message
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}")
        if settings.is_production:
            detail = "An upstream error occurred. Please try again later."
    else:
        logger.warning(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}")

    content = {"detail": detail}
    supported = getattr(exc, "supported", None)
    if supported is not None:
        content["supportedProviders"] = supported
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred. Please try again later."}
    )


# Initialize database, provider registry and scheduler on startup
@app.on_event("startup")
async def startup_event():
    init_db()
    app.state.token_vault = TokenVault.from_hex(settings.ENCRYPTION_KEY)
    app.state.provider_registry = build_registry(settings)
    logger.info(f"POS providers available: {app.state.provider_registry.list_supported()}")
    start_scheduler()
    logger.info("Background scheduler started")

@app.on_event("shutdown")
async def shutdown_event():
    shutdown_scheduler()
    logger.info("Background scheduler stopped")


# CORS configuration - use environment-specific origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# Include API routers
app.include_router(pos.router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "environment": settings.ENVIRONMENT,
        "providers": app.state.provider_registry.list_supported()
        if hasattr(app.state, "provider_registry") else []
    }
