"""
Dental Vitals Practice Intelligence
Main FastAPI application
"""
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager

from dental_vitals.config import get_settings
from dental_vitals.services.metric_store import UpstreamFailure
from dental_vitals.utils.logger import log
from dental_vitals import __version__

# Import routers
from dental_vitals.api import health, metrics, vital_signs, insights, alerts

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    # Initialize database
    try:
        from dental_vitals.models.base import init_db
        init_db()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    # Start the scheduler for the monthly insights run
    if settings.enable_scheduler:
        try:
            from dental_vitals.scheduler import start_scheduler
            start_scheduler()
        except Exception as e:
            log.error(f"Scheduler startup error: {str(e)}")

    yield

    # Shutdown
    if settings.enable_scheduler:
        from dental_vitals.scheduler import stop_scheduler
        stop_scheduler()
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Marketing analytics for dental practices

    - Per-source metrics (GA4, Search Console, Business Profile, Clarity, PMS)
      with a 0-100 score and trend
    - Vital Signs: weighted composite score, letter grade and monthly change
    - Monthly patient-journey insights (LLM with rule-based fallback)
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    # Also catches fastapi.HTTPException and the router's own 404/405
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"success": False, "error": "Invalid request", "details": jsonable_encoder(exc.errors())}
    )


@app.exception_handler(UpstreamFailure)
async def upstream_failure_handler(request: Request, exc: UpstreamFailure):
    log.error(f"Upstream failure on {request.url.path}: {str(exc)}")
    return JSONResponse(status_code=503, content={"success": False, "error": str(exc)})


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(metrics.router)
app.include_router(vital_signs.router)
app.include_router(insights.router)
app.include_router(alerts.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "dental_vitals.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
