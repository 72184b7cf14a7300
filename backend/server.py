from fastapi import FastAPI, APIRouter, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from pathlib import Path
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import time
import traceback

# Load environment variables first
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from config import get_settings, validate_environment
from logging_config import setup_logging, get_logger, set_request_context, clear_request_context
from sentry_integration import init_sentry, capture_exception
from database import create_engine_from_settings, create_session_factory, init_db, check_db
from identity import ContactStore
from identity.router import router as identity_router
from utils.validation_errors import from_request_errors

settings = get_settings()

# JSON logs in production, plain text in development
setup_logging(
    level=settings.LOG_LEVEL,
    json_format=settings.is_production,
    service_name="identity-reconciliation"
)
logger = get_logger(__name__)

if settings.SENTRY_DSN:
    init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.1 if settings.is_production else 0.0,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler: owns the engine and contact store"""
    logger.info("=" * 60)
    logger.info("Starting Identity Reconciliation API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug Mode: {settings.debug_enabled}")
    logger.info("=" * 60)

    env_status = validate_environment(settings)
    if not env_status["valid"]:
        for error in env_status["errors"]:
            logger.error(f"Configuration Error: {error}")
        if settings.is_production:
            raise RuntimeError("Cannot start in production with invalid configuration")

    for warning in env_status.get("warnings", []):
        logger.warning(f"Configuration Warning: {warning}")

    engine = create_engine_from_settings(settings)
    try:
        await init_db(engine)
        logger.info("PostgreSQL connection established")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        await engine.dispose()
        raise

    app.state.engine = engine
    app.state.contact_store = ContactStore(create_session_factory(engine))

    logger.info("Identity Reconciliation API started successfully")

    yield

    logger.info("Shutting down Identity Reconciliation API...")
    app.state.contact_store = None
    await engine.dispose()


app = FastAPI(
    title=settings.API_TITLE,
    description="""
    Identity reconciliation for partial contact fragments.

    ### Identify (/identify)
    - POST with an email and/or phone number
    - Returns the canonical contact with every known email, phone number
      and secondary contact id of the identity

    ### Health (/health)
    - Liveness and database readiness probes
    """,
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug_enabled else None,
    redoc_url="/redoc" if settings.debug_enabled else None,
)

health_router = APIRouter(prefix="/health", tags=["Health"])


# ==================== HEALTH CHECK ENDPOINTS ====================

@health_router.get("")
async def health_check(request: Request):
    """
    Detailed health check for load balancers and uptime monitors.

    Returns:
    - 200: All systems operational
    - 503: Database unavailable
    """
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": {}
    }

    engine = getattr(request.app.state, "engine", None)
    try:
        if engine is None:
            raise RuntimeError("database engine not initialized")
        await check_db(engine)
        health_status["checks"]["database"] = {
            "status": "connected",
            "type": "postgresql"
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "disconnected",
            "error": str(e)
        }

    env_status = validate_environment(settings)
    health_status["checks"]["configuration"] = {
        "status": "valid" if env_status["valid"] else "invalid",
        "warnings": len(env_status.get("warnings", [])),
        "errors": len(env_status.get("errors", []))
    }

    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status


@health_router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness probe.
    Returns 200 only when the service can accept traffic.
    """
    engine = getattr(request.app.state, "engine", None)
    try:
        if engine is None:
            raise RuntimeError("database engine not initialized")
        await check_db(engine)
        return {"status": "ready", "timestamp": datetime.now(timezone.utc).isoformat()}
    except Exception as e:
        raise HTTPException(status_code=503, detail={"status": "not_ready", "error": str(e)})


@health_router.get("/live")
async def liveness_check():
    """
    Liveness probe.
    Returns 200 if the process is running (doesn't check dependencies).
    """
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


app.include_router(health_router)
app.include_router(identity_router)


# ==================== MIDDLEWARE ====================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing information"""
    start_time = time.time()

    request_id = request.headers.get("X-Request-ID", f"req-{int(start_time * 1000)}")
    context_token = set_request_context(request_id)

    if settings.debug_enabled:
        logger.debug(f"[{request_id}] {request.method} {request.url.path}")

    try:
        response = await call_next(request)

        process_time = time.time() - start_time

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

        if settings.debug_enabled or response.status_code >= 400:
            logger.info(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")

        return response
    except Exception as e:
        logger.error(f"[{request_id}] Request failed: {str(e)}")
        raise
    finally:
        clear_request_context(context_token)


# ==================== EXCEPTION HANDLERS ====================

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies as 400 with a structured error"""
    return JSONResponse(
        status_code=400,
        content={"detail": from_request_errors(exc.errors())}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions"""
    logger.error(f"Unhandled exception: {exc}")
    if settings.debug_enabled:
        logger.error(traceback.format_exc())
    capture_exception(exc, path=request.url.path)

    # Don't expose internal errors in production
    if settings.is_production:
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )
    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc),
            "type": type(exc).__name__,
        }
    )
