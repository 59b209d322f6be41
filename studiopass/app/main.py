import asyncio
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone, timedelta

from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from studiopass.app.api import payments, subscriptions, tariffs
from studiopass.app.api.deps import get_session
from studiopass.app.core.exceptions import ServiceError
from studiopass.app.core.logging import setup_logging, get_logger
from studiopass.app.core.settings import get_settings
from studiopass.app.core.metrics import PrometheusMiddleware, get_metrics_response

# Load and validate settings
try:
    settings = get_settings()
except ValueError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

# Use JSON format in production
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.is_production
)

logger = get_logger(__name__)

logger.info(
    "Application configuration loaded",
    environment=settings.ENVIRONMENT,
    db_host=settings.DB_HOST,
    payments_configured=bool(settings.YOOKASSA_SHOP_ID and settings.YOOKASSA_SECRET_KEY),
)

MSK = timezone(timedelta(hours=3))
EXPIRY_HOUR_MSK = 3


async def run_expiry_sweep() -> int:
    """Deactivate subscriptions whose end date has passed."""
    from studiopass.app.core.database import async_session
    from studiopass.app.services.subscription import SubscriptionLedger

    async with async_session() as session:
        return await SubscriptionLedger(session).expire_subscriptions()


async def _daily_scheduler():
    """Background task: expire finished subscriptions daily at 03:00 MSK."""
    while True:
        try:
            now = datetime.now(tz=MSK)
            target = now.replace(hour=EXPIRY_HOUR_MSK, minute=0, second=0, microsecond=0)
            if now >= target:
                target += timedelta(days=1)
            wait_secs = (target - now).total_seconds()
            logger.info("Daily scheduler: sleeping", next_run=target.isoformat(), wait_seconds=int(wait_secs))
            await asyncio.sleep(wait_secs)

            try:
                n = await run_expiry_sweep()
                logger.info("Daily scheduler: expired subscriptions", count=n)
            except Exception as e:
                logger.error("Daily scheduler: expire_subscriptions failed", error=str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Daily scheduler: unexpected error", error=str(e))
            await asyncio.sleep(60)  # Wait before retrying


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    - Startup: start the daily expiry scheduler
    - Shutdown: cancel it and dispose of the connection pool
    """
    logger.info("Application starting up", version="1.0.0")
    scheduler_task = asyncio.create_task(_daily_scheduler())
    yield
    scheduler_task.cancel()
    logger.info("Application shutting down")
    from studiopass.app.core.database import engine
    await engine.dispose()


app = FastAPI(title="StudioPass Backend", lifespan=lifespan)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("Request validation failed", path=request.url.path, errors=str(exc.errors()))
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "code": "validation_error"},
    )


ALLOWED_ORIGINS = settings.allowed_origins_list
if not ALLOWED_ORIGINS:
    if settings.is_production:
        logger.error("ALLOWED_ORIGINS must be set in production environment")
        raise ValueError("ALLOWED_ORIGINS environment variable is required in production")
    # Development fallback
    ALLOWED_ORIGINS = ["*"]
    logger.warning("CORS: Allowing all origins (development mode). Set ALLOWED_ORIGINS in production!")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Added after CORS so it runs first on the way in
app.add_middleware(PrometheusMiddleware)

app.include_router(subscriptions.router, prefix="/api/subscription", tags=["subscription"])
app.include_router(payments.router, prefix="/api/payment", tags=["payment"])
app.include_router(tariffs.router, prefix="/api/tariffs", tags=["tariffs"])


@app.get("/")
async def root():
    return {"status": "ok"}


@app.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    """Health check endpoint for monitoring and orchestration."""
    health_status = {
        "status": "healthy",
        "version": "1.0.0",
        "checks": {
            "database": "ok",
        }
    }

    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    return health_status


@app.get("/metrics")
async def metrics_endpoint(openmetrics: bool = False):
    """Prometheus metrics endpoint (OpenMetrics format with ?openmetrics=true)."""
    return get_metrics_response(openmetrics=openmetrics)
