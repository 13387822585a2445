from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from dotenv import load_dotenv

from vault.core.config import settings
from vault.core import database
from vault.core.scheduler import JobScheduler, build_jobs
from vault.routers import cancellation_requests, checkout, metal_prices, subscriptions, withdrawal_requests
from vault.services.metal_price_service import MetalPriceService
from vault.services.stripe_service import StripeService

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

logger = logging.getLogger(__name__)


async def refresh_prices_on_startup(price_service: MetalPriceService) -> None:
    if not database.AsyncSessionLocal or not price_service.api_key:
        logger.warning("⚠️ Skipping startup metal price refresh (database or Gold API key not configured)")
        return
    try:
        async with database.AsyncSessionLocal() as db:
            await price_service.ensure_fresh(db)
    except Exception as e:
        logger.error(f"❌ Startup metal price refresh failed: {str(e)}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    stripe_service = StripeService(settings.stripe_secret, settings.stripe_webhook_secret)
    price_service = MetalPriceService()
    app.state.stripe_service = stripe_service
    app.state.metal_price_service = price_service

    await refresh_prices_on_startup(price_service)

    scheduler = None
    if database.AsyncSessionLocal:
        scheduler = JobScheduler(build_jobs(database.AsyncSessionLocal, stripe_service, price_service))
        scheduler.start()
    else:
        logger.warning("⚠️ DATABASE_URL not set; scheduled jobs are not running")

    yield

    if scheduler:
        scheduler.stop()
    if database.engine:
        await database.engine.dispose()


app = FastAPI(
    title="Vault API",
    description="FastAPI backend for metal accumulation plans billed through Stripe",
    version="1.0.0",
    redirect_slashes=False,
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "development" else [settings.frontend_url],
    allow_credentials=False if settings.environment == "development" else True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    return JSONResponse(content={
        "status": "healthy",
        "service": "Vault API",
        "version": "1.0.0"
    })


# Include routers
app.include_router(checkout.router, prefix="/api/checkout", tags=["Checkout"])
app.include_router(withdrawal_requests.router, prefix="/api/withdrawal-requests", tags=["Withdrawal Requests"])
app.include_router(cancellation_requests.router, prefix="/api/cancellation-requests", tags=["Cancellation Requests"])
app.include_router(subscriptions.router, prefix="/api/subscriptions", tags=["Subscriptions"])
app.include_router(metal_prices.router, prefix="/api/metal-prices", tags=["Metal Prices"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
