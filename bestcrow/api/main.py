"""Bestcrow API - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .. import __version__
from ..config import get_settings
from ..logging_config import configure_logging, get_logger
from .database import Store
from .models import DeploymentHealth, HealthResponse
from .rate_limit import limiter
from .routes import escrows_router, fees_router

logger = get_logger("bestcrow.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(f"Starting bestcrow API (db={settings.db_path})")
    yield
    logger.info("Shutting down bestcrow API")


app = FastAPI(
    title="Bestcrow API",
    description="Read API over indexed Bestcrow escrow contracts",
    version=__version__,
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.include_router(escrows_router)
app.include_router(fees_router)


@app.get("/")
async def root():
    return {
        "service": "bestcrow",
        "version": __version__,
        "status": "ok",
    }


@app.get("/health", response_model=HealthResponse)
def health(store: Store):
    """Health check with a real store read per configured deployment."""
    deployments = []
    try:
        for config in get_settings().pipeline_configs():
            checkpoint = store.get_checkpoint(config.scope)
            deployments.append(
                DeploymentHealth(
                    chain_id=config.chain_id,
                    contract_address=config.contract_address,
                    checkpoint_block=checkpoint.block_number if checkpoint else None,
                    checkpoint_log_index=checkpoint.log_index if checkpoint else None,
                )
            )
        db_status = "connected"
    except Exception as e:
        logger.warning(f"Health check store read failed: {e}")
        db_status = f"error: {str(e)[:50]}"

    return HealthResponse(
        status="healthy" if db_status == "connected" else "degraded",
        database=db_status,
        deployments=deployments,
    )
