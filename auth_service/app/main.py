import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import OperationalError

from .core.cache import RedisCache, close_cache, get_cache
from .core.config import settings
from .core.database import SessionLocal, check_db_connection, init_db
from .core.errors import register_exception_handlers
from .core.jwt_handler import TokenService
from .routers import auth

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def create_tables_with_retry(max_retries=10, delay=5):
    """Create database tables with retry logic"""
    for attempt in range(max_retries):
        try:
            logger.info(f"Attempting to connect to database (attempt {attempt + 1}/{max_retries})")
            init_db()
            return True
        except OperationalError as e:
            logger.warning(f"Database connection failed (attempt {attempt + 1}): {e}")
            if attempt < max_retries - 1:
                logger.info(f"Retrying in {delay} seconds...")
                time.sleep(delay)
            else:
                logger.error("Failed to connect to database after all retries")
                raise
    return False


def cleanup_expired_tokens() -> int:
    db = SessionLocal()
    try:
        return TokenService(db, get_cache()).cleanup_expired_tokens()
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Auth Service...")
    create_tables_with_retry()
    cleanup_expired_tokens()
    logger.info("Auth Service startup completed")
    yield
    logger.info("Shutting down Auth Service...")
    close_cache()


app = FastAPI(
    title="Auth Service",
    description="Authentication microservice: accounts, sessions and JWT issuance",
    version=settings.service_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = f"{process_time:.4f}"
    if request.url.path != "/health":
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")
    return response


app.include_router(auth.router, prefix=f"{settings.api_prefix}/auth", tags=["authentication"])


@app.get("/")
def read_root():
    return {
        "service": settings.service_name,
        "version": settings.service_version,
        "status": "running",
        "message": "Auth Service is running!",
    }


@app.get("/health")
def health_check(cache: RedisCache = Depends(get_cache)):
    db_healthy = check_db_connection()
    redis_healthy = cache.ping()
    return {
        "service": settings.service_name,
        "version": settings.service_version,
        "status": "healthy" if db_healthy and redis_healthy else "degraded" if db_healthy else "unhealthy",
        "database": "connected" if db_healthy else "disconnected",
        "redis": "connected" if redis_healthy else "disconnected",
        "timestamp": time.time(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("auth_service.app.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
