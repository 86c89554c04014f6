import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from .clients.auth_service import AuthServiceClient, get_auth_client
from .core.cache import RedisCache, close_cache, get_cache
from .core.config import get_settings
from .core.database import check_db_connection, init_db
from .core.errors import register_exception_handlers
from .core.rabbitmq import rabbitmq_publisher
from .core.rate_limit import general_rate_limit
from .routers import categories, tasks

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize application on startup and clean up on shutdown"""
    logger.info("Starting Task Service...")
    init_db()
    if settings.events_enabled:
        if rabbitmq_publisher.connect(max_retries=5):
            logger.info("RabbitMQ connection established")
        else:
            logger.warning("RabbitMQ connection failed - events will not be published")
    logger.info("Task Service startup completed")
    yield
    logger.info("Shutting down Task Service...")
    rabbitmq_publisher.close()
    close_cache()
    logger.info("Task Service shutdown completed")


# Create FastAPI application
app = FastAPI(
    title="Task Service",
    description="Microservice for task and category management, authenticated through Auth Service",
    version=settings.service_version,
    lifespan=lifespan,
)

# Add CORS middleware
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


app.include_router(
    tasks.router,
    prefix=settings.api_prefix + "/tasks",
    tags=["tasks"],
    dependencies=[Depends(general_rate_limit)],
)
app.include_router(
    categories.router,
    prefix=settings.api_prefix + "/categories",
    tags=["categories"],
    dependencies=[Depends(general_rate_limit)],
)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.service_name,
        "version": settings.service_version,
        "status": "running",
        "message": "Task Service is operational"
    }


@app.get("/health")
async def health_check(
    cache: RedisCache = Depends(get_cache),
    auth_client: AuthServiceClient = Depends(get_auth_client),
):
    """Health check endpoint"""
    db_healthy = await run_in_threadpool(check_db_connection)
    redis_healthy = await run_in_threadpool(cache.ping)
    auth_healthy = await auth_client.health_check()

    if not db_healthy:
        overall = "unhealthy"
    elif redis_healthy and auth_healthy:
        overall = "healthy"
    else:
        overall = "degraded"

    return {
        "service": settings.service_name,
        "version": settings.service_version,
        "status": overall,
        "database": "connected" if db_healthy else "disconnected",
        "redis": "connected" if redis_healthy else "disconnected",
        "auth_service": "reachable" if auth_healthy else "unreachable",
        "timestamp": time.time()
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("task_service.app.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
