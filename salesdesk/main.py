from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from loguru import logger

from salesdesk.api.actions import router as actions_router
from salesdesk.config.settings import settings
from salesdesk.core.logger import setup_logger
from salesdesk.db.session import init_db

# Initialize logger
setup_logger(level=settings.log_level, log_file=settings.log_file or None)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Ensure database tables exist before serving requests."""
    logger.info("Ensuring database tables exist")
    init_db()
    logger.info("Database tables verified")
    yield
    logger.info("SalesDesk shutting down")


app = FastAPI(title="SalesDesk", lifespan=lifespan)

app.include_router(actions_router)

logger.info("FastAPI application initialized")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests."""
    logger.debug(f"Request: {request.method} {request.url.path}")
    response = await call_next(request)
    logger.debug(f"Response: {response.status_code} for {request.method} {request.url.path}")
    return response
