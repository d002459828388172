"""
Main Application Entry Point.

This module initializes the FastAPI application, configures middleware (CORS,
request tracing), registers exception handlers and includes all API routers.
It serves as the root of the web server.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lakitu_ai.core.logging_config import get_logger, setup_logging
from lakitu_ai.core.monitoring import initialize_logfire

from .api.v1 import checkpoints, health, runs, subagents, threads
from .core import constant
from .core.config import settings
from .core.database import init_db
from .exception_handlers import setup_exception_handlers
from .middleware import LogfireMiddleware
from .services.orchestrator import get_orchestrator

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Startup creates the tables and starts the subagent workers; shutdown stops
    the workers and closes the gateway and executor clients.
    """
    # Startup
    logger.info("Starting up Lakitu-AI Server...")
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    orchestrator = get_orchestrator()
    await orchestrator.start()

    yield

    # Shutdown
    logger.info("Shutting down Lakitu-AI Server...")
    await orchestrator.stop()


app = FastAPI(
    title=constant.PROJECT_NAME,
    description="""
    Lakitu-AI Server API

    This API runs the code-execution agent loop, resumes threads from checkpoints,
    exposes the chain-of-thought step log and supervises background subagents.
    """,
    version=constant.VERSION,
    openapi_url=f"{constant.API_V1_STR}/openapi.json",
    docs_url=f"{constant.API_V1_STR}/docs",
    redoc_url=f"{constant.API_V1_STR}/redoc",
    lifespan=lifespan,
)

initialize_logfire(app)

cors = settings.cors
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors.origins,
    allow_credentials=cors.allow_credentials,
    allow_methods=cors.allow_methods,
    allow_headers=cors.allow_headers,
)
app.add_middleware(LogfireMiddleware)

setup_exception_handlers(app)

app.include_router(health.router, tags=["health"])
app.include_router(runs.router, prefix=f"{constant.API_V1_STR}/runs", tags=["runs"])
app.include_router(checkpoints.router, prefix=f"{constant.API_V1_STR}/checkpoints", tags=["checkpoints"])
app.include_router(threads.router, prefix=f"{constant.API_V1_STR}/threads", tags=["threads"])
app.include_router(subagents.router, prefix=f"{constant.API_V1_STR}/subagents", tags=["subagents"])
