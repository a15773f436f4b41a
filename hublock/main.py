"""
FastAPI application entry point.

    uvicorn hublock.main:app
"""
import logging
import sys
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

# Load environment variables from .env file before settings are read
load_dotenv()

from . import __version__  # noqa: E402
from .core.config import settings  # noqa: E402
from .db import init_db  # noqa: E402
from .exception_handlers import register_exception_handlers  # noqa: E402
from .routers import leaderboard, quests  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("hublock")


@asynccontextmanager
async def lifespan(app):
    """Create tables on startup (no migrations for this service)"""
    logger.info(f"Starting Hub Lock v{__version__} (ENV={settings.ENV})")
    init_db()
    yield
    logger.info("Hub Lock shutting down")


app = FastAPI(title="Hub Lock", version=__version__, lifespan=lifespan)

register_exception_handlers(app)


@app.get("/health")
async def root_health():
    """Liveness probe; does not touch the database."""
    return {
        "ok": True,
        "service": "hublock",
        "version": __version__,
        "status": "healthy"
    }


app.include_router(quests.router)
app.include_router(leaderboard.router)
