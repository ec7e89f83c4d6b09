"""FastAPI application for the Autoplan scheduling service."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI

from src.core.config import load_app_config, load_preferences_file
from src.db.pool import Database, init_database, close_database
from src.engine.errors import PreferencesError
from src.api.schedule_routes import router as schedule_router, set_database, set_preferences

load_dotenv()

logger = logging.getLogger(__name__)

# Global instances
database: Optional[Database] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global database

    app_config = load_app_config()

    logging.basicConfig(
        level=getattr(logging, app_config.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info("Initializing Autoplan...")

    # Preferences: without them every plan request answers 422
    try:
        set_preferences(load_preferences_file(app_config.preferences_path))
        logger.info(f"Scheduling preferences loaded from {app_config.preferences_path}")
    except PreferencesError as e:
        logger.warning(f"Scheduling preferences unavailable: {e}")
        set_preferences(None)

    # Initialize Database
    try:
        database = await init_database()
        set_database(database)
        logger.info("Database connection initialized")
    except Exception as e:
        logger.warning(f"Database connection failed (stored scheduling disabled): {e}")
        database = None
        set_database(None)

    logger.info("Autoplan initialized")

    yield

    # Cleanup
    if database is not None:
        await close_database()
        logger.info("Database connection closed")

    logger.info("Shutting down Autoplan...")


app = FastAPI(
    title="Autoplan",
    description="Automatic task scheduling and goal tracking API",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(schedule_router)


@app.get("/ping")
async def ping():
    """Lightweight health check endpoint.

    Returns a simple pong response without requiring service initialization.
    """
    return {"message": "pong"}
