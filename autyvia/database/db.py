import os
import logging
from contextlib import asynccontextmanager
from typing import Annotated, AsyncIterator

from fastapi import Depends
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine

logger = logging.getLogger(__name__)


# --- 1. Configuration ---
POSTGRES_USER = os.environ.get("POSTGRES_USER")
POSTGRES_PASSWORD = os.environ.get("POSTGRES_PASSWORD")
POSTGRES_HOST = os.environ.get("POSTGRES_HOST", "postgres")
POSTGRES_DB = os.environ.get("POSTGRES_DB")

DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    f"postgresql+asyncpg://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:5432/{POSTGRES_DB}",
)
SQL_ECHO = os.environ.get("SQL_ECHO", "false").lower() in ("1", "true", "yes")

# Create the asynchronous engine
engine = create_async_engine(DATABASE_URL, echo=SQL_ECHO)


# --- 2. Table Creation Function ---
async def create_db_and_tables():
    """Ensures all tables defined in SQLModel metadata are created in the database."""
    # the table classes must be registered on the metadata first
    from autyvia.database import db_schema  # noqa: F401

    logger.info("Initializing database tables")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables initialized")


async def drop_db_and_tables():
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)


# --- Database Dependency ---
async def get_session():
    """Dependency to yield an asynchronous database session for each request."""
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Session for work done outside a request (startup seeding, scripts)."""
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# Type hint for the dependency result, used across the application
SessionDep = Annotated[AsyncSession, Depends(get_session)]
