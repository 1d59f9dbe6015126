# --- document store models + engine ---

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import String, DateTime, JSON, func, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool
from sqlalchemy import text
from datetime import datetime
from typing import Any, Dict
import logging, os

# Load environment variables early (before reading DATABASE_URL)
from dotenv import load_dotenv
load_dotenv()

# -------------------------------------------------------------------
# Engine / Session
# -------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "")

if DATABASE_URL:
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
    # asyncpg uses 'ssl' in connect_args, not 'sslmode' in the URL
    require_ssl = "sslmode=require" in DATABASE_URL or "sslmode=verify-full" in DATABASE_URL
    for mode in ("require", "verify-full"):
        DATABASE_URL = DATABASE_URL.replace(f"?sslmode={mode}", "")
        DATABASE_URL = DATABASE_URL.replace(f"&sslmode={mode}", "")

    connect_args: Dict[str, Any] = {
        "server_settings": {
            "application_name": "marketplace_read_model",
        },
        "command_timeout": 30,
        "timeout": 15,
    }
    if require_ssl:
        connect_args["ssl"] = "require"

    # Read-heavy workload: many short concurrent multi-gets per request
    engine = create_async_engine(
        DATABASE_URL,
        echo=os.getenv("NODE_ENV") == "development",
        pool_size=int(os.getenv("DB_POOL_SIZE", "20")),
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_timeout=15,
        connect_args=connect_args,
        execution_options={
            "isolation_level": "READ COMMITTED",
        },
    )
else:
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_NAME = os.getenv("DB_NAME", "marketplace")
    SOCKET = os.getenv("INSTANCE_UNIX_SOCKET")
    if SOCKET:
        DATABASE_URL = f"postgresql+asyncpg://{DB_USER}:@/{DB_NAME}?host={SOCKET}"
        engine = create_async_engine(
            DATABASE_URL,
            echo=os.getenv("NODE_ENV") == "development",
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            pool_recycle=1800,
            pool_timeout=15,
        )
    else:
        DATABASE_URL = "sqlite+aiosqlite:///:memory:"
        engine = create_async_engine(
            DATABASE_URL,
            echo=os.getenv("NODE_ENV") == "development",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
IS_SQLITE = DATABASE_URL.startswith("sqlite")

def _redact_db_url(url: str) -> str:
    try:
        if "@" in url and "://" in url:
            head, tail = url.split("://", 1)
            creds, hostpart = tail.split("@", 1)
            if ":" in creds:
                user, _pwd = creds.split(":", 1)
                return f"{head}://{user}:******@{hostpart}"
            return f"{head}://{creds}@{hostpart}"
        if url.startswith("sqlite"):
            return url
    except ValueError:
        pass
    return "******"

logger = logging.getLogger(__name__)
logger.info(f"Creating SQL engine for { _redact_db_url(DATABASE_URL) }")

async def probe_db_connection():
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("DB connectivity probe: OK")
    except Exception as e:
        logger.exception(f"DB connectivity probe failed: {e}")

# -------------------------------------------------------------------
# Base
# -------------------------------------------------------------------
class Base(DeclarativeBase):
    pass

# JSONB on Postgres, plain JSON elsewhere (SQLite in dev/tests)
DocumentData = JSON().with_variant(JSONB(), "postgresql")

# -------------------------------------------------------------------
# MODELS
# -------------------------------------------------------------------

class Document(Base):
    """One normalized record of a collection (cart, listing, inventory, ...)."""
    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String, primary_key=True)
    id: Mapped[str] = mapped_column(String, primary_key=True)
    data: Mapped[Dict[str, Any]] = mapped_column(DocumentData, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), onupdate=func.now(), nullable=False
    )


Index('ix_documents_collection', Document.collection)

# -------------------------------------------------------------------
# DI + init helpers
# -------------------------------------------------------------------
async def init_db():
    """Ensure tables exist."""
    await probe_db_connection()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("DB init complete (tables ensured).")

async def check_db_health() -> Dict[str, Any]:
    """Lightweight health probe used by /api/health."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "healthy"}
    except Exception as e:
        logger.warning(f"DB health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)[:200]}
