import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from coach_api.config import DATABASE_URL, IS_PRODUCTION

logger = logging.getLogger("coach_api.db")

if not DATABASE_URL:
    if IS_PRODUCTION:
        raise RuntimeError("DATABASE_URL not set – please configure it for production")
    # Fallback ONLY for local development.
    DATABASE_URL = "sqlite:///./coach_api.db"
    logger.warning("DATABASE_URL not set, using local SQLite database %s", DATABASE_URL)

# For SQLite we need check_same_thread; for others we don't.
connect_args = {}
engine_kwargs = {}
if DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}
else:
    # Safe defaults for a hosted Postgres (tune via env vars if needed)
    engine_kwargs = {
        "pool_size": int(os.getenv("DB_POOL_SIZE", "10")),
        "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "20")),
        "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", "60")),
        "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", "1800")),
    }


engine = create_engine(
    DATABASE_URL,
    connect_args=connect_args,
    pool_pre_ping=True,         # drops dead connections
    **engine_kwargs,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()
