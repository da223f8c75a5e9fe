import logging
import os

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

load_dotenv()

log = logging.getLogger(__name__)

DB_USER = os.getenv("DB_USER")
DB_PASS = os.getenv("DB_PASS")
DB_HOST = os.getenv("DB_HOST")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME")
DATABASE_URL = os.getenv("DATABASE_URL")

_has_db_config = bool(DATABASE_URL) or all([DB_USER, DB_PASS, DB_HOST, DB_NAME])

if _has_db_config:
    db_url = DATABASE_URL or f"postgresql+asyncpg://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    engine = create_async_engine(db_url)
    AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = async_sessionmaker(engine, expire_on_commit=False)
else:
    engine = None
    AsyncSessionLocal = None
    log.warning("DB config is incomplete; DB features are disabled.")


def db_available():
    return engine is not None and AsyncSessionLocal is not None
