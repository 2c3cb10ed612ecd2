from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from contextlib import contextmanager
from pathlib import Path
import logging
import os

from config import settings
from utils.timeutil import utcnow

logger = logging.getLogger(__name__)

Base = declarative_base()

LEADERBOARD_CACHE_KEY = "leaderboard_v1"


class JobStatus:
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


# ==================== LEADERBOARD CACHE ====================


class LeaderboardEntry(Base):
    """Cached points and marketplace metadata for one token."""

    __tablename__ = "leaderboard_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    collection_slug = Column(String, nullable=False)
    nft_type = Column(String, nullable=False)
    token_id = Column(String, nullable=False)
    points = Column(BigInteger, nullable=False, default=0)
    image_url = Column(Text, nullable=True)
    opensea_url = Column(Text, nullable=True)
    is_listed = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("collection_slug", "token_id", name="uq_leaderboard_collection_token"),
        Index("idx_leaderboard_points", "points"),
        Index("idx_leaderboard_nft_type", "nft_type"),
        Index("idx_leaderboard_token_id", "token_id"),
    )


class LeaderboardMeta(Base):
    """Singleton refresh job status row, keyed by ``LEADERBOARD_CACHE_KEY``."""

    __tablename__ = "leaderboard_meta"

    cache_key = Column(String, primary_key=True, default=LEADERBOARD_CACHE_KEY)
    status = Column(String, nullable=False, default=JobStatus.IDLE)
    last_started_at = Column(DateTime, nullable=True)
    last_completed_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# ==================== DATABASE SETUP ====================

_engine_kw: dict = {"echo": False}
if "sqlite" in settings.DATABASE_URL:
    _engine_kw["connect_args"] = {"timeout": 30}

async_engine = create_async_engine(settings.DATABASE_URL, **_engine_kw)


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """WAL lets the dashboard read while a refresh step is writing."""
    if "sqlite" not in settings.DATABASE_URL:
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


event.listens_for(async_engine.sync_engine, "connect")(_set_sqlite_pragma)

AsyncSessionLocal = sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


def _run_alembic_upgrade(connection) -> None:
    from alembic import command
    from alembic.config import Config

    backend_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(backend_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(backend_root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", str(connection.engine.url))
    alembic_cfg.attributes["connection"] = connection
    command.upgrade(alembic_cfg, "head")


@contextmanager
def _sqlite_migration_lock():
    """Serialize Alembic upgrades across processes for SQLite databases."""
    if "sqlite" not in settings.DATABASE_URL or os.name != "posix":
        yield
        return

    import fcntl

    lock_path = Path(__file__).resolve().parents[1] / ".alembic.sqlite.lock"
    try:
        lock_file = lock_path.open("a", encoding="utf-8")
    except OSError:
        logger.warning("Cannot open migration lock file, proceeding without lock")
        yield
        return

    try:
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
    finally:
        lock_file.close()


async def init_database():
    """Initialize database and apply Alembic migrations."""
    with _sqlite_migration_lock():
        async with async_engine.begin() as conn:
            await conn.run_sync(_run_alembic_upgrade)


async def get_db_session() -> AsyncSession:
    """Get database session"""
    async with AsyncSessionLocal() as session:
        yield session
