import logging
import os
from pathlib import Path
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

logger = logging.getLogger(__name__)

# Prefer explicit DATABASE_URL env var. If not provided, construct a local
# SQLite URL in a `data/` folder adjacent to the package directory.
env_db = os.getenv("DATABASE_URL")
if env_db:
    DATABASE_URL = env_db
else:
    pkg_root = Path(__file__).resolve().parents[1]
    data_dir = pkg_root / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    DATABASE_URL = f"sqlite:///{(data_dir / 'fulfillment.db').as_posix()}"

DB_ECHO = os.getenv("DB_ECHO", "false").lower() in ("1", "true", "yes")
SQLITE_BUSY_TIMEOUT = int(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))

Base = declarative_base()


def _configure_sqlite(engine):
    """Enforce foreign keys and serialize writers on SQLite.

    pysqlite defers BEGIN until the first DML statement, so a lifecycle
    pre-check could read stale state; BEGIN IMMEDIATE takes the write lock
    at the start of every session transaction instead.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, echo: bool = False):
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
        )
        _configure_sqlite(engine)
    else:
        # Stale connections are recovered by the pool, not by rebuilding the engine
        engine = create_engine(url, echo=echo, pool_pre_ping=True)
    return engine


def build_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


engine = build_engine(DATABASE_URL, echo=DB_ECHO)
SessionLocal = build_session_factory(engine)


def create_db_and_tables(bind=None):
    from . import models  # noqa: F401  registers the mappers on Base

    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info("database tables ready on %s", target.url.render_as_string(hide_password=True))
