from sqlmodel import create_engine, SQLModel, Session
from sqlalchemy import event
from sqlalchemy.engine import Engine
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL
IS_SQLITE = DATABASE_URL.startswith("sqlite")

if IS_SQLITE:
    engine = create_engine(
        DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        DATABASE_URL,
        echo=False,
        pool_size=5,
        max_overflow=10,  # Ingestion comes in bursts on page unload
        pool_pre_ping=True,
        pool_recycle=300,
        pool_timeout=30,
    )


@event.listens_for(Engine, "connect")
def set_connection_pragmas(dbapi_connection, connection_record):
    """Enable FK enforcement on SQLite, cap statement time on Postgres."""
    cursor = dbapi_connection.cursor()
    try:
        if type(dbapi_connection).__module__.startswith("sqlite3"):
            cursor.execute("PRAGMA foreign_keys=ON")
        else:
            # Aggregations are bounded by row caps; this is the backstop
            cursor.execute("SET statement_timeout = '30s'")
    except Exception as e:
        logger.warning(f"Could not set connection parameters: {e}")
    finally:
        cursor.close()


def get_session():
    with Session(engine) as session:
        yield session


def create_db_and_tables():
    SQLModel.metadata.create_all(engine)
