from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from staywatch.config import get_settings
import logging

logger = logging.getLogger(__name__)
settings = get_settings()

db_url = settings.database_url

connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}

engine = create_engine(db_url, connect_args=connect_args)


# SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    if not db_url.startswith("sqlite"):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_data_dir() -> None:
    """Create the directory holding a file-backed SQLite database."""
    if not db_url.startswith("sqlite:///") or db_url.endswith(":memory:"):
        return

    path = Path(db_url.replace("sqlite:///", "", 1))
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created database directory {path.parent}")
