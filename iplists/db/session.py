from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from iplists.core.settings import get_settings

settings = get_settings()


def make_engine(url: str) -> Engine:
    db_engine = create_engine(url, connect_args={"check_same_thread": False})

    @event.listens_for(db_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return db_engine


database_url = f"sqlite:///{settings.sqlite_path.as_posix()}"
engine = make_engine(database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
