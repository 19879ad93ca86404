from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from contextlib import contextmanager
from typing import Generator

from contasync.config.settings import settings

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False},  # SQLite specific
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db(bind=None):
    """Create all tables. Call once on startup."""
    import contasync.sync.models  # noqa: F401, register sync models
    import contasync.storage.entities  # noqa: F401, register entity table
    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def session_scope(session_factory=None) -> Generator[Session, None, None]:
    db = (session_factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
