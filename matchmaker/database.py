from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session
from matchmaker.config import get_settings

settings = get_settings()

# check_same_thread is needed for SQLite when sessions cross the FastAPI threadpool
connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, echo=False, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def get_db_session() -> Session:
    """
    Get a synchronous database session.

    Used by the match store from both the API threadpool and Celery workers.

    Returns:
        SQLAlchemy Session (caller must close)
    """
    return SessionLocal()


def init_db(bind=None) -> None:
    """Create all tables that do not exist yet."""
    # Import models so they register on Base.metadata
    import matchmaker.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
