"""
Database Engine & Session Management
SQLAlchemy setup backing the webhook/payment audit trail.
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from payu_provider.config import get_settings

settings = get_settings()


def _ensure_sqlite_dir(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    if not url.startswith("sqlite:///"):
        return
    directory = os.path.dirname(url.replace("sqlite:///", "", 1))
    if directory:
        os.makedirs(directory, exist_ok=True)


engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {},
    echo=settings.DEBUG,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db(bind=None):
    """Create all tables. Called once when the provider is bootstrapped."""
    from payu_provider.models import audit as _audit_model   # noqa: F401

    if bind is None:
        _ensure_sqlite_dir(settings.DATABASE_URL)
    Base.metadata.create_all(bind=bind or engine)
