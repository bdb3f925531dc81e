"""
Database Engine & Session Management
SQLAlchemy setup with dependency injection for FastAPI.
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

from admissions.config import get_settings

settings = get_settings()


def build_engine(database_url: str):
    """Create an engine; SQLite files get their directory and thread flag."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False  # Required for SQLite
        db_path = database_url.replace("sqlite:///", "")
        if db_path and db_path != ":memory:":
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)

    return create_engine(database_url, connect_args=connect_args, echo=settings.DEBUG)


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency: yields a database session, auto-closes on finish."""
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create all tables. Called once at application startup."""
    from admissions.models import user as _user_model                # noqa: F401
    from admissions.models import application as _application_model  # noqa: F401
    from admissions.models import payment as _payment_model          # noqa: F401
    from admissions.models import audit as _audit_model              # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
