"""
db.py
Database URL resolution, engine and session factory.

DATABASE_URL wins when set. Otherwise the URL is assembled from the
POSTGRES_* variables. sqlite URLs are accepted for local runs and tests.
"""

import os
from urllib.parse import quote

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from config import get_logger

logger = get_logger(__name__)


def database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        password = quote(os.getenv("POSTGRES_PASSWORD", ""))
        username = os.getenv("POSTGRES_USER", "")
        host = os.getenv("POSTGRES_HOST", "localhost")
        name = os.getenv("POSTGRES_DB", "atc")
        url = f"postgresql://{username}:{password}@{host}/{name}"

    # Render and Heroku still hand out the deprecated postgres:// scheme
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


SQLALCHEMY_DATABASE_URL = database_url()

if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
    engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
else:
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        pool_pre_ping=True,
        pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
    )

logger.info(f"Database engine ready ({engine.dialect.name})")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


# Request-scoped session dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
