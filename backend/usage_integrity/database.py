"""
Vehicle Usage Integrity Engine - Database

One engine shared by the API, the fleet sweep workers and the advisory lock
manager. The sweep opens a session per vehicle, so the pool is sized to the
sweep's worker ceiling.
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/usage_integrity"
)

# Pool covers a full sweep (32 workers) plus the lock manager's own connections
engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True, pool_size=16, max_overflow=24)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Request-scoped session for FastAPI routes."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create the host, vehicle, trip, anomaly, claim and lock tables."""
    from .models import db_models  # noqa: F401
    Base.metadata.create_all(bind=engine)
