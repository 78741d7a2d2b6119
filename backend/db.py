# backend/db.py
"""
backend/db.py

Database configuration and session management for the client portal
performance service.

This module sets up the SQLAlchemy engine, session factory, and declarative base
for ORM models. It also defines a FastAPI dependency (`get_db`) that provides
a scoped database session to API request handlers.

Key features:
- Uses PostgreSQL by default (the `db` service in Docker); any SQLAlchemy URL
  works, the test-suite points `DATABASE_URL` at a temporary SQLite file.
- Connection is robust to transient DB restarts (`pool_pre_ping=True`).
- Compatible with SQLAlchemy 2.0 (`future=True`).
"""

import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

# -----------------------------------------------------------------------------
# Database URL configuration
# -----------------------------------------------------------------------------

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg2://postgres:postgres@db:5432/portaldb",
)

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

# Robust to brief DB restarts; SQLAlchemy v2-compatible
engine = create_engine(DATABASE_URL, pool_pre_ping=True, future=True, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)

Base = declarative_base()


# FastAPI dependency
def get_db():
    """
    Provide a SQLAlchemy database session to FastAPI request handlers.

    Usage in a FastAPI route:
        @app.get("/api/clients/{client_id}/performance")
        def read(client_id: int, db: Session = Depends(get_db)):
            return calculate_client_performance(db, client_id)

    Yields:
        Session: A SQLAlchemy session connected to the configured database.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
