# app/db/session.py
from typing import Generator
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from app.core.config import settings


def build_engine(database_url: str):
    """Create an engine; in-memory SQLite shares one connection across threads"""
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(database_url, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(database_url, connect_args=connect_args)
    return create_engine(database_url, pool_pre_ping=True)


engine = build_engine(settings.DATABASE_URL)


def init_db(bind=None) -> None:
    """Create any missing tables (migrations are handled by alembic)"""
    # Import models so they register on SQLModel.metadata
    from app.db import models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
